"""Tests for the tool execution pipeline: approval, checkpoint capture and shell commands."""

import asyncio
from dataclasses import replace

import pytest

from termai.runtime.approval import ApprovalDecision
from termai.runtime.event_bus import SessionEventKind
from termai.runtime.models import AgentEventKind, ChatRole, ChatTurn, ToolStatus
from termai.runtime.session import ChatSession
from termai.runtime.tools import DeleteFileTool, EditFileTool, WriteFileTool, remap_args_for_partial_approval


def _make_session(settings, store, bus, profile, workdir) -> ChatSession:
    session = ChatSession(
        session_id="s1",
        profile=profile,
        settings=settings,
        store=store,
        bus=bus,
        working_dir=workdir,
    )
    session.turns.append(ChatTurn(role=ChatRole.USER, content="do it"))
    session.ledger.create_checkpoint("do it")
    return session


@pytest.fixture
def session(settings, store, bus, local_profile, workdir):
    return _make_session(settings, store, bus, local_profile, workdir)


@pytest.fixture
def gated_session(settings, store, bus, local_profile, workdir):
    return _make_session(replace(settings, require_file_edit_approval=True), store, bus, local_profile, workdir)


def _auto_decide(session: ChatSession, bus, decide) -> list:
    """Answer every approval request on the next loop iteration."""

    seen = []

    def handler(event):
        record = event.payload["approval"]
        seen.append(record)
        asyncio.get_running_loop().call_soon(session.gate.resolve, decide(record))

    bus.subscribe(handler, kinds={SessionEventKind.APPROVAL_REQUESTED})
    return seen


def _fake_terminal(session: ChatSession, bus, *, output: str = "", exit_code: int = 0) -> list[str]:
    ran: list[str] = []

    def handler(event):
        command = event.payload["command"]
        ran.append(command)
        asyncio.get_running_loop().call_soon(
            lambda: session.terminal.deliver_output(
                command=command, session_id=event.session_id, output=output, exit_code=exit_code
            )
        )

    bus.subscribe(handler, kinds={SessionEventKind.EXECUTE_COMMAND})
    return ran


def _last_event(session: ChatSession):
    return session.turns[-1].agent_event


class TestRemapArgs:
    def test_drops_incremental_arguments(self):
        args = {"path": "a.py", "old_text": "x", "new_text": "y", "replace_all": True, "start_line": 3}
        assert remap_args_for_partial_approval(args, "full") == {"path": "a.py", "content": "full", "mode": "overwrite"}


class TestFileTools:
    @pytest.mark.asyncio
    async def test_ungated_write_records_snapshot(self, session, workdir):
        target = workdir / "a.txt"
        target.write_text("old\n", encoding="utf-8")

        result = await session.pipeline.execute(
            WriteFileTool(), {"path": "a.txt", "content": "new\n"}, workdir, tool_call_id="call_w"
        )

        assert result.success is True
        assert target.read_text(encoding="utf-8") == "new\n"
        snapshot = session.ledger.current_checkpoint.file_snapshots[str(target)]
        assert snapshot.content_before == "old\n"
        assert snapshot.was_created is False

        event = _last_event(session)
        assert event.kind == AgentEventKind.STATUS
        assert event.tool_status is ToolStatus.SUCCEEDED
        assert event.details == "a.txt (+1 -1)"
        assert event.tool_call_id == "call_w"
        assert len(session.file_change_history()) == 1

    @pytest.mark.asyncio
    async def test_forced_delete_rejected_leaves_file(self, session, bus, workdir):
        target = workdir / "gone.txt"
        target.write_text("keep me", encoding="utf-8")
        requests = _auto_decide(session, bus, lambda r: ApprovalDecision(approval_id=r.approval_id, approved=False))

        result = await session.pipeline.execute(DeleteFileTool(), {"path": "gone.txt"}, workdir)

        assert len(requests) == 1
        assert result.success is False
        assert result.error == "File change rejected by user"
        assert target.read_text(encoding="utf-8") == "keep me"
        assert session.ledger.current_checkpoint.file_snapshots == {}

        assert len(session.turns) == 2
        event = _last_event(session)
        assert event.title == "delete_file rejected"
        assert event.details == "User declined: gone.txt"
        assert event.tool_status is ToolStatus.FAILED
        assert event.pending_approval_id is None

    @pytest.mark.asyncio
    async def test_approval_turn_is_shown_while_pending(self, gated_session, bus, workdir):
        (workdir / "a.txt").write_text("old\n", encoding="utf-8")
        snapshots = []

        def decide(record):
            snapshots.append(gated_session.turns[-1].agent_event)
            return ApprovalDecision(approval_id=record.approval_id, approved=True)

        _auto_decide(gated_session, bus, decide)
        result = await gated_session.pipeline.execute(WriteFileTool(), {"path": "a.txt", "content": "new\n"}, workdir)

        assert result.success is True
        pending = snapshots[0]
        assert pending.kind == AgentEventKind.FILE_CHANGE
        assert pending.title == "Approve overwrite file?"
        assert pending.pending_approval_id is not None
        assert _last_event(gated_session).tool_status is ToolStatus.SUCCEEDED

    @pytest.mark.asyncio
    async def test_partial_approval_writes_modified_content(self, gated_session, bus, workdir):
        target = workdir / "a.py"
        target.write_text("a = 1\nb = 1\n", encoding="utf-8")
        _auto_decide(
            gated_session,
            bus,
            lambda r: ApprovalDecision(approval_id=r.approval_id, approved=True, partial=True, modified_content="a = 2\nb = 1\n"),
        )

        result = await gated_session.pipeline.execute(
            EditFileTool(), {"path": "a.py", "old_text": "= 1", "new_text": "= 2", "replace_all": True}, workdir
        )

        assert result.success is True
        assert result.output == "File updated with selected changes: a.py"
        assert target.read_text(encoding="utf-8") == "a = 2\nb = 1\n"
        assert gated_session.ledger.current_checkpoint.file_snapshots[str(target)].content_before == "a = 1\nb = 1\n"
        assert _last_event(gated_session).file_change.after_content == "a = 2\nb = 1\n"

    @pytest.mark.asyncio
    async def test_tool_error_becomes_failed_result(self, session, workdir):
        (workdir / "a.py").write_text("hello\n", encoding="utf-8")
        result = await session.pipeline.execute(EditFileTool(), {"path": "a.py", "old_text": "bye", "new_text": "x"}, workdir)

        assert result.success is False
        assert result.error.startswith("Text not found in file.")
        event = _last_event(session)
        assert event.tool_status is ToolStatus.FAILED
        assert event.details == result.error

    @pytest.mark.asyncio
    async def test_rollback_undoes_pipeline_write(self, session, workdir):
        target = workdir / "new.txt"
        await session.pipeline.execute(WriteFileTool(), {"path": "new.txt", "content": "x"}, workdir)
        assert target.exists()

        result = session.rollback_to_checkpoint(session.ledger.current_checkpoint)
        assert result.restored_files == [str(target)]
        assert not target.exists()
        assert [t.content for t in session.turns] == ["do it"]


class TestShellCommands:
    @pytest.mark.asyncio
    async def test_destructive_command_is_gated_and_edited(self, session, bus, workdir):
        requests = _auto_decide(
            session, bus, lambda r: ApprovalDecision(approval_id=r.approval_id, approved=True, edited_command="rm -rf build/tmp")
        )
        ran = _fake_terminal(session, bus, output="removed\n")

        result = await session.pipeline.execute_shell_command("rm -rf build", workdir, tool_call_id="call_sh")

        assert requests[0].command == "rm -rf build"
        assert ran == ["rm -rf build/tmp"]
        assert result.success is True
        assert result.output == "removed\n"
        assert session.ledger.current_checkpoint.shell_commands_run == ["rm -rf build"]

        event = _last_event(session)
        assert event.kind == AgentEventKind.STATUS
        assert event.title == "Completed"
        assert event.command == "rm -rf build/tmp"
        assert event.tool_status is ToolStatus.SUCCEEDED
        assert event.pending_approval_id is None
        assert len(session.turns) == 2

    @pytest.mark.asyncio
    async def test_rejected_command_is_still_recorded(self, session, bus, workdir):
        _auto_decide(session, bus, lambda r: ApprovalDecision(approval_id=r.approval_id, approved=False))
        ran = _fake_terminal(session, bus)

        result = await session.pipeline.execute_shell_command("sudo rm -rf /", workdir)

        assert result.error == "Command rejected by user"
        assert ran == []
        assert session.ledger.current_checkpoint.shell_commands_run == ["sudo rm -rf /"]
        event = _last_event(session)
        assert event.title == "Command rejected"
        assert event.details == "User declined to execute"
        assert event.tool_status is ToolStatus.FAILED

    @pytest.mark.asyncio
    async def test_safe_command_runs_without_approval(self, session, bus, workdir):
        requests = _auto_decide(session, bus, lambda r: ApprovalDecision(approval_id=r.approval_id, approved=True))
        _fake_terminal(session, bus, output="boom", exit_code=2)

        result = await session.pipeline.execute_shell_command("make test", workdir)

        assert requests == []
        assert result.success is False
        assert result.error == "Command exited with code 2"
        assert result.output == "boom"
        assert _last_event(session).tool_status is ToolStatus.FAILED

    @pytest.mark.asyncio
    async def test_no_terminal_times_out(self, settings, store, bus, local_profile, workdir):
        session = _make_session(replace(settings, command_timeout_s=0.05), store, bus, local_profile, workdir)

        result = await session.pipeline.execute_shell_command("ls", workdir)

        assert result.error == "Command produced no output (timed out or cancelled)"
        event = _last_event(session)
        assert event.title == "No output"
        assert event.tool_status is ToolStatus.FAILED


class TestAfterCancellation:
    @pytest.mark.asyncio
    async def test_shell_command_runs_after_rollback(self, session, bus, workdir):
        await session.pipeline.execute(WriteFileTool(), {"path": "new.txt", "content": "x"}, workdir)
        session.rollback_to_checkpoint(session.ledger.current_checkpoint)
        assert session.cancel.cancelled is True
        ran = _fake_terminal(session, bus, output="ok\n")

        result = await session.pipeline.execute_shell_command("make test", workdir)

        assert ran == ["make test"]
        assert result.success is True
        assert result.output == "ok\n"

    @pytest.mark.asyncio
    async def test_delete_is_approved_after_stop(self, session, bus, workdir):
        target = workdir / "gone.txt"
        target.write_text("bye", encoding="utf-8")
        session.stop()
        requests = _auto_decide(session, bus, lambda r: ApprovalDecision(approval_id=r.approval_id, approved=True))

        result = await session.pipeline.execute(DeleteFileTool(), {"path": "gone.txt"}, workdir)

        assert len(requests) == 1
        assert result.success is True
        assert not target.exists()
        assert session.ledger.current_checkpoint.file_snapshots[str(target)].content_before == "bye"


class TestUnreadableFiles:
    @pytest.mark.asyncio
    async def test_binary_file_is_not_deleted(self, session, workdir):
        target = workdir / "blob.bin"
        target.write_bytes(b"\xff\xfe\x00binary")

        result = await session.pipeline.execute(DeleteFileTool(), {"path": "blob.bin"}, workdir)

        assert result.success is False
        assert "is not valid UTF-8 text" in result.error
        assert target.read_bytes() == b"\xff\xfe\x00binary"
        assert session.ledger.current_checkpoint.file_snapshots == {}
        assert _last_event(session).tool_status is ToolStatus.FAILED

    @pytest.mark.asyncio
    async def test_binary_file_is_not_overwritten(self, session, workdir):
        target = workdir / "blob.bin"
        target.write_bytes(b"\xff\xfe\x00binary")

        result = await session.pipeline.execute(WriteFileTool(), {"path": "blob.bin", "content": "text"}, workdir)

        assert result.success is False
        assert target.read_bytes() == b"\xff\xfe\x00binary"
        assert session.ledger.current_checkpoint.file_snapshots == {}
