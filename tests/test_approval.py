"""Tests for the approval gate."""

import asyncio
from dataclasses import replace

import pytest

from termai.runtime.approval import ApprovalDecision, ApprovalGate, ApprovalOutcomeKind
from termai.runtime.event_bus import SessionEventKind
from termai.runtime.llm.errors import CancellationToken
from termai.runtime.models import ApprovalStatus, FileChange, FileOperationType
from termai.runtime.settings import AgentSettings


def _change() -> FileChange:
    return FileChange(
        file_path="/tmp/project/app.py",
        operation_type=FileOperationType.OVERWRITE,
        before_content="old\n",
        after_content="new\n",
    )


async def _wait_for_pending(gate: ApprovalGate):
    for _ in range(400):
        pending = gate.pending_approvals()
        if pending:
            return pending[0]
        await asyncio.sleep(0.005)
    raise AssertionError("no pending approval appeared")


@pytest.fixture
def events(bus):
    seen = []
    bus.subscribe(seen.append)
    return seen


@pytest.fixture
def gated_settings(settings):
    return replace(settings, require_file_edit_approval=True)


def _request(gate: ApprovalGate, *, force: bool = False, change: FileChange | None = None):
    return asyncio.ensure_future(
        gate.request_file_change_approval(
            session_id="s1",
            file_change=change or _change(),
            tool_name="write_file",
            tool_args={"path": "app.py", "content": "new\n"},
            tool_call_id="call_1",
            force_approval=force,
        )
    )


class TestFileChangeApproval:
    @pytest.mark.asyncio
    async def test_bypassed_when_not_required(self, settings, bus, events):
        gate = ApprovalGate(settings=settings, bus=bus, cancel=CancellationToken())
        outcome = await _request(gate)
        assert outcome.kind is ApprovalOutcomeKind.APPROVED
        assert outcome.status is ApprovalStatus.NOT_REQUIRED
        assert events == []

    @pytest.mark.asyncio
    async def test_forced_even_when_not_required(self, settings, bus, events):
        gate = ApprovalGate(settings=settings, bus=bus, cancel=CancellationToken())
        task = _request(gate, force=True)
        record = await _wait_for_pending(gate)
        assert record.tool_call_id == "call_1"
        assert gate.resolve(ApprovalDecision(approval_id=record.approval_id, approved=False))
        outcome = await task
        assert outcome.kind is ApprovalOutcomeKind.REJECTED
        assert outcome.status is ApprovalStatus.REJECTED

    @pytest.mark.asyncio
    async def test_resolution_happens_exactly_once(self, gated_settings, bus, events):
        gate = ApprovalGate(settings=gated_settings, bus=bus, cancel=CancellationToken())
        task = _request(gate)
        record = await _wait_for_pending(gate)

        assert gate.resolve(ApprovalDecision(approval_id=record.approval_id, approved=True)) is True
        assert gate.resolve(ApprovalDecision(approval_id=record.approval_id, approved=False)) is False

        outcome = await task
        assert outcome.kind is ApprovalOutcomeKind.APPROVED
        assert outcome.approval_id == record.approval_id
        assert gate.pending_approvals() == []
        assert gate.resolve(ApprovalDecision(approval_id=record.approval_id, approved=True)) is False

        kinds = [e.kind for e in events]
        assert kinds == [SessionEventKind.APPROVAL_REQUESTED, SessionEventKind.APPROVAL_RESOLVED]
        assert events[-1].payload["status"] is ApprovalStatus.APPROVED

    @pytest.mark.asyncio
    async def test_partial_approval_carries_content(self, gated_settings, bus):
        gate = ApprovalGate(settings=gated_settings, bus=bus, cancel=CancellationToken())
        task = _request(gate)
        record = await _wait_for_pending(gate)
        gate.resolve(
            ApprovalDecision(approval_id=record.approval_id, approved=True, partial=True, modified_content="half\n")
        )
        outcome = await task
        assert outcome.kind is ApprovalOutcomeKind.PARTIALLY_APPROVED
        assert outcome.modified_content == "half\n"

    @pytest.mark.asyncio
    async def test_partial_answer_to_delete_is_plain_approval(self, gated_settings, bus):
        gate = ApprovalGate(settings=gated_settings, bus=bus, cancel=CancellationToken())
        delete = FileChange(
            file_path="/tmp/project/app.py",
            operation_type=FileOperationType.DELETE,
            before_content="old\n",
            after_content=None,
        )
        task = _request(gate, change=delete)
        record = await _wait_for_pending(gate)
        gate.resolve(
            ApprovalDecision(approval_id=record.approval_id, approved=True, partial=True, modified_content="old\n")
        )
        outcome = await task
        assert outcome.kind is ApprovalOutcomeKind.APPROVED
        assert outcome.status is ApprovalStatus.APPROVED
        assert outcome.modified_content is None

    @pytest.mark.asyncio
    async def test_timeout_is_a_rejection(self, gated_settings, bus, events):
        gate = ApprovalGate(
            settings=replace(gated_settings, approval_timeout_s=0.05),
            bus=bus,
            cancel=CancellationToken(),
        )
        outcome = await _request(gate)
        assert outcome.kind is ApprovalOutcomeKind.REJECTED
        assert outcome.status is ApprovalStatus.TIMEOUT
        assert gate.pending_approvals() == []
        assert gate.resolve(ApprovalDecision(approval_id=outcome.approval_id, approved=True)) is False
        assert events[-1].payload["status"] is ApprovalStatus.TIMEOUT

    @pytest.mark.asyncio
    async def test_cancel_rejects_within_poll_interval(self, gated_settings, bus):
        cancel = CancellationToken()
        gate = ApprovalGate(settings=gated_settings, bus=bus, cancel=cancel)
        task = _request(gate)
        await _wait_for_pending(gate)
        cancel.cancel()
        outcome = await asyncio.wait_for(task, timeout=1.0)
        assert outcome.kind is ApprovalOutcomeKind.REJECTED
        assert outcome.status is ApprovalStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_notifier_receives_request(self, bus):
        posted = []

        class _Notifier:
            def post(self, *, title, body):
                posted.append((title, body))

        settings = replace(
            AgentSettings(),
            require_file_edit_approval=True,
            approval_poll_interval_s=0.01,
        )
        gate = ApprovalGate(settings=settings, bus=bus, cancel=CancellationToken(), notifier=_Notifier())
        task = _request(gate)
        record = await _wait_for_pending(gate)
        gate.resolve(ApprovalDecision(approval_id=record.approval_id, approved=True))
        await task
        assert posted == [("Approval needed", "Overwrite file: app.py")]


class TestCommandApproval:
    @pytest.mark.asyncio
    async def test_edited_command_is_returned(self, settings, bus):
        gate = ApprovalGate(settings=settings, bus=bus, cancel=CancellationToken())
        task = asyncio.ensure_future(gate.request_command_approval(session_id="s1", command="rm -rf build", cwd="/tmp"))
        record = await _wait_for_pending(gate)
        assert record.is_command
        gate.resolve(ApprovalDecision(approval_id=record.approval_id, approved=True, edited_command="rm -rf build/tmp"))
        assert await task == "rm -rf build/tmp"

    @pytest.mark.asyncio
    async def test_rejected_command_returns_none(self, settings, bus):
        gate = ApprovalGate(settings=settings, bus=bus, cancel=CancellationToken())
        task = asyncio.ensure_future(gate.request_command_approval(session_id="s1", command="sudo reboot", cwd="/tmp"))
        record = await _wait_for_pending(gate)
        gate.resolve(ApprovalDecision(approval_id=record.approval_id, approved=False))
        assert await task is None

    def test_unknown_id_is_ignored(self, settings, bus):
        gate = ApprovalGate(settings=settings, bus=bus, cancel=CancellationToken())
        assert gate.resolve(ApprovalDecision(approval_id="appr_missing", approved=True)) is False
