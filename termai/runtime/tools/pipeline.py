from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Protocol

from ..approval import ApprovalGate, ApprovalOutcomeKind
from ..checkpoints import CheckpointLedger
from ..command_policy import requires_command_approval
from ..ids import new_tool_call_id
from ..llm.errors import CancellationToken
from ..models import AgentEvent, AgentEventKind, FileChange, FileOperationType, ToolStatus
from ..settings import AgentSettings
from ..terminal import TerminalBridge
from .base import Tool, ToolExecutionError, ToolResult, resolve_path
from .diff import change_summary, changed_lines_preview, unified_diff

logger = logging.getLogger(__name__)

# Sub-arguments that describe an incremental edit; a partial approval replaces them with full content.
_PARTIAL_DROPPED_ARGS = (
    "old_text",
    "new_text",
    "old_string",
    "new_string",
    "replace_all",
    "line_number",
    "start_line",
    "end_line",
)


class EventSink(Protocol):
    @property
    def session_id(self) -> str: ...

    def append_event_turn(self, event: AgentEvent) -> int: ...

    def update_event(self, index: int, **changes: Any) -> None: ...

    def find_event_index(self, *, tool_call_id: str) -> int | None: ...


def remap_args_for_partial_approval(args: dict[str, Any], modified_content: str) -> dict[str, Any]:
    remapped = {k: v for k, v in args.items() if k not in _PARTIAL_DROPPED_ARGS}
    remapped["content"] = modified_content
    remapped["mode"] = "overwrite"
    return remapped


class ToolExecutionPipeline:
    """
    Runs one tool call end to end: preview, approval, checkpoint capture, execution.

    Every call gets exactly one event turn in the session, updated in place as the call
    moves through its states.
    """

    def __init__(
        self,
        *,
        session: EventSink,
        settings: AgentSettings,
        gate: ApprovalGate,
        ledger: CheckpointLedger,
        terminal: TerminalBridge,
        cancel: CancellationToken,
    ) -> None:
        self._session = session
        self._cancel = cancel
        self._settings = settings
        self._gate = gate
        self._ledger = ledger
        self._terminal = terminal

    async def execute(
        self,
        tool: Tool,
        args: dict[str, Any],
        working_dir: Path | str,
        *,
        tool_call_id: str | None = None,
    ) -> ToolResult:
        self._clear_stale_cancellation()
        tool_call_id = tool_call_id or new_tool_call_id()
        working_dir = Path(working_dir).expanduser()

        change = self._preview(tool, args, working_dir)
        index = self._session.append_event_turn(
            AgentEvent(
                kind=AgentEventKind.STEP,
                title=tool.name,
                details=change.file_name if change is not None else None,
                file_change=change,
                pending_tool_name=tool.name,
                tool_call_id=tool_call_id,
                tool_status=ToolStatus.PENDING,
            )
        )

        needs_approval = change is not None and (
            tool.always_requires_approval or self._settings.require_file_edit_approval
        )
        if needs_approval:
            assert change is not None
            outcome = await self._gate.request_file_change_approval(
                session_id=self._session.session_id,
                file_change=change,
                tool_name=tool.name,
                tool_args=args,
                tool_call_id=tool_call_id,
                force_approval=tool.always_requires_approval,
            )
            if outcome.kind is ApprovalOutcomeKind.REJECTED:
                self._session.update_event(
                    index,
                    kind=AgentEventKind.STEP,
                    title=f"{tool.name} rejected",
                    details=f"User declined: {change.file_name}",
                    tool_status=ToolStatus.FAILED,
                    pending_approval_id=None,
                    collapsed=True,
                )
                return ToolResult.failure("File change rejected by user", file_change=change)
            if outcome.kind is ApprovalOutcomeKind.PARTIALLY_APPROVED:
                return await self._apply_partial(
                    tool,
                    args,
                    working_dir,
                    change=change,
                    modified_content=outcome.modified_content or "",
                    index=index,
                )

        self._session.update_event(
            index,
            kind=AgentEventKind.STEP,
            tool_status=ToolStatus.RUNNING,
            pending_approval_id=None,
            collapsed=True,
        )
        if change is not None:
            self._record(change)

        try:
            result = await asyncio.to_thread(tool.execute, args=args, working_dir=working_dir)
        except (ValueError, ToolExecutionError, OSError) as e:
            logger.info("Tool %s failed: %s", tool.name, e)
            result = ToolResult.failure(str(e), file_change=change)

        self._finish(index, result, change=result.file_change or change)
        return result

    async def execute_shell_command(
        self,
        command: str,
        working_dir: Path | str,
        *,
        tool_call_id: str | None = None,
        require_approval: bool = True,
    ) -> ToolResult:
        self._clear_stale_cancellation()
        tool_call_id = tool_call_id or new_tool_call_id()
        cwd = str(Path(working_dir).expanduser())
        # Recorded even if rejected: the user may run it by hand and rollback cannot undo it.
        self._ledger.record_shell_command(command)

        approved = command
        index: int | None = None
        if require_approval and requires_command_approval(command, self._settings):
            edited = await self._gate.request_command_approval(
                session_id=self._session.session_id,
                command=command,
                cwd=cwd,
                tool_call_id=tool_call_id,
            )
            index = self._session.find_event_index(tool_call_id=tool_call_id)
            if edited is None:
                if index is not None:
                    self._session.update_event(
                        index,
                        kind=AgentEventKind.STATUS,
                        title="Command rejected",
                        details="User declined to execute",
                        tool_status=ToolStatus.FAILED,
                        pending_approval_id=None,
                    )
                return ToolResult.failure("Command rejected by user")
            approved = edited

        title = "Running (edited)" if approved != command else "Running"
        if index is None:
            index = self._session.append_event_turn(
                AgentEvent(
                    kind=AgentEventKind.STATUS,
                    title=title,
                    details=approved,
                    command=approved,
                    pending_tool_name="shell",
                    tool_call_id=tool_call_id,
                    tool_status=ToolStatus.RUNNING,
                    event_category="command",
                )
            )
        else:
            self._session.update_event(
                index,
                kind=AgentEventKind.STATUS,
                title=title,
                details=approved,
                command=approved,
                tool_status=ToolStatus.RUNNING,
                pending_approval_id=None,
            )

        logger.info("Executing command: %s", approved)
        output = await self._terminal.run_command(
            session_id=self._session.session_id,
            command=approved,
            cwd=cwd,
            timeout_s=self._settings.command_timeout_s,
        )
        if output is None:
            self._session.update_event(index, title="No output", tool_status=ToolStatus.FAILED)
            return ToolResult.failure("Command produced no output (timed out or cancelled)")

        self._session.update_event(
            index,
            title="Completed",
            output=output.output,
            tool_status=ToolStatus.SUCCEEDED if output.success else ToolStatus.FAILED,
        )
        if output.success:
            return ToolResult.ok(output.output)
        return ToolResult.failure(f"Command exited with code {output.exit_code}", output=output.output)

    def _clear_stale_cancellation(self) -> None:
        # A stop or rollback cancels only the work that was suspended at the time.
        if self._cancel.cancelled:
            logger.debug("Clearing cancellation left by an earlier stop or rollback")
            self._cancel.reset()

    def _preview(self, tool: Tool, args: dict[str, Any], working_dir: Path) -> FileChange | None:
        if not tool.supports_preview:
            return None
        try:
            return tool.prepare_change(args, working_dir)
        except (ValueError, ToolExecutionError) as e:
            logger.debug("No preview for %s: %s", tool.name, e)
            return None

    def _record(self, change: FileChange) -> None:
        self._ledger.record_file_change(
            change.file_path,
            content_before=change.before_content,
            was_created=change.operation_type is FileOperationType.CREATE,
        )

    async def _apply_partial(
        self,
        tool: Tool,
        args: dict[str, Any],
        working_dir: Path,
        *,
        change: FileChange,
        modified_content: str,
        index: int,
    ) -> ToolResult:
        applied = change.with_after_content(modified_content)
        self._session.update_event(
            index,
            kind=AgentEventKind.STEP,
            title=tool.name,
            details=f"Applying partial changes to: {change.file_name}",
            tool_status=ToolStatus.RUNNING,
            pending_approval_id=None,
            collapsed=True,
            file_change=applied,
        )
        self._record(change)

        remapped = remap_args_for_partial_approval(args, modified_content)
        path = str(remapped.get("path") or change.file_path)
        target = resolve_path(path, working_dir)
        try:
            await asyncio.to_thread(_write_text, target, modified_content)
        except OSError as e:
            result = ToolResult.failure(f"Failed to write partial changes: {e}", file_change=applied)
        else:
            result = ToolResult.ok(f"File updated with selected changes: {path}", file_change=applied)
        self._finish(index, result, change=applied)
        return result

    def _finish(self, index: int, result: ToolResult, *, change: FileChange | None) -> None:
        changes: dict[str, Any] = {"tool_status": ToolStatus.SUCCEEDED if result.success else ToolStatus.FAILED}
        if change is not None and result.success:
            diff_text = unified_diff(change.before_content, change.after_content, path=change.file_name)
            changes["kind"] = AgentEventKind.STATUS
            changes["details"] = change_summary(change.before_content, change.after_content, path=change.file_name)
            changes["output"] = "\n".join(changed_lines_preview(diff_text)) or None
            changes["file_change"] = change
        elif not result.success:
            changes["details"] = result.error
        self._session.update_event(index, **changes)


def _write_text(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
