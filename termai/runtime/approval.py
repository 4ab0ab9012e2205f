from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from .event_bus import EventBus, SessionEvent, SessionEventKind
from .ids import new_id, now_ts_ms
from .llm.errors import CancellationToken
from .models import ApprovalStatus, FileChange
from .models.status import validate_approval_transition
from .notifications import Notifier, NullNotifier
from .settings import AgentSettings

logger = logging.getLogger(__name__)


class ApprovalOutcomeKind(StrEnum):
    APPROVED = "approved"
    REJECTED = "rejected"
    PARTIALLY_APPROVED = "partially_approved"


@dataclass(frozen=True, slots=True)
class ApprovalOutcome:
    kind: ApprovalOutcomeKind
    status: ApprovalStatus
    approval_id: str | None = None
    modified_content: str | None = None

    @property
    def approved(self) -> bool:
        return self.kind is not ApprovalOutcomeKind.REJECTED

    @classmethod
    def not_required(cls) -> ApprovalOutcome:
        return cls(kind=ApprovalOutcomeKind.APPROVED, status=ApprovalStatus.NOT_REQUIRED)


@dataclass(frozen=True, slots=True)
class ApprovalDecision:
    """A user's answer to one pending approval."""

    approval_id: str
    approved: bool
    edited_command: str | None = None
    partial: bool = False
    modified_content: str | None = None


@dataclass(frozen=True, slots=True)
class PendingApproval:
    approval_id: str
    session_id: str
    tool_name: str
    tool_args: dict[str, Any] = field(default_factory=dict)
    tool_call_id: str | None = None
    file_change: FileChange | None = None
    command: str | None = None
    cwd: str | None = None
    created_at: int = field(default_factory=now_ts_ms)

    @property
    def is_command(self) -> bool:
        return self.command is not None


class ApprovalGate:
    """
    Suspends tool execution until the user approves, rejects, the session is stopped,
    or the approval timeout elapses.

    All methods must be called from the event loop that owns the session. Each pending
    approval is backed by one future; `resolve` completes it at most once.
    """

    def __init__(
        self,
        *,
        settings: AgentSettings,
        bus: EventBus,
        cancel: CancellationToken,
        notifier: Notifier | None = None,
    ) -> None:
        self._settings = settings
        self._bus = bus
        self._cancel = cancel
        self._notifier: Notifier = notifier or NullNotifier()
        self._futures: dict[str, asyncio.Future[ApprovalDecision]] = {}
        self._records: dict[str, PendingApproval] = {}

    def pending_approvals(self) -> list[PendingApproval]:
        return sorted(self._records.values(), key=lambda r: r.created_at)

    def resolve(self, decision: ApprovalDecision) -> bool:
        fut = self._futures.get(decision.approval_id)
        if fut is None or fut.done():
            logger.debug("Ignoring decision for unknown or resolved approval %s", decision.approval_id)
            return False
        fut.set_result(decision)
        return True

    async def request_file_change_approval(
        self,
        *,
        session_id: str,
        file_change: FileChange,
        tool_name: str,
        tool_args: dict[str, Any],
        tool_call_id: str | None = None,
        force_approval: bool = False,
    ) -> ApprovalOutcome:
        if not (self._settings.require_file_edit_approval or force_approval):
            return ApprovalOutcome.not_required()

        record = PendingApproval(
            approval_id=new_id("appr"),
            session_id=session_id,
            tool_name=tool_name,
            tool_args=dict(tool_args),
            tool_call_id=tool_call_id,
            file_change=file_change,
        )
        status, decision = await self._wait_for_decision(
            record,
            notification=f"{file_change.operation_type.description}: {file_change.file_name}",
        )

        if status is ApprovalStatus.PARTIALLY_APPROVED:
            assert decision is not None
            return ApprovalOutcome(
                kind=ApprovalOutcomeKind.PARTIALLY_APPROVED,
                status=status,
                approval_id=record.approval_id,
                modified_content=decision.modified_content,
            )
        if status is ApprovalStatus.APPROVED:
            return ApprovalOutcome(kind=ApprovalOutcomeKind.APPROVED, status=status, approval_id=record.approval_id)
        return ApprovalOutcome(kind=ApprovalOutcomeKind.REJECTED, status=status, approval_id=record.approval_id)

    async def request_command_approval(
        self,
        *,
        session_id: str,
        command: str,
        cwd: str,
        tool_call_id: str | None = None,
    ) -> str | None:
        """Return the command to run (possibly edited by the user), or None when rejected."""

        record = PendingApproval(
            approval_id=new_id("appr"),
            session_id=session_id,
            tool_name="shell",
            tool_args={"command": command, "cwd": cwd},
            tool_call_id=tool_call_id,
            command=command,
            cwd=cwd,
        )
        status, decision = await self._wait_for_decision(record, notification=f"Run command: {command}")
        if status is not ApprovalStatus.APPROVED or decision is None:
            return None
        edited = (decision.edited_command or "").strip()
        return edited or command

    async def _wait_for_decision(
        self,
        record: PendingApproval,
        *,
        notification: str,
    ) -> tuple[ApprovalStatus, ApprovalDecision | None]:
        loop = asyncio.get_running_loop()
        fut: asyncio.Future[ApprovalDecision] = loop.create_future()
        self._futures[record.approval_id] = fut
        self._records[record.approval_id] = record

        logger.info("Approval %s requested for %s", record.approval_id, record.tool_name)
        self._bus.publish(
            SessionEvent(
                kind=SessionEventKind.APPROVAL_REQUESTED,
                session_id=record.session_id,
                payload={"approval": record},
            )
        )
        if self._settings.notify_on_approval:
            self._notifier.post(title="Approval needed", body=notification)

        decision: ApprovalDecision | None = None
        deadline = loop.time() + self._settings.approval_timeout_s
        try:
            while True:
                if fut.done():
                    decision = fut.result()
                    status = _status_for_decision(decision, record)
                    break
                if self._cancel.cancelled:
                    status = ApprovalStatus.CANCELLED
                    break
                remaining = deadline - loop.time()
                if remaining <= 0:
                    status = ApprovalStatus.TIMEOUT
                    break
                await asyncio.wait({fut}, timeout=min(self._settings.approval_poll_interval_s, remaining))
        finally:
            self._futures.pop(record.approval_id, None)
            self._records.pop(record.approval_id, None)
            if not fut.done():
                fut.cancel()

        validate_approval_transition(before=ApprovalStatus.PENDING, after=status)
        if status in {ApprovalStatus.TIMEOUT, ApprovalStatus.CANCELLED}:
            logger.warning("Approval %s ended without a decision: %s", record.approval_id, status.value)
        else:
            logger.info("Approval %s resolved: %s", record.approval_id, status.value)

        self._bus.publish(
            SessionEvent(
                kind=SessionEventKind.APPROVAL_RESOLVED,
                session_id=record.session_id,
                payload={"approval": record, "status": status},
            )
        )
        return status, decision


def _status_for_decision(decision: ApprovalDecision, record: PendingApproval) -> ApprovalStatus:
    if not decision.approved:
        return ApprovalStatus.REJECTED
    if not decision.partial or decision.modified_content is None:
        return ApprovalStatus.APPROVED
    # Deletions have no after-content to narrow, so a partial answer counts as a plain approval.
    change = record.file_change
    if change is not None and change.after_content is not None:
        return ApprovalStatus.PARTIALLY_APPROVED
    return ApprovalStatus.APPROVED
