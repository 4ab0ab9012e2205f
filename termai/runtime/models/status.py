from __future__ import annotations

from enum import StrEnum
from typing import Iterable


class ToolStatus(StrEnum):
    PENDING = "pending"
    RUNNING = "running"
    STREAMING = "streaming"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class ApprovalStatus(StrEnum):
    NOT_REQUIRED = "NOT_REQUIRED"
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    PARTIALLY_APPROVED = "PARTIALLY_APPROVED"
    REJECTED = "REJECTED"
    TIMEOUT = "TIMEOUT"
    CANCELLED = "CANCELLED"


_TOOL_TERMINAL: frozenset[ToolStatus] = frozenset({ToolStatus.SUCCEEDED, ToolStatus.FAILED})
_APPROVAL_TERMINAL: frozenset[ApprovalStatus] = frozenset(
    {
        ApprovalStatus.NOT_REQUIRED,
        ApprovalStatus.APPROVED,
        ApprovalStatus.PARTIALLY_APPROVED,
        ApprovalStatus.REJECTED,
        ApprovalStatus.TIMEOUT,
        ApprovalStatus.CANCELLED,
    }
)


_ALLOWED_TOOL_TRANSITIONS: dict[ToolStatus, frozenset[ToolStatus]] = {
    # A pending call is either approved into running, or rejected straight to failed.
    ToolStatus.PENDING: frozenset({ToolStatus.RUNNING, ToolStatus.FAILED}),
    ToolStatus.RUNNING: frozenset({ToolStatus.STREAMING, ToolStatus.SUCCEEDED, ToolStatus.FAILED}),
    ToolStatus.STREAMING: frozenset({ToolStatus.SUCCEEDED, ToolStatus.FAILED}),
    ToolStatus.SUCCEEDED: frozenset(),
    ToolStatus.FAILED: frozenset(),
}


_ALLOWED_APPROVAL_TRANSITIONS: dict[ApprovalStatus, frozenset[ApprovalStatus]] = {
    ApprovalStatus.NOT_REQUIRED: frozenset(),
    ApprovalStatus.PENDING: frozenset(_APPROVAL_TERMINAL - {ApprovalStatus.NOT_REQUIRED}),
    ApprovalStatus.APPROVED: frozenset(),
    ApprovalStatus.PARTIALLY_APPROVED: frozenset(),
    ApprovalStatus.REJECTED: frozenset(),
    ApprovalStatus.TIMEOUT: frozenset(),
    ApprovalStatus.CANCELLED: frozenset(),
}


def is_terminal_status(status: ToolStatus | ApprovalStatus) -> bool:
    if isinstance(status, ToolStatus):
        return status in _TOOL_TERMINAL
    return status in _APPROVAL_TERMINAL


def allowed_next_tool_statuses(status: ToolStatus) -> frozenset[ToolStatus]:
    return _ALLOWED_TOOL_TRANSITIONS.get(status, frozenset())


def allowed_next_approval_statuses(status: ApprovalStatus) -> frozenset[ApprovalStatus]:
    return _ALLOWED_APPROVAL_TRANSITIONS.get(status, frozenset())


def validate_tool_transition(*, before: ToolStatus, after: ToolStatus) -> None:
    _validate_transition(before=before, after=after, allowed=allowed_next_tool_statuses(before), kind="ToolStatus")


def validate_approval_transition(*, before: ApprovalStatus, after: ApprovalStatus) -> None:
    _validate_transition(
        before=before,
        after=after,
        allowed=allowed_next_approval_statuses(before),
        kind="ApprovalStatus",
    )


def _validate_transition(*, before: StrEnum, after: StrEnum, allowed: Iterable[StrEnum], kind: str) -> None:
    allowed_set = set(allowed)
    if after in allowed_set:
        return
    if before == after:
        raise ValueError(f"Illegal {kind} transition: {before.value} -> {after.value} (no-op not allowed)")
    rendered = ", ".join(s.value for s in sorted(allowed_set, key=lambda s: s.value))
    raise ValueError(f"Illegal {kind} transition: {before.value} -> {after.value} (allowed: {rendered or '∅'})")
