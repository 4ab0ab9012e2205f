from __future__ import annotations

from .chat import AgentEvent, AgentEventKind, ChatRole, ChatTurn, FileChange, FileOperationType, ToolInvocation
from .checkpoint import (
    Checkpoint,
    CheckpointAction,
    CheckpointActionKind,
    DiffHistoryEntry,
    FileSnapshot,
    RollbackResult,
)
from .status import ApprovalStatus, ToolStatus

__all__ = [
    "AgentEvent",
    "AgentEventKind",
    "ApprovalStatus",
    "ChatRole",
    "ChatTurn",
    "Checkpoint",
    "CheckpointAction",
    "CheckpointActionKind",
    "DiffHistoryEntry",
    "FileChange",
    "FileOperationType",
    "FileSnapshot",
    "RollbackResult",
    "ToolInvocation",
    "ToolStatus",
]
