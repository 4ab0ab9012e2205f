from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from ..ids import new_id, now_ts_ms
from .chat import FileChange

MESSAGE_PREVIEW_CHARS = 100


class FileSnapshot(BaseModel):
    """Original state of one path before the first mutation inside a checkpoint."""

    model_config = ConfigDict(frozen=True)

    path: str
    content_before: str | None = None
    was_created: bool = False
    timestamp: int = Field(default_factory=now_ts_ms)

    @property
    def file_name(self) -> str:
        return Path(self.path).name


class Checkpoint(BaseModel):
    id: str = Field(default_factory=lambda: new_id("cp"))
    message_index: int = Field(ge=0)
    message_preview: str = ""
    timestamp: int = Field(default_factory=now_ts_ms)
    file_snapshots: dict[str, FileSnapshot] = Field(default_factory=dict)
    shell_commands_run: list[str] = Field(default_factory=list)

    @classmethod
    def anchored_at(cls, message_index: int, message_preview: str) -> Checkpoint:
        return cls(message_index=message_index, message_preview=message_preview[:MESSAGE_PREVIEW_CHARS])

    @property
    def has_changes(self) -> bool:
        return bool(self.file_snapshots) or bool(self.shell_commands_run)

    @property
    def modified_file_count(self) -> int:
        return len(self.file_snapshots)

    @property
    def modified_file_paths(self) -> list[str]:
        return sorted(self.file_snapshots)

    @property
    def created_files(self) -> list[str]:
        return sorted(p for p, s in self.file_snapshots.items() if s.was_created)

    @property
    def modified_files(self) -> list[str]:
        return sorted(p for p, s in self.file_snapshots.items() if not s.was_created)

    @property
    def short_description(self) -> str:
        parts: list[str] = []
        if self.file_snapshots:
            parts.append(f"{len(self.file_snapshots)} file(s)")
        if self.shell_commands_run:
            parts.append(f"{len(self.shell_commands_run)} command(s)")
        return ", ".join(parts) if parts else "No changes"

    def record_snapshot(self, snapshot: FileSnapshot) -> bool:
        # First write wins: later snapshots of the same path are ignored.
        if snapshot.path in self.file_snapshots:
            return False
        self.file_snapshots[snapshot.path] = snapshot
        return True


@dataclass(frozen=True, slots=True)
class RollbackResult:
    success: bool
    restored_files: list[str] = field(default_factory=list)
    failed_files: list[tuple[str, str]] = field(default_factory=list)
    messages_removed: int = 0
    shell_commands_warning: list[str] = field(default_factory=list)

    @property
    def summary(self) -> str:
        parts: list[str] = []
        if self.restored_files:
            parts.append(f"Restored {len(self.restored_files)} file(s).")
        if self.failed_files:
            parts.append(f"Failed to restore {len(self.failed_files)} file(s).")
        if self.messages_removed > 0:
            parts.append(f"Removed {self.messages_removed} message(s).")
        return " ".join(parts) if parts else "No changes made"


class CheckpointActionKind(StrEnum):
    ROLLBACK = "rollback"
    EDIT_AND_ROLLBACK = "edit_and_rollback"
    EDIT_AND_KEEP_CHANGES = "edit_and_keep_changes"


@dataclass(frozen=True, slots=True)
class CheckpointAction:
    kind: CheckpointActionKind
    new_prompt: str | None = None

    @classmethod
    def rollback(cls) -> CheckpointAction:
        return cls(kind=CheckpointActionKind.ROLLBACK)

    @classmethod
    def edit_and_rollback(cls, new_prompt: str) -> CheckpointAction:
        return cls(kind=CheckpointActionKind.EDIT_AND_ROLLBACK, new_prompt=new_prompt)

    @classmethod
    def edit_and_keep_changes(cls, new_prompt: str) -> CheckpointAction:
        return cls(kind=CheckpointActionKind.EDIT_AND_KEEP_CHANGES, new_prompt=new_prompt)


@dataclass(frozen=True, slots=True)
class DiffHistoryEntry:
    file_change: FileChange
    checkpoint_id: str | None
    sequence_number: int

    @property
    def id(self) -> str:
        return self.file_change.id
