from __future__ import annotations

from enum import StrEnum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..ids import new_id, now_ts_ms
from .status import ToolStatus


class ChatRole(StrEnum):
    USER = "user"
    ASSISTANT = "assistant"


class AgentEventKind(StrEnum):
    STATUS = "status"
    STEP = "step"
    FILE_CHANGE = "file_change"
    COMMAND_APPROVAL = "command_approval"
    CHECKLIST = "checklist"
    PLAN_CREATED = "plan_created"
    MODE_SWITCH = "mode_switch"


class FileOperationType(StrEnum):
    CREATE = "create"
    EDIT = "edit"
    INSERT = "insert"
    DELETE_LINES = "delete_lines"
    OVERWRITE = "overwrite"
    DELETE = "delete"

    @property
    def description(self) -> str:
        return _OPERATION_DESCRIPTIONS[self]


_OPERATION_DESCRIPTIONS: dict[FileOperationType, str] = {
    FileOperationType.CREATE: "New file",
    FileOperationType.EDIT: "Edit file",
    FileOperationType.INSERT: "Insert lines",
    FileOperationType.DELETE_LINES: "Delete lines",
    FileOperationType.OVERWRITE: "Overwrite file",
    FileOperationType.DELETE: "Delete file",
}


class FileChange(BaseModel):
    """A proposed or applied mutation of one file. Replace, never mutate."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: new_id("chg"))
    file_path: str
    operation_type: FileOperationType
    before_content: str | None = None
    after_content: str | None = None
    timestamp: int = Field(default_factory=now_ts_ms)
    old_text: str | None = None
    new_text: str | None = None
    start_line: int | None = Field(default=None, ge=1)
    end_line: int | None = Field(default=None, ge=1)

    @field_validator("file_path")
    @classmethod
    def _validate_file_path(cls, v: str) -> str:
        cleaned = v.strip() if isinstance(v, str) else ""
        if not cleaned:
            raise ValueError("file_path must be a non-empty string.")
        return cleaned

    @property
    def file_name(self) -> str:
        return Path(self.file_path).name

    @property
    def is_creation(self) -> bool:
        return self.operation_type is FileOperationType.CREATE

    def with_after_content(self, after_content: str) -> FileChange:
        return self.model_copy(update={"after_content": after_content})


class AgentEvent(BaseModel):
    kind: AgentEventKind | str
    title: str
    details: str | None = None
    command: str | None = None
    output: str | None = None
    collapsed: bool = True
    checklist_items: list[str] | None = None
    file_change: FileChange | None = None
    pending_approval_id: str | None = None
    pending_tool_name: str | None = None
    tool_call_id: str | None = None
    tool_status: ToolStatus | None = None
    is_internal: bool = False
    event_category: str | None = None

    @property
    def awaiting_approval(self) -> bool:
        return self.pending_approval_id is not None


class ToolInvocation(BaseModel):
    """A tool call made by the model in an assistant turn, with the result sent back for it."""

    id: str
    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)
    result: str | None = None
    is_error: bool = False

    @property
    def completed(self) -> bool:
        return self.result is not None


class ChatTurn(BaseModel):
    id: str = Field(default_factory=lambda: new_id("turn"))
    role: ChatRole
    content: str = ""
    timestamp: int = Field(default_factory=now_ts_ms)
    agent_event: AgentEvent | None = None
    attached_contexts: list[str] = Field(default_factory=list)
    tool_calls: list[ToolInvocation] = Field(default_factory=list)

    @property
    def is_user(self) -> bool:
        return self.role is ChatRole.USER
