from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

from ..models import FileChange


class ToolExecutionError(RuntimeError):
    pass


@dataclass(frozen=True, slots=True)
class ToolResult:
    success: bool
    output: str = ""
    error: str | None = None
    file_change: FileChange | None = None

    @classmethod
    def ok(cls, output: str, *, file_change: FileChange | None = None) -> ToolResult:
        return cls(success=True, output=output, file_change=file_change)

    @classmethod
    def failure(cls, error: str, *, output: str = "", file_change: FileChange | None = None) -> ToolResult:
        return cls(success=False, output=output, error=error, file_change=file_change)

    @property
    def message(self) -> str:
        return self.output if self.success else (self.error or self.output)


class Tool(Protocol):
    name: str
    description: str
    input_schema: dict[str, Any]
    supports_preview: bool
    always_requires_approval: bool

    def prepare_change(self, args: dict[str, Any], working_dir: Path) -> FileChange | None: ...

    def execute(self, *, args: dict[str, Any], working_dir: Path) -> ToolResult: ...


def resolve_path(path: str, working_dir: Path | str) -> Path:
    """Resolve `~`, absolute, and working-directory-relative paths."""

    p = Path(path).expanduser()
    if p.is_absolute():
        return p
    return Path(working_dir).expanduser() / p


def as_non_empty_str(value: Any, *, field_name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"Missing or invalid '{field_name}' (expected non-empty string).")
    return value.strip()


def as_str(value: Any, *, field_name: str) -> str:
    if not isinstance(value, str):
        raise ValueError(f"Missing or invalid '{field_name}' (expected string).")
    return value


def as_positive_int(value: Any, *, field_name: str) -> int:
    if isinstance(value, bool):
        raise ValueError(f"Missing or invalid '{field_name}' (must be >= 1).")
    try:
        number = int(value)
    except (TypeError, ValueError) as e:
        raise ValueError(f"Missing or invalid '{field_name}' (must be >= 1).") from e
    if number < 1:
        raise ValueError(f"Missing or invalid '{field_name}' (must be >= 1).")
    return number


def as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return bool(value)


def read_text_or_none(path: Path) -> str | None:
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError):
        return None


def describe_missing(path: str, resolved: Path) -> str:
    if path != str(resolved):
        return (
            f"File not found: '{path}' (resolved to: '{resolved}'). "
            "Use an absolute path like '/full/path/to/file' if CWD is unknown."
        )
    return f"File not found: '{path}'. Use an absolute path if needed."
