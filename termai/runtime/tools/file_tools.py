from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ..models import FileChange, FileOperationType
from .base import (
    ToolExecutionError,
    ToolResult,
    as_bool,
    as_non_empty_str,
    as_positive_int,
    as_str,
    describe_missing,
    read_text_or_none,
    resolve_path,
)

_DEFAULT_MAX_READ_CHARS = 100_000


def _read_existing(path: str, resolved: Path) -> str:
    if not resolved.is_file():
        raise ToolExecutionError(describe_missing(path, resolved))
    try:
        return resolved.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise ToolExecutionError(f"Error reading file: {resolved} is not valid UTF-8 text.") from e
    except OSError as e:
        raise ToolExecutionError(f"Error reading file: {e}") from e


def _write(resolved: Path, content: str, *, verb: str) -> None:
    try:
        resolved.parent.mkdir(parents=True, exist_ok=True)
        resolved.write_text(content, encoding="utf-8")
    except OSError as e:
        raise ToolExecutionError(f"Error {verb} file: {e}") from e


def _numbered(lines: list[str], *, start: int) -> str:
    return "\n".join(f"{start + i}| {line}" for i, line in enumerate(lines))


def _head_tail(text: str, *, max_chars: int, head_ratio: float = 0.6) -> str:
    head = int(max_chars * head_ratio)
    tail = max_chars - head
    omitted = len(text) - head - tail
    return f"{text[:head]}\n\n… ({omitted} chars omitted) …\n\n{text[-tail:]}"


def apply_edit(content: str, old_text: str, new_text: str, *, replace_all: bool) -> tuple[str, int]:
    occurrences = content.count(old_text)
    if replace_all:
        return content.replace(old_text, new_text), occurrences
    return content.replace(old_text, new_text, 1), occurrences


def apply_insert(content: str, line_number: int, insert: str) -> tuple[str, int]:
    lines = content.split("\n")
    index = min(line_number - 1, len(lines))
    new_lines = insert.split("\n")
    lines[index:index] = new_lines
    return "\n".join(lines), len(new_lines)


def apply_delete_lines(content: str, start_line: int, end_line: int) -> tuple[str, int]:
    lines = content.split("\n")
    start = start_line - 1
    if start >= len(lines):
        raise ValueError(f"start_line {start_line} exceeds file length ({len(lines)} lines)")
    end = min(len(lines), end_line)
    del lines[start:end]
    return "\n".join(lines), end - start


@dataclass(frozen=True, slots=True)
class ReadFileTool:
    max_chars: int = _DEFAULT_MAX_READ_CHARS
    name: str = "read_file"
    description: str = "Read the contents of a file. Optional 1-based start_line/end_line select a numbered range."
    supports_preview: bool = False
    always_requires_approval: bool = False
    input_schema: dict[str, Any] = field(
        default_factory=lambda: {
            "type": "object",
            "properties": {
                "path": {"type": "string"},
                "start_line": {"type": "integer", "minimum": 1},
                "end_line": {"type": "integer", "minimum": 1},
            },
            "required": ["path"],
            "additionalProperties": False,
        }
    )

    def prepare_change(self, args: dict[str, Any], working_dir: Path) -> FileChange | None:
        return None

    def execute(self, *, args: dict[str, Any], working_dir: Path) -> ToolResult:
        path = as_non_empty_str(args.get("path"), field_name="path")
        resolved = resolve_path(path, working_dir)
        content = _read_existing(path, resolved)

        if args.get("start_line") is not None:
            start_line = as_positive_int(args.get("start_line"), field_name="start_line")
            lines = content.splitlines()
            if start_line > len(lines):
                raise ValueError(f"Start line {start_line} exceeds file length ({len(lines)} lines)")
            end_raw = args.get("end_line")
            end = min(len(lines), as_positive_int(end_raw, field_name="end_line")) if end_raw is not None else len(lines)
            return ToolResult.ok(_numbered(lines[start_line - 1 : end], start=start_line))

        if len(content) > self.max_chars:
            line_count = len(content.splitlines())
            return ToolResult.ok(
                f"File has {line_count} lines, {len(content)} chars. Use start_line/end_line for specific sections.\n\n"
                + _head_tail(content, max_chars=self.max_chars)
            )
        return ToolResult.ok(content)


@dataclass(frozen=True, slots=True)
class WriteFileTool:
    name: str = "write_file"
    description: str = "Write content to a file, creating it (and parent directories) if needed. mode: overwrite | append."
    supports_preview: bool = True
    always_requires_approval: bool = False
    input_schema: dict[str, Any] = field(
        default_factory=lambda: {
            "type": "object",
            "properties": {
                "path": {"type": "string"},
                "content": {"type": "string"},
                "mode": {"type": "string", "enum": ["overwrite", "append"]},
            },
            "required": ["path", "content"],
            "additionalProperties": False,
        }
    )

    @staticmethod
    def _mode(args: dict[str, Any]) -> str:
        mode = str(args.get("mode") or "overwrite").strip().lower()
        if mode not in {"overwrite", "append"}:
            raise ValueError(f"Invalid 'mode': {mode!r}")
        return mode

    def prepare_change(self, args: dict[str, Any], working_dir: Path) -> FileChange | None:
        path = args.get("path")
        content = args.get("content")
        if not isinstance(path, str) or not path.strip() or not isinstance(content, str):
            return None
        resolved = resolve_path(path.strip(), working_dir)
        # An existing file that cannot be read back could not be restored by a rollback.
        before = _read_existing(path.strip(), resolved) if resolved.exists() else None
        if not resolved.exists():
            op = FileOperationType.CREATE
            after = content
        elif self._mode(args) == "append":
            op = FileOperationType.INSERT
            after = (before or "") + content
        else:
            op = FileOperationType.OVERWRITE
            after = content
        return FileChange(file_path=str(resolved), operation_type=op, before_content=before, after_content=after)

    def execute(self, *, args: dict[str, Any], working_dir: Path) -> ToolResult:
        path = as_non_empty_str(args.get("path"), field_name="path")
        content = as_str(args.get("content"), field_name="content")
        mode = self._mode(args)
        resolved = resolve_path(path, working_dir)
        change = self.prepare_change(args, working_dir)

        if mode == "append" and resolved.exists():
            existing = _read_existing(path, resolved)
            _write(resolved, existing + content, verb="writing")
            return ToolResult.ok(f"Appended {len(content)} chars to {path}", file_change=change)
        _write(resolved, content, verb="writing")
        return ToolResult.ok(f"Wrote {len(content)} chars to {path}", file_change=change)


@dataclass(frozen=True, slots=True)
class EditFileTool:
    name: str = "edit_file"
    description: str = (
        "Replace text in an existing file. old_text must match exactly (including whitespace). "
        "Set replace_all to replace every occurrence."
    )
    supports_preview: bool = True
    always_requires_approval: bool = False
    input_schema: dict[str, Any] = field(
        default_factory=lambda: {
            "type": "object",
            "properties": {
                "path": {"type": "string"},
                "old_text": {"type": "string"},
                "new_text": {"type": "string"},
                "replace_all": {"type": "boolean"},
            },
            "required": ["path", "old_text", "new_text"],
            "additionalProperties": False,
        }
    )

    def prepare_change(self, args: dict[str, Any], working_dir: Path) -> FileChange | None:
        path = args.get("path")
        old_text = args.get("old_text")
        new_text = args.get("new_text")
        if not isinstance(path, str) or not path.strip() or not isinstance(old_text, str) or not old_text:
            return None
        if not isinstance(new_text, str):
            return None
        resolved = resolve_path(path.strip(), working_dir)
        before = read_text_or_none(resolved)
        if before is None or old_text not in before:
            return None
        after, _ = apply_edit(before, old_text, new_text, replace_all=as_bool(args.get("replace_all")))
        return FileChange(
            file_path=str(resolved),
            operation_type=FileOperationType.EDIT,
            before_content=before,
            after_content=after,
            old_text=old_text,
            new_text=new_text,
        )

    def execute(self, *, args: dict[str, Any], working_dir: Path) -> ToolResult:
        path = as_non_empty_str(args.get("path"), field_name="path")
        old_text = args.get("old_text")
        if not isinstance(old_text, str) or not old_text:
            raise ValueError("Missing required argument: old_text (the text to find and replace)")
        new_text = args.get("new_text")
        if not isinstance(new_text, str):
            raise ValueError("Missing required argument: new_text (replacement text, can be empty string to delete)")
        replace_all = as_bool(args.get("replace_all"))

        resolved = resolve_path(path, working_dir)
        content = _read_existing(path, resolved)
        if old_text not in content:
            lines = content.splitlines()
            preview = "\n".join(lines[:10])
            raise ToolExecutionError(
                "Text not found in file. The old_text must match exactly (including whitespace/indentation).\n\n"
                f"File has {len(lines)} lines. First 10 lines:\n{preview}"
            )

        change = self.prepare_change(args, working_dir)
        updated, occurrences = apply_edit(content, old_text, new_text, replace_all=replace_all)
        _write(resolved, updated, verb="editing")

        result_lines = updated.split("\n")
        preview = _numbered(result_lines[:20], start=1)
        suffix = f"\n... ({len(result_lines) - 20} more lines)" if len(result_lines) > 20 else ""
        replaced = f"{occurrences} occurrence(s)" if replace_all else "1 occurrence"
        return ToolResult.ok(f"Replaced {replaced} in {path}.\n\nFile preview:\n{preview}{suffix}", file_change=change)


@dataclass(frozen=True, slots=True)
class InsertLinesTool:
    name: str = "insert_lines"
    description: str = "Insert content before the given 1-based line number of an existing file."
    supports_preview: bool = True
    always_requires_approval: bool = False
    input_schema: dict[str, Any] = field(
        default_factory=lambda: {
            "type": "object",
            "properties": {
                "path": {"type": "string"},
                "line_number": {"type": "integer", "minimum": 1},
                "content": {"type": "string"},
            },
            "required": ["path", "line_number", "content"],
            "additionalProperties": False,
        }
    )

    def prepare_change(self, args: dict[str, Any], working_dir: Path) -> FileChange | None:
        path = args.get("path")
        content = args.get("content")
        if not isinstance(path, str) or not path.strip() or not isinstance(content, str):
            return None
        try:
            line_number = as_positive_int(args.get("line_number"), field_name="line_number")
        except ValueError:
            return None
        resolved = resolve_path(path.strip(), working_dir)
        before = read_text_or_none(resolved)
        if before is None:
            return None
        after, _ = apply_insert(before, line_number, content)
        return FileChange(
            file_path=str(resolved),
            operation_type=FileOperationType.INSERT,
            before_content=before,
            after_content=after,
            start_line=line_number,
        )

    def execute(self, *, args: dict[str, Any], working_dir: Path) -> ToolResult:
        path = as_non_empty_str(args.get("path"), field_name="path")
        line_number = as_positive_int(args.get("line_number"), field_name="line_number")
        insert = as_str(args.get("content"), field_name="content")
        resolved = resolve_path(path, working_dir)
        content = _read_existing(path, resolved)

        normalized = insert.strip()
        if normalized and normalized in content:
            return ToolResult.ok(
                "ALREADY EXISTS: The content you're trying to insert already exists in the file. "
                "No changes made. Use read_file to verify the current state."
            )

        change = self.prepare_change(args, working_dir)
        updated, inserted = apply_insert(content, line_number, insert)
        _write(resolved, updated, verb="inserting lines in")

        lines = updated.split("\n")
        index = min(line_number - 1, len(content.split("\n")))
        start = max(0, index - 2)
        end = min(len(lines), index + inserted + 2)
        preview = _numbered(lines[start:end], start=start + 1)
        return ToolResult.ok(
            f"Inserted {inserted} line(s) at line {line_number}.\n\nPreview around insertion:\n{preview}",
            file_change=change,
        )


@dataclass(frozen=True, slots=True)
class DeleteLinesTool:
    name: str = "delete_lines"
    description: str = "Delete the inclusive 1-based line range start_line..end_line from an existing file."
    supports_preview: bool = True
    always_requires_approval: bool = False
    input_schema: dict[str, Any] = field(
        default_factory=lambda: {
            "type": "object",
            "properties": {
                "path": {"type": "string"},
                "start_line": {"type": "integer", "minimum": 1},
                "end_line": {"type": "integer", "minimum": 1},
            },
            "required": ["path", "start_line", "end_line"],
            "additionalProperties": False,
        }
    )

    @staticmethod
    def _range(args: dict[str, Any]) -> tuple[int, int]:
        start_line = as_positive_int(args.get("start_line"), field_name="start_line")
        end_line = as_positive_int(args.get("end_line"), field_name="end_line")
        if end_line < start_line:
            raise ValueError("Missing or invalid 'end_line' (must be >= start_line).")
        return start_line, end_line

    def prepare_change(self, args: dict[str, Any], working_dir: Path) -> FileChange | None:
        path = args.get("path")
        if not isinstance(path, str) or not path.strip():
            return None
        try:
            start_line, end_line = self._range(args)
        except ValueError:
            return None
        resolved = resolve_path(path.strip(), working_dir)
        before = read_text_or_none(resolved)
        if before is None:
            return None
        try:
            after, _ = apply_delete_lines(before, start_line, end_line)
        except ValueError:
            return None
        return FileChange(
            file_path=str(resolved),
            operation_type=FileOperationType.DELETE_LINES,
            before_content=before,
            after_content=after,
            start_line=start_line,
            end_line=end_line,
        )

    def execute(self, *, args: dict[str, Any], working_dir: Path) -> ToolResult:
        path = as_non_empty_str(args.get("path"), field_name="path")
        start_line, end_line = self._range(args)
        resolved = resolve_path(path, working_dir)
        content = _read_existing(path, resolved)

        change = self.prepare_change(args, working_dir)
        updated, deleted = apply_delete_lines(content, start_line, end_line)
        _write(resolved, updated, verb="deleting lines in")
        return ToolResult.ok(f"Deleted {deleted} line(s) from {path}", file_change=change)


@dataclass(frozen=True, slots=True)
class DeleteFileTool:
    name: str = "delete_file"
    description: str = "Delete a file. Always asks the user for confirmation."
    supports_preview: bool = True
    always_requires_approval: bool = True
    input_schema: dict[str, Any] = field(
        default_factory=lambda: {
            "type": "object",
            "properties": {"path": {"type": "string"}},
            "required": ["path"],
            "additionalProperties": False,
        }
    )

    def prepare_change(self, args: dict[str, Any], working_dir: Path) -> FileChange | None:
        path = args.get("path")
        if not isinstance(path, str) or not path.strip():
            return None
        resolved = resolve_path(path.strip(), working_dir)
        if not resolved.is_file():
            return None
        return FileChange(
            file_path=str(resolved),
            operation_type=FileOperationType.DELETE,
            before_content=_read_existing(path.strip(), resolved),
            after_content=None,
        )

    def execute(self, *, args: dict[str, Any], working_dir: Path) -> ToolResult:
        path = as_non_empty_str(args.get("path"), field_name="path")
        resolved = resolve_path(path, working_dir)
        if not resolved.is_file():
            raise ToolExecutionError(describe_missing(path, resolved))
        change = self.prepare_change(args, working_dir)
        try:
            resolved.unlink()
        except OSError as e:
            raise ToolExecutionError(f"Error deleting file: {e}") from e
        return ToolResult.ok(f"Deleted file: {resolved}", file_change=change)


def default_file_tools() -> list[Any]:
    return [ReadFileTool(), WriteFileTool(), EditFileTool(), InsertLinesTool(), DeleteLinesTool(), DeleteFileTool()]
