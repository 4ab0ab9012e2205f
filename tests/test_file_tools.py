"""Tests for file tools and their change previews."""

import pytest

from termai.runtime.models import FileOperationType
from termai.runtime.tools import (
    DeleteFileTool,
    DeleteLinesTool,
    EditFileTool,
    InsertLinesTool,
    ReadFileTool,
    ToolExecutionError,
    WriteFileTool,
)
from termai.runtime.tools.diff import change_summary, changed_lines_preview, unified_diff
from termai.runtime.tools.file_tools import apply_delete_lines, apply_insert


class TestLineHelpers:
    def test_insert_before_line(self):
        assert apply_insert("a\nb\nc", 2, "x") == ("a\nx\nb\nc", 1)

    def test_insert_past_end_appends(self):
        assert apply_insert("a\nb", 10, "z") == ("a\nb\nz", 1)

    def test_delete_range_is_clamped(self):
        assert apply_delete_lines("a\nb\nc", 2, 9) == ("a", 2)

    def test_delete_past_end_raises(self):
        with pytest.raises(ValueError, match="exceeds file length"):
            apply_delete_lines("a\nb", 5, 6)


class TestReadFileTool:
    def test_reads_numbered_range(self, workdir):
        (workdir / "a.txt").write_text("one\ntwo\nthree\n", encoding="utf-8")
        result = ReadFileTool().execute(args={"path": "a.txt", "start_line": 2, "end_line": 3}, working_dir=workdir)
        assert result.output == "2| two\n3| three"

    def test_large_file_is_truncated(self, workdir):
        (workdir / "big.txt").write_text("x" * 500, encoding="utf-8")
        result = ReadFileTool(max_chars=100).execute(args={"path": "big.txt"}, working_dir=workdir)
        assert result.output.startswith("File has 1 lines, 500 chars.")
        assert "(400 chars omitted)" in result.output

    def test_missing_file(self, workdir):
        with pytest.raises(ToolExecutionError, match="File not found"):
            ReadFileTool().execute(args={"path": "nope.txt"}, working_dir=workdir)


class TestWriteFileTool:
    def test_create_preview_and_write(self, workdir):
        tool = WriteFileTool()
        args = {"path": "src/new.py", "content": "print(1)\n"}
        change = tool.prepare_change(args, workdir)
        assert change.operation_type is FileOperationType.CREATE
        assert change.before_content is None

        result = tool.execute(args=args, working_dir=workdir)
        assert result.output == "Wrote 9 chars to src/new.py"
        assert (workdir / "src" / "new.py").read_text(encoding="utf-8") == "print(1)\n"

    def test_append(self, workdir):
        (workdir / "log.txt").write_text("a\n", encoding="utf-8")
        tool = WriteFileTool()
        args = {"path": "log.txt", "content": "b\n", "mode": "append"}
        assert tool.prepare_change(args, workdir).after_content == "a\nb\n"
        assert tool.execute(args=args, working_dir=workdir).output == "Appended 2 chars to log.txt"
        assert (workdir / "log.txt").read_text(encoding="utf-8") == "a\nb\n"

    def test_invalid_mode(self, workdir):
        with pytest.raises(ValueError):
            WriteFileTool().execute(args={"path": "x", "content": "", "mode": "truncate"}, working_dir=workdir)

    def test_overwriting_binary_file_is_refused(self, workdir):
        target = workdir / "image.png"
        target.write_bytes(b"\x89PNG\r\n\x1a\n\xff")

        with pytest.raises(ToolExecutionError, match="not valid UTF-8"):
            WriteFileTool().execute(args={"path": "image.png", "content": "text"}, working_dir=workdir)
        assert target.read_bytes() == b"\x89PNG\r\n\x1a\n\xff"


class TestEditFileTool:
    def test_replaces_first_occurrence(self, workdir):
        (workdir / "a.py").write_text("x = 1\nx = 1\n", encoding="utf-8")
        tool = EditFileTool()
        args = {"path": "a.py", "old_text": "x = 1", "new_text": "x = 2"}

        change = tool.prepare_change(args, workdir)
        assert change.after_content == "x = 2\nx = 1\n"

        result = tool.execute(args=args, working_dir=workdir)
        assert result.output.startswith("Replaced 1 occurrence in a.py.")
        assert (workdir / "a.py").read_text(encoding="utf-8") == "x = 2\nx = 1\n"

    def test_replace_all(self, workdir):
        (workdir / "a.py").write_text("x = 1\nx = 1\n", encoding="utf-8")
        result = EditFileTool().execute(
            args={"path": "a.py", "old_text": "x = 1", "new_text": "y", "replace_all": "true"},
            working_dir=workdir,
        )
        assert result.output.startswith("Replaced 2 occurrence(s) in a.py.")

    def test_missing_text(self, workdir):
        (workdir / "a.py").write_text("hello\n", encoding="utf-8")
        tool = EditFileTool()
        args = {"path": "a.py", "old_text": "bye", "new_text": "x"}
        assert tool.prepare_change(args, workdir) is None
        with pytest.raises(ToolExecutionError, match="Text not found in file"):
            tool.execute(args=args, working_dir=workdir)


class TestLineTools:
    def test_insert_lines(self, workdir):
        (workdir / "a.txt").write_text("a\nc", encoding="utf-8")
        result = InsertLinesTool().execute(args={"path": "a.txt", "line_number": 2, "content": "b"}, working_dir=workdir)
        assert result.output.startswith("Inserted 1 line(s) at line 2.")
        assert (workdir / "a.txt").read_text(encoding="utf-8") == "a\nb\nc"

    def test_insert_existing_content_is_skipped(self, workdir):
        (workdir / "a.txt").write_text("import os\n", encoding="utf-8")
        result = InsertLinesTool().execute(
            args={"path": "a.txt", "line_number": 1, "content": "import os"}, working_dir=workdir
        )
        assert result.output.startswith("ALREADY EXISTS")
        assert result.file_change is None

    def test_delete_lines(self, workdir):
        (workdir / "a.txt").write_text("1\n2\n3\n4", encoding="utf-8")
        tool = DeleteLinesTool()
        args = {"path": "a.txt", "start_line": 2, "end_line": 3}
        change = tool.prepare_change(args, workdir)
        assert (change.start_line, change.end_line) == (2, 3)
        assert tool.execute(args=args, working_dir=workdir).output == "Deleted 2 line(s) from a.txt"
        assert (workdir / "a.txt").read_text(encoding="utf-8") == "1\n4"

    def test_delete_lines_rejects_inverted_range(self, workdir):
        (workdir / "a.txt").write_text("1\n2", encoding="utf-8")
        with pytest.raises(ValueError):
            DeleteLinesTool().execute(args={"path": "a.txt", "start_line": 2, "end_line": 1}, working_dir=workdir)


class TestDeleteFileTool:
    def test_always_requires_approval(self):
        assert DeleteFileTool().always_requires_approval is True

    def test_deletes(self, workdir):
        target = workdir / "gone.txt"
        target.write_text("bye", encoding="utf-8")
        tool = DeleteFileTool()
        change = tool.prepare_change({"path": "gone.txt"}, workdir)
        assert change.operation_type is FileOperationType.DELETE
        assert change.before_content == "bye"

        result = tool.execute(args={"path": "gone.txt"}, working_dir=workdir)
        assert result.output == f"Deleted file: {target}"
        assert not target.exists()

    def test_binary_file_is_left_alone(self, workdir):
        target = workdir / "blob.bin"
        target.write_bytes(b"\xff\xfe\x00binary")

        with pytest.raises(ToolExecutionError, match="not valid UTF-8"):
            DeleteFileTool().execute(args={"path": "blob.bin"}, working_dir=workdir)
        assert target.read_bytes() == b"\xff\xfe\x00binary"


class TestDiff:
    def test_summary_and_preview(self):
        diff = unified_diff("a\nb\n", "a\nc\n", path="f.txt")
        assert change_summary("a\nb\n", "a\nc\n", path="f.txt") == "f.txt (+1 -1)"
        assert changed_lines_preview(diff) == ["    2 -b", "    2 +c"]
