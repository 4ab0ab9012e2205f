from __future__ import annotations

from .base import Tool, ToolExecutionError, ToolResult, resolve_path
from .catalog import SHELL_TOOL_NAME, ToolCatalog, result_for_model, shell_tool_spec
from .file_tools import (
    DeleteFileTool,
    DeleteLinesTool,
    EditFileTool,
    InsertLinesTool,
    ReadFileTool,
    WriteFileTool,
    default_file_tools,
)
from .pipeline import ToolExecutionPipeline, remap_args_for_partial_approval

__all__ = [
    "SHELL_TOOL_NAME",
    "DeleteFileTool",
    "DeleteLinesTool",
    "EditFileTool",
    "InsertLinesTool",
    "ReadFileTool",
    "Tool",
    "ToolExecutionError",
    "ToolCatalog",
    "ToolExecutionPipeline",
    "ToolResult",
    "WriteFileTool",
    "default_file_tools",
    "remap_args_for_partial_approval",
    "resolve_path",
    "result_for_model",
    "shell_tool_spec",
]
