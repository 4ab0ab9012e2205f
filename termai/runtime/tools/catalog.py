from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from ..llm.types import ToolCall, ToolSpec
from .base import Tool, ToolResult, resolve_path
from .file_tools import default_file_tools
from .pipeline import ToolExecutionPipeline

logger = logging.getLogger(__name__)

SHELL_TOOL_NAME = "shell"


def shell_tool_spec() -> ToolSpec:
    return ToolSpec(
        name=SHELL_TOOL_NAME,
        description=(
            "Run a shell command in the user's terminal and return its output. "
            "Destructive commands ask the user for approval first."
        ),
        input_schema={
            "type": "object",
            "properties": {
                "command": {"type": "string"},
                "cwd": {"type": "string", "description": "Working directory; defaults to the session directory."},
            },
            "required": ["command"],
            "additionalProperties": False,
        },
    )


class ToolCatalog:
    """
    The tools offered to the model, and the routing of its calls through the pipeline.

    File tools go through `ToolExecutionPipeline.execute`; the shell tool goes through
    `execute_shell_command`. A call to an unknown tool yields a failed result for the model.
    """

    def __init__(self, tools: list[Tool] | None = None, *, include_shell: bool = True) -> None:
        self._tools: dict[str, Tool] = {}
        for tool in default_file_tools() if tools is None else tools:
            if tool.name in self._tools or tool.name == SHELL_TOOL_NAME:
                raise ValueError(f"Duplicate tool name: {tool.name}")
            self._tools[tool.name] = tool
        self._include_shell = include_shell

    def names(self) -> list[str]:
        names = list(self._tools)
        if self._include_shell:
            names.append(SHELL_TOOL_NAME)
        return names

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def specs(self) -> list[ToolSpec]:
        specs = [ToolSpec(name=t.name, description=t.description, input_schema=t.input_schema) for t in self._tools.values()]
        if self._include_shell:
            specs.append(shell_tool_spec())
        return specs

    async def run(self, call: ToolCall, *, pipeline: ToolExecutionPipeline, working_dir: Path) -> ToolResult:
        if call.name == SHELL_TOOL_NAME and self._include_shell:
            return await _run_shell(call, pipeline=pipeline, working_dir=working_dir)
        tool = self.get(call.name)
        if tool is None:
            logger.warning("Model called unknown tool %r", call.name)
            return ToolResult.failure(f"Unknown tool: {call.name}. Available tools: {', '.join(self.names())}")
        return await pipeline.execute(tool, dict(call.arguments), working_dir, tool_call_id=call.id)


async def _run_shell(call: ToolCall, *, pipeline: ToolExecutionPipeline, working_dir: Path) -> ToolResult:
    args: dict[str, Any] = call.arguments
    command = args.get("command")
    if not isinstance(command, str) or not command.strip():
        return ToolResult.failure("Missing or invalid 'command' (expected non-empty string).")
    cwd = args.get("cwd")
    target = resolve_path(cwd.strip(), working_dir) if isinstance(cwd, str) and cwd.strip() else working_dir
    return await pipeline.execute_shell_command(command.strip(), target, tool_call_id=call.id)


def result_for_model(result: ToolResult) -> str:
    """Render a tool result as the text sent back to the model."""

    if result.success:
        return result.output or "(no output)"
    text = f"ERROR: {result.error or 'Unknown error'}"
    if result.output:
        text += f"\n{result.output}"
    return text
