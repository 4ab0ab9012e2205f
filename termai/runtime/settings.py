from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


DEFAULT_BLOCKED_COMMAND_PATTERNS: tuple[str, ...] = (
    # File/directory deletion
    "rm",
    "rmdir",
    "unlink",
    # Elevated privileges
    "sudo",
    "su ",
    "doas",
    # Permission/ownership changes
    "chmod",
    "chown",
    "chgrp",
    # Git history rewrites
    "git push --force",
    "git push -f",
    "git reset --hard",
    "git clean -fd",
    "git clean -f",
    "git checkout -- .",
    "mv /",
    "cp /dev/",
    # Disks
    "dd ",
    "mkfs",
    "fdisk",
    "diskutil eraseDisk",
    "diskutil partitionDisk",
    # Processes and power
    "kill ",
    "killall ",
    "pkill ",
    "shutdown",
    "reboot",
    "halt",
    # Package removal
    "brew uninstall",
    "brew remove",
    "pip uninstall",
    "npm uninstall -g",
    "apt remove",
    "apt purge",
    # SQL
    "DROP DATABASE",
    "DROP TABLE",
    "TRUNCATE",
    "DELETE FROM",
)

DEFAULT_READ_ONLY_PREFIXES: tuple[str, ...] = (
    "ls", "cat", "head", "tail", "less", "more", "grep", "find", "which", "where",
    "pwd", "whoami", "hostname", "uname", "date", "cal", "echo", "printf",
    "wc", "file", "stat", "du", "df", "free", "top", "ps", "env", "printenv",
    "git status", "git log", "git diff", "git show", "git branch",
    "docker ps", "docker images", "docker logs",
    "brew list", "brew info", "brew search",
    "npm list", "npm info", "npm search",
    "pip list", "pip show",
    "cargo --version", "rustc --version",
    "python --version", "node --version", "swift --version",
)  # fmt: skip


@dataclass(frozen=True, slots=True)
class AgentSettings:
    """
    Approval and timing policy for one session.

    Passed explicitly to the approval gate, the tool pipeline and the session.
    """

    require_file_edit_approval: bool = False
    require_command_approval: bool = False
    auto_approve_read_only: bool = True
    blocked_command_patterns: tuple[str, ...] = DEFAULT_BLOCKED_COMMAND_PATTERNS
    read_only_command_prefixes: tuple[str, ...] = DEFAULT_READ_ONLY_PREFIXES

    approval_timeout_s: float = 300.0
    approval_poll_interval_s: float = 0.5
    command_timeout_s: float = 300.0
    stream_update_interval_s: float = 0.05

    notify_on_approval: bool = True

    native_tools_enabled: bool = True
    # 0 means no limit.
    max_tool_iterations: int = 25

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> AgentSettings:
        if not isinstance(raw, dict):
            raise ValueError("Agent settings must be a JSON object.")
        known = {f.name for f in fields(cls)}
        kwargs: dict[str, Any] = {}
        for key, value in raw.items():
            if key not in known:
                logger.debug("Ignoring unknown agent setting %r", key)
                continue
            if key in {"blocked_command_patterns", "read_only_command_prefixes"}:
                if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
                    raise ValueError(f"Invalid '{key}' (expected list of strings).")
                value = tuple(v for v in value if v.strip())
            elif key == "max_tool_iterations":
                if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                    raise ValueError(f"Invalid '{key}' (expected a non-negative integer).")
            elif key.endswith("_s"):
                value = float(value)
                if value <= 0:
                    raise ValueError(f"'{key}' must be positive.")
            elif not isinstance(value, bool):
                raise ValueError(f"Invalid '{key}' (expected true or false).")
            kwargs[key] = value
        return cls(**kwargs)

    def to_dict(self) -> dict[str, Any]:
        out = asdict(self)
        out["blocked_command_patterns"] = list(self.blocked_command_patterns)
        out["read_only_command_prefixes"] = list(self.read_only_command_prefixes)
        return out


def load_settings(path: Path | None) -> AgentSettings:
    if path is None or not path.exists():
        return AgentSettings()
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in settings file {str(path)!r}: {e}") from e
    return AgentSettings.from_dict(raw)
