from __future__ import annotations

from collections.abc import Iterable

from .settings import AgentSettings


def _normalize(command: str) -> str:
    return command.strip().lower()


def is_destructive_command(command: str, patterns: Iterable[str]) -> bool:
    """
    Match a command against blocked patterns.

    A pattern matches when the command equals it, starts with it followed by
    whitespace, contains it (multi-word patterns such as `git push --force`), or
    starts with it when the pattern itself ends in a space (`dd `).
    """

    trimmed = _normalize(command)
    for pattern in patterns:
        lower = pattern.lower()
        if not lower.strip():
            continue
        if trimmed == lower:
            return True
        if trimmed.startswith(lower + " ") or trimmed.startswith(lower + "\t"):
            return True
        if " " in lower.strip() and lower in trimmed:
            return True
        if lower.endswith(" ") and trimmed.startswith(lower):
            return True
    return False


def is_read_only_command(command: str, prefixes: Iterable[str]) -> bool:
    trimmed = _normalize(command)
    return any(trimmed.startswith(prefix.lower()) for prefix in prefixes)


def should_auto_approve(command: str, settings: AgentSettings) -> bool:
    if is_destructive_command(command, settings.blocked_command_patterns):
        return False
    if not settings.require_command_approval:
        return True
    if settings.auto_approve_read_only and is_read_only_command(command, settings.read_only_command_prefixes):
        return True
    return False


def requires_command_approval(command: str, settings: AgentSettings) -> bool:
    # Destructive commands are gated regardless of settings.
    if is_destructive_command(command, settings.blocked_command_patterns):
        return True
    return not should_auto_approve(command, settings)
