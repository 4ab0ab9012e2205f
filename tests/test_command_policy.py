"""Tests for shell command approval policy."""

from dataclasses import replace

from termai.runtime.command_policy import (
    is_destructive_command,
    is_read_only_command,
    requires_command_approval,
    should_auto_approve,
)
from termai.runtime.settings import DEFAULT_BLOCKED_COMMAND_PATTERNS, AgentSettings


class TestDestructiveMatching:
    def test_exact_and_prefixed(self):
        assert is_destructive_command("rm", DEFAULT_BLOCKED_COMMAND_PATTERNS)
        assert is_destructive_command("rm -rf build", DEFAULT_BLOCKED_COMMAND_PATTERNS)
        assert is_destructive_command("  SUDO apt update", DEFAULT_BLOCKED_COMMAND_PATTERNS)

    def test_multi_word_pattern_contained(self):
        assert is_destructive_command("cd repo && git push --force origin main", DEFAULT_BLOCKED_COMMAND_PATTERNS)
        assert is_destructive_command("psql -c 'drop table users'", DEFAULT_BLOCKED_COMMAND_PATTERNS)

    def test_not_a_word_prefix(self):
        assert not is_destructive_command("rmate notes.txt", DEFAULT_BLOCKED_COMMAND_PATTERNS)
        assert not is_destructive_command("ls -la", DEFAULT_BLOCKED_COMMAND_PATTERNS)

    def test_trailing_space_pattern(self):
        assert is_destructive_command("dd if=/dev/zero of=disk.img", DEFAULT_BLOCKED_COMMAND_PATTERNS)
        assert not is_destructive_command("git add file", DEFAULT_BLOCKED_COMMAND_PATTERNS)


class TestReadOnly:
    def test_prefix_match(self):
        prefixes = AgentSettings().read_only_command_prefixes
        assert is_read_only_command("git status --short", prefixes)
        assert is_read_only_command("ls", prefixes)
        assert not is_read_only_command("make build", prefixes)


class TestApprovalDecision:
    def test_defaults_run_everything_but_destructive(self):
        settings = AgentSettings()
        assert should_auto_approve("make test", settings)
        assert not requires_command_approval("make test", settings)
        assert requires_command_approval("rm -rf /tmp/x", settings)

    def test_destructive_gated_even_when_read_only_auto_approval_on(self):
        settings = AgentSettings(require_command_approval=True, auto_approve_read_only=True)
        assert not requires_command_approval("cat README.md", settings)
        assert requires_command_approval("rm -rf build", settings)
        assert requires_command_approval("make build", settings)

    def test_read_only_needs_approval_when_auto_off(self):
        settings = replace(AgentSettings(require_command_approval=True), auto_approve_read_only=False)
        assert requires_command_approval("ls", settings)
