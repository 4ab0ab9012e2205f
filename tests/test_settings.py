"""Tests for AgentSettings and ModelProfile configuration."""

import json

import pytest

from termai.runtime.llm.errors import ModelConfigError
from termai.runtime.llm.types import CredentialRef, ModelProfile, ProviderKind
from termai.runtime.settings import AgentSettings, load_settings


class TestAgentSettings:
    def test_defaults(self):
        settings = AgentSettings()
        assert settings.require_file_edit_approval is False
        assert settings.require_command_approval is False
        assert settings.auto_approve_read_only is True
        assert settings.approval_timeout_s == 300.0
        assert settings.approval_poll_interval_s == 0.5

    def test_from_dict_ignores_unknown_and_validates(self):
        settings = AgentSettings.from_dict({"require_command_approval": True, "theme": "dark"})
        assert settings.require_command_approval is True
        with pytest.raises(ValueError):
            AgentSettings.from_dict({"approval_timeout_s": 0})
        with pytest.raises(ValueError):
            AgentSettings.from_dict({"blocked_command_patterns": "rm"})

    def test_flags_must_be_booleans(self):
        with pytest.raises(ValueError, match="expected true or false"):
            AgentSettings.from_dict({"require_command_approval": "false"})
        with pytest.raises(ValueError):
            AgentSettings.from_dict({"native_tools_enabled": 1})
        assert AgentSettings.from_dict({"native_tools_enabled": False}).native_tools_enabled is False

    def test_max_tool_iterations(self):
        assert AgentSettings().max_tool_iterations == 25
        assert AgentSettings.from_dict({"max_tool_iterations": 0}).max_tool_iterations == 0
        assert AgentSettings.from_dict({"max_tool_iterations": 3}).max_tool_iterations == 3
        for bad in (-1, True, "3", 2.5):
            with pytest.raises(ValueError, match="non-negative integer"):
                AgentSettings.from_dict({"max_tool_iterations": bad})

    def test_round_trip_through_file(self, tmp_path):
        path = tmp_path / "settings.json"
        path.write_text(json.dumps(AgentSettings(require_file_edit_approval=True).to_dict()))
        assert load_settings(path).require_file_edit_approval is True
        assert load_settings(tmp_path / "missing.json") == AgentSettings()

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "settings.json"
        path.write_text("{nope")
        with pytest.raises(ValueError):
            load_settings(path)


class TestModelProfile:
    def test_cloud_profile_defaults_to_env_credential(self):
        profile = ModelProfile.from_dict({"provider": "anthropic", "model": "claude-sonnet-4"})
        assert profile.provider_kind is ProviderKind.ANTHROPIC
        assert profile.credential_ref == CredentialRef(kind="env", identifier="ANTHROPIC_API_KEY")
        assert profile.effective_base_url == "https://api.anthropic.com/v1"

    def test_local_profile_needs_no_credential(self):
        profile = ModelProfile.from_dict({"provider_kind": "local", "model": "qwen2.5", "base_url": "http://box:8080/v1/"})
        assert profile.credential_ref is None
        assert profile.effective_base_url == "http://box:8080/v1"

    def test_rejects_unknown_provider_and_missing_model(self):
        with pytest.raises(ModelConfigError):
            ModelProfile.from_dict({"provider": "acme", "model": "x"})
        with pytest.raises(ModelConfigError):
            ModelProfile.from_dict({"provider": "openai"})
