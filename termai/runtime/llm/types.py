from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from .errors import ModelConfigError


class ProviderKind(StrEnum):
    LOCAL = "local"
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GOOGLE = "google"

    @property
    def display_name(self) -> str:
        return _DISPLAY_NAMES[self]

    @property
    def is_cloud(self) -> bool:
        return self is not ProviderKind.LOCAL


_DISPLAY_NAMES: dict[ProviderKind, str] = {
    ProviderKind.LOCAL: "Local",
    ProviderKind.OPENAI: "OpenAI",
    ProviderKind.ANTHROPIC: "Anthropic",
    ProviderKind.GOOGLE: "Google",
}

DEFAULT_BASE_URLS: dict[ProviderKind, str] = {
    ProviderKind.LOCAL: "http://localhost:11434/v1",
    ProviderKind.OPENAI: "https://api.openai.com/v1",
    ProviderKind.ANTHROPIC: "https://api.anthropic.com/v1",
    ProviderKind.GOOGLE: "https://generativelanguage.googleapis.com/v1beta",
}

DEFAULT_API_KEY_ENV: dict[ProviderKind, str] = {
    ProviderKind.OPENAI: "OPENAI_API_KEY",
    ProviderKind.ANTHROPIC: "ANTHROPIC_API_KEY",
    ProviderKind.GOOGLE: "GOOGLE_API_KEY",
}


class MessageRole(StrEnum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


@dataclass(frozen=True, slots=True)
class CredentialRef:
    kind: str
    identifier: str

    def to_redacted_string(self) -> str:
        if self.kind == "env":
            return f"env:{self.identifier}"
        return f"{self.kind}:***"

    @classmethod
    def from_value(cls, value: Any) -> CredentialRef | None:
        if value is None:
            return None
        if isinstance(value, CredentialRef):
            return value
        if isinstance(value, dict):
            kind = str(value.get("kind") or "").strip()
            identifier = str(value.get("identifier") or "").strip()
            if not kind:
                raise ModelConfigError("credential_ref.kind must be a non-empty string.")
            return cls(kind=kind, identifier=identifier)
        if isinstance(value, str) and value.strip():
            raw = value.strip()
            if raw.startswith("env:"):
                return cls(kind="env", identifier=raw[len("env:") :])
            return cls(kind="inline", identifier=raw)
        raise ModelConfigError("credential_ref must be a string or an object with 'kind' and 'identifier'.")


@dataclass(frozen=True, slots=True)
class ModelProfile:
    provider_kind: ProviderKind
    model_name: str
    base_url: str | None = None
    credential_ref: CredentialRef | None = None
    temperature: float = 0.7
    max_tokens: int = 4096
    timeout_s: float | None = 120.0
    reasoning_effort: str | None = None

    @property
    def effective_base_url(self) -> str:
        base = self.base_url or DEFAULT_BASE_URLS[self.provider_kind]
        return base.rstrip("/")

    @property
    def supports_reasoning(self) -> bool:
        name = self.model_name.lower()
        if self.provider_kind is ProviderKind.OPENAI:
            return name.startswith(("o1", "o3", "o4", "gpt-5"))
        if self.provider_kind is ProviderKind.ANTHROPIC:
            return "claude-3-7" in name or "claude-sonnet-4" in name or "claude-opus-4" in name
        return False

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> ModelProfile:
        if not isinstance(raw, dict):
            raise ModelConfigError("Model profile must be an object.")
        try:
            kind = ProviderKind(str(raw.get("provider_kind") or raw.get("provider") or "").strip().lower())
        except ValueError as e:
            raise ModelConfigError(f"Unsupported provider_kind: {raw.get('provider_kind')!r}") from e
        model_name = raw.get("model_name") or raw.get("model")
        if not isinstance(model_name, str) or not model_name.strip():
            raise ModelConfigError("Model profile requires a non-empty 'model'.")

        credential_ref = CredentialRef.from_value(raw.get("credential_ref") or raw.get("api_key"))
        if credential_ref is None and kind in DEFAULT_API_KEY_ENV:
            credential_ref = CredentialRef(kind="env", identifier=DEFAULT_API_KEY_ENV[kind])

        base_url = raw.get("base_url")
        if base_url is not None and (not isinstance(base_url, str) or not base_url.strip()):
            base_url = None
        try:
            temperature = float(raw.get("temperature", 0.7))
            max_tokens = int(raw.get("max_tokens", 4096))
            timeout_raw = raw.get("timeout_s", 120.0)
            timeout_s = None if timeout_raw is None else float(timeout_raw)
        except (TypeError, ValueError) as e:
            raise ModelConfigError(f"Invalid numeric value in model profile: {e}") from e
        if max_tokens <= 0:
            raise ModelConfigError("max_tokens must be positive.")

        effort = raw.get("reasoning_effort")
        return cls(
            provider_kind=kind,
            model_name=model_name.strip(),
            base_url=base_url.strip() if isinstance(base_url, str) else None,
            credential_ref=credential_ref,
            temperature=temperature,
            max_tokens=max_tokens,
            timeout_s=timeout_s,
            reasoning_effort=effort.strip() if isinstance(effort, str) and effort.strip() else None,
        )


@dataclass(frozen=True, slots=True)
class ToolSpec:
    """A tool the model may call, described by a JSON schema for its arguments."""

    name: str
    description: str
    input_schema: dict[str, Any]


@dataclass(frozen=True, slots=True)
class ToolCall:
    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ChatMessage:
    """
    One message of the conversation sent to the model.

    Assistant messages may carry `tool_calls`; each call is answered by a TOOL message whose
    `tool_call_id` and `tool_name` point back at it.
    """

    role: MessageRole
    content: str
    tool_calls: tuple[ToolCall, ...] = ()
    tool_call_id: str | None = None
    tool_name: str | None = None
    is_error: bool = False


@dataclass(frozen=True, slots=True)
class ChatRequest:
    messages: list[ChatMessage]
    system_prompt: str = ""
    tools: list[ToolSpec] = field(default_factory=list)

    def prompt_text(self) -> str:
        parts = [self.system_prompt] if self.system_prompt else []
        parts.extend(m.content for m in self.messages)
        return "\n".join(parts)

    def conversation(self) -> list[ChatMessage]:
        return [m for m in self.messages if m.role is not MessageRole.SYSTEM]


@dataclass(frozen=True, slots=True)
class ToolCallDelta:
    """
    A fragment of a streamed tool call.

    Fragments sharing an `index` belong to the same call; `arguments_json` pieces are
    concatenated in arrival order. A delta with `index=None` is a complete call on its own.
    """

    index: int | None
    id: str | None = None
    name: str | None = None
    arguments_json: str = ""
    arguments: dict[str, Any] | None = None


@dataclass(frozen=True, slots=True)
class StreamChunk:
    """One decoded event from a provider stream; every field is optional."""

    text: str = ""
    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    tool_calls: tuple[ToolCallDelta, ...] = ()


@dataclass(frozen=True, slots=True)
class StreamResult:
    text: str
    prompt_tokens: int
    completion_tokens: int
    is_estimated: bool
    cancelled: bool = False
    tool_calls: list[ToolCall] = field(default_factory=list)
    extra: dict[str, Any] = field(default_factory=dict)
