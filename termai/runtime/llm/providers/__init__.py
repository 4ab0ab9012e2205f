from __future__ import annotations

from ..types import ProviderKind
from .anthropic import AnthropicAdapter
from .base import PreparedRequest, ProviderAdapter
from .google import GoogleAdapter
from .openai_compatible import OpenAIAdapter, OpenAICompatibleAdapter


def adapter_for(kind: ProviderKind) -> ProviderAdapter:
    if kind is ProviderKind.LOCAL:
        return OpenAICompatibleAdapter()
    if kind is ProviderKind.OPENAI:
        return OpenAIAdapter()
    if kind is ProviderKind.ANTHROPIC:
        return AnthropicAdapter()
    if kind is ProviderKind.GOOGLE:
        return GoogleAdapter()
    raise ValueError(f"Unsupported provider_kind: {kind}")


__all__ = [
    "AnthropicAdapter",
    "GoogleAdapter",
    "OpenAIAdapter",
    "OpenAICompatibleAdapter",
    "PreparedRequest",
    "ProviderAdapter",
    "adapter_for",
]
