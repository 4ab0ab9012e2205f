from __future__ import annotations

from typing import Any

from ..errors import ProviderAdapterError
from ..types import ChatMessage, ChatRequest, MessageRole, ModelProfile, ProviderKind, StreamChunk, ToolCallDelta
from .base import PreparedRequest, _as_int

ANTHROPIC_VERSION = "2023-06-01"

_THINKING_BUDGETS = {"low": 4096, "medium": 10000, "high": 32000}


def _content_blocks(msg: ChatMessage) -> list[dict[str, Any]]:
    blocks: list[dict[str, Any]] = []
    if msg.content:
        blocks.append({"type": "text", "text": msg.content})
    for call in msg.tool_calls:
        blocks.append({"type": "tool_use", "id": call.id, "name": call.name, "input": call.arguments})
    return blocks


def _messages_payload(request: ChatRequest) -> list[dict[str, Any]]:
    messages: list[dict[str, Any]] = []
    for msg in request.conversation():
        if msg.role is MessageRole.TOOL:
            block = {
                "type": "tool_result",
                "tool_use_id": msg.tool_call_id,
                "content": msg.content,
                "is_error": msg.is_error,
            }
            # Results for one assistant turn go back together in a single user message.
            last = messages[-1] if messages else None
            if last is not None and last["role"] == "user" and isinstance(last["content"], list):
                last["content"].append(block)
            else:
                messages.append({"role": "user", "content": [block]})
        elif msg.role is MessageRole.ASSISTANT and msg.tool_calls:
            messages.append({"role": "assistant", "content": _content_blocks(msg)})
        else:
            messages.append({"role": msg.role.value, "content": msg.content})
    return messages


def _parse_tool_use(payload: dict[str, Any]) -> tuple[ToolCallDelta, ...]:
    index = _as_int(payload.get("index"))
    if index is None:
        return ()
    block = payload.get("content_block")
    if isinstance(block, dict) and block.get("type") == "tool_use":
        call_id = block.get("id")
        name = block.get("name")
        return (
            ToolCallDelta(
                index=index,
                id=call_id if isinstance(call_id, str) else None,
                name=name if isinstance(name, str) else None,
            ),
        )
    delta = payload.get("delta")
    if isinstance(delta, dict) and delta.get("type") == "input_json_delta":
        partial = delta.get("partial_json")
        if isinstance(partial, str) and partial:
            return (ToolCallDelta(index=index, arguments_json=partial),)
    return ()


class AnthropicAdapter:
    """
    Adapter for the Anthropic Messages API (`POST /v1/messages`, `stream: true`).

    The system prompt travels in the top-level `system` field. Tool results go back as
    `tool_result` blocks inside a user message.
    """

    provider_kind = ProviderKind.ANTHROPIC
    requires_api_key = True

    def prepare_request(self, profile: ModelProfile, request: ChatRequest, *, api_key: str | None) -> PreparedRequest:
        if profile.provider_kind is not ProviderKind.ANTHROPIC:
            raise ProviderAdapterError("Profile provider_kind mismatch for AnthropicAdapter.")
        if not api_key:
            raise ProviderAdapterError("Anthropic API key not found. Set ANTHROPIC_API_KEY environment variable.")

        headers = {
            "Content-Type": "application/json",
            "x-api-key": api_key,
            "anthropic-version": ANTHROPIC_VERSION,
        }
        payload: dict[str, Any] = {
            "model": profile.model_name,
            "max_tokens": profile.max_tokens,
            "stream": True,
            "system": request.system_prompt,
            "messages": _messages_payload(request),
        }
        if request.tools:
            payload["tools"] = [
                {"name": t.name, "description": t.description, "input_schema": t.input_schema} for t in request.tools
            ]

        budget = _THINKING_BUDGETS.get(profile.reasoning_effort or "")
        if profile.supports_reasoning and budget is not None:
            headers["anthropic-beta"] = "interleaved-thinking-2025-05-14"
            payload["thinking"] = {"type": "enabled", "budget_tokens": budget}
            # Thinking tokens count against max_tokens.
            payload["max_tokens"] = max(profile.max_tokens, budget + 1000)
        else:
            payload["temperature"] = profile.temperature

        return PreparedRequest(
            method="POST",
            url=f"{profile.effective_base_url}/messages",
            headers=headers,
            json=payload,
        )

    def parse_event(self, payload: dict[str, Any]) -> StreamChunk | None:
        text = ""
        prompt_tokens = completion_tokens = None
        tool_calls = _parse_tool_use(payload)
        matched = bool(tool_calls)

        message = payload.get("message")
        if isinstance(message, dict) and isinstance(message.get("usage"), dict):
            prompt_tokens = _as_int(message["usage"].get("input_tokens"))
            matched = True

        usage = payload.get("usage")
        if isinstance(usage, dict) and "output_tokens" in usage:
            completion_tokens = _as_int(usage.get("output_tokens"))
            matched = True

        delta = payload.get("delta")
        if isinstance(delta, dict):
            if isinstance(delta.get("text"), str):
                text = delta["text"]
            matched = True

        if not matched:
            return None
        return StreamChunk(
            text=text,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            tool_calls=tool_calls,
        )
