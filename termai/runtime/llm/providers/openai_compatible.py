from __future__ import annotations

import json
from typing import Any

from ..errors import ProviderAdapterError
from ..types import ChatMessage, ChatRequest, MessageRole, ModelProfile, ProviderKind, StreamChunk, ToolCallDelta
from .base import PreparedRequest, _as_int


def _assistant_message(msg: ChatMessage) -> dict[str, Any]:
    out: dict[str, Any] = {"role": "assistant", "content": msg.content or None}
    out["tool_calls"] = [
        {
            "id": call.id,
            "type": "function",
            "function": {"name": call.name, "arguments": json.dumps(call.arguments, ensure_ascii=False)},
        }
        for call in msg.tool_calls
    ]
    return out


def _messages_payload(request: ChatRequest) -> list[dict[str, Any]]:
    messages: list[dict[str, Any]] = []
    if request.system_prompt:
        messages.append({"role": "system", "content": request.system_prompt})
    for msg in request.messages:
        if msg.role is MessageRole.TOOL:
            messages.append({"role": "tool", "tool_call_id": msg.tool_call_id, "content": msg.content})
        elif msg.role is MessageRole.ASSISTANT and msg.tool_calls:
            messages.append(_assistant_message(msg))
        else:
            messages.append({"role": msg.role.value, "content": msg.content})
    return messages


def _tools_payload(request: ChatRequest) -> list[dict[str, Any]]:
    return [
        {
            "type": "function",
            "function": {"name": t.name, "description": t.description, "parameters": t.input_schema},
        }
        for t in request.tools
    ]


def _parse_tool_call_deltas(delta: dict[str, Any], *, complete: bool = False) -> tuple[ToolCallDelta, ...]:
    raw = delta.get("tool_calls")
    if not isinstance(raw, list):
        return ()
    out: list[ToolCallDelta] = []
    for position, item in enumerate(raw):
        if not isinstance(item, dict):
            continue
        index = _as_int(item.get("index"))
        fn = item.get("function") if isinstance(item.get("function"), dict) else {}
        call_id = item.get("id")
        name = fn.get("name")
        arguments = fn.get("arguments")
        out.append(
            ToolCallDelta(
                index=None if complete else (index if index is not None else position),
                id=call_id if isinstance(call_id, str) and call_id else None,
                name=name if isinstance(name, str) and name else None,
                # Ollama sends the arguments as an object instead of a JSON string.
                arguments_json=arguments if isinstance(arguments, str) else "",
                arguments=arguments if isinstance(arguments, dict) else None,
            )
        )
    return tuple(out)


def _parse_chat_completion_chunk(payload: dict[str, Any]) -> StreamChunk | None:
    choices = payload.get("choices")
    usage = payload.get("usage")
    if isinstance(choices, list) or isinstance(usage, dict):
        text = ""
        tool_calls: tuple[ToolCallDelta, ...] = ()
        if isinstance(choices, list) and choices and isinstance(choices[0], dict):
            delta = choices[0].get("delta")
            if isinstance(delta, dict):
                if isinstance(delta.get("content"), str):
                    text = delta["content"]
                tool_calls = _parse_tool_call_deltas(delta)
        prompt_tokens = completion_tokens = None
        if isinstance(usage, dict):
            prompt_tokens = _as_int(usage.get("prompt_tokens"))
            completion_tokens = _as_int(usage.get("completion_tokens"))
        return StreamChunk(
            text=text,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            tool_calls=tool_calls,
        )

    # Ollama's native chunk shapes: chat (`message.content`) and generate (`response`).
    message = payload.get("message")
    if isinstance(message, dict) and isinstance(message.get("content"), str):
        return StreamChunk(text=message["content"], tool_calls=_parse_tool_call_deltas(message, complete=True))
    if isinstance(payload.get("response"), str):
        return StreamChunk(text=payload["response"])
    return None

class OpenAICompatibleAdapter:
    """
    Adapter for local OpenAI-compatible servers (Ollama, LM Studio, vLLM).

    Streams `POST {base_url}/chat/completions`; the API key is optional.
    """

    provider_kind = ProviderKind.LOCAL
    requires_api_key = False

    def prepare_request(self, profile: ModelProfile, request: ChatRequest, *, api_key: str | None) -> PreparedRequest:
        if profile.provider_kind is not self.provider_kind:
            raise ProviderAdapterError(f"Profile provider_kind mismatch for {type(self).__name__}.")
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        payload: dict[str, Any] = {
            "model": profile.model_name,
            "messages": _messages_payload(request),
            "stream": True,
            "temperature": profile.temperature,
            "max_tokens": profile.max_tokens,
        }
        if request.tools:
            payload["tools"] = _tools_payload(request)
        return PreparedRequest(
            method="POST",
            url=f"{profile.effective_base_url}/chat/completions",
            headers=headers,
            json=payload,
        )

    def parse_event(self, payload: dict[str, Any]) -> StreamChunk | None:
        return _parse_chat_completion_chunk(payload)


class OpenAIAdapter(OpenAICompatibleAdapter):
    provider_kind = ProviderKind.OPENAI
    requires_api_key = True

    def prepare_request(self, profile: ModelProfile, request: ChatRequest, *, api_key: str | None) -> PreparedRequest:
        if not api_key:
            raise ProviderAdapterError("OpenAI API key not found. Set OPENAI_API_KEY environment variable.")
        prepared = super().prepare_request(profile, request, api_key=api_key)
        payload: dict[str, Any] = {
            "model": profile.model_name,
            "messages": prepared.json["messages"],
            "stream": True,
            "stream_options": {"include_usage": True},
            "max_completion_tokens": profile.max_tokens,
        }
        if "tools" in prepared.json:
            payload["tools"] = prepared.json["tools"]
        if profile.supports_reasoning:
            payload["temperature"] = 1.0
            if profile.reasoning_effort and profile.reasoning_effort != "none":
                payload["reasoning_effort"] = profile.reasoning_effort
        else:
            payload["temperature"] = profile.temperature
        return PreparedRequest(method=prepared.method, url=prepared.url, headers=prepared.headers, json=payload)
