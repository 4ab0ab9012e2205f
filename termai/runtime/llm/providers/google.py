from __future__ import annotations

from typing import Any
from urllib.parse import parse_qs, urlencode, urlparse, urlunparse

from ..errors import ProviderAdapterError
from ..types import ChatMessage, ChatRequest, MessageRole, ModelProfile, ProviderKind, StreamChunk, ToolCallDelta
from .base import PreparedRequest, _as_int


def _text_part(text: str) -> dict[str, Any]:
    return {"text": text}


def _function_response_part(msg: ChatMessage) -> dict[str, Any]:
    key = "error" if msg.is_error else "output"
    return {"functionResponse": {"name": msg.tool_name or "tool", "response": {key: msg.content}}}


def _contents_payload(request: ChatRequest) -> list[dict[str, Any]]:
    contents: list[dict[str, Any]] = []
    pending_responses: list[dict[str, Any]] = []
    for msg in request.conversation():
        if msg.role is MessageRole.TOOL:
            pending_responses.append(_function_response_part(msg))
            continue
        if pending_responses:
            # All functionResponse parts for one model turn travel in a single user entry.
            contents.append({"role": "user", "parts": pending_responses})
            pending_responses = []
        parts = [_text_part(msg.content)] if msg.content or not msg.tool_calls else []
        for call in msg.tool_calls:
            parts.append({"functionCall": {"name": call.name, "args": dict(call.arguments)}})
        role = "model" if msg.role is MessageRole.ASSISTANT else "user"
        contents.append({"role": role, "parts": parts})
    if pending_responses:
        contents.append({"role": "user", "parts": pending_responses})
    return contents


def _parse_function_calls(parts: list[Any]) -> tuple[ToolCallDelta, ...]:
    calls: list[ToolCallDelta] = []
    for part in parts:
        fc = part.get("functionCall") if isinstance(part, dict) else None
        if not isinstance(fc, dict):
            continue
        name = fc.get("name")
        args = fc.get("args")
        if not isinstance(name, str) or not name:
            continue
        # Gemini sends each call whole and without an id.
        calls.append(ToolCallDelta(index=None, name=name, arguments=args if isinstance(args, dict) else {}))
    return tuple(calls)


def build_stream_url(*, base_url: str, model_name: str) -> str:
    if not isinstance(base_url, str) or not base_url.strip():
        raise ProviderAdapterError("google base_url is empty.")
    parsed = urlparse(base_url)
    if not parsed.scheme or not parsed.netloc:
        raise ProviderAdapterError(f"Invalid google base_url: {base_url!r}")

    url = f"{base_url.rstrip('/')}/models/{model_name}:streamGenerateContent"
    parsed = urlparse(url)
    qs = parse_qs(parsed.query, keep_blank_values=True)
    if "alt" not in qs:
        qs["alt"] = ["sse"]
    query = urlencode(qs, doseq=True)
    return urlunparse((parsed.scheme, parsed.netloc, parsed.path, parsed.params, query, parsed.fragment))


def _normalize_candidates(root: dict[str, Any]) -> list[dict[str, Any]]:
    candidates = root.get("candidates")
    if isinstance(candidates, list):
        return [c for c in candidates if isinstance(c, dict)]
    if isinstance(candidates, dict):
        return [candidates]
    return []


class GoogleAdapter:
    """
    Adapter for Gemini `models/{model}:streamGenerateContent?alt=sse`.

    Assistant turns are sent with role `model`; the system prompt goes in
    `systemInstruction` when non-empty.
    """

    provider_kind = ProviderKind.GOOGLE
    requires_api_key = True

    def prepare_request(self, profile: ModelProfile, request: ChatRequest, *, api_key: str | None) -> PreparedRequest:
        if profile.provider_kind is not ProviderKind.GOOGLE:
            raise ProviderAdapterError("Profile provider_kind mismatch for GoogleAdapter.")
        if not api_key:
            raise ProviderAdapterError("Google API key not found. Set GOOGLE_API_KEY environment variable.")

        payload: dict[str, Any] = {
            "contents": _contents_payload(request),
            "generationConfig": {
                "temperature": profile.temperature,
                "maxOutputTokens": profile.max_tokens,
            },
        }
        if request.system_prompt:
            payload["systemInstruction"] = {"parts": [_text_part(request.system_prompt)]}
        if request.tools:
            payload["tools"] = [
                {
                    "functionDeclarations": [
                        {"name": t.name, "description": t.description, "parameters": t.input_schema}
                        for t in request.tools
                    ]
                }
            ]
            payload["toolConfig"] = {"functionCallingConfig": {"mode": "AUTO"}}

        url = build_stream_url(base_url=profile.effective_base_url, model_name=profile.model_name)
        headers = {"Content-Type": "application/json", "x-goog-api-key": api_key}
        return PreparedRequest(method="POST", url=url, headers=headers, json=payload)

    def parse_event(self, payload: dict[str, Any]) -> StreamChunk | None:
        candidates = _normalize_candidates(payload)
        usage = payload.get("usageMetadata")
        if not candidates and not isinstance(usage, dict):
            return None

        text = ""
        tool_calls: tuple[ToolCallDelta, ...] = ()
        if candidates:
            content = candidates[0].get("content")
            parts = content.get("parts") if isinstance(content, dict) else None
            if isinstance(parts, list):
                text = "".join(p["text"] for p in parts if isinstance(p, dict) and isinstance(p.get("text"), str))
                tool_calls = _parse_function_calls(parts)

        prompt_tokens = completion_tokens = None
        if isinstance(usage, dict):
            prompt_tokens = _as_int(usage.get("promptTokenCount"))
            completion_tokens = _as_int(usage.get("candidatesTokenCount"))
        return StreamChunk(
            text=text,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            tool_calls=tool_calls,
        )
