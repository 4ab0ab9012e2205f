from __future__ import annotations

import asyncio
import json
import logging
import threading
import time
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from typing import Any

import httpx

from .errors import (
    CancellationToken,
    CredentialResolutionError,
    LLMErrorCode,
    LLMRequestError,
    ProviderAdapterError,
    _truncate,
    is_retryable_error_code,
)
from ..error_codes import error_code_for_status
from ..ids import new_tool_call_id
from .friendly_errors import translate_http_error
from .providers import ProviderAdapter, adapter_for
from .secrets import resolve_credential, resolve_optional_credential
from .tokens import TokenUsageTracker, estimate_tokens
from .types import ChatRequest, ModelProfile, StreamChunk, StreamResult, ToolCall, ToolCallDelta

logger = logging.getLogger(__name__)

DEFAULT_UPDATE_INTERVAL_S = 0.05

_DONE = "[DONE]"


def _resolve_api_key(*, profile: ModelProfile, adapter: ProviderAdapter) -> str | None:
    if not adapter.requires_api_key:
        return resolve_optional_credential(profile.credential_ref)
    if profile.credential_ref is None:
        raise LLMRequestError(
            f"Missing credentials for {profile.provider_kind.display_name} profile.",
            code=LLMErrorCode.AUTH,
            provider_kind=profile.provider_kind,
            model=profile.model_name,
            retryable=False,
            details={"operation": "auth", "missing": "credential_ref"},
        )
    try:
        return resolve_credential(profile.credential_ref)
    except CredentialResolutionError as e:
        raise LLMRequestError(
            str(e),
            code=LLMErrorCode.AUTH,
            provider_kind=profile.provider_kind,
            model=profile.model_name,
            retryable=False,
            details={"operation": "auth", "credential_ref": e.credential_ref},
            cause=e,
        ) from e


def _wrap_transport_exception(exc: BaseException, *, profile: ModelProfile) -> LLMRequestError:
    if isinstance(exc, httpx.TimeoutException):
        code = LLMErrorCode.TIMEOUT
    elif isinstance(exc, httpx.NetworkError):
        code = LLMErrorCode.NETWORK_ERROR
    else:
        code = LLMErrorCode.UNKNOWN
    message = str(exc) or exc.__class__.__name__
    provider = profile.provider_kind.display_name
    return LLMRequestError(
        message,
        code=code,
        provider_kind=profile.provider_kind,
        model=profile.model_name,
        retryable=is_retryable_error_code(code),
        friendly_message=f"Could not reach {provider}: {message}",
        full_details=message,
        details={"operation": "stream"},
        cause=exc,
    )


def _raise_for_status(resp: httpx.Response, *, profile: ModelProfile) -> None:
    if 200 <= resp.status_code < 300:
        return
    # Drain the whole body so the diagnostic detail is complete.
    body = resp.read().decode("utf-8", errors="replace").strip()
    translated = translate_http_error(
        resp.status_code,
        body,
        provider=profile.provider_kind.display_name,
        cloud=profile.provider_kind.is_cloud,
    )
    code = error_code_for_status(resp.status_code)
    raise LLMRequestError(
        f"{translated.friendly_message}\n\nProvider response (truncated):\n{_truncate(body, 2000)}",
        code=code,
        provider_kind=profile.provider_kind,
        model=profile.model_name,
        status_code=resp.status_code,
        retryable=is_retryable_error_code(code),
        friendly_message=translated.friendly_message,
        full_details=translated.full_details,
        details={"operation": "stream"},
    )


def iter_data_payloads(lines: Iterator[str], *, cancel: CancellationToken | None = None) -> Iterator[str]:
    """
    Yield the payload of each `data:` line until `[DONE]`, EOF or cancellation.

    Comment lines, `event:` lines and blank keep-alives are ignored.
    """

    for line in lines:
        if cancel is not None and cancel.cancelled:
            return
        s = line.strip()
        if not s.startswith("data:"):
            continue
        payload = s[len("data:") :].strip()
        if payload == _DONE:
            return
        if payload:
            yield payload


def stream_chunks(
    *,
    profile: ModelProfile,
    request: ChatRequest,
    cancel: CancellationToken | None = None,
    transport: httpx.BaseTransport | None = None,
) -> Iterator[StreamChunk]:
    adapter = adapter_for(profile.provider_kind)
    api_key = _resolve_api_key(profile=profile, adapter=adapter)
    try:
        prepared = adapter.prepare_request(profile, request, api_key=api_key)
    except ProviderAdapterError as e:
        raise LLMRequestError(
            str(e),
            code=LLMErrorCode.BAD_REQUEST,
            provider_kind=profile.provider_kind,
            model=profile.model_name,
            retryable=False,
            details={"operation": "prepare"},
            cause=e,
        ) from e

    logger.debug("Streaming %s %s (%s)", prepared.method, prepared.url, profile.model_name)
    timeout = None if profile.timeout_s is None else httpx.Timeout(float(profile.timeout_s))
    try:
        with httpx.Client(timeout=timeout, transport=transport) as client:
            with client.stream(prepared.method, prepared.url, headers=prepared.headers, json=prepared.json) as resp:
                _raise_for_status(resp, profile=profile)
                for payload in iter_data_payloads(resp.iter_lines(), cancel=cancel):
                    try:
                        data: Any = json.loads(payload)
                    except ValueError:
                        logger.debug("Skipping undecodable stream line: %s", _truncate(payload, 200))
                        continue
                    if not isinstance(data, dict):
                        continue
                    chunk = adapter.parse_event(data)
                    if chunk is None:
                        logger.debug("Skipping unrecognized stream event: %s", _truncate(payload, 200))
                        continue
                    yield chunk
    except LLMRequestError:
        raise
    except httpx.HTTPError as e:
        raise _wrap_transport_exception(e, profile=profile) from e


@dataclass
class _PendingToolCall:
    id: str | None = None
    name: str | None = None
    raw_arguments: str = ""
    arguments: dict[str, Any] | None = None


class ToolCallAccumulator:
    """Merge streamed tool-call fragments into complete calls, in first-seen order."""

    def __init__(self) -> None:
        self._calls: list[_PendingToolCall] = []
        self._by_index: dict[int, _PendingToolCall] = {}

    def add(self, delta: ToolCallDelta) -> None:
        if delta.index is None:
            pending = _PendingToolCall()
            self._calls.append(pending)
        else:
            pending = self._by_index.get(delta.index)
            if pending is None:
                pending = _PendingToolCall()
                self._by_index[delta.index] = pending
                self._calls.append(pending)
        if delta.id:
            pending.id = delta.id
        if delta.name:
            pending.name = delta.name
        pending.raw_arguments += delta.arguments_json
        if delta.arguments is not None:
            pending.arguments = dict(delta.arguments)

    def finish(self) -> list[ToolCall]:
        out: list[ToolCall] = []
        for pending in self._calls:
            if not pending.name:
                logger.warning("Dropping streamed tool call without a name (id=%s)", pending.id)
                continue
            arguments = pending.arguments
            if arguments is None:
                arguments = _decode_arguments(pending.raw_arguments, tool_name=pending.name)
            out.append(ToolCall(id=pending.id or new_tool_call_id(), name=pending.name, arguments=arguments))
        return out


def _decode_arguments(raw: str, *, tool_name: str) -> dict[str, Any]:
    if not raw.strip():
        return {}
    try:
        parsed = json.loads(raw)
    except ValueError:
        logger.warning("Tool call %s has undecodable arguments: %s", tool_name, _truncate(raw, 200))
        return {}
    if not isinstance(parsed, dict):
        logger.warning("Tool call %s arguments are not an object", tool_name)
        return {}
    return parsed


class StreamNormalizer:
    """
    Drive one provider stream into a single accumulated text plus any tool calls.

    Network reads run on a worker thread; chunks are handed to the event loop through an
    `asyncio.Queue`, where `on_update` is called with the full text so far at most once per
    `update_interval_s`, then exactly once more with the complete text when the stream ends.
    """

    def __init__(
        self,
        *,
        usage_tracker: TokenUsageTracker | None = None,
        update_interval_s: float = DEFAULT_UPDATE_INTERVAL_S,
        transport: httpx.BaseTransport | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._usage_tracker = usage_tracker
        self._update_interval_s = update_interval_s
        self._transport = transport
        self._clock = clock

    async def run(
        self,
        *,
        profile: ModelProfile,
        request: ChatRequest,
        on_update: Callable[[str], None],
        cancel: CancellationToken | None = None,
        request_type: str = "chat",
    ) -> StreamResult:
        loop = asyncio.get_running_loop()
        q: asyncio.Queue[StreamChunk | BaseException | None] = asyncio.Queue()

        def _producer() -> None:
            try:
                for chunk in stream_chunks(profile=profile, request=request, cancel=cancel, transport=self._transport):
                    loop.call_soon_threadsafe(q.put_nowait, chunk)
                loop.call_soon_threadsafe(q.put_nowait, None)
            except BaseException as e:
                loop.call_soon_threadsafe(q.put_nowait, e)

        threading.Thread(target=_producer, name="termai-llm-stream", daemon=True).start()

        accumulated = ""
        prompt_tokens: int | None = None
        completion_tokens: int | None = None
        last_update: float | None = None
        cancelled = False
        tool_calls = ToolCallAccumulator()

        while True:
            item = await q.get()
            if item is None:
                break
            if isinstance(item, BaseException):
                if cancel is not None and cancel.cancelled:
                    logger.info("Stream ended by cancellation: %s", item)
                    cancelled = True
                    break
                raise item
            if item.prompt_tokens is not None:
                prompt_tokens = item.prompt_tokens
            if item.completion_tokens is not None:
                completion_tokens = item.completion_tokens
            for delta in item.tool_calls:
                tool_calls.add(delta)
            if item.text:
                accumulated += item.text
                now = self._clock()
                if last_update is None or now - last_update >= self._update_interval_s:
                    on_update(accumulated)
                    last_update = now
            if cancel is not None and cancel.cancelled:
                cancelled = True
                break

        if cancel is not None and cancel.cancelled:
            cancelled = True
        on_update(accumulated)

        is_estimated = prompt_tokens is None or completion_tokens is None
        final_prompt = prompt_tokens if prompt_tokens is not None else estimate_tokens(request.prompt_text(), model=profile.model_name)
        final_completion = (
            completion_tokens if completion_tokens is not None else estimate_tokens(accumulated, model=profile.model_name)
        )
        if self._usage_tracker is not None:
            self._usage_tracker.record_usage(
                provider=profile.provider_kind.display_name,
                model=profile.model_name,
                prompt_tokens=final_prompt,
                completion_tokens=final_completion,
                is_estimated=is_estimated,
                request_type=request_type,
            )
        return StreamResult(
            text=accumulated,
            prompt_tokens=final_prompt,
            completion_tokens=final_completion,
            is_estimated=is_estimated,
            cancelled=cancelled,
            # Calls from a stopped response are never run.
            tool_calls=[] if cancelled else tool_calls.finish(),
        )
