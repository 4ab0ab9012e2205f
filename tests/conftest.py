"""Shared fixtures for termai tests."""

import json
from pathlib import Path

import httpx
import pytest

from termai.runtime.event_bus import EventBus
from termai.runtime.llm.types import CredentialRef, ModelProfile, ProviderKind
from termai.runtime.settings import AgentSettings
from termai.runtime.stores import MemoryBlobStore


def _sse_body(payloads, *, done: bool = True) -> bytes:
    lines = []
    for payload in payloads:
        data = payload if isinstance(payload, str) else json.dumps(payload)
        lines.append(f"data: {data}\n\n")
    if done:
        lines.append("data: [DONE]\n\n")
    return "".join(lines).encode("utf-8")


@pytest.fixture
def sse_transport():
    """Build an httpx.MockTransport that replays SSE payloads and records requests."""

    def _make(payloads, *, status_code: int = 200, body: bytes | None = None, done: bool = True):
        captured: list[httpx.Request] = []
        content = body if body is not None else _sse_body(payloads, done=done)

        def handler(request: httpx.Request) -> httpx.Response:
            captured.append(request)
            return httpx.Response(status_code, content=content, headers={"content-type": "text/event-stream"})

        return httpx.MockTransport(handler), captured

    return _make


@pytest.fixture
def scripted_transport():
    """Like `sse_transport`, but the n-th request gets the n-th list of payloads."""

    def _make(responses, *, done: bool = True):
        captured: list[httpx.Request] = []
        remaining = list(responses)

        def handler(request: httpx.Request) -> httpx.Response:
            captured.append(request)
            if not remaining:
                return httpx.Response(500, content=b"no scripted response left")
            content = _sse_body(remaining.pop(0), done=done)
            return httpx.Response(200, content=content, headers={"content-type": "text/event-stream"})

        return httpx.MockTransport(handler), captured

    return _make


@pytest.fixture
def settings():
    """Fast timings so approval and command waits finish quickly."""
    return AgentSettings(
        approval_poll_interval_s=0.01,
        approval_timeout_s=5.0,
        command_timeout_s=5.0,
        stream_update_interval_s=0.0,
        notify_on_approval=False,
    )


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def store():
    return MemoryBlobStore()


@pytest.fixture
def local_profile():
    return ModelProfile(provider_kind=ProviderKind.LOCAL, model_name="llama3", timeout_s=5.0)


@pytest.fixture
def openai_profile():
    return ModelProfile(
        provider_kind=ProviderKind.OPENAI,
        model_name="gpt-4o",
        credential_ref=CredentialRef(kind="inline", identifier="sk-test"),
        timeout_s=5.0,
    )


@pytest.fixture
def anthropic_profile():
    return ModelProfile(
        provider_kind=ProviderKind.ANTHROPIC,
        model_name="claude-3-5-sonnet-latest",
        credential_ref=CredentialRef(kind="inline", identifier="ak-test"),
        timeout_s=5.0,
    )


@pytest.fixture
def google_profile():
    return ModelProfile(
        provider_kind=ProviderKind.GOOGLE,
        model_name="gemini-2.0-flash",
        credential_ref=CredentialRef(kind="inline", identifier="gk-test"),
        timeout_s=5.0,
    )


@pytest.fixture
def workdir(tmp_path: Path) -> Path:
    path = tmp_path / "project"
    path.mkdir()
    return path
