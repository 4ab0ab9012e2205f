from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol

from ..types import ChatRequest, ModelProfile, ProviderKind, StreamChunk

_SECRET_HEADERS = frozenset({"authorization", "x-api-key", "x-goog-api-key"})


@dataclass(frozen=True, slots=True)
class PreparedRequest:
    method: str
    url: str
    headers: dict[str, str]
    json: dict[str, Any]

    def redacted(self) -> PreparedRequest:
        headers = {k: ("***" if k.lower() in _SECRET_HEADERS else v) for k, v in self.headers.items()}
        return PreparedRequest(method=self.method, url=self.url, headers=headers, json=self.json)


class ProviderAdapter(Protocol):
    provider_kind: ProviderKind
    requires_api_key: bool

    def prepare_request(self, profile: ModelProfile, request: ChatRequest, *, api_key: str | None) -> PreparedRequest: ...

    def parse_event(self, payload: dict[str, Any]) -> StreamChunk | None: ...


def _as_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    return None
