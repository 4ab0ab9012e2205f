from __future__ import annotations

import math
import threading
from collections.abc import Iterable
from dataclasses import dataclass, field

from ..ids import now_ts

DEFAULT_CHARS_PER_TOKEN = 3.8
DEFAULT_CONTEXT_LIMIT = 32_000
MAX_CONTEXT_USAGE_RATIO = 0.75

_FOUR_CHAR_PREFIXES = ("gpt-4", "gpt-5", "o1", "o3", "o4")
_FOUR_CHAR_FAMILIES = ("llama", "mistral", "qwen", "gemma")


def chars_per_token(model: str | None) -> float:
    name = (model or "").lower()
    if "claude" in name:
        return 3.5
    if name.startswith(_FOUR_CHAR_PREFIXES):
        return 4.0
    if any(family in name for family in _FOUR_CHAR_FAMILIES):
        return 4.0
    return DEFAULT_CHARS_PER_TOKEN


def estimate_tokens(text: str | Iterable[str], *, model: str | None = None) -> int:
    if not isinstance(text, str):
        return sum(estimate_tokens(t, model=model) for t in text)
    if not text:
        return 0
    return math.ceil(len(text) / chars_per_token(model))


def context_limit(model: str | None) -> int:
    name = (model or "").lower()
    if name.startswith(("gpt-5", "gpt-4o", "gpt-4.1")):
        return 128_000
    if name.startswith(("o1", "o3", "o4")):
        return 200_000
    if "claude" in name:
        return 200_000
    if name.startswith("gemini"):
        return 1_000_000
    return DEFAULT_CONTEXT_LIMIT


def max_context_usage(model: str | None) -> int:
    """Tokens available for the prompt; a quarter of the window is reserved for the response."""
    return int(context_limit(model) * MAX_CONTEXT_USAGE_RATIO)


@dataclass(frozen=True, slots=True)
class TokenUsageRecord:
    provider: str
    model: str
    prompt_tokens: int
    completion_tokens: int
    is_estimated: bool
    request_type: str = "chat"
    tool_call_count: int = 0
    timestamp: float = field(default_factory=now_ts)

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


@dataclass(frozen=True, slots=True)
class UsageTotals:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    requests: int = 0
    estimated_requests: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


class TokenUsageTracker:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: list[TokenUsageRecord] = []

    def record_usage(
        self,
        *,
        provider: str,
        model: str,
        prompt_tokens: int,
        completion_tokens: int,
        is_estimated: bool,
        request_type: str = "chat",
        tool_call_count: int = 0,
    ) -> TokenUsageRecord:
        record = TokenUsageRecord(
            provider=provider,
            model=model,
            prompt_tokens=max(0, int(prompt_tokens)),
            completion_tokens=max(0, int(completion_tokens)),
            is_estimated=is_estimated,
            request_type=request_type,
            tool_call_count=tool_call_count,
        )
        with self._lock:
            self._records.append(record)
        return record

    @property
    def records(self) -> list[TokenUsageRecord]:
        with self._lock:
            return list(self._records)

    def totals(self) -> dict[tuple[str, str], UsageTotals]:
        out: dict[tuple[str, str], UsageTotals] = {}
        for rec in self.records:
            key = (rec.provider, rec.model)
            prev = out.get(key, UsageTotals())
            out[key] = UsageTotals(
                prompt_tokens=prev.prompt_tokens + rec.prompt_tokens,
                completion_tokens=prev.completion_tokens + rec.completion_tokens,
                requests=prev.requests + 1,
                estimated_requests=prev.estimated_requests + (1 if rec.is_estimated else 0),
            )
        return out

    def clear(self) -> None:
        with self._lock:
            self._records.clear()
