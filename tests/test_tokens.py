"""Tests for token estimation and usage tracking."""

from termai.runtime.llm.tokens import (
    TokenUsageTracker,
    context_limit,
    estimate_tokens,
    max_context_usage,
)


class TestEstimateTokens:
    def test_ratio_by_model_family(self):
        assert estimate_tokens("a" * 40, model="gpt-4o") == 10
        assert estimate_tokens("a" * 35, model="claude-3-5-sonnet") == 10
        assert estimate_tokens("a" * 40, model="llama3.1") == 10
        assert estimate_tokens("a" * 37, model="something-else") == 10

    def test_rounds_up_and_handles_empty(self):
        assert estimate_tokens("abc", model="gpt-4o") == 1
        assert estimate_tokens("") == 0

    def test_iterable_sums_parts(self):
        assert estimate_tokens(["a" * 8, "b" * 8], model="gpt-5") == 4


class TestContextLimits:
    def test_known_families(self):
        assert context_limit("gpt-4o-mini") == 128_000
        assert context_limit("o3-mini") == 200_000
        assert context_limit("claude-sonnet-4") == 200_000
        assert context_limit("gemini-2.0-flash") == 1_000_000
        assert context_limit("qwen2.5") == 32_000

    def test_usable_share(self):
        assert max_context_usage("claude-3-opus") == 150_000


class TestTokenUsageTracker:
    def test_totals_group_by_provider_and_model(self):
        tracker = TokenUsageTracker()
        tracker.record_usage(provider="OpenAI", model="gpt-4o", prompt_tokens=10, completion_tokens=5, is_estimated=False)
        tracker.record_usage(provider="OpenAI", model="gpt-4o", prompt_tokens=3, completion_tokens=2, is_estimated=True)

        totals = tracker.totals()[("OpenAI", "gpt-4o")]
        assert totals.total_tokens == 20
        assert totals.requests == 2
        assert totals.estimated_requests == 1

        tracker.clear()
        assert tracker.records == []
