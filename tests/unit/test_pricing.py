"""Unit tests for token estimation and cost calculation."""

import math

import pytest
import tiktoken

from chronomem.core.exceptions import ConfigurationError
from chronomem.core.types import TokenUsage
from chronomem.credits.pricing import (
    DEFAULT_PRICE,
    NANO_DOLLARS_PER_USD,
    PROVIDER_COST_MARKUP,
    embedding_cost,
    estimate_completion_cost,
    estimate_tokens,
    price_for,
    token_cost,
    usage_cost,
    usd_cost_to_nano,
)
from chronomem.credits.pricing import _encoder as load_encoding


class TestEstimateTokens:
    """Tests for token estimation."""

    def test_blank_text_is_free(self):
        assert estimate_tokens("") == 0
        assert estimate_tokens("   \n") == 0

    def test_minimum_one_token(self):
        assert estimate_tokens("a") == 1

    def test_counts_encoded_tokens(self):
        assert estimate_tokens("abcdefgh") == 2
        assert estimate_tokens("abcdefghi") == 3

    def test_missing_encoding_raises(self, monkeypatch):
        """Test that an unloadable encoding is reported instead of guessed."""

        def unreachable(name):
            raise ValueError(f"cannot download {name}")

        monkeypatch.setattr(tiktoken, "get_encoding", unreachable)
        load_encoding.cache_clear()
        try:
            with pytest.raises(ConfigurationError, match="cl100k_base"):
                load_encoding()
        finally:
            load_encoding.cache_clear()


class TestCosts:
    """Tests for nano-dollar costs."""

    def test_unknown_model_uses_default_price(self):
        assert price_for("some-new-model") == DEFAULT_PRICE

    def test_token_cost(self):
        # 0.25 USD per million tokens is 250 nano-dollars per token
        assert token_cost("mistral:7b", 1_000, 0) == 250_000
        assert token_cost("unknown", 10, 10) == 20_000

    def test_zero_tokens_cost_nothing(self):
        assert token_cost("mistral:7b", 0, 0) == 0
        assert embedding_cost("nomic-embed-text", 0) == 0

    def test_cost_rounds_up(self):
        assert token_cost("nomic-embed-text", 1) == 20

    def test_completion_estimate_covers_max_tokens(self):
        estimate = estimate_completion_cost("mistral:7b", "abcdefgh", 2_000)
        assert estimate == token_cost("mistral:7b", 2, 2_000)

    def test_usd_cost_has_markup(self):
        assert usd_cost_to_nano(1.0) == math.ceil(NANO_DOLLARS_PER_USD * PROVIDER_COST_MARKUP)
        assert usd_cost_to_nano(0.0) == 0


class TestUsageCost:
    """Tests for settling reported usage."""

    def test_reported_cost_wins(self):
        usage = TokenUsage(prompt_tokens=1_000, cost=1.0)
        assert usage_cost("mistral:7b", usage) == usd_cost_to_nano(1.0)

    def test_token_counts(self):
        usage = TokenUsage(prompt_tokens=1_000, completion_tokens=1_000)
        assert usage_cost("mistral:7b", usage) == 500_000

    def test_total_tokens_only(self):
        assert usage_cost("mistral:7b", TokenUsage(total_tokens=1_000)) == 250_000

    def test_unknown_usage(self):
        assert usage_cost("mistral:7b", TokenUsage()) is None
