"""
Unit tests for pricing calculations.

Tests cost accuracy, cache multipliers and model fallback.
"""

import pytest
from decimal import Decimal

from doc_migrator.core.pricing import (
    HAIKU_PRICING,
    OPUS_PRICING,
    PRICING_TABLE,
    SONNET_PRICING,
    calculate_cache_savings,
    calculate_cost,
)
from doc_migrator.core.token_counter import TokenUsage


class TestTokenUsage:
    """Test TokenUsage dataclass."""

    def test_total_tokens_calculation(self):
        """Verify total_tokens is input plus output."""
        usage = TokenUsage(input_tokens=100, output_tokens=50, cache_read_tokens=1000)
        assert usage.total_tokens == 150

    def test_zero_tokens(self):
        usage = TokenUsage(input_tokens=0, output_tokens=0)
        assert usage.total_tokens == 0

    def test_negative_tokens_rejected(self):
        with pytest.raises(ValueError, match="output_tokens cannot be negative"):
            TokenUsage(input_tokens=1, output_tokens=-1)


class TestPricingTable:
    """Test pricing table functionality."""

    def test_get_supported_model(self):
        pricing = PRICING_TABLE.get_pricing("claude-3-haiku-20240307")
        assert pricing.input_per_million == Decimal("0.25")
        assert pricing.output_per_million == Decimal("1.25")

    def test_family_fallback(self):
        assert PRICING_TABLE.get_pricing("claude-opus-9") == OPUS_PRICING
        assert PRICING_TABLE.get_pricing("claude-sonnet-next") == SONNET_PRICING
        assert PRICING_TABLE.get_pricing("some-haiku-model") == HAIKU_PRICING

    def test_unknown_model_priced_as_sonnet(self):
        assert PRICING_TABLE.get_pricing("mystery-model") == SONNET_PRICING


class TestCostCalculation:
    """Test cost calculation accuracy."""

    def test_input_and_output_cost(self):
        # 1M input at $3 + 1M output at $15
        usage = TokenUsage(input_tokens=1_000_000, output_tokens=1_000_000)
        assert calculate_cost("claude-sonnet-4-5-20250929", usage) == 18.0

    def test_cache_multipliers(self):
        # haiku 4.5 input rate $1/M: creation at 1.25x, reads at 0.10x
        usage = TokenUsage(
            input_tokens=0,
            output_tokens=0,
            cache_creation_tokens=1_000_000,
            cache_read_tokens=1_000_000,
        )
        assert calculate_cost("claude-haiku-4-5-20251001", usage) == pytest.approx(1.35)

    def test_small_usage_is_not_rounded(self):
        usage = TokenUsage(input_tokens=1, output_tokens=0)
        assert calculate_cost("claude-haiku-4-5-20251001", usage) == pytest.approx(0.000001)

    def test_cache_savings(self):
        # 1M cached tokens on opus: $15 full price, $1.50 discounted
        assert calculate_cache_savings("claude-opus-4-5-20251101", 1_000_000) == pytest.approx(13.5)
