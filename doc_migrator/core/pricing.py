"""
Pricing calculations for model usage.

Handles cost computations for Claude models, including prompt cache
writes and reads.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict

from .token_counter import TokenUsage

MILLION = Decimal("1000000")

# Prompt caching multipliers applied to the input rate
CACHE_CREATION_MULTIPLIER = Decimal("1.25")
CACHE_READ_MULTIPLIER = Decimal("0.10")


@dataclass(frozen=True)
class ModelPricing:
    """Per-token pricing for a specific model."""
    input_per_million: Decimal  # Cost per 1M input tokens
    output_per_million: Decimal  # Cost per 1M output tokens


OPUS_PRICING = ModelPricing(Decimal("15.00"), Decimal("75.00"))
SONNET_PRICING = ModelPricing(Decimal("3.00"), Decimal("15.00"))
HAIKU_PRICING = ModelPricing(Decimal("1.00"), Decimal("5.00"))


@dataclass(frozen=True)
class PricingTable:
    """Pricing table for known models with family fallback."""
    prices: Dict[str, ModelPricing]

    def get_pricing(self, model: str) -> ModelPricing:
        """Get pricing for a model.

        Unknown models are priced by family (opus, sonnet, haiku) and
        finally at sonnet rates.

        Args:
            model: Model identifier

        Returns:
            ModelPricing for the model
        """
        if model in self.prices:
            return self.prices[model]
        if "opus" in model:
            return OPUS_PRICING
        if "sonnet" in model:
            return SONNET_PRICING
        if "haiku" in model:
            return HAIKU_PRICING
        return SONNET_PRICING


PRICING_TABLE = PricingTable({
    # Claude 4.5
    "claude-opus-4-5-20251101": OPUS_PRICING,
    "claude-sonnet-4-5-20250929": SONNET_PRICING,
    "claude-haiku-4-5-20251001": HAIKU_PRICING,
    # Claude 4
    "claude-sonnet-4-20250514": SONNET_PRICING,
    "claude-opus-4-20250514": OPUS_PRICING,
    # Claude 3.5 (legacy)
    "claude-3-5-sonnet-20241022": SONNET_PRICING,
    "claude-3-5-haiku-20241022": HAIKU_PRICING,
    # Claude 3 (legacy)
    "claude-3-opus-20240229": OPUS_PRICING,
    "claude-3-sonnet-20240229": SONNET_PRICING,
    "claude-3-haiku-20240307": ModelPricing(Decimal("0.25"), Decimal("1.25")),
})


def calculate_cost(model: str, usage: TokenUsage) -> float:
    """Calculate cost in USD for model usage.

    cost = input * rate_in
         + cache_creation * rate_in * 1.25
         + cache_read * rate_in * 0.10
         + output * rate_out

    Args:
        model: Model identifier
        usage: Token usage data

    Returns:
        Exact cost (no rounding)
    """
    pricing = PRICING_TABLE.get_pricing(model)
    input_rate = pricing.input_per_million / MILLION
    output_rate = pricing.output_per_million / MILLION

    input_cost = Decimal(usage.input_tokens) * input_rate
    cache_creation_cost = Decimal(usage.cache_creation_tokens) * input_rate * CACHE_CREATION_MULTIPLIER
    cache_read_cost = Decimal(usage.cache_read_tokens) * input_rate * CACHE_READ_MULTIPLIER
    output_cost = Decimal(usage.output_tokens) * output_rate

    return float(input_cost + cache_creation_cost + cache_read_cost + output_cost)


def calculate_cache_savings(model: str, cache_read_tokens: int) -> float:
    """Difference between full input price and discounted cache-read price."""
    pricing = PRICING_TABLE.get_pricing(model)
    full_price = Decimal(cache_read_tokens) * pricing.input_per_million / MILLION
    return float(full_price - full_price * CACHE_READ_MULTIPLIER)
