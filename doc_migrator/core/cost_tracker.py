"""
Running cost ledger with a hard budget ceiling.

Every recorded call is priced, checked against the budget and only then
committed, so a call that would exceed the budget leaves no trace.
"""

from dataclasses import dataclass, replace
from typing import Dict, Optional

from .pricing import calculate_cache_savings, calculate_cost
from .token_counter import TokenUsage


class BudgetExceeded(Exception):
    """Raised when recording usage would push total cost past the budget."""

    def __init__(self, attempted: float, limit: float):
        super().__init__(f"Budget exceeded: ${attempted:.4f} > ${limit:.4f}")
        self.attempted = attempted
        self.limit = limit


@dataclass(frozen=True)
class ModelUsage:
    """Accumulated usage for one model."""
    input_tokens: int = 0
    output_tokens: int = 0
    cache_creation_tokens: int = 0
    cache_read_tokens: int = 0
    cost: float = 0.0

    def add(self, usage: TokenUsage, cost: float) -> "ModelUsage":
        return replace(
            self,
            input_tokens=self.input_tokens + usage.input_tokens,
            output_tokens=self.output_tokens + usage.output_tokens,
            cache_creation_tokens=self.cache_creation_tokens + usage.cache_creation_tokens,
            cache_read_tokens=self.cache_read_tokens + usage.cache_read_tokens,
            cost=self.cost + cost,
        )


class CostTracker:
    """Tracks API cost per model with optional budget enforcement."""

    def __init__(self, max_cost: Optional[float] = None):
        """Initialize the tracker.

        Args:
            max_cost: Budget ceiling in USD, or None for unlimited
        """
        if max_cost is not None and max_cost < 0:
            raise ValueError("max_cost cannot be negative")
        self.max_cost = max_cost
        self.reset()

    def reset(self) -> None:
        """Clear all recorded usage."""
        self.total_cost = 0.0
        self.total_input_tokens = 0
        self.total_output_tokens = 0
        self.total_cache_creation_tokens = 0
        self.total_cache_read_tokens = 0
        self._usage_by_model: Dict[str, ModelUsage] = {}

    def record_usage(
        self,
        model: str,
        input_tokens: int,
        output_tokens: int,
        cache_creation_tokens: int = 0,
        cache_read_tokens: int = 0,
    ) -> float:
        """Record API usage and return its cost.

        The budget check and the commit happen in one synchronous step.

        Returns:
            Cost of this usage in USD

        Raises:
            BudgetExceeded: If the usage would exceed max_cost; nothing is recorded
        """
        usage = TokenUsage(
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cache_creation_tokens=cache_creation_tokens,
            cache_read_tokens=cache_read_tokens,
        )
        cost = calculate_cost(model, usage)
        new_total = self.total_cost + cost

        if self.max_cost is not None and new_total > self.max_cost:
            raise BudgetExceeded(attempted=new_total, limit=self.max_cost)

        self.total_cost = new_total
        self.total_input_tokens += usage.input_tokens
        self.total_output_tokens += usage.output_tokens
        self.total_cache_creation_tokens += usage.cache_creation_tokens
        self.total_cache_read_tokens += usage.cache_read_tokens
        self._usage_by_model[model] = self._usage_by_model.get(model, ModelUsage()).add(usage, cost)
        return cost

    def record(self, model: str, usage: TokenUsage) -> float:
        """Record a TokenUsage; see record_usage."""
        return self.record_usage(
            model,
            usage.input_tokens,
            usage.output_tokens,
            usage.cache_creation_tokens,
            usage.cache_read_tokens,
        )

    def estimate_cost(
        self,
        model: str,
        input_tokens: int,
        output_tokens: int,
        cache_creation_tokens: int = 0,
        cache_read_tokens: int = 0,
    ) -> float:
        """Price usage without recording it."""
        return calculate_cost(model, TokenUsage(
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cache_creation_tokens=cache_creation_tokens,
            cache_read_tokens=cache_read_tokens,
        ))

    @property
    def total_tokens(self) -> int:
        return self.total_input_tokens + self.total_output_tokens

    def get_usage_by_model(self) -> Dict[str, ModelUsage]:
        return dict(self._usage_by_model)

    def get_remaining_budget(self) -> Optional[float]:
        """Remaining budget in USD, or None if unlimited."""
        if self.max_cost is None:
            return None
        return max(0.0, self.max_cost - self.total_cost)

    def is_over_budget(self) -> bool:
        if self.max_cost is None:
            return False
        return self.total_cost > self.max_cost

    def get_estimated_cache_savings(self) -> float:
        """Amount saved by cache reads compared to full input price."""
        return sum(
            calculate_cache_savings(model, usage.cache_read_tokens)
            for model, usage in self._usage_by_model.items()
        )
