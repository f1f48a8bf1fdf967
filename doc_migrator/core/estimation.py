"""
Pre-flight cost estimation for migration plans.

This module estimates the cost of a plan before any API call is made.
It is read-only and deterministic.

Estimation mirrors the runtime cost model but with these key differences:
1. No side effects (nothing is recorded on a tracker)
2. No budget exceptions raised (the verdict reports the outcome instead)
3. Output tokens are a per-document average, not measured
"""

from dataclasses import dataclass
from enum import Enum, auto
from typing import Optional

from .pricing import calculate_cost
from .tasks import MigrationPlan
from .token_counter import TokenUsage

DEFAULT_AVG_OUTPUT_TOKENS_PER_DOC = 1000
MINUTES_PER_DOC = 0.5
WARN_BUDGET_FRACTION = 0.8


class EstimateVerdict(Enum):
    """Verdict of a dry run against the budget."""
    PASS = auto()
    WARN = auto()
    FAIL = auto()


@dataclass(frozen=True)
class PlanEstimate:
    """Estimated resource use of a plan."""
    task_count: int
    input_tokens: int
    output_tokens: int
    estimated_cost: float
    estimated_minutes: float
    verdict: EstimateVerdict
    max_cost: Optional[float] = None

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


def estimate_plan(
    plan: MigrationPlan,
    model: str,
    max_cost: Optional[float] = None,
    workers: int = 1,
    avg_output_tokens_per_doc: int = DEFAULT_AVG_OUTPUT_TOKENS_PER_DOC,
) -> PlanEstimate:
    """Estimate the cost and duration of a plan.

    Args:
        plan: Migration plan to estimate
        model: Model the run will use
        max_cost: Optional budget ceiling in USD
        workers: Number of concurrent workers
        avg_output_tokens_per_doc: Expected output tokens per document

    Returns:
        PlanEstimate with a PASS/WARN/FAIL verdict against the budget
    """
    if workers < 1:
        raise ValueError("workers must be >= 1")

    task_count = len(plan.tasks)
    if plan.total_estimated_tokens is not None:
        input_tokens = plan.total_estimated_tokens
    else:
        input_tokens = sum(task.estimated_tokens for task in plan.tasks)
    output_tokens = task_count * avg_output_tokens_per_doc

    if task_count == 0:
        estimated_cost = 0.0
    elif plan.estimated_cost is not None:
        estimated_cost = plan.estimated_cost
    else:
        estimated_cost = calculate_cost(model, TokenUsage(input_tokens, output_tokens))

    return PlanEstimate(
        task_count=task_count,
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        estimated_cost=estimated_cost,
        estimated_minutes=task_count * MINUTES_PER_DOC / workers,
        verdict=_determine_verdict(estimated_cost, max_cost),
        max_cost=max_cost,
    )


def _determine_verdict(estimated_cost: float, max_cost: Optional[float]) -> EstimateVerdict:
    """Compare an estimate against the budget."""
    if max_cost is None:
        return EstimateVerdict.PASS
    if estimated_cost > max_cost:
        return EstimateVerdict.FAIL
    if estimated_cost > max_cost * WARN_BUDGET_FRACTION:
        return EstimateVerdict.WARN
    return EstimateVerdict.PASS
