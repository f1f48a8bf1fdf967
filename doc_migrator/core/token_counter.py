"""
Token usage accounting.

Holds the token counts reported by the API for a single call.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class TokenUsage:
    """Token usage data for cost calculation.

    Contains exact token counts as reported by the API, including prompt
    cache writes and reads.
    """
    input_tokens: int
    output_tokens: int
    cache_creation_tokens: int = 0
    cache_read_tokens: int = 0

    def __post_init__(self):
        """Validate counts are non-negative."""
        for name in ("input_tokens", "output_tokens", "cache_creation_tokens", "cache_read_tokens"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} cannot be negative")

    @property
    def total_tokens(self) -> int:
        """Total billed tokens (input + output)."""
        return self.input_tokens + self.output_tokens
