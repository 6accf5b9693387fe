"""
Normalized usage records and provider identities.

Every provider poll ends in one of these records, regardless of which API
the numbers came from.
"""

import math
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class ProviderIdentity:
    """Label pair under which a provider's usage is published."""
    provider_name: str
    model_name: str


@dataclass(frozen=True)
class UsageRecord:
    """Usage and cost snapshot for one provider+model at one poll tick.

    Created fresh every poll and never mutated afterwards.
    """
    cost_usd: float
    prompt_tokens: int = 0
    completion_tokens: int = 0
    request_count: int = 0
    remaining_balance: Optional[float] = None  # None when the account has no fixed limit

    def __post_init__(self):
        """Validate that costs are finite and counts are non-negative."""
        if not math.isfinite(self.cost_usd):
            raise ValueError("cost_usd must be finite")
        if self.cost_usd < 0:
            raise ValueError("cost_usd must be >= 0")
        if self.remaining_balance is not None and not math.isfinite(self.remaining_balance):
            raise ValueError("remaining_balance must be finite")
        if self.prompt_tokens < 0:
            raise ValueError("prompt_tokens must be >= 0")
        if self.completion_tokens < 0:
            raise ValueError("completion_tokens must be >= 0")
        if self.request_count < 0:
            raise ValueError("request_count must be >= 0")

    @property
    def total_tokens(self) -> int:
        """Total tokens used (prompt + completion)."""
        return self.prompt_tokens + self.completion_tokens
