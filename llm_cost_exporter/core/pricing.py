"""
Pricing calculations and rate management.

Derives USD cost from token counts for providers that do not report
a monetary amount themselves.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Optional

from llm_cost_exporter.config.logger import get_logger

from .normalizer import ReportedUsage
from .usage import UsageRecord

LOGGER = get_logger("llm_cost_exporter.pricing")


@dataclass(frozen=True)
class ModelPricing:
    """Per-token pricing for a specific model."""
    prompt_rate_per_1k: Decimal  # USD per 1K prompt tokens
    completion_rate_per_1k: Decimal  # USD per 1K completion tokens


@dataclass(frozen=True)
class PricingTable:
    """Static pricing table, read-only at runtime."""
    prices: Dict[str, ModelPricing]

    def get_pricing(self, model: str) -> Optional[ModelPricing]:
        """Get pricing for a specific model.

        Args:
            model: Model identifier

        Returns:
            ModelPricing for the model, or None if the model is unknown
        """
        return self.prices.get(model)


DEFAULT_PRICING_TABLE = PricingTable({
    "gpt-4": ModelPricing(
        prompt_rate_per_1k=Decimal("0.03"),
        completion_rate_per_1k=Decimal("0.06")
    ),
    "gpt-3.5-turbo": ModelPricing(
        prompt_rate_per_1k=Decimal("0.0015"),
        completion_rate_per_1k=Decimal("0.002")
    ),
    "claude-3-opus": ModelPricing(
        prompt_rate_per_1k=Decimal("0.015"),
        completion_rate_per_1k=Decimal("0.075")
    ),
    "claude-3-sonnet": ModelPricing(
        prompt_rate_per_1k=Decimal("0.003"),
        completion_rate_per_1k=Decimal("0.015")
    ),
    "claude-3-haiku": ModelPricing(
        prompt_rate_per_1k=Decimal("0.00025"),
        completion_rate_per_1k=Decimal("0.00125")
    ),
    # Bedrock model ids
    "anthropic.claude-3-opus-20240229-v1:0": ModelPricing(
        prompt_rate_per_1k=Decimal("0.015"),
        completion_rate_per_1k=Decimal("0.075")
    ),
    "anthropic.claude-3-sonnet-20240229-v1:0": ModelPricing(
        prompt_rate_per_1k=Decimal("0.003"),
        completion_rate_per_1k=Decimal("0.015")
    ),
    "anthropic.claude-3-haiku-20240307-v1:0": ModelPricing(
        prompt_rate_per_1k=Decimal("0.00025"),
        completion_rate_per_1k=Decimal("0.00125")
    ),
})


def calculate_cost(
    model: str,
    prompt_tokens: int,
    completion_tokens: int,
    table: Optional[PricingTable] = None,
) -> float:
    """Calculate USD cost for a token count.

    Unknown models cost 0.0 rather than raising, so a model missing from
    the table degrades to an under-reported cost instead of a failed poll.

    Args:
        model: Model identifier
        prompt_tokens: Prompt (input) token count
        completion_tokens: Completion (output) token count
        table: Pricing table (defaults to DEFAULT_PRICING_TABLE)

    Returns:
        Total cost in USD
    """
    table = table or DEFAULT_PRICING_TABLE
    pricing = table.get_pricing(model)
    if pricing is None:
        LOGGER.warning(
            "Pricing model missing; returning zero cost",
            extra={"model": model},
        )
        return 0.0

    # (tokens / 1000) * rate_per_1k
    prompt_cost = (Decimal(prompt_tokens) / Decimal("1000")) * pricing.prompt_rate_per_1k
    completion_cost = (Decimal(completion_tokens) / Decimal("1000")) * pricing.completion_rate_per_1k

    return float(prompt_cost + completion_cost)


def price_usage(
    model: str,
    reported: ReportedUsage,
    table: Optional[PricingTable] = None,
) -> UsageRecord:
    """Turn reported usage into a priced UsageRecord.

    A cost reported directly by the provider is authoritative; the
    token-based figure is only computed when there is none.
    """
    if reported.direct_cost_usd is not None:
        cost = reported.direct_cost_usd
    else:
        cost = calculate_cost(
            model, reported.prompt_tokens, reported.completion_tokens, table
        )

    return UsageRecord(
        cost_usd=cost,
        prompt_tokens=reported.prompt_tokens,
        completion_tokens=reported.completion_tokens,
        request_count=reported.request_count,
        remaining_balance=reported.remaining_balance,
    )
