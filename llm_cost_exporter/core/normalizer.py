"""
Usage normalization.

Maps each provider's raw response into a ReportedUsage. These functions
are pure: no I/O, no pricing, and no guessing of fields the provider
did not send.
"""

import math
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Mapping, Optional

from .errors import DecodeError


@dataclass(frozen=True)
class ReportedUsage:
    """What a provider reported, before pricing."""
    prompt_tokens: int = 0
    completion_tokens: int = 0
    request_count: int = 0
    direct_cost_usd: Optional[float] = None
    remaining_balance: Optional[float] = None


def _require_mapping(payload: Any, what: str) -> Mapping[str, Any]:
    if not isinstance(payload, Mapping):
        raise DecodeError(f"{what} response must be a JSON object")
    return payload


def _require_number(payload: Mapping[str, Any], key: str, what: str) -> float:
    value = payload.get(key)
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise DecodeError(f"{what} response missing numeric '{key}'")
    # the JSON decoder accepts NaN and Infinity literals
    if not math.isfinite(value):
        raise DecodeError(f"{what} '{key}' must be finite, got {value!r}")
    return float(value)


def _optional_count(entry: Mapping[str, Any], key: str) -> int:
    value = entry.get(key)
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise DecodeError(f"'{key}' must be a non-negative number")
    if not math.isfinite(value) or value < 0:
        raise DecodeError(f"'{key}' must be a non-negative number")
    return int(value)


def _list_field(payload: Mapping[str, Any], key: str, what: str) -> List[Any]:
    value = payload.get(key, [])
    if value is None:
        return []
    if not isinstance(value, list):
        raise DecodeError(f"{what} '{key}' must be a list")
    return value


def normalize_openai_usage(usage: Any, subscription: Any) -> ReportedUsage:
    """Combine the OpenAI usage and subscription responses.

    ``total_usage`` is accrued spend in cents. The balance is only
    meaningful when the account has a payment method on file;
    pay-as-you-go and free-tier accounts get ``None``.

    Args:
        usage: Body of ``GET /v1/usage``
        subscription: Body of ``GET /v1/dashboard/billing/subscription``

    Returns:
        ReportedUsage with a direct cost

    Raises:
        DecodeError: If either body lacks the required fields
    """
    usage = _require_mapping(usage, "OpenAI usage")
    subscription = _require_mapping(subscription, "OpenAI subscription")

    total_usage_cents = _require_number(usage, "total_usage", "OpenAI usage")
    if total_usage_cents < 0:
        raise DecodeError("OpenAI usage 'total_usage' must be >= 0")
    current_spend = total_usage_cents / 100.0

    has_payment_method = subscription.get("has_payment_method")
    if not isinstance(has_payment_method, bool):
        raise DecodeError("OpenAI subscription response missing 'has_payment_method'")

    remaining_balance = None
    if has_payment_method:
        hard_limit = _require_number(subscription, "hard_limit_usd", "OpenAI subscription")
        remaining_balance = hard_limit - current_spend

    prompt_tokens = completion_tokens = requests = 0
    for entry in _list_field(usage, "data", "OpenAI usage"):
        if not isinstance(entry, Mapping):
            raise DecodeError("OpenAI usage 'data' entries must be objects")
        prompt_tokens += _optional_count(entry, "n_context_tokens_total")
        completion_tokens += _optional_count(entry, "n_generated_tokens_total")
        requests += _optional_count(entry, "n_requests")

    return ReportedUsage(
        prompt_tokens=prompt_tokens,
        completion_tokens=completion_tokens,
        request_count=requests,
        direct_cost_usd=current_spend,
        remaining_balance=remaining_balance,
    )


def _iter_bucket_results(pages: Iterable[Any], what: str) -> Iterable[Mapping[str, Any]]:
    for page in pages:
        page = _require_mapping(page, what)
        for bucket in _list_field(page, "data", what):
            if not isinstance(bucket, Mapping):
                raise DecodeError(f"{what} buckets must be objects")
            for result in _list_field(bucket, "results", what):
                if not isinstance(result, Mapping):
                    raise DecodeError(f"{what} results must be objects")
                yield result


def normalize_anthropic_usage(usage_pages: Iterable[Any], cost_pages: Iterable[Any]) -> ReportedUsage:
    """Combine Anthropic usage-report and cost-report pages.

    Input tokens are the sum of uncached, cache-read and cache-creation
    tokens. Cost amounts are decimal strings in cents. Request counts are
    not reported by this API and stay zero.
    """
    prompt_tokens = completion_tokens = 0
    for result in _iter_bucket_results(usage_pages, "Anthropic usage report"):
        prompt_tokens += _optional_count(result, "uncached_input_tokens")
        prompt_tokens += _optional_count(result, "cache_read_input_tokens")
        cache_creation = result.get("cache_creation") or {}
        if not isinstance(cache_creation, Mapping):
            raise DecodeError("Anthropic 'cache_creation' must be an object")
        for key in cache_creation:
            prompt_tokens += _optional_count(cache_creation, key)
        completion_tokens += _optional_count(result, "output_tokens")

    total_cents = Decimal("0")
    for result in _iter_bucket_results(cost_pages, "Anthropic cost report"):
        currency = result.get("currency", "USD")
        if currency != "USD":
            raise DecodeError(f"Unsupported cost currency: {currency}")
        try:
            amount = Decimal(str(result["amount"]))
        except (KeyError, InvalidOperation):
            raise DecodeError("Anthropic cost result missing decimal 'amount'")
        if not amount.is_finite():
            raise DecodeError(f"Anthropic cost amount must be finite, got {result['amount']!r}")
        total_cents += amount

    if total_cents < 0:
        raise DecodeError("Anthropic cost report total must be >= 0")

    return ReportedUsage(
        prompt_tokens=prompt_tokens,
        completion_tokens=completion_tokens,
        direct_cost_usd=float(total_cents / Decimal("100")),
    )


def normalize_bedrock_usage(metric_sums: Dict[str, Optional[float]]) -> ReportedUsage:
    """Map summed CloudWatch statistics to reported usage.

    Metrics without datapoints arrive as ``None`` and count as zero.
    Bedrock reports no monetary amount, so ``direct_cost_usd`` is left
    unset for the cost model.
    """
    def count(metric: str) -> int:
        value = metric_sums.get(metric)
        if value is None:
            return 0
        if not math.isfinite(value) or value < 0:
            raise DecodeError(f"CloudWatch metric '{metric}' must be a finite value >= 0")
        return int(value)

    return ReportedUsage(
        prompt_tokens=count("InputTokenCount"),
        completion_tokens=count("OutputTokenCount"),
        request_count=count("Invocations"),
    )
