"""
Unit tests for usage normalization.

Tests the mapping of raw provider responses into ReportedUsage.
"""

import pytest

from llm_cost_exporter.core.errors import DecodeError
from llm_cost_exporter.core.normalizer import (
    normalize_anthropic_usage,
    normalize_bedrock_usage,
    normalize_openai_usage,
)


class TestOpenAINormalizer:
    """Test OpenAI usage + subscription normalization."""

    def test_balance_with_payment_method(self):
        """Verify spend and balance derivation from cents."""
        reported = normalize_openai_usage(
            {"total_usage": 5000},
            {"hard_limit_usd": 100.0, "has_payment_method": True},
        )
        assert reported.direct_cost_usd == 50.0
        assert reported.remaining_balance == 50.0

    def test_no_payment_method_has_no_balance(self):
        """Verify pay-as-you-go accounts report no balance regardless of spend."""
        reported = normalize_openai_usage(
            {"total_usage": 5000},
            {"hard_limit_usd": 100.0, "has_payment_method": False},
        )
        assert reported.direct_cost_usd == 50.0
        assert reported.remaining_balance is None

    def test_no_payment_method_ignores_missing_limit(self):
        """Verify the limit is not required without a payment method."""
        reported = normalize_openai_usage({"total_usage": 0}, {"has_payment_method": False})
        assert reported.remaining_balance is None

    def test_tokens_zero_without_breakdown(self):
        """Verify missing per-request data leaves tokens at zero."""
        reported = normalize_openai_usage(
            {"total_usage": 1234},
            {"hard_limit_usd": 20.0, "has_payment_method": True},
        )
        assert reported.prompt_tokens == 0
        assert reported.completion_tokens == 0
        assert reported.request_count == 0

    def test_tokens_summed_from_breakdown(self):
        """Verify per-entry token counts are summed when present."""
        reported = normalize_openai_usage(
            {
                "total_usage": 100,
                "data": [
                    {"n_context_tokens_total": 10, "n_generated_tokens_total": 5, "n_requests": 1},
                    {"n_context_tokens_total": 20, "n_generated_tokens_total": 7, "n_requests": 2},
                ],
            },
            {"has_payment_method": False},
        )
        assert reported.prompt_tokens == 30
        assert reported.completion_tokens == 12
        assert reported.request_count == 3

    def test_overspend_gives_negative_balance(self):
        """Verify spend above the limit is reported as is."""
        reported = normalize_openai_usage(
            {"total_usage": 15000},
            {"hard_limit_usd": 100.0, "has_payment_method": True},
        )
        assert reported.remaining_balance == -50.0

    def test_missing_total_usage(self):
        """Verify decode error on missing spend."""
        with pytest.raises(DecodeError, match="total_usage"):
            normalize_openai_usage({}, {"has_payment_method": False})

    def test_missing_payment_flag(self):
        """Verify decode error on missing payment method flag."""
        with pytest.raises(DecodeError, match="has_payment_method"):
            normalize_openai_usage({"total_usage": 1}, {"hard_limit_usd": 1.0})

    def test_missing_hard_limit_with_payment_method(self):
        """Verify the limit is required when a payment method is on file."""
        with pytest.raises(DecodeError, match="hard_limit_usd"):
            normalize_openai_usage({"total_usage": 1}, {"has_payment_method": True})

    def test_non_object_response(self):
        """Verify decode error when a body is not an object."""
        with pytest.raises(DecodeError):
            normalize_openai_usage([], {"has_payment_method": False})


class TestAnthropicNormalizer:
    """Test Anthropic usage/cost report normalization."""

    def test_tokens_and_cost(self):
        """Verify token buckets and cents amounts are summed."""
        usage_pages = [{
            "data": [
                {"results": [{
                    "uncached_input_tokens": 100,
                    "cache_read_input_tokens": 20,
                    "cache_creation": {"ephemeral_5m_input_tokens": 5, "ephemeral_1h_input_tokens": 5},
                    "output_tokens": 40,
                }]},
                {"results": [{"uncached_input_tokens": 10, "output_tokens": 1}]},
            ],
        }]
        cost_pages = [{"data": [{"results": [{"amount": "1250.5", "currency": "USD"}]}]}]

        reported = normalize_anthropic_usage(usage_pages, cost_pages)

        assert reported.prompt_tokens == 140
        assert reported.completion_tokens == 41
        assert reported.request_count == 0
        assert reported.direct_cost_usd == pytest.approx(12.505)
        assert reported.remaining_balance is None

    def test_empty_reports(self):
        """Verify empty reports give zero usage with a zero direct cost."""
        reported = normalize_anthropic_usage([{"data": []}], [{"data": []}])
        assert reported.prompt_tokens == 0
        assert reported.direct_cost_usd == 0.0

    def test_cost_without_amount(self):
        """Verify decode error on a cost result without amount."""
        with pytest.raises(DecodeError, match="amount"):
            normalize_anthropic_usage([{"data": []}], [{"data": [{"results": [{"currency": "USD"}]}]}])

    def test_non_usd_currency(self):
        """Verify non-USD amounts are rejected."""
        with pytest.raises(DecodeError, match="currency"):
            normalize_anthropic_usage(
                [{"data": []}],
                [{"data": [{"results": [{"amount": "1", "currency": "EUR"}]}]}],
            )

    def test_data_not_a_list(self):
        """Verify decode error when buckets are malformed."""
        with pytest.raises(DecodeError):
            normalize_anthropic_usage([{"data": "nope"}], [{"data": []}])


class TestBedrockNormalizer:
    """Test CloudWatch sum normalization."""

    def test_sums_mapped(self):
        """Verify metric sums become token and request counts."""
        reported = normalize_bedrock_usage(
            {"InputTokenCount": 1500.0, "OutputTokenCount": 300.0, "Invocations": 7.0}
        )
        assert reported.prompt_tokens == 1500
        assert reported.completion_tokens == 300
        assert reported.request_count == 7
        assert reported.direct_cost_usd is None

    def test_missing_datapoints_are_zero(self):
        """Verify metrics without datapoints count as zero."""
        reported = normalize_bedrock_usage(
            {"InputTokenCount": None, "OutputTokenCount": None, "Invocations": None}
        )
        assert reported.prompt_tokens == 0
        assert reported.request_count == 0

    def test_non_finite_sum_rejected(self):
        """Verify NaN and infinite sums raise a decode error."""
        for value in (float("nan"), float("inf")):
            with pytest.raises(DecodeError, match="InputTokenCount"):
                normalize_bedrock_usage({"InputTokenCount": value})


class TestNonFiniteValues:
    """Test that NaN and Infinity literals from a JSON body never reach a record."""

    @pytest.mark.parametrize("value", [float("nan"), float("inf"), float("-inf")])
    def test_openai_total_usage(self, value):
        """Verify a non-finite spend is a decode error."""
        with pytest.raises(DecodeError, match="total_usage"):
            normalize_openai_usage({"total_usage": value}, {"has_payment_method": False})

    @pytest.mark.parametrize("value", [float("nan"), float("inf")])
    def test_openai_hard_limit(self, value):
        """Verify a non-finite limit is a decode error."""
        with pytest.raises(DecodeError, match="hard_limit_usd"):
            normalize_openai_usage(
                {"total_usage": 100},
                {"hard_limit_usd": value, "has_payment_method": True},
            )

    def test_openai_breakdown_count(self):
        """Verify a non-finite per-entry count is a decode error."""
        with pytest.raises(DecodeError, match="n_requests"):
            normalize_openai_usage(
                {"total_usage": 100, "data": [{"n_requests": float("inf")}]},
                {"has_payment_method": False},
            )

    def test_anthropic_token_count(self):
        """Verify a non-finite token count is a decode error."""
        usage_pages = [{"data": [{"results": [{"output_tokens": float("nan")}]}]}]
        with pytest.raises(DecodeError, match="output_tokens"):
            normalize_anthropic_usage(usage_pages, [{"data": []}])

    @pytest.mark.parametrize("amount", ["NaN", "Infinity", "-Infinity", "sNaN"])
    def test_anthropic_amount(self, amount):
        """Verify non-finite cost amounts are decode errors, not unexpected failures."""
        cost_pages = [{"data": [{"results": [{"amount": amount, "currency": "USD"}]}]}]
        with pytest.raises(DecodeError, match="finite"):
            normalize_anthropic_usage([{"data": []}], cost_pages)
