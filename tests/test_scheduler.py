"""
Unit tests for the polling scheduler.

Tests failure isolation between providers, stale-result handling and
fixed-period ticking.
"""

import asyncio
from unittest.mock import Mock

import httpx
import pytest

from llm_cost_exporter.core.errors import AuthError, ConfigError, NetworkError
from llm_cost_exporter.core.registry import MetricsRegistry
from llm_cost_exporter.core.scheduler import PollingScheduler
from llm_cost_exporter.core.usage import ProviderIdentity, UsageRecord
from llm_cost_exporter.providers import OpenAIUsageProvider


class FakeProvider:
    """Provider returning scripted results, one per call."""

    def __init__(self, provider_name: str, model_name: str, results, delay: float = 0.0):
        self.identity = ProviderIdentity(provider_name, model_name)
        self._results = list(results)
        self._delays = [delay] * len(self._results)
        self.calls = 0
        self.closed = False

    async def fetch_usage(self) -> UsageRecord:
        index = self.calls
        self.calls += 1
        if self._delays[index]:
            await asyncio.sleep(self._delays[index])
        result = self._results[index]
        if isinstance(result, BaseException):
            raise result
        return result

    async def aclose(self) -> None:
        self.closed = True


class ClientBug(Exception):
    """Non-exporter exception raised by a misbehaving client."""


def _labels(provider: FakeProvider) -> dict:
    return {"provider": provider.identity.provider_name, "model": provider.identity.model_name}


class TestRunTick:
    """Test a single tick across several providers."""

    def _scheduler(self, *providers):
        registry = MetricsRegistry([p.identity for p in providers])
        registry.register_all_metric_descriptors()
        return PollingScheduler(providers, registry, interval_seconds=300), registry

    def test_failure_isolated_on_first_tick(self):
        """Test that X failing leaves X absent while Y and Z publish."""
        x = FakeProvider("openai", "gpt-4", [NetworkError("down", "openai")])
        y = FakeProvider("anthropic", "claude-3-opus", [UsageRecord(cost_usd=3.0)])
        z = FakeProvider("bedrock", "model-z", [UsageRecord(cost_usd=0.5, prompt_tokens=10)])
        scheduler, registry = self._scheduler(x, y, z)

        outcomes = asyncio.run(scheduler.run_tick())

        prom = registry.collector_registry
        assert prom.get_sample_value("llm_cost_usd", _labels(x)) is None
        assert prom.get_sample_value("llm_cost_usd", _labels(y)) == 3.0
        assert prom.get_sample_value("llm_cost_usd", _labels(z)) == 0.5
        assert [o.succeeded for o in outcomes] == [False, True, True]
        assert outcomes[0].error_kind == "network"

    def test_failure_keeps_previous_values(self):
        """Test that X failing on a later tick keeps its prior values."""
        x = FakeProvider("openai", "gpt-4", [
            UsageRecord(cost_usd=10.0, remaining_balance=90.0),
            AuthError("rejected", "openai"),
        ])
        y = FakeProvider("anthropic", "claude-3-opus", [UsageRecord(cost_usd=1.0), UsageRecord(cost_usd=2.0)])
        z = FakeProvider("bedrock", "model-z", [UsageRecord(cost_usd=0.1), UsageRecord(cost_usd=0.2)])
        scheduler, registry = self._scheduler(x, y, z)

        asyncio.run(scheduler.run_tick())
        asyncio.run(scheduler.run_tick())

        prom = registry.collector_registry
        assert prom.get_sample_value("llm_cost_usd", _labels(x)) == 10.0
        assert prom.get_sample_value("llm_remaining_balance_usd", _labels(x)) == 90.0
        assert prom.get_sample_value("llm_cost_usd", _labels(y)) == 2.0
        assert prom.get_sample_value("llm_cost_usd", _labels(z)) == 0.2
        assert prom.get_sample_value(
            "llm_provider_poll_errors_total", dict(_labels(x), kind="auth")
        ) == 1

    def test_update_only_called_on_success(self):
        """Test that failed polls never reach MetricsRegistry.update."""
        x = FakeProvider("openai", "gpt-4", [NetworkError("down"), ClientBug("bad state")])
        registry = Mock()
        scheduler = PollingScheduler([x], registry)

        asyncio.run(scheduler.run_tick())
        asyncio.run(scheduler.run_tick())

        registry.update.assert_not_called()
        assert registry.record_failure.call_count == 2

    def test_credential_failure_skips_provider(self):
        """Test that a failed role assumption only skips that provider."""
        x = FakeProvider("bedrock", "model-x", [ConfigError("AssumeRole failed")])
        y = FakeProvider("openai", "gpt-4", [UsageRecord(cost_usd=1.0)])
        scheduler, registry = self._scheduler(x, y)

        outcomes = asyncio.run(scheduler.run_tick())

        assert outcomes[0].error_kind == "config"
        assert registry.collector_registry.get_sample_value("llm_cost_usd", _labels(y)) == 1.0

    def test_unexpected_exception_isolated(self):
        """Test that a bug in one client does not abort the tick."""
        x = FakeProvider("openai", "gpt-4", [RuntimeError("boom")])
        y = FakeProvider("anthropic", "claude-3-opus", [UsageRecord(cost_usd=4.0)])
        scheduler, registry = self._scheduler(x, y)

        outcomes = asyncio.run(scheduler.run_tick())

        assert outcomes[0].error_kind == "unexpected"
        assert registry.collector_registry.get_sample_value("llm_cost_usd", _labels(y)) == 4.0

    def test_slow_provider_does_not_block_others(self):
        """Test that providers within a tick run concurrently."""
        slow = FakeProvider("openai", "gpt-4", [UsageRecord(cost_usd=1.0)], delay=0.2)
        fast = FakeProvider("anthropic", "claude-3-opus", [UsageRecord(cost_usd=2.0)])
        scheduler, registry = self._scheduler(slow, fast)

        async def run():
            tick = asyncio.create_task(scheduler.run_tick())
            await asyncio.sleep(0.05)
            fast_value = registry.collector_registry.get_sample_value("llm_cost_usd", _labels(fast))
            await tick
            return fast_value

        assert asyncio.run(run()) == 2.0


class TestNonFiniteResponses:
    """Test that NaN in a provider response never reaches the published totals."""

    def test_nan_spend_fails_tick_and_keeps_total(self):
        """Test that a NaN spend is a decode failure and the total stays finite."""
        bodies = [b'{"total_usage": 5000}', b'{"total_usage": NaN}', b'{"total_usage": 5000}']

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/v1/usage":
                return httpx.Response(200, content=bodies.pop(0))
            return httpx.Response(200, json={"has_payment_method": False})

        provider = OpenAIUsageProvider(
            api_key="sk-test",
            client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )
        registry = MetricsRegistry([provider.identity])
        scheduler = PollingScheduler([provider], registry)

        outcomes = [asyncio.run(scheduler.run_tick())[0] for _ in range(3)]

        assert [o.succeeded for o in outcomes] == [True, False, True]
        assert outcomes[1].error_kind == "decode"
        assert registry.snapshot().total_cost_usd == 100.0


class TestStaleResults:
    """Test that overrunning ticks never overwrite newer data."""

    def test_late_result_from_older_tick_discarded(self):
        """Test that a result arriving after a newer tick's result is dropped."""
        provider = FakeProvider("openai", "gpt-4", [UsageRecord(cost_usd=1.0), UsageRecord(cost_usd=2.0)])
        provider._delays = [0.2, 0.0]
        registry = MetricsRegistry([provider.identity])
        scheduler = PollingScheduler([provider], registry)

        async def run():
            first = asyncio.create_task(scheduler.run_tick())
            await asyncio.sleep(0.01)
            second = await scheduler.run_tick()
            return await first, second

        first, second = asyncio.run(run())

        assert second[0].applied is True
        assert first[0].succeeded is True
        assert first[0].applied is False
        assert registry.snapshot().records[provider.identity].cost_usd == 2.0


class TestRunForever:
    """Test the fixed-period loop."""

    def test_runs_requested_ticks(self):
        """Test that the loop starts one tick per period."""
        provider = FakeProvider("openai", "gpt-4", [UsageRecord(cost_usd=float(i)) for i in range(3)])
        registry = MetricsRegistry([provider.identity])
        scheduler = PollingScheduler([provider], registry, interval_seconds=0.01)

        asyncio.run(scheduler.run_forever(max_ticks=3))

        assert provider.calls == 3
        assert registry.snapshot().records[provider.identity].cost_usd == 2.0

    def test_fixed_period_not_delayed_by_slow_tick(self):
        """Test that a slow tick does not push back the next one."""
        provider = FakeProvider("openai", "gpt-4", [UsageRecord(cost_usd=1.0), UsageRecord(cost_usd=2.0)])
        provider._delays = [0.3, 0.0]
        registry = MetricsRegistry([provider.identity])
        scheduler = PollingScheduler([provider], registry, interval_seconds=0.05)

        async def run():
            loop = asyncio.get_running_loop()
            start = loop.time()
            task = asyncio.create_task(scheduler.run_forever(max_ticks=2))
            while provider.calls < 2:
                await asyncio.sleep(0.005)
            second_started = loop.time() - start
            await task
            return second_started

        assert asyncio.run(run()) < 0.25
        # tick 2 finished first; tick 1's late result is discarded
        assert registry.snapshot().records[provider.identity].cost_usd == 2.0

    def test_loop_survives_failing_provider(self):
        """Test that failures never terminate the loop."""
        provider = FakeProvider("openai", "gpt-4", [NetworkError("down")] * 3)
        registry = MetricsRegistry([provider.identity])
        scheduler = PollingScheduler([provider], registry, interval_seconds=0.01)

        asyncio.run(scheduler.run_forever(max_ticks=3))

        assert provider.calls == 3
        assert registry.snapshot().failures[(provider.identity, "network")] == 3

    def test_invalid_interval(self):
        """Test that the period must be positive."""
        with pytest.raises(ValueError, match="interval_seconds must be > 0"):
            PollingScheduler([], Mock(), interval_seconds=0)
