"""
Metrics registry.

Holds the last published usage per (provider, model) and renders it as
Prometheus metric families. The polling loop writes, the exposition
server reads; both go through one lock so a scrape never sees half of
an update.
"""

import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, Optional, Tuple

from prometheus_client import CollectorRegistry
from prometheus_client.core import CounterMetricFamily, GaugeMetricFamily

from llm_cost_exporter.config.logger import get_logger

from .errors import ConfigError
from .usage import ProviderIdentity, UsageRecord

LOGGER = get_logger("llm_cost_exporter.registry")

TOKEN_KINDS = ("prompt", "completion")


@dataclass(frozen=True)
class RegistrySnapshot:
    """Point-in-time copy of the registry state."""
    records: Dict[ProviderIdentity, UsageRecord]
    total_cost_usd: float
    last_success: Dict[ProviderIdentity, float]
    failures: Dict[Tuple[ProviderIdentity, str], int]


class MetricsRegistry:
    """Registry of the usage gauges published by the exporter.

    The set of (provider, model) keys is fixed at construction from the
    configured providers and never grows from response content.
    """

    def __init__(
        self,
        identities: Iterable[ProviderIdentity],
        registry: Optional[CollectorRegistry] = None,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize the registry.

        Args:
            identities: Provider identities allowed to publish
            registry: Prometheus registry to attach to (a fresh one by default)
            clock: Wall clock used for last-success timestamps
        """
        self._identities = frozenset(identities)
        self.collector_registry = registry if registry is not None else CollectorRegistry()
        self._clock = clock
        self._lock = threading.Lock()
        self._registered = False

        self._records: Dict[ProviderIdentity, UsageRecord] = {}
        self._total_cost = 0.0
        self._last_success: Dict[ProviderIdentity, float] = {}
        self._failures: Dict[Tuple[ProviderIdentity, str], int] = {}

    @property
    def identities(self) -> frozenset:
        return self._identities

    def register_all_metric_descriptors(self) -> None:
        """Attach this registry's metric families to the Prometheus registry.

        Raises:
            ConfigError: If the descriptors are already registered
        """
        if self._registered:
            raise ConfigError("Metric descriptors already registered")
        try:
            self.collector_registry.register(self)
        except ValueError as e:
            raise ConfigError(f"Metric descriptor registration failed: {e}")
        self._registered = True
        LOGGER.info(
            "Metric descriptors registered",
            extra={"series_keys": sorted(f"{i.provider_name}/{i.model_name}" for i in self._identities)},
        )

    def _identity(self, provider_name: str, model_name: str) -> ProviderIdentity:
        identity = ProviderIdentity(provider_name, model_name)
        if identity not in self._identities:
            raise ValueError(f"Unknown provider/model pair: {provider_name}/{model_name}")
        return identity

    def update(self, provider_name: str, model_name: str, record: UsageRecord) -> None:
        """Overwrite the gauges of one provider with a fresh record.

        All gauges of the key change together. The total-cost gauge
        accumulates the record's cost.
        """
        identity = self._identity(provider_name, model_name)
        with self._lock:
            self._records[identity] = record
            self._total_cost += record.cost_usd
            self._last_success[identity] = self._clock()

    def record_failure(self, provider_name: str, model_name: str, error_kind: str) -> None:
        """Count a failed poll without touching the published gauges."""
        identity = self._identity(provider_name, model_name)
        with self._lock:
            key = (identity, error_kind)
            self._failures[key] = self._failures.get(key, 0) + 1

    def snapshot(self) -> RegistrySnapshot:
        with self._lock:
            return RegistrySnapshot(
                records=dict(self._records),
                total_cost_usd=self._total_cost,
                last_success=dict(self._last_success),
                failures=dict(self._failures),
            )

    def _families(self, snapshot: RegistrySnapshot):
        cost = GaugeMetricFamily(
            "llm_cost_usd", "Cost of LLM API usage in USD",
            labels=["provider", "model"],
        )
        tokens = GaugeMetricFamily(
            "llm_tokens", "Tokens used by LLM API",
            labels=["provider", "model", "type"],
        )
        requests = GaugeMetricFamily(
            "llm_requests", "Number of LLM API requests",
            labels=["provider", "model"],
        )
        total_cost = GaugeMetricFamily(
            "llm_total_cost_usd", "Total accumulated cost across all providers",
        )
        balance = GaugeMetricFamily(
            "llm_remaining_balance_usd", "Remaining budget balance",
            labels=["provider", "model"],
        )
        last_success = GaugeMetricFamily(
            "llm_last_success_timestamp_seconds", "Unix time of the last successful poll",
            labels=["provider", "model"],
        )
        errors = CounterMetricFamily(
            "llm_provider_poll_errors", "Failed provider polls by error kind",
            labels=["provider", "model", "kind"],
        )

        for identity, record in sorted(snapshot.records.items(), key=lambda item: (item[0].provider_name, item[0].model_name)):
            pair = [identity.provider_name, identity.model_name]
            cost.add_metric(pair, record.cost_usd)
            tokens.add_metric(pair + ["prompt"], record.prompt_tokens)
            tokens.add_metric(pair + ["completion"], record.completion_tokens)
            requests.add_metric(pair, record.request_count)
            if record.remaining_balance is not None:
                balance.add_metric(pair, record.remaining_balance)
            last_success.add_metric(pair, snapshot.last_success[identity])

        total_cost.add_metric([], snapshot.total_cost_usd)

        for (identity, kind), count in sorted(snapshot.failures.items(), key=lambda item: (item[0][0].provider_name, item[0][1])):
            errors.add_metric([identity.provider_name, identity.model_name, kind], count)

        return [cost, tokens, requests, total_cost, balance, last_success, errors]

    def describe(self):
        return self._families(RegistrySnapshot({}, 0.0, {}, {}))

    def collect(self):
        return self._families(self.snapshot())
