"""
Polling scheduler.

Runs every provider once per tick on a fixed period and merges the
successful results into the metrics registry.
"""

import asyncio
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Set

from llm_cost_exporter.config.logger import get_logger

from .errors import ExporterError
from .registry import MetricsRegistry
from .usage import ProviderIdentity, UsageRecord

LOGGER = get_logger("llm_cost_exporter.scheduler")


@dataclass(frozen=True)
class PollOutcome:
    """Result of polling one provider in one tick."""
    identity: ProviderIdentity
    tick: int
    record: Optional[UsageRecord] = None
    error_kind: Optional[str] = None
    applied: bool = False

    @property
    def succeeded(self) -> bool:
        return self.record is not None


class PollingScheduler:
    """Fixed-period polling loop over a fixed set of providers.

    Ticks start on schedule whether or not the previous tick finished.
    A provider's result is applied only if no later tick has already
    published for that provider.
    """

    def __init__(
        self,
        providers: Sequence,
        registry: MetricsRegistry,
        interval_seconds: float = 300.0,
    ):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")
        self.providers = list(providers)
        self.registry = registry
        self.interval_seconds = interval_seconds
        self._tick = 0
        self._latest_applied: Dict[ProviderIdentity, int] = {}
        self._in_flight: Set[asyncio.Task] = set()

    async def run_tick(self) -> List[PollOutcome]:
        """Poll every provider concurrently and publish the successes."""
        self._tick += 1
        tick = self._tick
        LOGGER.debug("Tick started", extra={"tick": tick, "providers": len(self.providers)})
        outcomes = await asyncio.gather(*(self._poll_one(provider, tick) for provider in self.providers))
        LOGGER.info(
            "Tick finished",
            extra={
                "tick": tick,
                "succeeded": sum(1 for outcome in outcomes if outcome.succeeded),
                "failed": sum(1 for outcome in outcomes if not outcome.succeeded),
            },
        )
        return list(outcomes)

    async def _poll_one(self, provider, tick: int) -> PollOutcome:
        identity = provider.identity
        try:
            record = await provider.fetch_usage()
        except ExporterError as e:
            LOGGER.warning(
                "Provider poll failed: %s",
                e,
                extra={"provider": identity.provider_name, "tick": tick, "kind": e.kind},
            )
            self.registry.record_failure(identity.provider_name, identity.model_name, e.kind)
            return PollOutcome(identity, tick, error_kind=e.kind)
        except Exception:
            # isolate the other providers from bugs in one client
            LOGGER.exception(
                "Unexpected error polling provider",
                extra={"provider": identity.provider_name, "tick": tick},
            )
            self.registry.record_failure(identity.provider_name, identity.model_name, "unexpected")
            return PollOutcome(identity, tick, error_kind="unexpected")

        if tick < self._latest_applied.get(identity, 0):
            LOGGER.info(
                "Discarding stale result",
                extra={"provider": identity.provider_name, "tick": tick},
            )
            return PollOutcome(identity, tick, record=record)

        self._latest_applied[identity] = tick
        self.registry.update(identity.provider_name, identity.model_name, record)
        return PollOutcome(identity, tick, record=record, applied=True)

    async def run_forever(self, max_ticks: Optional[int] = None) -> None:
        """Start a tick every ``interval_seconds`` until cancelled.

        Args:
            max_ticks: Stop after this many ticks and wait for them (None runs forever)
        """
        loop = asyncio.get_running_loop()
        next_tick = loop.time()
        started = 0
        LOGGER.info(
            "Polling loop started",
            extra={"interval_seconds": self.interval_seconds, "providers": len(self.providers)},
        )
        try:
            while max_ticks is None or started < max_ticks:
                task = asyncio.create_task(self.run_tick())
                self._in_flight.add(task)
                task.add_done_callback(self._in_flight.discard)
                started += 1
                if max_ticks is not None and started >= max_ticks:
                    break

                next_tick += self.interval_seconds
                await asyncio.sleep(max(0.0, next_tick - loop.time()))

            if self._in_flight:
                await asyncio.gather(*self._in_flight)
        except asyncio.CancelledError:
            LOGGER.info("Polling loop cancelled")
            for task in list(self._in_flight):
                task.cancel()
            raise
