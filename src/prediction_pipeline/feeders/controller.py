"""
Feeder controller - periodic fetch, publish and store cycles.

Each cycle asks the provider for the samples of a target date, publishes
every sample to the broker, then upserts the batch into the datamart:

    Provider.fetch(date) → EventPublisher.publish(sample) × N → UpsertStore.save(batch)

Providers are external HTTP sources; anything with a blocking
``fetch(date) -> list`` works. Publisher and store are both optional so a
feeder can run publish-only or store-only.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import date, datetime
from typing import List, Optional, Protocol

from core.errors.exceptions import PipelineError
from core.logging import (
    format_cycle_output,
    generate_cycle_id,
    get_logger,
    log_exception,
    log_with_context,
    set_log_context,
)
from prediction_pipeline.common.publisher import EventPublisher
from prediction_pipeline.datamart.store import UpsertResult, UpsertStore
from prediction_pipeline.schemas.events import PredictionSample

logger = get_logger(__name__)


class Provider(Protocol):
    """Upstream source of samples for a date."""

    def fetch(self, target_date: date) -> List[PredictionSample]: ...


@dataclass
class CycleResult:
    """Counts of one feeder cycle."""

    cycle_id: str
    target_date: date
    fetched: int = 0
    published: int = 0
    failed: int = 0
    stored: Optional[UpsertResult] = None


class FeederController:
    """
    Runs feeder cycles on a fixed interval.

    Usage:
        >>> controller = FeederController(provider, publisher, store, interval_seconds=3600)
        >>> await controller.start()   # first cycle immediately, then every hour
        >>> ...
        >>> await controller.stop()
    """

    def __init__(
        self,
        provider: Provider,
        publisher: Optional[EventPublisher] = None,
        store: Optional[UpsertStore] = None,
        interval_seconds: float = 3600.0,
        name: str = "feeder",
    ):
        if interval_seconds <= 0:
            raise ValueError(f"interval_seconds must be > 0, got {interval_seconds}")

        self.provider = provider
        self.publisher = publisher
        self.store = store
        self.interval_seconds = interval_seconds
        self.name = name

        self._cycle_count = 0
        self._running = False
        self._stop_event: Optional[asyncio.Event] = None

    async def run_cycle(self, target_date: Optional[date] = None) -> CycleResult:
        """
        Fetch, publish and store the samples of one date (today by default).

        A sample that fails to publish is logged and counted; the rest of
        the cycle goes on.

        Raises:
            Exception: Provider fetch failed
            PersistenceError: The store rolled the batch back
        """
        self._cycle_count += 1
        cycle_id = generate_cycle_id()
        set_log_context(cycle_id=cycle_id, stage=self.name)
        target_date = target_date or datetime.now().date()
        result = CycleResult(cycle_id=cycle_id, target_date=target_date)
        start_time = time.perf_counter()

        samples = await asyncio.to_thread(self.provider.fetch, target_date)
        result.fetched = len(samples)

        if self.publisher is not None:
            for sample in samples:
                try:
                    await self.publisher.publish(sample)
                    result.published += 1
                except PipelineError as e:
                    result.failed += 1
                    log_exception(
                        logger,
                        e,
                        "Failed to publish sample",
                        level=logging.WARNING,
                        include_traceback=False,
                        business_key=sample.message_key(),
                        source_system=sample.source_system,
                    )

        if self.store is not None and samples:
            result.stored = await asyncio.to_thread(self.store.save, samples)

        stored = result.stored
        log_with_context(
            logger,
            logging.INFO,
            format_cycle_output(
                self._cycle_count,
                result.fetched,
                result.published,
                result.failed,
                inserted=stored.inserted if stored else None,
                updated=stored.updated if stored else None,
                unchanged=stored.unchanged if stored else None,
            ),
            target_date=target_date.isoformat(),
            records_fetched=result.fetched,
            records_published=result.published,
            records_failed=result.failed,
            duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
        )
        return result

    async def start(self) -> None:
        """Run cycles until stop(); the first runs immediately."""
        if self._running:
            logger.warning("Feeder already running, ignoring duplicate start call")
            return

        log_with_context(
            logger,
            logging.INFO,
            "Starting feeder",
            interval_seconds=self.interval_seconds,
        )

        # A failed connect leaves the controller stopped so start() can be retried
        if self.publisher is not None:
            await self.publisher.start()

        self._running = True
        self._stop_event = asyncio.Event()

        try:
            while self._running:
                try:
                    await self.run_cycle()
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    log_exception(logger, e, "Feeder cycle failed")

                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
                except asyncio.TimeoutError:
                    pass
        finally:
            self._running = False
            if self.publisher is not None:
                await self.publisher.close()
            logger.info("Feeder stopped")

    async def stop(self) -> None:
        self._running = False
        if self._stop_event is not None:
            self._stop_event.set()

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def cycle_count(self) -> int:
        return self._cycle_count


__all__ = ["CycleResult", "FeederController", "Provider"]
