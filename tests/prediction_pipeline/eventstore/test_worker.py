"""
Tests for EventStoreWorker.

Consumers are never connected; their start/stop are replaced with mocks.
"""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from core.errors.exceptions import PartitionIOError, TransportError
from prediction_pipeline.eventstore.worker import EventStoreWorker
from prediction_pipeline.eventstore.writer import MergeOutcome


@pytest.fixture
def worker(pipeline_config):
    worker = EventStoreWorker(pipeline_config)
    for consumer in worker.consumers.values():
        consumer.start = AsyncMock()
        consumer.stop = AsyncMock()
    return worker


class TestEventStoreWorker:
    """Test subscription wiring and message handling."""

    def test_one_durable_subscription_per_kind(self, worker):
        energy = worker.consumers["energy"]
        weather = worker.consumers["weather"]

        assert energy.topics == ["prediction.Energy"]
        assert energy.client_id == "EventStoreBuilder_Energy"
        assert energy.subscription_name == "EventStoreBuilder_EnergySub"
        assert weather.topics == ["prediction.Weather"]
        assert weather.subscription_name == "EventStoreBuilder_WeatherSub"

    @pytest.mark.asyncio
    async def test_handle_message_writes_partition(self, worker, pipeline_config, consumer_record):
        await worker._handle_message(consumer_record())

        path = (
            worker.writer.base_dir / "Energy" / "RedElectricaApi" / "20250319.events"
        )
        lines = path.read_text(encoding="utf-8").splitlines()
        assert json.loads(lines[0])["pricePVPC"] == 120.5

    @pytest.mark.asyncio
    async def test_redelivered_message_is_duplicate(self, worker, consumer_record):
        assert await worker.store(consumer_record().value, "prediction.Energy") == MergeOutcome.APPENDED
        assert await worker.store(consumer_record().value, "prediction.Energy") == MergeOutcome.DUPLICATE

    @pytest.mark.asyncio
    async def test_write_failure_propagates_to_consumer(self, pipeline_config, consumer_record):
        writer = MagicMock()
        writer.store.side_effect = PartitionIOError("disk full")
        worker = EventStoreWorker(pipeline_config, writer=writer)

        with pytest.raises(PartitionIOError):
            await worker._handle_message(consumer_record())

    @pytest.mark.asyncio
    async def test_start_and_stop(self, worker):
        await worker.start()
        await asyncio.sleep(0)

        assert worker.is_running
        for consumer in worker.consumers.values():
            consumer.start.assert_awaited_once()

        await worker.stop()

        assert not worker.is_running
        for consumer in worker.consumers.values():
            consumer.stop.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_duplicate_start_is_ignored(self, worker):
        await worker.start()
        await worker.start()
        await asyncio.sleep(0)

        worker.consumers["energy"].start.assert_awaited_once()
        await worker.stop()

    @pytest.mark.asyncio
    async def test_failing_subscription_is_reported(self, worker):
        worker.consumers["energy"].start.side_effect = TransportError("broker down")

        await worker.start()
        await asyncio.sleep(0)

        worker.consumers["weather"].start.assert_awaited_once()
        assert worker.failed_subscriptions == ["energy"]
        assert not worker.is_running
        await worker.stop()

    @pytest.mark.asyncio
    async def test_start_again_restarts_only_failed_subscriptions(self, worker):
        worker.consumers["energy"].start.side_effect = [TransportError("broker down"), None]
        worker.consumers["weather"].start.side_effect = TransportError("broker down")

        await worker.start()
        await asyncio.sleep(0)
        assert worker.failed_subscriptions == ["energy", "weather"]

        worker.consumers["weather"].start.side_effect = None
        await worker.start()
        await asyncio.sleep(0)

        assert worker.failed_subscriptions == []
        assert worker.is_running
        assert worker.consumers["energy"].start.await_count == 2
        assert worker.consumers["weather"].start.await_count == 2
        await worker.stop()

    @pytest.mark.asyncio
    async def test_healthy_subscriptions_are_not_restarted(self, worker):
        worker.consumers["energy"].start.side_effect = TransportError("broker down")
        await worker.start()
        await asyncio.sleep(0)

        worker.consumers["energy"].start.side_effect = None
        await worker.start()
        await asyncio.sleep(0)

        worker.consumers["weather"].start.assert_awaited_once()
        await worker.stop()

    @pytest.mark.asyncio
    async def test_stop_continues_after_consumer_stop_error(self, worker):
        worker.consumers["energy"].stop.side_effect = RuntimeError("close failed")
        await worker.start()

        await worker.stop()

        worker.consumers["weather"].stop.assert_awaited_once()
        assert not worker.is_running

    @pytest.mark.asyncio
    async def test_stop_when_not_started(self, worker):
        await worker.stop()
        worker.consumers["energy"].stop.assert_not_awaited()
