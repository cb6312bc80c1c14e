"""
Event Store Worker - Logs every published prediction to the file event log.

Holds one durable subscription per event kind and merges each delivered
message into its day partition through IdempotentLogWriter.

Subscriptions (defaults, see config.yaml):
    prediction.Energy  → EventStoreBuilder_Energy  / EventStoreBuilder_EnergySub
    prediction.Weather → EventStoreBuilder_Weather / EventStoreBuilder_WeatherSub

A message is acknowledged only after its merge returned. A partition write
failure propagates to the consumer, which rewinds so the message is
delivered again; malformed payloads are logged and acknowledged.
"""

import asyncio
from typing import Dict, List, Optional

from aiokafka.structs import ConsumerRecord

from config.config import EVENT_KINDS, PipelineConfig
from core.logging import get_logger, log_worker_startup, set_log_context
from prediction_pipeline.common.consumer import BaseKafkaConsumer, subscribe
from prediction_pipeline.eventstore.writer import IdempotentLogWriter, MergeOutcome

logger = get_logger(__name__)


class EventStoreWorker:
    """
    Consumes both prediction topics into the event log.

    Usage:
        >>> worker = EventStoreWorker(config)
        >>> await worker.start()   # returns once subscriptions are running
        >>> ...
        >>> await worker.stop()
    """

    WORKER_NAME = "eventstore_builder"

    def __init__(self, config: PipelineConfig, writer: Optional[IdempotentLogWriter] = None):
        self.config = config
        self.writer = writer or IdempotentLogWriter(config.eventstore_base_dir)
        self.consumers: Dict[str, BaseKafkaConsumer] = {}
        self._tasks: Dict[str, asyncio.Task] = {}
        self._running = False

        for kind in EVENT_KINDS:
            identity = config.get_subscription_identity(kind)
            self.consumers[kind] = subscribe(
                config,
                config.get_topic(kind),
                identity.client_id,
                identity.subscription_name,
                self._handle_message,
                consumer_config=config.get_consumer_config(kind),
            )

    async def _handle_message(self, record: ConsumerRecord) -> None:
        await self.store(record.value, record.topic)

    async def store(self, payload, topic: str) -> MergeOutcome:
        """Merge one payload off the event loop; the writer does blocking file IO."""
        return await asyncio.to_thread(self.writer.store, payload, topic)

    async def start(self) -> None:
        """
        Start one consumer task per subscription.

        Subscriptions run in the background until stop(). A subscription
        that fails (e.g. TransportError on connect) is logged and listed in
        failed_subscriptions while the others keep running; calling start()
        again restarts only the failed ones.
        """
        if self._running:
            failed = self.failed_subscriptions
            if not failed:
                logger.warning("EventStoreWorker already running")
                return
            logger.info("Restarting failed subscriptions: %s", ", ".join(failed))
            for kind in failed:
                self._launch(kind)
            return

        set_log_context(stage="eventstore")
        log_worker_startup(
            logger,
            self.WORKER_NAME,
            bootstrap_servers=self.config.bootstrap_servers,
            topics=[consumer.topics[0] for consumer in self.consumers.values()],
            subscriptions=[consumer.subscription_name for consumer in self.consumers.values()],
            extra_config={"Event store": self.config.eventstore_base_dir},
        )

        self._running = True
        for kind in self.consumers:
            self._launch(kind)

    def _launch(self, kind: str) -> None:
        task = asyncio.create_task(self.consumers[kind].start(), name=f"{self.WORKER_NAME}-{kind}")
        task.add_done_callback(self._on_consumer_done)
        self._tasks[kind] = task

    def _on_consumer_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(
                "Subscription stopped with error",
                extra={"error_message": str(error), "error_type": type(error).__name__},
            )

    @property
    def failed_subscriptions(self) -> List[str]:
        """Kinds whose subscription task ended with an exception."""
        return [
            kind
            for kind, task in self._tasks.items()
            if task.done() and not task.cancelled() and task.exception() is not None
        ]

    async def stop(self) -> None:
        """Leave all subscriptions; unacknowledged messages are redelivered on restart."""
        if not self._running:
            return

        logger.info("Stopping EventStoreWorker")
        self._running = False

        for consumer in self.consumers.values():
            try:
                await consumer.stop()
            except Exception as e:
                logger.error(
                    "Error stopping subscription",
                    extra={"subscription": consumer.subscription_name, "error_message": str(e)},
                )

        tasks = list(self._tasks.values())
        for task in tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks = {}

        logger.info("EventStoreWorker stopped")

    @property
    def is_running(self) -> bool:
        """True while started and no subscription has failed."""
        return self._running and not self.failed_subscriptions


__all__ = ["EventStoreWorker"]
