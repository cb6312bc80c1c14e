"""
Durable-subscription broker consumer.

Provides async message consumption with:
- Durable subscriber identity (client id + subscription name) whose
  committed position survives restarts
- Per-message offset commit after the handler returns (at-least-once)
- Error classification: permanent failures are committed past, every other
  failure rewinds the partition so the message is redelivered
- Handler failures never terminate the subscription
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Dict, List, Optional

from aiokafka import AIOKafkaConsumer
from aiokafka.structs import ConsumerRecord, TopicPartition
from opentelemetry import trace
from opentelemetry.propagate import extract
from opentelemetry.trace import SpanKind, StatusCode

from config.config import PipelineConfig
from core.errors.classifiers import BrokerErrorClassifier
from core.logging import MessageLogContext, get_logger, log_exception, log_with_context
from core.types import ErrorCategory
from prediction_pipeline.common.metrics import (
    message_processing_duration_seconds,
    record_message_consumed,
    record_processing_error,
    update_connection_status,
)
from prediction_pipeline.common.producer import build_security_config

logger = get_logger(__name__)

MessageHandler = Callable[[ConsumerRecord], Awaitable[None]]


class BaseKafkaConsumer:
    """
    Async consumer bound to a durable subscription.

    The subscription name is the consumer group: offsets committed under it
    persist across restarts, so anything not acknowledged before a crash is
    delivered again. Messages are handed to the handler one at a time in
    partition order.

    Usage:
        >>> async def handle(record: ConsumerRecord) -> None:
        ...     writer.store(record.value, record.topic)
        >>>
        >>> consumer = BaseKafkaConsumer(
        ...     config=config,
        ...     topics=["prediction.Energy"],
        ...     client_id="EventStoreBuilder_Energy",
        ...     subscription_name="EventStoreBuilder_EnergySub",
        ...     message_handler=handle,
        ... )
        >>> await consumer.start()  # runs until stop()
    """

    def __init__(
        self,
        config: PipelineConfig,
        topics: List[str],
        client_id: str,
        subscription_name: str,
        message_handler: MessageHandler,
        consumer_config: Optional[Dict] = None,
    ):
        """
        Args:
            config: Pipeline configuration
            topics: Topics to subscribe to
            client_id: Client identity reported to the broker
            subscription_name: Durable subscription (consumer group) name
            message_handler: Async callback invoked once per message
            consumer_config: Consumer settings; defaults to config.consumer_defaults
        """
        if not topics:
            raise ValueError("At least one topic must be specified")
        if not subscription_name:
            raise ValueError("subscription_name is required for a durable subscription")

        self.config = config
        self.topics = topics
        self.client_id = client_id
        self.subscription_name = subscription_name
        self.message_handler = message_handler
        self.consumer_config = consumer_config if consumer_config is not None else config.get_consumer_config()
        self.redelivery_delay = self.consumer_config.get("redelivery_delay_ms", 1000) / 1000

        self._consumer: Optional[AIOKafkaConsumer] = None
        self._running = False

    def _build_consumer_config(self) -> Dict:
        kafka_consumer_config = {
            "bootstrap_servers": self.config.bootstrap_servers,
            "client_id": self.client_id,
            "group_id": self.subscription_name,
            "request_timeout_ms": self.config.request_timeout_ms,
            "metadata_max_age_ms": self.config.metadata_max_age_ms,
            "connections_max_idle_ms": self.config.connections_max_idle_ms,
            # Offsets are committed explicitly once the handler returns
            "enable_auto_commit": False,
            "auto_offset_reset": self.consumer_config.get("auto_offset_reset", "earliest"),
            "max_poll_records": self.consumer_config.get("max_poll_records", 100),
            "session_timeout_ms": self.consumer_config.get("session_timeout_ms", 30000),
        }
        for optional in ("heartbeat_interval_ms", "max_poll_interval_ms", "fetch_max_wait_ms"):
            if optional in self.consumer_config:
                kafka_consumer_config[optional] = self.consumer_config[optional]

        kafka_consumer_config.update(build_security_config(self.config))
        return kafka_consumer_config

    async def start(self) -> None:
        """
        Connect, join the durable subscription and consume until stop().

        Raises:
            TransportError: Broker unreachable within connect_timeout_ms
        """
        if self._running:
            logger.warning("Consumer already running, ignoring duplicate start call")
            return

        log_with_context(
            logger,
            logging.INFO,
            "Starting consumer",
            topic=",".join(self.topics),
            client_id=self.client_id,
            subscription=self.subscription_name,
        )

        self._consumer = AIOKafkaConsumer(*self.topics, **self._build_consumer_config())
        try:
            await asyncio.wait_for(
                self._consumer.start(), timeout=self.config.connect_timeout_ms / 1000
            )
        except Exception as e:
            error = BrokerErrorClassifier.classify(
                e, "consumer", {"subscription": self.subscription_name}
            )
            log_exception(
                logger,
                error,
                "Failed to connect consumer",
                bootstrap_servers=self.config.bootstrap_servers,
                subscription=self.subscription_name,
            )
            self._consumer = None
            raise error from e

        self._running = True
        update_connection_status("consumer", connected=True)

        try:
            await self._consume_loop()
        except asyncio.CancelledError:
            logger.info("Consumer loop cancelled, shutting down")
            raise
        finally:
            self._running = False

    async def stop(self) -> None:
        """
        Leave the subscription and close the connection.

        Uncommitted messages stay with the subscription and are delivered
        again on the next start. Safe to call multiple times.
        """
        if self._consumer is None:
            logger.debug("Consumer not running or already stopped")
            return

        logger.info("Stopping consumer")
        self._running = False
        consumer, self._consumer = self._consumer, None

        try:
            await consumer.stop()
            logger.info("Consumer stopped")
        except Exception as e:
            log_exception(logger, e, "Error stopping consumer")
            raise
        finally:
            update_connection_status("consumer", connected=False)

    async def _consume_loop(self) -> None:
        """
        Fetch batches and hand each message to the handler in partition order.

        When a message must be redelivered its partition is rewound and the
        rest of that partition's batch is dropped, preserving order.
        """
        waiting_logged = False

        while self._running and self._consumer:
            try:
                if not self._consumer.assignment():
                    if not waiting_logged:
                        log_with_context(
                            logger,
                            logging.INFO,
                            "Waiting for partition assignment",
                            subscription=self.subscription_name,
                        )
                        waiting_logged = True
                    await asyncio.sleep(0.5)
                    continue

                data = await self._consumer.getmany(timeout_ms=1000)

                rewound = False
                for messages in data.values():
                    for message in messages:
                        if not self._running:
                            logger.info("Consumer stopped, breaking message loop")
                            return

                        if not await self._process_message(message):
                            rewound = True
                            break

                if rewound:
                    await asyncio.sleep(self.redelivery_delay)

            except asyncio.CancelledError:
                logger.info("Consumption loop cancelled")
                raise
            except Exception as e:
                log_exception(logger, e, "Error in consumption loop", subscription=self.subscription_name)
                await asyncio.sleep(1)

    async def _process_message(self, message: ConsumerRecord) -> bool:
        """
        Handle a single message.

        Returns:
            True when the subscription may move past the message (handled, or
            failed permanently), False when the partition was rewound to it.
        """
        carrier = {}
        if message.headers:
            for key, value in message.headers:
                carrier[key] = value.decode("utf-8") if isinstance(value, bytes) else value

        key = message.key.decode("utf-8") if message.key else None
        tracer = trace.get_tracer(__name__)

        with tracer.start_as_current_span(
            "broker.message.process",
            context=extract(carrier),
            kind=SpanKind.CONSUMER,
            attributes={
                "messaging.system": "kafka",
                "messaging.destination": message.topic,
                "messaging.kafka.partition": message.partition,
                "messaging.kafka.offset": message.offset,
                "messaging.kafka.consumer_group": self.subscription_name,
            },
        ) as span:
            with MessageLogContext(
                topic=message.topic,
                partition=message.partition,
                offset=message.offset,
                key=key,
                subscription=self.subscription_name,
            ):
                start_time = time.perf_counter()
                try:
                    await self.message_handler(message)
                except Exception as e:
                    duration = time.perf_counter() - start_time
                    message_processing_duration_seconds.labels(
                        topic=message.topic, subscription=self.subscription_name
                    ).observe(duration)
                    record_message_consumed(message.topic, self.subscription_name, success=False)

                    span.set_status(StatusCode.ERROR)
                    span.record_exception(e)
                    return await self._handle_processing_error(message, e, duration)

                duration = time.perf_counter() - start_time
                message_processing_duration_seconds.labels(
                    topic=message.topic, subscription=self.subscription_name
                ).observe(duration)

                await self._acknowledge(message)
                record_message_consumed(message.topic, self.subscription_name, success=True)
                span.set_status(StatusCode.OK)

                log_with_context(
                    logger,
                    logging.DEBUG,
                    "Message processed",
                    duration_ms=round(duration * 1000, 2),
                )
                return True

    async def _acknowledge(self, message: ConsumerRecord) -> None:
        """Commit the position just past this message under the subscription.

        Commits are cumulative per partition, so a failed commit is covered by
        the next successful one; until then a restart redelivers the message.
        """
        tp = TopicPartition(message.topic, message.partition)
        try:
            await self._consumer.commit({tp: message.offset + 1})
        except Exception as e:
            log_exception(
                logger,
                BrokerErrorClassifier.classify(e, "consumer"),
                "Offset commit failed",
                level=logging.WARNING,
                include_traceback=False,
            )

    async def _handle_processing_error(
        self, message: ConsumerRecord, error: Exception, duration: float
    ) -> bool:
        """
        Route a handler failure by category.

        - PERMANENT: log, commit past the message (redelivery cannot help)
        - anything else: log, rewind the partition to this offset so the
          message is delivered again on the next poll
        """
        classified_error = BrokerErrorClassifier.classify(
            error,
            "consumer",
            context={
                "topic": message.topic,
                "partition": message.partition,
                "offset": message.offset,
                "subscription": self.subscription_name,
            },
        )
        error_category = classified_error.category
        record_processing_error(message.topic, self.subscription_name, error_category.value)

        common_context = {
            "error_category": error_category.value,
            "error_type": type(classified_error).__name__,
            "duration_ms": round(duration * 1000, 2),
        }

        if error_category == ErrorCategory.PERMANENT:
            log_exception(
                logger,
                error,
                "Permanent error processing message - skipping",
                **common_context,
            )
            await self._acknowledge(message)
            return True

        log_exception(
            logger,
            error,
            "Error processing message - will be redelivered",
            level=logging.WARNING,
            **common_context,
        )
        self._consumer.seek(TopicPartition(message.topic, message.partition), message.offset)
        return False

    @property
    def is_running(self) -> bool:
        return self._running and self._consumer is not None


def subscribe(
    config: PipelineConfig,
    topic: str,
    client_id: str,
    subscription_name: str,
    handler: MessageHandler,
    consumer_config: Optional[Dict] = None,
) -> BaseKafkaConsumer:
    """Create a durable single-topic subscription; call start() to consume."""
    return BaseKafkaConsumer(
        config=config,
        topics=[topic],
        client_id=client_id,
        subscription_name=subscription_name,
        message_handler=handler,
        consumer_config=consumer_config,
    )


__all__ = [
    "BaseKafkaConsumer",
    "MessageHandler",
    "subscribe",
    "AIOKafkaConsumer",
    "ConsumerRecord",
    "TopicPartition",
]
