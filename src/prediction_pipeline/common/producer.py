"""
Async broker producer for prediction samples.

Provides aiokafka-based message production with:
- Bounded connect and send timeouts
- Durable delivery (acks=all) keyed by each sample's business key
- Broker failures surfaced as TransportError, never retried here
"""

import asyncio
import logging
from typing import Any, Dict, Optional

from aiokafka import AIOKafkaProducer
from aiokafka.structs import RecordMetadata

from config.config import PipelineConfig
from core.errors.classifiers import BrokerErrorClassifier
from core.logging import get_logger, log_exception, log_with_context
from prediction_pipeline.common.metrics import (
    record_message_produced,
    record_producer_error,
    update_connection_status,
)
from prediction_pipeline.schemas.events import PredictionSample

logger = get_logger(__name__)


def build_security_config(config: PipelineConfig) -> Dict[str, Any]:
    """aiokafka security settings shared by producers and consumers."""
    if config.security_protocol == "PLAINTEXT":
        return {}

    security = {"security_protocol": config.security_protocol}
    if config.security_protocol.startswith("SASL"):
        security.update(
            {
                "sasl_mechanism": config.sasl_mechanism,
                "sasl_plain_username": config.sasl_plain_username,
                "sasl_plain_password": config.sasl_plain_password,
            }
        )
    return security


class BaseKafkaProducer:
    """
    Async broker producer.

    Usage:
        >>> config = load_config()
        >>> producer = BaseKafkaProducer(config, client_id="energy-feeder")
        >>> await producer.start()
        >>> try:
        ...     await producer.publish("prediction.Energy", sample)
        ... finally:
        ...     await producer.stop()
    """

    def __init__(
        self,
        config: PipelineConfig,
        client_id: Optional[str] = None,
    ):
        """
        Args:
            config: Pipeline configuration (broker connection and producer defaults)
            client_id: Client identity reported to the broker
        """
        self.config = config
        self.client_id = client_id
        self._producer: Optional[AIOKafkaProducer] = None
        self._started = False

        self.producer_config = config.get_producer_config()

    def _build_producer_config(self) -> Dict[str, Any]:
        kafka_producer_config = {
            "bootstrap_servers": self.config.bootstrap_servers,
            "value_serializer": lambda v: v,  # Payloads arrive already encoded
            "request_timeout_ms": self.config.request_timeout_ms,
            "metadata_max_age_ms": self.config.metadata_max_age_ms,
            "connections_max_idle_ms": self.config.connections_max_idle_ms,
            # Retained by the broker until every durable subscription consumed it
            "acks": "all",
            "enable_idempotence": self.producer_config.get("enable_idempotence", False),
        }
        if self.client_id:
            kafka_producer_config["client_id"] = self.client_id
        if "linger_ms" in self.producer_config:
            kafka_producer_config["linger_ms"] = self.producer_config["linger_ms"]
        if "compression_type" in self.producer_config:
            compression = self.producer_config["compression_type"]
            kafka_producer_config["compression_type"] = None if compression == "none" else compression
        if "max_request_size" in self.producer_config:
            kafka_producer_config["max_request_size"] = self.producer_config["max_request_size"]

        kafka_producer_config.update(build_security_config(self.config))
        return kafka_producer_config

    async def start(self) -> None:
        """
        Connect to the broker.

        Raises:
            TransportError: Broker unreachable within connect_timeout_ms
            AuthError: Credentials rejected
        """
        if self._started:
            logger.warning("Producer already started, ignoring duplicate start call")
            return

        self._producer = AIOKafkaProducer(**self._build_producer_config())
        timeout = self.config.connect_timeout_ms / 1000

        try:
            await asyncio.wait_for(self._producer.start(), timeout=timeout)
        except Exception as e:
            error = BrokerErrorClassifier.classify(
                e, "producer", {"bootstrap_servers": self.config.bootstrap_servers}
            )
            log_exception(
                logger,
                error,
                "Failed to connect producer",
                bootstrap_servers=self.config.bootstrap_servers,
                client_id=self.client_id,
            )
            await self._close_quietly()
            raise error from e

        self._started = True
        update_connection_status("producer", connected=True)

        log_with_context(
            logger,
            logging.INFO,
            "Producer started",
            bootstrap_servers=self.config.bootstrap_servers,
            client_id=self.client_id,
        )

    async def _close_quietly(self) -> None:
        producer, self._producer = self._producer, None
        if producer is None:
            return
        try:
            await producer.stop()
        except Exception as e:
            log_exception(logger, e, "Error closing producer after failed start", level=logging.WARNING)

    async def stop(self) -> None:
        """
        Flush pending messages and close the connection.

        Safe to call multiple times. Errors during stop are logged but not
        re-raised so they cannot mask the exception that triggered shutdown.
        """
        if not self._started or self._producer is None:
            logger.debug("Producer not started or already stopped")
            return

        logger.info("Stopping producer")
        try:
            await self._producer.flush()
            await self._producer.stop()
            logger.info("Producer stopped")
        except Exception as e:
            log_exception(logger, e, "Error stopping producer")
        finally:
            update_connection_status("producer", connected=False)
            self._producer = None
            self._started = False

    async def publish(self, topic: str, event: PredictionSample) -> RecordMetadata:
        """
        Publish a sample with its canonical payload, keyed by business key.

        Raises:
            TransportError: Broker unavailable or the send timed out
        """
        return await self._send(topic, event.message_key(), event.to_payload().encode("utf-8"))

    async def _send(self, topic: str, key: str, value_bytes: bytes) -> RecordMetadata:
        if not self._started or self._producer is None:
            raise RuntimeError("Producer not started. Call start() first.")

        log_with_context(
            logger,
            logging.DEBUG,
            "Sending message",
            topic=topic,
            message_key=key,
            value_size=len(value_bytes),
        )

        try:
            metadata = await asyncio.wait_for(
                self._producer.send_and_wait(
                    topic,
                    key=key.encode("utf-8"),
                    value=value_bytes,
                ),
                timeout=self.config.request_timeout_ms / 1000,
            )
        except Exception as e:
            record_message_produced(topic, success=False)
            record_producer_error(topic, type(e).__name__)

            error = BrokerErrorClassifier.classify(e, "producer", {"topic": topic})
            log_exception(logger, error, "Failed to send message", topic=topic, message_key=key)
            raise error from e

        record_message_produced(topic, success=True)
        log_with_context(
            logger,
            logging.DEBUG,
            "Message sent",
            topic=metadata.topic,
            partition=metadata.partition,
            offset=metadata.offset,
        )
        return metadata

    @property
    def is_started(self) -> bool:
        """Check if producer is started and ready to send messages."""
        return self._started and self._producer is not None


__all__ = [
    "BaseKafkaProducer",
    "AIOKafkaProducer",
    "RecordMetadata",
    "build_security_config",
]
