"""Publishes prediction samples to the topic of their kind."""

import logging
from typing import Optional

from aiokafka.structs import RecordMetadata

from config.config import PipelineConfig
from core.logging import get_logger, log_with_context
from core.utils.worker_id import generate_worker_id
from prediction_pipeline.common.producer import BaseKafkaProducer
from prediction_pipeline.schemas.events import PredictionSample

logger = get_logger(__name__)


class EventPublisher:
    """
    Publisher collaborator for feeders: start() / publish(sample) / close().

    Energy samples go to the energy topic (prediction.Energy), weather
    samples to the weather topic (prediction.Weather). A publish failure
    raises TransportError; the caller decides whether to go on.
    """

    def __init__(
        self,
        config: PipelineConfig,
        client_id: Optional[str] = None,
        producer: Optional[BaseKafkaProducer] = None,
    ):
        self.config = config
        self.client_id = client_id or generate_worker_id("publisher")
        self.producer = producer or BaseKafkaProducer(config, client_id=self.client_id)

    async def start(self) -> None:
        await self.producer.start()

    def topic_for(self, sample: PredictionSample) -> str:
        return self.config.get_topic(sample.KIND)

    async def publish(self, sample: PredictionSample) -> RecordMetadata:
        topic = self.topic_for(sample)
        metadata = await self.producer.publish(topic, sample)
        log_with_context(
            logger,
            logging.DEBUG,
            "Published sample",
            topic=topic,
            business_key=sample.message_key(),
            source_system=sample.source_system,
        )
        return metadata

    async def close(self) -> None:
        await self.producer.stop()

    async def __aenter__(self) -> "EventPublisher":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()


__all__ = ["EventPublisher"]
