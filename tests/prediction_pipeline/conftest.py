"""
Pytest fixtures for prediction pipeline tests.

Provides:
- Test pipeline configuration (no broker required)
- Sample factories for energy prices and weather forecasts
- ConsumerRecord builder
- Mock aiokafka clients
"""

from datetime import UTC, datetime, timedelta
from typing import List, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
from aiokafka.structs import ConsumerRecord

from config.config import PipelineConfig
from prediction_pipeline.schemas.events import EnergyPriceSample, Location, WeatherForecastSample

DAY_START = datetime(2025, 3, 19, 0, 0, tzinfo=UTC)

LAS_PALMAS = Location(name="Las Palmas", latitude=28.1, longitude=-15.43)


def make_energy_sample(
    hour: int = 10,
    price_pvpc: float = 120.5,
    price_spot: float = 98.1,
    source_system: str = "RedElectricaApi",
    day: datetime = DAY_START,
    capture_time: Optional[datetime] = None,
) -> EnergyPriceSample:
    return EnergyPriceSample(
        capture_time=capture_time or datetime(2025, 3, 19, 9, 0, tzinfo=UTC),
        price_time=day + timedelta(hours=hour),
        price_pvpc=price_pvpc,
        price_spot=price_spot,
        source_system=source_system,
    )


def make_day_of_prices(day: datetime = DAY_START, base_price: float = 100.0) -> List[EnergyPriceSample]:
    """24 hourly samples for one UTC day."""
    return [
        make_energy_sample(hour=hour, price_pvpc=base_price + hour, price_spot=base_price / 2 + hour, day=day)
        for hour in range(24)
    ]


def make_weather_sample(
    hours_ahead: int = 12,
    temperature: float = 22.4,
    location: Location = LAS_PALMAS,
    condition_description: str = "clear sky",
) -> WeatherForecastSample:
    return WeatherForecastSample(
        capture_time=datetime(2025, 3, 19, 9, 0, tzinfo=UTC),
        location=location,
        prediction_time=DAY_START + timedelta(hours=hours_ahead),
        temperature=temperature,
        humidity=64,
        condition_code=800,
        condition_main="Clear",
        condition_description=condition_description,
        cloudiness=0,
        wind_speed=5.2,
        part_of_day="d",
        source_system="OpenWeatherMap",
    )


def make_consumer_record(
    topic: str = "prediction.Energy",
    partition: int = 0,
    offset: int = 0,
    key: Optional[bytes] = b"2025-03-19T10:00:00Z",
    value: Optional[bytes] = None,
) -> ConsumerRecord:
    if value is None:
        value = make_energy_sample().to_payload().encode("utf-8")
    return ConsumerRecord(
        topic=topic,
        partition=partition,
        offset=offset,
        timestamp=1742378400000,
        timestamp_type=0,
        key=key,
        value=value,
        headers=[],
        checksum=None,
        serialized_key_size=len(key) if key else 0,
        serialized_value_size=len(value) if value else 0,
    )


@pytest.fixture
def pipeline_config(tmp_path) -> PipelineConfig:
    """Pipeline configuration pointing at temporary storage."""
    return PipelineConfig(
        bootstrap_servers="localhost:9092",
        consumer_defaults={
            "auto_offset_reset": "earliest",
            "max_poll_records": 100,
            "session_timeout_ms": 30000,
            "redelivery_delay_ms": 0,
        },
        producer_defaults={"acks": "all", "linger_ms": 0},
        eventstore_base_dir=str(tmp_path / "eventstore"),
        database_url=f"sqlite:///{tmp_path / 'datamart.db'}",
    )


@pytest.fixture
def mock_aiokafka_producer():
    """Mock AIOKafkaProducer instance."""
    producer = MagicMock()
    producer.start = AsyncMock()
    producer.stop = AsyncMock()
    producer.flush = AsyncMock()
    producer.send_and_wait = AsyncMock(
        return_value=MagicMock(topic="prediction.Energy", partition=0, offset=5)
    )
    return producer


@pytest.fixture
def mock_aiokafka_consumer():
    """Mock AIOKafkaConsumer instance."""
    consumer = MagicMock()
    consumer.start = AsyncMock()
    consumer.stop = AsyncMock()
    consumer.commit = AsyncMock()
    consumer.getmany = AsyncMock(return_value={})
    consumer.assignment = MagicMock(return_value=set())
    consumer.seek = MagicMock()
    return consumer


@pytest.fixture
def energy_sample():
    """Factory for EnergyPriceSample (see make_energy_sample)."""
    return make_energy_sample


@pytest.fixture
def day_of_prices():
    """Factory for 24 hourly EnergyPriceSamples."""
    return make_day_of_prices


@pytest.fixture
def weather_sample():
    """Factory for WeatherForecastSample (see make_weather_sample)."""
    return make_weather_sample


@pytest.fixture
def consumer_record():
    """Factory for ConsumerRecord (see make_consumer_record)."""
    return make_consumer_record
