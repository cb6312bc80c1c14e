"""
Event message schemas for prediction topics.

Contains Pydantic models for the samples published on prediction.Energy and
prediction.Weather, plus the typed decode step every consumer runs before
any business logic.

Wire format (one JSON object per message, camelCase names):

    {"ts": "2025-03-19T10:05:00Z", "priceTimestamp": "2025-03-19T10:00:00Z",
     "pricePVPC": 120.5, "priceSpot": 98.1, "ss": "RedElectricaApi"}
"""

import json
from datetime import UTC, datetime
from typing import Any, ClassVar, Dict, Optional, Tuple, Type, Union

from pydantic import BaseModel, Field, ValidationError, field_serializer, field_validator

from core.errors.exceptions import MalformedEventError


def to_utc(value: datetime) -> datetime:
    """Normalize a datetime to aware UTC; naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def format_utc(value: datetime) -> str:
    """ISO-8601 in UTC with a trailing 'Z' (e.g. 2025-03-19T10:00:00Z)."""
    return to_utc(value).isoformat().replace("+00:00", "Z")


def topic_suffix(topic: str) -> str:
    """Text after the first '.' of a topic name ('prediction.Energy' → 'Energy')."""
    return topic.split(".", 1)[1] if "." in topic else topic


class PredictionSample(BaseModel):
    """Common fields and canonical serialization for all samples.

    Subclasses declare:
        KIND: config/topic key ("energy", "weather")
        TOPIC_SUFFIX: folder and topic suffix ("Energy", "Weather")
        TIME_FIELD: wire name of the domain timestamp
        NUMERIC_FIELDS / TEXT_FIELDS: attributes compared when diffing
    """

    KIND: ClassVar[str] = ""
    TOPIC_SUFFIX: ClassVar[str] = ""
    TIME_FIELD: ClassVar[str] = ""
    NUMERIC_FIELDS: ClassVar[Tuple[str, ...]] = ()
    TEXT_FIELDS: ClassVar[Tuple[str, ...]] = ("source_system",)

    capture_time: Optional[datetime] = Field(
        default=None,
        description="When the sample was captured from the upstream provider",
        alias="ts",
    )
    source_system: str = Field(
        ...,
        description="Upstream provider identifier (e.g. 'RedElectricaApi')",
        min_length=1,
        alias="ss",
    )

    model_config = {
        "populate_by_name": True,
        "frozen": True,
    }

    @field_validator("source_system")
    @classmethod
    def validate_source_system(cls, v: str) -> str:
        v = v.strip().strip('"')
        if not v:
            raise ValueError("ss cannot be empty or whitespace")
        return v

    @field_validator("capture_time")
    @classmethod
    def normalize_capture_time(cls, v: Optional[datetime]) -> Optional[datetime]:
        return to_utc(v) if v is not None else None

    @field_serializer("capture_time")
    def serialize_capture_time(self, v: Optional[datetime]) -> Optional[str]:
        return format_utc(v) if v is not None else None

    @property
    def domain_time(self) -> datetime:
        """The timestamp the sample describes; it decides the log partition day."""
        raise NotImplementedError

    @property
    def business_key(self) -> Tuple[Any, ...]:
        raise NotImplementedError

    def message_key(self) -> str:
        """Business key rendered as a broker record key."""
        return "|".join(
            format_utc(part) if isinstance(part, datetime) else str(part)
            for part in self.business_key
        )

    def to_dict(self) -> Dict[str, Any]:
        """Wire-format dict with absent optional fields omitted."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    def to_payload(self) -> str:
        """Canonical JSON text written to the broker and the event log."""
        return self.model_dump_json(by_alias=True, exclude_none=True)

    def content(self) -> Dict[str, Any]:
        """Wire-format dict without the capture time, used for duplicate detection."""
        data = self.to_dict()
        data.pop("ts", None)
        return data

    def numeric_fields(self) -> Dict[str, float]:
        return {name: getattr(self, name) for name in self.NUMERIC_FIELDS}

    def text_fields(self) -> Dict[str, str]:
        return {name: getattr(self, name) for name in self.TEXT_FIELDS}


class EnergyPriceSample(PredictionSample):
    """Hourly electricity price published on prediction.Energy.

    Attributes:
        capture_time: When the price was fetched (ts)
        price_time: Hour the price applies to (priceTimestamp), business key
        price_pvpc: Regulated PVPC price, €/MWh (pricePVPC)
        price_spot: Wholesale spot price, €/MWh (priceSpot)
        source_system: Provider identifier (ss)

    Example:
        >>> sample = EnergyPriceSample.model_validate({
        ...     "priceTimestamp": "2025-03-19T10:00:00Z",
        ...     "pricePVPC": 120.5, "priceSpot": 98.1, "ss": "RedElectricaApi",
        ... })
        >>> sample.message_key()
        '2025-03-19T10:00:00Z'
    """

    KIND: ClassVar[str] = "energy"
    TOPIC_SUFFIX: ClassVar[str] = "Energy"
    TIME_FIELD: ClassVar[str] = "priceTimestamp"
    NUMERIC_FIELDS: ClassVar[Tuple[str, ...]] = ("price_pvpc", "price_spot")

    price_time: datetime = Field(..., alias="priceTimestamp")
    price_pvpc: float = Field(..., ge=0, alias="pricePVPC")
    price_spot: float = Field(..., ge=0, alias="priceSpot")

    @field_validator("price_time")
    @classmethod
    def normalize_price_time(cls, v: datetime) -> datetime:
        return to_utc(v)

    @field_serializer("price_time")
    def serialize_price_time(self, v: datetime) -> str:
        return format_utc(v)

    @property
    def domain_time(self) -> datetime:
        return self.price_time

    @property
    def business_key(self) -> Tuple[datetime]:
        return (self.price_time,)


class Location(BaseModel):
    """Named forecast location."""

    name: str = Field(..., min_length=1)
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)

    model_config = {"frozen": True}


class WeatherForecastSample(PredictionSample):
    """Forecast for one location and instant, published on prediction.Weather.

    Business key is (latitude, longitude, prediction_time). The upstream
    provider omits rain/snow volumes when there is no precipitation, so
    both default to 0.0.
    """

    KIND: ClassVar[str] = "weather"
    TOPIC_SUFFIX: ClassVar[str] = "Weather"
    TIME_FIELD: ClassVar[str] = "predictionTimestamp"
    NUMERIC_FIELDS: ClassVar[Tuple[str, ...]] = (
        "temperature",
        "humidity",
        "condition_code",
        "cloudiness",
        "wind_speed",
        "rain_volume",
        "snow_volume",
    )
    TEXT_FIELDS: ClassVar[Tuple[str, ...]] = (
        "location_name",
        "condition_main",
        "condition_description",
        "part_of_day",
        "source_system",
    )

    location: Location
    prediction_time: datetime = Field(..., alias="predictionTimestamp")
    temperature: float
    humidity: int = Field(..., ge=0, le=100)
    condition_code: int = Field(..., alias="weatherID")
    condition_main: str = Field(..., alias="weatherMain")
    condition_description: str = Field(..., alias="weatherDescription")
    cloudiness: int = Field(..., ge=0, le=100)
    wind_speed: float = Field(..., ge=0, alias="windSpeed")
    rain_volume: float = Field(default=0.0, ge=0, alias="rainVolume")
    snow_volume: float = Field(default=0.0, ge=0, alias="snowVolume")
    part_of_day: str = Field(..., alias="partOfDay")

    @field_validator("prediction_time")
    @classmethod
    def normalize_prediction_time(cls, v: datetime) -> datetime:
        return to_utc(v)

    @field_serializer("prediction_time")
    def serialize_prediction_time(self, v: datetime) -> str:
        return format_utc(v)

    @property
    def location_name(self) -> str:
        return self.location.name

    @property
    def domain_time(self) -> datetime:
        return self.prediction_time

    @property
    def business_key(self) -> Tuple[float, float, datetime]:
        return (self.location.latitude, self.location.longitude, self.prediction_time)


Sample = Union[EnergyPriceSample, WeatherForecastSample]

SAMPLE_TYPES: Dict[str, Type[PredictionSample]] = {
    EnergyPriceSample.TOPIC_SUFFIX: EnergyPriceSample,
    WeatherForecastSample.TOPIC_SUFFIX: WeatherForecastSample,
}


def sample_type_for(topic: Optional[str], data: Dict[str, Any]) -> Type[PredictionSample]:
    """Pick the sample model from the topic suffix, else from the timestamp field present."""
    if topic:
        sample_type = SAMPLE_TYPES.get(topic_suffix(topic))
        if sample_type is not None:
            return sample_type

    for sample_type in SAMPLE_TYPES.values():
        if sample_type.TIME_FIELD in data:
            return sample_type

    raise MalformedEventError(
        "Payload has no domain timestamp field",
        context={"topic": topic, "fields": sorted(data)},
    )


def decode_event(payload: Union[str, bytes], topic: Optional[str] = None) -> Sample:
    """
    Decode a wire payload into a typed sample.

    Args:
        payload: JSON text or UTF-8 bytes
        topic: Topic the payload came from, used to choose the sample kind

    Returns:
        EnergyPriceSample or WeatherForecastSample

    Raises:
        MalformedEventError: Invalid JSON, missing domain timestamp or
            source system, or any field failing validation
    """
    try:
        data = json.loads(payload)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise MalformedEventError(f"Payload is not valid JSON: {e}", payload=payload, cause=e) from e

    if not isinstance(data, dict):
        raise MalformedEventError(
            f"Payload must be a JSON object, got {type(data).__name__}", payload=payload
        )

    sample_type = sample_type_for(topic, data)
    if sample_type.TIME_FIELD not in data:
        raise MalformedEventError(
            f"Payload is missing '{sample_type.TIME_FIELD}'",
            payload=payload,
            context={"topic": topic},
        )

    try:
        return sample_type.model_validate(data)
    except ValidationError as e:
        raise MalformedEventError(
            f"Payload failed {sample_type.__name__} validation: {e.error_count()} error(s)",
            payload=payload,
            cause=e,
            context={"topic": topic},
        ) from e


__all__ = [
    "PredictionSample",
    "EnergyPriceSample",
    "WeatherForecastSample",
    "Location",
    "Sample",
    "SAMPLE_TYPES",
    "decode_event",
    "sample_type_for",
    "topic_suffix",
    "to_utc",
    "format_utc",
]
