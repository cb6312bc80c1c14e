"""Pydantic schemas for prediction topics."""

from prediction_pipeline.schemas.events import (
    EnergyPriceSample,
    Location,
    PredictionSample,
    Sample,
    WeatherForecastSample,
    decode_event,
    topic_suffix,
)

__all__ = [
    "PredictionSample",
    "EnergyPriceSample",
    "WeatherForecastSample",
    "Location",
    "Sample",
    "decode_event",
    "topic_suffix",
]
