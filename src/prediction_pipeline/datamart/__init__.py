"""Relational datamart: diff-before-write stores for prediction samples."""

from prediction_pipeline.datamart.store import (
    DEFAULT_TOLERANCE,
    EnergyPriceStore,
    UpsertResult,
    UpsertStore,
    WeatherForecastStore,
)
from prediction_pipeline.datamart.tables import energy_prices, metadata, weather_forecasts

__all__ = [
    "DEFAULT_TOLERANCE",
    "EnergyPriceStore",
    "UpsertResult",
    "UpsertStore",
    "WeatherForecastStore",
    "energy_prices",
    "metadata",
    "weather_forecasts",
]
