"""
Datamart table definitions (SQLAlchemy Core).

Timestamps are stored as naive UTC. Each table carries a unique constraint
on its business key, so a row can never be inserted twice even if two
processes race past the diff step.
"""

from sqlalchemy import (
    Column,
    DateTime,
    Float,
    Integer,
    MetaData,
    String,
    Table,
    UniqueConstraint,
)

metadata = MetaData()

energy_prices = Table(
    "energy_prices",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("ts", DateTime, nullable=True),
    Column("price_timestamp", DateTime, nullable=False),
    Column("price_pvpc", Float, nullable=False),
    Column("price_spot", Float, nullable=False),
    Column("ss", String(128), nullable=False),
    UniqueConstraint("price_timestamp", name="uq_energy_prices_price_timestamp"),
)

weather_forecasts = Table(
    "weather_forecasts",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("ts", DateTime, nullable=True),
    Column("prediction_timestamp", DateTime, nullable=False, index=True),
    Column("location_name", String(128), nullable=False),
    Column("latitude", Float, nullable=False),
    Column("longitude", Float, nullable=False),
    Column("temperature", Float, nullable=False),
    Column("humidity", Integer, nullable=False),
    Column("weather_id", Integer, nullable=False),
    Column("weather_main", String(64), nullable=False),
    Column("weather_description", String(256), nullable=False),
    Column("cloudiness", Integer, nullable=False),
    Column("wind_speed", Float, nullable=False),
    Column("rain_volume", Float, nullable=False),
    Column("snow_volume", Float, nullable=False),
    Column("part_of_day", String(16), nullable=False),
    Column("ss", String(128), nullable=False),
    UniqueConstraint(
        "latitude",
        "longitude",
        "prediction_timestamp",
        name="uq_weather_forecasts_location_time",
    ),
)

__all__ = ["metadata", "energy_prices", "weather_forecasts"]
