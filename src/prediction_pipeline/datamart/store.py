"""
Relational upsert store.

Applies sample batches to the datamart with diff-before-write semantics:

    key absent                                    → INSERT
    key present, a numeric field moved > tolerance
      or a text field changed                     → UPDATE
    key present, nothing moved beyond tolerance   → unchanged, no write

All of a batch's reads and writes run inside one transaction; any failure
rolls the whole batch back and surfaces as PersistenceError.

Usage:
    >>> store = EnergyPriceStore("sqlite:///datamart.db")
    >>> store.upsert(samples)
    UpsertResult(inserted=24, updated=0, unchanged=0)
    >>> store.query_by_date(date(2025, 3, 19))
"""

import logging
import threading
import time as time_module
from dataclasses import dataclass
from datetime import UTC, date, datetime, time
from typing import Any, ClassVar, Dict, List, Optional, Sequence, Tuple, Type, Union
from zoneinfo import ZoneInfo

from sqlalchemy import Table, and_, bindparam, create_engine, select
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from config.config import PipelineConfig
from core.errors.exceptions import PersistenceError
from core.logging import get_logger, log_exception, log_with_context
from prediction_pipeline.common.metrics import record_upsert, record_upsert_failure
from prediction_pipeline.datamart.tables import energy_prices, metadata, weather_forecasts
from prediction_pipeline.schemas.events import (
    EnergyPriceSample,
    Location,
    PredictionSample,
    WeatherForecastSample,
    to_utc,
)

logger = get_logger(__name__)

DEFAULT_TOLERANCE = 1e-4
DEFAULT_TIMEZONE = "Europe/Madrid"

# Rows loaded per SELECT when looking up existing keys
KEY_LOOKUP_CHUNK_SIZE = 500


def to_db_time(value: Optional[datetime]) -> Optional[datetime]:
    """Aware datetime → naive UTC for storage."""
    if value is None:
        return None
    return to_utc(value).replace(tzinfo=None)


def from_db_time(value: Optional[datetime]) -> Optional[datetime]:
    """Stored naive UTC → aware UTC."""
    if value is None:
        return None
    return value.replace(tzinfo=UTC)


@dataclass
class UpsertResult:
    """Row counts of one upsert batch."""

    inserted: int = 0
    updated: int = 0
    unchanged: int = 0

    def __add__(self, other: "UpsertResult") -> "UpsertResult":
        return UpsertResult(
            inserted=self.inserted + other.inserted,
            updated=self.updated + other.updated,
            unchanged=self.unchanged + other.unchanged,
        )

    @property
    def total(self) -> int:
        return self.inserted + self.updated + self.unchanged


class UpsertStore:
    """
    Diff-before-write store for one sample type.

    Subclasses declare the table, the business key columns, the column
    holding the domain timestamp, which columns are compared numerically
    and which by equality, and the row <-> sample mapping.

    The read-diff-write cycle is not atomic against interleaved writers on
    its own, so one instance serializes upserts behind a lock. Writers in
    other processes are caught by the table's unique constraint and fail
    the batch with PersistenceError.
    """

    TABLE: ClassVar[Table]
    SAMPLE_TYPE: ClassVar[Type[PredictionSample]]
    KEY_COLUMNS: ClassVar[Tuple[str, ...]] = ()
    TIME_COLUMN: ClassVar[str] = ""
    NUMERIC_COLUMNS: ClassVar[Tuple[str, ...]] = ()
    TEXT_COLUMNS: ClassVar[Tuple[str, ...]] = ()

    def __init__(self, engine_or_url: Union[str, Engine], tolerance: float = DEFAULT_TOLERANCE):
        if tolerance < 0:
            raise ValueError(f"tolerance must be >= 0, got {tolerance}")

        self.engine = (
            create_engine(engine_or_url) if isinstance(engine_or_url, str) else engine_or_url
        )
        self.tolerance = tolerance
        self._lock = threading.Lock()

        try:
            metadata.create_all(self.engine, tables=[self.TABLE])
        except SQLAlchemyError as e:
            raise PersistenceError(
                f"Failed to create table {self.TABLE.name}",
                cause=e,
                context={"table": self.TABLE.name},
            ) from e

        log_with_context(
            logger,
            logging.DEBUG,
            "Datamart store ready",
            table=self.TABLE.name,
            database_url=self.engine.url.render_as_string(hide_password=True),
        )

    @classmethod
    def from_config(cls, config: PipelineConfig) -> "UpsertStore":
        return cls(config.database_url, tolerance=config.numeric_tolerance)

    # ------------------------------------------------------------------
    # Row mapping
    # ------------------------------------------------------------------

    def to_row(self, sample: PredictionSample) -> Dict[str, Any]:
        raise NotImplementedError

    def from_row(self, row: Dict[str, Any]) -> PredictionSample:
        raise NotImplementedError

    def row_key(self, row: Dict[str, Any]) -> Tuple[Any, ...]:
        return tuple(row[column] for column in self.KEY_COLUMNS)

    # ------------------------------------------------------------------
    # Upsert
    # ------------------------------------------------------------------

    def upsert(self, samples: Sequence[PredictionSample]) -> UpsertResult:
        """
        Apply a batch of samples in one transaction.

        Samples repeating a business key inside the batch collapse to the
        last one.

        Raises:
            PersistenceError: The transaction failed; nothing was applied
        """
        if not samples:
            return UpsertResult()

        incoming: Dict[Tuple[Any, ...], Dict[str, Any]] = {}
        for sample in samples:
            row = self.to_row(sample)
            incoming[self.row_key(row)] = row

        table_name = self.TABLE.name
        start_time = time_module.perf_counter()
        try:
            with self._lock, self.engine.begin() as conn:
                existing = self._load_existing(conn, list(incoming))
                inserts, updates, unchanged = self._diff(incoming, existing)
                if inserts:
                    self._execute_inserts(conn, inserts)
                if updates:
                    self._execute_updates(conn, updates)
        except SQLAlchemyError as e:
            record_upsert_failure(table_name)
            error = PersistenceError(
                f"Upsert into {table_name} failed and was rolled back",
                cause=e,
                context={"table": table_name, "batch_size": len(incoming)},
            )
            log_exception(logger, error, "Upsert batch rolled back", table=table_name, batch_size=len(incoming))
            raise error from e

        result = UpsertResult(inserted=len(inserts), updated=len(updates), unchanged=unchanged)
        record_upsert(table_name, result.inserted, result.updated, result.unchanged)
        log_with_context(
            logger,
            logging.INFO,
            "Upsert committed",
            table=table_name,
            batch_size=len(incoming),
            rows_inserted=result.inserted,
            rows_updated=result.updated,
            rows_unchanged=result.unchanged,
            duration_ms=round((time_module.perf_counter() - start_time) * 1000, 2),
        )
        return result

    def save(self, samples: Sequence[PredictionSample]) -> UpsertResult:
        """Store collaborator spelling of upsert()."""
        return self.upsert(samples)

    def _load_existing(
        self, conn: Connection, keys: List[Tuple[Any, ...]]
    ) -> Dict[Tuple[Any, ...], Dict[str, Any]]:
        """Existing rows for the given business keys, keyed the same way."""
        existing: Dict[Tuple[Any, ...], Dict[str, Any]] = {}
        wanted = set(keys)

        for offset in range(0, len(keys), KEY_LOOKUP_CHUNK_SIZE):
            chunk = keys[offset : offset + KEY_LOOKUP_CHUNK_SIZE]
            # Per-column IN lists select a superset for composite keys
            conditions = [
                self.TABLE.c[column].in_(list({key[index] for key in chunk}))
                for index, column in enumerate(self.KEY_COLUMNS)
            ]
            for row in conn.execute(select(self.TABLE).where(and_(*conditions))):
                mapping = dict(row._mapping)
                key = self.row_key(mapping)
                if key in wanted:
                    existing[key] = mapping
        return existing

    def _diff(
        self,
        incoming: Dict[Tuple[Any, ...], Dict[str, Any]],
        existing: Dict[Tuple[Any, ...], Dict[str, Any]],
    ) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]], int]:
        inserts: List[Dict[str, Any]] = []
        updates: List[Dict[str, Any]] = []
        unchanged = 0

        for key, row in incoming.items():
            stored = existing.get(key)
            if stored is None:
                inserts.append(row)
            elif self.has_changed(stored, row):
                updates.append({**row, "row_id": stored["id"]})
            else:
                unchanged += 1
        return inserts, updates, unchanged

    def has_changed(self, stored: Dict[str, Any], row: Dict[str, Any]) -> bool:
        """True when a numeric column moved beyond tolerance or a text column differs."""
        for column in self.NUMERIC_COLUMNS:
            if abs(float(row[column]) - float(stored[column])) > self.tolerance:
                return True
        for column in self.TEXT_COLUMNS:
            if row[column] != stored[column]:
                return True
        return False

    def _execute_inserts(self, conn: Connection, rows: List[Dict[str, Any]]) -> None:
        conn.execute(self.TABLE.insert(), rows)

    def _execute_updates(self, conn: Connection, rows: List[Dict[str, Any]]) -> None:
        # SET columns come from the parameter keys; row_id only binds the WHERE
        statement = self.TABLE.update().where(self.TABLE.c.id == bindparam("row_id"))
        conn.execute(statement, rows)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def query(self, start: datetime, end: datetime) -> List[PredictionSample]:
        """Samples whose domain timestamp lies in [start, end], ascending."""
        time_column = self.TABLE.c[self.TIME_COLUMN]
        statement = (
            select(self.TABLE)
            .where(time_column >= to_db_time(start), time_column <= to_db_time(end))
            .order_by(time_column, self.TABLE.c.id)
        )
        return self._select(statement)

    def _select(self, statement) -> List[PredictionSample]:
        try:
            with self.engine.connect() as conn:
                rows = [dict(row._mapping) for row in conn.execute(statement)]
        except SQLAlchemyError as e:
            raise PersistenceError(
                f"Query on {self.TABLE.name} failed", cause=e, context={"table": self.TABLE.name}
            ) from e

        log_with_context(
            logger,
            logging.DEBUG,
            "Query complete",
            table=self.TABLE.name,
            rows_returned=len(rows),
        )
        return [self.from_row(row) for row in rows]


class EnergyPriceStore(UpsertStore):
    """Hourly prices keyed by price_timestamp."""

    TABLE = energy_prices
    SAMPLE_TYPE = EnergyPriceSample
    KEY_COLUMNS = ("price_timestamp",)
    TIME_COLUMN = "price_timestamp"
    NUMERIC_COLUMNS = ("price_pvpc", "price_spot")
    TEXT_COLUMNS = ("ss",)

    def to_row(self, sample: EnergyPriceSample) -> Dict[str, Any]:
        return {
            "ts": to_db_time(sample.capture_time),
            "price_timestamp": to_db_time(sample.price_time),
            "price_pvpc": sample.price_pvpc,
            "price_spot": sample.price_spot,
            "ss": sample.source_system,
        }

    def from_row(self, row: Dict[str, Any]) -> EnergyPriceSample:
        return EnergyPriceSample(
            capture_time=from_db_time(row["ts"]),
            price_time=from_db_time(row["price_timestamp"]),
            price_pvpc=row["price_pvpc"],
            price_spot=row["price_spot"],
            source_system=row["ss"],
        )

    def query_by_date(self, day: date, tz: str = DEFAULT_TIMEZONE) -> List[EnergyPriceSample]:
        """Prices of one local calendar day, 00:00:00 through 23:59:59 in ``tz``."""
        zone = ZoneInfo(tz)
        start = datetime.combine(day, time.min, tzinfo=zone)
        end = datetime.combine(day, time(23, 59, 59), tzinfo=zone)
        return self.query(start, end)


class WeatherForecastStore(UpsertStore):
    """Forecasts keyed by (latitude, longitude, prediction_timestamp)."""

    TABLE = weather_forecasts
    SAMPLE_TYPE = WeatherForecastSample
    KEY_COLUMNS = ("latitude", "longitude", "prediction_timestamp")
    TIME_COLUMN = "prediction_timestamp"
    NUMERIC_COLUMNS = (
        "temperature",
        "humidity",
        "weather_id",
        "cloudiness",
        "wind_speed",
        "rain_volume",
        "snow_volume",
    )
    TEXT_COLUMNS = ("location_name", "weather_main", "weather_description", "part_of_day", "ss")

    def to_row(self, sample: WeatherForecastSample) -> Dict[str, Any]:
        return {
            "ts": to_db_time(sample.capture_time),
            "prediction_timestamp": to_db_time(sample.prediction_time),
            "location_name": sample.location.name,
            "latitude": sample.location.latitude,
            "longitude": sample.location.longitude,
            "temperature": sample.temperature,
            "humidity": sample.humidity,
            "weather_id": sample.condition_code,
            "weather_main": sample.condition_main,
            "weather_description": sample.condition_description,
            "cloudiness": sample.cloudiness,
            "wind_speed": sample.wind_speed,
            "rain_volume": sample.rain_volume,
            "snow_volume": sample.snow_volume,
            "part_of_day": sample.part_of_day,
            "ss": sample.source_system,
        }

    def from_row(self, row: Dict[str, Any]) -> WeatherForecastSample:
        return WeatherForecastSample(
            capture_time=from_db_time(row["ts"]),
            location=Location(
                name=row["location_name"], latitude=row["latitude"], longitude=row["longitude"]
            ),
            prediction_time=from_db_time(row["prediction_timestamp"]),
            temperature=row["temperature"],
            humidity=row["humidity"],
            condition_code=row["weather_id"],
            condition_main=row["weather_main"],
            condition_description=row["weather_description"],
            cloudiness=row["cloudiness"],
            wind_speed=row["wind_speed"],
            rain_volume=row["rain_volume"],
            snow_volume=row["snow_volume"],
            part_of_day=row["part_of_day"],
            source_system=row["ss"],
        )

    def query_by_location(self, latitude: float, longitude: float) -> List[WeatherForecastSample]:
        """Every forecast for one location, ascending by prediction time."""
        statement = (
            select(self.TABLE)
            .where(self.TABLE.c.latitude == latitude, self.TABLE.c.longitude == longitude)
            .order_by(self.TABLE.c.prediction_timestamp, self.TABLE.c.id)
        )
        return self._select(statement)


__all__ = [
    "DEFAULT_TOLERANCE",
    "UpsertResult",
    "UpsertStore",
    "EnergyPriceStore",
    "WeatherForecastStore",
    "to_db_time",
    "from_db_time",
]
