"""
Prediction Pipeline: streamed weather and energy-price predictions.

Samples are published to broker topics and persisted twice, each path
idempotent under at-least-once delivery:

    Feeder → prediction.Energy / prediction.Weather → EventStoreWorker → eventstore/<Kind>/<ss>/<YYYYMMDD>.events
       ↓
    UpsertStore (energy_prices / weather_forecasts)

Subpackages:
    schemas    - Domain event models and typed decode
    common     - Broker producer/consumer, publisher, metrics
    eventstore - Partitioned append-only event log and replay
    datamart   - Relational upsert store
    feeders    - Periodic fetch → publish → store cycles

Dependencies:
    - core.*: Errors and structured logging
    - aiokafka: Async broker client
    - pydantic: Event schema validation
    - SQLAlchemy: Relational store
"""

from config.config import PipelineConfig

__version__ = "0.1.0"
__all__ = ["PipelineConfig"]
