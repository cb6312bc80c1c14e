"""Tests for event log replay."""

from datetime import UTC, date, datetime, timedelta

import pytest

from prediction_pipeline.datamart.store import EnergyPriceStore, UpsertResult, WeatherForecastStore
from prediction_pipeline.eventstore.reader import EventStoreReader
from prediction_pipeline.eventstore.writer import IdempotentLogWriter

DAY = datetime(2025, 3, 19, tzinfo=UTC)


@pytest.fixture
def base_dir(tmp_path):
    return tmp_path / "eventstore"


@pytest.fixture
def logged_prices(base_dir, day_of_prices):
    """Three days of hourly prices written through the log writer."""
    writer = IdempotentLogWriter(base_dir)
    for offset in (0, 1, 2):
        for sample in day_of_prices(day=DAY + timedelta(days=offset)):
            writer.store(sample.to_payload(), "prediction.Energy")
    return base_dir


class TestEventStoreReader:
    """Test partition selection and replay."""

    def test_partitions_by_day_range(self, logged_prices):
        reader = EventStoreReader(logged_prices)

        assert [p.name for p in reader.partitions("Energy")] == [
            "20250319.events",
            "20250320.events",
            "20250321.events",
        ]
        assert [p.name for p in reader.partitions("Energy", start_day=date(2025, 3, 20))] == [
            "20250320.events",
            "20250321.events",
        ]
        assert [
            p.name
            for p in reader.partitions("Energy", start_day=date(2025, 3, 20), end_day=date(2025, 3, 20))
        ] == ["20250320.events"]

    def test_ignores_unexpected_file_names(self, logged_prices):
        (logged_prices / "Energy" / "RedElectricaApi" / "notes.events").write_text("")
        assert len(EventStoreReader(logged_prices).partitions("Energy")) == 3

    def test_iter_events(self, logged_prices):
        events = list(EventStoreReader(logged_prices).iter_events("Energy", source_system="RedElectricaApi"))

        assert len(events) == 72
        assert events[0].price_time == DAY

    def test_read_partition_skips_undecodable_lines(self, base_dir, energy_sample):
        path = base_dir / "Energy" / "RedElectricaApi" / "20250319.events"
        path.parent.mkdir(parents=True)
        path.write_text("junk\n" + energy_sample().to_payload() + "\n", encoding="utf-8")

        samples = EventStoreReader(base_dir).read_partition(path, "Energy")

        assert samples == [energy_sample()]

    def test_replay_converges(self, logged_prices, pipeline_config):
        store = EnergyPriceStore(pipeline_config.database_url)
        reader = EventStoreReader(logged_prices)

        assert reader.replay_into(store, "Energy") == UpsertResult(inserted=72)
        assert reader.replay_into(store, "Energy") == UpsertResult(unchanged=72)

    def test_replay_of_empty_log(self, base_dir, pipeline_config):
        store = WeatherForecastStore(pipeline_config.database_url)
        assert EventStoreReader(base_dir).replay_into(store, "Weather") == UpsertResult()

    def test_replay_weather(self, base_dir, pipeline_config, weather_sample):
        writer = IdempotentLogWriter(base_dir)
        for hours in (3, 6, 9):
            writer.store(weather_sample(hours_ahead=hours).to_payload(), "prediction.Weather")

        store = WeatherForecastStore(pipeline_config.database_url)
        result = EventStoreReader(base_dir).replay_into(store, "Weather")

        assert result == UpsertResult(inserted=3)
        assert len(store.query_by_location(28.1, -15.43)) == 3
