"""Tests for JSON and console log formatters."""

import json
import logging
import sys

import pytest

from core.logging.broker_context import MessageLogContext, clear_message_context
from core.logging.context import clear_log_context, set_log_context
from core.logging.formatters import ConsoleFormatter, JSONFormatter


def _make_record(
    msg="test message",
    level=logging.INFO,
    name="test.logger",
    exc_info=None,
    **extras,
):
    record = logging.LogRecord(
        name=name,
        level=level,
        pathname="test.py",
        lineno=42,
        msg=msg,
        args=(),
        exc_info=exc_info,
    )
    for key, value in extras.items():
        setattr(record, key, value)
    return record


@pytest.fixture(autouse=True)
def clear_context():
    clear_log_context()
    clear_message_context()
    yield
    clear_log_context()
    clear_message_context()


class TestJSONFormatter:

    def test_formats_basic_json_with_required_fields(self):
        output = json.loads(JSONFormatter().format(_make_record()))

        assert output["level"] == "INFO"
        assert output["logger"] == "test.logger"
        assert output["message"] == "test message"
        assert output["ts"].endswith("Z")

    def test_includes_log_context(self):
        set_log_context(cycle_id="c-20250319-100000-abcd", stage="eventstore", event_kind="energy")
        output = json.loads(JSONFormatter().format(_make_record()))

        assert output["cycle_id"] == "c-20250319-100000-abcd"
        assert output["stage"] == "eventstore"
        assert output["event_kind"] == "energy"

    def test_omits_empty_context(self):
        output = json.loads(JSONFormatter().format(_make_record()))
        assert "cycle_id" not in output
        assert "topic" not in output

    def test_includes_message_context(self):
        with MessageLogContext(topic="prediction.Energy", partition=0, offset=42, subscription="S"):
            output = json.loads(JSONFormatter().format(_make_record()))

        assert output["topic"] == "prediction.Energy"
        assert output["offset"] == 42
        assert output["subscription"] == "S"

    def test_keeps_first_partition_and_offset(self):
        with MessageLogContext(topic="prediction.Energy", partition=0, offset=0):
            output = json.loads(JSONFormatter().format(_make_record()))
        assert output["partition"] == 0
        assert output["offset"] == 0

    def test_unset_partition_is_omitted(self):
        with MessageLogContext(topic="prediction.Energy"):
            output = json.loads(JSONFormatter().format(_make_record()))
        assert "partition" not in output

    def test_extra_fields_override_message_context(self):
        with MessageLogContext(topic="prediction.Energy", offset=42):
            output = json.loads(JSONFormatter().format(_make_record(offset=7)))
        assert output["offset"] == 7

    def test_includes_store_fields(self):
        record = _make_record(table="energy_prices", rows_inserted=24, rows_updated="1")
        output = json.loads(JSONFormatter().format(record))

        assert output["table"] == "energy_prices"
        assert output["rows_inserted"] == 24
        assert output["rows_updated"] == 1

    def test_unconvertible_numeric_becomes_null(self):
        output = json.loads(JSONFormatter().format(_make_record(batch_size="many")))
        assert output["batch_size"] is None

    def test_ignores_unknown_extras(self):
        output = json.loads(JSONFormatter().format(_make_record(not_a_field="x")))
        assert "not_a_field" not in output

    def test_redacts_credentials_in_database_url(self):
        record = _make_record(database_url="postgresql://pipeline:s3cret@db:5432/datamart")
        output = json.loads(JSONFormatter().format(record))

        assert "s3cret" not in output["database_url"]
        assert output["database_url"] == "postgresql://pipeline:[REDACTED]@db:5432/datamart"

    def test_leaves_plain_bootstrap_servers(self):
        output = json.loads(JSONFormatter().format(_make_record(bootstrap_servers="localhost:9092")))
        assert output["bootstrap_servers"] == "localhost:9092"

    def test_source_location_only_for_debug_and_errors(self):
        info = json.loads(JSONFormatter().format(_make_record(level=logging.INFO)))
        error = json.loads(JSONFormatter().format(_make_record(level=logging.ERROR)))

        assert "file" not in info
        assert error["file"] == "test.py:42"

    def test_includes_exception(self):
        try:
            raise ValueError("bad payload")
        except ValueError:
            record = _make_record(level=logging.ERROR, exc_info=sys.exc_info())

        output = json.loads(JSONFormatter().format(record))
        assert output["exception"]["type"] == "ValueError"
        assert output["exception"]["message"] == "bad payload"
        assert "Traceback" in output["exception"]["stacktrace"]


class TestConsoleFormatter:

    @pytest.fixture
    def formatter(self):
        formatter = ConsoleFormatter()
        formatter._use_colors = False
        return formatter

    def test_basic_line(self, formatter):
        line = formatter.format(_make_record(msg="Upsert committed"))
        assert " - INFO - Upsert committed" in line

    def test_prefix_has_kind_and_stage(self, formatter):
        set_log_context(event_kind="weather", stage="feeder")
        line = formatter.format(_make_record())
        assert "[weather]" in line
        assert "[feeder]" in line

    def test_topic_offset_tag(self, formatter):
        with MessageLogContext(topic="prediction.Weather", offset=5):
            line = formatter.format(_make_record())
        assert "[prediction.Weather@5]" in line

    def test_cycle_tag(self, formatter):
        set_log_context(cycle_id="c-1")
        assert "[c-1]" in formatter.format(_make_record())

    def test_colors_wrap_level_name(self):
        formatter = ConsoleFormatter()
        formatter._use_colors = True
        line = formatter.format(_make_record(level=logging.WARNING))
        assert "\033[33mWARNING\033[0m" in line

    def test_appends_traceback(self, formatter):
        try:
            raise RuntimeError("disk full")
        except RuntimeError:
            record = _make_record(level=logging.ERROR, exc_info=sys.exc_info())
        line = formatter.format(record)
        assert "RuntimeError: disk full" in line
