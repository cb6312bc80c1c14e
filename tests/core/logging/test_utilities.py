"""Tests for logging utility functions."""

import logging
from unittest.mock import MagicMock

from core.errors.exceptions import PartitionIOError
from core.logging.utilities import (
    _RESERVED_LOG_KEYS,
    format_cycle_output,
    log_exception,
    log_with_context,
)


class TestLogWithContext:

    def test_logs_message_at_given_level(self):
        logger = MagicMock()
        log_with_context(logger, logging.INFO, "test message")

        logger.log.assert_called_once_with(
            logging.INFO, "test message", exc_info=None, extra={}
        )

    def test_passes_extra_fields(self):
        logger = MagicMock()
        log_with_context(
            logger, logging.INFO, "Upsert committed",
            table="energy_prices", rows_inserted=24,
        )

        logger.log.assert_called_once_with(
            logging.INFO, "Upsert committed",
            exc_info=None,
            extra={"table": "energy_prices", "rows_inserted": 24},
        )

    def test_handles_exc_info_separately(self):
        logger = MagicMock()
        log_with_context(logger, logging.ERROR, "failed", exc_info=True, topic="prediction.Energy")

        logger.log.assert_called_once_with(
            logging.ERROR, "failed",
            exc_info=True,
            extra={"topic": "prediction.Energy"},
        )

    def test_filters_all_reserved_keys(self):
        logger = MagicMock()
        # "msg" is also a positional parameter of log_with_context
        safe_reserved = {k: "value" for k in _RESERVED_LOG_KEYS if k not in ("msg", "args")}
        safe_reserved["custom_field"] = "kept"

        log_with_context(logger, logging.INFO, "test", **safe_reserved)

        _, kwargs = logger.log.call_args
        assert kwargs["extra"] == {"custom_field": "kept"}


class TestLogException:

    def test_adds_category_and_message(self):
        logger = MagicMock()
        error = PartitionIOError("rewrite failed")

        log_exception(logger, error, "Event log merge failed", partition_path="p")

        level, msg = logger.log.call_args.args
        kwargs = logger.log.call_args.kwargs
        assert level == logging.ERROR
        assert msg == "Event log merge failed"
        assert kwargs["exc_info"] is error
        assert kwargs["extra"]["error_category"] == "transient"
        assert kwargs["extra"]["error_message"] == "rewrite failed"
        assert kwargs["extra"]["partition_path"] == "p"

    def test_without_traceback(self):
        logger = MagicMock()
        log_exception(logger, RuntimeError("x"), "failed", level=logging.WARNING, include_traceback=False)

        assert "exc_info" not in logger.log.call_args.kwargs
        assert logger.log.call_args.args[0] == logging.WARNING

    def test_plain_exception_has_no_category(self):
        logger = MagicMock()
        log_exception(logger, RuntimeError("x"), "failed")
        assert "error_category" not in logger.log.call_args.kwargs["extra"]

    def test_truncates_long_messages(self):
        logger = MagicMock()
        log_exception(logger, RuntimeError("x" * 600), "failed")

        message = logger.log.call_args.kwargs["extra"]["error_message"]
        assert len(message) == 503
        assert message.endswith("...")


class TestFormatCycleOutput:

    def test_with_store_counts(self):
        assert (
            format_cycle_output(3, 24, 24, 0, inserted=0, updated=1, unchanged=23)
            == "Cycle 3: fetched=24 | published=24 | stored: inserted=0, updated=1, unchanged=23"
        )

    def test_with_failures_and_no_store(self):
        assert format_cycle_output(1, 24, 22, 2) == "Cycle 1: fetched=24 | published=22, failed=2"

