"""Helpers for logging with structured fields."""

import logging
from typing import Any

# LogRecord attributes; Logger.makeRecord refuses these as `extra` keys
_RESERVED_LOG_KEYS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}

MAX_ERROR_MESSAGE_LENGTH = 500


def _extra(fields: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in fields.items() if key not in _RESERVED_LOG_KEYS}


def log_with_context(logger: logging.Logger, level: int, msg: str, **kwargs: Any) -> None:
    """
    Log ``msg`` with keyword arguments attached as structured fields.

    ``exc_info`` is handed to the logger itself; keys that clash with
    LogRecord attributes are dropped.

    Example:
        log_with_context(
            logger, logging.INFO, "Upsert committed",
            table="energy_prices",
            rows_inserted=24,
            rows_updated=0,
        )
    """
    exc_info = kwargs.pop("exc_info", None)
    logger.log(level, msg, exc_info=exc_info, extra=_extra(kwargs))


def log_exception(
    logger: logging.Logger,
    exc: Exception,
    msg: str,
    level: int = logging.ERROR,
    include_traceback: bool = True,
    **kwargs: Any,
) -> None:
    """
    Log ``exc`` with its error_category (for categorized errors) and a
    message truncated to MAX_ERROR_MESSAGE_LENGTH characters.

    Example:
        try:
            writer.store(payload, topic)
        except PartitionIOError as e:
            log_exception(logger, e, "Partition rewrite failed", topic=topic)
    """
    category = getattr(exc, "category", None)
    if category is not None:
        kwargs.setdefault("error_category", getattr(category, "value", str(category)))

    text = str(exc)
    if len(text) > MAX_ERROR_MESSAGE_LENGTH:
        text = text[:MAX_ERROR_MESSAGE_LENGTH] + "..."
    kwargs["error_message"] = text

    if include_traceback:
        logger.log(level, msg, exc_info=exc, extra=_extra(kwargs))
    else:
        logger.log(level, msg, extra=_extra(kwargs))


def format_cycle_output(
    cycle_count: int,
    fetched: int,
    published: int,
    failed: int = 0,
    inserted: int | None = None,
    updated: int | None = None,
    unchanged: int | None = None,
) -> str:
    """
    One-line summary of a feeder cycle.

    Example:
        >>> format_cycle_output(3, 24, 24, 0, inserted=0, updated=1, unchanged=23)
        'Cycle 3: fetched=24 | published=24 | stored: inserted=0, updated=1, unchanged=23'
        >>> format_cycle_output(1, 24, 22, 2)
        'Cycle 1: fetched=24 | published=22, failed=2'
    """
    sections = [f"fetched={fetched}", f"published={published}" + (f", failed={failed}" if failed else "")]
    if inserted is not None:
        sections.append(f"stored: inserted={inserted}, updated={updated or 0}, unchanged={unchanged or 0}")
    return f"Cycle {cycle_count}: " + " | ".join(sections)
