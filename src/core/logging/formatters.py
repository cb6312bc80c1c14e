"""Log formatters: one JSON object per line for files, colored text for consoles."""

import json
import logging
import re
import sys
from datetime import UTC, datetime
from typing import Any, Callable

from core.logging.broker_context import get_message_context
from core.logging.context import get_log_context
from core.utils.json_serializers import json_serializer

# Structured fields accepted from `extra=`, with the type each is coerced to.
# str fields pass through unchanged.
LOG_FIELDS: dict[str, Callable[[Any], Any]] = {
    # errors
    "error_category": str,
    "error_message": str,
    "error_type": str,
    "error": str,
    # broker
    "topic": str,
    "partition": int,
    "offset": int,
    "message_key": str,
    "subscription": str,
    "client_id": str,
    "bootstrap_servers": str,
    "value_size": int,
    # samples
    "event_kind": str,
    "business_key": str,
    "source_system": str,
    "domain_time": str,
    # event log
    "partition_path": str,
    "merge_outcome": str,
    "partition_count": int,
    "skipped_lines": int,
    "line_number": int,
    # datamart
    "table": str,
    "database_url": str,
    "batch_size": int,
    "rows_inserted": int,
    "rows_updated": int,
    "rows_unchanged": int,
    "rows_returned": int,
    # feeder cycles
    "target_date": str,
    "records_fetched": int,
    "records_published": int,
    "records_failed": int,
    "interval_seconds": float,
    "duration_ms": float,
}

# Redacted before output: user:password@ inside these values
SECRET_BEARING_FIELDS = frozenset({"database_url", "bootstrap_servers"})
_URL_PASSWORD = re.compile(r"(://[^:/@]+):[^@]*@")


def redact_url(url: str) -> str:
    """'postgresql://u:pw@db/x' -> 'postgresql://u:[REDACTED]@db/x'"""
    return _URL_PASSWORD.sub(r"\1:[REDACTED]@", url)


def _coerce(field: str, value: Any) -> Any:
    convert = LOG_FIELDS[field]
    if convert is str:
        return redact_url(value) if field in SECRET_BEARING_FIELDS and isinstance(value, str) else value
    try:
        return convert(value)
    except (ValueError, TypeError):
        return None


def _utc_timestamp() -> str:
    now = datetime.now(UTC)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"


class JSONFormatter(logging.Formatter):
    """
    Formats records as single-line JSON.

    Field precedence, lowest first: log context (cycle, stage, worker),
    message context (topic, partition, offset) and explicit extras.
    DEBUG and ERROR records also carry their source location.
    """

    LOCATED_LEVELS = frozenset({logging.DEBUG, logging.ERROR, logging.CRITICAL})

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": _utc_timestamp(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for context in (get_log_context(), get_message_context()):
            entry.update({key: value for key, value in context.items() if value not in ("", -1)})

        if record.levelno in self.LOCATED_LEVELS:
            entry["file"] = f"{record.filename}:{record.lineno}"

        for field in LOG_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                entry[field] = _coerce(field, value)

        if record.exc_info:
            exc_type, exc_value, _ = record.exc_info
            entry["exception"] = {
                "type": getattr(exc_type, "__name__", None),
                "message": str(exc_value) if exc_value is not None else None,
                "stacktrace": self.formatException(record.exc_info),
            }

        return json.dumps(entry, default=json_serializer, ensure_ascii=False)


class ConsoleFormatter(logging.Formatter):
    """
    Formats records as "<time> - <LEVEL> - [kind] - [stage] - [cycle] [topic@offset] message".

    The level is colored only when stdout is a terminal.
    """

    LEVEL_COLORS = {
        logging.DEBUG: "36",
        logging.INFO: "32",
        logging.WARNING: "33",
        logging.ERROR: "31",
        logging.CRITICAL: "35",
    }

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._use_colors = sys.stdout.isatty()

    def _level(self, record: logging.LogRecord) -> str:
        code = self.LEVEL_COLORS.get(record.levelno)
        if self._use_colors and code:
            return f"\033[{code}m{record.levelname}\033[0m"
        return record.levelname

    def format(self, record: logging.LogRecord) -> str:
        log_context = get_log_context()
        message_context = get_message_context()

        head = [datetime.now().strftime("%Y-%m-%d %H:%M:%S"), self._level(record)]
        head += [f"[{log_context[key]}]" for key in ("event_kind", "stage") if log_context.get(key)]

        tags = []
        if log_context.get("cycle_id"):
            tags.append(f"[{log_context['cycle_id']}]")
        topic = getattr(record, "topic", None) or message_context.get("topic")
        if topic:
            offset = getattr(record, "offset", None)
            if offset is None:
                offset = message_context.get("offset")
            tags.append(f"[{topic}@{offset}]" if offset is not None and offset >= 0 else f"[{topic}]")

        body = " ".join(tags + [record.getMessage()])
        line = f"{' - '.join(head)} - {body}"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line
