"""Shared JSON serialization utilities for log records."""

from datetime import UTC, date, datetime
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel


def _format_datetime(value: datetime) -> str:
    if value.tzinfo is None:
        return value.isoformat()
    return value.astimezone(UTC).isoformat().replace("+00:00", "Z")


def json_serializer(obj: Any) -> Any:
    """
    Type-preserving fallback for json.dumps(default=...).

    - datetime → ISO 8601 string (UTC values end in "Z")
    - date → ISO 8601 string
    - Enum → value
    - pydantic models → wire-format dict
    - Path → string
    - Everything else → string
    """
    if isinstance(obj, datetime):
        return _format_datetime(obj)
    if isinstance(obj, date):
        return obj.isoformat()
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, BaseModel):
        return obj.model_dump(mode="json", by_alias=True, exclude_none=True)
    if isinstance(obj, Path):
        return str(obj)
    return str(obj)


__all__ = ["json_serializer"]
