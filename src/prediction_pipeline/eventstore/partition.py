"""
Event log partition files.

A partition holds the events of one topic, one source system and one UTC
day of the events' own domain timestamps:

    <base_dir>/<topic-suffix>/<sourceSystem>/<YYYYMMDD>.events

Each line is one canonical JSON payload. Partitions are always rewritten
whole: write to a sibling temp file, then os.replace() over the original.
"""

import logging
import os
import re
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from core.errors.exceptions import MalformedEventError, PartitionIOError
from core.logging import get_logger, log_with_context
from prediction_pipeline.schemas.events import PredictionSample, decode_event, to_utc, topic_suffix

logger = get_logger(__name__)

PARTITION_SUFFIX = ".events"

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_-]")


def sanitize_component(value: str) -> str:
    """Make a value safe as a single path component ('Red Eléctrica' → 'Red_El_ctrica')."""
    cleaned = _UNSAFE_CHARS.sub("_", value.strip().strip('"'))
    return cleaned or "_"


def partition_path(base_dir: Path, topic: str, source_system: str, domain_time: datetime) -> Path:
    """Partition file for an event, bucketed by the UTC day of its domain timestamp."""
    day = to_utc(domain_time).strftime("%Y%m%d")
    return (
        Path(base_dir)
        / sanitize_component(topic_suffix(topic))
        / sanitize_component(source_system)
        / f"{day}{PARTITION_SUFFIX}"
    )


@dataclass
class PartitionLine:
    """A stored line and its decoded sample (None when the line is unreadable)."""

    raw: str
    sample: Optional[PredictionSample] = None


class LogPartition:
    """Reads and atomically rewrites one partition file."""

    def __init__(self, path: Path, topic: str):
        self.path = Path(path)
        self.topic = topic

    def exists(self) -> bool:
        return self.path.exists()

    def load(self) -> List[PartitionLine]:
        """
        Load every non-blank line.

        Undecodable lines are kept verbatim with sample=None so a rewrite
        never drops them.

        Raises:
            PartitionIOError: The file exists but cannot be read
        """
        if not self.path.exists():
            return []

        try:
            text = self.path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise PartitionIOError(
                f"Failed to read partition {self.path}", path=str(self.path), cause=e
            ) from e

        lines: List[PartitionLine] = []
        for line_number, raw in enumerate(text.splitlines(), start=1):
            if not raw.strip():
                continue
            try:
                lines.append(PartitionLine(raw=raw, sample=decode_event(raw, self.topic)))
            except MalformedEventError as e:
                log_with_context(
                    logger,
                    logging.WARNING,
                    "Preserving undecodable partition line",
                    partition_path=str(self.path),
                    line_number=line_number,
                    error_message=e.message,
                )
                lines.append(PartitionLine(raw=raw))
        return lines

    def rewrite(self, raw_lines: List[str]) -> None:
        """
        Replace the partition contents atomically.

        Raises:
            PartitionIOError: Directory creation, write or replace failed
        """
        tmp_path = self.path.with_suffix(PARTITION_SUFFIX + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8", newline="\n") as f:
                for raw in raw_lines:
                    f.write(raw)
                    f.write("\n")
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
        except OSError as e:
            raise PartitionIOError(
                f"Failed to rewrite partition {self.path}", path=str(self.path), cause=e
            ) from e


def iter_partition_files(base_dir: Path, suffix: str, source_system: Optional[str] = None) -> List[Path]:
    """Sorted partition files under one topic suffix, optionally one source system."""
    root = Path(base_dir) / sanitize_component(suffix)
    if source_system is not None:
        root = root / sanitize_component(source_system)
        pattern = f"*{PARTITION_SUFFIX}"
    else:
        pattern = f"*/*{PARTITION_SUFFIX}"
    if not root.is_dir():
        return []
    return sorted(root.glob(pattern))


__all__ = [
    "PARTITION_SUFFIX",
    "PartitionLine",
    "LogPartition",
    "partition_path",
    "sanitize_component",
    "iter_partition_files",
]
