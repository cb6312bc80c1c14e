"""
Event log replay.

Reads partitions back as typed samples, e.g. to rebuild the relational
store from the log after data loss:

    >>> reader = EventStoreReader("eventstore")
    >>> result = reader.replay_into(energy_store, "Energy")
    >>> result.inserted, result.updated
    (720, 0)

Replaying the same log twice converges: the second run only counts
unchanged rows.
"""

import logging
from datetime import date, datetime
from pathlib import Path
from typing import Iterator, List, Optional, Union

from core.errors.exceptions import PartitionIOError
from core.logging import get_logger, log_with_context
from prediction_pipeline.datamart.store import UpsertResult, UpsertStore
from prediction_pipeline.eventstore.partition import LogPartition, iter_partition_files
from prediction_pipeline.schemas.events import PredictionSample

logger = get_logger(__name__)


def _partition_day(path: Path) -> Optional[date]:
    try:
        return datetime.strptime(path.stem, "%Y%m%d").date()
    except ValueError:
        return None


class EventStoreReader:
    """Iterates the event log written by IdempotentLogWriter."""

    def __init__(self, base_dir: Union[str, Path]):
        self.base_dir = Path(base_dir)

    def partitions(
        self,
        topic_suffix: str,
        source_system: Optional[str] = None,
        start_day: Optional[date] = None,
        end_day: Optional[date] = None,
    ) -> List[Path]:
        """Partition files for a topic suffix ('Energy'), optionally bounded by day (inclusive)."""
        selected = []
        for path in iter_partition_files(self.base_dir, topic_suffix, source_system):
            day = _partition_day(path)
            if day is None:
                log_with_context(
                    logger,
                    logging.WARNING,
                    "Ignoring file with unexpected partition name",
                    partition_path=str(path),
                )
                continue
            if start_day is not None and day < start_day:
                continue
            if end_day is not None and day > end_day:
                continue
            selected.append(path)
        return selected

    def read_partition(self, path: Path, topic_suffix: str) -> List[PredictionSample]:
        """Decoded samples of one partition; unreadable lines are logged and skipped."""
        lines = LogPartition(path, topic_suffix).load()
        samples = [line.sample for line in lines if line.sample is not None]
        skipped = len(lines) - len(samples)
        if skipped:
            log_with_context(
                logger,
                logging.WARNING,
                "Skipped undecodable partition lines",
                partition_path=str(path),
                skipped_lines=skipped,
            )
        return samples

    def iter_events(
        self,
        topic_suffix: str,
        source_system: Optional[str] = None,
        start_day: Optional[date] = None,
        end_day: Optional[date] = None,
    ) -> Iterator[PredictionSample]:
        for path in self.partitions(topic_suffix, source_system, start_day, end_day):
            yield from self.read_partition(path, topic_suffix)

    def replay_into(
        self,
        store: UpsertStore,
        topic_suffix: str,
        source_system: Optional[str] = None,
        start_day: Optional[date] = None,
        end_day: Optional[date] = None,
    ) -> UpsertResult:
        """
        Upsert every logged sample into a relational store, one partition per batch.

        Raises:
            PartitionIOError: A partition could not be read
            PersistenceError: A batch failed and was rolled back; earlier
                partitions stay committed
        """
        total = UpsertResult()
        paths = self.partitions(topic_suffix, source_system, start_day, end_day)
        for path in paths:
            try:
                samples = self.read_partition(path, topic_suffix)
            except PartitionIOError:
                log_with_context(logger, logging.ERROR, "Replay aborted", partition_path=str(path))
                raise
            total = total + store.upsert(samples)

        log_with_context(
            logger,
            logging.INFO,
            "Replay complete",
            partition_path=str(self.base_dir / topic_suffix),
            partition_count=len(paths),
            rows_inserted=total.inserted,
            rows_updated=total.updated,
            rows_unchanged=total.unchanged,
        )
        return total


__all__ = ["EventStoreReader"]
