"""
Idempotent event log writer.

Merges each delivered payload into its partition so that a partition holds
exactly one line per business key ever observed:

    absent key                 → append                 (APPENDED)
    same key, same content     → nothing written        (DUPLICATE)
    same key, changed content  → replace that line      (REPLACED)
    undecodable payload        → logged, nothing written (SKIPPED)

Content comparison ignores the capture time ("ts"), so a redelivered or
re-fetched but unchanged sample is a duplicate.
"""

import logging
import threading
from contextlib import contextmanager
from enum import Enum
from pathlib import Path
from typing import Dict, Iterator, List, Union

from core.errors.exceptions import MalformedEventError, PartitionIOError
from core.logging import get_logger, log_exception, log_with_context
from prediction_pipeline.common.metrics import record_merge_outcome
from prediction_pipeline.eventstore.partition import LogPartition, partition_path
from prediction_pipeline.schemas.events import PredictionSample, decode_event

logger = get_logger(__name__)


class MergeOutcome(str, Enum):
    APPENDED = "appended"
    REPLACED = "replaced"
    DUPLICATE = "duplicate"
    SKIPPED = "skipped"


class IdempotentLogWriter:
    """
    Writes delivered events into day partitions under ``base_dir``.

    store() is blocking; async callers run it in a worker thread. Merges
    into the same partition file are serialized by a per-path lock, held
    in the lock table only while some thread is using it.
    """

    def __init__(self, base_dir: Union[str, Path]):
        self.base_dir = Path(base_dir)
        # path -> [lock, number of threads holding or waiting for it]
        self._locks: Dict[Path, List] = {}
        self._locks_guard = threading.Lock()

    @contextmanager
    def _partition_lock(self, path: Path) -> Iterator[None]:
        with self._locks_guard:
            entry = self._locks.setdefault(path, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._locks_guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[path]

    def store(self, payload: Union[str, bytes], topic: str) -> MergeOutcome:
        """
        Merge one delivered payload into its partition.

        Args:
            payload: Message body as delivered by the broker
            topic: Topic the message was delivered on

        Returns:
            MergeOutcome describing what happened

        Raises:
            PartitionIOError: The partition could not be read or rewritten;
                the event is not durably logged and must be redelivered
        """
        try:
            event = decode_event(payload, topic)
        except MalformedEventError as e:
            log_with_context(
                logger,
                logging.WARNING,
                "Skipping malformed event",
                topic=topic,
                error_category=e.category.value,
                error_message=e.message,
            )
            record_merge_outcome(topic, MergeOutcome.SKIPPED.value)
            return MergeOutcome.SKIPPED

        path = partition_path(self.base_dir, topic, event.source_system, event.domain_time)
        try:
            with self._partition_lock(path):
                outcome = self._merge(LogPartition(path, topic), event)
        except PartitionIOError as e:
            log_exception(
                logger,
                e,
                "Event log merge failed",
                topic=topic,
                partition_path=str(path),
                business_key=event.message_key(),
            )
            raise

        record_merge_outcome(topic, outcome.value)
        log_with_context(
            logger,
            logging.DEBUG if outcome == MergeOutcome.DUPLICATE else logging.INFO,
            f"Event {outcome.value}",
            topic=topic,
            partition_path=str(path),
            merge_outcome=outcome.value,
            business_key=event.message_key(),
        )
        return outcome

    def _merge(self, partition: LogPartition, event: PredictionSample) -> MergeOutcome:
        lines = partition.load()
        canonical = event.to_payload()
        key = event.business_key

        for index, line in enumerate(lines):
            if line.sample is None or line.sample.business_key != key:
                continue
            if line.sample.content() == event.content():
                return MergeOutcome.DUPLICATE
            raw_lines = [existing.raw for existing in lines]
            raw_lines[index] = canonical
            partition.rewrite(raw_lines)
            return MergeOutcome.REPLACED

        partition.rewrite([existing.raw for existing in lines] + [canonical])
        return MergeOutcome.APPENDED


__all__ = ["IdempotentLogWriter", "MergeOutcome"]
