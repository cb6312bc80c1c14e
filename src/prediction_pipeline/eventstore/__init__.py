"""
File event log.

Every published prediction is kept, one line per business key, in day
partitions under the configured base directory.
"""

from prediction_pipeline.eventstore.partition import (
    PARTITION_SUFFIX,
    LogPartition,
    PartitionLine,
    iter_partition_files,
    partition_path,
    sanitize_component,
)
from prediction_pipeline.eventstore.reader import EventStoreReader
from prediction_pipeline.eventstore.worker import EventStoreWorker
from prediction_pipeline.eventstore.writer import IdempotentLogWriter, MergeOutcome

__all__ = [
    "PARTITION_SUFFIX",
    "LogPartition",
    "PartitionLine",
    "iter_partition_files",
    "partition_path",
    "sanitize_component",
    "EventStoreReader",
    "EventStoreWorker",
    "IdempotentLogWriter",
    "MergeOutcome",
]
