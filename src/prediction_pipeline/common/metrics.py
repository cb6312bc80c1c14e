"""
Prometheus metrics for pipeline monitoring.

Focused on essential metrics:
- Message production and consumption counts
- Error rates by category
- Event log merge outcomes
- Relational upsert row counts
- Connection health

All metrics live in a dedicated registry exposed as ``REGISTRY``.
"""

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram

REGISTRY = CollectorRegistry()


# =============================================================================
# Broker Metrics
# =============================================================================

messages_produced_counter = Counter(
    "pipeline_messages_produced_total",
    "Total number of messages produced to topics",
    labelnames=["topic", "success"],
    registry=REGISTRY,
)

messages_consumed_counter = Counter(
    "pipeline_messages_consumed_total",
    "Total number of messages consumed from topics",
    labelnames=["topic", "subscription", "success"],
    registry=REGISTRY,
)

processing_errors_counter = Counter(
    "pipeline_processing_errors_total",
    "Total processing errors by error category",
    labelnames=["topic", "subscription", "error_category"],
    registry=REGISTRY,
)

producer_errors_counter = Counter(
    "pipeline_producer_errors_total",
    "Total producer errors by error type",
    labelnames=["topic", "error_type"],
    registry=REGISTRY,
)

connection_status_gauge = Gauge(
    "pipeline_connection_status",
    "Broker connection status (1=connected, 0=disconnected)",
    labelnames=["component"],
    registry=REGISTRY,
)

message_processing_duration_seconds = Histogram(
    "pipeline_message_processing_duration_seconds",
    "Time spent handling individual messages",
    labelnames=["topic", "subscription"],
    buckets=[0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0],
    registry=REGISTRY,
)


# =============================================================================
# Persistence Metrics
# =============================================================================

eventstore_merges_counter = Counter(
    "eventstore_merges_total",
    "Event log merge outcomes per topic",
    labelnames=["topic", "outcome"],
    registry=REGISTRY,
)

datamart_rows_counter = Counter(
    "datamart_rows_total",
    "Relational upsert rows by operation",
    labelnames=["table", "operation"],
    registry=REGISTRY,
)

datamart_upsert_failures_counter = Counter(
    "datamart_upsert_failures_total",
    "Upsert batches rolled back",
    labelnames=["table"],
    registry=REGISTRY,
)


# =============================================================================
# Convenience Functions
# =============================================================================


def record_message_produced(topic: str, success: bool = True) -> None:
    """Record a produced message."""
    messages_produced_counter.labels(topic=topic, success=str(success).lower()).inc()


def record_message_consumed(topic: str, subscription: str, success: bool = True) -> None:
    """Record a consumed message."""
    messages_consumed_counter.labels(
        topic=topic, subscription=subscription, success=str(success).lower()
    ).inc()


def record_processing_error(topic: str, subscription: str, error_category: str) -> None:
    """Record a message processing error."""
    processing_errors_counter.labels(
        topic=topic, subscription=subscription, error_category=error_category
    ).inc()


def record_producer_error(topic: str, error_type: str) -> None:
    producer_errors_counter.labels(topic=topic, error_type=error_type).inc()


def update_connection_status(component: str, connected: bool) -> None:
    connection_status_gauge.labels(component=component).set(1 if connected else 0)


def record_merge_outcome(topic: str, outcome: str) -> None:
    eventstore_merges_counter.labels(topic=topic, outcome=outcome).inc()


def record_upsert(table: str, inserted: int, updated: int, unchanged: int) -> None:
    """Record the row counts of a committed upsert batch."""
    for operation, count in (("insert", inserted), ("update", updated), ("unchanged", unchanged)):
        if count:
            datamart_rows_counter.labels(table=table, operation=operation).inc(count)


def record_upsert_failure(table: str) -> None:
    datamart_upsert_failures_counter.labels(table=table).inc()


__all__ = [
    "REGISTRY",
    # Metrics
    "messages_produced_counter",
    "messages_consumed_counter",
    "processing_errors_counter",
    "producer_errors_counter",
    "connection_status_gauge",
    "message_processing_duration_seconds",
    "eventstore_merges_counter",
    "datamart_rows_counter",
    "datamart_upsert_failures_counter",
    # Helper functions
    "record_message_produced",
    "record_message_consumed",
    "record_processing_error",
    "record_producer_error",
    "update_connection_status",
    "record_merge_outcome",
    "record_upsert",
    "record_upsert_failure",
]
