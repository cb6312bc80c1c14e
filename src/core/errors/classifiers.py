"""
Broker error classification for consumer and producer operations.

Maps aiokafka exceptions onto the PipelineError hierarchy so the producer
can surface TransportError and the consumer can decide between skipping
and redelivering a message.
"""

from typing import Optional

from core.errors.exceptions import (
    AuthError,
    PermanentError,
    PipelineError,
    TransportError,
    wrap_exception,
)
from core.types import ErrorCategory


# Broker error classifications based on aiokafka exception type names
BROKER_ERROR_MAPPINGS = {
    "transient": [
        "BrokerNotAvailableError",
        "KafkaConnectionError",
        "NodeNotReadyError",
        "LeaderNotAvailableError",
        "NotLeaderForPartitionError",
        "RequestTimedOutError",
        "KafkaTimeoutError",
        "NetworkException",
        "CorrelationIdError",
        "BrokerResponseError",
        "TimeoutError",
        "CancelledError",
    ],
    "auth": [
        "TopicAuthorizationFailedError",
        "GroupAuthorizationFailedError",
        "ClusterAuthorizationFailedError",
        "SaslAuthenticationError",
    ],
    "permanent": [
        "UnknownTopicOrPartitionError",
        "MessageSizeTooLargeError",
        "RecordTooLargeError",
        "InvalidTopicError",
        "UnsupportedVersionError",
        "IllegalStateError",
        "RecordBatchTooLargeError",
    ],
}


def classify_broker_error_type(error_type_name: str) -> Optional[str]:
    """
    Classify a broker error by exception type name.

    Returns:
        "transient", "auth", "permanent", or None if unmapped
    """
    for category, error_types in BROKER_ERROR_MAPPINGS.items():
        if error_type_name in error_types:
            return category
    return None


class BrokerErrorClassifier:
    """
    Centralized error classification for broker operations.

    Implements the ErrorClassifier protocol for aiokafka exceptions.
    """

    def classify_error(self, error: Exception) -> ErrorCategory:
        return self.classify(error, "broker").category

    def is_transient(self, error: Exception) -> bool:
        return self.classify_error(error) == ErrorCategory.TRANSIENT

    @staticmethod
    def classify(
        error: Exception,
        operation_type: str,
        context: Optional[dict] = None,
    ) -> PipelineError:
        """
        Classify a broker error into the pipeline exception hierarchy.

        Args:
            error: Original exception from aiokafka
            operation_type: "producer" or "consumer", recorded in the context
            context: Additional context merged into the error context

        Returns:
            Classified PipelineError subclass
        """
        if isinstance(error, PipelineError):
            return error

        error_str = str(error).lower()
        error_type = type(error).__name__
        ctx = {"service": f"kafka_{operation_type}"}
        if context:
            ctx.update(context)

        category = classify_broker_error_type(error_type)

        if category == "auth":
            return AuthError(
                f"Broker {operation_type} authorization failed: {error}",
                cause=error,
                context=ctx,
            )

        if category == "permanent":
            if "topic" in error_str and "not" in error_str:
                message = f"Broker topic does not exist: {error}"
            elif "size" in error_str or "large" in error_str:
                message = f"Broker message too large: {error}"
            else:
                message = f"Broker {operation_type} permanent error: {error}"
            return PermanentError(message, cause=error, context=ctx)

        if category == "transient" or isinstance(error, (ConnectionError, TimeoutError)):
            if "timeout" in error_type.lower() or "timeout" in error_str:
                ctx["error_type"] = "timeout"
                return TransportError(
                    f"Broker {operation_type} timed out: {error or error_type}",
                    cause=error,
                    context=ctx,
                )
            ctx["error_type"] = "connection"
            return TransportError(
                f"Broker {operation_type} unavailable: {error or error_type}",
                cause=error,
                context=ctx,
            )

        if any(
            marker in error_str
            for marker in ("connection", "broker", "network", "node not ready", "leader")
        ):
            return TransportError(
                f"Broker {operation_type} connection error: {error}",
                cause=error,
                context=ctx,
            )

        return wrap_exception(error, context=ctx)


__all__ = [
    "BROKER_ERROR_MAPPINGS",
    "BrokerErrorClassifier",
    "classify_broker_error_type",
]
