"""
Core types and protocols used across modules.

Base enums and protocol definitions shared by the broker client, the event
log and the relational store.
"""

from enum import Enum
from typing import Protocol


class ErrorCategory(Enum):
    """
    Classification of error types for handling decisions.

    Categories:
        TRANSIENT: Temporary failures that may succeed when the message is
                   redelivered (broker unavailable, timeouts, disk hiccups)
        AUTH: Broker rejected the client credentials
        PERMANENT: Failures that will never succeed on redelivery
                   (malformed payloads, validation errors)
        UNKNOWN: Unclassified errors, treated as retriable
    """

    TRANSIENT = "transient"
    AUTH = "auth"
    PERMANENT = "permanent"
    UNKNOWN = "unknown"


class ErrorClassifier(Protocol):
    """
    Protocol for error classification implementations.

    Domain-specific classifiers (broker, filesystem) map library exceptions
    into standard categories.
    """

    def classify_error(self, error: Exception) -> ErrorCategory:
        """
        Classify an exception into an error category.

        Args:
            error: Exception to classify

        Returns:
            ErrorCategory indicating how to handle this error
        """
        ...

    def is_transient(self, error: Exception) -> bool:
        """
        Check if error is transient.

        Args:
            error: Exception to check

        Returns:
            True if error may succeed on redelivery
        """
        ...


__all__ = [
    "ErrorCategory",
    "ErrorClassifier",
]
