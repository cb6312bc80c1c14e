"""
Error classification and exception hierarchy.

Provides:
- PipelineError hierarchy for typed exceptions
- Classification utilities for redelivery decisions
- Broker error classifier for aiokafka exceptions
"""

from core.errors.classifiers import (
    BROKER_ERROR_MAPPINGS,
    BrokerErrorClassifier,
    classify_broker_error_type,
)
from core.errors.exceptions import (
    AuthError,
    MalformedEventError,
    PartitionIOError,
    PermanentError,
    PersistenceError,
    # Base classes
    PipelineError,
    TransientError,
    TransportError,
    classify_exception,
    classify_os_error,
    wrap_exception,
)
from core.types import ErrorCategory

__all__ = [
    # Enums
    "ErrorCategory",
    # Base classes
    "PipelineError",
    "AuthError",
    "TransientError",
    "PermanentError",
    # Domain errors
    "TransportError",
    "MalformedEventError",
    "PersistenceError",
    "PartitionIOError",
    # Classification utilities
    "classify_os_error",
    "classify_exception",
    "wrap_exception",
    # Broker classifier
    "BROKER_ERROR_MAPPINGS",
    "BrokerErrorClassifier",
    "classify_broker_error_type",
]
