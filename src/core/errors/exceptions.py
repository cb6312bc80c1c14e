"""
Unified exception hierarchy for the prediction pipeline.

Provides typed exceptions with retry classification so that consumers can
decide whether a failed message should be skipped or redelivered.
"""

import errno

from core.types import ErrorCategory


class PipelineError(Exception):
    """
    Base exception for all pipeline errors.

    Attributes:
        message: Human-readable error description
        category: Error classification for redelivery decisions
        cause: Original exception if wrapping
        context: Additional context dict for debugging
    """

    category: ErrorCategory = ErrorCategory.UNKNOWN

    def __init__(
        self,
        message: str,
        cause: Exception | None = None,
        context: dict | None = None,
    ):
        self.message = message
        self.cause = cause
        self.context = context or {}
        super().__init__(message)

    @property
    def is_retryable(self) -> bool:
        return self.category != ErrorCategory.PERMANENT

    def __str__(self) -> str:
        if self.cause is None:
            return self.message
        return f"{self.message} | Caused by: {self.cause}"


# =============================================================================
# Category Bases
# =============================================================================


class AuthError(PipelineError):
    """Broker rejected the configured credentials."""

    category = ErrorCategory.AUTH


class TransientError(PipelineError):
    """Base class for transient/retriable errors."""

    category = ErrorCategory.TRANSIENT


class PermanentError(PipelineError):
    """Base class for permanent/non-retriable errors."""

    category = ErrorCategory.PERMANENT


# =============================================================================
# Domain-Specific Errors
# =============================================================================


class TransportError(TransientError):
    """Broker unreachable, connection lost or operation timed out."""

    pass


class MalformedEventError(PermanentError):
    """Payload could not be decoded into a domain event."""

    def __init__(
        self,
        message: str,
        payload: str | bytes | None = None,
        cause: Exception | None = None,
        context: dict | None = None,
    ):
        super().__init__(message, cause, context)
        self.payload = payload


class PersistenceError(TransientError):
    """Relational transaction failed and was rolled back."""

    pass


class PartitionIOError(TransientError):
    """Reading or rewriting an event log partition failed."""

    def __init__(
        self,
        message: str,
        path: str | None = None,
        cause: Exception | None = None,
        context: dict | None = None,
    ):
        super().__init__(message, cause, context)
        self.path = path


# =============================================================================
# Classification
# =============================================================================

# Lower-cased substrings of an exception's text that mark it as transient
TRANSIENT_ERROR_MARKERS = (
    "timeout",
    "timed out",
    "connection",
    "temporarily unavailable",
    "broker not available",
    "not leader",
    "no route to host",
    "network unreachable",
    "name resolution",
    "broken pipe",
)
AUTH_ERROR_MARKERS = ("authentication", "sasl")

# Read-only filesystem and permission problems do not heal on redelivery;
# a full disk can.
PERMANENT_ERRNOS = frozenset({errno.EROFS, errno.EACCES, errno.EPERM})

_CATEGORY_ERRORS: dict[ErrorCategory, type[PipelineError]] = {
    ErrorCategory.AUTH: AuthError,
    ErrorCategory.TRANSIENT: TransientError,
    ErrorCategory.PERMANENT: PermanentError,
}


def _mentions(exc: Exception, markers) -> bool:
    text = f"{type(exc).__name__} {exc}".lower()
    return any(marker in text for marker in markers)


def classify_os_error(error: OSError) -> ErrorCategory:
    return ErrorCategory.PERMANENT if error.errno in PERMANENT_ERRNOS else ErrorCategory.TRANSIENT


def classify_exception(exc: Exception) -> ErrorCategory:
    """
    Map any exception onto an ErrorCategory.

    Order: pipeline errors keep their category; decode/validation errors
    (ValueError covers JSONDecodeError and pydantic's ValidationError) are
    permanent; network errors are transient; other OS errors go by errno;
    everything else by the markers in its text.
    """
    if isinstance(exc, PipelineError):
        return exc.category
    if isinstance(exc, (ValueError, TypeError, KeyError)):
        return ErrorCategory.PERMANENT
    if isinstance(exc, (ConnectionError, TimeoutError)):
        return ErrorCategory.TRANSIENT
    if isinstance(exc, OSError):
        return classify_os_error(exc)
    if _mentions(exc, TRANSIENT_ERROR_MARKERS):
        return ErrorCategory.TRANSIENT
    if _mentions(exc, AUTH_ERROR_MARKERS):
        return ErrorCategory.AUTH
    return ErrorCategory.UNKNOWN


def wrap_exception(
    exc: Exception,
    default_class: type = PipelineError,
    context: dict | None = None,
) -> PipelineError:
    """
    Wrap a foreign exception in the PipelineError subclass of its category.

    Pipeline errors are returned as-is with ``context`` merged in. Timeouts
    and connection failures are tagged via context["error_type"].
    """
    if isinstance(exc, PipelineError):
        exc.context.update(context or {})
        return exc

    context = dict(context or {})
    text = str(exc).lower()
    if "timeout" in text or "timed out" in text:
        context["error_type"] = "timeout"
    elif "connection" in text:
        context["error_type"] = "connection"

    error_class = _CATEGORY_ERRORS.get(classify_exception(exc), default_class)
    return error_class(str(exc), cause=exc, context=context)
