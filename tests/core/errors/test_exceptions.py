"""
Tests for exception hierarchy and error classification.
"""

import errno
import json

from core.errors.exceptions import (
    AuthError,
    ErrorCategory,
    MalformedEventError,
    PartitionIOError,
    PermanentError,
    PersistenceError,
    PipelineError,
    TransientError,
    TransportError,
    classify_exception,
    classify_os_error,
    wrap_exception,
)


class TestErrorCategory:
    """Test ErrorCategory enum."""

    def test_all_categories_exist(self):
        """All expected categories are defined."""
        assert ErrorCategory.TRANSIENT.value == "transient"
        assert ErrorCategory.AUTH.value == "auth"
        assert ErrorCategory.PERMANENT.value == "permanent"
        assert ErrorCategory.UNKNOWN.value == "unknown"


class TestPipelineError:
    """Test base PipelineError class."""

    def test_basic_error(self):
        """Can create basic error with message."""
        err = PipelineError("Something went wrong")
        assert err.message == "Something went wrong"
        assert err.cause is None
        assert err.context == {}
        assert err.category == ErrorCategory.UNKNOWN

    def test_error_with_cause(self):
        """Can wrap another exception."""
        cause = ValueError("Invalid value")
        err = PipelineError("Wrapper message", cause=cause)
        assert err.cause == cause
        assert "Caused by" in str(err)

    def test_error_with_context(self):
        """Can add context dict."""
        err = PipelineError("Error", context={"table": "energy_prices", "batch_size": 24})
        assert err.context["table"] == "energy_prices"
        assert err.context["batch_size"] == 24

    def test_is_retryable_default(self):
        """Unknown category is retryable."""
        assert PipelineError("Error").is_retryable is True


class TestCategoryBases:
    """Test category base classes."""

    def test_auth_error(self):
        err = AuthError("SASL handshake rejected")
        assert err.category == ErrorCategory.AUTH
        assert err.is_retryable is True

    def test_transient_error(self):
        err = TransientError("Temporary issue")
        assert err.category == ErrorCategory.TRANSIENT
        assert err.is_retryable is True

    def test_permanent_error(self):
        err = PermanentError("Fatal error")
        assert err.category == ErrorCategory.PERMANENT
        assert err.is_retryable is False


class TestDomainErrors:
    """Test the errors raised by broker, event log and relational store."""

    def test_transport_error_is_transient(self):
        err = TransportError("Broker unavailable")
        assert isinstance(err, TransientError)
        assert err.is_retryable is True

    def test_malformed_event_keeps_payload(self):
        """Malformed payloads are permanent and keep the offending payload."""
        err = MalformedEventError("bad json", payload=b"{not json")
        assert err.category == ErrorCategory.PERMANENT
        assert err.is_retryable is False
        assert err.payload == b"{not json"

    def test_persistence_error_is_transient(self):
        err = PersistenceError("rolled back", cause=RuntimeError("locked"))
        assert err.category == ErrorCategory.TRANSIENT
        assert "locked" in str(err)

    def test_partition_io_error_keeps_path(self):
        err = PartitionIOError("write failed", path="eventstore/Energy/Ree/20250319.events")
        assert err.category == ErrorCategory.TRANSIENT
        assert err.path == "eventstore/Energy/Ree/20250319.events"


class TestClassifyOsError:
    """Test errno-based classification."""

    def test_read_only_filesystem_is_permanent(self):
        assert classify_os_error(OSError(errno.EROFS, "Read-only file system")) == ErrorCategory.PERMANENT

    def test_permission_denied_is_permanent(self):
        assert classify_os_error(OSError(errno.EACCES, "Permission denied")) == ErrorCategory.PERMANENT

    def test_disk_full_is_transient(self):
        assert classify_os_error(OSError(errno.ENOSPC, "No space left")) == ErrorCategory.TRANSIENT


class TestClassifyException:
    """Test classify_exception function."""

    def test_pipeline_error_keeps_category(self):
        assert classify_exception(MalformedEventError("x")) == ErrorCategory.PERMANENT
        assert classify_exception(PartitionIOError("x")) == ErrorCategory.TRANSIENT

    def test_value_error_is_permanent(self):
        assert classify_exception(ValueError("bad")) == ErrorCategory.PERMANENT

    def test_json_decode_error_is_permanent(self):
        try:
            json.loads("{")
        except json.JSONDecodeError as e:
            assert classify_exception(e) == ErrorCategory.PERMANENT

    def test_connection_error_is_transient(self):
        assert classify_exception(ConnectionRefusedError("refused")) == ErrorCategory.TRANSIENT

    def test_timeout_error_is_transient(self):
        assert classify_exception(TimeoutError()) == ErrorCategory.TRANSIENT

    def test_timeout_message_is_transient(self):
        assert classify_exception(RuntimeError("Request timeout after 30s")) == ErrorCategory.TRANSIENT

    def test_sasl_message_is_auth(self):
        assert classify_exception(RuntimeError("SASL authentication failed")) == ErrorCategory.AUTH

    def test_unclassified_is_unknown(self):
        assert classify_exception(RuntimeError("boom")) == ErrorCategory.UNKNOWN


class TestWrapException:
    """Test wrap_exception function."""

    def test_pipeline_error_returned_as_is(self):
        original = TransportError("down")
        assert wrap_exception(original, context={"topic": "prediction.Energy"}) is original
        assert original.context["topic"] == "prediction.Energy"

    def test_wraps_timeout(self):
        wrapped = wrap_exception(RuntimeError("Request timeout after 30s"))
        assert isinstance(wrapped, TransientError)
        assert wrapped.context["error_type"] == "timeout"

    def test_wraps_permanent(self):
        cause = ValueError("bad value")
        wrapped = wrap_exception(cause)
        assert isinstance(wrapped, PermanentError)
        assert wrapped.cause is cause

    def test_wraps_auth(self):
        assert isinstance(wrap_exception(RuntimeError("SASL authentication failed")), AuthError)

    def test_unknown_uses_default_class(self):
        wrapped = wrap_exception(RuntimeError("boom"))
        assert type(wrapped) is PipelineError
        assert wrapped.category == ErrorCategory.UNKNOWN
