"""Tests for core.types module."""

from aiokafka.errors import KafkaConnectionError, MessageSizeTooLargeError

from core.errors.classifiers import BrokerErrorClassifier
from core.types import ErrorCategory, ErrorClassifier


class TestErrorCategory:
    def test_values(self):
        assert ErrorCategory.TRANSIENT.value == "transient"
        assert ErrorCategory.AUTH.value == "auth"
        assert ErrorCategory.PERMANENT.value == "permanent"
        assert ErrorCategory.UNKNOWN.value == "unknown"

    def test_all_members(self):
        expected = {"TRANSIENT", "AUTH", "PERMANENT", "UNKNOWN"}
        assert set(ErrorCategory.__members__.keys()) == expected

    def test_from_value(self):
        assert ErrorCategory("transient") is ErrorCategory.TRANSIENT


class TestErrorClassifier:
    def test_is_protocol(self):
        assert hasattr(ErrorClassifier, "classify_error")

    def test_broker_classifier_satisfies_protocol(self):
        classifier: ErrorClassifier = BrokerErrorClassifier()
        assert classifier.classify_error(KafkaConnectionError()) == ErrorCategory.TRANSIENT
        assert classifier.classify_error(MessageSizeTooLargeError()) == ErrorCategory.PERMANENT
