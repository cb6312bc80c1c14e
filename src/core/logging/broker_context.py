"""Broker message context variables for structured logging."""

from contextvars import ContextVar
from typing import Any, Dict, Optional


_topic: ContextVar[str] = ContextVar("broker_topic", default="")
_partition: ContextVar[int] = ContextVar("broker_partition", default=-1)
_offset: ContextVar[int] = ContextVar("broker_offset", default=-1)
_key: ContextVar[str] = ContextVar("broker_key", default="")
_subscription: ContextVar[str] = ContextVar("broker_subscription", default="")


def set_message_context(
    topic: Optional[str] = None,
    partition: Optional[int] = None,
    offset: Optional[int] = None,
    key: Optional[str] = None,
    subscription: Optional[str] = None,
) -> None:
    """
    Set the context of the message currently being handled.

    Args:
        topic: Topic the message was read from
        partition: Topic partition number
        offset: Message offset within partition
        key: Message key (business key of the event)
        subscription: Durable subscription name (consumer group)
    """
    if topic is not None:
        _topic.set(topic)
    if partition is not None:
        _partition.set(partition)
    if offset is not None:
        _offset.set(offset)
    if key is not None:
        _key.set(key)
    if subscription is not None:
        _subscription.set(subscription)


def get_message_context() -> Dict[str, Any]:
    """Current message context, omitting unset optional fields."""
    topic = _topic.get()
    if not topic:
        return {}

    context: Dict[str, Any] = {
        "topic": topic,
        "partition": _partition.get(),
        "offset": _offset.get(),
    }
    key = _key.get()
    if key:
        context["message_key"] = key
    subscription = _subscription.get()
    if subscription:
        context["subscription"] = subscription
    return context


def clear_message_context() -> None:
    _topic.set("")
    _partition.set(-1)
    _offset.set(-1)
    _key.set("")
    _subscription.set("")


class MessageLogContext:
    """
    Context manager that tags every log record emitted while a broker
    message is being handled.

    Usage:
        with MessageLogContext(topic="prediction.Energy", partition=0, offset=42):
            await handler(record)
    """

    def __init__(
        self,
        topic: Optional[str] = None,
        partition: Optional[int] = None,
        offset: Optional[int] = None,
        key: Optional[str] = None,
        subscription: Optional[str] = None,
    ):
        self.new_context = {
            "topic": topic,
            "partition": partition,
            "offset": offset,
            "key": key,
            "subscription": subscription,
        }
        self._tokens: list = []

    def __enter__(self) -> "MessageLogContext":
        variables = {
            "topic": _topic,
            "partition": _partition,
            "offset": _offset,
            "key": _key,
            "subscription": _subscription,
        }
        for name, value in self.new_context.items():
            if value is not None:
                var = variables[name]
                self._tokens.append((var, var.set(value)))
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        while self._tokens:
            var, token = self._tokens.pop()
            var.reset(token)
        return False
