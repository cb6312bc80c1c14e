"""Context variables for structured logging."""

from contextvars import ContextVar
from typing import Dict, Optional

from opentelemetry import trace

_cycle_id: ContextVar[str] = ContextVar("cycle_id", default="")
_stage_name: ContextVar[str] = ContextVar("stage_name", default="")
_worker_id: ContextVar[str] = ContextVar("worker_id", default="")
_event_kind: ContextVar[str] = ContextVar("event_kind", default="")
_source_system: ContextVar[str] = ContextVar("source_system", default="")


def set_log_context(
    cycle_id: Optional[str] = None,
    stage: Optional[str] = None,
    worker_id: Optional[str] = None,
    event_kind: Optional[str] = None,
    source_system: Optional[str] = None,
) -> None:
    if cycle_id is not None:
        _cycle_id.set(cycle_id)
    if stage is not None:
        _stage_name.set(stage)
    if worker_id is not None:
        _worker_id.set(worker_id)
    if event_kind is not None:
        _event_kind.set(event_kind)
    if source_system is not None:
        _source_system.set(source_system)


def get_log_context() -> Dict[str, str]:
    context = {
        "cycle_id": _cycle_id.get(),
        "stage": _stage_name.get(),
        "worker_id": _worker_id.get(),
        "event_kind": _event_kind.get(),
        "source_system": _source_system.get(),
    }

    # Without a configured tracer provider the current span is invalid
    span_ctx = trace.get_current_span().get_span_context()
    if span_ctx.is_valid:
        context["otel_trace_id"] = format(span_ctx.trace_id, "032x")
        context["otel_span_id"] = format(span_ctx.span_id, "016x")

    return context


def clear_log_context() -> None:
    _cycle_id.set("")
    _stage_name.set("")
    _worker_id.set("")
    _event_kind.set("")
    _source_system.set("")
