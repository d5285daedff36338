"""Trace spans around model calls.

Tracers are external sinks consumed through the :class:`Tracer` protocol.
Spans nest through a context variable, so concurrent requests each see their
own active span. Tracer failures are logged and never reach the caller.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
import logging
import re
import time
from typing import Any, NewType, Protocol, runtime_checkable
import uuid

log = logging.getLogger(__name__)

TraceID = NewType("TraceID", str)

_span_stack_var: ContextVar[tuple[TraceID, ...]] = ContextVar("span_stack", default=())

_SPAN_NAME_PATTERN = re.compile(r"^[a-z][a-z0-9_]*(?:\.[a-z][a-z0-9_]*)*$")


@runtime_checkable
class Tracer(Protocol):
    """Duck-typed protocol for span sinks."""

    def start_span(self, name: str, **attributes: Any) -> TraceID: ...
    def end_span(self, span_id: TraceID, duration_s: float, **attributes: Any) -> None: ...


class NoOpTracer:
    """Tracer that records nothing."""

    def start_span(self, name: str, **attributes: Any) -> TraceID:
        return TraceID(uuid.uuid4().hex)

    def end_span(self, span_id: TraceID, duration_s: float, **attributes: Any) -> None:
        return None


@dataclass
class Span:
    """A span as seen by :class:`CollectingTracer`."""

    span_id: TraceID
    name: str
    parent_id: TraceID | None
    attributes: dict[str, Any] = field(default_factory=dict)
    duration_s: float | None = None


class CollectingTracer:
    """In-memory tracer, handy in tests and notebooks."""

    def __init__(self) -> None:
        self.spans: list[Span] = []

    def start_span(self, name: str, **attributes: Any) -> TraceID:
        span_id = TraceID(uuid.uuid4().hex)
        self.spans.append(Span(span_id, name, current_trace_id(), dict(attributes)))
        return span_id

    def end_span(self, span_id: TraceID, duration_s: float, **attributes: Any) -> None:
        for span in self.spans:
            if span.span_id == span_id:
                span.duration_s = duration_s
                span.attributes.update(attributes)
                return


class SpanHandle:
    """Mutable handle yielded by :func:`trace_scope` to attach end attributes."""

    __slots__ = ("attributes", "span_id")

    def __init__(self, span_id: TraceID) -> None:
        self.span_id = span_id
        self.attributes: dict[str, Any] = {}

    def set(self, **attributes: Any) -> None:
        self.attributes.update(attributes)


def current_trace_id() -> TraceID | None:
    """Return the innermost active span id, if any."""
    stack = _span_stack_var.get()
    return stack[-1] if stack else None


@contextmanager
def trace_scope(tracer: Tracer | None, name: str, **attributes: Any) -> Iterator[SpanHandle]:
    """Open a span named *name* for the duration of the block."""
    if not _SPAN_NAME_PATTERN.fullmatch(name):
        raise ValueError(
            "Invalid span name. Use lowercase letters, digits, and underscores; "
            "segments separated by dots.",
        )
    tracer = tracer or _NO_OP_TRACER
    try:
        span_id = tracer.start_span(name, **attributes)
    except Exception as e:
        log.error("Tracer '%s' failed to start span: %s", type(tracer).__name__, e, exc_info=True)
        span_id = TraceID(uuid.uuid4().hex)

    handle = SpanHandle(span_id)
    token = _span_stack_var.set((*_span_stack_var.get(), span_id))
    start = time.perf_counter()
    try:
        yield handle
    except BaseException as e:
        handle.set(error=type(e).__name__)
        raise
    finally:
        duration = time.perf_counter() - start
        _span_stack_var.reset(token)
        try:
            tracer.end_span(span_id, duration, **handle.attributes)
        except Exception as e:
            log.error("Tracer '%s' failed to end span: %s", type(tracer).__name__, e, exc_info=True)


_NO_OP_TRACER = NoOpTracer()
