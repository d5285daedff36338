"""Observational event sink for model lifecycle events.

Emitters see initialization, generation and tool-call-detection events. They
are purely observational: :func:`safe_emit` logs and discards any emitter
failure so it can never change the outcome of a call.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
import time
from typing import Any, Protocol, runtime_checkable

log = logging.getLogger(__name__)

OPERATION_INITIALIZATION = "llm_initialization"
OPERATION_GENERATION = "llm_generation"
OPERATION_TOOL_CALLING = "llm_tool_calling"

CAPABILITY_TEXT = "text_generation"
CAPABILITY_TOOLS = "tool_calling"
CAPABILITY_STREAMING = "streaming"
CAPABILITY_EMBEDDINGS = "embeddings"


@dataclass(frozen=True)
class LLMMetadata:
    """Extra context attached to every event."""

    model_version: str = ""
    max_tokens: int | None = None
    user: str = ""
    custom_fields: dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class EventEmitter(Protocol):
    """Sink for model lifecycle events. All arguments are keyword-only."""

    def emit_initialization_start(
        self,
        *,
        provider: str,
        model_id: str,
        temperature: float | None,
        trace_id: str | None,
        metadata: LLMMetadata,
    ) -> None: ...

    def emit_initialization_success(
        self,
        *,
        provider: str,
        model_id: str,
        capabilities: str,
        trace_id: str | None,
        metadata: LLMMetadata,
    ) -> None: ...

    def emit_initialization_error(
        self,
        *,
        provider: str,
        model_id: str,
        operation: str,
        error: BaseException,
        trace_id: str | None,
        metadata: LLMMetadata,
    ) -> None: ...

    def emit_generation_success(
        self,
        *,
        provider: str,
        model_id: str,
        operation: str,
        messages: int,
        temperature: float | None,
        message_content: str,
        response_length: int,
        choices_count: int,
        trace_id: str | None,
        metadata: LLMMetadata,
    ) -> None: ...

    def emit_generation_error(
        self,
        *,
        provider: str,
        model_id: str,
        operation: str,
        messages: int,
        temperature: float | None,
        message_content: str,
        error: BaseException,
        trace_id: str | None,
        metadata: LLMMetadata,
    ) -> None: ...

    def emit_tool_call_detected(
        self,
        *,
        provider: str,
        model_id: str,
        tool_call_id: str,
        tool_name: str,
        arguments: str,
        trace_id: str | None,
        metadata: LLMMetadata,
    ) -> None: ...


class NoOpEventEmitter:
    def emit_initialization_start(self, **kwargs: Any) -> None:
        pass

    def emit_initialization_success(self, **kwargs: Any) -> None:
        pass

    def emit_initialization_error(self, **kwargs: Any) -> None:
        pass

    def emit_generation_success(self, **kwargs: Any) -> None:
        pass

    def emit_generation_error(self, **kwargs: Any) -> None:
        pass

    def emit_tool_call_detected(self, **kwargs: Any) -> None:
        pass


@dataclass(frozen=True)
class RecordedEvent:
    kind: str
    fields: dict[str, Any]
    at: float


class CollectingEventEmitter:
    """Keeps every event in memory, in emission order."""

    def __init__(self) -> None:
        self.events: list[RecordedEvent] = []

    def _keep(self, kind: str, fields: dict[str, Any]) -> None:
        self.events.append(RecordedEvent(kind, fields, time.time()))

    def of_kind(self, kind: str) -> list[RecordedEvent]:
        return [e for e in self.events if e.kind == kind]

    def emit_initialization_start(self, **kwargs: Any) -> None:
        self._keep("initialization_start", kwargs)

    def emit_initialization_success(self, **kwargs: Any) -> None:
        self._keep("initialization_success", kwargs)

    def emit_initialization_error(self, **kwargs: Any) -> None:
        self._keep("initialization_error", kwargs)

    def emit_generation_success(self, **kwargs: Any) -> None:
        self._keep("generation_success", kwargs)

    def emit_generation_error(self, **kwargs: Any) -> None:
        self._keep("generation_error", kwargs)

    def emit_tool_call_detected(self, **kwargs: Any) -> None:
        self._keep("tool_call_detected", kwargs)


def safe_emit(emitter: EventEmitter | None, method: str, **kwargs: Any) -> None:
    """Call ``emitter.<method>(**kwargs)``, logging instead of raising on failure."""
    if emitter is None:
        return
    try:
        getattr(emitter, method)(**kwargs)
    except Exception as e:
        log.warning(
            "Event emitter '%s' failed in %s: %s",
            type(emitter).__name__,
            method,
            e,
            exc_info=True,
        )
