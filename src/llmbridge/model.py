"""Provider-aware wrapper adding events, tracing and response checks to a Model."""

from __future__ import annotations

from collections.abc import Sequence
import logging
import time
from typing import TYPE_CHECKING, Any

from llmbridge.errors import MalformedDataError
from llmbridge.events import OPERATION_GENERATION, LLMMetadata, safe_emit
from llmbridge.options import build_call_options, with_usage_reporting
from llmbridge.tracing import trace_scope
from llmbridge.types import Message
from llmbridge.usage import normalize_usage

if TYPE_CHECKING:
    from llmbridge.events import EventEmitter
    from llmbridge.options import CallOption
    from llmbridge.providers.base import Model
    from llmbridge.tracing import Tracer
    from llmbridge.types import ContentResponse

logger = logging.getLogger(__name__)

# Providers that only report usage when asked to.
_OPT_IN_USAGE_PROVIDERS = frozenset({"openrouter"})


class ProviderAwareModel:
    """Wraps any :class:`~llmbridge.providers.base.Model`.

    Every call runs inside an ``llm.generate`` span, emits generation and
    tool-call events, and fills in normalized usage when the wrapped model
    left it unset. Responses without choices, or whose first choice has
    neither content nor tool calls, are rejected.

    ``default_options`` are applied before the per-call options.
    """

    def __init__(
        self,
        model: Model,
        *,
        provider: str,
        event_emitter: EventEmitter | None = None,
        tracer: Tracer | None = None,
        metadata: LLMMetadata | None = None,
        default_options: Sequence[CallOption] = (),
    ) -> None:
        self.model = model
        self.provider = provider
        self.event_emitter = event_emitter
        self.tracer = tracer
        self.metadata = metadata or LLMMetadata(model_version=model.get_model_id())
        self.default_options = tuple(default_options)

    def get_model_id(self) -> str:
        return self.model.get_model_id()

    @property
    def capabilities(self) -> Any:
        return getattr(self.model, "capabilities", None)

    async def generate(
        self, messages: Sequence[Message], *options: CallOption
    ) -> ContentResponse:
        if isinstance(messages, Message):
            messages = [messages]
        call_options = [*self.default_options, *options]
        if self.provider in _OPT_IN_USAGE_PROVIDERS:
            call_options.append(with_usage_reporting())
        temperature = build_call_options(*call_options).temperature
        model_id = self.get_model_id()
        last_text = messages[-1].text if messages else ""
        common: dict[str, Any] = {
            "provider": self.provider,
            "model_id": model_id,
            "operation": OPERATION_GENERATION,
            "messages": len(messages),
            "temperature": temperature,
            "message_content": last_text,
            "metadata": self.metadata,
        }

        start = time.perf_counter()
        with trace_scope(self.tracer, "llm.generate", provider=self.provider, model=model_id) as span:
            try:
                response = await self.model.generate(messages, *call_options)
                _check_response(response)
            except Exception as e:
                logger.error(
                    "%s %s generation failed after %.2fs: %s",
                    self.provider,
                    model_id,
                    time.perf_counter() - start,
                    e,
                )
                safe_emit(
                    self.event_emitter,
                    "emit_generation_error",
                    error=e,
                    trace_id=span.span_id,
                    **common,
                )
                raise

            if response.usage is None:
                response.usage = normalize_usage(response.choices[0].generation_info)
            span.set(
                tool_calls=len(response.tool_calls),
                output_tokens=response.usage.output_tokens if response.usage else 0,
            )

            for call in response.tool_calls:
                safe_emit(
                    self.event_emitter,
                    "emit_tool_call_detected",
                    provider=self.provider,
                    model_id=model_id,
                    tool_call_id=call.id,
                    tool_name=call.name,
                    arguments=call.arguments or "{}",
                    trace_id=span.span_id,
                    metadata=self.metadata,
                )
            safe_emit(
                self.event_emitter,
                "emit_generation_success",
                response_length=len(response.content),
                choices_count=len(response.choices),
                trace_id=span.span_id,
                **common,
            )

        logger.debug(
            "%s %s completed in %.2fs", self.provider, model_id, time.perf_counter() - start
        )
        return response

    async def aclose(self) -> None:
        close = getattr(self.model, "aclose", None)
        if close is not None:
            await close()


def _check_response(response: ContentResponse) -> None:
    if not response.choices:
        raise MalformedDataError("Model returned no choices", field="choices")
    first = response.choices[0]
    if not first.content and not first.tool_calls:
        raise MalformedDataError(
            "Model returned neither content nor tool calls",
            field="choices[0].content",
        )
