"""Model contracts and the generation driver shared by every adapter.

An adapter supplies four pieces: request building, a live event source, a
response accumulator, and its capabilities. :meth:`BaseAdapter.generate`
wires them together so every vendor honours the same streaming, recording
and error contracts:

1. validate the conversation and build the vendor request;
2. pull raw vendor events from the recorder (replay) or the SDK (live,
   tee'd to the recorder when recording);
3. feed each event to the accumulator, forwarding the chunks it releases;
4. return the accumulated response.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
import asyncio
from collections.abc import AsyncIterator, Sequence
from contextlib import aclosing
from dataclasses import dataclass, fields
import logging
import time
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from llmbridge.errors import LLMBridgeError
from llmbridge.history import fallback_tool_call_id, sanitize_arguments, validate_conversation
from llmbridge.options import build_call_options
from llmbridge.providers._errors import wrap_provider_error
from llmbridge.recording.matcher import build_request_info, compute_request_hash
from llmbridge.recording.recorder import current_recorder
from llmbridge.streaming import open_stream
from llmbridge.types import FunctionCall, StreamChunk, ToolCall

if TYPE_CHECKING:
    from llmbridge.embeddings import EmbeddingResponse
    from llmbridge.options import CallOption, CallOptions, EmbeddingOption
    from llmbridge.recording.recorder import Recorder
    from llmbridge.recording.types import RequestInfo
    from llmbridge.types import ContentResponse, Message

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderCapabilities:
    """Feature flags exposed by adapters."""

    streaming: bool = True
    tool_calling: bool = True
    structured_outputs: bool = False
    images: bool = False
    reasoning: bool = False
    embeddings: bool = False

    def describe(self) -> str:
        return ",".join(f.name for f in fields(self) if getattr(self, f.name))


@runtime_checkable
class Model(Protocol):
    """Unified generation contract implemented by every adapter."""

    async def generate(
        self, messages: Sequence[Message], *options: CallOption
    ) -> ContentResponse: ...

    def get_model_id(self) -> str: ...


@runtime_checkable
class EmbeddingModel(Protocol):
    async def generate_embeddings(
        self, input: str | Sequence[str], *options: EmbeddingOption
    ) -> EmbeddingResponse: ...


class ResponseAccumulator(ABC):
    """Turns a vendor's event sequence into chunks and a final response.

    ``feed`` returns the chunks that became complete with this event, in the
    order they appear in the final response. Tool calls are only released
    once their arguments are fully accumulated.
    """

    def __init__(self, *, model_id: str, id_seed: str) -> None:
        self.model_id = model_id
        self.id_seed = id_seed
        self.text_parts: list[str] = []
        self.tool_calls: list[ToolCall] = []
        self._seen_ids: set[str] = set()

    @property
    def content(self) -> str:
        return "".join(self.text_parts)

    def add_text(self, text: str | None) -> list[StreamChunk]:
        if not text:
            return []
        self.text_parts.append(text)
        return [StreamChunk.for_content(text)]

    def complete_tool_call(
        self,
        call_id: str | None,
        name: str,
        arguments: str | dict[str, Any] | None,
        *,
        thought_signature: str | None = None,
    ) -> StreamChunk:
        """Record a fully accumulated tool call and return its chunk.

        Arguments are sanitized to a JSON object and a missing or repeated id
        is replaced with one derived from the request, so the chunk and the
        final response always carry the same call.
        """
        index = len(self.tool_calls)
        if not call_id or call_id in self._seen_ids:
            new_id = fallback_tool_call_id(self.id_seed, index)
            if call_id:
                logger.warning("Duplicate tool call id %s replaced with %s", call_id, new_id)
            call_id = new_id
        self._seen_ids.add(call_id)
        call = ToolCall(
            id=call_id,
            function_call=FunctionCall(name=name, arguments=sanitize_arguments(arguments)),
            thought_signature=thought_signature or None,
        )
        self.tool_calls.append(call)
        return StreamChunk.for_tool_call(call)

    @abstractmethod
    def feed(self, event: dict[str, Any]) -> list[StreamChunk]: ...

    def finish(self) -> list[StreamChunk]:
        """Release anything still pending once the event source ends."""
        return []

    @abstractmethod
    def build(self) -> ContentResponse: ...


class BaseAdapter(ABC):
    """Common driver for vendor adapters."""

    provider: str = ""

    def __init__(self, model_id: str, *, client: Any = None) -> None:
        if not model_id:
            raise LLMBridgeError("model_id must be a non-empty string")
        self.model_id = model_id
        self._client: Any = client

    def get_model_id(self) -> str:
        return self.model_id

    @property
    @abstractmethod
    def capabilities(self) -> ProviderCapabilities: ...

    @abstractmethod
    def _get_client(self) -> Any:
        """Lazily initialize and return the vendor client."""

    @abstractmethod
    def _build_request(
        self, messages: Sequence[Message], options: CallOptions, model_id: str
    ) -> dict[str, Any]: ...

    @abstractmethod
    def _new_accumulator(self, model_id: str, id_seed: str) -> ResponseAccumulator: ...

    @abstractmethod
    def _live_events(
        self, request: dict[str, Any], *, stream: bool
    ) -> AsyncIterator[dict[str, Any]]: ...

    async def generate(
        self, messages: Sequence[Message], *options: CallOption
    ) -> ContentResponse:
        """Generate a response, streaming chunks when the options carry a sink."""
        opts = build_call_options(*options)
        model_id = opts.model or self.model_id
        conversation = validate_conversation(messages)
        request = self._build_request(conversation, opts, model_id)

        recorder = current_recorder()
        info = build_request_info(
            provider=self.provider,
            model_id=model_id,
            test_name=recorder.test_name if recorder else "",
            messages=conversation,
            options=opts,
        )
        accumulator = self._new_accumulator(model_id, compute_request_hash(info))

        start = time.perf_counter()
        async with open_stream(opts) as sink:
            events = self._events(request, info, recorder, stream=opts.streaming)
            async with aclosing(events):
                async for event in events:
                    for chunk in accumulator.feed(event):
                        if sink is not None:
                            await sink.send(chunk)
            for chunk in accumulator.finish():
                if sink is not None:
                    await sink.send(chunk)
            response = accumulator.build()

        logger.debug(
            "%s %s generated %d chars, %d tool calls in %.2fs",
            self.provider,
            model_id,
            len(response.content),
            len(response.tool_calls),
            time.perf_counter() - start,
        )
        return response

    async def _events(
        self,
        request: dict[str, Any],
        info: RequestInfo,
        recorder: Recorder | None,
        *,
        stream: bool,
    ) -> AsyncIterator[dict[str, Any]]:
        if recorder is not None and recorder.replaying:
            for event in recorder.replay(info):
                yield event
            return

        captured: list[dict[str, Any]] | None = [] if recorder is not None else None
        try:
            async for event in self._live_events(request, stream=stream):
                if captured is not None:
                    captured.append(event)
                yield event
        except asyncio.CancelledError:
            raise
        except LLMBridgeError:
            raise
        except Exception as e:
            raise wrap_provider_error(
                e, provider=self.provider, phase="generate", allow_network_errors=True
            ) from e

        if recorder is not None and captured is not None:
            await asyncio.to_thread(recorder.record, info, captured)

    async def aclose(self) -> None:
        """Close underlying async client resources."""
        client = self._client
        if client is None:
            return
        self._client = None
        close = getattr(client, "close", None)
        if close is not None:
            result = close()
            if asyncio.iscoroutine(result):
                await result
