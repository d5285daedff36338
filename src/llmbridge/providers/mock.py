"""Mock adapter for testing without API calls."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Mapping, Sequence
from dataclasses import dataclass, field
import hashlib
from typing import TYPE_CHECKING, Any

from llmbridge.embeddings import (
    Embedding,
    EmbeddingResponse,
    EmbeddingUsage,
    normalize_embedding_input,
)
from llmbridge.errors import APIError
from llmbridge.options import build_embedding_options
from llmbridge.providers.base import BaseAdapter, ProviderCapabilities, ResponseAccumulator
from llmbridge.recording.matcher import message_info
from llmbridge.types import ChatMessageType, ContentChoice, ContentResponse, StreamChunk, ToolCall
from llmbridge.usage import GenerationInfo, normalize_usage

if TYPE_CHECKING:
    from llmbridge.options import CallOptions, EmbeddingOption
    from llmbridge.types import Message


@dataclass(frozen=True)
class MockReply:
    """One scripted turn: text, tool calls and reported usage."""

    text: str = ""
    tool_calls: Sequence[ToolCall] = ()
    usage: Mapping[str, Any] | None = field(
        default_factory=lambda: {"input_tokens": 10, "total_tokens": 20}
    )
    stop_reason: str | None = None
    #: Text and argument fragments are streamed in pieces of this size.
    chunk_size: int = 8


class MockAdapter(BaseAdapter):
    """Scripted adapter streaming vendor-like events.

    Replies are consumed in order; once the script runs out the adapter
    echoes the last human message. ``fail_after`` raises a retryable
    APIError after that many events, to exercise the failed-stream path.
    """

    provider = "mock"

    def __init__(
        self,
        model_id: str = "mock-model",
        *,
        replies: Sequence[MockReply] = (),
        fail_after: int | None = None,
        event_delay_s: float = 0.0,
    ) -> None:
        super().__init__(model_id, client=object())
        self._replies = list(replies)
        self.fail_after = fail_after
        self.event_delay_s = event_delay_s
        self.requests: list[dict[str, Any]] = []

    @property
    def capabilities(self) -> ProviderCapabilities:
        return ProviderCapabilities(streaming=True, tool_calling=True, embeddings=True)

    def _get_client(self) -> Any:
        return self._client

    def _build_request(
        self, messages: Sequence[Message], options: CallOptions, model_id: str
    ) -> dict[str, Any]:
        last_human = next(
            (m.text for m in reversed(messages) if m.role is ChatMessageType.HUMAN), ""
        )
        return {
            "model": model_id,
            "messages": message_info(messages),
            "tools": [t.name for t in options.tools],
            "prompt": last_human,
        }

    def _new_accumulator(self, model_id: str, id_seed: str) -> ResponseAccumulator:
        return _MockAccumulator(model_id=model_id, id_seed=id_seed)

    def _next_reply(self, prompt: str) -> MockReply:
        if self._replies:
            return self._replies.pop(0)
        return MockReply(text=f"echo: {prompt[:100]}")

    async def _live_events(
        self, request: dict[str, Any], *, stream: bool
    ) -> AsyncIterator[dict[str, Any]]:
        self.requests.append(request)
        reply = self._next_reply(request["prompt"])
        stop = reply.stop_reason or ("tool_calls" if reply.tool_calls else "stop")
        if stream:
            events = list(_stream_events(reply, stop))
        else:
            events = [
                {
                    "type": "response",
                    "text": reply.text,
                    "tool_calls": [_call_event(c) for c in reply.tool_calls],
                    "stop_reason": stop,
                    "usage": dict(reply.usage) if reply.usage else None,
                }
            ]
        for sent, event in enumerate(events):
            if self.fail_after is not None and sent >= self.fail_after:
                raise APIError("mock stream interrupted", retryable=True, provider="mock")
            if self.event_delay_s:
                await asyncio.sleep(self.event_delay_s)
            yield event

    async def generate_embeddings(
        self, input: str | Sequence[str], *options: EmbeddingOption
    ) -> EmbeddingResponse:
        """Hash-derived vectors: equal texts always embed equally."""
        texts = normalize_embedding_input(input)
        opts = build_embedding_options(*options)
        dimensions = opts.dimensions or 8
        embeddings = [
            Embedding(index=i, embedding=_hash_vector(text, dimensions))
            for i, text in enumerate(texts)
        ]
        tokens = sum(len(t.split()) for t in texts)
        return EmbeddingResponse(
            embeddings=embeddings,
            model=opts.model or self.model_id,
            usage=EmbeddingUsage(prompt_tokens=tokens, total_tokens=tokens),
        )


def _hash_vector(text: str, dimensions: int) -> list[float]:
    values: list[float] = []
    counter = 0
    while len(values) < dimensions:
        digest = hashlib.sha256(f"{counter}:{text}".encode()).digest()
        values.extend(b / 255.0 for b in digest)
        counter += 1
    return values[:dimensions]


def _call_event(call: ToolCall) -> dict[str, Any]:
    return {
        "id": call.id,
        "name": call.name,
        "arguments": call.arguments,
        "thought_signature": call.thought_signature,
    }


def _pieces(text: str, size: int) -> list[str]:
    return [text[i : i + size] for i in range(0, len(text), max(size, 1))]


def _stream_events(reply: MockReply, stop: str) -> list[dict[str, Any]]:
    events: list[dict[str, Any]] = [
        {"type": "text", "text": piece} for piece in _pieces(reply.text, reply.chunk_size)
    ]
    for index, call in enumerate(reply.tool_calls):
        fragments = _pieces(call.arguments, reply.chunk_size) or [""]
        for n, fragment in enumerate(fragments):
            event: dict[str, Any] = {"type": "tool_call_delta", "index": index, "arguments": fragment}
            if n == 0:
                event.update(id=call.id, name=call.name, thought_signature=call.thought_signature)
            events.append(event)
    events.append(
        {"type": "done", "stop_reason": stop, "usage": dict(reply.usage) if reply.usage else None}
    )
    return events


class _MockAccumulator(ResponseAccumulator):
    def __init__(self, *, model_id: str, id_seed: str) -> None:
        super().__init__(model_id=model_id, id_seed=id_seed)
        self._pending: dict[int, dict[str, Any]] = {}
        self._stop_reason = ""
        self._usage: dict[str, Any] | None = None

    def feed(self, event: dict[str, Any]) -> list[StreamChunk]:
        kind = event.get("type")
        if kind == "text":
            return self.add_text(event.get("text"))
        if kind == "tool_call_delta":
            slot = self._pending.setdefault(event["index"], {"arguments": []})
            for key in ("id", "name", "thought_signature"):
                if event.get(key):
                    slot[key] = event[key]
            slot["arguments"].append(event.get("arguments") or "")
            return []
        if kind == "done":
            self._stop_reason = event.get("stop_reason") or ""
            self._usage = event.get("usage")
            return self._flush()
        if kind == "response":
            chunks = self.add_text(event.get("text"))
            for call in event.get("tool_calls") or []:
                chunks.append(
                    self.complete_tool_call(
                        call.get("id"),
                        call.get("name", ""),
                        call.get("arguments"),
                        thought_signature=call.get("thought_signature"),
                    )
                )
            self._stop_reason = event.get("stop_reason") or ""
            self._usage = event.get("usage")
            return chunks
        return []

    def _flush(self) -> list[StreamChunk]:
        chunks = [
            self.complete_tool_call(
                slot.get("id"),
                slot.get("name", ""),
                "".join(slot["arguments"]),
                thought_signature=slot.get("thought_signature"),
            )
            for _, slot in sorted(self._pending.items())
        ]
        self._pending.clear()
        return chunks

    def finish(self) -> list[StreamChunk]:
        return self._flush()

    def build(self) -> ContentResponse:
        info = GenerationInfo.from_mapping(self._usage) if self._usage else None
        choice = ContentChoice(
            content=self.content,
            stop_reason=self._stop_reason,
            tool_calls=list(self.tool_calls),
            generation_info=info,
        )
        return ContentResponse(choices=[choice], usage=normalize_usage(info))
