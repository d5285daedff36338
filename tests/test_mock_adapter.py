"""MockAdapter and the shared BaseAdapter driver."""

from __future__ import annotations

import asyncio

import pytest

from llmbridge.errors import APIError, EmptyInputError, LLMBridgeError, MalformedDataError
from llmbridge.options import with_embedding_model, with_streaming_func, with_streaming_queue
from llmbridge.providers import EmbeddingModel, Model
from llmbridge.providers.mock import MockAdapter, MockReply
from llmbridge.streaming import StreamQueue
from llmbridge.types import FunctionCall, StreamChunk, ToolCall, text_part
from tests.conftest import make_call

pytestmark = pytest.mark.unit


def test_satisfies_model_protocols() -> None:
    adapter = MockAdapter()
    assert isinstance(adapter, Model)
    assert isinstance(adapter, EmbeddingModel)
    assert adapter.capabilities.describe() == "streaming,tool_calling,embeddings"


def test_empty_model_id_is_rejected() -> None:
    with pytest.raises(LLMBridgeError):
        MockAdapter("")


@pytest.mark.asyncio
async def test_echoes_last_human_message() -> None:
    response = await MockAdapter().generate(
        [text_part("system", "be brief"), text_part("human", "ping")]
    )
    assert response.content == "echo: ping"
    assert response.choices[0].stop_reason == "stop"
    assert response.usage is not None and response.usage.total_tokens == 20


@pytest.mark.asyncio
async def test_streamed_chunks_match_final_response(tool_call_model: MockAdapter) -> None:
    queue = StreamQueue()
    consumer = asyncio.create_task(queue.drain())
    response = await tool_call_model.generate(
        [text_part("human", "read go.mod")], with_streaming_queue(queue)
    )
    chunks = await consumer
    assert queue.closed
    assert [c.type for c in chunks] == ["tool_call"]
    assert chunks[0].tool_call == response.tool_calls[0]
    assert response.tool_calls[0].arguments == '{"path": "go.mod"}'
    assert response.choices[0].stop_reason == "tool_calls"


@pytest.mark.asyncio
async def test_callback_sees_every_chunk_before_return() -> None:
    seen: list[StreamChunk] = []
    model = MockAdapter(replies=[MockReply(text="abcdefghij", chunk_size=4)])
    response = await model.generate([text_part("human", "x")], with_streaming_func(seen.append))
    assert [c.content for c in seen] == ["abcd", "efgh", "ij"]
    assert response.content == "abcdefghij"


@pytest.mark.asyncio
async def test_failure_mid_stream_closes_queue_and_raises() -> None:
    queue = StreamQueue()
    consumer = asyncio.create_task(queue.drain())
    model = MockAdapter(replies=[MockReply(text="abcdefghijklmnop", chunk_size=4)], fail_after=2)
    with pytest.raises(APIError) as exc_info:
        await model.generate([text_part("human", "x")], with_streaming_queue(queue))
    assert exc_info.value.retryable is True
    assert queue.closed
    assert [c.content for c in await consumer] == ["abcd", "efgh"]


@pytest.mark.asyncio
async def test_cancellation_closes_queue() -> None:
    queue = StreamQueue()
    model = MockAdapter(replies=[MockReply(text="a" * 64, chunk_size=1)], event_delay_s=0.01)
    task = asyncio.create_task(model.generate([text_part("human", "x")], with_streaming_queue(queue)))
    await asyncio.sleep(0.03)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert queue.closed


@pytest.mark.asyncio
async def test_missing_and_duplicate_ids_get_deterministic_fallbacks() -> None:
    nameless = ToolCall(id="", function_call=FunctionCall(name="f", arguments="{}"))
    replies = [MockReply(tool_calls=[nameless, make_call("dup", "f"), make_call("dup", "g")])]

    first = await MockAdapter(replies=list(replies)).generate([text_part("human", "x")])
    second = await MockAdapter(replies=list(replies)).generate([text_part("human", "x")])

    ids = [c.id for c in first.tool_calls]
    assert ids[1] == "dup"
    assert ids[0].startswith("call_") and ids[2].startswith("call_")
    assert len(set(ids)) == 3
    assert ids == [c.id for c in second.tool_calls]


@pytest.mark.asyncio
async def test_malformed_arguments_are_replaced_with_empty_object() -> None:
    model = MockAdapter(replies=[MockReply(tool_calls=[make_call("c", "f", "{truncated")])])
    response = await model.generate([text_part("human", "x")])
    assert response.tool_calls[0].arguments == "{}"


@pytest.mark.asyncio
async def test_thought_signature_passes_through() -> None:
    signed = make_call("c", "f", "{}", signature="c2ln")
    response = await MockAdapter(replies=[MockReply(tool_calls=[signed])]).generate(
        [text_part("human", "x")]
    )
    assert response.tool_calls[0].thought_signature == "c2ln"


@pytest.mark.asyncio
async def test_conversation_is_validated_before_any_call() -> None:
    model = MockAdapter()
    with pytest.raises(MalformedDataError):
        await model.generate(["not a message"])  # type: ignore[list-item]
    assert model.requests == []


@pytest.mark.asyncio
async def test_reply_without_usage_reports_none() -> None:
    response = await MockAdapter(replies=[MockReply(text="x", usage=None)]).generate(
        [text_part("human", "x")]
    )
    assert response.usage is None


@pytest.mark.asyncio
async def test_embeddings_are_deterministic() -> None:
    model = MockAdapter("mock-embedding")
    first = await model.generate_embeddings("hello world")
    second = await model.generate_embeddings(["hello world"], with_embedding_model("other"))
    assert first.vectors == second.vectors
    assert len(first.vectors[0]) == 8
    assert second.model == "other"
    with pytest.raises(EmptyInputError):
        await model.generate_embeddings(["  "])
