"""Stream queue and sink tests."""

from __future__ import annotations

import asyncio

import pytest

from llmbridge.errors import StreamClosedError
from llmbridge.options import build_call_options, with_streaming_func, with_streaming_queue
from llmbridge.streaming import ChunkSink, StreamQueue, open_stream, pump_to_callback
from llmbridge.types import StreamChunk
from tests.conftest import make_call

pytestmark = pytest.mark.unit


@pytest.mark.asyncio
async def test_queue_delivers_in_order_then_stops_on_close() -> None:
    queue = StreamQueue(maxsize=4)
    await queue.put(StreamChunk.for_content("a"))
    await queue.put(StreamChunk.for_content("b"))
    queue.close()
    assert [c.content for c in await queue.drain()] == ["a", "b"]
    assert await queue.get() is None


@pytest.mark.asyncio
async def test_close_is_idempotent_and_put_after_close_fails() -> None:
    queue = StreamQueue()
    queue.close()
    queue.close()
    assert queue.closed
    with pytest.raises(StreamClosedError):
        await queue.put(StreamChunk.for_content("late"))


@pytest.mark.asyncio
async def test_put_rejects_non_chunks() -> None:
    with pytest.raises(TypeError):
        await StreamQueue().put("text")  # type: ignore[arg-type]


def test_maxsize_must_be_positive() -> None:
    with pytest.raises(ValueError):
        StreamQueue(maxsize=0)


@pytest.mark.asyncio
async def test_full_queue_applies_backpressure() -> None:
    queue = StreamQueue(maxsize=1)
    await queue.put(StreamChunk.for_content("first"))
    blocked = asyncio.create_task(queue.put(StreamChunk.for_content("second")))
    await asyncio.sleep(0.01)
    assert not blocked.done()

    assert (await queue.get()).content == "first"  # type: ignore[union-attr]
    await asyncio.wait_for(blocked, timeout=1)
    assert (await queue.get()).content == "second"  # type: ignore[union-attr]


@pytest.mark.asyncio
async def test_sink_skips_empty_content_and_counts_sent() -> None:
    queue = StreamQueue()
    sink = ChunkSink(queue)
    await sink.send_content("")
    await sink.send_content("x")
    await sink.send_tool_call(make_call("c", "f"))
    queue.close()
    chunks = await queue.drain()
    assert [c.type for c in chunks] == ["content", "tool_call"]
    assert sink.sent == 2


@pytest.mark.asyncio
async def test_pump_keeps_draining_after_callback_failure() -> None:
    queue = StreamQueue(maxsize=1)
    seen: list[str] = []

    def callback(chunk: StreamChunk) -> None:
        seen.append(chunk.content)
        raise RuntimeError("consumer broke")

    worker = asyncio.create_task(pump_to_callback(queue, callback))
    for text in ("a", "b", "c"):
        await asyncio.wait_for(queue.put(StreamChunk.for_content(text)), timeout=1)
    queue.close()
    with pytest.raises(RuntimeError, match="consumer broke"):
        await worker
    assert seen == ["a"]


@pytest.mark.asyncio
async def test_pump_supports_async_callbacks() -> None:
    queue = StreamQueue()
    seen: list[str] = []

    async def callback(chunk: StreamChunk) -> None:
        seen.append(chunk.content)

    await queue.put(StreamChunk.for_content("a"))
    queue.close()
    assert await pump_to_callback(queue, callback) == 1
    assert seen == ["a"]


@pytest.mark.asyncio
async def test_open_stream_without_sink_yields_none() -> None:
    async with open_stream(build_call_options()) as sink:
        assert sink is None


@pytest.mark.asyncio
async def test_open_stream_closes_caller_queue_on_success() -> None:
    queue = StreamQueue()
    async with open_stream(build_call_options(with_streaming_queue(queue))) as sink:
        assert sink is not None
        await sink.send_content("done")
    assert queue.closed
    assert [c.content for c in await queue.drain()] == ["done"]


@pytest.mark.asyncio
async def test_open_stream_closes_queue_on_failure() -> None:
    queue = StreamQueue()
    with pytest.raises(RuntimeError):
        async with open_stream(build_call_options(with_streaming_queue(queue))) as sink:
            assert sink is not None
            await sink.send_content("partial")
            raise RuntimeError("vendor died")
    assert queue.closed


@pytest.mark.asyncio
async def test_open_stream_callback_has_run_before_exit() -> None:
    seen: list[str] = []
    opts = build_call_options(with_streaming_func(lambda c: seen.append(c.content)))
    async with open_stream(opts) as sink:
        assert sink is not None
        await sink.send_content("a")
        await sink.send_content("b")
    assert seen == ["a", "b"]
