"""Streaming protocol: a bounded, closable chunk queue and its producer side.

Per request the stream moves ``idle -> streaming -> completed`` or
``idle -> streaming -> failed``. The producer closes the queue on every exit
path, and consumers stop by observing closure rather than counting chunks::

    queue = StreamQueue()
    consumer = asyncio.create_task(print_chunks(queue))
    response = await model.generate(messages, with_streaming_queue(queue))
    await consumer
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
import inspect
import logging
from typing import TYPE_CHECKING, Any

from llmbridge.errors import StreamClosedError
from llmbridge.types import StreamChunk, ToolCall

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable

    from llmbridge.options import CallOptions

logger = logging.getLogger(__name__)

DEFAULT_STREAM_BUFFER = 100

_CLOSED = object()


class StreamQueue:
    """Bounded single-producer queue of :class:`StreamChunk` values.

    ``put`` applies backpressure when the buffer is full. ``close`` is
    idempotent; once closed and drained, iteration stops.
    """

    def __init__(self, maxsize: int = DEFAULT_STREAM_BUFFER) -> None:
        if maxsize < 1:
            raise ValueError("maxsize must be at least 1")
        # One extra slot so close() can always enqueue its sentinel.
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize + 1)
        self._maxsize = maxsize
        self._closed = False
        self._space = asyncio.Semaphore(maxsize)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def maxsize(self) -> int:
        return self._maxsize

    def qsize(self) -> int:
        return self._queue.qsize()

    async def put(self, chunk: StreamChunk) -> None:
        if self._closed:
            raise StreamClosedError("Stream queue is closed")
        if not isinstance(chunk, StreamChunk):
            raise TypeError(f"Expected StreamChunk, got {type(chunk).__name__}")
        await self._space.acquire()
        if self._closed:
            self._space.release()
            raise StreamClosedError("Stream queue is closed")
        self._queue.put_nowait(chunk)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_CLOSED)

    async def get(self) -> StreamChunk | None:
        """Return the next chunk, or ``None`` once closed and drained."""
        if self._closed and self._queue.empty():
            return None
        item = await self._queue.get()
        if item is _CLOSED:
            return None
        self._space.release()
        return item

    def __aiter__(self) -> AsyncIterator[StreamChunk]:
        return self

    async def __anext__(self) -> StreamChunk:
        chunk = await self.get()
        if chunk is None:
            raise StopAsyncIteration
        return chunk

    async def drain(self) -> list[StreamChunk]:
        """Consume the queue until it closes and return every chunk."""
        return [chunk async for chunk in self]


class ChunkSink:
    """Producer-side handle adapters push chunks through."""

    def __init__(self, queue: StreamQueue) -> None:
        self._queue = queue
        self.sent = 0

    async def send(self, chunk: StreamChunk) -> None:
        if chunk.type == "content" and not chunk.content:
            return
        await self._queue.put(chunk)
        self.sent += 1

    async def send_content(self, text: str) -> None:
        await self.send(StreamChunk.for_content(text))

    async def send_tool_call(self, tool_call: ToolCall) -> None:
        await self.send(StreamChunk.for_tool_call(tool_call))


async def pump_to_callback(
    queue: StreamQueue,
    callback: Callable[[StreamChunk], Awaitable[Any] | Any],
) -> int:
    """Invoke *callback* once per chunk, in order, until *queue* closes.

    A failing callback stops receiving chunks, but the queue keeps draining so
    the producer never blocks; the failure is re-raised once the queue closes.
    """
    delivered = 0
    failure: Exception | None = None
    async for chunk in queue:
        if failure is not None:
            continue
        try:
            result = callback(chunk)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error("Stream callback failed on chunk %d: %s", delivered, e)
            failure = e
            continue
        delivered += 1
    if failure is not None:
        raise failure
    return delivered


@asynccontextmanager
async def open_stream(options: CallOptions) -> AsyncIterator[ChunkSink | None]:
    """Yield the sink for this call, closing the queue on every exit path.

    The callback form runs a worker that drains a private queue; it is awaited
    before the call returns, so every callback has run by then.
    """
    if options.stream_queue is None and options.stream_callback is None:
        yield None
        return

    worker: asyncio.Task[int] | None = None
    if options.stream_queue is not None:
        queue = options.stream_queue
    else:
        queue = StreamQueue()
        worker = asyncio.create_task(pump_to_callback(queue, options.stream_callback))

    sink = ChunkSink(queue)
    try:
        yield sink
    except BaseException:
        queue.close()
        if worker is not None:
            worker.cancel()
            await asyncio.gather(worker, return_exceptions=True)
        logger.debug("Stream failed after %d chunks", sink.sent)
        raise
    queue.close()
    if worker is not None:
        await worker
    logger.debug("Stream completed with %d chunks", sink.sent)
