"""Conformance checks every adapter must pass.

These encode the tool-call round-trip and streaming contracts. They raise on
violations rather than repairing anything: a failure here is an adapter
defect, surfaced by the test suite.
"""

from __future__ import annotations

import asyncio
from collections import Counter
from collections.abc import Sequence
from dataclasses import dataclass
import json
import logging
from typing import TYPE_CHECKING, Any, Literal

from llmbridge.errors import StreamConsistencyError, ToolArgumentError, ToolCallMismatchError
from llmbridge.history import validate_conversation
from llmbridge.options import with_streaming_queue
from llmbridge.streaming import StreamQueue
from llmbridge.types import ChatMessageType, ContentResponse, Message, StreamChunk, ToolCall

if TYPE_CHECKING:
    from llmbridge.options import CallOption
    from llmbridge.providers.base import Model
    from llmbridge.tools import Tool

logger = logging.getLogger(__name__)

BEDROCK_MODEL_PREFIXES = ("us.", "global.")

ArgumentOutcome = Literal["ok", "flagged", "failed"]


def is_bedrock_model(model_id: str) -> bool:
    """Whether *model_id* names a Claude-on-Bedrock model."""
    return model_id.startswith(BEDROCK_MODEL_PREFIXES) or "anthropic.claude" in model_id


@dataclass(frozen=True)
class ArgumentCheck:
    """Outcome of checking a tool call against its tool's required parameters.

    ``flagged`` is a pass with a diagnostic: Bedrock does not reliably enforce
    required parameters, so omissions there are reported but tolerated.
    """

    tool_name: str
    outcome: ArgumentOutcome
    missing: tuple[str, ...] = ()
    received: str = ""
    detail: str = ""

    @property
    def passed(self) -> bool:
        return self.outcome != "failed"


def check_required_arguments(tool: Tool, tool_call: ToolCall, model_id: str) -> ArgumentCheck:
    """Check that *tool_call* supplies every required parameter of *tool*.

    A value counts as missing when absent, ``null`` or the empty string.
    """
    name = tool_call.name
    required = tool.function.parameters.required
    received = tool_call.arguments or "{}"
    if not required:
        return ArgumentCheck(name, "ok", received=received)
    try:
        args = json.loads(received)
    except ValueError as e:
        return ArgumentCheck(name, "failed", received=received, detail=f"invalid JSON arguments: {e}")
    if not isinstance(args, dict):
        return ArgumentCheck(name, "failed", received=received, detail="arguments are not an object")

    missing = tuple(p for p in required if args.get(p) in (None, ""))
    if not missing:
        return ArgumentCheck(name, "ok", received=received)

    if is_bedrock_model(model_id):
        if not args:
            detail = (
                f"Bedrock model called {name} with no arguments at all; this points at "
                "argument accumulation in the streaming path rather than the model"
            )
        else:
            detail = (
                f"Bedrock model called {name} without required arguments "
                f"{', '.join(missing)} but supplied others"
            )
        logger.warning("%s (received %s)", detail, received)
        return ArgumentCheck(name, "flagged", missing, received, detail)

    return ArgumentCheck(
        name,
        "failed",
        missing,
        received,
        f"missing required arguments: {', '.join(missing)}",
    )


def require_arguments(
    tools: Sequence[Tool], tool_calls: Sequence[ToolCall], model_id: str
) -> list[ArgumentCheck]:
    """Run :func:`check_required_arguments` for every call, raising on failure."""
    by_name = {t.name: t for t in tools}
    checks: list[ArgumentCheck] = []
    for i, call in enumerate(tool_calls):
        tool = by_name.get(call.name)
        if tool is None:
            raise ToolArgumentError(
                f"Model called undeclared tool {call.name!r}",
                field=f"tool_calls[{i}].function_call.name",
            )
        check = check_required_arguments(tool, call, model_id)
        if not check.passed:
            raise ToolArgumentError(
                f"{call.name}: {check.detail} (received {check.received})",
                field=f"tool_calls[{i}].function_call.arguments",
            )
        checks.append(check)
    return checks


def check_tool_call_ids(tool_calls: Sequence[ToolCall]) -> None:
    """Every tool call has a non-empty id, unique within the response."""
    seen: set[str] = set()
    for i, call in enumerate(tool_calls):
        if not call.id:
            raise ToolCallMismatchError("Tool call has an empty id", field=f"tool_calls[{i}].id")
        if call.id in seen:
            raise ToolCallMismatchError(
                f"Duplicate tool call id {call.id!r}", field=f"tool_calls[{i}].id"
            )
        seen.add(call.id)


def check_arguments_json(tool_calls: Sequence[ToolCall]) -> None:
    for i, call in enumerate(tool_calls):
        try:
            json.loads(call.arguments)
        except ValueError as e:
            raise ToolArgumentError(
                f"Tool call {call.id!r} has invalid JSON arguments: {e}",
                field=f"tool_calls[{i}].function_call.arguments",
            ) from e


def check_stream_consistency(chunks: Sequence[StreamChunk], response: ContentResponse) -> None:
    """Streamed chunks must agree exactly with the final response."""
    if not response.choices:
        raise StreamConsistencyError("Final response has no choices")
    choice = response.choices[0]

    streamed_text = "".join(c.content for c in chunks if c.type == "content")
    if streamed_text != choice.content:
        raise StreamConsistencyError(
            f"Streamed content ({len(streamed_text)} chars) differs from final content "
            f"({len(choice.content)} chars)"
        )

    streamed_calls = [c.tool_call for c in chunks if c.type == "tool_call" and c.tool_call]
    if len(streamed_calls) != len(choice.tool_calls):
        raise StreamConsistencyError(
            f"Streamed {len(streamed_calls)} tool-call chunks for "
            f"{len(choice.tool_calls)} final tool calls"
        )
    if Counter(c.id for c in streamed_calls) != Counter(c.id for c in choice.tool_calls):
        raise StreamConsistencyError("Streamed tool-call ids differ from final tool-call ids")
    for call in streamed_calls:
        try:
            json.loads(call.arguments)
        except ValueError as e:
            raise StreamConsistencyError(
                f"Tool call {call.id!r} was streamed with partial arguments"
            ) from e


def check_tool_round_trip(history: Sequence[Message]) -> None:
    """All results for one assistant turn sit in exactly one following tool message."""
    validate_conversation(history)
    for i, message in enumerate(history):
        if message.role is not ChatMessageType.AI or not message.tool_calls:
            continue
        expected = Counter(c.id for c in message.tool_calls)
        following = history[i + 1] if i + 1 < len(history) else None
        if following is None:
            continue
        if following.role is not ChatMessageType.TOOL:
            raise ToolCallMismatchError(
                "Assistant tool calls must be followed by a tool message",
                field=f"messages[{i + 1}].role",
            )
        answered = Counter(r.tool_call_id for r in following.tool_responses)
        if answered != expected:
            raise ToolCallMismatchError(
                "Tool results for one assistant turn must be grouped in one tool message",
                field=f"messages[{i + 1}]",
            )


def check_thought_signatures(tool_calls: Sequence[ToolCall], history: Sequence[Message]) -> None:
    """Thought signatures must survive unchanged into every resend of their call."""
    expected = {c.id: c.thought_signature for c in tool_calls if c.thought_signature}
    for m_idx, message in enumerate(history):
        for call in message.tool_calls:
            if call.id in expected and call.thought_signature != expected[call.id]:
                raise ToolCallMismatchError(
                    f"Thought signature of tool call {call.id!r} changed on resend",
                    field=f"messages[{m_idx}]",
                )


async def stream_generate(
    model: Model,
    messages: Sequence[Message],
    *options: CallOption,
) -> tuple[ContentResponse, list[StreamChunk]]:
    """Run *model* with a queue drained by a concurrent consumer.

    Returns the final response together with every chunk in delivery order.
    """
    queue = StreamQueue()
    consumer = asyncio.create_task(queue.drain())
    try:
        response = await model.generate(messages, *options, with_streaming_queue(queue))
    except BaseException:
        consumer.cancel()
        await asyncio.gather(consumer, return_exceptions=True)
        raise
    chunks = await consumer
    return response, chunks


def assert_response_conforms(
    response: ContentResponse,
    chunks: Sequence[StreamChunk] | None = None,
    *,
    tools: Sequence[Tool] = (),
    model_id: str = "",
) -> list[ArgumentCheck]:
    """Apply every per-response check and return the argument checks."""
    calls = response.tool_calls
    check_tool_call_ids(calls)
    check_arguments_json(calls)
    if chunks is not None:
        check_stream_consistency(chunks, response)
    if not tools:
        return []
    return require_arguments(tools, calls, model_id)


def describe(response: ContentResponse) -> dict[str, Any]:
    """Small summary used in logs and suite reports."""
    return {
        "content_chars": len(response.content),
        "tool_calls": [c.name for c in response.tool_calls],
        "usage": response.usage.to_dict() if response.usage else None,
    }
