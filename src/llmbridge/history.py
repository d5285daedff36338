"""Conversation history helpers for tool-call round trips.

A round trip appends the model's assistant turn (text plus tool calls, ids
and thought signatures untouched) followed by exactly one tool-role message
holding every result for that turn::

    response = await model.generate(history, with_tools([read_file]))
    results = [tool_result(call, run(call)) for call in response.tool_calls]
    history = append_tool_round(history, response, results)
    final = await model.generate(history, with_tools([read_file]))
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
import hashlib
import json
import logging
from typing import Any

from llmbridge.errors import MalformedDataError, ToolCallMismatchError
from llmbridge.types import (
    ChatMessageType,
    ContentChoice,
    ContentPart,
    ContentResponse,
    Message,
    TextContent,
    ToolCall,
    ToolCallResponse,
    ensure_content_part,
)

logger = logging.getLogger(__name__)

EMPTY_ARGUMENTS = "{}"


def sanitize_arguments(raw: str | Mapping[str, Any] | None) -> str:
    """Return *raw* as a JSON object text, substituting ``"{}"`` when unusable."""
    if raw is None:
        return EMPTY_ARGUMENTS
    if isinstance(raw, Mapping):
        return json.dumps(dict(raw), separators=(",", ":"))
    if not raw.strip():
        return EMPTY_ARGUMENTS
    try:
        parsed = json.loads(raw)
    except ValueError:
        logger.warning("Replacing malformed tool arguments: %.80r", raw)
        return EMPTY_ARGUMENTS
    if not isinstance(parsed, dict):
        logger.warning("Replacing non-object tool arguments: %.80r", raw)
        return EMPTY_ARGUMENTS
    return raw


def parse_arguments(tool_call: ToolCall) -> dict[str, Any]:
    """Decode a tool call's arguments, treating malformed input as ``{}``."""
    return json.loads(sanitize_arguments(tool_call.arguments))


def fallback_tool_call_id(seed: str, index: int) -> str:
    """Deterministic id for a call the vendor left unnamed."""
    digest = hashlib.sha256(f"{seed}:{index}".encode()).hexdigest()
    return f"call_{digest[:24]}"


def assistant_message(response: ContentResponse | ContentChoice) -> Message:
    """Build the ai-role turn that replays *response* into history."""
    choice = response if isinstance(response, ContentChoice) else _first_choice(response)
    parts: list[ContentPart] = []
    if choice.content:
        parts.append(TextContent(choice.content))
    parts.extend(choice.tool_calls)
    return Message(role=ChatMessageType.AI, parts=tuple(parts))


def _first_choice(response: ContentResponse) -> ContentChoice:
    if not response.choices:
        raise MalformedDataError("Response has no choices", field="choices")
    return response.choices[0]


def tool_result(tool_call: ToolCall, content: str | Mapping[str, Any]) -> ToolCallResponse:
    """Pair a tool's output with the call it answers."""
    if not isinstance(content, str):
        content = json.dumps(dict(content))
    return ToolCallResponse(tool_call_id=tool_call.id, name=tool_call.name, content=content)


def tool_results_message(results: Iterable[ToolCallResponse]) -> Message:
    """Group every result of one assistant turn into a single tool message."""
    parts = tuple(results)
    if not parts:
        raise ToolCallMismatchError(
            "A tool message needs at least one result", field="results"
        )
    for i, part in enumerate(parts):
        if not isinstance(part, ToolCallResponse):
            raise ToolCallMismatchError(
                f"Tool messages hold only ToolCallResponse parts, got {type(part).__name__}",
                field=f"results[{i}]",
            )
    return Message(role=ChatMessageType.TOOL, parts=parts)


def append_tool_round(
    history: Sequence[Message],
    response: ContentResponse | ContentChoice,
    results: Iterable[ToolCallResponse],
) -> list[Message]:
    """Return *history* extended with the assistant turn and its results.

    Results must answer exactly the calls of that turn, each once.
    """
    assistant = assistant_message(response)
    results = list(results)
    call_ids = [c.id for c in assistant.tool_calls]
    result_ids = [r.tool_call_id for r in results]
    if sorted(call_ids) != sorted(result_ids):
        missing = sorted(set(call_ids) - set(result_ids))
        unknown = sorted(set(result_ids) - set(call_ids))
        raise ToolCallMismatchError(
            "Tool results do not match the tool calls of this turn",
            field="results",
            hint=f"missing={missing} unknown={unknown}",
        )
    return [*history, assistant, tool_results_message(results)]


def validate_conversation(messages: Sequence[Message]) -> tuple[Message, ...]:
    """Check a conversation before it is sent to a vendor.

    Every part must come from the closed part set, tool calls need ids, and
    each tool-role result must resolve to exactly one earlier ai-role call.
    """
    if isinstance(messages, Message):
        messages = [messages]
    known_calls: dict[str, int] = {}
    answered: set[str] = set()
    checked: list[Message] = []
    for m_idx, message in enumerate(messages):
        if not isinstance(message, Message):
            raise MalformedDataError(
                f"Conversation items must be Message, got {type(message).__name__}",
                field=f"messages[{m_idx}]",
            )
        for p_idx, part in enumerate(message.parts):
            where = f"messages[{m_idx}].parts[{p_idx}]"
            ensure_content_part(part, field=where)
            if isinstance(part, ToolCall):
                if not part.id:
                    raise ToolCallMismatchError("Tool call has an empty id", field=f"{where}.id")
                if message.role is ChatMessageType.AI:
                    known_calls[part.id] = known_calls.get(part.id, 0) + 1
            elif isinstance(part, ToolCallResponse) and message.role is ChatMessageType.TOOL:
                _check_response(part, known_calls, answered, where)
        checked.append(message)
    return tuple(checked)


def _check_response(
    part: ToolCallResponse,
    known_calls: Mapping[str, int],
    answered: set[str],
    where: str,
) -> None:
    field = f"{where}.tool_call_id"
    if not part.tool_call_id:
        raise ToolCallMismatchError("Tool result has an empty tool_call_id", field=field)
    count = known_calls.get(part.tool_call_id, 0)
    if count == 0:
        raise ToolCallMismatchError(
            f"Tool result references unknown tool call {part.tool_call_id!r}",
            field=field,
            hint="Append the assistant turn with its tool calls before the results.",
        )
    if count > 1:
        raise ToolCallMismatchError(
            f"Tool call id {part.tool_call_id!r} is ambiguous",
            field=field,
        )
    if part.tool_call_id in answered:
        raise ToolCallMismatchError(
            f"Tool call {part.tool_call_id!r} was answered twice",
            field=field,
        )
    answered.add(part.tool_call_id)
