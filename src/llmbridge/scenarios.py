"""Conformance scenarios run against any Model.

Each scenario streams through a concurrent consumer and applies every check
in :mod:`llmbridge.conformance`. Scenario names double as the ``test_name``
under which fixtures are recorded, so the replay suite can find them again.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
import json
import logging
from typing import TYPE_CHECKING

from llmbridge.conformance import (
    assert_response_conforms,
    check_thought_signatures,
    check_tool_call_ids,
    check_tool_round_trip,
    describe,
    stream_generate,
)
from llmbridge.errors import ToolArgumentError
from llmbridge.history import append_tool_round, parse_arguments, tool_result
from llmbridge.options import with_tools
from llmbridge.tools import new_tool
from llmbridge.types import ChatMessageType, text_part

if TYPE_CHECKING:
    from llmbridge.providers.base import Model
    from llmbridge.types import ContentResponse, ToolCall

logger = logging.getLogger(__name__)

Scenario = Callable[["Model"], Awaitable["ContentResponse"]]

READ_FILE_TOOL = new_tool(
    "read_file",
    "Read the contents of a file in the current project.",
    {
        "type": "object",
        "properties": {"path": {"type": "string", "description": "Path of the file to read"}},
        "required": ["path"],
    },
)

GET_WEATHER_TOOL = new_tool(
    "get_weather",
    "Get the current weather for a city.",
    {
        "type": "object",
        "properties": {"location": {"type": "string", "description": "City name"}},
        "required": ["location"],
    },
)

PLAIN_TEXT_PROMPT = "Hello! Can you introduce yourself?"
SINGLE_TOOL_PROMPT = "Please read the go.mod file in the current directory using the read_file tool."
PARALLEL_TOOLS_PROMPT = "Read the go.mod file and get the weather in San Francisco."

GO_MOD_CONTENTS = "module example.com/demo\n\ngo 1.22\n"


def _fake_tool_output(call: ToolCall) -> dict[str, str]:
    if call.name == "read_file":
        return {"path": parse_arguments(call).get("path", ""), "content": GO_MOD_CONTENTS}
    if call.name == "get_weather":
        return {"location": parse_arguments(call).get("location", ""), "forecast": "sunny, 18C"}
    return {"error": f"unknown tool {call.name}"}


async def run_plain_text(model: Model) -> ContentResponse:
    """A greeting yields non-empty text and no tool calls."""
    response, chunks = await stream_generate(model, [text_part(ChatMessageType.HUMAN, PLAIN_TEXT_PROMPT)])
    assert_response_conforms(response, chunks)
    if not response.content.strip():
        raise AssertionError("Plain-text scenario produced no content")
    if response.tool_calls:
        raise AssertionError("Plain-text scenario produced tool calls")
    return response


async def run_single_tool_call(model: Model) -> ContentResponse:
    """The model makes exactly one call: ``read_file`` with ``path="go.mod"``."""
    tools = [READ_FILE_TOOL]
    response, chunks = await stream_generate(
        model, [text_part(ChatMessageType.HUMAN, SINGLE_TOOL_PROMPT)], with_tools(tools)
    )
    checks = assert_response_conforms(response, chunks, tools=tools, model_id=model.get_model_id())
    if len(response.tool_calls) != 1:
        raise AssertionError(f"Expected exactly one tool call, got {len(response.tool_calls)}")
    call = response.tool_calls[0]
    if call.name != "read_file":
        raise AssertionError(f"Expected a read_file tool call, got {call.name!r}")
    if all(c.outcome == "ok" for c in checks):
        path = parse_arguments(call).get("path")
        if path != "go.mod":
            raise ToolArgumentError(
                f"read_file called with path={path!r}, expected 'go.mod'",
                field="tool_calls[0].function_call.arguments",
            )
    return response


async def run_parallel_tool_calls(model: Model) -> ContentResponse:
    """Two independent requests produce at least two calls with distinct ids."""
    tools = [READ_FILE_TOOL, GET_WEATHER_TOOL]
    response, chunks = await stream_generate(
        model, [text_part(ChatMessageType.HUMAN, PARALLEL_TOOLS_PROMPT)], with_tools(tools)
    )
    assert_response_conforms(response, chunks, tools=tools, model_id=model.get_model_id())
    if len(response.tool_calls) < 2:
        raise AssertionError(f"Expected parallel tool calls, got {len(response.tool_calls)}")
    return response


async def run_tool_round_trip(model: Model) -> ContentResponse:
    """Call, answer every call in one tool message, then get a final answer."""
    tools = [READ_FILE_TOOL]
    history = [text_part(ChatMessageType.HUMAN, SINGLE_TOOL_PROMPT)]
    first, chunks = await stream_generate(model, history, with_tools(tools))
    assert_response_conforms(first, chunks, tools=tools, model_id=model.get_model_id())
    if not first.tool_calls:
        raise AssertionError("Expected a tool call to start the round trip")

    results = [tool_result(call, json.dumps(_fake_tool_output(call))) for call in first.tool_calls]
    history = append_tool_round(history, first, results)
    check_tool_round_trip(history)
    check_thought_signatures(first.tool_calls, history)

    final, chunks = await stream_generate(model, history, with_tools(tools))
    assert_response_conforms(final, chunks, tools=tools, model_id=model.get_model_id())
    check_tool_call_ids(final.tool_calls)
    if not final.content and not final.tool_calls:
        raise AssertionError("Round trip ended without content or tool calls")
    logger.debug("Round trip finished: %s", describe(final))
    return final


SCENARIOS: dict[str, Scenario] = {
    "plain_text": run_plain_text,
    "single_tool_call": run_single_tool_call,
    "parallel_tool_calls": run_parallel_tool_calls,
    "tool_round_trip": run_tool_round_trip,
}
