"""Conformance checks: arguments, ids, stream consistency and round trips."""

from __future__ import annotations

import pytest

from llmbridge.conformance import (
    assert_response_conforms,
    check_required_arguments,
    check_stream_consistency,
    check_thought_signatures,
    check_tool_call_ids,
    check_tool_round_trip,
    is_bedrock_model,
    require_arguments,
    stream_generate,
)
from llmbridge.errors import APIError, StreamConsistencyError, ToolArgumentError, ToolCallMismatchError
from llmbridge.history import append_tool_round, assistant_message, tool_result
from llmbridge.options import with_tools
from llmbridge.providers.mock import MockAdapter, MockReply
from llmbridge.scenarios import GET_WEATHER_TOOL, READ_FILE_TOOL
from llmbridge.types import (
    ChatMessageType,
    ContentChoice,
    ContentResponse,
    Message,
    StreamChunk,
    text_part,
)
from tests.conftest import make_call

pytestmark = pytest.mark.contract

BEDROCK_MODEL = "us.anthropic.claude-sonnet-4-20250514-v1:0"


def _response(*calls, text: str = "") -> ContentResponse:
    return ContentResponse(choices=[ContentChoice(content=text, tool_calls=list(calls))])


@pytest.mark.parametrize(
    ("model_id", "expected"),
    [
        (BEDROCK_MODEL, True),
        ("global.anthropic.claude-haiku", True),
        ("anthropic.claude-3-haiku-20240307-v1:0", True),
        ("claude-3-5-sonnet-20241022", False),
        ("gpt-4.1-mini", False),
    ],
)
def test_is_bedrock_model(model_id: str, expected: bool) -> None:
    assert is_bedrock_model(model_id) is expected


def test_required_arguments_present_is_ok() -> None:
    check = check_required_arguments(
        READ_FILE_TOOL, make_call("a", "read_file", '{"path": "go.mod"}'), "gpt-4.1-mini"
    )
    assert check.outcome == "ok"
    assert check.passed


@pytest.mark.parametrize("arguments", ["{}", '{"path": ""}', '{"path": null}'])
def test_missing_required_fails_outside_bedrock(arguments: str) -> None:
    check = check_required_arguments(READ_FILE_TOOL, make_call("a", "read_file", arguments), "gpt-4.1")
    assert check.outcome == "failed"
    assert check.missing == ("path",)


def test_bedrock_empty_arguments_are_flagged_as_accumulation_problem() -> None:
    check = check_required_arguments(READ_FILE_TOOL, make_call("a", "read_file", "{}"), BEDROCK_MODEL)
    assert check.outcome == "flagged"
    assert check.passed
    assert "accumulation" in check.detail


def test_bedrock_partial_arguments_are_flagged() -> None:
    check = check_required_arguments(
        READ_FILE_TOOL, make_call("a", "read_file", '{"other": 1}'), BEDROCK_MODEL
    )
    assert check.outcome == "flagged"
    assert "supplied others" in check.detail


def test_invalid_json_fails_even_on_bedrock() -> None:
    check = check_required_arguments(READ_FILE_TOOL, make_call("a", "read_file", "{"), BEDROCK_MODEL)
    assert check.outcome == "failed"


def test_require_arguments_rejects_undeclared_tool() -> None:
    with pytest.raises(ToolArgumentError) as exc_info:
        require_arguments([READ_FILE_TOOL], [make_call("a", "delete_everything")], "gpt-4.1")
    assert exc_info.value.field == "tool_calls[0].function_call.name"


def test_require_arguments_raises_on_failure_with_received_text() -> None:
    with pytest.raises(ToolArgumentError, match="received"):
        require_arguments([GET_WEATHER_TOOL], [make_call("a", "get_weather", "{}")], "gpt-4.1")


def test_tool_call_ids_must_be_unique_and_non_empty() -> None:
    check_tool_call_ids([make_call("a", "f"), make_call("b", "f")])
    with pytest.raises(ToolCallMismatchError):
        check_tool_call_ids([make_call("a", "f"), make_call("a", "f")])
    with pytest.raises(ToolCallMismatchError):
        check_tool_call_ids([make_call("", "f")])


def test_stream_consistency_accepts_matching_chunks() -> None:
    call = make_call("a", "read_file", '{"path": "go.mod"}')
    chunks = [StreamChunk.for_content("hel"), StreamChunk.for_content("lo"), StreamChunk.for_tool_call(call)]
    check_stream_consistency(chunks, _response(call, text="hello"))


def test_stream_consistency_detects_text_drift() -> None:
    with pytest.raises(StreamConsistencyError):
        check_stream_consistency([StreamChunk.for_content("hel")], _response(text="hello"))


def test_stream_consistency_detects_missing_and_partial_calls() -> None:
    call = make_call("a", "read_file", '{"path": "go.mod"}')
    with pytest.raises(StreamConsistencyError):
        check_stream_consistency([], _response(call))

    partial = make_call("a", "read_file", '{"path": "go')
    with pytest.raises(StreamConsistencyError, match="partial"):
        check_stream_consistency([StreamChunk.for_tool_call(partial)], _response(call))


def test_round_trip_requires_one_grouped_tool_message() -> None:
    calls = [make_call("a", "read_file"), make_call("b", "get_weather")]
    human = text_part("human", "go")
    grouped = append_tool_round(
        [human], _response(*calls), [tool_result(calls[0], "x"), tool_result(calls[1], "y")]
    )
    check_tool_round_trip(grouped)

    split = [
        human,
        assistant_message(_response(*calls)),
        Message(role=ChatMessageType.TOOL, parts=(tool_result(calls[0], "x"),)),
        Message(role=ChatMessageType.TOOL, parts=(tool_result(calls[1], "y"),)),
    ]
    with pytest.raises(ToolCallMismatchError):
        check_tool_round_trip(split)


def test_round_trip_rejects_text_between_call_and_result() -> None:
    call = make_call("a", "read_file")
    history = [
        text_part("human", "go"),
        assistant_message(_response(call)),
        text_part("human", "still there?"),
        Message(role=ChatMessageType.TOOL, parts=(tool_result(call, "x"),)),
    ]
    with pytest.raises(ToolCallMismatchError) as exc_info:
        check_tool_round_trip(history)
    assert exc_info.value.field == "messages[2].role"


def test_thought_signatures_must_survive_resend() -> None:
    signed = make_call("a", "read_file", signature="c2lnbmF0dXJl")
    history = append_tool_round([], _response(signed), [tool_result(signed, "x")])
    check_thought_signatures([signed], history)

    stripped = make_call("a", "read_file")
    tampered = [Message(role=ChatMessageType.AI, parts=(stripped,))]
    with pytest.raises(ToolCallMismatchError, match="signature"):
        check_thought_signatures([signed], tampered)


@pytest.mark.asyncio
async def test_stream_generate_collects_chunks_consistently() -> None:
    model = MockAdapter(
        replies=[
            MockReply(
                text="Reading it now.",
                tool_calls=[make_call("a", "read_file", '{"path": "go.mod"}')],
                chunk_size=3,
            )
        ]
    )
    response, chunks = await stream_generate(
        model, [text_part("human", "read go.mod")], with_tools([READ_FILE_TOOL])
    )
    checks = assert_response_conforms(
        response, chunks, tools=[READ_FILE_TOOL], model_id=model.get_model_id()
    )
    assert [c.outcome for c in checks] == ["ok"]
    assert [c.type for c in chunks][-1] == "tool_call"
    assert "".join(c.content for c in chunks if c.type == "content") == "Reading it now."


@pytest.mark.asyncio
async def test_stream_generate_propagates_failures() -> None:
    model = MockAdapter(fail_after=1)
    with pytest.raises(APIError, match="interrupted") as exc_info:
        await stream_generate(model, [text_part("human", "a long enough prompt to split")])
    assert exc_info.value.retryable is True
