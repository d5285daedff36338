"""Replay suite: scenarios recorded once, replayed offline."""

from __future__ import annotations

from pathlib import Path

import pytest

from llmbridge.providers.mock import MockAdapter, MockReply
from llmbridge.recording import (
    RecordingMode,
    discover_cases,
    run_replay_suite,
    summarize,
    use_recorder,
)
from llmbridge.scenarios import SCENARIOS, run_parallel_tool_calls, run_single_tool_call
from tests.conftest import make_call

pytestmark = pytest.mark.contract

READ_GO_MOD = make_call("call_1", "read_file", '{"path": "go.mod"}')

SCRIPTS: dict[str, list[MockReply]] = {
    "plain_text": [MockReply(text="Hi, I am a mock model.")],
    "single_tool_call": [MockReply(tool_calls=[READ_GO_MOD])],
    "parallel_tool_calls": [
        MockReply(
            tool_calls=[
                READ_GO_MOD,
                make_call("call_2", "get_weather", '{"location": "San Francisco"}'),
            ]
        )
    ],
    "tool_round_trip": [
        MockReply(tool_calls=[READ_GO_MOD]),
        MockReply(text="The module is example.com/demo."),
    ],
}


async def _record_all(recorder_factory) -> None:
    for name, replies in SCRIPTS.items():
        with use_recorder(recorder_factory(name, RecordingMode.RECORD)):
            await SCENARIOS[name](MockAdapter(replies=replies))


def _offline_model(provider: str, model_id: str) -> MockAdapter:
    assert provider == "mock"
    return MockAdapter(model_id, fail_after=0)


@pytest.mark.asyncio
async def test_every_scenario_passes_live_against_scripted_mock() -> None:
    for name, replies in SCRIPTS.items():
        response = await SCENARIOS[name](MockAdapter(replies=replies))
        assert response.choices


@pytest.mark.asyncio
async def test_single_tool_call_rejects_extra_calls() -> None:
    second = make_call("call_2", "read_file", '{"path": "go.mod"}')
    model = MockAdapter(replies=[MockReply(tool_calls=[READ_GO_MOD, second])])
    with pytest.raises(AssertionError, match="exactly one tool call, got 2"):
        await run_single_tool_call(model)


@pytest.mark.asyncio
async def test_recorded_scenarios_replay_offline(recorder_factory, fixture_dir: Path) -> None:
    await _record_all(recorder_factory)

    cases = discover_cases(fixture_dir)
    assert [c.key.test_name for c in cases] == sorted(SCRIPTS)
    round_trip = next(c for c in cases if c.key.test_name == "tool_round_trip")
    assert len(round_trip.fixtures) == 2

    results = await run_replay_suite(fixture_dir, SCENARIOS, _offline_model)
    assert all(r.passed for r in results), summarize(results)
    assert summarize(results).splitlines()[-1] == "4 passed, 0 failed, 0 skipped"


@pytest.mark.asyncio
async def test_unregistered_scenarios_are_skipped(recorder_factory, fixture_dir: Path) -> None:
    await _record_all(recorder_factory)
    results = await run_replay_suite(
        fixture_dir, {"plain_text": SCENARIOS["plain_text"]}, _offline_model
    )
    assert sum(r.skipped for r in results) == 3
    assert "1 passed, 0 failed, 3 skipped" in summarize(results)


@pytest.mark.asyncio
async def test_failing_case_is_reported_and_suite_continues(
    recorder_factory, fixture_dir: Path
) -> None:
    # A single call recorded under the parallel scenario fails its expectation.
    with (
        use_recorder(recorder_factory("parallel_tool_calls", RecordingMode.RECORD)),
        pytest.raises(AssertionError),
    ):
        await run_parallel_tool_calls(MockAdapter(replies=[MockReply(tool_calls=[READ_GO_MOD])]))
    with use_recorder(recorder_factory("plain_text", RecordingMode.RECORD)):
        await SCENARIOS["plain_text"](MockAdapter(replies=SCRIPTS["plain_text"]))

    results = await run_replay_suite(fixture_dir, SCENARIOS, _offline_model)
    by_name = {r.case.key.test_name: r for r in results}
    assert by_name["plain_text"].passed
    failed = by_name["parallel_tool_calls"]
    assert not failed.passed and not failed.skipped
    assert failed.error.startswith("AssertionError: Expected parallel tool calls")
    assert "FAIL mock/mock-model/parallel_tool_calls" in summarize(results)


@pytest.mark.asyncio
async def test_empty_fixture_dir_yields_no_cases(fixture_dir: Path) -> None:
    assert discover_cases(fixture_dir) == []
    assert await run_replay_suite(fixture_dir, SCENARIOS, _offline_model) == []
    assert summarize([]) == "0 passed, 0 failed, 0 skipped"
