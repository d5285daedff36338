"""Usage normalization tests."""

from __future__ import annotations

from hypothesis import given, settings
from hypothesis import strategies as st
import pytest

from llmbridge.usage import GenerationInfo, Usage, normalize_usage

pytestmark = pytest.mark.unit


def test_none_and_empty_report_no_usage() -> None:
    assert normalize_usage(None) is None
    assert normalize_usage(GenerationInfo()) is None
    assert normalize_usage({"input_tokens": 0, "output_tokens": 0}) is None


def test_lowercase_input_output_win_over_prompt_completion() -> None:
    usage = normalize_usage(
        {"input_tokens": 10, "prompt_tokens": 99, "output_tokens": 5, "completion_tokens": 77}
    )
    assert usage == Usage(input_tokens=10, output_tokens=5, total_tokens=15)


def test_capitalized_variants_are_recognized() -> None:
    usage = normalize_usage({"InputTokens": 7, "OutputTokens": 3, "TotalTokens": 12})
    assert usage is not None
    assert (usage.input_tokens, usage.output_tokens, usage.total_tokens) == (7, 3, 12)


def test_capitalized_pair_derives_the_total() -> None:
    usage = normalize_usage({"InputTokens": 245, "OutputTokens": 89})
    assert usage is not None
    assert (usage.input_tokens, usage.output_tokens, usage.total_tokens) == (245, 89, 334)


def test_anthropic_cache_read_and_creation_are_summed() -> None:
    usage = normalize_usage(
        {
            "input_tokens": 12,
            "output_tokens": 3,
            "cache_read_input_tokens": 100,
            "cache_creation_input_tokens": 50,
        }
    )
    assert usage is not None
    assert usage.cache_tokens == 150


def test_prompt_completion_are_fallbacks() -> None:
    usage = normalize_usage({"prompt_tokens": 4, "completion_tokens": 6, "total_tokens": 10})
    assert usage == Usage(input_tokens=4, output_tokens=6, total_tokens=10)


def test_direct_total_is_never_recomputed() -> None:
    # Totals may include reasoning tokens the parts do not show.
    usage = normalize_usage({"input_tokens": 10, "output_tokens": 5, "total_tokens": 40})
    assert usage is not None
    assert usage.total_tokens == 40


def test_total_is_not_derived_from_a_single_side() -> None:
    usage = normalize_usage({"input_tokens": 10})
    assert usage is not None
    assert usage.total_tokens == 0


def test_cache_tokens_sum_known_and_extension_keys() -> None:
    info = GenerationInfo.from_mapping(
        {
            "input_tokens": 100,
            "output_tokens": 10,
            "cached_content_tokens": 5,
            "cache_read_input_tokens": 20,
            "CacheCreationInputTokens": 7.0,
            "cache_creation_input_tokens": True,
        }
    )
    usage = normalize_usage(info)
    assert usage is not None
    assert usage.cache_tokens == 32


def test_reasoning_and_thoughts_are_carried_through() -> None:
    usage = normalize_usage({"input_tokens": 1, "ReasoningTokens": 9, "thoughts_tokens": 4})
    assert usage is not None
    assert usage.reasoning_tokens == 9
    assert usage.thoughts_tokens == 4
    assert usage.to_dict() == {
        "input_tokens": 1,
        "output_tokens": 0,
        "total_tokens": 0,
        "reasoning_tokens": 9,
        "thoughts_tokens": 4,
    }


def test_only_cache_tokens_still_counts_as_usage() -> None:
    usage = normalize_usage({"cache_read_input_tokens": 3})
    assert usage is not None
    assert usage.cache_tokens == 3


def test_generation_info_round_trips_wire_names() -> None:
    raw = {"PromptTokens": 3, "completion_tokens": 2, "cost": 0.01}
    info = GenerationInfo.from_mapping(raw)
    assert info.prompt_tokens_cap == 3
    assert info.additional == {"cost": 0.01}
    assert info.to_dict() == raw


@settings(max_examples=10, deadline=None, derandomize=True)
@given(
    inp=st.integers(min_value=1, max_value=10**6),
    out=st.integers(min_value=1, max_value=10**6),
)
def test_total_is_derived_when_both_sides_present(inp: int, out: int) -> None:
    usage = normalize_usage({"prompt_tokens": inp, "completion_tokens": out})
    assert usage is not None
    assert usage.total_tokens == inp + out


@settings(max_examples=10, deadline=None, derandomize=True)
@given(
    values=st.dictionaries(
        st.sampled_from(["input_tokens", "InputTokens", "prompt_tokens", "PromptTokens"]),
        st.integers(min_value=0, max_value=1000),
        min_size=1,
    )
)
def test_input_follows_priority_order(values: dict[str, int]) -> None:
    usage = normalize_usage(values)
    expected = next(
        values[k]
        for k in ("input_tokens", "InputTokens", "prompt_tokens", "PromptTokens")
        if k in values
    )
    if expected == 0:
        # An all-zero report is indistinguishable from no report.
        assert usage is None or usage.input_tokens == 0
    else:
        assert usage is not None
        assert usage.input_tokens == expected
