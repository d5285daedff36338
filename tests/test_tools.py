"""Tool definition and tool-choice tests."""

from __future__ import annotations

import pytest

from llmbridge.errors import ConfigurationError
from llmbridge.tools import Parameters, ToolChoice, new_parameters, new_tool

pytestmark = pytest.mark.unit


def test_new_tool_accepts_raw_schema_mapping() -> None:
    tool = new_tool(
        "read_file",
        "Read a file",
        {"type": "object", "properties": {"path": {"type": "string"}}, "required": ["path"]},
    )
    assert tool.name == "read_file"
    assert tool.function.parameters.required == ["path"]
    assert tool.to_dict() == {
        "type": "function",
        "function": {
            "name": "read_file",
            "description": "Read a file",
            "parameters": {
                "type": "object",
                "properties": {"path": {"type": "string"}},
                "required": ["path"],
            },
        },
    }


def test_new_tool_requires_a_name() -> None:
    with pytest.raises(ConfigurationError):
        new_tool("")


def test_new_parameters_accepts_float_bounds_from_json_decoders() -> None:
    params = new_parameters({"type": "object", "minProperties": 1.0, "maxProperties": 3})
    assert params.min_properties == 1
    assert params.max_properties == 3
    assert params.to_dict()["minProperties"] == 1


def test_new_parameters_ignores_non_string_required_entries() -> None:
    params = new_parameters({"required": ["a", 2, None, "b"]})
    assert params.required == ["a", "b"]


def test_unknown_schema_keys_survive_round_trip() -> None:
    schema = {
        "type": "object",
        "properties": {},
        "additionalProperties": False,
        "$defs": {"Thing": {"type": "string"}},
        "description": "nested defs",
    }
    out = new_parameters(schema).to_dict()
    assert out["additionalProperties"] is False
    assert out["$defs"] == {"Thing": {"type": "string"}}
    assert out["description"] == "nested defs"


def test_default_parameters_are_an_empty_object() -> None:
    assert Parameters().to_dict() == {"type": "object", "properties": {}}


def test_tool_choice_constructors() -> None:
    assert ToolChoice.auto().type == "auto"
    assert ToolChoice.none().type == "none"
    assert ToolChoice.required().type == "required"
    forced = ToolChoice.for_function("read_file")
    assert (forced.type, forced.function_name) == ("function", "read_file")


@pytest.mark.parametrize("kwargs", [{"type": "sometimes"}, {"type": "function"}])
def test_tool_choice_rejects_invalid_shapes(kwargs: dict) -> None:
    with pytest.raises(ConfigurationError):
        ToolChoice(**kwargs)
