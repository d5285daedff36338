"""Tool definitions, parameter schemas and tool-choice policy."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Literal

from llmbridge.errors import ConfigurationError

_PARAMETER_KEYS = frozenset(
    {
        "type",
        "properties",
        "required",
        "additionalProperties",
        "patternProperties",
        "minProperties",
        "maxProperties",
    }
)


@dataclass
class Parameters:
    """JSON-Schema-like description of a function's arguments.

    Keys without a dedicated attribute are kept in ``additional`` and written
    back by :meth:`to_dict`, so schemas survive a round trip untouched.
    """

    type: str = "object"
    properties: dict[str, Any] = field(default_factory=dict)
    required: list[str] = field(default_factory=list)
    additional_properties: Any = None
    pattern_properties: dict[str, Any] | None = None
    min_properties: int | None = None
    max_properties: int | None = None
    additional: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"type": self.type, "properties": dict(self.properties)}
        if self.required:
            out["required"] = list(self.required)
        if self.additional_properties is not None:
            out["additionalProperties"] = self.additional_properties
        if self.pattern_properties is not None:
            out["patternProperties"] = dict(self.pattern_properties)
        if self.min_properties is not None:
            out["minProperties"] = self.min_properties
        if self.max_properties is not None:
            out["maxProperties"] = self.max_properties
        for key, value in self.additional.items():
            out.setdefault(key, value)
        return out


def new_parameters(schema: Mapping[str, Any]) -> Parameters:
    """Build :class:`Parameters` from a decoded JSON schema.

    JSON decoders often hand back floats for integer literals, so the
    ``minProperties``/``maxProperties`` bounds accept either.
    """
    properties = schema.get("properties")
    pattern = schema.get("patternProperties")
    return Parameters(
        type=str(schema.get("type") or "object"),
        properties=dict(properties) if isinstance(properties, Mapping) else {},
        required=_string_list(schema.get("required")),
        additional_properties=schema.get("additionalProperties"),
        pattern_properties=dict(pattern) if isinstance(pattern, Mapping) else None,
        min_properties=_bound(schema.get("minProperties")),
        max_properties=_bound(schema.get("maxProperties")),
        additional={k: v for k, v in schema.items() if k not in _PARAMETER_KEYS},
    )


def _string_list(value: Any) -> list[str]:
    if isinstance(value, (list, tuple)):
        return [item for item in value if isinstance(item, str)]
    return []


def _bound(value: Any) -> int | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return int(value)


@dataclass
class FunctionDefinition:
    name: str
    description: str = ""
    parameters: Parameters = field(default_factory=Parameters)


@dataclass
class Tool:
    """A callable function offered to the model."""

    function: FunctionDefinition
    type: str = "function"

    @property
    def name(self) -> str:
        return self.function.name

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "function": {
                "name": self.function.name,
                "description": self.function.description,
                "parameters": self.function.parameters.to_dict(),
            },
        }


def new_tool(
    name: str,
    description: str = "",
    parameters: Parameters | Mapping[str, Any] | None = None,
) -> Tool:
    """Create a function tool, accepting a raw schema mapping for parameters."""
    if not name:
        raise ConfigurationError("Tool name must be a non-empty string")
    if parameters is None:
        params = Parameters()
    elif isinstance(parameters, Parameters):
        params = parameters
    else:
        params = new_parameters(parameters)
    return Tool(function=FunctionDefinition(name=name, description=description, parameters=params))


ToolChoiceType = Literal["auto", "none", "required", "function"]


@dataclass(frozen=True)
class ToolChoice:
    """Tool-choice policy: let the model decide, forbid, require, or force one function."""

    type: ToolChoiceType = "auto"
    function_name: str | None = None

    def __post_init__(self) -> None:
        if self.type not in ("auto", "none", "required", "function"):
            raise ConfigurationError(
                f"Unknown tool choice: {self.type!r}",
                hint="Use 'auto', 'none', 'required', or a function name.",
            )
        if self.type == "function" and not self.function_name:
            raise ConfigurationError("A function tool choice needs a function name")

    @classmethod
    def auto(cls) -> ToolChoice:
        return cls("auto")

    @classmethod
    def none(cls) -> ToolChoice:
        return cls("none")

    @classmethod
    def required(cls) -> ToolChoice:
        return cls("required")

    @classmethod
    def for_function(cls, name: str) -> ToolChoice:
        return cls("function", name)


@dataclass(frozen=True)
class JSONSchemaConfig:
    """Structured-output schema request."""

    name: str
    schema: dict[str, Any]
    description: str = ""
    strict: bool = True
