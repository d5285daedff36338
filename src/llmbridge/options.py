"""Call configuration assembled from composable option functions.

Each ``with_*`` function returns a setter; :func:`build_call_options` applies
them in order and validates the result::

    opts = build_call_options(
        with_model("gpt-4.1-mini"),
        with_temperature(0.2),
        with_tools([read_file]),
        with_tool_choice("required"),
    )
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass, field, replace
from typing import Any

from pydantic import BaseModel

from llmbridge.errors import ConfigurationError
from llmbridge.streaming import StreamQueue
from llmbridge.tools import JSONSchemaConfig, Tool, ToolChoice
from llmbridge.types import StreamChunk

REASONING_EFFORTS = ("minimal", "low", "medium", "high")
VERBOSITY_LEVELS = ("low", "medium", "high")
THINKING_LEVELS = ("low", "high")

ResponseSchemaInput = type[BaseModel] | Mapping[str, Any]
StreamCallback = Callable[[StreamChunk], Awaitable[Any] | Any]


@dataclass
class UsageMetadata:
    include: bool = False


@dataclass
class Metadata:
    """Opaque per-call metadata; ``usage.include`` asks OpenRouter for usage."""

    usage: UsageMetadata | None = None
    custom: dict[str, Any] = field(default_factory=dict)


@dataclass
class CallOptions:
    """Configuration for one generation call.

    Built once per call. Adapters only read it.
    """

    model: str = ""
    temperature: float | None = None
    max_tokens: int | None = None
    json_mode: bool = False
    json_schema: JSONSchemaConfig | None = None
    tools: list[Tool] = field(default_factory=list)
    tool_choice: ToolChoice | None = None
    #: Caller-owned queue; the producer closes it when the call ends.
    stream_queue: StreamQueue | None = None
    #: Callback invoked per chunk from a drain worker.
    stream_callback: StreamCallback | None = None
    metadata: Metadata | None = None
    reasoning_effort: str | None = None
    verbosity: str | None = None
    thinking_level: str | None = None

    @property
    def streaming(self) -> bool:
        return self.stream_queue is not None or self.stream_callback is not None

    def tool(self, name: str) -> Tool | None:
        for tool in self.tools:
            if tool.name == name:
                return tool
        return None

    def validate(self) -> None:
        """Validate option shapes early for clear errors."""
        if self.temperature is not None and (
            isinstance(self.temperature, bool)
            or not isinstance(self.temperature, (int, float))
            or not 0.0 <= self.temperature <= 2.0
        ):
            raise ConfigurationError(
                "temperature must be a number between 0 and 2",
                hint="Pass with_temperature(0.7).",
            )

        if self.max_tokens is not None and (
            isinstance(self.max_tokens, bool)
            or not isinstance(self.max_tokens, int)
            or self.max_tokens <= 0
        ):
            raise ConfigurationError(
                "max_tokens must be a positive integer",
                hint="Pass with_max_tokens(4096).",
            )

        if self.stream_queue is not None and self.stream_callback is not None:
            raise ConfigurationError(
                "A call streams to either a queue or a callback, not both",
                hint="Drop with_streaming_queue() or with_streaming_func().",
            )

        _check_choice("reasoning_effort", self.reasoning_effort, REASONING_EFFORTS)
        _check_choice("verbosity", self.verbosity, VERBOSITY_LEVELS)
        _check_choice("thinking_level", self.thinking_level, THINKING_LEVELS)

        names = [t.name for t in self.tools]
        if len(set(names)) != len(names):
            raise ConfigurationError(
                "Tool names must be unique within a call",
                hint=f"Got: {', '.join(names)}.",
            )
        choice = self.tool_choice
        if choice is not None and choice.type == "function" and choice.function_name not in names:
            raise ConfigurationError(
                f"Tool choice names undeclared function {choice.function_name!r}",
                hint="Add the tool with with_tools() or choose 'auto'.",
            )


def _check_choice(name: str, value: str | None, allowed: tuple[str, ...]) -> None:
    if value is not None and value not in allowed:
        raise ConfigurationError(
            f"{name} must be one of: {', '.join(allowed)}",
            hint=f"Got {value!r}.",
        )


CallOption = Callable[[CallOptions], None]


def build_call_options(*options: CallOption) -> CallOptions:
    """Apply *options* in order and validate the result."""
    opts = CallOptions()
    for option in options:
        if not callable(option):
            raise ConfigurationError(
                f"Call options must be option functions, got {type(option).__name__}",
                hint="Use the with_* helpers, e.g. with_temperature(0.2).",
            )
        option(opts)
    opts.validate()
    return opts


def with_model(model: str) -> CallOption:
    def apply(o: CallOptions) -> None:
        o.model = model

    return apply


def with_temperature(temperature: float) -> CallOption:
    def apply(o: CallOptions) -> None:
        o.temperature = temperature

    return apply


def with_max_tokens(max_tokens: int) -> CallOption:
    def apply(o: CallOptions) -> None:
        o.max_tokens = max_tokens

    return apply


def with_json_mode() -> CallOption:
    def apply(o: CallOptions) -> None:
        o.json_mode = True

    return apply


def with_json_schema(
    schema: ResponseSchemaInput,
    *,
    name: str | None = None,
    description: str = "",
    strict: bool = True,
) -> CallOption:
    """Request structured output matching *schema*.

    *schema* may be a JSON schema mapping or a pydantic ``BaseModel`` subclass.
    """
    if isinstance(schema, type) and issubclass(schema, BaseModel):
        schema_json = schema.model_json_schema()
        resolved_name = name or schema.__name__
    elif isinstance(schema, Mapping):
        schema_json = dict(schema)
        resolved_name = name or "structured_output"
    else:
        raise ConfigurationError(
            "JSON schema must be a Pydantic model class or JSON schema dict",
            hint="Pass a BaseModel subclass or a dict following JSON Schema.",
        )
    config = JSONSchemaConfig(
        name=resolved_name, schema=schema_json, description=description, strict=strict
    )

    def apply(o: CallOptions) -> None:
        o.json_schema = config

    return apply


def with_tools(tools: Sequence[Tool]) -> CallOption:
    def apply(o: CallOptions) -> None:
        o.tools = list(tools)

    return apply


def with_tool_choice(choice: ToolChoice | str) -> CallOption:
    """Set the tool-choice policy.

    Strings ``auto``/``none``/``required`` select that policy; any other
    string forces the function with that name.
    """
    resolved = choice if isinstance(choice, ToolChoice) else _parse_tool_choice(choice)

    def apply(o: CallOptions) -> None:
        o.tool_choice = resolved

    return apply


def with_tool_choice_string(choice: str) -> CallOption:
    return with_tool_choice(_parse_tool_choice(choice))


def _parse_tool_choice(choice: str) -> ToolChoice:
    if not isinstance(choice, str) or not choice:
        raise ConfigurationError(
            "tool choice must be a non-empty string or ToolChoice",
            hint="Use 'auto', 'none', 'required', or a function name.",
        )
    if choice in ("auto", "none", "required"):
        return ToolChoice(choice)
    return ToolChoice.for_function(choice)


def with_streaming_queue(queue: StreamQueue) -> CallOption:
    if not isinstance(queue, StreamQueue):
        raise ConfigurationError(
            f"Streaming target must be a StreamQueue, got {type(queue).__name__}",
        )

    def apply(o: CallOptions) -> None:
        o.stream_queue = queue

    return apply


def with_streaming_func(callback: StreamCallback) -> CallOption:
    """Stream chunks to *callback*, which may be sync or async."""
    if not callable(callback):
        raise ConfigurationError("Streaming callback must be callable")

    def apply(o: CallOptions) -> None:
        o.stream_callback = callback

    return apply


def with_metadata(metadata: Metadata) -> CallOption:
    def apply(o: CallOptions) -> None:
        o.metadata = metadata

    return apply


def with_usage_reporting() -> CallOption:
    """Ask providers that make usage opt-in (OpenRouter) to report it."""

    def apply(o: CallOptions) -> None:
        base = o.metadata or Metadata()
        o.metadata = replace(base, usage=UsageMetadata(include=True))

    return apply


def with_reasoning_effort(effort: str) -> CallOption:
    def apply(o: CallOptions) -> None:
        o.reasoning_effort = effort

    return apply


def with_verbosity(verbosity: str) -> CallOption:
    def apply(o: CallOptions) -> None:
        o.verbosity = verbosity

    return apply


def with_thinking_level(level: str) -> CallOption:
    def apply(o: CallOptions) -> None:
        o.thinking_level = level

    return apply


@dataclass
class EmbeddingOptions:
    model: str = ""
    dimensions: int | None = None

    def validate(self) -> None:
        if self.dimensions is not None and (
            isinstance(self.dimensions, bool)
            or not isinstance(self.dimensions, int)
            or self.dimensions <= 0
        ):
            raise ConfigurationError(
                "dimensions must be a positive integer",
                hint="Pass with_dimensions(256).",
            )


EmbeddingOption = Callable[[EmbeddingOptions], None]


def build_embedding_options(*options: EmbeddingOption) -> EmbeddingOptions:
    opts = EmbeddingOptions()
    for option in options:
        option(opts)
    opts.validate()
    return opts


def with_embedding_model(model: str) -> EmbeddingOption:
    def apply(o: EmbeddingOptions) -> None:
        o.model = model

    return apply


def with_dimensions(dimensions: int) -> EmbeddingOption:
    def apply(o: EmbeddingOptions) -> None:
        o.dimensions = dimensions

    return apply
