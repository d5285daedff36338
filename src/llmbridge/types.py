"""Unified conversation and response data model.

Content parts form a closed set: :class:`TextContent`, :class:`ImageContent`,
:class:`ToolCall` and :class:`ToolCallResponse`. Anything else is rejected
with :class:`~llmbridge.errors.UnsupportedContentPartError` instead of being
dropped silently.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal, TypeAlias

from llmbridge.errors import MalformedDataError, UnsupportedContentPartError
from llmbridge.usage import GenerationInfo, Usage


class ChatMessageType(str, Enum):
    """Role of a message within a conversation."""

    SYSTEM = "system"
    HUMAN = "human"
    AI = "ai"
    TOOL = "tool"
    GENERIC = "generic"
    FUNCTION = "function"


ImageSourceType = Literal["base64", "url"]


@dataclass(frozen=True)
class TextContent:
    text: str


@dataclass(frozen=True)
class ImageContent:
    """An image given inline as base64 data or by URL."""

    source_type: ImageSourceType
    media_type: str
    data: str

    def __post_init__(self) -> None:
        if self.source_type not in ("base64", "url"):
            raise MalformedDataError(
                f"Unknown image source type: {self.source_type!r}",
                field="source_type",
                hint="Use 'base64' or 'url'.",
            )
        if self.source_type == "base64" and not self.media_type:
            raise MalformedDataError(
                "Base64 images need a media type",
                field="media_type",
                hint="Pass e.g. media_type='image/png'.",
            )
        if not self.data:
            raise MalformedDataError("Image data must not be empty", field="data")


@dataclass(frozen=True)
class FunctionCall:
    name: str
    arguments: str = "{}"


@dataclass(frozen=True)
class ToolCall:
    """A model-issued request to invoke a named function.

    ``thought_signature`` is an opaque vendor continuation token. It must be
    resent unchanged with every later copy of this call.
    """

    id: str
    function_call: FunctionCall
    type: str = "function"
    thought_signature: str | None = None

    @property
    def name(self) -> str:
        return self.function_call.name

    @property
    def arguments(self) -> str:
        return self.function_call.arguments


@dataclass(frozen=True)
class ToolCallResponse:
    """The result of running a tool, answering the call with ``tool_call_id``."""

    tool_call_id: str
    name: str
    content: str


ContentPart: TypeAlias = TextContent | ImageContent | ToolCall | ToolCallResponse
CONTENT_PART_TYPES: tuple[type, ...] = (TextContent, ImageContent, ToolCall, ToolCallResponse)


def ensure_content_part(part: Any, *, field: str = "part") -> ContentPart:
    """Return *part* unchanged if it belongs to the closed part set."""
    if isinstance(part, CONTENT_PART_TYPES):
        return part
    raise UnsupportedContentPartError(
        f"Unsupported content part {type(part).__name__} at {field}",
        field=field,
        hint="Build parts with TextContent, ImageContent, ToolCall or ToolCallResponse.",
    )


@dataclass(frozen=True)
class Message:
    """One conversation turn: a role and an ordered tuple of parts."""

    role: ChatMessageType
    parts: tuple[ContentPart, ...] = ()

    def __post_init__(self) -> None:
        try:
            role = ChatMessageType(self.role)
        except ValueError as e:
            raise MalformedDataError(
                f"Unknown message role: {self.role!r}",
                field="role",
                hint=f"Use one of: {', '.join(r.value for r in ChatMessageType)}.",
            ) from e
        parts = tuple(
            ensure_content_part(p, field=f"parts[{i}]") for i, p in enumerate(self.parts)
        )
        object.__setattr__(self, "role", role)
        object.__setattr__(self, "parts", parts)

    @property
    def text(self) -> str:
        """Concatenated text of every TextContent part."""
        return "".join(p.text for p in self.parts if isinstance(p, TextContent))

    @property
    def tool_calls(self) -> list[ToolCall]:
        return [p for p in self.parts if isinstance(p, ToolCall)]

    @property
    def tool_responses(self) -> list[ToolCallResponse]:
        return [p for p in self.parts if isinstance(p, ToolCallResponse)]


def text_part(role: ChatMessageType | str, text: str) -> Message:
    """Create a message holding a single text part."""
    return Message(role=role, parts=(TextContent(text),))


def text_parts(role: ChatMessageType | str, *texts: str) -> Message:
    """Create a message with one text part per argument."""
    return Message(role=role, parts=tuple(TextContent(t) for t in texts))


def image_part(
    role: ChatMessageType | str,
    source_type: ImageSourceType,
    media_type: str,
    data: str,
) -> Message:
    return Message(
        role=role,
        parts=(ImageContent(source_type=source_type, media_type=media_type, data=data),),
    )


def image_part_base64(role: ChatMessageType | str, media_type: str, data: str) -> Message:
    return image_part(role, "base64", media_type, data)


def image_part_url(role: ChatMessageType | str, url: str, media_type: str = "") -> Message:
    return image_part(role, "url", media_type, url)


StreamChunkType = Literal["content", "tool_call"]


@dataclass(frozen=True)
class StreamChunk:
    """One unit of streamed output: a content fragment or a complete tool call."""

    type: StreamChunkType
    content: str = ""
    tool_call: ToolCall | None = None

    def __post_init__(self) -> None:
        if self.type == "content":
            if self.tool_call is not None:
                raise MalformedDataError(
                    "Content chunks cannot carry a tool call", field="tool_call"
                )
        elif self.type == "tool_call":
            if self.tool_call is None or self.content:
                raise MalformedDataError(
                    "Tool-call chunks carry exactly one tool call and no content",
                    field="tool_call",
                )
        else:
            raise MalformedDataError(f"Unknown chunk type: {self.type!r}", field="type")

    @classmethod
    def for_content(cls, text: str) -> StreamChunk:
        return cls(type="content", content=text)

    @classmethod
    def for_tool_call(cls, tool_call: ToolCall) -> StreamChunk:
        return cls(type="tool_call", tool_call=tool_call)


@dataclass
class ContentChoice:
    content: str = ""
    stop_reason: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    generation_info: GenerationInfo | None = None


@dataclass
class ContentResponse:
    """Final result of a generation call."""

    choices: list[ContentChoice] = field(default_factory=list)
    usage: Usage | None = None

    @property
    def content(self) -> str:
        """Content of the first choice, or ``""`` when there are no choices."""
        return self.choices[0].content if self.choices else ""

    @property
    def tool_calls(self) -> list[ToolCall]:
        return list(self.choices[0].tool_calls) if self.choices else []
