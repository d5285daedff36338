"""Anthropic Messages API adapter, also used for Bedrock and Vertex Claude."""

from __future__ import annotations

from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass, field
import json
import logging
from typing import TYPE_CHECKING, Any

from llmbridge.errors import ConfigurationError, UnsupportedContentPartError
from llmbridge.providers._utils import loads_object, to_event
from llmbridge.providers.base import BaseAdapter, ProviderCapabilities, ResponseAccumulator
from llmbridge.types import (
    ChatMessageType,
    ContentChoice,
    ContentResponse,
    ImageContent,
    StreamChunk,
    TextContent,
    ToolCall,
    ToolCallResponse,
)
from llmbridge.usage import GenerationInfo, normalize_usage

if TYPE_CHECKING:
    from llmbridge.options import CallOptions
    from llmbridge.tools import Tool, ToolChoice
    from llmbridge.types import Message

logger = logging.getLogger(__name__)

_ANTHROPIC_MAX_TOKENS = 4096
_JSON_MODE_INSTRUCTION = (
    "You must respond with valid JSON only, no other text. Return a JSON object."
)
_INSTALL_HINTS = {
    "anthropic": "uv pip install anthropic",
    "bedrock": "uv pip install 'anthropic[bedrock]'",
    "vertex": "uv pip install 'anthropic[vertex]'",
}


class AnthropicAdapter(BaseAdapter):
    """Anthropic Messages API adapter.

    ``provider`` selects the client: ``"anthropic"`` talks to the API with a
    key, ``"bedrock"`` uses the AWS credential chain in ``region`` and
    ``"vertex"`` uses Google credentials for ``project_id`` in ``region``.
    """

    def __init__(
        self,
        model_id: str,
        *,
        api_key: str | None = None,
        provider: str = "anthropic",
        region: str | None = None,
        project_id: str | None = None,
        base_url: str | None = None,
        client: Any = None,
    ) -> None:
        if provider not in _INSTALL_HINTS:
            raise ConfigurationError(f"Unknown Anthropic client provider: {provider!r}")
        super().__init__(model_id, client=client)
        self.api_key = api_key
        self.provider = provider
        self.region = region
        self.project_id = project_id
        self.base_url = base_url

    def _get_client(self) -> Any:
        """Lazily initialize and return the async Anthropic client."""
        if self._client is None:
            hint = _INSTALL_HINTS[self.provider]
            try:
                import anthropic

                if self.provider == "bedrock":
                    self._client = anthropic.AsyncAnthropicBedrock(aws_region=self.region)
                elif self.provider == "vertex":
                    self._client = anthropic.AsyncAnthropicVertex(
                        region=self.region, project_id=self.project_id
                    )
                else:
                    self._client = anthropic.AsyncAnthropic(
                        api_key=self.api_key, base_url=self.base_url
                    )
            except ImportError as e:
                raise ConfigurationError(
                    f"anthropic client for {self.provider} not installed", hint=hint
                ) from e
        return self._client

    @property
    def capabilities(self) -> ProviderCapabilities:
        """Return supported feature flags."""
        return ProviderCapabilities(
            streaming=True,
            tool_calling=True,
            structured_outputs=True,
            images=True,
            reasoning=False,
            embeddings=False,
        )

    def _build_request(
        self, messages: Sequence[Message], options: CallOptions, model_id: str
    ) -> dict[str, Any]:
        system, turns = _convert_messages(messages)
        if options.json_schema is not None:
            system.append(_JSON_MODE_INSTRUCTION)
            system.append(
                "The JSON must match this schema: "
                + json.dumps(options.json_schema.schema, sort_keys=True)
            )
        elif options.json_mode:
            system.append(_JSON_MODE_INSTRUCTION)

        create_kwargs: dict[str, Any] = {
            "model": model_id,
            "messages": turns,
            "max_tokens": options.max_tokens or _ANTHROPIC_MAX_TOKENS,
        }
        if system:
            create_kwargs["system"] = "\n\n".join(system)
        if options.temperature is not None:
            create_kwargs["temperature"] = options.temperature
        if options.tools:
            create_kwargs["tools"] = [_tool_param(t) for t in options.tools]
            if options.tool_choice is not None:
                create_kwargs["tool_choice"] = _map_tool_choice(options.tool_choice)
        if options.reasoning_effort is not None or options.thinking_level is not None:
            logger.debug("Anthropic adapter ignores reasoning options for %s", model_id)
        return create_kwargs

    def _new_accumulator(self, model_id: str, id_seed: str) -> ResponseAccumulator:
        return MessagesAccumulator(model_id=model_id, id_seed=id_seed)

    async def _live_events(
        self, request: dict[str, Any], *, stream: bool
    ) -> AsyncIterator[dict[str, Any]]:
        client = self._get_client()
        if not stream:
            response = await client.messages.create(**request)
            yield to_event(response)
            return

        response = await client.messages.create(**request, stream=True)
        try:
            async for event in response:
                yield to_event(event)
        finally:
            close = getattr(response, "close", None)
            if close is not None:
                await close()


def _tool_param(tool: Tool) -> dict[str, Any]:
    return {
        "name": tool.function.name,
        "description": tool.function.description,
        "input_schema": tool.function.parameters.to_dict(),
    }


def _map_tool_choice(choice: ToolChoice) -> dict[str, str]:
    """Map a tool choice to Anthropic format."""
    if choice.type == "function":
        return {"type": "tool", "name": choice.function_name or ""}
    if choice.type == "required":
        return {"type": "any"}
    return {"type": choice.type}


def _image_block(part: ImageContent) -> dict[str, Any]:
    if part.source_type == "base64":
        source = {"type": "base64", "media_type": part.media_type, "data": part.data}
    else:
        source = {"type": "url", "url": part.data}
    return {"type": "image", "source": source}


def _convert_messages(
    messages: Sequence[Message],
) -> tuple[list[str], list[dict[str, Any]]]:
    """Split out system text and build alternating user/assistant turns."""
    system: list[str] = []
    turns: list[dict[str, Any]] = []
    for m_idx, message in enumerate(messages):
        role = message.role
        blocks: list[dict[str, Any]] = []
        for p_idx, part in enumerate(message.parts):
            where = f"messages[{m_idx}].parts[{p_idx}]"
            if isinstance(part, TextContent):
                if role is ChatMessageType.SYSTEM:
                    system.append(part.text)
                elif role not in (ChatMessageType.TOOL, ChatMessageType.FUNCTION) and part.text:
                    blocks.append({"type": "text", "text": part.text})
                elif part.text:
                    raise _unsupported(part, role, where)
            elif isinstance(part, ImageContent) and role in (
                ChatMessageType.HUMAN,
                ChatMessageType.GENERIC,
            ):
                blocks.append(_image_block(part))
            elif isinstance(part, ToolCall) and role is ChatMessageType.AI:
                blocks.append(
                    {
                        "type": "tool_use",
                        "id": part.id,
                        "name": part.name,
                        "input": loads_object(part.arguments),
                    }
                )
            elif isinstance(part, ToolCallResponse) and role in (
                ChatMessageType.TOOL,
                ChatMessageType.FUNCTION,
            ):
                blocks.append(
                    {
                        "type": "tool_result",
                        "tool_use_id": part.tool_call_id,
                        "content": part.content,
                    }
                )
            else:
                raise _unsupported(part, role, where)
        if blocks:
            wire_role = "assistant" if role is ChatMessageType.AI else "user"
            _append_message(turns, {"role": wire_role, "content": blocks})
    return system, turns


def _unsupported(part: Any, role: ChatMessageType, where: str) -> UnsupportedContentPartError:
    return UnsupportedContentPartError(
        f"{type(part).__name__} is not supported in {role.value} messages for Anthropic",
        field=where,
    )


def _append_message(messages: list[dict[str, Any]], msg: dict[str, Any]) -> None:
    """Append *msg*, merging into the previous message when roles match.

    Anthropic requires strict user/assistant alternation. Tool results are
    user-role blocks, so a result turn followed by a new prompt merges too.
    """
    if messages and messages[-1]["role"] == msg["role"]:
        messages[-1]["content"] = messages[-1]["content"] + msg["content"]
    else:
        messages.append(msg)


def _normalize_stop_reason(stop_reason: Any) -> str:
    """Map Anthropic stop_reason to a normalized lowercase string."""
    if not stop_reason:
        return ""
    reason = str(stop_reason).lower()
    mapping = {
        "end_turn": "stop",
        "stop_sequence": "stop",
        "max_tokens": "max_tokens",
        "tool_use": "tool_calls",
    }
    return mapping.get(reason, reason)


@dataclass
class _PendingToolUse:
    id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict)
    partial_json: list[str] = field(default_factory=list)


class MessagesAccumulator(ResponseAccumulator):
    """Accumulates Messages API stream events (or one full message).

    ``input_json_delta`` fragments are collected per content block and the
    tool call is released at that block's ``content_block_stop``.
    """

    def __init__(self, *, model_id: str, id_seed: str) -> None:
        super().__init__(model_id=model_id, id_seed=id_seed)
        self._blocks: dict[int, _PendingToolUse] = {}
        self._stop_reason = ""
        self._usage: dict[str, Any] = {}

    def _update_usage(self, usage: dict[str, Any] | None) -> None:
        for key, value in (usage or {}).items():
            if value is not None:
                self._usage[key] = value

    def feed(self, event: dict[str, Any]) -> list[StreamChunk]:
        kind = event.get("type")
        if kind == "message":
            return self._feed_message(event)
        if kind == "message_start":
            self._update_usage((event.get("message") or {}).get("usage"))
            return []
        if kind == "content_block_start":
            block = event.get("content_block") or {}
            if block.get("type") == "tool_use":
                self._blocks[event.get("index", 0)] = _PendingToolUse(
                    id=block.get("id", ""),
                    name=block.get("name", ""),
                    input=block.get("input") or {},
                )
                return []
            if block.get("type") == "text":
                return self.add_text(block.get("text"))
            return []
        if kind == "content_block_delta":
            delta = event.get("delta") or {}
            if delta.get("type") == "text_delta":
                return self.add_text(delta.get("text"))
            if delta.get("type") == "input_json_delta":
                pending = self._blocks.get(event.get("index", 0))
                if pending is not None:
                    pending.partial_json.append(delta.get("partial_json") or "")
            return []
        if kind == "content_block_stop":
            pending = self._blocks.pop(event.get("index", 0), None)
            return [self._complete(pending)] if pending is not None else []
        if kind == "message_delta":
            delta = event.get("delta") or {}
            if delta.get("stop_reason"):
                self._stop_reason = _normalize_stop_reason(delta["stop_reason"])
            self._update_usage(event.get("usage"))
        return []

    def _complete(self, pending: _PendingToolUse) -> StreamChunk:
        arguments: str | dict[str, Any] = "".join(pending.partial_json) or pending.input
        return self.complete_tool_call(pending.id, pending.name, arguments)

    def _feed_message(self, event: dict[str, Any]) -> list[StreamChunk]:
        chunks: list[StreamChunk] = []
        for block in event.get("content") or []:
            if block.get("type") == "text":
                chunks.extend(self.add_text(block.get("text")))
            elif block.get("type") == "tool_use":
                chunks.append(
                    self.complete_tool_call(
                        block.get("id"), block.get("name", ""), block.get("input") or {}
                    )
                )
        self._stop_reason = _normalize_stop_reason(event.get("stop_reason"))
        self._update_usage(event.get("usage"))
        return chunks

    def finish(self) -> list[StreamChunk]:
        chunks = [self._complete(p) for _, p in sorted(self._blocks.items())]
        self._blocks.clear()
        return chunks

    def build(self) -> ContentResponse:
        info = generation_info_from_usage(self._usage) if self._usage else None
        choice = ContentChoice(
            content=self.content,
            stop_reason=self._stop_reason,
            tool_calls=list(self.tool_calls),
            generation_info=info,
        )
        return ContentResponse(choices=[choice], usage=normalize_usage(info))


def generation_info_from_usage(usage: dict[str, Any]) -> GenerationInfo:
    """Map Anthropic usage; cache counters stay in ``additional``."""
    info = GenerationInfo.from_mapping(
        {k: v for k, v in usage.items() if not isinstance(v, dict)}
    )
    if info.input_tokens is not None and info.output_tokens is not None:
        info.total_tokens = info.input_tokens + info.output_tokens
    return info
