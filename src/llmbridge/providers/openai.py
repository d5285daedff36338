"""OpenAI Chat Completions adapter, also used for OpenRouter."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass, field
import logging
from typing import TYPE_CHECKING, Any

from llmbridge.embeddings import (
    Embedding,
    EmbeddingResponse,
    EmbeddingUsage,
    normalize_embedding_input,
)
from llmbridge.errors import ConfigurationError, LLMBridgeError, UnsupportedContentPartError
from llmbridge.options import build_embedding_options
from llmbridge.providers._errors import wrap_provider_error
from llmbridge.providers._utils import to_event, to_strict_schema
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
    from llmbridge.options import CallOptions, EmbeddingOption
    from llmbridge.tools import Tool, ToolChoice
    from llmbridge.types import Message

logger = logging.getLogger(__name__)

# Reasoning models reject an explicit temperature.
_TEMPERATURE_RESTRICTED_PREFIXES = ("o1", "o3", "o4", "gpt-5")


class OpenAIAdapter(BaseAdapter):
    """Chat Completions adapter.

    OpenRouter speaks the same protocol; pass ``provider="openrouter"`` and its
    ``base_url``.
    """

    def __init__(
        self,
        model_id: str,
        *,
        api_key: str | None = None,
        base_url: str | None = None,
        provider: str = "openai",
        client: Any = None,
    ) -> None:
        super().__init__(model_id, client=client)
        self.api_key = api_key
        self.base_url = base_url
        self.provider = provider

    def _get_client(self) -> Any:
        """Lazily initialize and return the OpenAI client."""
        if self._client is None:
            try:
                from openai import AsyncOpenAI
            except ImportError as e:
                raise ConfigurationError(
                    "openai package not installed",
                    hint="uv pip install openai",
                ) from e
            self._client = AsyncOpenAI(api_key=self.api_key, base_url=self.base_url)
        return self._client

    @property
    def capabilities(self) -> ProviderCapabilities:
        """Return supported feature flags."""
        return ProviderCapabilities(
            streaming=True,
            tool_calling=True,
            structured_outputs=True,
            images=True,
            reasoning=True,
            embeddings=self.provider == "openai",
        )

    def _build_request(
        self, messages: Sequence[Message], options: CallOptions, model_id: str
    ) -> dict[str, Any]:
        create_kwargs: dict[str, Any] = {
            "model": model_id,
            "messages": _convert_messages(messages),
        }
        if options.temperature is not None:
            if model_id.startswith(_TEMPERATURE_RESTRICTED_PREFIXES):
                logger.debug("Dropping temperature for %s", model_id)
            else:
                create_kwargs["temperature"] = options.temperature
        if options.max_tokens is not None:
            create_kwargs["max_completion_tokens"] = options.max_tokens

        if options.tools:
            create_kwargs["tools"] = [_tool_param(t) for t in options.tools]
            if options.tool_choice is not None:
                create_kwargs["tool_choice"] = _map_tool_choice(options.tool_choice)

        if options.json_schema is not None:
            cfg = options.json_schema
            json_schema: dict[str, Any] = {
                "name": cfg.name,
                "schema": to_strict_schema(cfg.schema) if cfg.strict else cfg.schema,
                "strict": cfg.strict,
            }
            if cfg.description:
                json_schema["description"] = cfg.description
            create_kwargs["response_format"] = {"type": "json_schema", "json_schema": json_schema}
        elif options.json_mode:
            create_kwargs["response_format"] = {"type": "json_object"}

        if options.reasoning_effort is not None:
            create_kwargs["reasoning_effort"] = options.reasoning_effort
        if options.verbosity is not None:
            create_kwargs["verbosity"] = options.verbosity

        metadata = options.metadata
        if metadata is not None and metadata.usage is not None and metadata.usage.include:
            create_kwargs["extra_body"] = {"usage": {"include": True}}
        return create_kwargs

    def _new_accumulator(self, model_id: str, id_seed: str) -> ResponseAccumulator:
        return ChatCompletionAccumulator(model_id=model_id, id_seed=id_seed)

    async def _live_events(
        self, request: dict[str, Any], *, stream: bool
    ) -> AsyncIterator[dict[str, Any]]:
        client = self._get_client()
        if not stream:
            response = await client.chat.completions.create(**request)
            yield to_event(response)
            return

        response = await client.chat.completions.create(
            **request, stream=True, stream_options={"include_usage": True}
        )
        try:
            async for chunk in response:
                yield to_event(chunk)
        finally:
            close = getattr(response, "close", None)
            if close is not None:
                await close()

    async def generate_embeddings(
        self, input: str | Sequence[str], *options: EmbeddingOption
    ) -> EmbeddingResponse:
        """Embed one string or a batch of strings."""
        texts = normalize_embedding_input(input)
        opts = build_embedding_options(*options)
        model = opts.model or self.model_id
        create_kwargs: dict[str, Any] = {"model": model, "input": texts}
        if opts.dimensions is not None:
            create_kwargs["dimensions"] = opts.dimensions

        try:
            result = await self._get_client().embeddings.create(**create_kwargs)
        except asyncio.CancelledError:
            raise
        except LLMBridgeError:
            raise
        except Exception as e:
            raise wrap_provider_error(
                e, provider=self.provider, phase="embed", allow_network_errors=True
            ) from e

        data = to_event(result)
        usage = data.get("usage") or {}
        return EmbeddingResponse(
            embeddings=[
                Embedding(index=item.get("index", i), embedding=list(item["embedding"]))
                for i, item in enumerate(data.get("data") or [])
            ],
            model=data.get("model") or model,
            usage=EmbeddingUsage(
                prompt_tokens=int(usage.get("prompt_tokens") or 0),
                total_tokens=int(usage.get("total_tokens") or 0),
            ),
        )


def _tool_param(tool: Tool) -> dict[str, Any]:
    return {
        "type": "function",
        "function": {
            "name": tool.function.name,
            "description": tool.function.description,
            "parameters": tool.function.parameters.to_dict(),
        },
    }


def _map_tool_choice(choice: ToolChoice) -> Any:
    if choice.type == "function":
        return {"type": "function", "function": {"name": choice.function_name}}
    return choice.type


def _unsupported(part: Any, role: ChatMessageType, where: str) -> UnsupportedContentPartError:
    return UnsupportedContentPartError(
        f"{type(part).__name__} is not supported in {role.value} messages for OpenAI",
        field=where,
    )


def _image_url(part: ImageContent) -> dict[str, Any]:
    if part.source_type == "base64":
        url = f"data:{part.media_type};base64,{part.data}"
    else:
        url = part.data
    return {"type": "image_url", "image_url": {"url": url}}


def _convert_messages(messages: Sequence[Message]) -> list[dict[str, Any]]:
    """Translate the unified conversation into Chat Completions messages."""
    converted: list[dict[str, Any]] = []
    for m_idx, message in enumerate(messages):
        role = message.role
        if role is ChatMessageType.AI:
            converted.append(_assistant_message(message, m_idx))
            continue
        if role in (ChatMessageType.TOOL, ChatMessageType.FUNCTION):
            for p_idx, part in enumerate(message.parts):
                if not isinstance(part, ToolCallResponse):
                    raise _unsupported(part, role, f"messages[{m_idx}].parts[{p_idx}]")
                converted.append(
                    {"role": "tool", "tool_call_id": part.tool_call_id, "content": part.content}
                )
            continue

        content: list[dict[str, Any]] = []
        for p_idx, part in enumerate(message.parts):
            if isinstance(part, TextContent):
                content.append({"type": "text", "text": part.text})
            elif isinstance(part, ImageContent) and role is not ChatMessageType.SYSTEM:
                content.append(_image_url(part))
            else:
                raise _unsupported(part, role, f"messages[{m_idx}].parts[{p_idx}]")
        wire_role = "system" if role is ChatMessageType.SYSTEM else "user"
        if all(c["type"] == "text" for c in content):
            converted.append({"role": wire_role, "content": "".join(c["text"] for c in content)})
        else:
            converted.append({"role": wire_role, "content": content})
    return converted


def _assistant_message(message: Message, m_idx: int) -> dict[str, Any]:
    text: list[str] = []
    tool_calls: list[dict[str, Any]] = []
    for p_idx, part in enumerate(message.parts):
        if isinstance(part, TextContent):
            text.append(part.text)
        elif isinstance(part, ToolCall):
            call: dict[str, Any] = {
                "id": part.id,
                "type": "function",
                "function": {"name": part.name, "arguments": part.arguments},
            }
            if part.thought_signature:
                call["extra_content"] = {"google": {"thought_signature": part.thought_signature}}
            tool_calls.append(call)
        else:
            raise _unsupported(part, ChatMessageType.AI, f"messages[{m_idx}].parts[{p_idx}]")
    out: dict[str, Any] = {"role": "assistant", "content": "".join(text) or None}
    if tool_calls:
        out["tool_calls"] = tool_calls
    return out


def _thought_signature(tool_call: dict[str, Any]) -> str | None:
    extra = tool_call.get("extra_content") or {}
    google = extra.get("google") or {}
    signature = google.get("thought_signature")
    return signature if isinstance(signature, str) and signature else None


def generation_info_from_usage(usage: dict[str, Any]) -> GenerationInfo:
    """Map an OpenAI-style usage object, including nested token details."""
    info = GenerationInfo.from_mapping(
        {k: v for k, v in usage.items() if not isinstance(v, dict)}
    )
    prompt_details = usage.get("prompt_tokens_details") or {}
    cached = prompt_details.get("cached_tokens")
    if isinstance(cached, int) and cached:
        info.cached_content_tokens = cached
    completion_details = usage.get("completion_tokens_details") or {}
    reasoning = completion_details.get("reasoning_tokens")
    if isinstance(reasoning, int) and reasoning:
        info.reasoning_tokens = reasoning
    return info


@dataclass
class _PendingCall:
    id: str = ""
    name: str = ""
    arguments: list[str] = field(default_factory=list)
    thought_signature: str | None = None


class ChatCompletionAccumulator(ResponseAccumulator):
    """Accumulates Chat Completions chunks (or one full completion).

    Content deltas are released immediately. Tool-call deltas are merged by
    index and released when the choice finishes with ``tool_calls`` or the
    stream ends.
    """

    def __init__(self, *, model_id: str, id_seed: str) -> None:
        super().__init__(model_id=model_id, id_seed=id_seed)
        self._pending: dict[int, _PendingCall] = {}
        self._stop_reason = ""
        self._usage: dict[str, Any] | None = None

    def feed(self, event: dict[str, Any]) -> list[StreamChunk]:
        if event.get("object") == "chat.completion":
            return self._feed_completion(event)

        chunks: list[StreamChunk] = []
        if event.get("usage"):
            self._usage = event["usage"]
        for choice in event.get("choices") or []:
            delta = choice.get("delta") or {}
            chunks.extend(self.add_text(delta.get("content")))
            for tc in delta.get("tool_calls") or []:
                slot = self._pending.setdefault(tc.get("index", 0), _PendingCall())
                if tc.get("id"):
                    slot.id = tc["id"]
                fn = tc.get("function") or {}
                if fn.get("name"):
                    slot.name = fn["name"]
                if fn.get("arguments"):
                    slot.arguments.append(fn["arguments"])
                signature = _thought_signature(tc)
                if signature:
                    slot.thought_signature = signature
            finish_reason = choice.get("finish_reason")
            if finish_reason:
                self._stop_reason = finish_reason
                if finish_reason == "tool_calls":
                    chunks.extend(self._flush())
        return chunks

    def _feed_completion(self, event: dict[str, Any]) -> list[StreamChunk]:
        choices = event.get("choices") or []
        choice = choices[0] if choices else {}
        message = choice.get("message") or {}
        chunks = self.add_text(message.get("content"))
        for tc in message.get("tool_calls") or []:
            fn = tc.get("function") or {}
            chunks.append(
                self.complete_tool_call(
                    tc.get("id"),
                    fn.get("name", ""),
                    fn.get("arguments"),
                    thought_signature=_thought_signature(tc),
                )
            )
        self._stop_reason = choice.get("finish_reason") or ""
        self._usage = event.get("usage")
        return chunks

    def _flush(self) -> list[StreamChunk]:
        chunks = [
            self.complete_tool_call(
                slot.id,
                slot.name,
                "".join(slot.arguments),
                thought_signature=slot.thought_signature,
            )
            for _, slot in sorted(self._pending.items())
        ]
        self._pending.clear()
        return chunks

    def finish(self) -> list[StreamChunk]:
        if self._pending:
            logger.debug("Stream ended with %d unfinished tool calls", len(self._pending))
        return self._flush()

    def build(self) -> ContentResponse:
        info = generation_info_from_usage(self._usage) if self._usage else None
        choice = ContentChoice(
            content=self.content,
            stop_reason=self._stop_reason,
            tool_calls=list(self.tool_calls),
            generation_info=info,
        )
        return ContentResponse(choices=[choice], usage=normalize_usage(info))
