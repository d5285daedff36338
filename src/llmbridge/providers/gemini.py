"""Gemini adapter (google-genai)."""

from __future__ import annotations

import asyncio
import base64
import binascii
from collections.abc import AsyncIterator, Sequence
import json
import logging
from typing import TYPE_CHECKING, Any

from llmbridge.embeddings import (
    Embedding,
    EmbeddingResponse,
    EmbeddingUsage,
    normalize_embedding_input,
)
from llmbridge.errors import (
    ConfigurationError,
    LLMBridgeError,
    MalformedDataError,
    UnsupportedContentPartError,
)
from llmbridge.options import build_embedding_options
from llmbridge.providers._errors import wrap_provider_error
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
    from llmbridge.options import CallOptions, EmbeddingOption
    from llmbridge.tools import ToolChoice
    from llmbridge.types import Message

logger = logging.getLogger(__name__)

# usage_metadata key -> GenerationInfo attribute
_USAGE_FIELDS = {
    "prompt_token_count": "input_tokens",
    "candidates_token_count": "output_tokens",
    "total_token_count": "total_tokens",
    "cached_content_token_count": "cached_content_tokens",
    "tool_use_prompt_token_count": "tool_use_prompt_tokens",
    "thoughts_token_count": "thoughts_tokens",
}


class GeminiAdapter(BaseAdapter):
    """Google Gemini adapter.

    Uses the Gemini Developer API with an API key, or Vertex AI when a
    ``project_id`` is given.
    """

    provider = "vertex"

    def __init__(
        self,
        model_id: str,
        *,
        api_key: str | None = None,
        project_id: str | None = None,
        location: str | None = None,
        client: Any = None,
    ) -> None:
        super().__init__(model_id, client=client)
        self.api_key = api_key
        self.project_id = project_id
        self.location = location

    def _get_client(self) -> Any:
        """Lazy-initialize the Gemini client."""
        if self._client is None:
            try:
                from google import genai
            except ImportError as e:
                raise ConfigurationError(
                    "google-genai package not installed",
                    hint="uv pip install google-genai",
                ) from e
            if self.project_id:
                self._client = genai.Client(
                    vertexai=True, project=self.project_id, location=self.location
                )
            else:
                self._client = genai.Client(api_key=self.api_key)
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
            embeddings=True,
        )

    def _build_request(
        self, messages: Sequence[Message], options: CallOptions, model_id: str
    ) -> dict[str, Any]:
        system, contents = _convert_messages(messages)
        config: dict[str, Any] = {}
        if system:
            config["system_instruction"] = "\n\n".join(system)
        if options.temperature is not None:
            config["temperature"] = options.temperature
        if options.max_tokens is not None:
            config["max_output_tokens"] = options.max_tokens

        if options.tools:
            config["tools"] = [
                {
                    "function_declarations": [
                        {
                            "name": t.function.name,
                            "description": t.function.description,
                            "parameters_json_schema": t.function.parameters.to_dict(),
                        }
                        for t in options.tools
                    ]
                }
            ]
            if options.tool_choice is not None:
                config["tool_config"] = {
                    "function_calling_config": _function_calling_config(options.tool_choice)
                }

        if options.json_schema is not None:
            config["response_mime_type"] = "application/json"
            config["response_json_schema"] = options.json_schema.schema
        elif options.json_mode:
            config["response_mime_type"] = "application/json"

        if options.thinking_level is not None:
            config["thinking_config"] = {"thinking_level": options.thinking_level}

        return {"model": model_id, "contents": contents, "config": config}

    def _new_accumulator(self, model_id: str, id_seed: str) -> ResponseAccumulator:
        return GeminiAccumulator(model_id=model_id, id_seed=id_seed)

    async def _live_events(
        self, request: dict[str, Any], *, stream: bool
    ) -> AsyncIterator[dict[str, Any]]:
        models = self._get_client().aio.models
        if not stream:
            response = await models.generate_content(**request)
            yield to_event(response)
            return

        async for chunk in await models.generate_content_stream(**request):
            yield to_event(chunk)

    async def generate_embeddings(
        self, input: str | Sequence[str], *options: EmbeddingOption
    ) -> EmbeddingResponse:
        """Embed one string or a batch of strings."""
        texts = normalize_embedding_input(input)
        opts = build_embedding_options(*options)
        model = opts.model or self.model_id
        embed_kwargs: dict[str, Any] = {"model": model, "contents": texts}
        if opts.dimensions is not None:
            embed_kwargs["config"] = {"output_dimensionality": opts.dimensions}

        try:
            result = await self._get_client().aio.models.embed_content(**embed_kwargs)
        except asyncio.CancelledError:
            raise
        except LLMBridgeError:
            raise
        except Exception as e:
            raise wrap_provider_error(
                e, provider=self.provider, phase="embed", allow_network_errors=True
            ) from e

        data = to_event(result)
        return EmbeddingResponse(
            embeddings=[
                Embedding(index=i, embedding=list(item.get("values") or []))
                for i, item in enumerate(data.get("embeddings") or [])
            ],
            model=model,
            usage=EmbeddingUsage(),
        )


def _function_calling_config(choice: ToolChoice) -> dict[str, Any]:
    if choice.type == "function":
        return {"mode": "ANY", "allowed_function_names": [choice.function_name]}
    if choice.type == "required":
        return {"mode": "ANY"}
    return {"mode": choice.type.upper()}


def _decode_signature(signature: str) -> bytes | None:
    try:
        return base64.b64decode(signature, validate=True)
    except (binascii.Error, ValueError):
        logger.warning("Dropping thought signature that is not valid base64")
        return None


def _image_part(part: ImageContent, where: str) -> dict[str, Any]:
    if part.source_type == "base64":
        try:
            data = base64.b64decode(part.data, validate=True)
        except (binascii.Error, ValueError) as e:
            raise MalformedDataError(
                "Image data is not valid base64", field=f"{where}.data"
            ) from e
        return {"inline_data": {"mime_type": part.media_type, "data": data}}
    file_data = {"file_uri": part.data}
    if part.media_type:
        file_data["mime_type"] = part.media_type
    return {"file_data": file_data}


def _function_response(part: ToolCallResponse) -> dict[str, Any]:
    try:
        response = json.loads(part.content) if part.content else {}
    except ValueError:
        response = None
    if not isinstance(response, dict):
        response = {"result": part.content}
    return {"function_response": {"name": part.name, "response": response}}


def _convert_messages(
    messages: Sequence[Message],
) -> tuple[list[str], list[dict[str, Any]]]:
    """Build system text and ``contents`` dicts, merging same-role turns."""
    system: list[str] = []
    contents: list[dict[str, Any]] = []
    for m_idx, message in enumerate(messages):
        role = message.role
        parts: list[dict[str, Any]] = []
        for p_idx, part in enumerate(message.parts):
            if isinstance(part, TextContent) and role is ChatMessageType.SYSTEM:
                system.append(part.text)
            elif isinstance(part, TextContent) and role not in (
                ChatMessageType.TOOL,
                ChatMessageType.FUNCTION,
            ):
                if part.text:
                    parts.append({"text": part.text})
            elif isinstance(part, ImageContent) and role in (
                ChatMessageType.HUMAN,
                ChatMessageType.GENERIC,
            ):
                parts.append(_image_part(part, f"messages[{m_idx}].parts[{p_idx}]"))
            elif isinstance(part, ToolCall) and role is ChatMessageType.AI:
                call: dict[str, Any] = {
                    "function_call": {"name": part.name, "args": loads_object(part.arguments)}
                }
                if part.thought_signature:
                    signature = _decode_signature(part.thought_signature)
                    if signature is not None:
                        call["thought_signature"] = signature
                parts.append(call)
            elif isinstance(part, ToolCallResponse) and role in (
                ChatMessageType.TOOL,
                ChatMessageType.FUNCTION,
            ):
                parts.append(_function_response(part))
            else:
                raise UnsupportedContentPartError(
                    f"{type(part).__name__} is not supported in {role.value} messages for Gemini",
                    field=f"messages[{m_idx}].parts[{p_idx}]",
                )
        if not parts:
            continue
        wire_role = "model" if role is ChatMessageType.AI else "user"
        if contents and contents[-1]["role"] == wire_role:
            contents[-1]["parts"].extend(parts)
        else:
            contents.append({"role": wire_role, "parts": parts})
    return system, contents


def generation_info_from_usage(usage: dict[str, Any]) -> GenerationInfo:
    """Map ``usage_metadata`` onto a GenerationInfo."""
    info = GenerationInfo()
    for key, value in usage.items():
        attr = _USAGE_FIELDS.get(key)
        if attr is not None and isinstance(value, int):
            setattr(info, attr, value)
        elif not isinstance(value, (dict, list)):
            info.additional[key] = value
    return info


class GeminiAccumulator(ResponseAccumulator):
    """Accumulates ``GenerateContentResponse`` events.

    Function calls arrive complete and are released immediately. Gemini
    signs only the first of several parallel calls, so a signature seen
    earlier in the response is shared with the unsigned calls that follow.
    """

    def __init__(self, *, model_id: str, id_seed: str) -> None:
        super().__init__(model_id=model_id, id_seed=id_seed)
        self._signature: str | None = None
        self._stop_reason = ""
        self._usage: dict[str, Any] | None = None

    def feed(self, event: dict[str, Any]) -> list[StreamChunk]:
        chunks: list[StreamChunk] = []
        candidates = event.get("candidates") or []
        if candidates:
            candidate = candidates[0]
            for part in (candidate.get("content") or {}).get("parts") or []:
                chunks.extend(self._feed_part(part))
            if candidate.get("finish_reason"):
                self._stop_reason = str(candidate["finish_reason"]).lower()
        if event.get("usage_metadata"):
            self._usage = event["usage_metadata"]
        return chunks

    def _feed_part(self, part: dict[str, Any]) -> list[StreamChunk]:
        function_call = part.get("function_call")
        if function_call:
            signature = part.get("thought_signature") or self._signature
            if signature and self._signature is None:
                self._signature = signature
            return [
                self.complete_tool_call(
                    function_call.get("id"),
                    function_call.get("name", ""),
                    function_call.get("args") or {},
                    thought_signature=signature,
                )
            ]
        if part.get("thought"):
            return []
        return self.add_text(part.get("text"))

    def build(self) -> ContentResponse:
        info = generation_info_from_usage(self._usage) if self._usage else None
        stop_reason = self._stop_reason
        if self.tool_calls and stop_reason in ("", "stop"):
            stop_reason = "tool_calls"
        choice = ContentChoice(
            content=self.content,
            stop_reason=stop_reason,
            tool_calls=list(self.tool_calls),
            generation_info=info,
        )
        return ContentResponse(choices=[choice], usage=normalize_usage(info))
