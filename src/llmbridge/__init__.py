"""llmbridge: one generation protocol over many LLM vendors.

Public API:
    - Message, text_part(), image_part(): the content model
    - with_*(): call options
    - StreamQueue: bounded chunk queue for streaming
    - create_model(): build a Model from a Config
    - create_embedding_model(): build an EmbeddingModel from a Config
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from llmbridge.config import DEFAULT_EMBEDDING_MODELS, DEFAULT_VERTEX_LOCATION, Config
from llmbridge.errors import (
    APIError,
    ConfigurationError,
    EmptyInputError,
    LLMBridgeError,
    MalformedDataError,
    RateLimitError,
    RecordingError,
    ReplayMissError,
    StreamClosedError,
    StreamConsistencyError,
    ToolArgumentError,
    ToolCallMismatchError,
    UnsupportedContentPartError,
)
from llmbridge.events import OPERATION_INITIALIZATION, LLMMetadata, safe_emit
from llmbridge.history import append_tool_round, assistant_message, tool_result, tool_results_message
from llmbridge.model import ProviderAwareModel
from llmbridge.options import (
    CallOptions,
    with_dimensions,
    with_embedding_model,
    with_json_mode,
    with_json_schema,
    with_max_tokens,
    with_metadata,
    with_model,
    with_reasoning_effort,
    with_streaming_func,
    with_streaming_queue,
    with_temperature,
    with_thinking_level,
    with_tool_choice,
    with_tool_choice_string,
    with_tools,
    with_usage_reporting,
    with_verbosity,
)
from llmbridge.streaming import StreamQueue
from llmbridge.tools import JSONSchemaConfig, Tool, ToolChoice, new_tool
from llmbridge.tracing import current_trace_id, trace_scope
from llmbridge.types import (
    ChatMessageType,
    ContentChoice,
    ContentResponse,
    FunctionCall,
    ImageContent,
    Message,
    StreamChunk,
    TextContent,
    ToolCall,
    ToolCallResponse,
    image_part,
    image_part_base64,
    image_part_url,
    text_part,
    text_parts,
)
from llmbridge.usage import GenerationInfo, Usage, normalize_usage

if TYPE_CHECKING:
    from llmbridge.providers.base import BaseAdapter, EmbeddingModel

try:
    from importlib.metadata import PackageNotFoundError, version

    __version__ = version("llmbridge")
except PackageNotFoundError:
    __version__ = "0.0.0+unknown"

# Library-level NullHandler: stay silent unless the consumer configures logging.
logging.getLogger("llmbridge").addHandler(logging.NullHandler())

logger = logging.getLogger(__name__)


def _build_adapter(config: Config, model_id: str) -> BaseAdapter:
    """Instantiate the adapter for *config* and make sure its client can be built."""
    adapter: BaseAdapter
    if config.use_mock:
        from llmbridge.providers.mock import MockAdapter

        adapter = MockAdapter(model_id)
    elif config.provider in ("openai", "openrouter"):
        from llmbridge.providers.openai import OpenAIAdapter

        adapter = OpenAIAdapter(
            model_id,
            api_key=config.api_key,
            base_url=config.base_url,
            provider=config.provider,
        )
    elif config.provider in ("anthropic", "bedrock"):
        from llmbridge.providers.anthropic import AnthropicAdapter

        adapter = AnthropicAdapter(
            model_id,
            api_key=config.api_key,
            provider=config.provider,
            region=config.region,
            base_url=config.base_url,
        )
    elif model_id.startswith("claude"):
        from llmbridge.providers.anthropic import AnthropicAdapter

        adapter = AnthropicAdapter(
            model_id,
            provider="vertex",
            region=config.location or DEFAULT_VERTEX_LOCATION,
            project_id=config.project_id,
        )
    else:
        from llmbridge.providers.gemini import GeminiAdapter

        adapter = GeminiAdapter(model_id, api_key=config.api_key)

    adapter._get_client()
    return adapter


def create_model(config: Config) -> ProviderAwareModel:
    """Build a provider-aware model, falling back through ``config.fallback_models``.

    Args:
        config: Provider, model and credentials.

    Returns:
        A :class:`ProviderAwareModel` around the first model that initializes.

    Raises:
        ConfigurationError: When no candidate model can be initialized.

    Example:
        model = create_model(Config(provider="openai"))
        response = await model.generate([text_part("human", "Hello!")])
        print(response.content)
    """
    emitter = config.event_emitter
    last_error: LLMBridgeError | None = None
    for model_id in config.models:
        metadata = LLMMetadata(model_version=model_id)
        safe_emit(
            emitter,
            "emit_initialization_start",
            provider=config.provider,
            model_id=model_id,
            temperature=config.temperature,
            trace_id=current_trace_id(),
            metadata=metadata,
        )
        try:
            adapter = _build_adapter(config, model_id)
        except LLMBridgeError as e:
            logger.warning("Could not initialize %s model %s: %s", config.provider, model_id, e)
            safe_emit(
                emitter,
                "emit_initialization_error",
                provider=config.provider,
                model_id=model_id,
                operation=OPERATION_INITIALIZATION,
                error=e,
                trace_id=current_trace_id(),
                metadata=metadata,
            )
            last_error = e
            continue

        safe_emit(
            emitter,
            "emit_initialization_success",
            provider=config.provider,
            model_id=model_id,
            capabilities=adapter.capabilities.describe(),
            trace_id=current_trace_id(),
            metadata=metadata,
        )
        logger.info("Initialized %s model %s", config.provider, model_id)
        defaults = [with_temperature(config.temperature)] if config.temperature is not None else []
        return ProviderAwareModel(
            adapter,
            provider=adapter.provider,
            event_emitter=emitter,
            tracer=config.tracer,
            metadata=metadata,
            default_options=defaults,
        )

    raise ConfigurationError(
        f"No {config.provider} model could be initialized (tried {', '.join(config.models)})",
        hint=last_error.hint if last_error else None,
    ) from last_error


def create_embedding_model(config: Config) -> EmbeddingModel:
    """Build an embedding model for *config*'s provider.

    OpenAI, OpenRouter and Vertex (Gemini) support embeddings. Bedrock and
    Anthropic do not.
    """
    if config.use_mock:
        from llmbridge.providers.mock import MockAdapter

        return MockAdapter("mock-embedding")
    model_id = DEFAULT_EMBEDDING_MODELS.get(config.provider)
    if model_id is None:
        raise ConfigurationError(
            f"Embeddings are not supported for provider {config.provider!r}",
            hint="Use openai, openrouter or vertex for embeddings.",
        )
    adapter: BaseAdapter
    if config.provider == "vertex":
        from llmbridge.providers.gemini import GeminiAdapter

        adapter = GeminiAdapter(model_id, api_key=config.api_key)
    else:
        from llmbridge.providers.openai import OpenAIAdapter

        adapter = OpenAIAdapter(
            model_id,
            api_key=config.api_key,
            base_url=config.base_url,
            provider=config.provider,
        )
    adapter._get_client()
    return adapter  # type: ignore[return-value]


__all__ = [
    "APIError",
    "CallOptions",
    "ChatMessageType",
    "Config",
    "ConfigurationError",
    "ContentChoice",
    "ContentResponse",
    "EmptyInputError",
    "FunctionCall",
    "GenerationInfo",
    "ImageContent",
    "JSONSchemaConfig",
    "LLMBridgeError",
    "MalformedDataError",
    "Message",
    "ProviderAwareModel",
    "RateLimitError",
    "RecordingError",
    "ReplayMissError",
    "StreamChunk",
    "StreamClosedError",
    "StreamConsistencyError",
    "StreamQueue",
    "TextContent",
    "Tool",
    "ToolArgumentError",
    "ToolCall",
    "ToolCallMismatchError",
    "ToolCallResponse",
    "ToolChoice",
    "UnsupportedContentPartError",
    "Usage",
    "append_tool_round",
    "assistant_message",
    "create_embedding_model",
    "create_model",
    "image_part",
    "image_part_base64",
    "image_part_url",
    "new_tool",
    "normalize_usage",
    "text_part",
    "text_parts",
    "tool_result",
    "tool_results_message",
    "trace_scope",
    "with_dimensions",
    "with_embedding_model",
    "with_json_mode",
    "with_json_schema",
    "with_max_tokens",
    "with_metadata",
    "with_model",
    "with_reasoning_effort",
    "with_streaming_func",
    "with_streaming_queue",
    "with_temperature",
    "with_thinking_level",
    "with_tool_choice",
    "with_tool_choice_string",
    "with_tools",
    "with_usage_reporting",
    "with_verbosity",
]
