"""Deterministic request hashing for fixture lookup.

The hash covers provider, model id, test name, every message part and a
summary of the call options, including full tool and response-schema
definitions. Incidental fields (timestamps, stream sinks,
callbacks) never take part, so the same logical request always maps to the
same fixture.
"""

from __future__ import annotations

from collections.abc import Sequence
import hashlib
import json
from typing import TYPE_CHECKING, Any

from llmbridge.errors import UnsupportedContentPartError
from llmbridge.recording.types import RequestInfo
from llmbridge.types import ImageContent, Message, TextContent, ToolCall, ToolCallResponse

if TYPE_CHECKING:
    from llmbridge.options import CallOptions
    from llmbridge.tools import JSONSchemaConfig


def _part_info(part: Any, where: str) -> dict[str, Any]:
    if isinstance(part, TextContent):
        return {"kind": "text", "text": part.text}
    if isinstance(part, ImageContent):
        return {
            "kind": "image",
            "source_type": part.source_type,
            "media_type": part.media_type,
            "data_sha256": hashlib.sha256(part.data.encode()).hexdigest(),
        }
    if isinstance(part, ToolCall):
        return {
            "kind": "tool_call",
            "id": part.id,
            "name": part.name,
            "arguments": part.arguments,
            "thought_signature": part.thought_signature,
        }
    if isinstance(part, ToolCallResponse):
        return {
            "kind": "tool_call_response",
            "tool_call_id": part.tool_call_id,
            "name": part.name,
            "content": part.content,
        }
    raise UnsupportedContentPartError(
        f"Cannot fingerprint content part {type(part).__name__}", field=where
    )


def message_info(messages: Sequence[Message]) -> list[dict[str, Any]]:
    return [
        {
            "role": m.role.value,
            "parts": [_part_info(p, f"messages[{i}].parts[{j}]") for j, p in enumerate(m.parts)],
        }
        for i, m in enumerate(messages)
    ]


def _schema_info(config: JSONSchemaConfig | None) -> dict[str, Any] | None:
    if config is None:
        return None
    return {"name": config.name, "schema": config.schema, "strict": config.strict}


def options_info(options: CallOptions) -> dict[str, Any]:
    choice = options.tool_choice
    return {
        "temperature": options.temperature,
        "max_tokens": options.max_tokens,
        "json_mode": options.json_mode,
        "json_schema": _schema_info(options.json_schema),
        "tools": [t.to_dict() for t in options.tools],
        "tool_choice": (
            None
            if choice is None
            else choice.function_name if choice.type == "function" else choice.type
        ),
        "stream": options.streaming,
        "reasoning_effort": options.reasoning_effort,
        "verbosity": options.verbosity,
        "thinking_level": options.thinking_level,
    }


def build_request_info(
    *,
    provider: str,
    model_id: str,
    test_name: str,
    messages: Sequence[Message],
    options: CallOptions,
) -> RequestInfo:
    return RequestInfo(
        provider=provider,
        model_id=model_id,
        test_name=test_name,
        messages=message_info(messages),
        options=options_info(options),
    )


def canonical_json(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def compute_request_hash(info: RequestInfo) -> str:
    """SHA-256 hex digest of the canonical JSON form of *info*."""
    return hashlib.sha256(canonical_json(info.to_dict()).encode("utf-8")).hexdigest()
