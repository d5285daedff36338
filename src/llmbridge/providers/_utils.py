"""Shared utilities for adapter implementations."""

from __future__ import annotations

from copy import deepcopy
import json
from typing import Any

from llmbridge.errors import ConfigurationError


def to_strict_schema(schema: dict[str, Any]) -> dict[str, Any]:
    """Normalize a JSON schema for strict structured-output requirements.

    Ensures that for all 'object' types:
    1. additionalProperties is False
    2. All defined properties are listed in 'required'
    """
    normalized = deepcopy(schema)

    def walk(node: Any) -> Any:
        if isinstance(node, list):
            return [walk(item) for item in node]
        if not isinstance(node, dict):
            return node

        updated: dict[str, Any] = {}
        for key, value in node.items():
            updated[key] = walk(value)

        if updated.get("type") == "object" or "properties" in updated:
            properties = updated.get("properties", {})
            if isinstance(properties, dict):
                updated["additionalProperties"] = False
                updated["required"] = list(properties.keys())

        return updated

    result = walk(normalized)
    if not isinstance(result, dict):
        raise ConfigurationError("Invalid JSON schema: expected object schema")
    return result


def to_event(obj: Any) -> dict[str, Any]:
    """Turn an SDK response or stream event into a JSON-safe dict."""
    if isinstance(obj, dict):
        return obj
    dump = getattr(obj, "model_dump", None)
    if callable(dump):
        return dump(mode="json", exclude_none=True)
    raise TypeError(f"Cannot convert {type(obj).__name__} into an event")


def loads_object(text: str) -> dict[str, Any]:
    """Decode a JSON object, returning ``{}`` for anything else."""
    try:
        value = json.loads(text) if text else {}
    except ValueError:
        return {}
    return value if isinstance(value, dict) else {}
