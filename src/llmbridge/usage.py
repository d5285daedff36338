"""Token-usage normalization.

Vendors report token accounting under many different names (``prompt_tokens``,
``InputTokens``, ``input_tokens``, cache counters tucked into arbitrary extra
fields, ...). Adapters capture whatever the vendor sent in a
:class:`GenerationInfo` bag; :func:`normalize_usage` resolves it into one
canonical :class:`Usage` through explicit priority lists.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, fields
from typing import Any

# Wire name -> GenerationInfo attribute.
_KEY_TO_FIELD: dict[str, str] = {
    "input_tokens": "input_tokens",
    "output_tokens": "output_tokens",
    "total_tokens": "total_tokens",
    "prompt_tokens": "prompt_tokens",
    "completion_tokens": "completion_tokens",
    "InputTokens": "input_tokens_cap",
    "OutputTokens": "output_tokens_cap",
    "TotalTokens": "total_tokens_cap",
    "PromptTokens": "prompt_tokens_cap",
    "CompletionTokens": "completion_tokens_cap",
    "cached_content_tokens": "cached_content_tokens",
    "tool_use_prompt_tokens": "tool_use_prompt_tokens",
    "thoughts_tokens": "thoughts_tokens",
    "ReasoningTokens": "reasoning_tokens",
    "cache_discount": "cache_discount",
}
_FIELD_TO_KEY = {attr: key for key, attr in _KEY_TO_FIELD.items()}

_INPUT_PRIORITY = ("input_tokens", "input_tokens_cap", "prompt_tokens", "prompt_tokens_cap")
_OUTPUT_PRIORITY = (
    "output_tokens",
    "output_tokens_cap",
    "completion_tokens",
    "completion_tokens_cap",
)
_TOTAL_PRIORITY = ("total_tokens", "total_tokens_cap")

CACHE_EXTRA_KEYS = (
    "CacheReadInputTokens",
    "cache_read_input_tokens",
    "CacheCreationInputTokens",
    "cache_creation_input_tokens",
)


@dataclass
class GenerationInfo:
    """Raw, vendor-shaped token metadata prior to normalization.

    Attribute names ending in ``_cap`` hold the capitalized wire variants
    (``InputTokens``, ``PromptTokens``, ...). Anything the adapter captured
    that has no dedicated slot lives in ``additional``.
    """

    input_tokens: int | None = None
    output_tokens: int | None = None
    total_tokens: int | None = None
    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    input_tokens_cap: int | None = None
    output_tokens_cap: int | None = None
    total_tokens_cap: int | None = None
    prompt_tokens_cap: int | None = None
    completion_tokens_cap: int | None = None
    cached_content_tokens: int | None = None
    tool_use_prompt_tokens: int | None = None
    thoughts_tokens: int | None = None
    reasoning_tokens: int | None = None
    cache_discount: float | None = None
    additional: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> GenerationInfo:
        """Route known wire keys to attributes and the rest to ``additional``."""
        values: dict[str, Any] = {}
        additional: dict[str, Any] = {}
        for key, value in raw.items():
            attr = _KEY_TO_FIELD.get(key)
            if attr is None:
                additional[key] = value
            elif attr == "cache_discount":
                values[attr] = float(value) if _is_number(value) else None
            else:
                values[attr] = _as_int(value)
        return cls(**values, additional=additional)

    def to_dict(self) -> dict[str, Any]:
        """Return the wire-named mapping, omitting absent fields."""
        out: dict[str, Any] = dict(self.additional)
        for f in fields(self):
            if f.name == "additional":
                continue
            value = getattr(self, f.name)
            if value is not None:
                out[_FIELD_TO_KEY[f.name]] = value
        return out


@dataclass(frozen=True)
class Usage:
    """Canonical, caller-facing token accounting."""

    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    reasoning_tokens: int | None = None
    thoughts_tokens: int | None = None
    cache_tokens: int | None = None

    def to_dict(self) -> dict[str, int]:
        out = {
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "total_tokens": self.total_tokens,
        }
        for name in ("reasoning_tokens", "thoughts_tokens", "cache_tokens"):
            value = getattr(self, name)
            if value is not None:
                out[name] = value
        return out


def normalize_usage(info: GenerationInfo | Mapping[str, Any] | None) -> Usage | None:
    """Resolve vendor token metadata into one :class:`Usage`.

    Returns ``None`` when nothing was reported, so "no usage" stays
    distinguishable from "usage reported as zero".
    """
    if info is None:
        return None
    if not isinstance(info, GenerationInfo):
        info = GenerationInfo.from_mapping(info)

    input_tokens = _first_present(info, _INPUT_PRIORITY)
    output_tokens = _first_present(info, _OUTPUT_PRIORITY)
    total_tokens = _first_present(info, _TOTAL_PRIORITY)

    cache_tokens = info.cached_content_tokens or 0
    for key in CACHE_EXTRA_KEYS:
        value = info.additional.get(key)
        if _is_number(value):
            cache_tokens += int(value)

    # A direct total may already include reasoning or thoughts tokens.
    if not total_tokens and input_tokens > 0 and output_tokens > 0:
        total_tokens = input_tokens + output_tokens

    usage = Usage(
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        total_tokens=total_tokens,
        reasoning_tokens=info.reasoning_tokens,
        thoughts_tokens=info.thoughts_tokens,
        cache_tokens=cache_tokens if cache_tokens != 0 else None,
    )
    if not any(usage.to_dict().values()):
        return None
    return usage


def _first_present(info: GenerationInfo, attrs: tuple[str, ...]) -> int:
    for attr in attrs:
        value = getattr(info, attr)
        if value is not None:
            return int(value)
    return 0


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _as_int(value: Any) -> int | None:
    if _is_number(value):
        return int(value)
    return None
