"""Configuration: frozen Config with provider defaults and key resolution."""

from __future__ import annotations

from dataclasses import dataclass, field
import os
from typing import TYPE_CHECKING, Literal

from dotenv import load_dotenv

from llmbridge.errors import ConfigurationError

if TYPE_CHECKING:
    from llmbridge.events import EventEmitter
    from llmbridge.tracing import Tracer

load_dotenv()

ProviderName = Literal["openai", "anthropic", "openrouter", "vertex", "bedrock"]
PROVIDERS: tuple[ProviderName, ...] = ("openai", "anthropic", "openrouter", "vertex", "bedrock")

# Checked in order; the first one set wins. Bedrock uses the AWS credential chain.
API_KEY_ENV_VARS: dict[ProviderName, tuple[str, ...]] = {
    "openai": ("OPENAI_API_KEY",),
    "anthropic": ("ANTHROPIC_API_KEY",),
    "openrouter": ("OPENROUTER_API_KEY",),
    "vertex": ("VERTEX_API_KEY", "GOOGLE_API_KEY"),
    "bedrock": (),
}

DEFAULT_MODELS: dict[ProviderName, str] = {
    "openai": "gpt-4.1-mini",
    "anthropic": "claude-3-5-sonnet-20241022",
    "openrouter": "moonshotai/kimi-k2",
    "vertex": "gemini-2.5-flash",
    "bedrock": "us.anthropic.claude-sonnet-4-20250514-v1:0",
}

DEFAULT_EMBEDDING_MODELS: dict[ProviderName, str] = {
    "openai": "text-embedding-3-small",
    "openrouter": "text-embedding-3-small",
    "vertex": "text-embedding-004",
}

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"
DEFAULT_AWS_REGION = "us-east-1"
DEFAULT_VERTEX_LOCATION = "us-east5"


def default_model(provider: ProviderName) -> str:
    """Primary model for *provider*: ``<PROVIDER>_PRIMARY_MODEL`` or the built-in default."""
    override = os.environ.get(f"{provider.upper()}_PRIMARY_MODEL", "").strip()
    return override or DEFAULT_MODELS[provider]


def fallback_models(provider: ProviderName) -> tuple[str, ...]:
    """Comma-separated ``<PROVIDER>_FALLBACK_MODELS``, blanks dropped."""
    raw = os.environ.get(f"{provider.upper()}_FALLBACK_MODELS", "")
    return tuple(m.strip() for m in raw.split(",") if m.strip())


def resolve_api_key(provider: ProviderName) -> str | None:
    for env_var in API_KEY_ENV_VARS[provider]:
        value = os.environ.get(env_var)
        if value:
            return value
    return None


@dataclass(frozen=True)
class Config:
    """Immutable configuration for building a model.

    Models default per provider and API keys are auto-resolved from the
    standard environment variables.

    Example:
        config = Config(provider="openai")
        # model gpt-4.1-mini, key from OPENAI_API_KEY
    """

    provider: ProviderName
    #: Defaults to ``<PROVIDER>_PRIMARY_MODEL`` or the provider default when *None*.
    model: str | None = None
    api_key: str | None = None
    use_mock: bool = False
    #: Tried in order when the primary model fails to initialize.
    fallback_models: tuple[str, ...] | None = None
    temperature: float | None = None
    #: Bedrock region; defaults to ``AWS_REGION``.
    region: str | None = None
    #: Vertex project and location for Claude-on-Vertex.
    project_id: str | None = None
    location: str | None = None
    base_url: str | None = None
    event_emitter: EventEmitter | None = field(default=None, compare=False)
    tracer: Tracer | None = field(default=None, compare=False)

    def __post_init__(self) -> None:
        """Resolve defaults and validate configuration."""
        if self.provider not in PROVIDERS:
            raise ConfigurationError(
                f"Unknown provider: {self.provider!r}",
                hint=f"Supported providers: {', '.join(PROVIDERS)}",
            )

        if self.model is None:
            object.__setattr__(self, "model", default_model(self.provider))
        elif not self.model.strip():
            raise ConfigurationError(
                "model must be a non-empty string",
                hint=f"Omit it to use the default ({DEFAULT_MODELS[self.provider]}).",
            )

        if self.fallback_models is None:
            object.__setattr__(self, "fallback_models", fallback_models(self.provider))
        else:
            object.__setattr__(self, "fallback_models", tuple(self.fallback_models))

        if self.temperature is not None and not 0.0 <= self.temperature <= 2.0:
            raise ConfigurationError(
                f"temperature must be between 0 and 2, got {self.temperature}",
            )

        if self.provider == "bedrock" and self.region is None:
            region = os.environ.get("AWS_REGION") or DEFAULT_AWS_REGION
            object.__setattr__(self, "region", region)

        if self.provider == "openrouter" and self.base_url is None:
            object.__setattr__(self, "base_url", OPENROUTER_BASE_URL)

        if self.use_mock or self.provider == "bedrock":
            return

        if self.api_key is None:
            object.__setattr__(self, "api_key", resolve_api_key(self.provider))

        if not self.api_key:
            env_vars = " or ".join(API_KEY_ENV_VARS[self.provider])
            raise ConfigurationError(
                f"API key required for {self.provider}",
                hint=f"Set {env_vars} environment variable or pass api_key=...",
            )

    @property
    def models(self) -> tuple[str, ...]:
        """Primary model followed by the fallbacks, without duplicates."""
        ordered = [self.model or "", *(self.fallback_models or ())]
        return tuple(dict.fromkeys(m for m in ordered if m))

    def __str__(self) -> str:
        """Return a redacted, developer-friendly representation."""
        return (
            f"Config(provider={self.provider!r}, model={self.model!r}, "
            f"api_key={'[REDACTED]' if self.api_key else None}, use_mock={self.use_mock})"
        )

    __repr__ = __str__
