"""Error hierarchy and vendor error wrapping."""

from __future__ import annotations

import asyncio

import httpx
import pytest

from llmbridge.errors import (
    APIError,
    ConfigurationError,
    EmptyInputError,
    LLMBridgeError,
    MalformedDataError,
    RateLimitError,
    ReplayMissError,
    ToolCallMismatchError,
    UnsupportedContentPartError,
)
from llmbridge.providers._errors import (
    extract_retry_after_s,
    extract_status_code,
    wrap_provider_error,
)

pytestmark = pytest.mark.unit


class VendorError(Exception):
    def __init__(self, message: str, status_code: int | None = None, headers=None) -> None:
        super().__init__(message)
        self.status_code = status_code
        if headers is not None:
            self.response = httpx.Response(status_code or 500, headers=headers)


class GoogleLikeError(Exception):
    def __init__(self, details) -> None:
        super().__init__("RESOURCE_EXHAUSTED")
        self.code = 429
        self.details = details


def test_hierarchy() -> None:
    assert issubclass(UnsupportedContentPartError, MalformedDataError)
    assert issubclass(ToolCallMismatchError, MalformedDataError)
    assert issubclass(EmptyInputError, MalformedDataError)
    assert issubclass(RateLimitError, APIError)
    for cls in (APIError, ConfigurationError, MalformedDataError, ReplayMissError):
        assert issubclass(cls, LLMBridgeError)


def test_errors_carry_hint_and_field() -> None:
    err = MalformedDataError("bad part", field="messages[0].parts[1]", hint="fix it")
    assert err.field == "messages[0].parts[1]"
    assert err.hint == "fix it"
    assert str(err) == "bad part"
    assert ReplayMissError("miss", request_hash="abc").request_hash == "abc"


def test_429_becomes_retryable_rate_limit_with_retry_after() -> None:
    wrapped = wrap_provider_error(
        VendorError("slow down", status_code=429, headers={"Retry-After": "7"}),
        provider="openai",
        phase="generate",
        allow_network_errors=True,
    )
    assert isinstance(wrapped, RateLimitError)
    assert wrapped.retryable is True
    assert wrapped.status_code == 429
    assert wrapped.retry_after_s == 7.0
    assert str(wrapped) == "openai generate failed with HTTP 429: slow down"


@pytest.mark.parametrize(("status", "retryable"), [(500, True), (529, True), (400, False), (404, False)])
def test_retryability_by_status(status: int, retryable: bool) -> None:
    wrapped = wrap_provider_error(
        VendorError("boom", status_code=status),
        provider="anthropic",
        phase="generate",
        allow_network_errors=False,
    )
    assert type(wrapped) is APIError
    assert wrapped.retryable is retryable


def test_network_errors_retryable_only_when_allowed() -> None:
    exc = httpx.ConnectError("connection refused")
    assert wrap_provider_error(exc, provider="openai", phase="generate", allow_network_errors=True).retryable
    assert not wrap_provider_error(
        exc, provider="openai", phase="generate", allow_network_errors=False
    ).retryable


def test_status_found_through_exception_chain() -> None:
    try:
        try:
            raise VendorError("inner", status_code=503)
        except VendorError as inner:
            raise RuntimeError("outer") from inner
    except RuntimeError as outer:
        assert extract_status_code(outer) == 503


def test_google_retry_info_delay() -> None:
    exc = GoogleLikeError(
        {"error": {"details": [{"@type": "type.googleapis.com/google.rpc.RetryInfo", "retryDelay": "8s"}]}}
    )
    assert extract_retry_after_s(exc) == 8.0
    wrapped = wrap_provider_error(exc, provider="vertex", phase="generate", allow_network_errors=True)
    assert isinstance(wrapped, RateLimitError)
    assert wrapped.retry_after_s == 8.0


def test_auth_failures_name_the_credential_source() -> None:
    wrapped = wrap_provider_error(
        VendorError("unauthorized", status_code=401),
        provider="openrouter",
        phase="generate",
        allow_network_errors=True,
    )
    assert "OPENROUTER_API_KEY" in (wrapped.hint or "")

    bedrock = wrap_provider_error(
        VendorError("forbidden", status_code=403),
        provider="bedrock",
        phase="generate",
        allow_network_errors=True,
    )
    assert "AWS credentials" in (bedrock.hint or "")


def test_bad_key_400_gets_a_hint_and_unparseable_retry_after_is_ignored() -> None:
    wrapped = wrap_provider_error(
        VendorError("Invalid api_key provided", status_code=400, headers={"Retry-After": "soon"}),
        provider="vertex",
        phase="generate",
    )
    assert "VERTEX_API_KEY or GOOGLE_API_KEY" in (wrapped.hint or "")
    assert wrapped.retry_after_s is None
    assert wrapped.retryable is False


def test_existing_api_error_is_annotated_not_rewrapped() -> None:
    original = APIError("already wrapped", retryable=False)
    wrapped = wrap_provider_error(original, provider="mock", phase="embed", allow_network_errors=True)
    assert wrapped is original
    assert (wrapped.provider, wrapped.phase) == ("mock", "embed")


def test_cancellation_is_reraised() -> None:
    with pytest.raises(asyncio.CancelledError):
        wrap_provider_error(
            asyncio.CancelledError(), provider="openai", phase="generate", allow_network_errors=True
        )
