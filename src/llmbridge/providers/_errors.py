"""Translate vendor SDK failures into :class:`~llmbridge.errors.APIError`.

Every adapter funnels unexpected exceptions through :func:`wrap_provider_error`
so callers see one error type carrying ``status_code``, ``retry_after_s`` and
``retryable`` no matter which SDK raised.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
import re
from typing import Any

import httpx

from llmbridge.config import API_KEY_ENV_VARS
from llmbridge.errors import APIError, RateLimitError, _walk_exception_chain

# Timeouts, conflicts, throttling, server errors and Anthropic's 529 "overloaded".
RETRYABLE_STATUS_CODES: frozenset[int] = frozenset({408, 409, 429, 500, 502, 503, 504, 529})

_DURATION_RE = re.compile(r"^(\d+(?:\.\d+)?)s$")


def _http_status(value: Any) -> int | None:
    return value if isinstance(value, int) and 100 <= value <= 599 else None


def _status_of(e: BaseException) -> int | None:
    # openai/anthropic use status_code, google-genai uses code.
    for attr in ("status_code", "status", "code"):
        status = _http_status(getattr(e, attr, None))
        if status is not None:
            return status
    return _http_status(getattr(getattr(e, "response", None), "status_code", None))


def _header_delay(e: BaseException) -> float | None:
    response = getattr(e, "response", None)
    if not isinstance(response, httpx.Response):
        return None
    raw = response.headers.get("retry-after", "").strip()
    try:
        seconds = float(raw)
    except ValueError:
        return None
    return seconds if seconds >= 0 else None


def _google_retry_delay(e: BaseException) -> float | None:
    """Read ``retryDelay`` from a google-genai ``ClientError.details`` body."""
    details = getattr(e, "details", None)
    error = details.get("error") if isinstance(details, dict) else None
    entries = error.get("details") if isinstance(error, dict) else None
    if not isinstance(entries, list):
        return None
    for entry in entries:
        if not isinstance(entry, dict) or "RetryInfo" not in str(entry.get("@type", "")):
            continue
        match = _DURATION_RE.match(str(entry.get("retryDelay", "")))
        if match:
            return float(match.group(1))
    return None


def _retry_after_of(e: BaseException) -> float | None:
    value = getattr(e, "retry_after", None)
    if isinstance(value, (int, float)) and value >= 0:
        return float(value)
    delay = _header_delay(e)
    return delay if delay is not None else _google_retry_delay(e)


def _first(values: Iterable[Any]) -> Any:
    return next((v for v in values if v is not None), None)


def extract_status_code(exc: BaseException) -> int | None:
    """First HTTP status found on *exc* or anything in its cause chain."""
    return _first(_status_of(e) for e in _walk_exception_chain(exc))


def extract_retry_after_s(exc: BaseException) -> float | None:
    """First retry delay found on *exc* or its cause chain.

    Checks a ``retry_after`` attribute, then an httpx ``Retry-After`` header,
    then Google ``RetryInfo`` details.
    """
    return _first(_retry_after_of(e) for e in _walk_exception_chain(exc))


def _is_network_error(exc: BaseException) -> bool:
    return any(
        isinstance(e, (httpx.TimeoutException, httpx.RequestError))
        for e in _walk_exception_chain(exc)
    )


def _credentials_hint(provider: str, status_code: int | None, cause: str) -> str | None:
    bad_key = status_code == 400 and "api key" in cause.lower().replace("_", " ")
    if status_code not in (401, 403) and not bad_key:
        return None
    if provider == "bedrock":
        return "Check AWS credentials and that the model is enabled in this region."
    env_vars = API_KEY_ENV_VARS.get(provider, ())  # type: ignore[call-overload]
    source = " or ".join(env_vars) or "an API key"
    return f"Check credentials/permissions (set {source} or pass Config(api_key=...))."


def wrap_provider_error(
    exc: BaseException,
    *,
    provider: str,
    phase: str,
    allow_network_errors: bool = True,
    hint: str | None = None,
) -> APIError:
    """Return an :class:`APIError` describing *exc*.

    A 429 becomes :class:`RateLimitError`. ``retryable`` is set for a known
    retry delay, a retryable HTTP status, or (with ``allow_network_errors``) a
    transport failure. An existing ``APIError`` only gets its missing
    ``provider``/``phase``/``hint`` filled in. ``asyncio.CancelledError`` is
    re-raised as is.
    """
    if isinstance(exc, asyncio.CancelledError):
        raise exc

    if isinstance(exc, APIError):
        exc.provider = exc.provider or provider
        exc.phase = exc.phase or phase
        exc.hint = exc.hint or hint
        return exc

    status_code = extract_status_code(exc)
    retry_after_s = extract_retry_after_s(exc)
    retryable = (
        retry_after_s is not None
        or status_code in RETRYABLE_STATUS_CODES
        or (allow_network_errors and _is_network_error(exc))
    )

    message = f"{provider} {phase} failed"
    if status_code is not None:
        message += f" with HTTP {status_code}"
    if str(exc):
        message += f": {exc}"

    cls = RateLimitError if status_code == 429 else APIError
    return cls(
        message,
        hint=hint or _credentials_hint(provider, status_code, str(exc)),
        retryable=retryable,
        status_code=status_code,
        retry_after_s=retry_after_s,
        provider=provider,
        phase=phase,
    )
