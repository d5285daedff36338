"""Exception hierarchy for llmbridge."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator


class LLMBridgeError(Exception):
    """Base exception for all llmbridge errors."""

    def __init__(self, message: str, *, hint: str | None = None) -> None:
        super().__init__(message)
        self.hint = hint


class ConfigurationError(LLMBridgeError):
    """Configuration validation or resolution failed.

    Raised at initialization or option-building time and never retried.
    """


class MalformedDataError(LLMBridgeError):
    """Data handed to or returned by a model is structurally invalid.

    ``field`` names the offending location, e.g. ``messages[2].parts[0]``.
    """

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        hint: str | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.field = field


class UnsupportedContentPartError(MalformedDataError):
    """A value outside the closed content-part set reached a conversion."""


class ToolCallMismatchError(MalformedDataError):
    """Tool results do not line up with the tool calls they answer."""


class ToolArgumentError(MalformedDataError):
    """Tool-call arguments are missing required parameters or are not JSON."""


class EmptyInputError(MalformedDataError):
    """An embedding request carried no text."""


class StreamConsistencyError(LLMBridgeError):
    """Streamed chunks disagree with the final response (an adapter defect)."""


class StreamClosedError(LLMBridgeError):
    """A chunk was pushed onto a stream queue after it was closed."""


class RecordingError(LLMBridgeError):
    """Fixture storage could not be read or written."""


class ReplayMissError(RecordingError):
    """No recorded fixture matches a request made in replay mode."""

    def __init__(
        self,
        message: str,
        *,
        request_hash: str,
        hint: str | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.request_hash = request_hash


class APIError(LLMBridgeError):
    """Vendor call failed.

    Adapters attach retry metadata so callers can decide on their own retry
    policy without brittle substring matching.
    """

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        retryable: bool | None = None,
        status_code: int | None = None,
        retry_after_s: float | None = None,
        provider: str | None = None,
        phase: str | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.retryable = retryable
        self.status_code = status_code
        self.retry_after_s = retry_after_s
        self.provider = provider
        self.phase = phase


class RateLimitError(APIError):
    """Rate limit exceeded (HTTP 429)."""


def _walk_exception_chain(exc: BaseException) -> Iterator[BaseException]:
    """Yield *exc* and its ``__cause__``/``__context__`` chain, with cycle protection."""
    seen: set[int] = set()
    stack: list[BaseException] = [exc]
    while stack:
        cur = stack.pop()
        if id(cur) in seen:
            continue
        seen.add(id(cur))
        yield cur

        cause = cur.__cause__
        if isinstance(cause, BaseException):
            stack.append(cause)
        context = cur.__context__
        if isinstance(context, BaseException):
            stack.append(context)
