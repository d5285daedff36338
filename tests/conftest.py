"""Pytest configuration and fixtures.

Provides environment isolation, logging configuration, marker handling and
automatic API test skipping. Fixtures here are autouse unless noted.
"""

from __future__ import annotations

from contextlib import suppress
import logging
import os
from pathlib import Path

import pytest

from llmbridge.providers.mock import MockAdapter, MockReply
from llmbridge.recording import Recorder, RecordingConfig, RecordingMode
from llmbridge.types import FunctionCall, ToolCall

_PROVIDER_ENV_PREFIXES = (
    "OPENAI_",
    "ANTHROPIC_",
    "OPENROUTER_",
    "VERTEX_",
    "GOOGLE_",
    "BEDROCK_",
)

# =============================================================================
# Environment Isolation (Autouse)
# =============================================================================


@pytest.fixture(autouse=True)
def block_dotenv(request, monkeypatch):
    """Prevent python-dotenv from loading project .env files during tests.

    Opt-out: @pytest.mark.allow_dotenv
    """
    if request.node.get_closest_marker("allow_dotenv"):
        return
    with suppress(Exception):
        monkeypatch.setattr("dotenv.load_dotenv", lambda *_args, **_kwargs: False, raising=False)


@pytest.fixture(autouse=True)
def isolate_provider_env(request, monkeypatch):
    """Ensure a clean provider environment for each test.

    Clears vendor key and model variables so tests never see real
    credentials. Opt-out: @pytest.mark.allow_env_pollution or @pytest.mark.api
    """
    if request.node.get_closest_marker("allow_env_pollution") or ("api" in request.node.keywords):
        return

    for key in list(os.environ.keys()):
        if key.startswith(_PROVIDER_ENV_PREFIXES):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.delenv("AWS_REGION", raising=False)


# =============================================================================
# Logging
# =============================================================================


@pytest.fixture(scope="session", autouse=True)
def quiet_noisy_libraries():
    """Suppress noisy third-party loggers."""
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


# =============================================================================
# Pytest Hooks
# =============================================================================

API_TESTS_REASON = "API tests require ENABLE_API_TESTS=1"


def _api_tests_enabled() -> bool:
    return bool(os.getenv("ENABLE_API_TESTS"))


def pytest_collection_modifyitems(items):
    """Automatically skip API tests when not explicitly enabled."""
    if _api_tests_enabled():
        return
    skip_api = pytest.mark.skip(reason=API_TESTS_REASON)
    for item in items:
        if "api" in item.keywords:
            item.add_marker(skip_api)


# =============================================================================
# Shared Fixtures
# =============================================================================


def make_call(call_id: str, name: str, arguments: str = "{}", signature: str | None = None) -> ToolCall:
    """Build a ToolCall with less ceremony."""
    return ToolCall(
        id=call_id,
        function_call=FunctionCall(name=name, arguments=arguments),
        thought_signature=signature,
    )


@pytest.fixture
def mock_model() -> MockAdapter:
    """A mock adapter that echoes the last human message."""
    return MockAdapter()


@pytest.fixture
def tool_call_model() -> MockAdapter:
    """A mock adapter scripted for one read_file call followed by an answer."""
    return MockAdapter(
        replies=[
            MockReply(tool_calls=[make_call("call_1", "read_file", '{"path": "go.mod"}')]),
            MockReply(text="The module is example.com/demo."),
        ]
    )


@pytest.fixture
def fixture_dir(tmp_path: Path) -> Path:
    """Empty directory for recorded fixtures."""
    return tmp_path / "testdata"


@pytest.fixture
def recorder_factory(fixture_dir: Path):
    """Return ``make(test_name, mode)`` building recorders on ``fixture_dir``."""

    def make(test_name: str, mode: RecordingMode = RecordingMode.REPLAY) -> Recorder:
        return Recorder(RecordingConfig(test_name, mode=mode, base_dir=fixture_dir))

    return make
