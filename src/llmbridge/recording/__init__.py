"""Record/replay fixture layer."""

from llmbridge.recording.matcher import build_request_info, compute_request_hash
from llmbridge.recording.recorder import Recorder, current_recorder, use_recorder
from llmbridge.recording.storage import FixtureStore, sanitize_for_filename
from llmbridge.recording.suite import (
    SuiteCase,
    SuiteResult,
    discover_cases,
    run_replay_suite,
    summarize,
)
from llmbridge.recording.types import (
    FixtureKey,
    RecordedResponse,
    RecordingConfig,
    RecordingMode,
    RequestInfo,
)

__all__ = [
    "FixtureKey",
    "FixtureStore",
    "RecordedResponse",
    "Recorder",
    "RecordingConfig",
    "RecordingMode",
    "RequestInfo",
    "SuiteCase",
    "SuiteResult",
    "build_request_info",
    "compute_request_hash",
    "current_recorder",
    "discover_cases",
    "run_replay_suite",
    "sanitize_for_filename",
    "summarize",
    "use_recorder",
]
