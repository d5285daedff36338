"""Recorder attached to the execution context.

Adapters look up :func:`current_recorder` before making a vendor call. In
replay mode the call is served from disk and never touches the network; a
miss raises :class:`~llmbridge.errors.ReplayMissError`. In record mode the
live events are saved after the call succeeds::

    recorder = Recorder(RecordingConfig("tool_call", mode="record"))
    with use_recorder(recorder):
        await model.generate(messages, with_tools([read_file]))
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
import logging
from pathlib import Path
from typing import Any

from llmbridge.errors import ReplayMissError
from llmbridge.recording.matcher import compute_request_hash
from llmbridge.recording.storage import FixtureStore
from llmbridge.recording.types import RecordedResponse, RecordingConfig, RecordingMode, RequestInfo

logger = logging.getLogger(__name__)

_current_recorder: ContextVar[Recorder | None] = ContextVar("llmbridge_recorder", default=None)


class Recorder:
    def __init__(self, config: RecordingConfig, store: FixtureStore | None = None) -> None:
        self.config = config
        self.store = store or FixtureStore(config.base_dir)

    @property
    def test_name(self) -> str:
        return self.config.test_name

    @property
    def recording(self) -> bool:
        return self.config.mode is RecordingMode.RECORD

    @property
    def replaying(self) -> bool:
        return self.config.mode is RecordingMode.REPLAY

    def record(self, info: RequestInfo, payload: list[Any]) -> Path:
        """Persist *payload* for *info*; an existing fixture is left as is."""
        request_hash = compute_request_hash(info)
        record = RecordedResponse(
            request_hash=request_hash,
            test_name=info.test_name,
            provider=info.provider,
            model_id=info.model_id,
            payload=payload,
            timestamp=datetime.now(timezone.utc).isoformat(),
            request=info,
        )
        path, _ = self.store.save(record)
        return path

    def replay(self, info: RequestInfo) -> list[Any]:
        """Return the recorded payload for *info*, raising on a miss."""
        request_hash = compute_request_hash(info)
        record = self.store.load(info.provider, info.test_name, info.model_id, request_hash)
        if record is None:
            expected = self.store.path_for(info.provider, info.test_name, info.model_id, request_hash)
            raise ReplayMissError(
                f"No fixture for {info.provider}/{info.model_id} in test {info.test_name!r}",
                request_hash=request_hash,
                hint=(
                    f"Expected {expected}. Record it with RecordingMode.RECORD, or check "
                    "that the request is built deterministically."
                ),
            )
        logger.debug("Replaying fixture %s for %s", request_hash[:16], info.test_name)
        return record.payload


def current_recorder() -> Recorder | None:
    """Return the recorder attached to the current context, if any."""
    return _current_recorder.get()


@contextmanager
def use_recorder(recorder: Recorder) -> Iterator[Recorder]:
    """Attach *recorder* to every model call made inside the block."""
    token = _current_recorder.set(recorder)
    try:
        yield recorder
    finally:
        _current_recorder.reset(token)
