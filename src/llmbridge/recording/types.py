"""Record/replay data types."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

DEFAULT_FIXTURE_DIR = Path("testdata")


class RecordingMode(str, Enum):
    RECORD = "record"
    REPLAY = "replay"


@dataclass(frozen=True)
class RecordingConfig:
    """Which test a recorder serves, where fixtures live, and the mode."""

    test_name: str
    mode: RecordingMode = RecordingMode.REPLAY
    base_dir: Path = DEFAULT_FIXTURE_DIR

    def __post_init__(self) -> None:
        object.__setattr__(self, "mode", RecordingMode(self.mode))
        object.__setattr__(self, "base_dir", Path(self.base_dir))


@dataclass(frozen=True)
class RequestInfo:
    """The semantically meaningful parts of a request, as hashed."""

    provider: str
    model_id: str
    test_name: str
    messages: list[dict[str, Any]] = field(default_factory=list)
    options: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider": self.provider,
            "model_id": self.model_id,
            "test_name": self.test_name,
            "messages": self.messages,
            "options": self.options,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RequestInfo:
        return cls(
            provider=data["provider"],
            model_id=data["model_id"],
            test_name=data["test_name"],
            messages=list(data.get("messages", [])),
            options=dict(data.get("options", {})),
        )


@dataclass(frozen=True, order=True)
class FixtureKey:
    test_name: str
    provider: str
    model_id: str


@dataclass(frozen=True)
class RecordedResponse:
    """One persisted vendor exchange.

    ``payload`` is the list of raw vendor events (or the single full response)
    exactly as the adapter received them.
    """

    request_hash: str
    test_name: str
    provider: str
    model_id: str
    payload: list[Any]
    timestamp: str
    request: RequestInfo | None = None

    @property
    def key(self) -> FixtureKey:
        return FixtureKey(self.test_name, self.provider, self.model_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "request_hash": self.request_hash,
            "test_name": self.test_name,
            "provider": self.provider,
            "model_id": self.model_id,
            "timestamp": self.timestamp,
            "request": self.request.to_dict() if self.request else None,
            "event_count": len(self.payload),
            "payload": self.payload,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RecordedResponse:
        request = data.get("request")
        return cls(
            request_hash=data["request_hash"],
            test_name=data["test_name"],
            provider=data["provider"],
            model_id=data["model_id"],
            payload=list(data["payload"]),
            timestamp=data.get("timestamp", ""),
            request=RequestInfo.from_dict(request) if request else None,
        )
