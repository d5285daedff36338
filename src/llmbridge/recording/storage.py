"""On-disk fixture store.

Layout: ``<base_dir>/<provider>/<test>_<model>_<hash16>.json``. Writes are
first-writer-wins: a fixture that already exists is never overwritten. Reads
need no locking since fixtures are immutable once written.
"""

from __future__ import annotations

from collections.abc import Iterator
import json
import logging
import os
from pathlib import Path
import re
import tempfile
import threading

from llmbridge.errors import RecordingError
from llmbridge.recording.types import FixtureKey, RecordedResponse

logger = logging.getLogger(__name__)

HASH_PREFIX_LEN = 16

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_-]")


def sanitize_for_filename(value: str) -> str:
    """Keep ``[A-Za-z0-9_-]``; dots and slashes become underscores."""
    value = value.replace(".", "_").replace("/", "_")
    return _UNSAFE_CHARS.sub("", value)


class FixtureStore:
    """Directory of recorded responses, one JSON file per request."""

    def __init__(self, base_dir: str | Path) -> None:
        self.base_dir = Path(base_dir)
        self._write_lock = threading.Lock()

    def path_for(self, provider: str, test_name: str, model_id: str, request_hash: str) -> Path:
        name = (
            f"{sanitize_for_filename(test_name)}_{sanitize_for_filename(model_id)}"
            f"_{request_hash[:HASH_PREFIX_LEN]}.json"
        )
        return self.base_dir / sanitize_for_filename(provider) / name

    def save(self, record: RecordedResponse) -> tuple[Path, bool]:
        """Persist *record* unless a fixture for its request already exists.

        Returns the fixture path and whether this call wrote it.
        """
        path = self.path_for(record.provider, record.test_name, record.model_id, record.request_hash)
        body = json.dumps(record.to_dict(), indent=2, sort_keys=True, ensure_ascii=False)
        with self._write_lock:
            if path.exists():
                logger.debug("Fixture %s already recorded; keeping the first", path)
                return path, False
            try:
                path.parent.mkdir(parents=True, exist_ok=True)
                fd, tmp_name = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
                try:
                    with os.fdopen(fd, "w", encoding="utf-8") as fh:
                        fh.write(body)
                        fh.write("\n")
                    # link() fails if another process won the race.
                    os.link(tmp_name, path)
                finally:
                    os.unlink(tmp_name)
            except FileExistsError:
                logger.debug("Fixture %s written concurrently; keeping the first", path)
                return path, False
            except OSError as e:
                raise RecordingError(
                    f"Could not write fixture {path}: {e}",
                    hint="Check that the fixture directory is writable.",
                ) from e
        logger.info("Recorded fixture %s", path)
        return path, True

    def read(self, path: Path) -> RecordedResponse:
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            return RecordedResponse.from_dict(data)
        except (OSError, ValueError, KeyError, TypeError) as e:
            raise RecordingError(f"Unreadable fixture {path}: {e}") from e

    def load(
        self, provider: str, test_name: str, model_id: str, request_hash: str
    ) -> RecordedResponse | None:
        """Return the fixture recorded for *request_hash*, or ``None``."""
        path = self.path_for(provider, test_name, model_id, request_hash)
        if not path.is_file():
            return None
        record = self.read(path)
        if record.request_hash != request_hash:
            logger.warning("Fixture %s matches the hash prefix only; ignoring it", path)
            return None
        return record

    def iter_records(self) -> Iterator[tuple[Path, RecordedResponse]]:
        if not self.base_dir.is_dir():
            return
        for path in sorted(self.base_dir.glob("*/*.json")):
            yield path, self.read(path)

    def keys(self) -> list[FixtureKey]:
        """Every distinct ``(test_name, provider, model_id)`` recorded."""
        return sorted({record.key for _, record in self.iter_records()})

    def records_for(self, key: FixtureKey) -> list[tuple[Path, RecordedResponse]]:
        return [(p, r) for p, r in self.iter_records() if r.key == key]
