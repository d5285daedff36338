"""Replay every recorded scenario found on disk.

A case is one ``(test_name, provider, model_id)`` triple with fixtures in the
store. Each case is run against the scenario registered under its test name,
with a fresh model from ``model_factory`` and a replay-mode recorder, so the
whole suite runs without network access::

    results = await run_replay_suite("testdata", SCENARIOS, make_model)
    print(summarize(results))
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
import logging
from pathlib import Path
import time
from typing import TYPE_CHECKING, Any

from llmbridge.recording.recorder import Recorder, use_recorder
from llmbridge.recording.storage import FixtureStore
from llmbridge.recording.types import FixtureKey, RecordingConfig, RecordingMode

if TYPE_CHECKING:
    from llmbridge.providers.base import Model

logger = logging.getLogger(__name__)

ModelFactory = Callable[[str, str], "Model"]
ScenarioFn = Callable[["Model"], Awaitable[Any]]


@dataclass(frozen=True)
class SuiteCase:
    key: FixtureKey
    fixtures: tuple[Path, ...]

    @property
    def name(self) -> str:
        return f"{self.key.provider}/{self.key.model_id}/{self.key.test_name}"


@dataclass(frozen=True)
class SuiteResult:
    case: SuiteCase
    passed: bool
    skipped: bool = False
    error: str = ""
    duration_s: float = 0.0


def discover_cases(base_dir: str | Path) -> list[SuiteCase]:
    """Group the fixtures under *base_dir* into cases, sorted by key."""
    store = FixtureStore(base_dir)
    grouped: dict[FixtureKey, list[Path]] = {}
    for path, record in store.iter_records():
        grouped.setdefault(record.key, []).append(path)
    return [SuiteCase(key, tuple(paths)) for key, paths in sorted(grouped.items())]


async def run_replay_suite(
    base_dir: str | Path,
    scenarios: Mapping[str, ScenarioFn],
    model_factory: ModelFactory,
) -> list[SuiteResult]:
    """Replay each discovered case against its scenario.

    Cases whose test name has no registered scenario are reported as
    skipped. A failing case never stops the remaining ones.
    """
    results: list[SuiteResult] = []
    for case in discover_cases(base_dir):
        scenario = scenarios.get(case.key.test_name)
        if scenario is None:
            logger.info("No scenario registered for %s; skipping", case.name)
            results.append(SuiteResult(case, passed=False, skipped=True))
            continue

        recorder = Recorder(
            RecordingConfig(case.key.test_name, mode=RecordingMode.REPLAY, base_dir=Path(base_dir))
        )
        model = model_factory(case.key.provider, case.key.model_id)
        start = time.perf_counter()
        try:
            with use_recorder(recorder):
                await scenario(model)
        except Exception as e:
            logger.warning("Replay case %s failed: %s", case.name, e)
            results.append(
                SuiteResult(
                    case,
                    passed=False,
                    error=f"{type(e).__name__}: {e}",
                    duration_s=time.perf_counter() - start,
                )
            )
        else:
            results.append(SuiteResult(case, passed=True, duration_s=time.perf_counter() - start))
    return results


def summarize(results: list[SuiteResult]) -> str:
    """Render one line per case plus a totals line."""
    lines = []
    for r in results:
        status = "SKIP" if r.skipped else "PASS" if r.passed else "FAIL"
        line = f"{status} {r.case.name} ({r.duration_s:.2f}s)"
        if r.error:
            line += f" {r.error}"
        lines.append(line)
    passed = sum(r.passed for r in results)
    failed = sum(not r.passed and not r.skipped for r in results)
    skipped = sum(r.skipped for r in results)
    lines.append(f"{passed} passed, {failed} failed, {skipped} skipped")
    return "\n".join(lines)
