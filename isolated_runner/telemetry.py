"""Run statistics and the append-only telemetry log."""

import logging
import math
from collections.abc import Sequence
from datetime import datetime, timezone
from pathlib import Path

from isolated_runner.models.config import RunnerConfig
from isolated_runner.models.result import UnitResult
from isolated_runner.models.telemetry import TelemetryConfigSnapshot, TelemetryRecord
from isolated_runner.scheduler import resolve_failure_budget

log = logging.getLogger(__name__)


def calculate_percentile(values: Sequence[float], percentile: float) -> float:
    """Nearest-rank percentile, ``percentile`` is a fraction in [0, 1]."""
    if not values:
        return 0
    ordered = sorted(values)
    clamped = max(0.0, min(1.0, percentile))
    index = max(0, min(len(ordered) - 1, math.ceil(clamped * len(ordered)) - 1))
    return ordered[index]


def summarize(
    discovered_count: int,
    results: Sequence[UnitResult],
    elapsed_ms: int,
    config: RunnerConfig,
) -> TelemetryRecord:
    """Build the telemetry record for a finished run.

    Latency percentiles only consider executed files, cache hits have no
    meaningful duration.
    """
    executed = [result for result in results if not result.cached]
    durations = [result.duration_ms for result in executed]
    failure_budget = resolve_failure_budget(config.bail, config.max_failures)
    files_per_second = len(executed) * 1000 / elapsed_ms if elapsed_ms > 0 else 0

    return TelemetryRecord(
        timestamp=datetime.now(timezone.utc),
        cwd=str(config.cwd),
        discovered_files=discovered_count,
        executed_files=len(executed),
        sticky_hits=len(results) - len(executed),
        pass_count=sum(result.pass_count for result in results),
        fail_count=sum(result.fail_count for result in results),
        skip_count=sum(result.skip_count for result in results),
        failed_files=sum(1 for result in results if not result.passed),
        duration_ms=elapsed_ms,
        files_per_second=round(files_per_second, 2),
        p50_ms=round(calculate_percentile(durations, 0.5), 2),
        p95_ms=round(calculate_percentile(durations, 0.95), 2),
        config=TelemetryConfigSnapshot(
            parallel=config.parallel,
            retries=config.retries,
            max_failures=-1 if failure_budget is None else failure_budget,
            sticky_cache_enabled=config.sticky_cache_enabled,
        ),
    )


def persist(record: TelemetryRecord, path: Path) -> None:
    """Append the record as one JSON line."""
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("a", encoding="utf-8") as handle:
            handle.write(record.model_dump_json(by_alias=True) + "\n")
    except OSError as exc:
        log.warning("Failed to write telemetry log at %s: %s", path, exc)
