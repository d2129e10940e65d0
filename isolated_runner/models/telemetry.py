"""Models for per-run telemetry records."""

from datetime import datetime

from isolated_runner.models.base import WireModel


class TelemetryConfigSnapshot(WireModel):
    """Effective scheduling options of the run."""

    parallel: int
    retries: int
    max_failures: int
    sticky_cache_enabled: bool


class TelemetryRecord(WireModel):
    """One line of the JSONL telemetry log."""

    timestamp: datetime
    cwd: str
    discovered_files: int
    executed_files: int
    sticky_hits: int
    pass_count: int
    fail_count: int
    skip_count: int
    failed_files: int
    duration_ms: int
    files_per_second: float
    p50_ms: float
    p95_ms: float
    config: TelemetryConfigSnapshot
