"""Models for test execution results."""

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Literal

from isolated_runner.models.telemetry import TelemetryRecord


@dataclass(frozen=True, kw_only=True)
class UnitResult:
    """Outcome of executing, or cache-hitting, a single test file.

    ``failed`` is a non-zero exit, ``timeout`` means the child was killed and
    ``error`` means the child could not be started at all.
    """

    unit: str
    status: Literal["passed", "failed", "timeout", "error"]
    pass_count: int = 0
    fail_count: int = 0
    skip_count: int = 0
    duration_ms: int = 0
    output: str = ""
    error: str | None = None
    cached: bool = False

    @property
    def passed(self) -> bool:
        """Whether the file counts as a pass."""
        return self.status == "passed"


@dataclass(frozen=True, kw_only=True)
class RunSummary:
    """Aggregate over every result produced by a run."""

    passed: int
    failed: int
    skipped: int
    failed_units: int
    duration_ms: int
    results: Sequence[UnitResult]
    stopped_early: bool
    telemetry: TelemetryRecord

    @property
    def total_tests(self) -> int:
        """Number of individual tests across all results."""
        return self.passed + self.failed + self.skipped

    @property
    def ok(self) -> bool:
        """Whether no file failed."""
        return self.failed_units == 0
