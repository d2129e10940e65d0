"""Run test files in isolated subprocesses."""

from isolated_runner.models.config import RunnerConfig
from isolated_runner.models.result import RunSummary, UnitResult
from isolated_runner.orchestrator import RunOrchestrator, run_isolated

__all__ = [
    "RunOrchestrator",
    "RunSummary",
    "RunnerConfig",
    "UnitResult",
    "run_isolated",
]
