"""Configuration for an isolated test run."""

import os
from collections.abc import Mapping, Sequence
from pathlib import Path

from pydantic import BaseModel, Field, field_validator

DEFAULT_INCLUDE = ("**/*.test.ts", "**/*.test.tsx", "**/*.spec.ts", "**/*.spec.tsx")
DEFAULT_EXCLUDE = ("**/node_modules/**", "**/dist/**", "**/build/**")
DEFAULT_COMMAND = ("bun", "test")
DEFAULT_TELEMETRY_LOG_PATH = Path(".build-logs/isolated-runner.jsonl")
DEFAULT_STICKY_CACHE_PATH = Path(".build-logs/isolated-runner-cache.json")


def optimal_parallel_count() -> int:
    """Use half the CPUs, at least 1 and at most 4 to bound memory usage."""
    cpu_count = os.cpu_count() or 1
    return min(4, max(1, cpu_count // 2))


class RunnerConfig(BaseModel):
    """Options recognised by the isolated runner."""

    include: Sequence[str] = Field(
        default=DEFAULT_INCLUDE, description="Glob patterns selecting test files"
    )
    exclude: Sequence[str] = Field(
        default=DEFAULT_EXCLUDE, description="Glob patterns or substrings to skip"
    )
    parallel: int = Field(
        default_factory=optimal_parallel_count, description="Concurrent workers"
    )
    timeout_ms: int = Field(default=30_000, ge=0, description="Per-test timeout")
    timeout_grace_ms: int = Field(
        default=5_000,
        ge=0,
        description="Extra time granted before the child is killed",
    )
    retries: int = Field(default=0, ge=0, description="Retry failed files when > 0")
    bail: bool = Field(default=False, description="Stop after the first failed file")
    max_failures: int | None = Field(
        default=None, description="Stop scheduling after N failed files"
    )
    telemetry_enabled: bool = True
    telemetry_log_path: Path = DEFAULT_TELEMETRY_LOG_PATH
    sticky_cache_enabled: bool = False
    sticky_cache_path: Path = DEFAULT_STICKY_CACHE_PATH
    sticky_cache_reset: bool = False
    env: Mapping[str, str] = Field(default_factory=dict)
    verbose: bool = False
    cwd: Path = Field(default_factory=Path.cwd)
    preload_path: Path | None = Field(
        default=None, description="Preload script passed to the test tool"
    )
    command: Sequence[str] = Field(
        default=DEFAULT_COMMAND,
        min_length=1,
        description="Test tool invocation, unit arguments are appended",
    )

    @field_validator("parallel")
    @classmethod
    def _at_least_one_worker(cls, value: int) -> int:
        return max(1, value)

    @field_validator("max_failures")
    @classmethod
    def _at_least_one_failure(cls, value: int | None) -> int | None:
        if value is None:
            return None
        return max(1, value)

    def resolve_path(self, path: Path) -> Path:
        """Resolve a configured path against the working directory."""
        return path if path.is_absolute() else self.cwd / path
