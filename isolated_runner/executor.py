"""Execution of a single test file in its own child process."""

import asyncio
import contextlib
import logging
import os
import re
import sys
import time
from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import TextIO

import psutil

from isolated_runner.models.config import RunnerConfig
from isolated_runner.models.result import UnitResult

log = logging.getLogger(__name__)

READ_CHUNK_SIZE = 4096
OUTPUT_DRAIN_TIMEOUT = 2.0

PASS_PATTERN = re.compile(r"(\d+)\s*pass", re.IGNORECASE)
FAIL_PATTERN = re.compile(r"(\d+)\s*fail", re.IGNORECASE)
SKIP_PATTERN = re.compile(r"(\d+)\s*skip", re.IGNORECASE)


@dataclass(frozen=True, kw_only=True)
class SummaryCounts:
    """Test counts reported by the wrapped test tool."""

    passed: int = 0
    failed: int = 0
    skipped: int = 0


def parse_summary(output: str) -> SummaryCounts:
    """Extract pass/fail/skip counts from the test tool's report.

    Takes the first match of "<N> pass", "<N> fail" and "<N> skip". Missing
    counts are reported as 0, this does not detect an unexpected format.
    """

    def first_count(pattern: re.Pattern[str]) -> int:
        match = pattern.search(output)
        return int(match.group(1)) if match else 0

    return SummaryCounts(
        passed=first_count(PASS_PATTERN),
        failed=first_count(FAIL_PATTERN),
        skipped=first_count(SKIP_PATTERN),
    )


def build_unit_environment(
    overrides: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """Return the child environment with colored output forced on."""
    env = dict(os.environ)
    if overrides:
        env.update(overrides)
    env["FORCE_COLOR"] = "1"
    env.pop("NO_COLOR", None)
    return env


def build_unit_command(unit: str, config: RunnerConfig) -> Sequence[str]:
    """Build the test tool invocation for one test file."""
    args = list(config.command)
    if config.preload_path is not None:
        args.extend(["--preload", str(config.preload_path)])
    args.extend(["--timeout", str(config.timeout_ms), _relative_test_path(unit)])
    return args


def _relative_test_path(unit: str) -> str:
    """Prefix bare relative paths with ./ so they are not read as filters."""
    if unit.startswith(".") or Path(unit).is_absolute():
        return unit
    return f".{os.sep}{unit}"


class UnitExecutor(ABC):
    """Runs one test file and reports its outcome.

    Implementations must capture every unit failure in the returned result,
    the scheduler does not expect exceptions.
    """

    @abstractmethod
    async def run_unit(self, unit: str) -> UnitResult:
        """Execute a test file and return its result."""


@dataclass(frozen=True, kw_only=True)
class SubprocessExecutor(UnitExecutor):
    """Executes each test file with the configured test tool."""

    config: RunnerConfig

    @property
    def kill_after_ms(self) -> int:
        """Deadline after which the child process is killed."""
        return self.config.timeout_ms + self.config.timeout_grace_ms

    async def run_unit(self, unit: str) -> UnitResult:
        """Spawn the test tool for a test file and classify its outcome."""
        started = time.monotonic()
        command = build_unit_command(unit, self.config)
        log.debug("Spawning %s", " ".join(command))

        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                cwd=self.config.cwd,
                env=build_unit_environment(self.config.env),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            return UnitResult(
                unit=unit,
                status="error",
                pass_count=0,
                fail_count=1,
                duration_ms=_elapsed_ms(started),
                error=str(exc),
            )

        stdout_chunks: list[bytes] = []
        stderr_chunks: list[bytes] = []
        readers = asyncio.gather(
            self._capture(process.stdout, stdout_chunks, sys.stdout),
            self._capture(process.stderr, stderr_chunks, sys.stderr),
        )

        timed_out = False
        try:
            async with asyncio.timeout(self.kill_after_ms / 1000):
                await process.wait()
        except TimeoutError:
            timed_out = True
            log.warning("Killing %s after %dms", unit, self.kill_after_ms)
            kill_process_tree(process)
            await process.wait()

        try:
            async with asyncio.timeout(OUTPUT_DRAIN_TIMEOUT):
                await readers
        except TimeoutError:
            log.warning(
                "Output of %s still open after exit, keeping what was read", unit
            )

        stdout = b"".join(stdout_chunks).decode("utf-8", errors="replace")
        stderr = b"".join(stderr_chunks).decode("utf-8", errors="replace")
        output = f"{stdout}\n{stderr}".strip()
        counts = parse_summary(output)
        passed = process.returncode == 0 and not timed_out

        error: str | None = None
        if timed_out:
            error = f"Test timed out after {self.kill_after_ms}ms"
        elif not passed:
            error = stderr.strip() or f"Exit code: {process.returncode}"

        return UnitResult(
            unit=unit,
            status="passed" if passed else "timeout" if timed_out else "failed",
            pass_count=counts.passed,
            fail_count=counts.failed,
            skip_count=counts.skipped,
            duration_ms=_elapsed_ms(started),
            output=output,
            error=error,
        )

    async def _capture(
        self,
        stream: asyncio.StreamReader | None,
        chunks: list[bytes],
        mirror: TextIO,
    ) -> None:
        if stream is None:
            return
        while chunk := await stream.read(READ_CHUNK_SIZE):
            chunks.append(chunk)
            if self.config.verbose:
                _mirror_chunk(mirror, chunk)


def kill_process_tree(process: asyncio.subprocess.Process) -> None:
    """Kill the child and everything it spawned.

    Grandchildren would otherwise keep the output pipes open. Processes that
    are already gone are ignored.
    """
    try:
        parent = psutil.Process(process.pid)
        children = parent.children(recursive=True)
    except psutil.NoSuchProcess:
        return

    for proc in (*children, parent):
        with contextlib.suppress(psutil.NoSuchProcess):
            proc.kill()


def _mirror_chunk(mirror: TextIO, chunk: bytes) -> None:
    buffer = getattr(mirror, "buffer", None)
    if buffer is not None:
        buffer.write(chunk)
    else:
        mirror.write(chunk.decode("utf-8", errors="replace"))
    mirror.flush()


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
