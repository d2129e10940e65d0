"""Bounded-concurrency worker pool draining a queue of test files."""

import asyncio
import logging
from collections import deque
from collections.abc import Sequence
from dataclasses import dataclass, field

from isolated_runner.executor import UnitExecutor
from isolated_runner.models.result import UnitResult

log = logging.getLogger(__name__)


def resolve_failure_budget(bail: bool, max_failures: int | None) -> int | None:
    """Return how many failed files are tolerated, None meaning unbounded."""
    if bail:
        return 1
    if max_failures is not None:
        return max(1, max_failures)
    return None


@dataclass(kw_only=True)
class _PoolState:
    """State shared by the workers of one execute call."""

    queue: deque[str]
    total: int
    failure_budget: int | None
    results: list[UnitResult] = field(default_factory=list)
    failures: int = 0
    stop_logged: bool = False
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    def can_continue(self) -> bool:
        """Whether another file may be dequeued."""
        return self.failure_budget is None or self.failures < self.failure_budget


@dataclass(frozen=True, kw_only=True)
class WorkerPool:
    """Runs test files concurrently through an executor."""

    executor: UnitExecutor

    async def execute(
        self,
        units: Sequence[str],
        concurrency: int,
        failure_budget: int | None = None,
    ) -> list[UnitResult]:
        """Execute test files and return their results in completion order.

        Once the failure budget is reached no further file is dequeued, files
        already running are allowed to finish.

        Args:
            units: Test file paths, dequeued in order
            concurrency: Number of workers, values below 1 are treated as 1
            failure_budget: Failed files tolerated before scheduling stops

        Returns:
            One result per executed file

        """
        if not units:
            return []

        state = _PoolState(
            queue=deque(units),
            total=len(units),
            failure_budget=failure_budget,
        )
        worker_count = min(max(1, concurrency), len(units))
        log.debug("Starting %d worker(s) for %d file(s)", worker_count, len(units))

        await asyncio.gather(*(self._worker(state) for _ in range(worker_count)))
        return state.results

    async def _worker(self, state: _PoolState) -> None:
        while True:
            async with state.lock:
                if not state.queue or not state.can_continue():
                    return
                unit = state.queue.popleft()

            result = await self.executor.run_unit(unit)

            async with state.lock:
                state.results.append(result)
                if not result.passed:
                    state.failures += 1
                _log_progress(len(state.results), state.total, result)

                if not state.stop_logged and not state.can_continue():
                    state.stop_logged = True
                    log.warning(
                        "Reached max failures (%d). Stopping new test scheduling.",
                        state.failure_budget,
                    )


def _log_progress(completed: int, total: int, result: UnitResult) -> None:
    log.info(
        "[%d/%d] %s %s: %d pass, %d fail, %d skip (%dms)",
        completed,
        total,
        "✓" if result.passed else "✗",
        result.unit,
        result.pass_count,
        result.fail_count,
        result.skip_count,
        result.duration_ms,
    )
