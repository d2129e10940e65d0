"""Run orchestration: cache partition, execution, retries and telemetry."""

import logging
import sys
import time
from collections.abc import Sequence
from dataclasses import dataclass

from isolated_runner.discovery import find_preload_path
from isolated_runner.executor import SubprocessExecutor, UnitExecutor
from isolated_runner.fingerprint import compute_run_salt, get_tool_version
from isolated_runner.models.cache import CachePayload
from isolated_runner.models.config import RunnerConfig
from isolated_runner.models.result import RunSummary
from isolated_runner.retry import retry_failed
from isolated_runner.scheduler import WorkerPool, resolve_failure_budget
from isolated_runner.sticky_cache import CachePartition, StickyCache
from isolated_runner.telemetry import persist, summarize

log = logging.getLogger(__name__)


@dataclass(frozen=True, kw_only=True)
class RunOrchestrator:
    """Orchestrates one isolated run over a list of test files."""

    executor: UnitExecutor
    config: RunnerConfig

    async def run(self, units: Sequence[str]) -> RunSummary:
        """Run the given test files and return the aggregated summary.

        Args:
            units: Test file paths relative to the configured working directory

        Returns:
            Summary holding one result per executed or cache-hit file

        """
        config = self.config
        started = time.monotonic()
        log.info(
            "Running %d test file(s) in isolation "
            "(workers=%d, platform=%s, preload=%s)",
            len(units),
            config.parallel,
            sys.platform,
            "yes" if config.preload_path else "no",
        )

        cache: StickyCache | None = None
        payload = CachePayload()
        partition = CachePartition(runnable=units, cached_results=[], fingerprints={})
        if config.sticky_cache_enabled:
            cache = StickyCache(path=config.resolve_path(config.sticky_cache_path))
            payload, partition = await self._partition(cache, units)

        pool = WorkerPool(executor=self.executor)
        results = await pool.execute(
            partition.runnable,
            config.parallel,
            resolve_failure_budget(config.bail, config.max_failures),
        )

        if config.retries > 0:
            results = await retry_failed(pool, results, config.parallel)

        if cache is not None:
            cache.commit(payload, results, partition.fingerprints)

        all_results = [*partition.cached_results, *results]
        elapsed_ms = int((time.monotonic() - started) * 1000)

        telemetry = summarize(len(units), all_results, elapsed_ms, config)
        if config.telemetry_enabled:
            persist(telemetry, config.resolve_path(config.telemetry_log_path))

        summary = RunSummary(
            passed=telemetry.pass_count,
            failed=telemetry.fail_count,
            skipped=telemetry.skip_count,
            failed_units=telemetry.failed_files,
            duration_ms=elapsed_ms,
            results=all_results,
            stopped_early=len(all_results) < len(units),
            telemetry=telemetry,
        )
        self._log_totals(summary, len(units))
        return summary

    async def _partition(
        self, cache: StickyCache, units: Sequence[str]
    ) -> tuple[CachePayload, CachePartition]:
        config = self.config
        if config.sticky_cache_reset:
            log.info("Resetting sticky cache at %s", cache.path)
            cache.reset()

        payload = cache.load()

        tool_version = await get_tool_version(config.command, config.cwd)
        preload_path = config.preload_path
        if preload_path is not None:
            preload_path = config.resolve_path(preload_path)
        run_salt = compute_run_salt(tool_version, preload_path, config.timeout_ms)
        partition = cache.partition(units, payload, run_salt, config.cwd)
        log.info(
            "Sticky cache: %d hit(s), %d file(s) to run",
            len(partition.cached_results),
            len(partition.runnable),
        )
        return payload, partition

    def _log_totals(self, summary: RunSummary, requested: int) -> None:
        telemetry = summary.telemetry
        log.info("=" * 60)
        log.info("FINAL TOTALS:")
        log.info("✓ %d pass", summary.passed)
        if summary.failed:
            log.info("✗ %d fail", summary.failed)
        if summary.skipped:
            log.info("⊘ %d skip", summary.skipped)
        log.info("Duration: %dms", summary.duration_ms)
        log.info("p50: %sms, p95: %sms", telemetry.p50_ms, telemetry.p95_ms)
        log.info("files/sec: %s", telemetry.files_per_second)
        if telemetry.sticky_hits:
            log.info("sticky cache hits: %d", telemetry.sticky_hits)
        log.info("=" * 60)

        if summary.ok:
            log.info("All tests passed")
        else:
            log.error("Tests failed in %d file(s)", summary.failed_units)
        if summary.stopped_early:
            log.warning(
                "Stopped early after %d/%d files.", len(summary.results), requested
            )


async def run_isolated(units: Sequence[str], config: RunnerConfig) -> RunSummary:
    """Run test files with a subprocess executor built from ``config``."""
    if config.preload_path is None:
        preload_path = find_preload_path(config.cwd)
        if preload_path is not None:
            config = config.model_copy(update={"preload_path": preload_path})

    orchestrator = RunOrchestrator(
        executor=SubprocessExecutor(config=config), config=config
    )
    return await orchestrator.run(units)

