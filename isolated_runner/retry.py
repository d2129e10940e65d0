"""Single retry pass over failed test files."""

import logging
from collections.abc import Sequence

from isolated_runner.models.result import UnitResult
from isolated_runner.scheduler import WorkerPool

log = logging.getLogger(__name__)


def replace_results(
    results: Sequence[UnitResult], replacements: Sequence[UnitResult]
) -> list[UnitResult]:
    """Swap in each replacement at the position of the result for the same file."""
    merged = list(results)
    for replacement in replacements:
        for index, result in enumerate(merged):
            if result.unit == replacement.unit:
                merged[index] = replacement
                break
    return merged


async def retry_failed(
    pool: WorkerPool, results: Sequence[UnitResult], concurrency: int
) -> list[UnitResult]:
    """Re-run every failed file once, without a failure budget."""
    failed_units = [result.unit for result in results if not result.passed]
    if not failed_units:
        return list(results)

    log.info("Retrying %d failed test file(s)...", len(failed_units))
    retried = await pool.execute(failed_units, concurrency, failure_budget=None)
    return replace_results(results, retried)
