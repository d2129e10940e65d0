"""Fixtures and doubles for unit tests."""

import asyncio
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field

from isolated_runner.executor import UnitExecutor
from isolated_runner.models.result import UnitResult
from isolated_runner.testing.factories import UnitResultFactory


def passing(unit: str, **kwargs: object) -> UnitResult:
    """Build an executed, passing result for a test file."""
    return UnitResultFactory.build(unit=unit, **kwargs)


def failing(unit: str, **kwargs: object) -> UnitResult:
    """Build an executed, failing result for a test file."""
    kwargs.setdefault("fail_count", 1)
    kwargs.setdefault("error", "assertion failed")
    kwargs.setdefault("status", "failed")
    return UnitResultFactory.build(unit=unit, **kwargs)


@dataclass(kw_only=True)
class ScriptedExecutor(UnitExecutor):
    """Executor returning scripted results, one per call, in order.

    The last scripted result for a file is repeated once the script runs out.
    """

    script: Mapping[str, Sequence[UnitResult]]
    delays: Mapping[str, float] = field(default_factory=dict)
    calls: list[str] = field(default_factory=list)
    in_flight: int = 0
    peak_in_flight: int = 0

    async def run_unit(self, unit: str) -> UnitResult:
        """Return the next scripted result after the configured delay."""
        attempt = self.calls.count(unit)
        self.calls.append(unit)
        self.in_flight += 1
        self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delays.get(unit, 0))
        finally:
            self.in_flight -= 1
        outcomes = self.script[unit]
        return outcomes[min(attempt, len(outcomes) - 1)]
