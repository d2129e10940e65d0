"""End-to-end runs through real child processes."""

import json
from collections.abc import Sequence
from pathlib import Path

import pytest

from isolated_runner.models.cache import CachePayload
from isolated_runner.models.config import RunnerConfig
from isolated_runner.orchestrator import run_isolated

from .conftest import FAILING_UNIT, WriteUnitFn


@pytest.fixture
def config(workspace: Path, tool_command: Sequence[str]) -> RunnerConfig:
    """Return a configuration running the driver in the workspace."""
    return RunnerConfig(
        cwd=workspace,
        command=tool_command,
        parallel=2,
        telemetry_enabled=False,
    )


async def test_mixed_run(config: RunnerConfig, write_unit: WriteUnitFn) -> None:
    """Every file gets a result and totals add up."""
    units = [
        write_unit("a_test.py"),
        write_unit("b_test.py", FAILING_UNIT),
        write_unit("c_test.py"),
    ]

    summary = await run_isolated(units, config)

    assert sorted(result.unit for result in summary.results) == units
    assert summary.passed == 2
    assert summary.failed == 1
    assert summary.failed_units == 1
    assert summary.stopped_early is False
    assert not summary.ok


async def test_max_failures_stops_early(
    config: RunnerConfig, write_unit: WriteUnitFn
) -> None:
    """With one worker the first failure ends scheduling."""
    units = [
        write_unit("a_test.py", FAILING_UNIT),
        write_unit("b_test.py"),
        write_unit("c_test.py"),
    ]

    summary = await run_isolated(
        units, config.model_copy(update={"parallel": 1, "max_failures": 1})
    )

    assert [result.unit for result in summary.results] == ["a_test.py"]
    assert summary.stopped_early is True


async def test_retry_recovers_flaky_file(
    config: RunnerConfig, write_unit: WriteUnitFn, workspace: Path
) -> None:
    """A file failing once then passing is reported as passed after a retry."""
    marker = workspace / "attempted"
    unit = write_unit(
        "flaky_test.py",
        "from pathlib import Path\n"
        f"marker = Path({str(marker)!r})\n"
        "first = not marker.exists()\n"
        "marker.touch()\n"
        "assert not first, 'first attempt fails'\n",
    )

    summary = await run_isolated([unit], config.model_copy(update={"retries": 1}))

    assert [result.status for result in summary.results] == ["passed"]
    assert summary.ok


async def test_sticky_cache_skips_unchanged_passing_files(
    config: RunnerConfig, write_unit: WriteUnitFn, workspace: Path
) -> None:
    """A second run over unchanged passing files executes nothing."""
    units = [write_unit("a_test.py"), write_unit("b_test.py", FAILING_UNIT)]
    cached_config = config.model_copy(update={"sticky_cache_enabled": True})

    first = await run_isolated(units, cached_config)
    second = await run_isolated(units, cached_config)

    assert not any(result.cached for result in first.results)
    cache_file = workspace / ".build-logs" / "isolated-runner-cache.json"
    payload = CachePayload.model_validate_json(cache_file.read_text())
    assert set(payload.entries) == {"a_test.py"}
    assert {result.unit: result.cached for result in second.results} == {
        "a_test.py": True,
        "b_test.py": False,
    }
    assert second.telemetry.sticky_hits == 1
    assert second.telemetry.executed_files == 1


async def test_sticky_cache_reruns_edited_file(
    config: RunnerConfig, write_unit: WriteUnitFn
) -> None:
    """Editing a cached file invalidates its entry."""
    unit = write_unit("a_test.py")
    cached_config = config.model_copy(update={"sticky_cache_enabled": True})
    await run_isolated([unit], cached_config)

    write_unit("a_test.py", "assert 2 == 2\n")
    summary = await run_isolated([unit], cached_config)

    assert [result.cached for result in summary.results] == [False]


async def test_telemetry_appends_record(
    config: RunnerConfig, write_unit: WriteUnitFn, workspace: Path
) -> None:
    """Each run appends one camelCase JSON line."""
    unit = write_unit("a_test.py")
    telemetry_config = config.model_copy(update={"telemetry_enabled": True})

    await run_isolated([unit], telemetry_config)
    await run_isolated([unit], telemetry_config)

    log_file = workspace / ".build-logs" / "isolated-runner.jsonl"
    records = [json.loads(line) for line in log_file.read_text().splitlines()]
    assert len(records) == 2
    assert records[0]["discoveredFiles"] == 1
    assert records[0]["executedFiles"] == 1
    assert records[0]["passCount"] == 1
    assert records[0]["config"]["stickyCacheEnabled"] is False
