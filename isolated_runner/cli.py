"""CLI entry point for the isolated test runner."""

import argparse
import asyncio
import json
import logging
import os
import sys
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any

from isolated_runner.discovery import find_changed_units, find_unit_files
from isolated_runner.models.config import (
    DEFAULT_EXCLUDE,
    DEFAULT_INCLUDE,
    RunnerConfig,
    optimal_parallel_count,
)
from isolated_runner.models.result import RunSummary
from isolated_runner.orchestrator import run_isolated

STATUS_SYMBOLS = {
    "passed": "✓",
    "failed": "✗",
    "error": "!",
    "timeout": "⏱",
}


def log_results_summary(log: logging.Logger, summary: RunSummary) -> None:
    """Log a formatted line per test file, with errors for failures."""
    log.info("=" * 80)
    log.info("Test Results Summary:")
    log.info("=" * 80)

    for result in summary.results:
        symbol = STATUS_SYMBOLS.get(result.status, "?")
        suffix = " [cached]" if result.cached else ""
        log.info(
            "%s %s: %s (%dms)%s",
            symbol,
            result.unit,
            result.status,
            result.duration_ms,
            suffix,
        )
        if result.error:
            log.info("  Error: %s", result.error)


def format_output(summary: RunSummary) -> dict[str, Any]:
    """Format the run summary for JSON output."""
    return {
        "total": len(summary.results),
        "passed": summary.passed,
        "failed": summary.failed,
        "skipped": summary.skipped,
        "failedFiles": summary.failed_units,
        "durationMs": summary.duration_ms,
        "stoppedEarly": summary.stopped_early,
        "results": [
            {
                "file": result.unit,
                "status": result.status,
                "passCount": result.pass_count,
                "failCount": result.fail_count,
                "skipCount": result.skip_count,
                "durationMs": result.duration_ms,
                "cached": result.cached,
                "error": result.error,
            }
            for result in summary.results
        ],
    }


def parse_env_overrides(pairs: Sequence[str]) -> Mapping[str, str]:
    """Parse KEY=VALUE pairs.

    Raises:
        ValueError: If a pair has no "="

    """
    overrides: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise ValueError(
                f"Invalid environment override '{pair}', expected KEY=VALUE"
            )
        overrides[key] = value
    return overrides


def env_int(name: str) -> int | None:
    """Read a positive integer from the environment, ignoring anything else."""
    try:
        value = int(os.environ.get(name, ""))
    except ValueError:
        return None
    return value if value > 0 else None


async def run(
    config: RunnerConfig,
    *,
    changed: bool = False,
    files: Sequence[str] = (),
) -> int:
    """Resolve test files, run them and return the exit code."""
    log = logging.getLogger("isolated_runner")

    if changed:
        log.info("Finding changed test files...")
        try:
            units = await find_changed_units(config.include, config.cwd)
        except RuntimeError as exc:
            log.error("Cannot detect changed test files: %s", exc)
            return 1
    elif files:
        units = list(files)
    else:
        log.info("Finding test files...")
        units = find_unit_files(config.include, config.exclude, config.cwd)

    if not units:
        log.info("No test files found")
        print(json.dumps({"total": 0, "results": []}))
        return 0

    summary = await run_isolated(units, config)

    log_results_summary(log, summary)
    print(json.dumps(format_output(summary), indent=2))

    return 0 if summary.ok else 1


def build_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="isolated-runner",
        description="Run test files in isolated subprocesses",
    )
    parser.add_argument(
        "patterns",
        nargs="*",
        help="Glob patterns selecting test files (default: *.test.ts(x), *.spec.ts(x))",
    )
    parser.add_argument(
        "--changed",
        action="store_true",
        help="Run only test files changed according to git diff",
    )
    parser.add_argument(
        "--files", nargs="+", default=[], help="Run specific test files"
    )
    parser.add_argument(
        "--preload", type=Path, help="Preload script, overrides auto-detection"
    )
    parser.add_argument(
        "--exclude",
        action="append",
        default=[],
        help="Exclude paths containing this string or matching this glob (repeatable)",
    )
    parser.add_argument(
        "--parallel",
        type=int,
        default=env_int("JOBS") or optimal_parallel_count(),
        help="Number of parallel workers (env: JOBS)",
    )
    parser.add_argument(
        "--timeout",
        type=int,
        default=env_int("ISOLATED_RUNNER_TIMEOUT") or 30_000,
        help="Per-test timeout in ms (env: ISOLATED_RUNNER_TIMEOUT)",
    )
    parser.add_argument("--retries", type=int, default=0, help="Retry failed files")
    parser.add_argument(
        "--bail", action="store_true", help="Stop after the first failed file"
    )
    parser.add_argument(
        "--max-failures", type=int, help="Stop scheduling after N failed files"
    )
    parser.add_argument(
        "--no-telemetry", action="store_true", help="Do not append telemetry"
    )
    parser.add_argument("--telemetry-path", type=Path, help="JSONL telemetry path")
    parser.add_argument(
        "--sticky-cache",
        action="store_true",
        help="Skip unchanged test files that passed previously",
    )
    parser.add_argument("--sticky-cache-path", type=Path, help="Sticky cache path")
    parser.add_argument(
        "--reset-sticky-cache",
        action="store_true",
        help="Delete the sticky cache before running",
    )
    parser.add_argument(
        "--env",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Environment variable for the test processes (repeatable)",
    )
    parser.add_argument(
        "--command",
        help='Test tool invocation, e.g. "bun test" (split on whitespace)',
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")
    parser.add_argument(
        "--cwd", type=Path, default=Path.cwd(), help="Working directory"
    )
    return parser


def build_config(args: argparse.Namespace) -> RunnerConfig:
    """Translate parsed arguments into a runner configuration."""
    options: dict[str, Any] = {
        "include": tuple(args.patterns) or DEFAULT_INCLUDE,
        "exclude": (*DEFAULT_EXCLUDE, *args.exclude),
        "parallel": args.parallel,
        "timeout_ms": args.timeout,
        "retries": args.retries,
        "bail": args.bail,
        "max_failures": args.max_failures,
        "telemetry_enabled": not args.no_telemetry,
        "sticky_cache_enabled": args.sticky_cache,
        "sticky_cache_reset": args.reset_sticky_cache,
        "env": parse_env_overrides(args.env),
        "verbose": args.verbose,
        "cwd": args.cwd.resolve(),
        "preload_path": args.preload,
    }
    if args.telemetry_path is not None:
        options["telemetry_log_path"] = args.telemetry_path
    if args.sticky_cache_path is not None:
        options["sticky_cache_path"] = args.sticky_cache_path
    if args.command:
        options["command"] = tuple(args.command.split())
    return RunnerConfig(**options)


def main() -> None:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )

    try:
        config = build_config(args)
    except ValueError as exc:
        parser.error(str(exc))

    exit_code = asyncio.run(run(config, changed=args.changed, files=args.files))
    sys.exit(exit_code)


if __name__ == "__main__":  # pragma: no cover
    main()
