"""Locate test files, changed test files and the preload script."""

import asyncio
import fnmatch
import logging
import os
from collections.abc import Sequence
from pathlib import Path

logger = logging.getLogger(__name__)

PRELOAD_FILENAME = "bun.preload.ts"
GLOB_CHARS = frozenset("*?[")


def matches_pattern(relative_path: str, pattern: str) -> bool:
    """Check a POSIX-style relative path against a glob pattern.

    A leading ``**/`` and inner ``/**/`` also match zero directories, so
    ``**/*.test.ts`` matches ``a.test.ts`` at the root.
    """
    candidates = {pattern}
    if pattern.startswith("**/"):
        candidates.add(pattern[3:])
    candidates.update({p.replace("/**/", "/") for p in list(candidates)})
    return any(fnmatch.fnmatchcase(relative_path, p) for p in candidates)


def is_excluded(relative_path: str, exclude: Sequence[str]) -> bool:
    """Glob patterns are matched, plain strings are substring checks."""
    for pattern in exclude:
        if GLOB_CHARS.intersection(pattern):
            if matches_pattern(relative_path, pattern):
                return True
        elif pattern in relative_path:
            return True
    return False


def find_unit_files(
    include: Sequence[str], exclude: Sequence[str], cwd: Path
) -> Sequence[str]:
    """Walk ``cwd`` and return matching test files, sorted, relative to it.

    Unreadable directories are skipped.
    """
    files: list[str] = []

    for dirpath, dirnames, filenames in os.walk(cwd):
        relative_dir = Path(dirpath).relative_to(cwd)
        # Prune in place so excluded trees are never descended into
        dirnames[:] = [
            name
            for name in dirnames
            if not is_excluded((relative_dir / name).as_posix() + "/", exclude)
        ]
        for name in filenames:
            relative_path = (relative_dir / name).as_posix()
            if is_excluded(relative_path, exclude):
                continue
            if any(matches_pattern(relative_path, pattern) for pattern in include):
                files.append(relative_path)

    return sorted(files)


async def find_changed_units(
    include: Sequence[str], cwd: Path, base_ref: str = "HEAD"
) -> Sequence[str]:
    """Return test files with uncommitted changes relative to ``base_ref``.

    Paths are relative to ``cwd``, changes outside it are ignored.

    Raises:
        RuntimeError: If git diff fails

    """
    process = await asyncio.create_subprocess_exec(
        "git",
        "diff",
        "--name-only",
        "--relative",
        base_ref,
        cwd=cwd,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    stdout, stderr = await process.communicate()

    if process.returncode != 0:
        raise RuntimeError(f"Git diff failed: {stderr.decode().strip()}")

    changed = [line for line in stdout.decode().splitlines() if line]
    logger.debug("git diff reported %d changed file(s)", len(changed))
    return [
        path
        for path in changed
        if any(matches_pattern(path, pattern) for pattern in include)
    ]


def find_preload_path(cwd: Path, filename: str = PRELOAD_FILENAME) -> Path | None:
    """Look for the preload script in cwd and its two parent directories."""
    for directory in (cwd, cwd.parent, cwd.parent.parent):
        candidate = directory / filename
        if candidate.exists():
            return candidate
    return None
