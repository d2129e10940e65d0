"""Stable identities for test files under a given execution environment."""

import asyncio
import hashlib
import logging
from collections.abc import Sequence
from pathlib import Path

from isolated_runner.models.cache import CACHE_SCHEMA_VERSION

log = logging.getLogger(__name__)

MISSING_PRELOAD = "missing"
UNKNOWN_VERSION = "unknown"


def _sha256(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


async def get_tool_version(command: Sequence[str], cwd: Path) -> str:
    """Return the test tool's version string, or "unknown" if it cannot run."""
    try:
        process = await asyncio.create_subprocess_exec(
            command[0],
            "--version",
            cwd=cwd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.DEVNULL,
        )
    except OSError as exc:
        log.warning("Cannot determine version of %s: %s", command[0], exc)
        return UNKNOWN_VERSION

    stdout, _ = await process.communicate()
    if process.returncode != 0:
        return UNKNOWN_VERSION
    return stdout.decode("utf-8", errors="replace").strip() or UNKNOWN_VERSION


def compute_run_salt(
    tool_version: str, preload_path: Path | None, timeout_ms: int
) -> str:
    """Digest everything that invalidates all cached passes at once.

    Covers the cache schema version, the test tool version, the preload
    script content and the per-test timeout.
    """
    preload_digest = MISSING_PRELOAD
    if preload_path is not None:
        try:
            preload_digest = _sha256(preload_path.read_bytes())
        except OSError:
            preload_digest = MISSING_PRELOAD

    parts = [str(CACHE_SCHEMA_VERSION), tool_version, preload_digest, str(timeout_ms)]
    return _sha256("|".join(parts).encode())


def fingerprint_unit(unit: str, run_salt: str, cwd: Path) -> str | None:
    """Digest a test file's content together with the run salt.

    Returns None when the file cannot be read, such files are never cached.
    """
    path = Path(unit)
    if not path.is_absolute():
        path = cwd / path
    try:
        content_digest = _sha256(path.read_bytes())
    except OSError:
        return None
    return _sha256(f"{run_salt}|{unit}|{content_digest}".encode())
