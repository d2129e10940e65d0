"""Persisted record of passing test files, used to skip unchanged ones."""

import contextlib
import logging
import os
import tempfile
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from pydantic import ValidationError

from isolated_runner.fingerprint import fingerprint_unit
from isolated_runner.models.cache import CACHE_SCHEMA_VERSION, CacheEntry, CachePayload
from isolated_runner.models.result import UnitResult

log = logging.getLogger(__name__)


@dataclass(frozen=True, kw_only=True)
class CachePartition:
    """Test files split into those to execute and those served from cache."""

    runnable: Sequence[str]
    cached_results: Sequence[UnitResult]
    fingerprints: Mapping[str, str | None]


@dataclass(frozen=True, kw_only=True)
class StickyCache:
    """Cache file owner for the duration of a run.

    The payload is loaded once before scheduling and written once after all
    execution, including retries, has finished.
    """

    path: Path

    def reset(self) -> None:
        """Delete the persisted cache file."""
        try:
            self.path.unlink(missing_ok=True)
        except OSError as exc:
            log.warning("Failed to reset sticky cache at %s: %s", self.path, exc)

    def load(self) -> CachePayload:
        """Load the payload, falling back to empty on any problem."""
        try:
            payload = CachePayload.model_validate_json(self.path.read_bytes())
        except FileNotFoundError:
            return CachePayload()
        except (OSError, ValidationError) as exc:
            log.warning("Ignoring unreadable sticky cache at %s: %s", self.path, exc)
            return CachePayload()

        if payload.version != CACHE_SCHEMA_VERSION:
            log.info(
                "Ignoring sticky cache with version %d (expected %d)",
                payload.version,
                CACHE_SCHEMA_VERSION,
            )
            return CachePayload()
        return payload

    def partition(
        self,
        units: Sequence[str],
        payload: CachePayload,
        run_salt: str,
        cwd: Path,
    ) -> CachePartition:
        """Split test files into runnable ones and cache hits."""
        runnable: list[str] = []
        cached_results: list[UnitResult] = []
        fingerprints: dict[str, str | None] = {}

        for unit in units:
            fingerprint = fingerprint_unit(unit, run_salt, cwd)
            fingerprints[unit] = fingerprint
            entry = payload.entries.get(unit)
            if fingerprint is None or entry is None or entry.fingerprint != fingerprint:
                runnable.append(unit)
                continue

            cached_results.append(
                UnitResult(
                    unit=unit,
                    status="passed",
                    pass_count=entry.pass_count,
                    fail_count=0,
                    skip_count=entry.skip_count,
                    duration_ms=0,
                    cached=True,
                )
            )

        return CachePartition(
            runnable=runnable,
            cached_results=cached_results,
            fingerprints=fingerprints,
        )

    def commit(
        self,
        payload: CachePayload,
        results: Sequence[UnitResult],
        fingerprints: Mapping[str, str | None],
    ) -> CachePayload:
        """Record executed results and persist the updated payload.

        A pass stores the fresh fingerprint. A failure drops the entry so the
        file keeps running until it passes again. Cache hits are left alone.
        """
        now = datetime.now(timezone.utc)
        entries = dict(payload.entries)

        for result in results:
            if result.cached:
                continue
            if not result.passed:
                entries.pop(result.unit, None)
                continue
            fingerprint = fingerprints.get(result.unit)
            if fingerprint is None:
                continue
            entries[result.unit] = CacheEntry(
                fingerprint=fingerprint,
                pass_count=result.pass_count,
                skip_count=result.skip_count,
                updated_at=now,
            )

        updated = CachePayload(
            version=CACHE_SCHEMA_VERSION, updated_at=now, entries=entries
        )
        self._write(updated)
        return updated

    def _write(self, payload: CachePayload) -> None:
        data = payload.model_dump_json(by_alias=True, indent=2)
        temp_path: Path | None = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=self.path.parent,
                prefix=f".{self.path.name}.",
                delete=False,
            ) as handle:
                temp_path = Path(handle.name)
                handle.write(data)
            os.replace(temp_path, self.path)
        except OSError as exc:
            log.warning("Failed to write sticky cache at %s: %s", self.path, exc)
            if temp_path is not None:
                with contextlib.suppress(OSError):
                    temp_path.unlink(missing_ok=True)
