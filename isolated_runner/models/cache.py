"""Models for the persisted sticky cache."""

from collections.abc import Mapping
from datetime import datetime, timezone

from pydantic import Field

from isolated_runner.models.base import WireModel

CACHE_SCHEMA_VERSION = 1


class CacheEntry(WireModel):
    """Last known good execution of a test file."""

    fingerprint: str
    pass_count: int = Field(default=0, ge=0)
    skip_count: int = Field(default=0, ge=0)
    updated_at: datetime


class CachePayload(WireModel):
    """Versioned file content, entries keyed by test file path."""

    version: int = CACHE_SCHEMA_VERSION
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    entries: Mapping[str, CacheEntry] = Field(default_factory=dict)
