"""
Cache models for in-memory stage result caching.

Each logical cache (namespace) holds entries with their own TTL.
Stage namespaces mirror the generation stages; auxiliary namespaces hold
slow-changing inputs looked up several times within one run.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, computed_field


class CacheNamespace(str, Enum):
    """Logical caches managed by the CacheManager."""

    SCRIPT = "script"
    SPEECH = "speech"
    LIPSYNC = "lipsync"
    SUBJECT = "subject"
    PREFERENCES = "preferences"


@dataclass(frozen=True)
class CacheEntry:
    """Single cached value.

    Entries are immutable: a write replaces the whole entry, so readers
    always see either the previous or the new value.

    Attributes:
        value: Cached payload (stage result or lookup result)
        created_at: Monotonic timestamp of the write (seconds)
        ttl: Time to live in seconds
    """

    value: Any
    created_at: float
    ttl: float

    def is_expired(self, now: float) -> bool:
        """Entry expires once its age reaches the TTL."""
        return now - self.created_at >= self.ttl


@dataclass
class NamespaceStats:
    """Mutable hit/miss counters for one namespace."""

    hits: int = 0
    misses: int = 0
    writes: int = 0
    evictions: int = 0
    expirations: int = 0


class CacheNamespaceInfo(BaseModel):
    """Statistics snapshot for one namespace."""

    namespace: CacheNamespace
    ttl_seconds: float
    size: int
    hits: int = 0
    misses: int = 0
    writes: int = 0
    evictions: int = 0
    expirations: int = 0

    @computed_field
    @property
    def hit_rate(self) -> float:
        """Share of lookups served from cache (0-1)."""
        lookups = self.hits + self.misses
        return self.hits / lookups if lookups else 0.0


class CacheInfo(BaseModel):
    """Statistics snapshot for all namespaces."""

    namespaces: list[CacheNamespaceInfo] = Field(default_factory=list)

    @computed_field
    @property
    def total_entries(self) -> int:
        """Total number of live and not yet evicted entries."""
        return sum(ns.size for ns in self.namespaces)
