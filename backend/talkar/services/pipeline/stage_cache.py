"""
In-memory TTL cache for stage results and auxiliary lookups.

One namespace per stage (script, speech, lipsync) plus auxiliary
namespaces (subject metadata, user preferences), each with its own TTL.
Keys are a pure function of the namespace and the normalized inputs.

Concurrency model: entries are immutable and a write replaces the whole
entry, so there is no lock. Different keys never wait on each other;
only concurrent loads of the same auxiliary key are coalesced.
"""

import asyncio
import hashlib
import json
import logging
import time
from collections import OrderedDict
from typing import Any, Awaitable, Callable

from pydantic import BaseModel

from talkar.config import Settings
from talkar.models.cache import (
    CacheEntry,
    CacheInfo,
    CacheNamespace,
    CacheNamespaceInfo,
    NamespaceStats,
)

logger = logging.getLogger(__name__)

# String parameters compared verbatim (apart from whitespace); all other
# strings are identifiers and are case-folded.
CASE_SENSITIVE_PARAMS = frozenset({"text", "audio_ref", "video_ref", "avatar"})


def _normalize(value: Any, case_fold: bool = True) -> Any:
    """Canonical form of a key parameter."""
    if isinstance(value, BaseModel):
        value = value.model_dump(mode="json")
    if isinstance(value, str):
        value = " ".join(value.split())
        return value.casefold() if case_fold else value
    if isinstance(value, dict):
        return {str(k): _normalize(v, case_fold) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_normalize(v, case_fold) for v in value]
    if isinstance(value, (set, frozenset)):
        return sorted(_normalize(v, case_fold) for v in value)
    return value


def _observe(load: asyncio.Task) -> None:
    # A load whose callers were all cancelled still fails quietly
    if not load.cancelled():
        load.exception()


class CacheManager:
    """
    Namespaced TTL cache with per-namespace entry cap.

    Expired entries are absent: they are evicted lazily on lookup and
    periodically by sweep(). When a namespace is full the oldest entry
    is evicted.

    Example:
        cache = CacheManager.from_settings(settings)
        key = cache.make_key(CacheNamespace.SCRIPT, subject_ref="sunrich-001", language="en")
        result = cache.get(CacheNamespace.SCRIPT, key)
        if result is None:
            result = await generate()
            cache.put(CacheNamespace.SCRIPT, key, result)
    """

    def __init__(
        self,
        ttls: dict[CacheNamespace, float],
        max_entries: int = 100,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize cache.

        Args:
            ttls: Default TTL (seconds) per namespace
            max_entries: Maximum live entries per namespace
            clock: Monotonic clock (injectable for tests)
        """
        self.ttls = {ns: ttls.get(ns, 300.0) for ns in CacheNamespace}
        self.max_entries = max_entries
        self._clock = clock
        self._entries: dict[CacheNamespace, OrderedDict[str, CacheEntry]] = {
            ns: OrderedDict() for ns in CacheNamespace
        }
        self._stats = {ns: NamespaceStats() for ns in CacheNamespace}
        self._loading: dict[tuple[CacheNamespace, str], asyncio.Task] = {}
        self._sweeper: asyncio.Task | None = None

    @classmethod
    def from_settings(
        cls, settings: Settings, clock: Callable[[], float] = time.monotonic
    ) -> "CacheManager":
        """Create cache with TTLs from application settings."""
        ttls = {
            CacheNamespace.SCRIPT: settings.cache_ttl_script,
            CacheNamespace.SPEECH: settings.cache_ttl_speech,
            CacheNamespace.LIPSYNC: settings.cache_ttl_lipsync,
            CacheNamespace.SUBJECT: settings.cache_ttl_subject,
            CacheNamespace.PREFERENCES: settings.cache_ttl_preferences,
        }
        return cls(ttls, max_entries=settings.cache_max_entries, clock=clock)

    @staticmethod
    def make_key(namespace: CacheNamespace, **params: Any) -> str:
        """
        Build a canonical cache key.

        Whitespace is trimmed and collapsed, identifiers are case-folded,
        parameter order does not matter and None-valued params are dropped.

        Args:
            namespace: Target namespace
            **params: Inputs that determine the cached value

        Returns:
            "<namespace>:<sha256 prefix>"
        """
        normalized = {
            name: _normalize(value, case_fold=name not in CASE_SENSITIVE_PARAMS)
            for name, value in params.items()
            if value is not None
        }
        content = json.dumps(normalized, sort_keys=True, ensure_ascii=False, default=str)
        digest = hashlib.sha256(content.encode("utf-8")).hexdigest()[:32]
        return f"{namespace.value}:{digest}"

    def get(self, namespace: CacheNamespace, key: str) -> Any | None:
        """
        Look up a live entry.

        Args:
            namespace: Cache namespace
            key: Key from make_key()

        Returns:
            Cached value, or None if absent or expired
        """
        entries = self._entries[namespace]
        stats = self._stats[namespace]
        entry = entries.get(key)

        if entry is None:
            stats.misses += 1
            return None

        if entry.is_expired(self._clock()):
            # Only drop the entry we inspected; a concurrent write may have replaced it
            if entries.get(key) is entry:
                del entries[key]
            stats.expirations += 1
            stats.misses += 1
            logger.debug(f"Cache expired: {key}")
            return None

        stats.hits += 1
        logger.debug(f"Cache hit: {key}")
        return entry.value

    def put(
        self,
        namespace: CacheNamespace,
        key: str,
        value: Any,
        ttl: float | None = None,
    ) -> None:
        """
        Store a value, replacing any previous entry for the key.

        Args:
            namespace: Cache namespace
            key: Key from make_key()
            value: Value to cache
            ttl: TTL in seconds (default: namespace TTL)
        """
        entries = self._entries[namespace]
        entry = CacheEntry(
            value=value,
            created_at=self._clock(),
            ttl=self.ttls[namespace] if ttl is None else ttl,
        )

        entries.pop(key, None)
        if len(entries) >= self.max_entries:
            self._evict_expired(namespace)
        while len(entries) >= self.max_entries:
            evicted, _ = entries.popitem(last=False)
            self._stats[namespace].evictions += 1
            logger.debug(f"Cache full, evicted: {evicted}")

        entries[key] = entry
        self._stats[namespace].writes += 1

    def invalidate(self, namespace: CacheNamespace, key: str) -> bool:
        """Remove one entry. Returns True if it existed."""
        return self._entries[namespace].pop(key, None) is not None

    async def get_or_load(
        self,
        namespace: CacheNamespace,
        key: str,
        loader: Callable[[], Awaitable[Any]],
        ttl: float | None = None,
    ) -> Any:
        """
        Return the cached value or load, cache and return it.

        Concurrent callers for the same key share one load, which runs as
        its own task: cancelling any caller, including the one that started
        it, leaves the load running for the others. None results are
        returned but not cached.

        Args:
            namespace: Cache namespace
            key: Key from make_key()
            loader: Coroutine factory producing the value
            ttl: TTL in seconds (default: namespace TTL)

        Returns:
            Cached or freshly loaded value
        """
        value = self.get(namespace, key)
        if value is not None:
            return value

        load = self._loading.get((namespace, key))
        if load is None:
            load = asyncio.ensure_future(self._load(namespace, key, loader, ttl))
            load.add_done_callback(_observe)
            self._loading[(namespace, key)] = load
        return await asyncio.shield(load)

    async def _load(
        self,
        namespace: CacheNamespace,
        key: str,
        loader: Callable[[], Awaitable[Any]],
        ttl: float | None,
    ) -> Any:
        try:
            value = await loader()
            if value is not None:
                self.put(namespace, key, value, ttl)
            return value
        finally:
            self._loading.pop((namespace, key), None)

    def sweep(self) -> int:
        """
        Remove expired entries from all namespaces.

        Returns:
            Number of removed entries
        """
        removed = sum(self._evict_expired(ns) for ns in CacheNamespace)
        if removed:
            logger.info(f"Cache sweep removed {removed} expired entries")
        return removed

    def clear(self, namespace: CacheNamespace | None = None) -> int:
        """
        Drop entries of one namespace or of all of them.

        Args:
            namespace: Namespace to clear (None = all)

        Returns:
            Number of removed entries
        """
        targets = [namespace] if namespace else list(CacheNamespace)
        removed = 0
        for ns in targets:
            removed += len(self._entries[ns])
            self._entries[ns] = OrderedDict()
        logger.info(f"Cache cleared: {removed} entries ({namespace.value if namespace else 'all'})")
        return removed

    def info(self) -> CacheInfo:
        """Snapshot of sizes and counters per namespace."""
        now = self._clock()
        namespaces = []
        for ns in CacheNamespace:
            stats = self._stats[ns]
            live = sum(1 for e in list(self._entries[ns].values()) if not e.is_expired(now))
            namespaces.append(
                CacheNamespaceInfo(
                    namespace=ns,
                    ttl_seconds=self.ttls[ns],
                    size=live,
                    hits=stats.hits,
                    misses=stats.misses,
                    writes=stats.writes,
                    evictions=stats.evictions,
                    expirations=stats.expirations,
                )
            )
        return CacheInfo(namespaces=namespaces)

    def start_sweeper(self, interval: float) -> asyncio.Task:
        """
        Start periodic sweeping in the running event loop.

        Args:
            interval: Seconds between sweeps

        Returns:
            Background task (stopped by stop_sweeper())
        """
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.create_task(self._sweep_loop(interval))
        return self._sweeper

    async def stop_sweeper(self) -> None:
        """Cancel the background sweeper, if running."""
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        try:
            await self._sweeper
        except asyncio.CancelledError:
            pass
        self._sweeper = None

    async def _sweep_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            self.sweep()

    def _evict_expired(self, namespace: CacheNamespace) -> int:
        now = self._clock()
        entries = self._entries[namespace]
        expired = [key for key, entry in list(entries.items()) if entry.is_expired(now)]
        for key in expired:
            entries.pop(key, None)
        self._stats[namespace].expirations += len(expired)
        return len(expired)
