"""
Project metadata cache indexed by both project id and project key.

Entries are immutable ``Project`` snapshots. Expiry is lazy (checked on
lookup); size is bounded by LRU eviction driven by an explicit recency list
of project ids, oldest first.

Locking: ``by_id``, ``by_key``, the recency list and the config each have
their own ``threading.Lock``. Locks are only held around in-memory work and
never across an ``await``, so the manager can be shared by asyncio tasks and
OS threads alike. The two indexes are updated one after the other, not in a
single transaction: a concurrent reader may briefly see an entry in one index
but not the other while an insert, eviction or expiry is in flight.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import timedelta
from typing import TYPE_CHECKING, Any

from .errors import ProjectResolutionError
from .identifiers import ProjectIdOrKey
from .models import Project

if TYPE_CHECKING:
    from .client import BacklogApiClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheConfig:
    """``ttl=None`` never expires; ``max_size=None`` is unbounded."""

    ttl: timedelta | None = None
    max_size: int | None = None


@dataclass(frozen=True)
class CacheEntry:
    project: Project
    cached_at: float = field(default_factory=time.monotonic)

    def is_expired(self, ttl: timedelta | None) -> bool:
        if ttl is None:
            return False
        return time.monotonic() - self.cached_at > ttl.total_seconds()


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    fetches: int = 0
    evictions: int = 0
    expirations: int = 0


class ProjectCacheManager:
    """Dual-indexed, TTL- and size-bounded project cache."""

    def __init__(self, config: CacheConfig | None = None):
        self._by_id: dict[int, CacheEntry] = {}
        self._by_key: dict[str, CacheEntry] = {}
        self._access_order: list[int] = []
        self._config = config or CacheConfig()
        self._stats = CacheStats()

        self._by_id_lock = threading.Lock()
        self._by_key_lock = threading.Lock()
        self._order_lock = threading.Lock()
        self._config_lock = threading.Lock()
        self._stats_lock = threading.Lock()

    # ------------------------------------------------------------------
    # configuration

    def get_config(self) -> CacheConfig:
        with self._config_lock:
            return self._config

    def reconfigure(self, config: CacheConfig) -> None:
        """Swap the config, evicting LRU entries down to a smaller ``max_size``."""
        with self._config_lock:
            self._config = config
        if config.max_size is not None:
            while self._size() > config.max_size:
                if not self._evict_oldest():
                    break

    # ------------------------------------------------------------------
    # internal bookkeeping

    def _size(self) -> int:
        with self._by_id_lock:
            return len(self._by_id)

    def _count(self, name: str) -> None:
        with self._stats_lock:
            setattr(self._stats, name, getattr(self._stats, name) + 1)

    def _touch(self, project_id: int) -> None:
        with self._order_lock:
            if project_id in self._access_order:
                self._access_order.remove(project_id)
            self._access_order.append(project_id)

    def _forget_order(self, project_id: int) -> None:
        with self._order_lock:
            if project_id in self._access_order:
                self._access_order.remove(project_id)

    def _remove(self, project_id: int, expected: CacheEntry | None = None) -> CacheEntry | None:
        """Drop ``project_id`` from both indexes.

        With ``expected`` set, only that exact entry is removed, so a fresher
        entry written concurrently survives.
        """
        with self._by_id_lock:
            entry = self._by_id.get(project_id)
            if entry is None or (expected is not None and entry is not expected):
                return None
            del self._by_id[project_id]
        with self._by_key_lock:
            current = self._by_key.get(entry.project.project_key)
            if current is not None and current.project.id == project_id:
                del self._by_key[entry.project.project_key]
        return entry

    def _evict_oldest(self) -> bool:
        """Evict the least recently used entry. Stale ids in the recency list are skipped."""
        while True:
            with self._order_lock:
                if not self._access_order:
                    return False
                oldest_id = self._access_order.pop(0)
            evicted = self._remove(oldest_id)
            if evicted is not None:
                self._count("evictions")
                logger.debug(
                    "Evicted project %s (%s) from cache",
                    oldest_id,
                    evicted.project.project_key,
                )
                return True

    def _expire(self, entry: CacheEntry) -> None:
        project_id = entry.project.id
        if self._remove(project_id, expected=entry) is not None:
            self._forget_order(project_id)
            self._count("expirations")
            logger.debug("Project %s expired from cache", entry.project.project_key)

    # ------------------------------------------------------------------
    # public API

    async def cache_project(self, project: Project) -> None:
        """Insert or replace ``project`` under both its id and its key."""
        entry = CacheEntry(project)
        config = self.get_config()

        if config.max_size is not None:
            with self._by_id_lock:
                replacing = project.id in self._by_id
                current_size = len(self._by_id)
            if not replacing and current_size >= config.max_size:
                self._evict_oldest()

        with self._by_id_lock:
            previous = self._by_id.get(project.id)
            self._by_id[project.id] = entry

        with self._by_key_lock:
            if previous is not None and previous.project.project_key != project.project_key:
                stale = self._by_key.get(previous.project.project_key)
                if stale is not None and stale.project.id == project.id:
                    del self._by_key[previous.project.project_key]
            displaced = self._by_key.get(project.project_key)
            self._by_key[project.project_key] = entry

        if displaced is not None and displaced.project.id != project.id:
            # The key moved to another project id; drop the old id's entry.
            with self._by_id_lock:
                if self._by_id.get(displaced.project.id) is displaced:
                    del self._by_id[displaced.project.id]
            self._forget_order(displaced.project.id)

        self._touch(project.id)

        # Concurrent inserts can all pass the size check above.
        if config.max_size is not None:
            while self._size() > config.max_size:
                if not self._evict_oldest():
                    break

    async def get_from_cache_by_id(self, project_id: int) -> Project | None:
        """Cache-only lookup by id. Never performs I/O."""
        ttl = self.get_config().ttl
        with self._by_id_lock:
            entry = self._by_id.get(project_id)
        if entry is None:
            self._count("misses")
            return None
        if entry.is_expired(ttl):
            self._expire(entry)
            self._count("misses")
            return None
        self._touch(project_id)
        self._count("hits")
        return entry.project

    async def get_from_cache_by_key(self, project_key: str) -> Project | None:
        """Cache-only lookup by key. Never performs I/O."""
        ttl = self.get_config().ttl
        with self._by_key_lock:
            entry = self._by_key.get(project_key)
        if entry is None:
            self._count("misses")
            return None
        if entry.is_expired(ttl):
            self._expire(entry)
            self._count("misses")
            return None
        self._touch(entry.project.id)
        self._count("hits")
        return entry.project

    async def get_by_id(self, project_id: int, client: BacklogApiClient) -> Project:
        cached = await self.get_from_cache_by_id(project_id)
        if cached is not None:
            return cached
        project = await client.get_project(ProjectIdOrKey.from_id(project_id))
        self._count("fetches")
        await self.cache_project(project)
        return project

    async def get_by_key(self, project_key: str, client: BacklogApiClient) -> Project:
        cached = await self.get_from_cache_by_key(project_key)
        if cached is not None:
            return cached
        project = await client.get_project(ProjectIdOrKey.from_key(project_key))
        self._count("fetches")
        await self.cache_project(project)
        return project

    async def resolve(self, id_or_key: ProjectIdOrKey, client: BacklogApiClient) -> Project:
        """Cache-or-fetch by whichever identifier is known; the id wins when both are."""
        if id_or_key.id is not None:
            return await self.get_by_id(id_or_key.id, client)
        if id_or_key.key is not None:
            return await self.get_by_key(id_or_key.key, client)
        raise ProjectResolutionError(f"Cannot resolve project reference {id_or_key!r}")

    async def clear(self) -> None:
        with self._by_id_lock:
            self._by_id.clear()
        with self._by_key_lock:
            self._by_key.clear()
        with self._order_lock:
            self._access_order.clear()

    async def size(self) -> int:
        return self._size()

    def stats(self) -> dict[str, Any]:
        config = self.get_config()
        with self._stats_lock:
            stats = CacheStats(**vars(self._stats))
        return {
            "size": self._size(),
            "maxSize": config.max_size,
            "ttlSeconds": config.ttl.total_seconds() if config.ttl is not None else None,
            "hits": stats.hits,
            "misses": stats.misses,
            "fetches": stats.fetches,
            "evictions": stats.evictions,
            "expirations": stats.expirations,
        }
