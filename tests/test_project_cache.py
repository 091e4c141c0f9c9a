from __future__ import annotations

import asyncio
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest

from backlog_mcp.errors import BacklogApiError
from backlog_mcp.identifiers import ProjectIdOrKey
from backlog_mcp.models import Project
from backlog_mcp.project_cache import CacheConfig, ProjectCacheManager


def _project(project_id: int, key: str) -> Project:
    return Project(id=project_id, project_key=key, name=f"Project {key}")


class FakeClient:
    def __init__(self, projects: list[Project] | None = None):
        self.projects = {p.id: p for p in projects or []}
        self.calls: list[str] = []
        self.error: Exception | None = None

    async def get_project(self, project_id_or_key: ProjectIdOrKey) -> Project:
        self.calls.append(str(project_id_or_key))
        if self.error is not None:
            raise self.error
        for project in self.projects.values():
            if project.id == project_id_or_key.id or project.project_key == project_id_or_key.key:
                return project
        raise BacklogApiError(404, "No project.")


def test_cache_and_get_by_id_and_key():
    async def run():
        cache = ProjectCacheManager()
        project = _project(1, "TEST")
        await cache.cache_project(project)

        assert await cache.get_from_cache_by_id(1) == project
        assert await cache.get_from_cache_by_key("TEST") == project
        assert await cache.get_from_cache_by_id(2) is None
        assert await cache.get_from_cache_by_key("OTHER") is None
        assert await cache.size() == 1

    asyncio.run(run())


def test_entry_is_reachable_through_both_indexes():
    async def run():
        cache = ProjectCacheManager()
        await cache.cache_project(_project(7, "SEVEN"))

        by_id = await cache.get_from_cache_by_id(7)
        by_key = await cache.get_from_cache_by_key("SEVEN")

        assert by_id is not None and by_key is not None
        assert by_id.project_key == "SEVEN"
        assert by_key.id == 7

    asyncio.run(run())


def test_ttl_expiry_purges_both_indexes():
    async def run():
        cache = ProjectCacheManager(CacheConfig(ttl=timedelta(milliseconds=100)))
        await cache.cache_project(_project(1, "TEST"))
        assert await cache.get_from_cache_by_id(1) is not None

        await asyncio.sleep(0.15)

        assert await cache.get_from_cache_by_id(1) is None
        assert await cache.get_from_cache_by_key("TEST") is None
        assert await cache.size() == 0
        assert cache.stats()["expirations"] == 1

    asyncio.run(run())


def test_expired_key_lookup_drops_id_entry_too():
    async def run():
        cache = ProjectCacheManager(CacheConfig(ttl=timedelta(milliseconds=100)))
        await cache.cache_project(_project(1, "TEST"))

        await asyncio.sleep(0.15)

        assert await cache.get_from_cache_by_key("TEST") is None
        assert await cache.size() == 0

    asyncio.run(run())


def test_lru_eviction_drops_oldest_entry():
    async def run():
        cache = ProjectCacheManager(CacheConfig(max_size=3))
        for i in range(4):
            await cache.cache_project(_project(i, f"PROJ{i}"))

        assert await cache.size() == 3
        assert await cache.get_from_cache_by_id(0) is None
        assert await cache.get_from_cache_by_key("PROJ0") is None
        for i in range(1, 4):
            assert await cache.get_from_cache_by_id(i) is not None
        assert cache.stats()["evictions"] == 1

    asyncio.run(run())


def test_lookup_refreshes_recency():
    async def run():
        cache = ProjectCacheManager(CacheConfig(max_size=3))
        for i in range(3):
            await cache.cache_project(_project(i, f"PROJ{i}"))

        # Order is now 1, 2, 0: project 1 is the least recently used.
        assert await cache.get_from_cache_by_key("PROJ0") is not None
        await cache.cache_project(_project(3, "PROJ3"))

        assert await cache.get_from_cache_by_id(0) is not None
        assert await cache.get_from_cache_by_id(1) is None
        assert await cache.get_from_cache_by_id(2) is not None
        assert await cache.get_from_cache_by_id(3) is not None

    asyncio.run(run())


def test_replacing_cached_project_does_not_evict():
    async def run():
        cache = ProjectCacheManager(CacheConfig(max_size=2))
        await cache.cache_project(_project(1, "ONE"))
        await cache.cache_project(_project(2, "TWO"))

        renamed = Project(id=1, project_key="ONE", name="Renamed")
        await cache.cache_project(renamed)

        assert await cache.size() == 2
        assert await cache.get_from_cache_by_id(1) == renamed
        assert await cache.get_from_cache_by_id(2) is not None
        assert cache.stats()["evictions"] == 0

    asyncio.run(run())


def test_recached_project_with_new_key_drops_old_key():
    async def run():
        cache = ProjectCacheManager()
        await cache.cache_project(_project(1, "OLD"))
        await cache.cache_project(_project(1, "NEW"))

        assert await cache.get_from_cache_by_key("OLD") is None
        found = await cache.get_from_cache_by_key("NEW")
        assert found is not None and found.id == 1
        assert await cache.size() == 1

    asyncio.run(run())


def test_key_moved_to_new_id_drops_old_id():
    async def run():
        cache = ProjectCacheManager()
        await cache.cache_project(_project(1, "KEY"))
        await cache.cache_project(_project(2, "KEY"))

        assert await cache.get_from_cache_by_id(1) is None
        found = await cache.get_from_cache_by_key("KEY")
        assert found is not None and found.id == 2
        assert await cache.size() == 1

    asyncio.run(run())


def test_gathered_inserts_are_all_visible():
    async def run():
        cache = ProjectCacheManager()
        await asyncio.gather(
            *(cache.cache_project(_project(i, f"PROJ{i}")) for i in range(10))
        )

        assert await cache.size() == 10
        for i in range(10):
            assert await cache.get_from_cache_by_id(i) is not None
            assert await cache.get_from_cache_by_key(f"PROJ{i}") is not None

    asyncio.run(run())


def test_get_by_id_fetches_once_then_hits_cache():
    async def run():
        client = FakeClient([_project(5, "FIVE")])
        cache = ProjectCacheManager()

        first = await cache.get_by_id(5, client)
        second = await cache.get_by_id(5, client)
        by_key = await cache.get_from_cache_by_key("FIVE")

        assert first == second == by_key
        assert client.calls == ["5"]
        assert cache.stats()["fetches"] == 1

    asyncio.run(run())


def test_get_by_key_fetches_and_indexes_id():
    async def run():
        client = FakeClient([_project(5, "FIVE")])
        cache = ProjectCacheManager()

        project = await cache.get_by_key("FIVE", client)

        assert project.id == 5
        assert client.calls == ["FIVE"]
        assert await cache.get_from_cache_by_id(5) == project

    asyncio.run(run())


def test_fetch_failure_caches_nothing_and_propagates():
    async def run():
        client = FakeClient()
        client.error = BacklogApiError(500, "boom")
        cache = ProjectCacheManager()

        with pytest.raises(BacklogApiError) as exc_info:
            await cache.get_by_id(9, client)

        assert exc_info.value is client.error
        assert await cache.size() == 0

    asyncio.run(run())


def test_resolve_prefers_id_when_both_known():
    async def run():
        client = FakeClient([_project(12, "A12"), _project(34, "OTHER")])
        cache = ProjectCacheManager()

        project = await cache.resolve(ProjectIdOrKey(id=34, key="A12"), client)

        assert project.id == 34
        assert client.calls == ["34"]

    asyncio.run(run())


def test_resolve_by_key_only():
    async def run():
        client = FakeClient([_project(12, "A12")])
        cache = ProjectCacheManager()

        project = await cache.resolve(ProjectIdOrKey.from_key("A12"), client)

        assert project.id == 12

    asyncio.run(run())


def test_clear_empties_everything():
    async def run():
        cache = ProjectCacheManager()
        for i in range(3):
            await cache.cache_project(_project(i, f"PROJ{i}"))

        await cache.clear()

        assert await cache.size() == 0
        assert await cache.get_from_cache_by_key("PROJ1") is None

    asyncio.run(run())


def test_reconfigure_shrinks_to_new_max_size():
    async def run():
        cache = ProjectCacheManager()
        for i in range(5):
            await cache.cache_project(_project(i, f"PROJ{i}"))

        cache.reconfigure(CacheConfig(max_size=2))

        assert cache.get_config().max_size == 2
        assert await cache.size() == 2
        assert await cache.get_from_cache_by_id(3) is not None
        assert await cache.get_from_cache_by_id(4) is not None

    asyncio.run(run())


def test_stats_reports_config_and_counters():
    async def run():
        cache = ProjectCacheManager(CacheConfig(ttl=timedelta(seconds=300), max_size=1000))
        await cache.cache_project(_project(1, "TEST"))
        await cache.get_from_cache_by_id(1)
        await cache.get_from_cache_by_id(2)
        return cache.stats()

    stats = asyncio.run(run())

    assert stats["size"] == 1
    assert stats["maxSize"] == 1000
    assert stats["ttlSeconds"] == 300.0
    assert stats["hits"] == 1
    assert stats["misses"] == 1


def test_threaded_inserts_keep_indexes_consistent():
    cache = ProjectCacheManager(CacheConfig(max_size=50))
    workers = 8
    per_worker = 200
    barrier = threading.Barrier(workers)
    mismatched: list[int] = []

    def insert_range(worker: int) -> None:
        barrier.wait()
        for n in range(per_worker):
            project_id = worker * per_worker + n + 1
            project = _project(project_id, f"P{project_id}")
            asyncio.run(cache.cache_project(project))
            by_id = asyncio.run(cache.get_from_cache_by_id(project_id))
            if by_id is not None and by_id != project:
                mismatched.append(project_id)

    with ThreadPoolExecutor(max_workers=workers) as pool:
        list(pool.map(insert_range, range(workers)))

    assert mismatched == []
    size = asyncio.run(cache.size())
    assert size <= 50

    async def check_survivors():
        seen = 0
        for project_id in range(1, workers * per_worker + 1):
            by_id = await cache.get_from_cache_by_id(project_id)
            by_key = await cache.get_from_cache_by_key(f"P{project_id}")
            if by_id is None:
                assert by_key is None
                continue
            assert by_key == by_id
            seen += 1
        return seen

    assert asyncio.run(check_survivors()) == size


def test_threaded_inserts_without_bound_are_all_reachable():
    cache = ProjectCacheManager()
    workers = 8
    per_worker = 100
    barrier = threading.Barrier(workers)

    def insert_range(worker: int) -> None:
        barrier.wait()
        for n in range(per_worker):
            project_id = worker * per_worker + n + 1
            asyncio.run(cache.cache_project(_project(project_id, f"P{project_id}")))

    threads = [threading.Thread(target=insert_range, args=(w,)) for w in range(workers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    async def check_all():
        assert await cache.size() == workers * per_worker
        for project_id in range(1, workers * per_worker + 1):
            by_id = await cache.get_from_cache_by_id(project_id)
            by_key = await cache.get_from_cache_by_key(f"P{project_id}")
            assert by_id is not None
            assert by_key == by_id

    asyncio.run(check_all())
