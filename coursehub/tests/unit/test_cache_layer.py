from __future__ import annotations

import pytest
from pydantic import BaseModel

from coursehub.core.errors import CacheBackendError
from coursehub.services.cache import CacheLayer, MemoryCacheBackend, RedisCacheBackend, fingerprint
from coursehub.tests.utils.fakes import FakeRedis


class _Clock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class _Course(BaseModel):
    id: str
    title: str


def _counting_loader(source: dict[str, str]):
    calls: list[str] = []

    async def load(course_id: str) -> dict | None:
        calls.append(course_id)
        title = source.get(course_id)
        return None if title is None else {"id": course_id, "title": title}

    return load, calls


@pytest.mark.asyncio
async def test_second_read_is_served_from_cache() -> None:
    cache = CacheLayer(MemoryCacheBackend(), namespace="test", enabled=True, default_ttl_s=60)
    load, calls = _counting_loader({"c-1": "Python"})
    cached = cache.cached("course:detail", None, load)

    assert await cached("c-1") == {"id": "c-1", "title": "Python"}
    assert await cached("c-1") == {"id": "c-1", "title": "Python"}
    assert calls == ["c-1"]
    assert cache.backend.keys() == ["test:course:detail:c-1"]


@pytest.mark.asyncio
async def test_invalidate_by_id_forces_fresh_read() -> None:
    source = {"c-1": "Python", "c-2": "Rust"}
    cache = CacheLayer(MemoryCacheBackend(), namespace="test", enabled=True, default_ttl_s=60)
    load, calls = _counting_loader(source)
    cached = cache.cached("course:detail", None, load)

    await cached("c-1")
    await cached("c-2")
    source["c-1"] = "Python 2nd edition"
    removed = await cache.invalidate("course", "c-1")

    assert removed == 1
    assert await cached("c-1") == {"id": "c-1", "title": "Python 2nd edition"}
    assert await cached("c-2") == {"id": "c-2", "title": "Rust"}
    assert calls == ["c-1", "c-2", "c-1"]


@pytest.mark.asyncio
async def test_invalidate_by_kind_clears_every_prefix() -> None:
    cache = CacheLayer(MemoryCacheBackend(), namespace="test", enabled=True, default_ttl_s=60)
    load, _calls = _counting_loader({"c-1": "Python"})
    await cache.cached("course:detail", None, load)("c-1")
    await cache.cached("course:summary", None, load)("c-1")
    await cache.cached("lesson:detail", None, load)("c-1")

    assert await cache.invalidate("course") == 2
    assert cache.backend.keys() == ["test:lesson:detail:c-1"]


@pytest.mark.asyncio
async def test_read_racing_a_write_does_not_store_stale_value() -> None:
    source = {"c-1": "before"}
    cache = CacheLayer(MemoryCacheBackend(), namespace="test", enabled=True, default_ttl_s=60)

    async def load(course_id: str) -> dict:
        value = {"id": course_id, "title": source[course_id]}
        # A writer commits and invalidates while this read is still in flight.
        source[course_id] = "after"
        await cache.invalidate("course", course_id)
        return value

    cached = cache.cached("course:detail", None, load)
    assert (await cached("c-1"))["title"] == "before"
    assert cache.backend.keys() == []
    assert cache.generation("course") == 1


@pytest.mark.asyncio
async def test_none_results_are_not_cached() -> None:
    cache = CacheLayer(MemoryCacheBackend(), namespace="test", enabled=True, default_ttl_s=60)
    load, calls = _counting_loader({})
    cached = cache.cached("course:detail", None, load)

    assert await cached("missing") is None
    assert await cached("missing") is None
    assert calls == ["missing", "missing"]


@pytest.mark.asyncio
async def test_entries_expire_after_ttl() -> None:
    clock = _Clock()
    cache = CacheLayer(MemoryCacheBackend(clock=clock), namespace="test", enabled=True, default_ttl_s=60)
    load, calls = _counting_loader({"c-1": "Python"})
    cached = cache.cached("course:detail", 30, load)

    await cached("c-1")
    clock.now += 29
    await cached("c-1")
    clock.now += 1
    await cached("c-1")
    assert calls == ["c-1", "c-1"]


@pytest.mark.asyncio
async def test_disabled_cache_always_calls_through() -> None:
    cache = CacheLayer(MemoryCacheBackend(), namespace="test", enabled=False, default_ttl_s=60)
    load, calls = _counting_loader({"c-1": "Python"})
    cached = cache.cached("course:detail", None, load)
    await cached("c-1")
    await cached("c-1")
    assert calls == ["c-1", "c-1"]
    assert cache.backend.keys() == []


@pytest.mark.asyncio
async def test_models_round_trip_through_json() -> None:
    cache = CacheLayer(MemoryCacheBackend(), namespace="test", enabled=True, default_ttl_s=60)
    calls: list[str] = []

    async def load(course_id: str) -> list[_Course]:
        calls.append(course_id)
        return [_Course(id=course_id, title="Python")]

    cached = cache.cached("course:list", None, load, model=_Course)
    await cached("c-1")
    result = await cached("c-1")
    assert result == [_Course(id="c-1", title="Python")]
    assert calls == ["c-1"]


@pytest.mark.asyncio
async def test_redis_backend_shares_entries_and_honours_ttl() -> None:
    redis = FakeRedis()
    cache = CacheLayer(RedisCacheBackend(redis), namespace="test", enabled=True, default_ttl_s=60)
    load, calls = _counting_loader({"c-1": "Python"})
    cached = cache.cached("course:detail", 10, load)

    await cached("c-1")
    await cached("c-1")
    assert redis.keys() == ["test:course:detail:c-1"]
    redis.advance(10)
    await cached("c-1")
    assert calls == ["c-1", "c-1"]

    assert await cache.invalidate("course", "c-1") == 1
    assert redis.keys() == []


@pytest.mark.asyncio
async def test_backend_outage_degrades_to_source() -> None:
    redis = FakeRedis()
    redis.fail = True
    cache = CacheLayer(RedisCacheBackend(redis), namespace="test", enabled=True, default_ttl_s=60)
    load, calls = _counting_loader({"c-1": "Python"})
    cached = cache.cached("course:detail", None, load)

    assert await cached("c-1") == {"id": "c-1", "title": "Python"}
    assert await cached("c-1") == {"id": "c-1", "title": "Python"}
    assert calls == ["c-1", "c-1"]
    # Invalidation failures are logged, not raised.
    assert await cache.invalidate("course", "c-1") == 0


@pytest.mark.asyncio
async def test_redis_backend_wraps_driver_errors() -> None:
    redis = FakeRedis()
    redis.fail = True
    backend = RedisCacheBackend(redis)
    with pytest.raises(CacheBackendError):
        await backend.get("test:key")
    with pytest.raises(CacheBackendError):
        await backend.set("test:key", "1", 5)


def test_fingerprint_is_stable_for_kwargs_order() -> None:
    assert fingerprint(("c-1",), {"page": 2, "status": "published"}) == fingerprint(
        ("c-1",), {"status": "published", "page": 2}
    )
    assert fingerprint(("c-1",), {}) == "c-1"


@pytest.mark.asyncio
async def test_memory_backend_stays_within_capacity() -> None:
    clock = _Clock()
    backend = MemoryCacheBackend(clock=clock, max_entries=2)
    await backend.set("a", "1", 10)
    await backend.set("b", "2", 60)
    clock.now += 10
    # "a" has expired and is swept instead of evicting a live key.
    await backend.set("c", "3", 60)
    assert backend.keys() == ["b", "c"]

    await backend.set("d", "4", 30)
    assert backend.keys() == ["c", "d"]
    assert await backend.get("b") is None
