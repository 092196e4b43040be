"""Unit tests for the in-memory query cache."""

import asyncio
import threading

import pytest

from kan.adapters.query_cache import in_memory
from kan.adapters.query_cache.base import QueryInvalidator, QueryKey
from kan.adapters.query_cache.in_memory import InMemoryQueryCache
from kan.services.card_invalidation_service import invalidate_card


class FakeTime:
    """Deterministic clock used to test expiration logic."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.current = start

    def time(self) -> float:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += seconds


def _card(public_id: str) -> QueryKey:
    return QueryKey(path=("card", "byId"), input={"cardPublicId": public_id})


class TestQueryKey:
    def test_requires_a_path(self) -> None:
        with pytest.raises(ValueError):
            QueryKey(path=())

    def test_cache_id_ignores_input_ordering(self) -> None:
        a = QueryKey(path=("board", "all"), input={"workspace": "w1", "type": "regular"})
        b = QueryKey(path=("board", "all"), input={"type": "regular", "workspace": "w1"})

        assert a.cache_id() == b.cache_id()

    def test_partial_descriptor_matches_entries_on_path(self) -> None:
        descriptor = QueryKey(path=("card", "byId"))

        assert descriptor.matches(_card("abcdef123456")) is True
        assert descriptor.matches(QueryKey(path=("board", "byId"), input={"boardPublicId": "x"})) is False

    def test_descriptor_fields_must_all_match(self) -> None:
        assert _card("abcdef123456").matches(_card("abcdef123456")) is True
        assert _card("abcdef123456").matches(_card("zzzzzz123456")) is False
        assert _card("abcdef123456").matches(QueryKey(path=("card", "byId"))) is False


def test_cache_satisfies_invalidator_protocol() -> None:
    assert isinstance(InMemoryQueryCache(), QueryInvalidator)


def test_set_and_get_updates_hit_miss_counters() -> None:
    cache = InMemoryQueryCache(ttl_seconds=10)

    assert cache.get(_card("missing00000")) is None

    cache.set(_card("abcdef123456"), {"title": "Card"})
    assert cache.get(_card("abcdef123456")) == {"title": "Card"}

    stats = cache.stats()
    assert stats["hits"] == 1
    assert stats["misses"] == 1


@pytest.mark.asyncio
async def test_invalidate_marks_matching_entries_stale() -> None:
    cache = InMemoryQueryCache(ttl_seconds=60)
    cache.set(_card("abcdef123456"), {"v": 1})
    cache.set(_card("ghijkl123456"), {"v": 2})
    cache.set(QueryKey(path=("board", "byId"), input={"boardPublicId": "b1"}), {"v": 3})

    marked = await cache.invalidate(QueryKey(path=("card", "byId")))

    assert marked == 2
    assert cache.get(_card("abcdef123456")) is None
    assert cache.get(QueryKey(path=("board", "byId"), input={"boardPublicId": "b1"})) == {"v": 3}
    assert cache.stats()["stale"] == 2


@pytest.mark.asyncio
async def test_invalidate_without_matches_is_harmless() -> None:
    cache = InMemoryQueryCache()

    assert await cache.invalidate(_card("abcdef123456")) == 0


@pytest.mark.asyncio
async def test_fetch_reloads_stale_entries() -> None:
    cache = InMemoryQueryCache(ttl_seconds=60)
    key = _card("abcdef123456")
    loads = []

    async def loader():
        loads.append(1)
        return {"version": len(loads)}

    assert await cache.fetch(key, loader) == {"version": 1}
    assert await cache.fetch(key, loader) == {"version": 1}

    await cache.invalidate(key)

    assert await cache.fetch(key, loader) == {"version": 2}
    assert len(loads) == 2


@pytest.mark.asyncio
async def test_fetch_loader_errors_propagate() -> None:
    cache = InMemoryQueryCache()

    async def loader():
        raise LookupError("card not found")

    with pytest.raises(LookupError):
        await cache.fetch(_card("abcdef123456"), loader)

    assert cache.stats()["entries"] == 0


@pytest.mark.asyncio
async def test_fetch_caches_none_results() -> None:
    cache = InMemoryQueryCache(ttl_seconds=60)
    key = _card("abcdef123456")
    loads = []

    async def loader():
        loads.append(1)
        return None

    assert await cache.fetch(key, loader) is None
    assert await cache.fetch(key, loader) is None
    assert len(loads) == 1


@pytest.mark.asyncio
async def test_invalidate_during_load_stores_result_stale() -> None:
    cache = InMemoryQueryCache(ttl_seconds=60)
    key = _card("abcdef123456")
    started = asyncio.Event()
    release = asyncio.Event()
    loads = []

    async def loader():
        loads.append(1)
        if len(loads) == 1:
            started.set()
            await release.wait()
            return {"title": "before edit"}
        return {"title": "after edit"}

    pending = asyncio.create_task(cache.fetch(key, loader))
    await started.wait()

    assert await invalidate_card(cache, "abcdef123456") is True

    release.set()

    assert await pending == {"title": "before edit"}
    assert cache.get(key) is None
    assert await cache.fetch(key, loader) == {"title": "after edit"}
    assert cache.get(key) == {"title": "after edit"}


@pytest.mark.asyncio
async def test_unrelated_invalidate_during_load_keeps_result_fresh() -> None:
    cache = InMemoryQueryCache(ttl_seconds=60)
    key = _card("abcdef123456")
    started = asyncio.Event()
    release = asyncio.Event()

    async def loader():
        started.set()
        await release.wait()
        return {"title": "card"}

    pending = asyncio.create_task(cache.fetch(key, loader))
    await started.wait()
    await invalidate_card(cache, "zzzzzz123456")
    release.set()
    await pending

    assert cache.get(key) == {"title": "card"}


def test_expired_entry_is_evicted(monkeypatch: pytest.MonkeyPatch) -> None:
    fake_time = FakeTime()
    monkeypatch.setattr(in_memory, "time", fake_time)

    cache = InMemoryQueryCache(ttl_seconds=5)
    cache.set(_card("abcdef123456"), {"data": True})

    fake_time.advance(6)

    assert cache.get(_card("abcdef123456")) is None
    assert cache.stats()["evictions"] == 1


def test_lru_eviction_removes_least_recently_used() -> None:
    cache = InMemoryQueryCache(ttl_seconds=100, max_entries=2)
    cache.set(_card("aaaaaaaaaaaa"), {"v": 1})
    cache.set(_card("bbbbbbbbbbbb"), {"v": 2})

    # Access "a" so that "b" becomes least recently used
    assert cache.get(_card("aaaaaaaaaaaa")) == {"v": 1}

    cache.set(_card("cccccccccccc"), {"v": 3})

    assert cache.get(_card("aaaaaaaaaaaa")) == {"v": 1}
    assert cache.get(_card("cccccccccccc")) == {"v": 3}
    assert cache.get(_card("bbbbbbbbbbbb")) is None


def test_remove_drops_matching_entries() -> None:
    cache = InMemoryQueryCache()
    cache.set(_card("aaaaaaaaaaaa"), {"v": 1})
    cache.set(_card("bbbbbbbbbbbb"), {"v": 2})

    assert cache.remove(_card("aaaaaaaaaaaa")) == 1
    assert cache.stats()["entries"] == 1


def test_clear_resets_state() -> None:
    cache = InMemoryQueryCache(ttl_seconds=10)
    cache.set(_card("aaaaaaaaaaaa"), {"v": 1})
    cache.get(_card("aaaaaaaaaaaa"))

    cache.clear()

    stats = cache.stats()
    assert stats["entries"] == 0
    assert stats["hits"] == 0
    assert stats["misses"] == 0


def test_thread_safety_under_concurrent_sets() -> None:
    cache = InMemoryQueryCache(ttl_seconds=30, max_entries=None)
    total_keys = 50

    def _writer(idx: int) -> None:
        cache.set(_card(f"card-{idx:08d}"), {"v": idx})

    threads = [threading.Thread(target=_writer, args=(i,)) for i in range(total_keys)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert cache.stats()["entries"] == total_keys
    assert cache.get(_card("card-00000025")) == {"v": 25}
