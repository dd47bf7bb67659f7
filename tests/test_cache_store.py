from __future__ import annotations

import asyncio

import pytest

from pyrequery._cache import CacheStore
from pyrequery.state.observable import QuerySnapshot


class _Clock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def _queries() -> dict[str, QuerySnapshot]:
    return {"k": QuerySnapshot(data=[1], params=(1,))}


def test_entry_expires_without_event_loop() -> None:
    clock = _Clock()
    store = CacheStore(clock=clock)
    entry = store.set("a", queries=_queries(), latest_queries_key="k", ttl=10)
    assert entry.cache_time == 1000.0
    assert store.get("a") is entry

    clock.now += 10
    assert store.get("a") is None


def test_non_positive_ttl_never_expires() -> None:
    clock = _Clock()
    store = CacheStore(clock=clock)
    store.set("a", queries=_queries(), latest_queries_key="k", ttl=0)
    clock.now += 10**9
    entry = store.get("a")
    assert entry is not None
    assert entry.expires_at is None


@pytest.mark.asyncio
async def test_write_rearms_eviction_timer() -> None:
    store = CacheStore()
    store.set("a", queries=_queries(), latest_queries_key="k", ttl=0.06)
    await asyncio.sleep(0.04)
    store.set("a", queries=_queries(), latest_queries_key="k", ttl=0.06)
    await asyncio.sleep(0.04)
    assert store.get("a") is not None

    await asyncio.sleep(0.05)
    assert "a" not in store._entries  # noqa: SLF001


def test_delete_and_clear() -> None:
    store = CacheStore()
    store.set("a", queries=_queries(), latest_queries_key="k", ttl=0)
    store.set("b", queries=_queries(), latest_queries_key="k", ttl=0)
    store.delete("a")
    assert store.keys() == ["b"]
    store.clear()
    assert store.keys() == []
