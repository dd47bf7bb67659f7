"""Process-wide cache of query registry state with TTL eviction."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Mapping

from pydantic import BaseModel, ConfigDict, Field

from pyrequery.state.observable import QuerySnapshot

_logger = logging.getLogger(__name__)


class CacheEntry(BaseModel):
    """Snapshot of every unit of one registry, stored under a cache key."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    queries: dict[str, QuerySnapshot] = Field(default_factory=dict)
    latest_queries_key: str
    cache_time: float = Field(..., description="Wall-clock epoch seconds of the last write.")
    expires_at: float | None = Field(
        default=None,
        description="Wall-clock epoch seconds after which the entry is evicted; None never expires.",
    )


class CacheStore:
    """Keyed entry store with one re-armable eviction timer per key.

    Eviction timers are scheduled on the running event loop when there is
    one. Expiry is additionally checked on read so entries written outside a
    loop still honour their TTL.
    """

    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._timers: dict[str, asyncio.TimerHandle] = {}

    def get(self, key: str) -> CacheEntry | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at is not None and self._clock() >= entry.expires_at:
            self._evict(key)
            return None
        return entry

    def set(
        self,
        key: str,
        *,
        queries: Mapping[str, QuerySnapshot],
        latest_queries_key: str,
        ttl: float,
    ) -> CacheEntry:
        """Overwrite the entry for *key* and re-arm its eviction timer.

        ``ttl <= 0`` keeps the entry until it is overwritten or deleted.
        """
        now = self._clock()
        entry = CacheEntry(
            queries=dict(queries),
            latest_queries_key=latest_queries_key,
            cache_time=now,
            expires_at=now + ttl if ttl > 0 else None,
        )
        self._entries[key] = entry
        self._cancel_timer(key)
        if ttl > 0:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                loop = None
            if loop is not None:
                self._timers[key] = loop.call_later(ttl, self._evict, key)
        return entry

    def delete(self, key: str) -> None:
        self._evict(key)

    def clear(self) -> None:
        for key in list(self._timers):
            self._cancel_timer(key)
        self._entries.clear()

    def keys(self) -> list[str]:
        return [key for key in list(self._entries) if self.get(key) is not None]

    def _evict(self, key: str) -> None:
        self._cancel_timer(key)
        if self._entries.pop(key, None) is not None:
            _logger.debug("Cache entry evicted key=%s", key)

    def _cancel_timer(self, key: str) -> None:
        handle = self._timers.pop(key, None)
        if handle is not None:
            handle.cancel()


_STORE = CacheStore()


def get_cache_store() -> CacheStore:
    """Return the process-wide cache store."""
    return _STORE


def get_cache(key: str) -> CacheEntry | None:
    return _STORE.get(key)


def set_cache(
    key: str,
    *,
    queries: Mapping[str, QuerySnapshot],
    latest_queries_key: str,
    ttl: float,
) -> CacheEntry:
    return _STORE.set(key, queries=queries, latest_queries_key=latest_queries_key, ttl=ttl)


def clear_cache(key: str | None = None) -> None:
    """Drop one cache key, or every entry when *key* is ``None``."""
    if key is None:
        _STORE.clear()
    else:
        _STORE.delete(key)
