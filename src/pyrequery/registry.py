"""Keyed collection of query units with a mirrored view of the current one."""

from __future__ import annotations

import asyncio
import logging
import time
import warnings
from collections.abc import Callable, Mapping
from types import MappingProxyType
from typing import Any, Generic, TypeVar

from pyrequery._cache import get_cache_store
from pyrequery._redact import redact_params
from pyrequery.config import QueryConfig, resolve_config
from pyrequery.exceptions import QueryUsageWarning
from pyrequery.query import QueryUnit
from pyrequery.service import generate_service
from pyrequery.state.events import StateChange
from pyrequery.state.observable import QuerySnapshot, QueryState, Signal

_logger = logging.getLogger(__name__)

R = TypeVar("R")

QUERY_DEFAULT_KEY = "__QUERY_DEFAULT_KEY__"


def _resolved(value: Any = None) -> asyncio.Future[Any]:
    future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
    future.set_result(value)
    return future


class QueryRegistry(Generic[R]):
    """Route runs to per-key :class:`QueryUnit` instances.

    ``query_key(*args)`` selects the unit for each run; without it every run
    shares :data:`QUERY_DEFAULT_KEY`. The most recently run key is
    *current*: ``cancel``/``refresh``/``mutate`` act on it and the
    registry's own :attr:`state` mirrors it field by field.

    Construct inside a running event loop unless ``manual=True``; the
    automatic initial run schedules a task.

    Usage::

        registry = QueryRegistry(fetch_page, cache_key="pages", default_params=(1,))
        await registry.run(2)
        registry.data
    """

    def __init__(
        self,
        query: Any,
        *,
        scoped: Mapping[str, Any] | QueryConfig | None = None,
        **options: Any,
    ) -> None:
        config = resolve_config(options, scoped=scoped)
        self._config = config
        if not callable(query) and not isinstance(query, (str, Mapping)):
            warnings.warn(
                f"Query must be callable or service params, got {type(query).__name__}",
                QueryUsageWarning,
                stacklevel=2,
            )
        self._query = generate_service(query, request_method=config.request_method)
        self._cache = get_cache_store()

        self.state = QueryState()
        self._queries: dict[str, QueryUnit[R]] = {}
        self._unit_unsubscribers: dict[str, Callable[[], None]] = {}
        self._current_key = QUERY_DEFAULT_KEY
        self._disposed = False

        self._add_unit(QUERY_DEFAULT_KEY)
        self._restore_from_cache()
        self._sync()

        ready = config.ready
        self._ready: Signal[bool] = ready if isinstance(ready, Signal) else Signal(bool(ready))
        self._ready_triggered = bool(self._ready.value)
        self._pending_params: tuple[Any, ...] | None = None
        self._unsubscribe_ready: Callable[[], None] | None = None
        if not self._ready_triggered:
            self._unsubscribe_ready = self._ready.subscribe(self._on_ready_change)

        if not config.manual:
            self._initial_run()

        self._dep_unsubscribers = [dep.subscribe(self._on_dep_change) for dep in config.refresh_deps]

    # ------------------------------------------------------------------
    # Mirrored view
    # ------------------------------------------------------------------

    @property
    def config(self) -> QueryConfig:
        return self._config

    @property
    def loading(self) -> bool:
        return self.state.loading

    @property
    def data(self) -> R | None:
        data: R | None = self.state.data
        return data

    @property
    def error(self) -> BaseException | None:
        return self.state.error

    @property
    def params(self) -> tuple[Any, ...] | None:
        return self.state.params

    @property
    def queries(self) -> Mapping[str, QueryUnit[R]]:
        return MappingProxyType(self._queries)

    @property
    def current_key(self) -> str:
        return self._current_key

    def subscribe(self, listener: Callable[[StateChange], None]) -> Callable[[], None]:
        return self.state.subscribe(listener)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def run(self, *args: Any) -> asyncio.Future[R | None]:
        if not self._ready.value and not self._ready_triggered:
            _logger.debug("Run deferred until ready params=%s", redact_params(args))
            self._pending_params = args
            return _resolved()

        key = self._key_for(args)
        unit = self._queries.get(key)
        if unit is None:
            unit = self._add_unit(key)
        self._set_current(key)
        return unit.run(*args)

    def cancel(self) -> None:
        unit = self._queries.get(self._current_key)
        if unit is not None:
            unit.cancel()

    def refresh(self) -> asyncio.Task[R | None] | None:
        unit = self._queries.get(self._current_key)
        if unit is None:
            return None
        return unit.refresh()

    def mutate(self, value: Any) -> None:
        unit = self._queries.get(self._current_key)
        if unit is not None:
            unit.mutate(value)

    def reset(self) -> None:
        """Discard every unit and start over with a fresh default unit."""
        self._unmount_all()
        self._current_key = QUERY_DEFAULT_KEY
        self._add_unit(QUERY_DEFAULT_KEY)
        self._sync()

    def discard(self, key: str) -> None:
        """Cancel, unmount and drop the unit registered under *key*."""
        unit = self._queries.pop(key, None)
        if unit is None:
            return
        unsubscribe = self._unit_unsubscribers.pop(key, None)
        if unsubscribe is not None:
            unsubscribe()
        unit.cancel()
        unit.unmount()
        if key == self._current_key:
            self._sync()

    def dispose(self) -> None:
        """Cancel and unmount every unit and drop all subscriptions."""
        if self._disposed:
            return
        self._disposed = True
        self._unmount_all()
        if self._unsubscribe_ready is not None:
            self._unsubscribe_ready()
            self._unsubscribe_ready = None
        for unsubscribe in self._dep_unsubscribers:
            unsubscribe()
        self._dep_unsubscribers.clear()

    def __enter__(self) -> QueryRegistry[R]:
        return self

    def __exit__(self, *exc: Any) -> None:
        self.dispose()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _key_for(self, args: tuple[Any, ...]) -> str:
        query_key = self._config.query_key
        if query_key is None:
            return QUERY_DEFAULT_KEY
        key = query_key(*args)
        return QUERY_DEFAULT_KEY if key is None else str(key)

    def _add_unit(self, key: str, snapshot: QuerySnapshot | None = None) -> QueryUnit[R]:
        previous = self._queries.get(key)
        if previous is not None:
            self.discard(key)
        unit: QueryUnit[R] = QueryUnit(
            self._query,
            self._config,
            initial_state=snapshot,
            on_persist=lambda state, key=key: self._update_cache(key, state),
        )
        self._queries[key] = unit
        self._unit_unsubscribers[key] = unit.subscribe(
            lambda change, key=key: self._on_unit_change(key, change),
        )
        return unit

    def _set_current(self, key: str) -> None:
        if key != self._current_key:
            self._current_key = key
            self._sync()

    def _on_unit_change(self, key: str, _change: StateChange) -> None:
        if key == self._current_key:
            self._sync()

    def _sync(self) -> None:
        unit = self._queries.get(self._current_key)
        if unit is None:
            self.state.update(loading=False, data=None, error=None, params=None)
            return
        self.state.update(
            loading=unit.loading,
            data=unit.data,
            error=unit.error,
            params=unit.params,
        )

    def _unmount_all(self) -> None:
        for key in list(self._queries):
            self.discard(key)

    def _restore_from_cache(self) -> None:
        cache_key = self._config.cache_key
        if not cache_key:
            return
        entry = self._cache.get(cache_key)
        if entry is None or not entry.queries:
            return
        for key, snapshot in entry.queries.items():
            self._add_unit(key, snapshot)
        self._current_key = entry.latest_queries_key
        _logger.debug("Restored %d queries from cache key=%s", len(entry.queries), cache_key)

    def _update_cache(self, key: str, state: QueryState) -> None:
        cache_key = self._config.cache_key
        if not cache_key:
            return
        entry = self._cache.get(cache_key)
        queries = dict(entry.queries) if entry is not None else {}
        queries[key] = state.snapshot()
        self._cache.set(
            cache_key,
            queries=queries,
            latest_queries_key=key,
            ttl=self._config.cache_time,
        )

    def _initial_run(self) -> None:
        cache_key = self._config.cache_key
        entry = self._cache.get(cache_key) if cache_key else None
        stale_time = self._config.stale_time
        if entry is not None and (stale_time == -1 or entry.cache_time + stale_time > time.time()):
            _logger.debug("Cache key=%s is fresh; skipping initial run", cache_key)
            return

        if entry is not None and entry.queries:
            for unit in list(self._queries.values()):
                unit.refresh()
        else:
            self.run(*self._config.default_params)

    def _on_ready_change(self, ready: bool) -> None:
        if not ready:
            return
        self._ready_triggered = True
        if self._unsubscribe_ready is not None:
            self._unsubscribe_ready()
            self._unsubscribe_ready = None
        pending = self._pending_params
        self._pending_params = None
        if pending is not None:
            self.run(*pending)

    def _on_dep_change(self, _value: Any) -> None:
        if self._config.manual or self._disposed:
            return
        self.refresh()

    def __repr__(self) -> str:
        return f"QueryRegistry(current_key={self._current_key!r}, keys={list(self._queries)!r})"
