from __future__ import annotations

import asyncio
from typing import Any

import pytest

from pyrequery import (
    QUERY_DEFAULT_KEY,
    QueryRegistry,
    QueryUsageWarning,
    Signal,
    get_cache,
)


class _Recorder:
    """Async service recording every call."""

    def __init__(self) -> None:
        self.calls: list[tuple[Any, ...]] = []

    async def __call__(self, *args: Any) -> str:
        self.calls.append(args)
        return "-".join(str(a) for a in args) or "empty"


@pytest.mark.asyncio
async def test_initial_run_uses_default_params() -> None:
    service = _Recorder()
    registry = QueryRegistry(service, default_params=(1, "a"))
    await asyncio.sleep(0.01)

    assert service.calls == [(1, "a")]
    assert registry.data == "1-a"
    assert registry.params == (1, "a")
    assert registry.current_key == QUERY_DEFAULT_KEY
    registry.dispose()


@pytest.mark.asyncio
async def test_manual_suppresses_initial_run() -> None:
    service = _Recorder()
    with QueryRegistry(service, manual=True) as registry:
        await asyncio.sleep(0.01)
        assert service.calls == []
        assert registry.params is None
        assert registry.loading is False


@pytest.mark.asyncio
async def test_query_key_creates_unit_per_key_and_mirrors_current() -> None:
    gates = {"a": asyncio.Event(), "b": asyncio.Event()}

    async def fetch(user: str) -> str:
        await gates[user].wait()
        return f"profile:{user}"

    registry = QueryRegistry(fetch, manual=True, query_key=lambda user: user)
    task_a = registry.run("a")
    task_b = registry.run("b")
    assert set(registry.queries) == {QUERY_DEFAULT_KEY, "a", "b"}
    assert registry.current_key == "b"
    assert registry.params == ("b",)

    # Different keys run independently: resolving "a" does not touch the view.
    gates["a"].set()
    assert await task_a == "profile:a"
    assert registry.data is None
    assert registry.loading is True
    assert registry.queries["a"].data == "profile:a"

    gates["b"].set()
    await task_b
    assert registry.data == "profile:b"

    # Switching back re-mirrors the whole state of the other unit at once.
    seen: list[tuple[Any, ...]] = []
    registry.subscribe(lambda _change: seen.append((registry.data, registry.params, registry.loading)))
    gates["a"].clear()
    registry.run("a")
    assert seen[0] == ("profile:a", ("a",), False)
    registry.dispose()
    gates["a"].set()
    await asyncio.sleep(0.01)


@pytest.mark.asyncio
async def test_cancel_refresh_mutate_target_current_unit() -> None:
    service = _Recorder()
    registry = QueryRegistry(service, manual=True, query_key=lambda key: key)
    await registry.run("x")
    await registry.run("y")

    registry.mutate("patched")
    assert registry.data == "patched"
    assert registry.queries["x"].data == "x"

    await registry.refresh()
    assert service.calls[-1] == ("y",)
    assert registry.data == "y"

    gate = asyncio.Event()

    async def slow(*_args: Any) -> None:
        await gate.wait()

    registry.queries["y"]._query = slow  # noqa: SLF001
    registry.refresh()
    assert registry.loading is True
    registry.cancel()
    assert registry.loading is False
    assert registry.data == "y"
    gate.set()
    registry.dispose()


@pytest.mark.asyncio
async def test_reset_leaves_only_a_blank_default_unit() -> None:
    service = _Recorder()
    registry = QueryRegistry(service, manual=True, query_key=lambda key: key)
    await registry.run("a")
    await registry.run("b")
    old_units = list(registry.queries.values())

    registry.reset()

    assert list(registry.queries) == [QUERY_DEFAULT_KEY]
    assert registry.current_key == QUERY_DEFAULT_KEY
    assert registry.data is None
    assert registry.error is None
    assert registry.loading is False
    assert all(unit.unmounted for unit in old_units)


@pytest.mark.asyncio
async def test_ready_gating_replays_stored_arguments_once() -> None:
    service = _Recorder()
    ready = Signal(False)
    registry = QueryRegistry(service, manual=True, ready=ready)

    assert await registry.run(5) is None
    await asyncio.sleep(0.01)
    assert service.calls == []

    ready.set(True)
    await asyncio.sleep(0.01)
    assert service.calls == [(5,)]

    ready.set(False)
    ready.set(True)
    await asyncio.sleep(0.01)
    assert service.calls == [(5,)]

    # Once ready has been true the gate stays open.
    ready.set(False)
    await registry.run(6)
    assert service.calls == [(5,), (6,)]
    registry.dispose()


@pytest.mark.asyncio
async def test_ready_gating_defers_initial_run() -> None:
    service = _Recorder()
    ready = Signal(False)
    registry = QueryRegistry(service, ready=ready, default_params=("init",))
    await asyncio.sleep(0.01)
    assert service.calls == []

    ready.set(True)
    await asyncio.sleep(0.01)
    assert service.calls == [("init",)]
    registry.dispose()


@pytest.mark.asyncio
async def test_refresh_deps_trigger_refresh_unless_manual() -> None:
    service = _Recorder()
    dep = Signal(1)
    registry = QueryRegistry(service, default_params=("q",), refresh_deps=[dep])
    await asyncio.sleep(0.01)

    dep.set(2)
    await asyncio.sleep(0.01)
    assert service.calls == [("q",), ("q",)]
    registry.dispose()

    manual_service = _Recorder()
    manual_dep = Signal("a")
    manual = QueryRegistry(manual_service, manual=True, refresh_deps=[manual_dep])
    await manual.run("m")
    manual_dep.set("b")
    await asyncio.sleep(0.01)
    assert manual_service.calls == [("m",)]
    manual.dispose()


@pytest.mark.asyncio
async def test_cache_rehydrates_units_and_current_key() -> None:
    service = _Recorder()
    first = QueryRegistry(service, manual=True, cache_key="users", query_key=lambda user: user)
    await first.run("ann")
    await first.run("bob")
    first.dispose()

    entry = get_cache("users")
    assert entry is not None
    assert entry.latest_queries_key == "bob"
    assert set(entry.queries) == {"ann", "bob"}

    second = QueryRegistry(service, manual=True, cache_key="users", query_key=lambda user: user)
    assert second.current_key == "bob"
    assert second.data == "bob"
    assert second.params == ("bob",)
    assert second.queries["ann"].data == "ann"
    second.dispose()


@pytest.mark.asyncio
async def test_fresh_cache_skips_initial_run() -> None:
    service = _Recorder()
    first = QueryRegistry(service, cache_key="feed", default_params=("p",))
    await asyncio.sleep(0.01)
    first.dispose()

    second = QueryRegistry(service, cache_key="feed", stale_time=-1, default_params=("p",))
    await asyncio.sleep(0.01)

    assert service.calls == [("p",)]
    assert second.data == "p"
    second.dispose()


@pytest.mark.asyncio
async def test_stale_cache_refreshes_every_cached_unit() -> None:
    service = _Recorder()
    first = QueryRegistry(service, manual=True, cache_key="stale", query_key=lambda key: key)
    await first.run("a")
    await first.run("b")
    first.dispose()
    service.calls.clear()

    second = QueryRegistry(service, cache_key="stale", stale_time=0, query_key=lambda key: key)
    await asyncio.sleep(0.01)

    assert sorted(service.calls) == [("a",), ("b",)]
    assert second.current_key == "b"
    second.dispose()


@pytest.mark.asyncio
async def test_cache_entry_evicted_after_cache_time() -> None:
    service = _Recorder()
    first = QueryRegistry(service, cache_key="short", cache_time=0.05, default_params=("v",))
    await asyncio.sleep(0.01)
    assert get_cache("short") is not None
    first.dispose()

    await asyncio.sleep(0.1)
    assert get_cache("short") is None

    second = QueryRegistry(service, manual=True, cache_key="short")
    assert list(second.queries) == [QUERY_DEFAULT_KEY]
    assert second.data is None
    second.dispose()


@pytest.mark.asyncio
async def test_failures_are_persisted_to_cache() -> None:
    async def fetch() -> None:
        raise LookupError("missing")

    registry = QueryRegistry(fetch, cache_key="errors")
    await asyncio.sleep(0.01)

    entry = get_cache("errors")
    assert entry is not None
    assert isinstance(entry.queries[QUERY_DEFAULT_KEY].error, LookupError)
    assert isinstance(registry.error, LookupError)
    registry.dispose()


@pytest.mark.asyncio
async def test_dispose_cancels_and_unmounts_units() -> None:
    gate = asyncio.Event()

    async def fetch() -> str:
        await gate.wait()
        return "late"

    registry = QueryRegistry(fetch)
    unit = registry.queries[QUERY_DEFAULT_KEY]
    assert unit.loading is True

    registry.dispose()
    assert unit.unmounted
    assert unit.loading is False
    gate.set()
    await asyncio.sleep(0.01)
    assert unit.data is None


def test_non_callable_query_warns() -> None:
    with pytest.warns(QueryUsageWarning):
        registry = QueryRegistry(42, manual=True)
    registry.dispose()


def test_unknown_option_warns_and_is_ignored() -> None:
    with pytest.warns(QueryUsageWarning, match="polling_intervall"):
        registry = QueryRegistry(_Recorder(), manual=True, polling_intervall=5)
    assert registry.config.polling_interval is None
    registry.dispose()
