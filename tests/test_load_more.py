from __future__ import annotations

import asyncio
from typing import Any

import pytest

from pyrequery import QUERY_DEFAULT_KEY, LoadMore, PageContext, QueryUsageWarning

_PAGES: list[dict[str, Any]] = [
    {"list": [1, 2], "more": True},
    {"list": [3, 4], "more": True},
    {"list": [5, 6], "more": False},
]


class _PagedService:
    def __init__(self) -> None:
        self.calls: list[tuple[PageContext[Any] | None, str]] = []

    async def __call__(self, page: PageContext[Any] | None = None, category: str = "all") -> dict[str, Any]:
        self.calls.append((page, category))
        index = 0 if page is None else len(page.data_list) // 2
        return _PAGES[index]


def _feed(service: _PagedService, **options: Any) -> LoadMore[dict[str, Any]]:
    return LoadMore(
        service,
        manual=True,
        is_no_more=lambda data: data is not None and not data["more"],
        **options,
    )


@pytest.mark.asyncio
async def test_load_more_accumulates_pages_in_order() -> None:
    service = _PagedService()
    feed = _feed(service)
    await feed.run(None, "news")
    assert feed.data_list == [1, 2]
    assert feed.no_more is False

    await feed.load_more()
    assert feed.data_list == [1, 2, 3, 4]
    assert feed.data == _PAGES[1]

    page, category = service.calls[1]
    assert category == "news"
    assert page is not None
    assert page.data == _PAGES[0]
    assert page.data_list == [1, 2]
    feed.dispose()


@pytest.mark.asyncio
async def test_load_more_stops_when_no_more() -> None:
    service = _PagedService()
    feed = _feed(service)
    await feed.run(None, "news")
    await feed.load_more()
    await feed.load_more()

    assert feed.no_more is True
    assert feed.data_list == [1, 2, 3, 4, 5, 6]
    assert feed.load_more() is None
    assert len(service.calls) == 3
    feed.dispose()


@pytest.mark.asyncio
async def test_counter_advances_only_on_success() -> None:
    failures = 1

    async def flaky(page: PageContext[Any] | None = None) -> dict[str, Any]:
        nonlocal failures
        if page is not None and failures:
            failures -= 1
            raise RuntimeError("page failed")
        return {"list": ["x"] if page is None else ["y"]}

    feed: LoadMore[dict[str, Any]] = LoadMore(flaky, manual=True)
    await feed.run(None)
    await feed.load_more()
    assert feed.loading_more is False
    assert isinstance(feed.error, RuntimeError)
    assert "1" in feed.queries

    # The failed page is retried under the same key.
    await feed.load_more()
    assert sorted(k for k in feed.queries if k != QUERY_DEFAULT_KEY) == ["0", "1"]
    assert feed.data_list == ["x", "y"]
    feed.dispose()


@pytest.mark.asyncio
async def test_refresh_collapses_to_first_page() -> None:
    service = _PagedService()
    feed = _feed(service)
    await feed.run(None, "news")
    await feed.load_more()
    await feed.load_more()
    assert sorted(k for k in feed.queries if k != QUERY_DEFAULT_KEY) == ["0", "1", "2"]
    discarded = [feed.queries["1"], feed.queries["2"]]

    await feed.refresh()

    assert list(feed.queries) == ["0"]
    assert feed.params == (None, "news")
    assert feed.data_list == [1, 2]
    assert feed.refreshing is False
    assert service.calls[-1] == (None, "news")
    assert all(unit.unmounted for unit in discarded)

    # Loading continues from the collapsed state.
    await feed.load_more()
    assert feed.data_list == [1, 2, 3, 4]
    feed.dispose()


@pytest.mark.asyncio
async def test_reload_starts_from_scratch() -> None:
    service = _PagedService()
    feed = _feed(service)
    await feed.run(None, "news")
    await feed.load_more()

    await feed.reload()

    assert feed.reloading is False
    assert feed.data_list == [1, 2]
    assert feed.data == _PAGES[0]
    assert sorted(feed.queries) == sorted([QUERY_DEFAULT_KEY, "0"])
    assert service.calls[-1] == (None, "news")
    feed.dispose()


@pytest.mark.asyncio
async def test_cancel_clears_loading_flags() -> None:
    gate = asyncio.Event()

    async def slow(page: PageContext[Any] | None = None) -> dict[str, Any]:
        if page is not None:
            await gate.wait()
        return {"list": [0]}

    feed: LoadMore[dict[str, Any]] = LoadMore(slow, manual=True)
    await feed.run(None)
    task = feed.load_more()
    assert task is not None
    assert feed.loading_more is True

    feed.cancel()
    assert feed.loading_more is False
    assert feed.refreshing is False
    assert feed.loading is False

    gate.set()
    assert await task is None
    assert feed.data_list == [0]
    feed.dispose()


@pytest.mark.asyncio
async def test_list_key_resolves_nested_path() -> None:
    async def fetch(page: PageContext[Any] | None = None) -> dict[str, Any]:
        return {"result": {"items": ["a"] if page is None else ["b", "c"]}}

    feed: LoadMore[dict[str, Any]] = LoadMore(fetch, manual=True, list_key="result.items")
    await feed.run(None)
    await feed.load_more()
    assert feed.data_list == ["a", "b", "c"]
    feed.dispose()


@pytest.mark.asyncio
async def test_non_list_pages_contribute_nothing() -> None:
    async def fetch(page: PageContext[Any] | None = None) -> dict[str, Any]:
        return {"list": "oops"} if page is None else {"list": [7]}

    feed: LoadMore[dict[str, Any]] = LoadMore(fetch, manual=True)
    await feed.run(None)
    await feed.load_more()
    assert feed.data_list == [7]
    feed.dispose()


def test_query_key_is_rejected_with_warning() -> None:
    with pytest.warns(QueryUsageWarning, match="concurrent"):
        feed = LoadMore(_PagedService(), manual=True, query_key=lambda *_: "fixed")
    assert feed.registry.config.query_key is not None
    assert feed.registry.config.query_key() == "0"
    feed.dispose()


def test_non_callable_service_warns() -> None:
    with pytest.warns(QueryUsageWarning):
        feed = LoadMore("https://example.invalid/items", manual=True)  # type: ignore[arg-type]
    feed.dispose()
