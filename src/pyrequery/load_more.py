"""Pagination layer accumulating successive pages into one list."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import warnings
from collections.abc import Callable, Mapping
from typing import Any, Generic, TypeVar

from pyrequery._utils import get_path
from pyrequery.config import QueryConfig
from pyrequery.exceptions import QueryUsageWarning
from pyrequery.query import QueryUnit
from pyrequery.registry import QueryRegistry
from pyrequery.state.events import StateChange, StateField

_logger = logging.getLogger(__name__)

R = TypeVar("R")

_FIRST_PAGE_KEY = 0


@dataclasses.dataclass(frozen=True)
class PageContext(Generic[R]):
    """First argument passed to the service when loading the next page."""

    data: R | None
    data_list: list[Any]


class LoadMore(Generic[R]):
    """Accumulate pages fetched by ``service(page, *args)``.

    Each successful page advances an integer key counter, so every page
    lives in its own registry unit. ``page`` is ``None`` for the first page
    and a :class:`PageContext` for subsequent ones.

    Usage::

        async def fetch(page, category):
            cursor = page.data["next"] if page else None
            return await api.list(category, cursor=cursor)

        feed = LoadMore(fetch, default_params=(None, "news"), is_no_more=lambda d: not d["next"])
        await feed.load_more()
        feed.data_list
    """

    def __init__(
        self,
        service: Callable[..., Any],
        *,
        scoped: Mapping[str, Any] | QueryConfig | None = None,
        **options: Any,
    ) -> None:
        if not callable(service):
            warnings.warn("LoadMore only supports function services", QueryUsageWarning, stacklevel=2)
        if options.pop("query_key", None) is not None:
            warnings.warn("LoadMore does not support concurrent requests; query_key ignored", QueryUsageWarning, stacklevel=2)

        user_on_success = options.pop("on_success", None)
        user_on_error = options.pop("on_error", None)

        self.loading_more = False
        self.refreshing = False
        self.reloading = False
        self._counter = _FIRST_PAGE_KEY
        self._latest_data: R | None = None

        def _on_success(data: Any, params: tuple[Any, ...]) -> None:
            self.loading_more = False
            self._counter += 1
            if user_on_success is not None:
                user_on_success(data, params)

        def _on_error(error: BaseException, params: tuple[Any, ...]) -> None:
            self.loading_more = False
            if user_on_error is not None:
                user_on_error(error, params)

        self._registry: QueryRegistry[R] = QueryRegistry(
            service,
            scoped=scoped,
            on_success=_on_success,
            on_error=_on_error,
            query_key=lambda *_args: str(self._counter),
            **options,
        )
        self._list_key = self._registry.config.list_key
        self._is_no_more = self._registry.config.is_no_more
        self._registry.subscribe(self._on_state_change)
        self._capture_latest()

    # ------------------------------------------------------------------
    # Observable surface
    # ------------------------------------------------------------------

    @property
    def data(self) -> R | None:
        """Most recent non-``None`` page result."""
        return self._latest_data

    @property
    def data_list(self) -> list[Any]:
        """Concatenation of every page's list field, in page order."""
        merged: list[Any] = []
        for _key, unit in self._pages():
            page_list = get_path(unit.data, self._list_key)
            if isinstance(page_list, (list, tuple)):
                merged.extend(page_list)
        return merged

    @property
    def no_more(self) -> bool:
        if not callable(self._is_no_more):
            return False
        return bool(self._is_no_more(self._latest_data))

    @property
    def loading(self) -> bool:
        return self._registry.loading

    @property
    def error(self) -> BaseException | None:
        return self._registry.error

    @property
    def params(self) -> tuple[Any, ...] | None:
        return self._registry.params

    @property
    def queries(self) -> Mapping[str, QueryUnit[R]]:
        return self._registry.queries

    @property
    def registry(self) -> QueryRegistry[R]:
        return self._registry

    def subscribe(self, listener: Callable[[StateChange], None]) -> Callable[[], None]:
        return self._registry.subscribe(listener)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def run(self, *args: Any) -> asyncio.Future[R | None]:
        return self._registry.run(*args)

    def load_more(self) -> asyncio.Future[R | None] | None:
        """Fetch the next page unless ``is_no_more`` says the list is complete."""
        if self.no_more:
            return None
        self.loading_more = True
        _logger.debug("Loading page key=%d", self._counter)
        page = PageContext(data=self._latest_data, data_list=self.data_list)
        return self._registry.run(page, *self._trailing_params())

    async def refresh(self) -> None:
        """Re-fetch the first page and collapse the list onto it."""
        self.refreshing = True
        try:
            latest_key = max(self._counter - 1, _FIRST_PAGE_KEY)
            latest_unit = self._registry.queries.get(str(latest_key))
            if latest_unit is not None:
                self._latest_data = latest_unit.data
            trailing = self._trailing_params()
            _logger.debug("Refreshing %d pages", len(self._registry.queries))
            self._counter = _FIRST_PAGE_KEY
            await self._registry.run(None, *trailing)
            for key in list(self._registry.queries):
                if key != str(_FIRST_PAGE_KEY):
                    self._registry.discard(key)
        finally:
            self.refreshing = False

    async def reload(self) -> None:
        """Drop every page and fetch the first one from scratch."""
        self.reloading = True
        try:
            trailing = self._trailing_params()
            self._registry.reset()
            self._counter = _FIRST_PAGE_KEY
            self._latest_data = None
            await self._registry.run(None, *trailing)
        finally:
            self.reloading = False

    def reset(self) -> None:
        self._registry.reset()
        self._counter = _FIRST_PAGE_KEY
        self._latest_data = None

    def cancel(self) -> None:
        self._registry.cancel()
        self.loading_more = False
        self.refreshing = False

    def dispose(self) -> None:
        self._registry.dispose()

    def __enter__(self) -> LoadMore[R]:
        return self

    def __exit__(self, *exc: Any) -> None:
        self.dispose()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _pages(self) -> list[tuple[int, QueryUnit[R]]]:
        pages: list[tuple[int, QueryUnit[R]]] = []
        for key, unit in self._registry.queries.items():
            try:
                pages.append((int(key), unit))
            except ValueError:
                continue
        pages.sort(key=lambda item: item[0])
        return pages

    def _trailing_params(self) -> tuple[Any, ...]:
        params = self._registry.params or ()
        return tuple(params[1:])

    def _on_state_change(self, change: StateChange) -> None:
        if change.touches(StateField.DATA):
            self._capture_latest()

    def _capture_latest(self) -> None:
        data = self._registry.data
        if data is not None:
            self._latest_data = data
