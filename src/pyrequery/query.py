"""State machine for one parameterised, retryable, cancellable async operation."""

from __future__ import annotations

import asyncio
import inspect
import logging
import math
import random
import time
from collections.abc import Callable
from typing import Any, Generic, TypeVar

from pyrequery._redact import redact_params
from pyrequery.config import QueryConfig
from pyrequery.state.events import StateChange
from pyrequery.state.observable import QuerySnapshot, QueryState

_logger = logging.getLogger(__name__)

R = TypeVar("R")

Mutation = Callable[[Any], Any]


def _backoff_seconds(retried_count: int) -> float:
    """Randomised exponential backoff used when no retry interval is configured."""
    return float(math.floor(random.random() * 2 ** min(retried_count, 9) + 1))


class QueryUnit(Generic[R]):
    """Lifecycle of one logical request: ``idle -> loading -> success | error``.

    Every :meth:`run` starts a new attempt with a fresh generation number.
    Only the attempt whose generation is still the latest may commit state,
    so overlapping runs resolve as *last started wins*. :meth:`cancel` bumps
    the generation without starting a new attempt.

    Usage::

        unit = QueryUnit(fetch_user, QueryConfig(error_retry_count=2))
        user = await unit.run(42)
    """

    def __init__(
        self,
        query: Callable[..., Any],
        config: QueryConfig | None = None,
        *,
        initial_state: QuerySnapshot | None = None,
        on_persist: Callable[[QueryState], None] | None = None,
    ) -> None:
        self._query = query
        self._config = config or QueryConfig()
        self._on_persist = on_persist
        if initial_state is not None:
            self.state = QueryState.from_snapshot(initial_state)
        else:
            self.state = QueryState(data=self._config.initial_data)

        self._generation = 0
        self._retried_count = 0
        self._unmounted = False
        self._delay_handle: asyncio.TimerHandle | None = None
        self._retry_handle: asyncio.TimerHandle | None = None
        self._poll_handle: asyncio.TimerHandle | None = None
        self._tasks: set[asyncio.Task[R | None]] = set()
        self._last_focus_refresh: float | None = None
        self._unsubscribe_focus: Callable[[], None] | None = None
        if self._config.refresh_on_window_focus:
            self._unsubscribe_focus = self._config.environment.subscribe_focus(self._on_focus)

    # ------------------------------------------------------------------
    # State accessors
    # ------------------------------------------------------------------

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
    def generation(self) -> int:
        return self._generation

    @property
    def unmounted(self) -> bool:
        return self._unmounted

    def subscribe(self, listener: Callable[[StateChange], None]) -> Callable[[], None]:
        return self.state.subscribe(listener)

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def run(self, *args: Any) -> asyncio.Task[R | None]:
        """Start a new attempt with *args* and return its task.

        The task resolves to the committed result, or ``None`` when the
        attempt failed or was superseded. It never raises the callable's
        error; that is surfaced through :attr:`error` and ``on_error``.
        """
        self._retried_count = 0
        return self._start(args)

    def cancel(self) -> None:
        """Ignore the in-flight attempt and stop pending retry/poll timers."""
        self._generation += 1
        self._clear_timers()
        self.state.update(loading=False)

    def refresh(self) -> asyncio.Task[R | None] | None:
        """Re-run with the current params; no-op before the first run."""
        params = self.state.params
        if params is None:
            return None
        return self.run(*params)

    def mutate(self, value: Any) -> None:
        """Overwrite ``data`` with *value*, or with ``value(data)`` when callable."""
        data = value(self.state.data) if callable(value) else value
        self.state.update(data=data)
        self._persist()

    def unmount(self) -> None:
        """Disable timers and focus handling permanently."""
        self._unmounted = True
        self._clear_timers()
        if self._unsubscribe_focus is not None:
            self._unsubscribe_focus()
            self._unsubscribe_focus = None

    # ------------------------------------------------------------------
    # Attempt execution
    # ------------------------------------------------------------------

    def _start(self, args: tuple[Any, ...]) -> asyncio.Task[R | None]:
        loop = asyncio.get_running_loop()
        self._clear_timers()
        self._generation += 1
        generation = self._generation
        delay = self._config.loading_delay

        self.state.update(loading=not delay, params=tuple(args))
        if delay:
            self._delay_handle = loop.call_later(delay, self._show_loading, generation)

        _logger.debug("Query attempt=%d started params=%s", generation, redact_params(args))
        self._callback("on_before", args)

        task = loop.create_task(self._execute(generation, args))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _execute(self, generation: int, args: tuple[Any, ...]) -> R | None:
        try:
            result = self._query(*args)
            if inspect.isawaitable(result):
                result = await result
            if self._config.format_result is not None:
                result = self._config.format_result(result)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            if generation != self._generation:
                _logger.debug("Discarding failure of superseded attempt=%d", generation)
                return None
            self._fail(exc, args)
            return None

        if generation != self._generation:
            _logger.debug("Discarding result of superseded attempt=%d", generation)
            return None
        self._succeed(result, args)
        return result  # type: ignore[no-any-return]

    def _succeed(self, data: Any, args: tuple[Any, ...]) -> None:
        self._cancel_handle("_delay_handle")
        self._retried_count = 0
        self.state.update(data=data, error=None, loading=False)
        _logger.debug("Query attempt=%d succeeded", self._generation)
        self._callback("on_success", data, args)
        self._callback("on_after", args)
        self._persist()
        self._schedule_polling()

    def _fail(self, error: Exception, args: tuple[Any, ...]) -> None:
        self._cancel_handle("_delay_handle")
        self.state.update(error=error, loading=False)
        _logger.debug("Query attempt=%d failed: %r", self._generation, error)
        self._callback("on_error", error, args)
        self._callback("on_after", args)
        self._persist()
        if not self._schedule_retry():
            self._schedule_polling()

    def _show_loading(self, generation: int) -> None:
        self._delay_handle = None
        if generation == self._generation and not self._unmounted:
            self.state.update(loading=True)

    # ------------------------------------------------------------------
    # Retry / polling / focus timers
    # ------------------------------------------------------------------

    def _schedule_retry(self) -> bool:
        limit = self._config.error_retry_count
        if self._unmounted or limit == 0:
            return False
        if limit != -1 and self._retried_count >= limit:
            _logger.debug("Retry limit reached after %d retries", self._retried_count)
            return False

        interval = self._config.error_retry_interval or _backoff_seconds(self._retried_count)
        self._retried_count += 1
        _logger.debug("Retry %d scheduled in %.3fs", self._retried_count, interval)
        self._retry_handle = asyncio.get_running_loop().call_later(interval, self._on_retry)
        return True

    def _on_retry(self) -> None:
        self._retry_handle = None
        params = self.state.params
        if self._unmounted or params is None:
            return
        self._start(params)

    def _schedule_polling(self) -> None:
        if self._unmounted or not self._config.polling_enabled:
            return
        assert self._config.polling_interval is not None  # noqa: S101
        self._cancel_handle("_poll_handle")
        self._poll_handle = asyncio.get_running_loop().call_later(
            self._config.polling_interval,
            self._on_poll,
        )

    def _on_poll(self) -> None:
        self._poll_handle = None
        if self._unmounted:
            return
        environment = self._config.environment
        if (not self._config.polling_when_hidden and environment.is_hidden()) or (
            not self._config.polling_when_offline and environment.is_offline()
        ):
            _logger.debug("Poll skipped while hidden/offline; re-armed")
            self._schedule_polling()
            return
        self.refresh()

    def _on_focus(self) -> None:
        if self._unmounted:
            return
        now = time.monotonic()
        last = self._last_focus_refresh
        if last is not None and now - last < self._config.refocus_timespan:
            return
        self._last_focus_refresh = now
        self.refresh()

    def _clear_timers(self) -> None:
        self._cancel_handle("_delay_handle")
        self._cancel_handle("_retry_handle")
        self._cancel_handle("_poll_handle")

    def _cancel_handle(self, name: str) -> None:
        handle: asyncio.TimerHandle | None = getattr(self, name)
        if handle is not None:
            handle.cancel()
            setattr(self, name, None)

    # ------------------------------------------------------------------
    # Hooks
    # ------------------------------------------------------------------

    def _persist(self) -> None:
        if self._on_persist is None:
            return
        try:
            self._on_persist(self.state)
        except Exception:
            _logger.debug("cache persist failed", exc_info=True)

    def _callback(self, name: str, *args: Any) -> None:
        callback = getattr(self._config, name)
        if callback is None:
            return
        try:
            callback(*args)
        except Exception:
            _logger.debug("%s callback failed", name, exc_info=True)

    def __repr__(self) -> str:
        return f"QueryUnit(generation={self._generation}, state={self.state!r})"
