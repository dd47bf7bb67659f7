"""Explicit publish/subscribe state containers."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict

from pyrequery.state.events import StateChange, StateField

_logger = logging.getLogger(__name__)

T = TypeVar("T")

StateListener = Callable[[StateChange], None]

_UNSET: Any = object()


class QuerySnapshot(BaseModel):
    """Immutable copy of a query state, as stored in the cache."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    loading: bool = False
    data: Any = None
    error: BaseException | None = None
    params: tuple[Any, ...] | None = None


class QueryState:
    """Mutable ``{loading, data, error, params}`` record with change notification.

    ``params`` is ``None`` until the first run starts; afterwards it is the
    tuple of positional arguments of the most recently started run.
    """

    def __init__(
        self,
        *,
        loading: bool = False,
        data: Any = None,
        error: BaseException | None = None,
        params: tuple[Any, ...] | None = None,
    ) -> None:
        self._values: dict[StateField, Any] = {
            StateField.LOADING: loading,
            StateField.DATA: data,
            StateField.ERROR: error,
            StateField.PARAMS: params,
        }
        self._listeners: list[StateListener] = []

    @classmethod
    def from_snapshot(cls, snapshot: QuerySnapshot) -> QueryState:
        return cls(
            loading=snapshot.loading,
            data=snapshot.data,
            error=snapshot.error,
            params=snapshot.params,
        )

    @property
    def loading(self) -> bool:
        return bool(self._values[StateField.LOADING])

    @property
    def data(self) -> Any:
        return self._values[StateField.DATA]

    @property
    def error(self) -> BaseException | None:
        error: BaseException | None = self._values[StateField.ERROR]
        return error

    @property
    def params(self) -> tuple[Any, ...] | None:
        params: tuple[Any, ...] | None = self._values[StateField.PARAMS]
        return params

    def update(
        self,
        *,
        loading: bool = _UNSET,
        data: Any = _UNSET,
        error: BaseException | None = _UNSET,
        params: tuple[Any, ...] | None = _UNSET,
    ) -> StateChange | None:
        """Apply the given fields and notify listeners once.

        Fields are compared by identity first and equality second; an update
        that changes nothing emits no notification.
        """
        incoming = {
            StateField.LOADING: loading,
            StateField.DATA: data,
            StateField.ERROR: error,
            StateField.PARAMS: params,
        }
        changed: set[StateField] = set()
        for field, value in incoming.items():
            if value is _UNSET:
                continue
            current = self._values[field]
            if value is current:
                continue
            try:
                same = bool(value == current)
            except Exception:
                same = False
            # Data objects may compare equal while being distinct results.
            if same and field not in (StateField.DATA, StateField.ERROR):
                continue
            self._values[field] = value
            changed.add(field)

        if not changed:
            return None
        change = StateChange(changed=frozenset(changed))
        self._emit(change)
        return change

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Register *listener*; returns a callable that removes it."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def snapshot(self) -> QuerySnapshot:
        return QuerySnapshot(
            loading=self.loading,
            data=self.data,
            error=self.error,
            params=self.params,
        )

    def _emit(self, change: StateChange) -> None:
        for listener in list(self._listeners):
            try:
                listener(change)
            except Exception:
                _logger.debug("state listener failed", exc_info=True)

    def __repr__(self) -> str:
        return (
            f"QueryState(loading={self.loading!r}, data={self.data!r}, "
            f"error={self.error!r}, params={self.params!r})"
        )


class Signal(Generic[T]):
    """Observable single value used for ``ready`` and ``refresh_deps`` inputs.

    Listeners run synchronously inside :meth:`set` and only when the value
    actually changes.
    """

    def __init__(self, value: T) -> None:
        self._value = value
        self._listeners: list[Callable[[T], None]] = []

    @property
    def value(self) -> T:
        return self._value

    def set(self, value: T) -> None:
        if value is self._value or value == self._value:
            return
        self._value = value
        for listener in list(self._listeners):
            try:
                listener(value)
            except Exception:
                _logger.debug("signal listener failed", exc_info=True)

    def subscribe(self, listener: Callable[[T], None]) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def __repr__(self) -> str:
        return f"Signal({self._value!r})"
