"""Visibility, connectivity and focus sources consulted by query units.

The engine never detects these conditions itself. A host (GUI shell,
service supervisor, test) feeds them through an :class:`Environment`.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Protocol

_logger = logging.getLogger(__name__)

FocusListener = Callable[[], None]


class Environment(Protocol):
    """Structural interface used by :class:`pyrequery.query.QueryUnit`."""

    def is_hidden(self) -> bool:
        ...

    def is_offline(self) -> bool:
        ...

    def subscribe_focus(self, listener: FocusListener) -> Callable[[], None]:
        ...


class ManualEnvironment:
    """Environment whose state is pushed in by the host application."""

    def __init__(self, *, hidden: bool = False, offline: bool = False) -> None:
        self._hidden = hidden
        self._offline = offline
        self._focus_listeners: list[FocusListener] = []

    def is_hidden(self) -> bool:
        return self._hidden

    def is_offline(self) -> bool:
        return self._offline

    def set_hidden(self, hidden: bool) -> None:
        self._hidden = hidden

    def set_offline(self, offline: bool) -> None:
        self._offline = offline

    def subscribe_focus(self, listener: FocusListener) -> Callable[[], None]:
        self._focus_listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._focus_listeners:
                self._focus_listeners.remove(listener)

        return _unsubscribe

    def notify_focus(self) -> None:
        """Dispatch a window-focus event to every subscriber."""
        for listener in list(self._focus_listeners):
            try:
                listener()
            except Exception:
                _logger.debug("focus listener failed", exc_info=True)


_DEFAULT_ENVIRONMENT = ManualEnvironment()


def default_environment() -> ManualEnvironment:
    """Return the process-wide environment used when none is configured."""
    return _DEFAULT_ENVIRONMENT
