"""Observable state layer.

Query units own a :class:`QueryState`; registries mirror the current unit's
state into their own :class:`QueryState`. Every mutation is announced to
subscribers as one :class:`StateChange`.
"""

from pyrequery.state.events import StateChange, StateField
from pyrequery.state.observable import QuerySnapshot, QueryState, Signal

__all__ = [
    "QuerySnapshot",
    "QueryState",
    "Signal",
    "StateChange",
    "StateField",
]
