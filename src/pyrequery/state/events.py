"""Change notifications emitted by :class:`~pyrequery.state.observable.QueryState`."""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field


class StateField(StrEnum):
    LOADING = "loading"
    DATA = "data"
    ERROR = "error"
    PARAMS = "params"


class StateChange(BaseModel):
    """One state update, listing every field whose value changed."""

    model_config = ConfigDict(frozen=True)

    changed: frozenset[StateField] = Field(default_factory=frozenset)

    def touches(self, field: StateField) -> bool:
        return field in self.changed
