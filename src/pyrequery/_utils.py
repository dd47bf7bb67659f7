"""Small shared helpers."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any


def get_path(value: Any, path: str, default: Any = None) -> Any:
    """Resolve a dotted *path* (``"data.items"``, ``"pages.0.list"``) against *value*.

    Each segment is looked up as a mapping key, a sequence index or an
    attribute, in that order. Missing segments yield *default*.
    """
    current = value
    for segment in path.split(".") if path else []:
        if current is None:
            return default
        if isinstance(current, Mapping):
            if segment not in current:
                return default
            current = current[segment]
        elif isinstance(current, Sequence) and not isinstance(current, (str, bytes)) and segment.isdigit():
            index = int(segment)
            if index >= len(current):
                return default
            current = current[index]
        elif hasattr(current, segment):
            current = getattr(current, segment)
        else:
            return default
    return current
