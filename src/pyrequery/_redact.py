"""Helpers for safe debug logging of query parameters.

Query params frequently carry credentials (tokens, API keys) for the
underlying service. Everything passed to DEBUG logs goes through
:func:`redact_params` first.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

_SENSITIVE_MARKERS: tuple[str, ...] = (
    "password",
    "passwd",
    "secret",
    "token",
    "apikey",
    "api_key",
    "authorization",
    "cookie",
    "credential",
)

_MAX_REPR = 200


def _is_sensitive(key: object) -> bool:
    lowered = str(key).lower().replace("-", "_")
    return any(marker in lowered for marker in _SENSITIVE_MARKERS)


def redact_value(value: Any, *, _depth: int = 0) -> Any:
    """Return a log-safe copy of *value* with sensitive mapping keys masked."""
    if _depth > 10:
        return "<max-depth>"
    if isinstance(value, Mapping):
        return {
            str(k): "<redacted>" if _is_sensitive(k) else redact_value(v, _depth=_depth + 1)
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [redact_value(v, _depth=_depth + 1) for v in value]
    if value is None or isinstance(value, (bool, int, float)):
        return value
    text = value if isinstance(value, str) else repr(value)
    if len(text) > _MAX_REPR:
        return f"{text[:_MAX_REPR]}…<truncated>"
    return text


def redact_params(params: tuple[Any, ...] | None) -> list[Any] | None:
    """Redact a positional parameter tuple for logging."""
    if params is None:
        return None
    return [redact_value(p) for p in params]
