"""Query configuration and layered option resolution for pyrequery."""

from __future__ import annotations

import dataclasses
import os
import warnings
from collections.abc import Awaitable, Callable, Mapping, Sequence
from typing import Any

from pyrequery.environment import Environment, default_environment
from pyrequery.exceptions import QueryConfigError, QueryUsageWarning
from pyrequery.state.observable import Signal


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


@dataclasses.dataclass(frozen=True)
class QueryConfig:
    """Resolved options of one registry and all of its query units.

    All durations are in seconds.

    Parameters
    ----------
    cache_key : str or None
        Enables persistence and rehydration under this key.
    cache_time : float
        Seconds after the last write until the cache entry is evicted.
        ``<= 0`` keeps entries forever.
    stale_time : float
        Seconds a cache entry is considered fresh. ``-1`` means never stale.
    manual : bool
        Suppress the automatic initial run and dependency refreshes.
    ready : bool or Signal
        Gate execution until the value becomes true.
    default_params : tuple
        Arguments for the automatic initial run.
    refresh_deps : tuple of Signal
        Signals whose change refreshes the current query.
    loading_delay : float
        Delay before ``loading=True`` is exposed.
    polling_interval : float or None
        Re-run interval after each settled attempt. ``None`` disables polling.
    polling_when_hidden / polling_when_offline : bool
        Whether a poll executes while the environment is hidden/offline.
    refresh_on_window_focus : bool
        Refresh on environment focus events.
    refocus_timespan : float
        Minimum spacing between focus refreshes.
    error_retry_count : int
        Retries after a failure. ``-1`` retries forever.
    error_retry_interval : float
        Flat delay between retries; ``0`` uses randomised exponential backoff.
    query_key : callable or None
        Derives the registry sub-key from run arguments.
    initial_data
        Data of freshly created units.
    format_result : callable or None
        Maps a raw result to the committed ``data``.
    on_before / on_after / on_success / on_error : callable or None
        Lifecycle callbacks.
    list_key : str
        Dotted path of the page list for :class:`~pyrequery.load_more.LoadMore`.
    is_no_more : callable or None
        Predicate on the latest page telling the accumulation layer to stop.
    environment : Environment
        Visibility, connectivity and focus source.
    request_method : callable or None
        Executes service params (URL string or request mapping).
    """

    cache_key: str | None = None
    cache_time: float = 600.0
    stale_time: float = 0.0
    manual: bool = False
    ready: bool | Signal[bool] = True
    default_params: tuple[Any, ...] = ()
    refresh_deps: tuple[Signal[Any], ...] = ()
    loading_delay: float = 0.0
    polling_interval: float | None = None
    polling_when_hidden: bool = False
    polling_when_offline: bool = False
    refresh_on_window_focus: bool = False
    refocus_timespan: float = 5.0
    error_retry_count: int = 0
    error_retry_interval: float = 0.0
    query_key: Callable[..., str] | None = None
    initial_data: Any = None
    format_result: Callable[[Any], Any] | None = None
    on_before: Callable[[tuple[Any, ...]], None] | None = None
    on_after: Callable[[tuple[Any, ...]], None] | None = None
    on_success: Callable[[Any, tuple[Any, ...]], None] | None = None
    on_error: Callable[[BaseException, tuple[Any, ...]], None] | None = None
    list_key: str = "list"
    is_no_more: Callable[[Any], bool] | None = None
    environment: Environment = dataclasses.field(default_factory=default_environment)
    request_method: Callable[[Any], Awaitable[Any]] | None = None

    def __post_init__(self) -> None:
        if self.stale_time < 0 and self.stale_time != -1:
            raise QueryConfigError(f"stale_time must be >= 0 or -1, got {self.stale_time!r}")
        if self.error_retry_count < -1:
            raise QueryConfigError(f"error_retry_count must be >= -1, got {self.error_retry_count!r}")
        for name in ("loading_delay", "error_retry_interval", "refocus_timespan"):
            if getattr(self, name) < 0:
                raise QueryConfigError(f"{name} must be >= 0, got {getattr(self, name)!r}")

    @property
    def polling_enabled(self) -> bool:
        return self.polling_interval is not None and self.polling_interval > 0

    @classmethod
    def from_env(cls, **overrides: Any) -> QueryConfig:
        """Create configuration from ``PYREQUERY_*`` environment variables.

        Explicit keyword arguments override environment values.
        """
        config_kwargs = {name: value for name, value in _env_options().items() if name not in overrides}
        config_kwargs.update(_normalize(overrides))
        return cls(**config_kwargs)


_ENV_FLOAT_MAP = {
    "PYREQUERY_CACHE_TIME": "cache_time",
    "PYREQUERY_STALE_TIME": "stale_time",
    "PYREQUERY_LOADING_DELAY": "loading_delay",
    "PYREQUERY_POLLING_INTERVAL": "polling_interval",
    "PYREQUERY_REFOCUS_TIMESPAN": "refocus_timespan",
    "PYREQUERY_ERROR_RETRY_INTERVAL": "error_retry_interval",
}

_ENV_BOOL_MAP = {
    "PYREQUERY_MANUAL": "manual",
    "PYREQUERY_POLLING_WHEN_HIDDEN": "polling_when_hidden",
    "PYREQUERY_POLLING_WHEN_OFFLINE": "polling_when_offline",
    "PYREQUERY_REFRESH_ON_WINDOW_FOCUS": "refresh_on_window_focus",
}


def _env_options() -> dict[str, Any]:
    """Collect the options set through ``PYREQUERY_*`` environment variables."""
    env = os.environ
    options: dict[str, Any] = {}

    for env_key, field_name in _ENV_FLOAT_MAP.items():
        val = env.get(env_key)
        if val is not None:
            try:
                options[field_name] = float(val)
            except ValueError as exc:
                raise QueryConfigError(f"{env_key} is not a number: {val!r}") from exc

    retry_env = env.get("PYREQUERY_ERROR_RETRY_COUNT")
    if retry_env is not None:
        try:
            options["error_retry_count"] = int(retry_env)
        except ValueError as exc:
            raise QueryConfigError(f"PYREQUERY_ERROR_RETRY_COUNT is not an integer: {retry_env!r}") from exc

    for env_key, field_name in _ENV_BOOL_MAP.items():
        val = env.get(env_key)
        if val is not None:
            options[field_name] = _env_bool(val, getattr(QueryConfig, field_name))

    list_key = env.get("PYREQUERY_LIST_KEY")
    if list_key is not None:
        options["list_key"] = list_key
    return options


_FIELD_NAMES: frozenset[str] = frozenset(f.name for f in dataclasses.fields(QueryConfig))

# Process-wide defaults, lowest-precedence layer above the dataclass defaults.
_GLOBAL_OPTIONS: dict[str, Any] = {}


def _check_names(options: Mapping[str, Any], origin: str) -> dict[str, Any]:
    accepted: dict[str, Any] = {}
    for name, value in options.items():
        if name not in _FIELD_NAMES:
            warnings.warn(
                f"Unknown {origin} option {name!r} ignored",
                QueryUsageWarning,
                stacklevel=4,
            )
            continue
        accepted[name] = value
    return accepted


def _normalize(options: Mapping[str, Any]) -> dict[str, Any]:
    normalized = dict(options)
    if "default_params" in normalized:
        params = normalized["default_params"]
        if params is None:
            normalized["default_params"] = ()
        elif isinstance(params, (str, bytes, Mapping)) or not isinstance(params, Sequence):
            normalized["default_params"] = (params,)
        else:
            normalized["default_params"] = tuple(params)
    if "refresh_deps" in normalized:
        deps = normalized["refresh_deps"]
        normalized["refresh_deps"] = tuple(deps) if deps else ()
    if normalized.get("environment") is None:
        normalized.pop("environment", None)
    return normalized


def set_global_options(**options: Any) -> None:
    """Set process-wide default options (merged into every resolution)."""
    _GLOBAL_OPTIONS.update(_check_names(options, "global"))


def set_global_options_from_env(**overrides: Any) -> None:
    """Load process-wide default options from ``PYREQUERY_*`` environment variables.

    Keyword arguments take precedence over the environment values.
    """
    options = _env_options()
    options.update(overrides)
    set_global_options(**options)


def get_global_options() -> dict[str, Any]:
    return dict(_GLOBAL_OPTIONS)


def clear_global_options() -> None:
    _GLOBAL_OPTIONS.clear()


def resolve_config(
    options: Mapping[str, Any] | None = None,
    *,
    scoped: Mapping[str, Any] | QueryConfig | None = None,
) -> QueryConfig:
    """Merge option layers into a :class:`QueryConfig`.

    Precedence: explicit *options* > *scoped* > process-wide global options >
    dataclass defaults. A scoped :class:`QueryConfig` overrides every
    global option, including fields left at their default value.
    """
    if isinstance(scoped, QueryConfig):
        scoped_options = {f.name: getattr(scoped, f.name) for f in dataclasses.fields(QueryConfig)}
    else:
        scoped_options = _check_names(scoped or {}, "scoped")

    merged: dict[str, Any] = {}
    merged.update(_GLOBAL_OPTIONS)
    merged.update(scoped_options)
    merged.update(_check_names(options or {}, "query"))
    return QueryConfig(**_normalize(merged))
