"""pyrequery - Async query execution, caching and pagination engine."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pyrequery")
except PackageNotFoundError:
    __version__ = "0+local"
from pyrequery._cache import CacheEntry, CacheStore, clear_cache, get_cache, get_cache_store, set_cache
from pyrequery.config import (
    QueryConfig,
    clear_global_options,
    get_global_options,
    resolve_config,
    set_global_options,
    set_global_options_from_env,
)
from pyrequery.environment import Environment, ManualEnvironment, default_environment
from pyrequery.exceptions import (
    QueryConfigError,
    QueryError,
    QueryTransportError,
    QueryUsageWarning,
)
from pyrequery.load_more import LoadMore, PageContext
from pyrequery.query import QueryUnit
from pyrequery.registry import QUERY_DEFAULT_KEY, QueryRegistry
from pyrequery.service import ServiceParams, default_request, generate_service
from pyrequery.state import QuerySnapshot, QueryState, Signal, StateChange, StateField

__all__ = [
    "__version__",
    "QUERY_DEFAULT_KEY",
    "CacheEntry",
    "CacheStore",
    "Environment",
    "LoadMore",
    "ManualEnvironment",
    "PageContext",
    "QueryConfig",
    "QueryConfigError",
    "QueryError",
    "QueryRegistry",
    "QuerySnapshot",
    "QueryState",
    "QueryTransportError",
    "QueryUnit",
    "QueryUsageWarning",
    "ServiceParams",
    "Signal",
    "StateChange",
    "StateField",
    "clear_cache",
    "clear_global_options",
    "default_environment",
    "default_request",
    "generate_service",
    "get_cache",
    "get_cache_store",
    "get_global_options",
    "resolve_config",
    "set_cache",
    "set_global_options",
    "set_global_options_from_env",
]
