"""Adapt user services into awaitable query callables.

A service is one of:

* an async callable returning the result,
* a sync callable returning the result directly,
* a callable returning *service params* (a URL string or a request mapping),
* service params themselves.

Service params are executed through a request method; the built-in one uses
aiohttp and decodes a JSON body.
"""

from __future__ import annotations

import inspect
import json
import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

import aiohttp

from pyrequery.exceptions import QueryConfigError, QueryTransportError

_logger = logging.getLogger(__name__)

ServiceParams = str | Mapping[str, Any]
RequestMethod = Callable[[ServiceParams], Any]
Query = Callable[..., Awaitable[Any]]


def _split_params(params: ServiceParams) -> tuple[str, str, dict[str, Any]]:
    if isinstance(params, str):
        return "GET", params, {}
    request = dict(params)
    url = request.pop("url", None)
    if not isinstance(url, str) or not url:
        raise QueryConfigError("Service params mapping requires a non-empty 'url'")
    method = str(request.pop("method", "GET")).upper()
    return method, url, request


async def default_request(params: ServiceParams) -> Any:
    """Perform the request described by *params* and return the decoded JSON body.

    Mapping params accept ``url``, ``method`` and any keyword understood by
    :meth:`aiohttp.ClientSession.request` (``params``, ``json``, ``headers``...).
    """
    method, url, request_kwargs = _split_params(params)
    _logger.debug("%s %s", method, url)

    try:
        async with aiohttp.ClientSession() as session:
            async with session.request(method, url, **request_kwargs) as resp:
                text = await resp.text()
                if resp.status >= 400:
                    raise QueryTransportError(
                        f"HTTP {resp.status} from {url}: {text[:200]}",
                        status_code=resp.status,
                        url=url,
                    )
    except QueryTransportError:
        raise
    except aiohttp.ClientError as exc:
        raise QueryTransportError(f"Request to {url} failed: {exc}", url=url) from exc

    if not text.strip():
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise QueryTransportError(f"Invalid JSON from {url}: {text[:200]}", url=url) from exc


def _is_service_params(value: Any) -> bool:
    return isinstance(value, (str, Mapping))


async def _resolve(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


def generate_service(service: Any, *, request_method: RequestMethod | None = None) -> Query:
    """Wrap *service* into an async query callable."""
    request = request_method or default_request

    if _is_service_params(service):

        async def _fixed_query(*_args: Any) -> Any:
            return await _resolve(request(service))

        return _fixed_query

    async def _query(*args: Any) -> Any:
        if not callable(service):
            raise QueryConfigError(f"Unknown service type: {type(service).__name__}")
        result = service(*args)
        if inspect.isawaitable(result):
            return await result
        if _is_service_params(result):
            return await _resolve(request(result))
        raise QueryConfigError(f"Unknown service result type: {type(result).__name__}")

    return _query
