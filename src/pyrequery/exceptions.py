"""Custom exception hierarchy for pyrequery."""

from __future__ import annotations


class QueryError(Exception):
    """Base exception for all pyrequery errors."""


class QueryConfigError(QueryError):
    """Invalid option value or unusable service."""


class QueryTransportError(QueryError):
    """HTTP-level failure of the built-in request method (network, status, invalid JSON)."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        url: str = "",
    ) -> None:
        self.status_code = status_code
        self.url = url
        super().__init__(message)


class QueryUsageWarning(UserWarning):
    """Advisory report of configuration misuse.

    Issued through :func:`warnings.warn`; execution continues with the
    offending option ignored.
    """
