"""Custom exceptions for the AMM history pipeline.

Ledger, cache and pipeline exceptions live here to avoid circular imports
between modules. "No pool found" is not an exception: discovery returns None.
"""


class AmmTrailError(Exception):
    """Base exception for all pipeline errors."""


class NodeRequestError(AmmTrailError):
    """Raised when a single request to a ledger node times out, fails at the
    socket level, or returns a malformed response."""

    def __init__(self, endpoint: str, message: str) -> None:
        super().__init__(f"{endpoint}: {message}")
        self.endpoint = endpoint


class HistoryUnavailableError(AmmTrailError):
    """Raised when every configured endpoint failed before returning a page."""


class StorageQuotaExceeded(AmmTrailError):
    """Raised by a storage backend when a write would exceed its quota."""
