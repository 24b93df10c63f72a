"""Exception hierarchy for dukafeed.

Every error raised deliberately by the feed derives from DukafeedError, so a
caller can catch the whole family in one place.  Network and S3 failures that
are not handled by a retry policy surface as the underlying ``requests`` or
``botocore`` exceptions.
"""

from typing import Any, Dict


class DukafeedError(Exception):
    """Base exception for all feed errors.

    Args:
        message: What went wrong.
        **context: Extra key/value detail for logging (symbol, path, ...).
    """

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context: Dict[str, Any] = context

    def __str__(self) -> str:
        if self.context:
            ctx = ', '.join(f'{k}={v}' for k, v in self.context.items())
            return f"{super().__str__()} [{ctx}]"
        return super().__str__()


class InvalidRangeError(DukafeedError, ValueError):
    """Raised for an empty or reversed time range, or one that starts before
    the configured beginning of time.  Never retried."""


class DecodeCorruptionError(DukafeedError):
    """Raised when an hour file is truncated mid-record or its LZMA payload
    cannot be decompressed.  The owning stream is unusable afterwards."""


class ValidationFailure(DukafeedError, ValueError):
    """Raised when a Tick or Bar breaks a constraint, or when an aggregator is
    handed data that does not belong to it."""


class ServerBusyError(DukafeedError):
    """Raised by the direct fetcher once the provider is still busy after
    every retry attempt."""


class CachePersistenceError(DukafeedError):
    """Raised when a cache tier cannot persist data it was asked to save."""
