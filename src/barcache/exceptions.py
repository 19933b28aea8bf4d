"""Bar cache exception hierarchy.

All library exceptions derive from :class:`BarCacheError` so callers can
catch every retrieval failure uniformly.
"""

from __future__ import annotations


class BarCacheError(Exception):
    """Base class for bar cache exceptions.

    Derived exceptions should extend this class so that callers can catch all
    retrieval errors uniformly.
    """


class ConfigError(BarCacheError):
    """Raised when configuration files or parameters are invalid."""


class DataSourceError(BarCacheError):
    """Raised when a remote fetch fails.

    Connectivity failures, rate limiting and malformed responses are all
    reported with this type.
    """


class InvalidPayloadError(DataSourceError):
    """Raised when a payload parses but is empty, too short or mis-shaped."""


class StorageError(BarCacheError):
    """Raised when reading from or writing to the disk cache fails."""


class SourceUnavailableError(BarCacheError):
    """Raised when no tier (disk, network, stale disk) produced a payload."""


class NoDataError(BarCacheError):
    """Raised when the source was reachable but the range holds no bars."""


__all__ = [
    "BarCacheError",
    "ConfigError",
    "DataSourceError",
    "InvalidPayloadError",
    "StorageError",
    "SourceUnavailableError",
    "NoDataError",
]
