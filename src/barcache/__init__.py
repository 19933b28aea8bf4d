"""Cached retrieval of adjusted daily price bars."""

from barcache.exceptions import (BarCacheError, NoDataError,
                                 SourceUnavailableError)
from barcache.memo import MemoCache
from barcache.types import Bar, DateRange, Instrument

__version__ = "0.1.0"

__all__ = [
    "__version__",
    "Bar",
    "BarCacheError",
    "DateRange",
    "Instrument",
    "MemoCache",
    "NoDataError",
    "SourceUnavailableError",
]
