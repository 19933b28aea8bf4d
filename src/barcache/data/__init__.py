"""Data retrieval, caching and normalization module."""

from barcache.data.normalize import BarNormalizer
from barcache.data.provider import BarProvider
from barcache.data.sources import (CSVDataSource, DataSource, YahooDataSource,
                                   resolve_data_source)
from barcache.data.store import TieredStore

__all__ = [
    "BarNormalizer",
    "BarProvider",
    "DataSource",
    "YahooDataSource",
    "CSVDataSource",
    "TieredStore",
    "resolve_data_source",
]
