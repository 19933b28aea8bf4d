"""Data source implementations for fetching raw price documents.

This module provides an abstract interface for remote data sources and
concrete implementations for Yahoo Finance and CSV files. Every source
returns a chart document (see :mod:`barcache.data.payload`) as raw text; the
tiered store decides whether and where to cache it.
"""

from __future__ import annotations

import csv
import json
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from barcache.data.payload import build_chart_document
from barcache.exceptions import ConfigError, DataSourceError
from barcache.types import DateRange, Symbol


class DataSource(ABC):
    """Abstract base class for data sources.

    All data source implementations must inherit from this class and implement
    the `fetch_prices` method.
    """

    #: Short identifier used to name disk cache files.
    name: str = "source"

    @abstractmethod
    def fetch_prices(self, symbol: Symbol, date_range: DateRange) -> str:
        """Fetch daily prices for a symbol.

        :param symbol: Symbol to fetch.
        :param date_range: Time range to fetch (inclusive start, exclusive end).
        :returns: Chart document text.
        :raises DataSourceError: If fetching fails.
        """
        ...

    def fetch_profile(self, symbol: Symbol) -> str:
        """Fetch descriptive data for a symbol.

        :param symbol: Symbol to describe.
        :returns: JSON text with at least a ``name`` key.
        :raises DataSourceError: If the source has no profile data.
        """
        raise DataSourceError(f"{self.name} source does not provide profiles")


class YahooDataSource(DataSource):
    """Data source that fetches daily data from Yahoo Finance via yfinance.

    Prices are requested unadjusted together with the adjusted close, so that
    the normalizer can apply split and dividend adjustments itself.

    :param source_params: Optional parameters for configuring the source.
        - timeout: Request timeout in seconds (default: 30)
    """

    name = "yahoo"

    def __init__(self, source_params: dict[str, Any] | None = None) -> None:
        """Initialize Yahoo data source.

        :param source_params: Optional configuration parameters.
        """
        self.params = source_params or {}
        self.timeout = self.params.get("timeout", 30)

    @staticmethod
    def convert_symbol(symbol: str) -> str:
        """Translate share-class notation to Yahoo's (``BRK.B`` -> ``BRK-B``)."""
        return symbol.replace(".", "-")

    def _ticker(self, symbol: Symbol) -> Any:
        try:
            import yfinance as yf
        except ImportError as e:
            raise DataSourceError(
                "yfinance is not installed. Install it with: pip install yfinance"
            ) from e
        return yf.Ticker(self.convert_symbol(str(symbol)))

    def fetch_prices(self, symbol: Symbol, date_range: DateRange) -> str:
        """Fetch daily prices from Yahoo Finance.

        :param symbol: Symbol to fetch.
        :param date_range: Time range to fetch.
        :returns: Chart document text.
        :raises DataSourceError: If fetching fails or returns no rows.
        """
        ticker = self._ticker(symbol)

        # yfinance uses strings for dates
        start_str = date_range.start.strftime("%Y-%m-%d")
        end_str = date_range.end.strftime("%Y-%m-%d")

        try:
            df = ticker.history(
                start=start_str,
                end=end_str,
                interval="1d",
                auto_adjust=False,
                actions=False,
                timeout=self.timeout,
            )
        except Exception as e:
            raise DataSourceError(
                f"Failed to fetch data for symbol '{symbol}': {e}"
            ) from e

        if df is None or df.empty:
            raise DataSourceError(f"No data returned for symbol '{symbol}'")

        timestamps = [int(ts.timestamp()) for ts in df.index]
        adjcloses = df["Adj Close"].tolist() if "Adj Close" in df.columns else None

        try:
            return build_chart_document(
                str(symbol),
                timestamps,
                df["Open"].tolist(),
                df["High"].tolist(),
                df["Low"].tolist(),
                df["Close"].tolist(),
                df["Volume"].tolist(),
                adjcloses,
            )
        except (KeyError, TypeError, ValueError) as e:
            raise DataSourceError(
                f"Unexpected response layout for symbol '{symbol}': {e}"
            ) from e

    def fetch_profile(self, symbol: Symbol) -> str:
        """Fetch the display name of a symbol from Yahoo Finance.

        :raises DataSourceError: If the lookup fails or carries no name.
        """
        ticker = self._ticker(symbol)
        try:
            info = ticker.info or {}
        except Exception as e:
            raise DataSourceError(
                f"Failed to fetch profile for symbol '{symbol}': {e}"
            ) from e

        name = info.get("longName") or info.get("shortName")
        if not name:
            raise DataSourceError(f"No profile name for symbol '{symbol}'")
        return json.dumps({"symbol": str(symbol), "name": name})


class CSVDataSource(DataSource):
    """Data source that reads daily prices from CSV files.

    Expected CSV format (default columns):
    - date: ISO format date or datetime string
    - open, high, low, close: Prices
    - volume: Trading volume
    - adj_close: Adjusted close (optional; raw close is used when absent)

    Unparseable numeric cells are written as ``null`` so that the normalizer
    can fill them from the previous bar.

    :param source_params: One of these is required:
        - directory: Folder holding one ``{symbol}.csv`` file per symbol.
        - file_path: Single CSV file with a symbol column.
        Optional parameters:
        - symbol_col: Column name for symbol (default: "symbol")
        - date_col: Column name for the date (default: "date")
        - open_col, high_col, low_col, close_col, volume_col, adj_close_col
        - delimiter: CSV delimiter (default: ",")
        - timestamp_format: strptime format for dates (default: ISO format)
        - timezone: Timezone of naive dates (default: "America/New_York")
        - names: Mapping of symbol to display name
    """

    name = "csv"

    def __init__(self, source_params: dict[str, Any] | None = None) -> None:
        """Initialize CSV data source.

        :param source_params: Configuration with directory or file_path.
        :raises DataSourceError: If neither location is provided.
        """
        self.params = source_params or {}
        self.directory = self.params.get("directory")
        self.file_path = self.params.get("file_path")
        if not self.directory and not self.file_path:
            raise DataSourceError(
                "CSVDataSource requires 'directory' or 'file_path' in source_params"
            )

        # Column name mappings with defaults
        self.symbol_col = self.params.get("symbol_col", "symbol")
        self.date_col = self.params.get("date_col", "date")
        self.open_col = self.params.get("open_col", "open")
        self.high_col = self.params.get("high_col", "high")
        self.low_col = self.params.get("low_col", "low")
        self.close_col = self.params.get("close_col", "close")
        self.volume_col = self.params.get("volume_col", "volume")
        self.adj_close_col = self.params.get("adj_close_col", "adj_close")
        self.delimiter = self.params.get("delimiter", ",")
        self.timestamp_format = self.params.get("timestamp_format")
        self.names: dict[str, str] = self.params.get("names", {})

        try:
            self.timezone = ZoneInfo(self.params.get("timezone", "America/New_York"))
        except ZoneInfoNotFoundError as e:
            raise DataSourceError(f"Unknown timezone: {e}") from e

    def _path_for(self, symbol: Symbol) -> Path:
        if self.directory:
            return Path(self.directory) / f"{symbol}.csv"
        return Path(self.file_path)

    def _parse_timestamp(self, value: str) -> datetime:
        if self.timestamp_format:
            ts = datetime.strptime(value, self.timestamp_format)
        else:
            ts = datetime.fromisoformat(value.replace("Z", "+00:00"))

        if ts.tzinfo is None:
            ts = ts.replace(tzinfo=self.timezone)
        return ts

    @staticmethod
    def _number(value: str | None) -> float | None:
        if value is None or value.strip() == "":
            return None
        try:
            return float(value)
        except ValueError:
            return None

    def fetch_prices(self, symbol: Symbol, date_range: DateRange) -> str:
        """Read daily prices from CSV.

        :param symbol: Symbol to read.
        :param date_range: Time range to keep (inclusive start, exclusive end).
        :returns: Chart document text.
        :raises DataSourceError: If the file is missing, unreadable or has no
            rows for the symbol.
        """
        path = self._path_for(symbol)
        if not path.exists():
            raise DataSourceError(f"CSV file not found: {path}")

        filter_symbol = not self.directory
        timestamps: list[int] = []
        series: dict[str, list[float | None]] = {
            "open": [], "high": [], "low": [], "close": [], "volume": [], "adj_close": [],
        }
        has_adj_close = False

        try:
            with open(path, newline="", encoding="utf-8") as f:
                reader = csv.DictReader(f, delimiter=self.delimiter)
                has_adj_close = self.adj_close_col in (reader.fieldnames or [])

                for row in reader:
                    if filter_symbol and row.get(self.symbol_col) != str(symbol):
                        continue

                    ts_str = row.get(self.date_col)
                    if not ts_str:
                        continue

                    try:
                        ts = self._parse_timestamp(ts_str)
                    except ValueError as e:
                        raise DataSourceError(
                            f"Failed to parse timestamp '{ts_str}': {e}"
                        ) from e

                    # Filter by date range
                    if ts < date_range.start or ts >= date_range.end:
                        continue

                    timestamps.append(int(ts.timestamp()))
                    series["open"].append(self._number(row.get(self.open_col)))
                    series["high"].append(self._number(row.get(self.high_col)))
                    series["low"].append(self._number(row.get(self.low_col)))
                    series["close"].append(self._number(row.get(self.close_col)))
                    series["volume"].append(self._number(row.get(self.volume_col)))
                    series["adj_close"].append(self._number(row.get(self.adj_close_col)))

        except csv.Error as e:
            raise DataSourceError(f"CSV parsing error: {e}") from e
        except OSError as e:
            raise DataSourceError(f"Failed to read CSV file: {e}") from e

        if not timestamps:
            raise DataSourceError(f"No rows for symbol '{symbol}' in {path}")

        return build_chart_document(
            str(symbol),
            timestamps,
            series["open"],
            series["high"],
            series["low"],
            series["close"],
            series["volume"],
            series["adj_close"] if has_adj_close else None,
        )

    def fetch_profile(self, symbol: Symbol) -> str:
        """Return the configured display name of a symbol.

        :raises DataSourceError: If no name is configured.
        """
        name = self.names.get(str(symbol))
        if not name:
            raise DataSourceError(f"No profile name for symbol '{symbol}'")
        return json.dumps({"symbol": str(symbol), "name": name})


def resolve_data_source(
    data_source: str, source_params: dict[str, Any] | None = None
) -> DataSource:
    """Construct a data source from its type name.

    :param data_source: Source type ("yahoo" or "csv").
    :param source_params: Provider-specific parameters.
    :returns: DataSource instance for the specified type.
    :raises ConfigError: If the data source type is unrecognized.
    """
    source_type = data_source.lower()

    if source_type == "yahoo":
        return YahooDataSource(source_params)
    elif source_type == "csv":
        return CSVDataSource(source_params)
    else:
        raise ConfigError(
            f"Unrecognized data source type: '{data_source}'. "
            f"Supported types: yahoo, csv"
        )
