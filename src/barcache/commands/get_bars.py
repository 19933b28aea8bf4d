"""Configuration and wiring for the bars command.

Example config file (bars.yaml):

    instruments:
      - "SPY"
      - symbol: "BRK.B"
        nickname: "berkshire"
        name: "Berkshire Hathaway"
    date_range:
      start: "2020-01-01"
      end: "2024-01-01"
    data_source: "yahoo"
    source_params: {}
    cache_dir: "~/.barcache/cache"   # Optional
    fetch_timeout: 30                # Optional, seconds
    max_workers: 4                   # Optional
    session_close: "16:00"           # Optional
    exchange_timezone: "America/New_York"  # Optional
    logging:
      level: "INFO"                  # Optional
"""

from __future__ import annotations

import logging
from datetime import date, datetime, time, timezone
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml

from barcache.data.normalize import BarNormalizer
from barcache.data.provider import BarProvider
from barcache.data.sources import resolve_data_source
from barcache.data.store import TieredStore
from barcache.exceptions import ConfigError, DataSourceError
from barcache.memo import MemoCache
from barcache.types import DateRange, GetBarsConfig, Instrument, Symbol

DEFAULT_CACHE_DIR = "~/.barcache/cache"

# Valid data source types
VALID_DATA_SOURCES = frozenset(["yahoo", "csv"])

VALID_LOG_LEVELS = frozenset(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"])


def _parse_datetime(value: str | date | datetime, end_of_day: bool = False) -> datetime:
    """Parse a datetime string or pass through datetime objects.

    :param value: ISO format string, date or datetime object.
    :param end_of_day: Map a plain date to its last instant instead of midnight.
    :returns: Timezone-aware datetime (UTC if no timezone specified).
    :raises ConfigError: If parsing fails.
    """
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    # Plain dates, quoted or as YAML date literals
    day: date | None = value if isinstance(value, date) else None
    if day is None:
        try:
            day = datetime.strptime(str(value), "%Y-%m-%d").date()
        except ValueError:
            pass
    if day is not None:
        return datetime.combine(day, time.max if end_of_day else time(), tzinfo=timezone.utc)

    try:
        dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError as e:
        raise ConfigError(f"Invalid datetime format: {value}") from e
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _parse_session_close(value: str) -> time:
    """Parse an "HH:MM" time of day.

    :raises ConfigError: If the value is not a valid time.
    """
    try:
        return datetime.strptime(str(value), "%H:%M").time()
    except ValueError as e:
        raise ConfigError(f"Invalid session_close '{value}', expected HH:MM") from e


def _parse_instrument(raw: Any) -> Instrument:
    """Build an instrument from a symbol string or a mapping.

    :raises ConfigError: If the entry is malformed.
    """
    if isinstance(raw, str):
        if not raw:
            raise ConfigError("Instrument symbol must not be empty")
        return Instrument.from_symbol(raw)

    if not isinstance(raw, dict):
        raise ConfigError(f"Invalid instrument entry: {raw!r}")
    symbol = raw.get("symbol")
    if not symbol or not isinstance(symbol, str):
        raise ConfigError(f"Instrument entry needs a 'symbol': {raw!r}")

    return Instrument(
        symbol=Symbol(symbol),
        nickname=str(raw.get("nickname", symbol)),
        name=raw.get("name"),
    )


def load_get_bars_config(config_path: str | Path) -> GetBarsConfig:
    """Parse and validate a bars configuration file.

    :param config_path: Path to YAML configuration file.
    :returns: Validated GetBarsConfig object.
    :raises ConfigError: If file cannot be read or config is invalid.
    """
    config_path = Path(config_path)

    # Read and parse YAML
    try:
        with open(config_path) as f:
            raw_config = yaml.safe_load(f)
    except FileNotFoundError as e:
        raise ConfigError(f"Configuration file not found: {config_path}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in configuration file: {e}") from e

    if not isinstance(raw_config, dict):
        raise ConfigError("Configuration must be a YAML mapping")

    # Validate required fields
    required_fields = ["instruments", "date_range", "data_source"]
    for field in required_fields:
        if field not in raw_config:
            raise ConfigError(f"Missing required field: {field}")

    # Parse instruments
    raw_instruments = raw_config["instruments"]
    if not isinstance(raw_instruments, list) or len(raw_instruments) == 0:
        raise ConfigError("'instruments' must be a non-empty list")
    instruments = [_parse_instrument(raw) for raw in raw_instruments]

    nicknames = [i.nickname for i in instruments]
    if len(set(nicknames)) != len(nicknames):
        raise ConfigError("Instrument nicknames must be unique")

    # Parse date_range
    raw_date_range = raw_config["date_range"]
    if not isinstance(raw_date_range, dict):
        raise ConfigError("'date_range' must be a mapping with 'start' and 'end'")
    if "start" not in raw_date_range or "end" not in raw_date_range:
        raise ConfigError("'date_range' must contain 'start' and 'end'")

    start_dt = _parse_datetime(raw_date_range["start"])
    end_dt = _parse_datetime(raw_date_range["end"], end_of_day=True)

    if start_dt > end_dt:
        raise ConfigError("'date_range.start' must not be after 'date_range.end'")

    date_range = DateRange(start=start_dt, end=end_dt)

    # Parse data_source
    data_source = raw_config["data_source"]
    if data_source not in VALID_DATA_SOURCES:
        raise ConfigError(
            f"Invalid data_source '{data_source}'. "
            f"Valid options: {sorted(VALID_DATA_SOURCES)}"
        )

    # Parse source_params (optional)
    source_params: dict[str, Any] = raw_config.get("source_params") or {}
    if not isinstance(source_params, dict):
        raise ConfigError("'source_params' must be a mapping")

    cache_dir = raw_config.get("cache_dir", DEFAULT_CACHE_DIR)
    if not isinstance(cache_dir, str) or not cache_dir:
        raise ConfigError("'cache_dir' must be a non-empty string")

    fetch_timeout = raw_config.get("fetch_timeout", 30.0)
    if not isinstance(fetch_timeout, (int, float)) or isinstance(fetch_timeout, bool) \
            or fetch_timeout <= 0:
        raise ConfigError("'fetch_timeout' must be a positive number")

    max_workers = raw_config.get("max_workers", 4)
    if not isinstance(max_workers, int) or isinstance(max_workers, bool) or max_workers < 1:
        raise ConfigError("'max_workers' must be a positive integer")

    session_close = str(raw_config.get("session_close", "16:00"))
    _parse_session_close(session_close)

    exchange_timezone = str(raw_config.get("exchange_timezone", "America/New_York"))
    try:
        ZoneInfo(exchange_timezone)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ConfigError(f"Unknown exchange_timezone '{exchange_timezone}'") from e

    # Parse logging (optional)
    raw_logging = raw_config.get("logging", {})
    if not isinstance(raw_logging, dict):
        raise ConfigError("'logging' must be a mapping")

    log_level = str(raw_logging.get("level", "INFO")).upper()
    if log_level not in VALID_LOG_LEVELS:
        raise ConfigError(
            f"Invalid logging.level '{log_level}'. "
            f"Valid options: {sorted(VALID_LOG_LEVELS)}"
        )

    return GetBarsConfig(
        instruments=instruments,
        date_range=date_range,
        data_source=data_source,
        source_params=source_params,
        cache_dir=cache_dir,
        fetch_timeout=float(fetch_timeout),
        max_workers=max_workers,
        session_close=session_close,
        exchange_timezone=exchange_timezone,
        log_level=log_level,
    )


def configure_logging(level: str) -> None:
    """Route library log records to stderr at ``level``."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def build_provider(config: GetBarsConfig) -> BarProvider:
    """Wire data source, tiered store, normalizer and memo cache.

    :raises ConfigError: If the data source cannot be constructed.
    """
    try:
        source = resolve_data_source(config.data_source, config.source_params)
    except DataSourceError as e:
        raise ConfigError(str(e)) from e

    store = TieredStore(source, config.cache_dir, fetch_timeout=config.fetch_timeout)
    normalizer = BarNormalizer(
        session_close=_parse_session_close(config.session_close),
        exchange_timezone=config.exchange_timezone,
    )
    return BarProvider(store, normalizer, MemoCache())
