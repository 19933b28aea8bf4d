"""Core type definitions for the bar cache.

All data models use Pydantic BaseModel for automatic validation, JSON
serialization, and better error messages.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, NewType

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# Type aliases for domain-specific identifiers
Symbol = NewType("Symbol", str)
Fingerprint = NewType("Fingerprint", str)


# ---------------------------------------------------------------------------
# Base Configuration
# ---------------------------------------------------------------------------


class FrozenModel(BaseModel):
    """Base model with frozen (immutable) configuration."""

    model_config = ConfigDict(frozen=True)


# ---------------------------------------------------------------------------
# Date/Time Types
# ---------------------------------------------------------------------------


class DateRange(FrozenModel):
    """Time range for bar queries.

    Naive datetimes are interpreted as UTC. Bar filtering treats both ends as
    inclusive; disk cache coverage is compared on calendar dates.

    :param start: Start of the range.
    :param end: End of the range.
    """

    start: datetime
    end: datetime

    @field_validator("start", "end")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @model_validator(mode="after")
    def _check_order(self) -> DateRange:
        if self.start > self.end:
            raise ValueError("range start must not be after range end")
        return self

    def covers(self, other: DateRange) -> bool:
        """Check whether this range spans ``other`` on calendar dates.

        :param other: Range that must fit inside this one.
        :returns: True if start and end dates enclose ``other``.
        """
        return (
            self.start.date() <= other.start.date()
            and self.end.date() >= other.end.date()
        )

    def __str__(self) -> str:
        return f"{self.start:%Y-%m-%d} to {self.end:%Y-%m-%d}"


# ---------------------------------------------------------------------------
# Instrument Types
# ---------------------------------------------------------------------------


class Instrument(FrozenModel):
    """Identity of a tradable instrument.

    :param symbol: Vendor symbol used when fetching data.
    :param nickname: Cache namespace; instruments with different nicknames
        never share in-memory or on-disk entries.
    :param name: Optional display name.
    """

    symbol: Symbol
    nickname: str
    name: str | None = None

    @classmethod
    def from_symbol(cls, symbol: str) -> Instrument:
        """Create an instrument whose nickname is its symbol."""
        return cls(symbol=Symbol(symbol), nickname=symbol)


# ---------------------------------------------------------------------------
# Market Data Types
# ---------------------------------------------------------------------------


class Bar(FrozenModel):
    """Daily bar of adjusted market data for a symbol.

    Prices are split and dividend adjusted; volume is scaled the opposite
    way so that price times volume stays consistent.

    :param symbol: Market symbol for this bar.
    :param timestamp: Session close for the bar's trading date (timezone-aware).
    :param open: Opening price.
    :param high: Highest price during the session.
    :param low: Lowest price during the session.
    :param close: Closing price.
    :param volume: Trading volume during the session.
    """

    symbol: Symbol
    timestamp: datetime
    open: float
    high: float
    low: float
    close: float
    volume: int


class PayloadOrigin(str, Enum):
    """Tier a raw payload was obtained from."""

    DISK = "disk"
    NETWORK = "network"
    STALE = "stale"


class RawPayload(FrozenModel):
    """Serialized price document together with the range it was fetched for.

    :param content: Raw JSON text as returned by the data source.
    :param date_range: Range covered by the fetch that produced ``content``.
    :param origin: Tier the payload was obtained from.
    """

    content: str
    date_range: DateRange
    origin: PayloadOrigin = PayloadOrigin.NETWORK


# ---------------------------------------------------------------------------
# Configuration Types
# ---------------------------------------------------------------------------


class GetBarsConfig(FrozenModel):
    """Configuration for retrieving cached bars.

    :param instruments: Instruments to load.
    :param date_range: Requested range.
    :param data_source: Data source type (e.g., "yahoo", "csv").
    :param source_params: Provider-specific parameters.
    :param cache_dir: Root directory of the disk cache.
    :param fetch_timeout: Upper bound in seconds for a single remote fetch.
    :param max_workers: Number of instruments loaded in parallel.
    :param session_close: Time of day assigned to every bar ("HH:MM").
    :param exchange_timezone: IANA timezone of the exchange.
    :param log_level: Logging level name.
    """

    instruments: list[Instrument]
    date_range: DateRange
    data_source: str
    source_params: dict[str, Any] = Field(default_factory=dict)
    cache_dir: str
    fetch_timeout: float = 30.0
    max_workers: int = 4
    session_close: str = "16:00"
    exchange_timezone: str = "America/New_York"
    log_level: str = "INFO"
