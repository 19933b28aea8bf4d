"""Conversion of chart documents into adjusted daily bars.

Every sample is checked by :func:`validate_sample` before use. Malformed
samples are replaced by a copy of the previous bar at the new date, or
dropped when no bar has been built yet.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, time, tzinfo
from typing import Any, Union
from zoneinfo import ZoneInfo

from barcache.data.payload import parse_chart
from barcache.exceptions import InvalidPayloadError
from barcache.types import Bar, DateRange, Instrument, RawPayload

logger = logging.getLogger(__name__)

DEFAULT_SESSION_CLOSE = time(16, 0)
DEFAULT_EXCHANGE_TIMEZONE = "America/New_York"


@dataclass(frozen=True, slots=True)
class ValidSample:
    """Raw OHLCV values of one date that passed validation."""

    open: float
    high: float
    low: float
    close: float
    volume: float
    adj_close: float

    def adjusted(self) -> tuple[float, float, float, float, int]:
        """Scale prices by ``adj_close / close`` and volume by the inverse.

        Volume is truncated toward zero.
        """
        ratio = self.adj_close / self.close
        return (
            self.open * ratio,
            self.high * ratio,
            self.low * ratio,
            self.adj_close,
            int(self.volume * self.close / self.adj_close),
        )


@dataclass(frozen=True, slots=True)
class MalformedSample:
    """A sample that cannot be used, with the reason why."""

    reason: str


SampleResult = Union[ValidSample, MalformedSample]


def _is_number(value: Any) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
    )


def validate_sample(
    open: Any,
    high: Any,
    low: Any,
    close: Any,
    volume: Any,
    adj_close: Any,
) -> SampleResult:
    """Check the raw fields of one sample.

    :returns: A ValidSample, or a MalformedSample naming the first problem.
    """
    fields = {
        "open": open,
        "high": high,
        "low": low,
        "close": close,
        "volume": volume,
        "adj_close": adj_close,
    }
    for name, value in fields.items():
        if not _is_number(value):
            return MalformedSample(f"{name} is {value!r}")

    if close <= 0 or adj_close <= 0:
        return MalformedSample(f"non-positive close {close!r}/{adj_close!r}")
    if volume < 0:
        return MalformedSample(f"negative volume {volume!r}")

    return ValidSample(
        open=float(open),
        high=float(high),
        low=float(low),
        close=float(close),
        volume=float(volume),
        adj_close=float(adj_close),
    )


def _series(block: Any, key: str) -> list[Any] | None:
    if not isinstance(block, dict):
        return None
    values = block.get(key)
    return values if isinstance(values, list) else None


class BarNormalizer:
    """Turns raw chart documents into ordered, adjusted bars.

    :param session_close: Time of day assigned to every bar.
    :param exchange_timezone: Timezone used to find a sample's trading date.
    """

    def __init__(
        self,
        session_close: time = DEFAULT_SESSION_CLOSE,
        exchange_timezone: str | tzinfo = DEFAULT_EXCHANGE_TIMEZONE,
    ) -> None:
        self.session_close = session_close
        if isinstance(exchange_timezone, str):
            exchange_timezone = ZoneInfo(exchange_timezone)
        self.timezone = exchange_timezone

    def bar_time(self, unix_seconds: float) -> datetime:
        """Map a raw timestamp to the session close of its trading date."""
        local = datetime.fromtimestamp(unix_seconds, tz=self.timezone)
        return datetime.combine(local.date(), self.session_close, tzinfo=self.timezone)

    def normalize(
        self,
        payload: RawPayload | str,
        instrument: Instrument,
        date_range: DateRange,
    ) -> list[Bar]:
        """Build bars for ``instrument`` inside ``date_range`` (both ends inclusive).

        :param payload: Chart document, raw or wrapped.
        :param instrument: Instrument the bars belong to.
        :param date_range: Range of bar timestamps to keep.
        :returns: Bars in strictly increasing timestamp order; may be empty.
        :raises InvalidPayloadError: If the payload is not a chart document.
        """
        content = payload.content if isinstance(payload, RawPayload) else payload
        result = parse_chart(content)

        timestamps = result.get("timestamp")
        if not isinstance(timestamps, list):
            raise InvalidPayloadError("chart result has no timestamp list")

        indicators = result.get("indicators")
        try:
            quote = indicators["quote"][0]  # type: ignore[index]
        except (KeyError, IndexError, TypeError) as e:
            raise InvalidPayloadError("chart result has no quote block") from e

        closes = _series(quote, "close")
        columns = [
            _series(quote, "open"),
            _series(quote, "high"),
            _series(quote, "low"),
            closes,
            _series(quote, "volume"),
        ]
        adj_block = indicators.get("adjclose") if isinstance(indicators, dict) else None
        if adj_block:
            try:
                adjcloses = _series(adj_block[0], "adjclose")
            except (IndexError, KeyError, TypeError):
                adjcloses = None
        else:
            # source applies no adjustment
            adjcloses = closes
        columns.append(adjcloses)

        # A missing series makes every sample malformed
        length = len(timestamps)
        for column in columns:
            if column is not None:
                length = min(length, len(column))
        columns = [c if c is not None else [None] * length for c in columns]

        order = sorted(
            (ts, i) for i, ts in enumerate(timestamps[:length]) if _is_number(ts)
        )

        bars: list[Bar] = []
        previous: Bar | None = None
        malformed = 0

        for ts, i in order:
            try:
                t = self.bar_time(ts)
            except (ValueError, OverflowError, OSError):
                # no trading date to carry a bar forward to
                malformed += 1
                continue
            sample = validate_sample(*(column[i] for column in columns))

            if isinstance(sample, MalformedSample):
                malformed += 1
                if previous is None:
                    continue
                bar = previous.model_copy(update={"timestamp": t})
            else:
                o, h, l, c, v = sample.adjusted()
                bar = Bar(
                    symbol=instrument.symbol,
                    timestamp=t,
                    open=o,
                    high=h,
                    low=l,
                    close=c,
                    volume=v,
                )
            previous = bar

            if not date_range.start <= t <= date_range.end:
                continue
            if bars and bars[-1].timestamp == t:
                bars[-1] = bar
            else:
                bars.append(bar)

        if malformed:
            logger.debug(
                "%s: %d malformed samples filled or skipped", instrument.nickname, malformed
            )
        return bars
