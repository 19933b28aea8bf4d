"""Shared fixtures: chart documents and an in-memory data source."""

from __future__ import annotations

import json
import time
from datetime import date, datetime, timezone
from typing import Any, Callable

import pytest

from barcache.data.payload import build_chart_document
from barcache.data.sources import DataSource
from barcache.exceptions import DataSourceError
from barcache.types import DateRange, Instrument, Symbol


def session_open(day: date) -> int:
    """Unix seconds of 09:30 New York time (14:30 UTC in winter) on ``day``."""
    return int(datetime(day.year, day.month, day.day, 14, 30, tzinfo=timezone.utc).timestamp())


class FakeSource(DataSource):
    """Data source serving canned content and recording every call."""

    name = "fake"

    def __init__(self, content: str | None = None) -> None:
        self.content = content
        self.error: Exception | None = None
        self.delay = 0.0
        self.profile: str | None = None
        self.calls: list[tuple[Symbol, DateRange]] = []
        self.profile_calls = 0

    def fetch_prices(self, symbol: Symbol, date_range: DateRange) -> str:
        self.calls.append((symbol, date_range))
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        if self.content is None:
            raise DataSourceError("no content configured")
        return self.content

    def fetch_profile(self, symbol: Symbol) -> str:
        self.profile_calls += 1
        if self.profile is None:
            raise DataSourceError("no profile configured")
        return self.profile


@pytest.fixture
def make_chart() -> Callable[..., str]:
    """Build chart document text from a list of (day, o, h, l, c, v, adj) rows."""

    def _make(rows: list[tuple[Any, ...]], symbol: str = "SPY", adjusted: bool = True) -> str:
        return build_chart_document(
            symbol,
            [session_open(r[0]) for r in rows],
            [r[1] for r in rows],
            [r[2] for r in rows],
            [r[3] for r in rows],
            [r[4] for r in rows],
            [r[5] for r in rows],
            [r[6] for r in rows] if adjusted else None,
        )

    return _make


@pytest.fixture
def january_chart(make_chart: Callable[..., str]) -> str:
    """Eleven clean trading days, 2024-01-01 through 2024-01-11."""
    rows = [
        (date(2024, 1, d), 100.0 + d, 102.0 + d, 99.0 + d, 101.0 + d, 1000 * d, 101.0 + d)
        for d in range(1, 12)
    ]
    return make_chart(rows)


@pytest.fixture
def instrument() -> Instrument:
    """Test instrument."""
    return Instrument(symbol=Symbol("SPY"), nickname="spy")


@pytest.fixture
def fake_source() -> FakeSource:
    """Fresh in-memory data source."""
    return FakeSource()


@pytest.fixture
def profile_json() -> str:
    """Profile document for the test instrument."""
    return json.dumps({"symbol": "SPY", "name": "SPDR S&amp;P 500 ETF Trust"})
