"""Public entry point for cached bar retrieval."""

from __future__ import annotations

import json
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Iterable

from barcache.data.normalize import BarNormalizer
from barcache.data.store import TieredStore
from barcache.exceptions import (BarCacheError, DataSourceError, NoDataError,
                                 SourceUnavailableError)
from barcache.memo import MemoCache, make_fingerprint
from barcache.types import Bar, DateRange, Instrument

logger = logging.getLogger(__name__)


class BarProvider:
    """Serves adjusted daily bars through an in-memory and a disk cache.

    Requests with the same instrument and range share one computation, even
    when they arrive concurrently. Different ranges for the same instrument
    are separate cache entries but reuse the same disk record.

    :param store: Tiered store supplying raw payloads.
    :param normalizer: Converts payloads into bars.
    :param cache: Memo cache shared by every request; a private one is
        created when omitted.

    The store owns fetch worker threads; call :meth:`close` or use the
    provider as a context manager when done.
    """

    def __init__(
        self,
        store: TieredStore,
        normalizer: BarNormalizer | None = None,
        cache: MemoCache[list[Bar]] | None = None,
    ) -> None:
        self.store = store
        self.normalizer = normalizer or BarNormalizer()
        self.cache: MemoCache[list[Bar]] = cache if cache is not None else MemoCache()

    def close(self) -> None:
        """Release the store's fetch workers."""
        self.store.close()

    def __enter__(self) -> BarProvider:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def get_bars(self, instrument: Instrument, start: datetime, end: datetime) -> list[Bar]:
        """Return bars for ``instrument`` between ``start`` and ``end`` inclusive.

        :raises SourceUnavailableError: If no tier produced price data.
        :raises NoDataError: If the range holds no bars.
        :raises DataSourceError: If the price data could not be processed.
        """
        date_range = DateRange(start=start, end=end)
        fingerprint = make_fingerprint(
            nickname=instrument.nickname,
            start=date_range.start,
            end=date_range.end,
            source=self.store.source.name,
        )

        def retrieve() -> list[Bar]:
            t1 = time.monotonic()
            logger.info("Loading data for %s...", instrument.nickname)

            payload = self.store.load(instrument, date_range)
            bars = self.normalizer.normalize(payload, instrument, date_range)

            logger.info(
                "Loaded %d bars for %s from %s after %.1f seconds",
                len(bars), instrument.nickname, payload.origin.value, time.monotonic() - t1,
            )
            return bars

        try:
            bars = self.cache.get_or_compute(fingerprint, retrieve)
        except SourceUnavailableError:
            raise
        except BarCacheError as e:
            raise DataSourceError(
                f"Failed to load quotes for '{instrument.nickname}': {e}"
            ) from e

        if not bars:
            raise NoDataError(f"No data for '{instrument.nickname}' ({date_range})")
        return bars

    def get_many(
        self,
        instruments: Iterable[Instrument],
        start: datetime,
        end: datetime,
        max_workers: int = 4,
    ) -> dict[str, list[Bar] | BarCacheError]:
        """Load several instruments in parallel.

        Failures do not abort the batch; each is returned in place of the bars.

        :returns: Bars or the error, keyed by nickname in request order.
        """
        instruments = list(instruments)
        results: dict[str, list[Bar] | BarCacheError] = {}

        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            futures = [
                (instrument, pool.submit(self.get_bars, instrument, start, end))
                for instrument in instruments
            ]
            for instrument, future in futures:
                try:
                    results[instrument.nickname] = future.result()
                except BarCacheError as e:
                    logger.error("%s", e)
                    results[instrument.nickname] = e

        return results

    def get_name(self, instrument: Instrument) -> str:
        """Display name from the cached profile, configured name or symbol."""
        profile = self.store.load_profile(instrument)
        if profile is not None:
            try:
                name = json.loads(profile).get("name")
            except (ValueError, AttributeError):
                name = None
            if name:
                return str(name).replace("&amp;", "&")
        return instrument.name or str(instrument.symbol)
