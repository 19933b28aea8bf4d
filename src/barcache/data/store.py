"""Tiered storage for raw price documents.

:class:`TieredStore` serves a payload from the disk cache when it covers the
requested range, otherwise fetches the full available history from the data
source and writes it back. If the fetch fails, whatever was on disk is used
even when it does not cover the range.

Disk layout, per instrument nickname::

    <cache_dir>/<nickname>/<source>_prices   payload text (UTF-8)
    <cache_dir>/<nickname>/<source>_range    start, end as two little-endian
                                             int64 Unix seconds
    <cache_dir>/<nickname>/<source>_meta     profile JSON
"""

from __future__ import annotations

import logging
import os
import struct
import tempfile
import threading
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FetchTimeoutError
from datetime import datetime, time, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, TypeVar

from barcache.data.payload import is_valid_payload
from barcache.data.sources import DataSource
from barcache.exceptions import (DataSourceError, InvalidPayloadError,
                                 SourceUnavailableError, StorageError)
from barcache.types import DateRange, Instrument, PayloadOrigin, RawPayload

logger = logging.getLogger(__name__)

R = TypeVar("R")

# Network requests always ask for everything since this date
EPOCH_START = datetime(1970, 1, 1, tzinfo=timezone.utc)

MIN_PROFILE_LENGTH = 10

_RANGE_FORMAT = "<qq"
_RANGE_SIZE = struct.calcsize(_RANGE_FORMAT)


def _atomic_write(path: Path, data: bytes) -> None:
    """Write ``data`` to a temp file beside ``path`` and rename it into place."""
    fd, tmp_name = tempfile.mkstemp(dir=str(path.parent), suffix=".tmp")
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        tmp_path.replace(path)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise


class TieredStore:
    """Disk -> network -> stale disk fallback chain for raw payloads.

    :param source: Data source used for network fetches.
    :param cache_dir: Root directory of the disk cache.
    :param fetch_timeout: Upper bound in seconds for one fetch, None for no limit.
    :param clock: Returns the current time; used to compute the fetch window.
    """

    def __init__(
        self,
        source: DataSource,
        cache_dir: str | Path,
        fetch_timeout: float | None = 30.0,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.source = source
        self.cache_dir = Path(cache_dir).expanduser()
        self.fetch_timeout = fetch_timeout
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        self._executor = ThreadPoolExecutor(thread_name_prefix="barcache-fetch")

    def close(self) -> None:
        """Stop the fetch worker threads without waiting for hung requests."""
        self._executor.shutdown(wait=False, cancel_futures=True)

    def __enter__(self) -> TieredStore:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Paths and locks
    # ------------------------------------------------------------------

    def _lock_for(self, nickname: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(nickname)
            if lock is None:
                lock = self._locks[nickname] = threading.Lock()
            return lock

    def _folder(self, instrument: Instrument) -> Path:
        return self.cache_dir / instrument.nickname

    def _price_paths(self, instrument: Instrument) -> tuple[Path, Path]:
        folder = self._folder(instrument)
        return (
            folder / f"{self.source.name}_prices",
            folder / f"{self.source.name}_range",
        )

    def full_history(self) -> DateRange:
        """Range requested from the network: epoch start through tomorrow."""
        tomorrow = self._clock().date() + timedelta(days=1)
        return DateRange(
            start=EPOCH_START,
            end=datetime.combine(tomorrow, time(), tzinfo=timezone.utc),
        )

    # ------------------------------------------------------------------
    # Disk records
    # ------------------------------------------------------------------

    def read_record(self, instrument: Instrument) -> RawPayload | None:
        """Read the cached payload for an instrument.

        :returns: The disk payload, or None if there is no complete record.
        """
        prices_path, range_path = self._price_paths(instrument)

        with self._lock_for(instrument.nickname):
            if not (prices_path.exists() and range_path.exists()):
                return None
            try:
                content = prices_path.read_text(encoding="utf-8")
                raw_range = range_path.read_bytes()
            except (OSError, UnicodeDecodeError) as e:
                logger.debug("Unreadable cache record for %s: %s", instrument.nickname, e)
                return None

        if len(raw_range) != _RANGE_SIZE:
            logger.debug("Truncated range file for %s", instrument.nickname)
            return None

        start, end = struct.unpack(_RANGE_FORMAT, raw_range)
        try:
            date_range = DateRange(
                start=datetime.fromtimestamp(start, tz=timezone.utc),
                end=datetime.fromtimestamp(end, tz=timezone.utc),
            )
        except (ValueError, OverflowError, OSError) as e:
            logger.debug("Corrupt range file for %s: %s", instrument.nickname, e)
            return None

        return RawPayload(content=content, date_range=date_range, origin=PayloadOrigin.DISK)

    def write_record(self, instrument: Instrument, payload: RawPayload) -> None:
        """Persist a payload and its range.

        The range file is removed first and written last, so a reader never
        sees a payload paired with a range that does not belong to it.

        :raises StorageError: If the files cannot be written.
        """
        prices_path, range_path = self._price_paths(instrument)
        raw_range = struct.pack(
            _RANGE_FORMAT,
            int(payload.date_range.start.timestamp()),
            int(payload.date_range.end.timestamp()),
        )

        with self._lock_for(instrument.nickname):
            try:
                prices_path.parent.mkdir(parents=True, exist_ok=True)
                range_path.unlink(missing_ok=True)
                _atomic_write(prices_path, payload.content.encode("utf-8"))
                _atomic_write(range_path, raw_range)
            except OSError as e:
                raise StorageError(
                    f"Failed to write cache record for '{instrument.nickname}': {e}"
                ) from e

        logger.debug(
            "Cached %d bytes for %s covering %s",
            len(payload.content), instrument.nickname, payload.date_range,
        )

    # ------------------------------------------------------------------
    # Network
    # ------------------------------------------------------------------

    def _call(self, func: Callable[..., R], *args: Any) -> R:
        """Run a source call on a worker thread, bounded by ``fetch_timeout``.

        :raises DataSourceError: On any failure, including timeouts.
        """
        future = self._executor.submit(func, *args)
        try:
            return future.result(timeout=self.fetch_timeout)
        except FetchTimeoutError as e:
            future.cancel()
            raise DataSourceError(
                f"{self.source.name} request timed out after {self.fetch_timeout}s"
            ) from e
        except DataSourceError:
            raise
        except Exception as e:
            raise DataSourceError(f"{self.source.name} request failed: {e}") from e

    def fetch(self, instrument: Instrument) -> RawPayload:
        """Fetch the full history of an instrument from the data source.

        :raises DataSourceError: If the fetch fails or the payload is invalid.
        """
        date_range = self.full_history()
        content = self._call(self.source.fetch_prices, instrument.symbol, date_range)
        if not is_valid_payload(content):
            raise InvalidPayloadError(
                f"{self.source.name} returned no usable data for '{instrument.symbol}'"
            )
        return RawPayload(content=content, date_range=date_range, origin=PayloadOrigin.NETWORK)

    # ------------------------------------------------------------------
    # Fallback chain
    # ------------------------------------------------------------------

    def load(self, instrument: Instrument, date_range: DateRange) -> RawPayload:
        """Return a valid payload covering ``date_range`` if at all possible.

        Order of preference: disk record covering the range, fresh network
        fetch of the full history (written back to disk), then any disk record
        even if it does not cover the range.

        :param instrument: Instrument to load.
        :param date_range: Requested range.
        :returns: Payload tagged with the tier it came from.
        :raises SourceUnavailableError: If no tier produced a valid payload.
        """
        disk = self.read_record(instrument)
        disk_valid = disk is not None and is_valid_payload(disk.content)

        if disk_valid and disk.date_range.covers(date_range):
            logger.debug("Disk cache hit for %s (%s)", instrument.nickname, date_range)
            return disk

        try:
            payload = self.fetch(instrument)
        except DataSourceError as e:
            logger.debug("Fetch failed for %s: %s", instrument.nickname, e)
        else:
            try:
                self.write_record(instrument, payload)
            except StorageError as e:
                logger.warning("%s", e)
            return payload

        if disk_valid:
            logger.debug(
                "Using cached data for %s covering %s",
                instrument.nickname, disk.date_range,
            )
            return disk.model_copy(update={"origin": PayloadOrigin.STALE})

        raise SourceUnavailableError(
            f"No price data for '{instrument.nickname}' ({date_range}): "
            f"disk cache and {self.source.name} both unavailable"
        )

    # ------------------------------------------------------------------
    # Profiles
    # ------------------------------------------------------------------

    def load_profile(self, instrument: Instrument) -> str | None:
        """Return the instrument's profile JSON from disk or the data source.

        :returns: Profile text, or None if no tier has one.
        """
        path = self._folder(instrument) / f"{self.source.name}_meta"
        lock = self._lock_for(instrument.nickname)

        content: str | None = None
        with lock:
            if path.exists():
                try:
                    content = path.read_text(encoding="utf-8")
                except (OSError, UnicodeDecodeError) as e:
                    logger.debug("Unreadable profile for %s: %s", instrument.nickname, e)

        if content is not None and len(content) >= MIN_PROFILE_LENGTH:
            return content

        try:
            content = self._call(self.source.fetch_profile, instrument.symbol)
        except DataSourceError as e:
            logger.debug("Profile unavailable for %s: %s", instrument.nickname, e)
            return None

        if not content or len(content) < MIN_PROFILE_LENGTH:
            return None

        with lock:
            try:
                path.parent.mkdir(parents=True, exist_ok=True)
                _atomic_write(path, content.encode("utf-8"))
            except OSError as e:
                logger.warning("Failed to cache profile for '%s': %s", instrument.nickname, e)

        return content
