"""Keyed memoization with single-flight semantics.

:class:`MemoCache` runs a producer at most once per fingerprint, even when
many threads ask for the same fingerprint at the same time. Entries live as
long as the cache object; there is no expiry or eviction.
"""

from __future__ import annotations

import hashlib
import logging
import threading
from datetime import datetime
from typing import Callable, Generic, TypeVar

from barcache.types import Fingerprint

logger = logging.getLogger(__name__)

T = TypeVar("T")


def make_fingerprint(**parts: object) -> Fingerprint:
    """Derive a cache key from named request components.

    Components are sorted by name before hashing, so the order in which they
    are passed does not matter. Datetimes are rendered in ISO format.

    :param parts: Named components (instrument, start, end, context...).
    :returns: Hex digest identifying the request.
    :raises ValueError: If no components are given.
    """
    if not parts:
        raise ValueError("fingerprint needs at least one component")

    tokens = []
    for name in sorted(parts):
        value = parts[name]
        if isinstance(value, datetime):
            value = value.isoformat()
        tokens.append(f"{name}={value!s}")

    digest = hashlib.sha256("\x1f".join(tokens).encode("utf-8")).hexdigest()
    return Fingerprint(digest)


class _CacheEntry(Generic[T]):
    """Slot for one fingerprint: value or error plus a readiness event."""

    __slots__ = ("ready", "value", "error")

    def __init__(self) -> None:
        self.ready = threading.Event()
        self.value: T | None = None
        self.error: BaseException | None = None


class MemoCache(Generic[T]):
    """Thread-safe memoization cache keyed by request fingerprints.

    The table lock is held only while looking up or inserting entries. The
    producer always runs outside of it, so slow computations for one
    fingerprint never block callers asking for another.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: dict[Fingerprint, _CacheEntry[T]] = {}

    def get_or_compute(self, fingerprint: Fingerprint, producer: Callable[[], T]) -> T:
        """Return the cached value for ``fingerprint``, computing it if needed.

        :param fingerprint: Key identifying the request.
        :param producer: Zero-argument callable producing the value on a miss.
        :returns: The cached or freshly computed value.
        :raises Exception: Whatever ``producer`` raised, for the caller that
            ran it and for every caller waiting on that same invocation.
        """
        with self._lock:
            entry = self._entries.get(fingerprint)
            owner = entry is None
            if owner:
                entry = _CacheEntry()
                self._entries[fingerprint] = entry

        if not owner:
            entry.ready.wait()
            if entry.error is not None:
                raise entry.error
            return entry.value  # type: ignore[return-value]

        try:
            value = producer()
        except BaseException as e:
            entry.error = e
            with self._lock:
                if self._entries.get(fingerprint) is entry:
                    del self._entries[fingerprint]
            entry.ready.set()
            logger.debug("Producer for %s failed; entry dropped: %s", fingerprint[:12], e)
            raise

        entry.value = value
        entry.ready.set()
        return value

    def discard(self, fingerprint: Fingerprint) -> bool:
        """Forget a ready entry so that the next request recomputes it.

        In-flight entries are left alone.

        :returns: True if an entry was removed.
        """
        with self._lock:
            entry = self._entries.get(fingerprint)
            if entry is None or not entry.ready.is_set():
                return False
            del self._entries[fingerprint]
            return True

    def clear(self) -> None:
        """Drop every ready entry."""
        with self._lock:
            for key in [k for k, e in self._entries.items() if e.ready.is_set()]:
                del self._entries[key]

    def __contains__(self, fingerprint: object) -> bool:
        with self._lock:
            entry = self._entries.get(fingerprint)  # type: ignore[arg-type]
            return entry is not None and entry.ready.is_set()

    def __len__(self) -> int:
        with self._lock:
            return sum(1 for e in self._entries.values() if e.ready.is_set())
