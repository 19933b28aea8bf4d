"""Tests for the single-flight memo cache."""

import threading
import time
from datetime import datetime, timezone

import pytest

from barcache.memo import MemoCache, make_fingerprint


class TestMakeFingerprint:
    """Tests for fingerprint derivation."""

    def test_component_order_does_not_matter(self) -> None:
        """Same components in a different order give the same key."""
        start = datetime(2024, 1, 1, tzinfo=timezone.utc)
        end = datetime(2024, 6, 1, tzinfo=timezone.utc)
        a = make_fingerprint(nickname="spy", start=start, end=end)
        b = make_fingerprint(end=end, nickname="spy", start=start)
        assert a == b

    def test_different_components_differ(self) -> None:
        """Changing any component changes the key."""
        start = datetime(2024, 1, 1, tzinfo=timezone.utc)
        end = datetime(2024, 6, 1, tzinfo=timezone.utc)
        base = make_fingerprint(nickname="spy", start=start, end=end)
        assert base != make_fingerprint(nickname="qqq", start=start, end=end)
        assert base != make_fingerprint(nickname="spy", start=start, end=start)
        assert base != make_fingerprint(nickname="spy", start=start, end=end, source="csv")

    def test_component_names_matter(self) -> None:
        """Swapping values between names gives a different key."""
        assert make_fingerprint(a="1", b="2") != make_fingerprint(a="2", b="1")

    def test_requires_components(self) -> None:
        """An empty fingerprint is rejected."""
        with pytest.raises(ValueError):
            make_fingerprint()


class TestMemoCache:
    """Tests for MemoCache.get_or_compute."""

    def test_miss_then_hit(self) -> None:
        """The producer runs on the first call only."""
        cache: MemoCache[list[int]] = MemoCache()
        calls = []

        def producer() -> list[int]:
            calls.append(1)
            return [1, 2, 3]

        first = cache.get_or_compute(make_fingerprint(k="a"), producer)
        second = cache.get_or_compute(make_fingerprint(k="a"), producer)

        assert first == [1, 2, 3]
        assert second is first
        assert len(calls) == 1
        assert make_fingerprint(k="a") in cache
        assert len(cache) == 1

    def test_concurrent_callers_share_one_invocation(self) -> None:
        """N concurrent callers with one fingerprint run the producer once."""
        cache: MemoCache[object] = MemoCache()
        fingerprint = make_fingerprint(k="shared")
        started = threading.Event()
        release = threading.Event()
        calls = []
        results = []
        results_lock = threading.Lock()

        def producer() -> object:
            calls.append(1)
            started.set()
            release.wait(5)
            return object()

        def worker() -> None:
            value = cache.get_or_compute(fingerprint, producer)
            with results_lock:
                results.append(value)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        assert started.wait(5)
        time.sleep(0.05)
        release.set()
        for t in threads:
            t.join(5)

        assert len(calls) == 1
        assert len(results) == 8
        assert all(r is results[0] for r in results)

    def test_distinct_fingerprints_do_not_block(self) -> None:
        """A slow producer does not delay other fingerprints."""
        cache: MemoCache[str] = MemoCache()
        started = threading.Event()
        release = threading.Event()

        def slow() -> str:
            started.set()
            release.wait(5)
            return "slow"

        thread = threading.Thread(
            target=cache.get_or_compute, args=(make_fingerprint(k="slow"), slow)
        )
        thread.start()
        try:
            assert started.wait(5)
            t0 = time.monotonic()
            fast = cache.get_or_compute(make_fingerprint(k="fast"), lambda: "fast")
            assert fast == "fast"
            assert time.monotonic() - t0 < 1.0
            assert make_fingerprint(k="slow") not in cache
        finally:
            release.set()
            thread.join(5)

        assert make_fingerprint(k="slow") in cache

    def test_failure_is_not_cached(self) -> None:
        """A failed producer leaves no entry; the next call retries."""
        cache: MemoCache[str] = MemoCache()
        fingerprint = make_fingerprint(k="flaky")

        def failing() -> str:
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError, match="boom"):
            cache.get_or_compute(fingerprint, failing)

        assert fingerprint not in cache
        assert len(cache) == 0
        assert cache.get_or_compute(fingerprint, lambda: "ok") == "ok"

    def test_failure_reaches_waiters(self) -> None:
        """Callers waiting on a failing invocation receive its error."""
        cache: MemoCache[str] = MemoCache()
        fingerprint = make_fingerprint(k="shared-failure")
        started = threading.Event()
        release = threading.Event()
        errors: list[BaseException] = []

        def failing() -> str:
            started.set()
            release.wait(5)
            raise RuntimeError("upstream down")

        def worker() -> None:
            try:
                cache.get_or_compute(fingerprint, failing)
            except RuntimeError as e:
                errors.append(e)

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        assert started.wait(5)
        time.sleep(0.05)
        release.set()
        for t in threads:
            t.join(5)

        assert len(errors) == 4
        assert all("upstream down" in str(e) for e in errors)
        assert fingerprint not in cache

    def test_failure_does_not_affect_other_fingerprints(self) -> None:
        """Errors stay with the fingerprint that raised them."""
        cache: MemoCache[str] = MemoCache()
        cache.get_or_compute(make_fingerprint(k="good"), lambda: "good")

        with pytest.raises(ValueError):
            cache.get_or_compute(make_fingerprint(k="bad"), lambda: int("x"))  # type: ignore[return-value, arg-type]

        assert cache.get_or_compute(make_fingerprint(k="good"), lambda: "other") == "good"

    def test_discard_and_clear(self) -> None:
        """discard forgets one entry, clear forgets all."""
        cache: MemoCache[int] = MemoCache()
        a, b = make_fingerprint(k="a"), make_fingerprint(k="b")
        cache.get_or_compute(a, lambda: 1)
        cache.get_or_compute(b, lambda: 2)

        assert cache.discard(a) is True
        assert cache.discard(a) is False
        assert a not in cache
        assert cache.get_or_compute(a, lambda: 10) == 10

        cache.clear()
        assert len(cache) == 0

    def test_caches_are_independent_objects(self) -> None:
        """Two caches never share entries."""
        first: MemoCache[int] = MemoCache()
        second: MemoCache[int] = MemoCache()
        fingerprint = make_fingerprint(k="x")
        first.get_or_compute(fingerprint, lambda: 1)
        assert fingerprint not in second
