"""Unit tests for core/throttle.py -- per-identity fixed-window throttle.

Covers:
- Up to `limit` requests per window admitted; the next one rejected
- Rejections do not increment the count
- A request at/after the window boundary opens a fresh window with count 1
- Identities are independent; anonymous keys always pass and leave no state
- N parallel requests with N > limit yield exactly `limit` admissions
- sweep() evicts only elapsed, idle windows; max_entries triggers inline sweep
"""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from core.errors import RateExceeded
from core.throttle import FixedWindowThrottle


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def throttle(clock: FakeClock) -> FixedWindowThrottle:
    return FixedWindowThrottle(limit=10, window_seconds=60, idle_windows=2, clock=clock)


class TestFixedWindow:
    def test_admits_up_to_limit_then_rejects(self, throttle: FixedWindowThrottle) -> None:
        results = [bool(throttle.admit("alice")) for _ in range(10)]
        assert all(results)
        assert not throttle.admit("alice")

    def test_rejection_does_not_increment(self, throttle: FixedWindowThrottle) -> None:
        for _ in range(15):
            throttle.admit("alice")
        assert throttle.count_for("alice") == 10

    def test_rejection_reports_retry_after(self, throttle: FixedWindowThrottle, clock: FakeClock) -> None:
        for _ in range(10):
            throttle.admit("alice")
        clock.advance(45.5)
        rejected = throttle.admit("alice")
        assert not rejected
        assert rejected.retry_after == 15

    def test_window_elapsed_starts_fresh_window(self, throttle: FixedWindowThrottle, clock: FakeClock) -> None:
        for _ in range(11):
            throttle.admit("alice")
        clock.advance(60)
        assert throttle.admit("alice")
        assert throttle.count_for("alice") == 1

    def test_just_before_boundary_still_limited(self, throttle: FixedWindowThrottle, clock: FakeClock) -> None:
        for _ in range(10):
            throttle.admit("alice")
        clock.advance(59.9)
        assert not throttle.admit("alice")

    def test_window_is_anchored_at_first_request(self, throttle: FixedWindowThrottle, clock: FakeClock) -> None:
        throttle.admit("alice")
        clock.advance(30)
        for _ in range(9):
            assert throttle.admit("alice")
        assert not throttle.admit("alice")
        clock.advance(30)
        assert throttle.admit("alice")

    def test_identities_are_independent(self, throttle: FixedWindowThrottle) -> None:
        for _ in range(10):
            assert throttle.admit("alice")
            assert throttle.admit("bob")
        assert not throttle.admit("alice")
        assert not throttle.admit("bob")
        assert throttle.admit("carol")

    @pytest.mark.parametrize("key", [None, ""])
    def test_anonymous_always_admitted(self, throttle: FixedWindowThrottle, key) -> None:
        for _ in range(100):
            assert throttle.admit(key)
        assert len(throttle) == 0

    def test_check_raises_rate_exceeded(self, throttle: FixedWindowThrottle) -> None:
        for _ in range(10):
            throttle.check("alice")
        with pytest.raises(RateExceeded) as exc_info:
            throttle.check("alice")
        assert exc_info.value.retry_after >= 1

    def test_invalid_configuration_rejected(self) -> None:
        with pytest.raises(ValueError):
            FixedWindowThrottle(limit=0, window_seconds=60)
        with pytest.raises(ValueError):
            FixedWindowThrottle(limit=1, window_seconds=0)


class TestConcurrency:
    def test_parallel_requests_admit_exactly_limit(self) -> None:
        throttle = FixedWindowThrottle(limit=10, window_seconds=60)
        n = 200
        barrier = threading.Barrier(20)

        def hit(_: int) -> bool:
            try:
                barrier.wait(timeout=5)
            except threading.BrokenBarrierError:
                pass
            return bool(throttle.admit("alice"))

        with ThreadPoolExecutor(max_workers=20) as pool:
            results = list(pool.map(hit, range(n)))

        assert results.count(True) == 10
        assert results.count(False) == n - 10
        assert throttle.count_for("alice") == 10


class TestSweep:
    def test_sweep_evicts_idle_elapsed_windows(self, throttle: FixedWindowThrottle, clock: FakeClock) -> None:
        throttle.admit("alice")
        throttle.admit("bob")
        clock.advance(100)
        throttle.admit("bob")  # bob opens a fresh window and stays active
        clock.advance(30)
        assert throttle.sweep() == 1
        assert throttle.count_for("alice") == 0
        assert throttle.count_for("bob") == 1

    def test_sweep_keeps_recently_rejected_identity(self, throttle: FixedWindowThrottle, clock: FakeClock) -> None:
        for _ in range(10):
            throttle.admit("alice")
        clock.advance(59)
        throttle.admit("alice")  # rejected, but touches last_seen
        clock.advance(62)
        assert throttle.sweep() == 0
        assert len(throttle) == 1

    def test_max_entries_triggers_inline_sweep(self, clock: FakeClock) -> None:
        throttle = FixedWindowThrottle(limit=5, window_seconds=10, idle_windows=1, max_entries=3, clock=clock)
        for key in ("a", "b", "c"):
            throttle.admit(key)
        clock.advance(10)
        throttle.admit("d")
        assert len(throttle) == 1

    def test_reset_clears_state(self, throttle: FixedWindowThrottle) -> None:
        for _ in range(10):
            throttle.admit("alice")
        throttle.reset()
        assert len(throttle) == 0
        assert throttle.admit("alice")
