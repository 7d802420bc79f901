"""
core/throttle.py -- Per-identity fixed-window request throttle.

Each authenticated identity (the token subject) gets a counter window:

  - First request for a key opens a window of `window_seconds` with count 1.
  - While the window is open, requests are admitted and counted until the
    count reaches `limit`. Further requests are rejected and NOT counted.
  - The first request at or after window_start + window_seconds opens a fresh
    window with count 1, whatever the old count was.
  - Anonymous requests (key None or "") are always admitted and leave no state.
    Anonymous endpoints (login) are protected per-IP by slowapi instead.

Concurrency: the state map is the only shared mutable resource in the request
path. admit() performs the read-compare-increment under one lock, so N
parallel requests with N > limit yield exactly `limit` admissions. The lock is
never held across I/O.

Memory: state is bounded. sweep() drops entries whose window has elapsed and
which have been idle for `idle_windows` window lengths. api/main.py runs it on
a background task; admit() also sweeps inline once `max_entries` is reached.

Layer rule: core/ is the kernel. Imports only from core/.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from core.errors import RateExceeded

logger = logging.getLogger("usermgmt.throttle")


@dataclass(slots=True)
class ThrottleState:
    window_start: float
    count: int
    last_seen: float


@dataclass(frozen=True, slots=True)
class Admission:
    """Outcome of admit(). Truthy when the request may proceed."""

    admitted: bool
    retry_after: int = 0

    def __bool__(self) -> bool:
        return self.admitted


ADMITTED = Admission(admitted=True)


class FixedWindowThrottle:
    """Thread-safe fixed-window counter keyed by identity.

    Usage:
        throttle = FixedWindowThrottle(limit=10, window_seconds=60)
        if not throttle.admit(scope.subject):
            ...  # reject with 429
    """

    def __init__(
        self,
        limit: int,
        window_seconds: float,
        *,
        idle_windows: int = 5,
        max_entries: int = 10_000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if limit < 1:
            raise ValueError("limit must be at least 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.limit = limit
        self.window = window_seconds
        self.idle_windows = max(1, idle_windows)
        self.max_entries = max_entries
        self._clock = clock
        self._states: dict[str, ThrottleState] = {}
        self._lock = threading.Lock()

    def admit(self, identity_key: str | None) -> Admission:
        """Admit or reject one request for identity_key. Never blocks on I/O."""
        if not identity_key:
            return ADMITTED

        with self._lock:
            now = self._clock()
            state = self._states.get(identity_key)

            if state is None:
                if len(self._states) >= self.max_entries:
                    self._sweep_locked(now)
                self._states[identity_key] = ThrottleState(window_start=now, count=1, last_seen=now)
                return ADMITTED

            state.last_seen = now
            if now - state.window_start >= self.window:
                state.window_start = now
                state.count = 1
                return ADMITTED

            if state.count >= self.limit:
                retry_after = max(1, math.ceil(state.window_start + self.window - now))
                rejected = Admission(admitted=False, retry_after=retry_after)
            else:
                state.count += 1
                return ADMITTED

        logger.warning("Identity %s exceeded %d requests per %gs window", identity_key, self.limit, self.window)
        return rejected

    def check(self, identity_key: str | None) -> None:
        """admit(), raising RateExceeded on rejection."""
        admission = self.admit(identity_key)
        if not admission:
            raise RateExceeded(admission.retry_after)

    def sweep(self, now: float | None = None) -> int:
        """Evict stale windows. Returns the number of entries removed."""
        with self._lock:
            return self._sweep_locked(self._clock() if now is None else now)

    def _sweep_locked(self, now: float) -> int:
        idle_cutoff = self.window * self.idle_windows
        stale = [
            key
            for key, state in self._states.items()
            if now - state.window_start >= self.window and now - state.last_seen >= idle_cutoff
        ]
        for key in stale:
            del self._states[key]
        if stale:
            logger.debug("Throttle sweep evicted %d idle identities", len(stale))
        return len(stale)

    def count_for(self, identity_key: str) -> int:
        """Return the current window's count for identity_key (0 if untracked)."""
        with self._lock:
            state = self._states.get(identity_key)
            return state.count if state is not None else 0

    def reset(self) -> None:
        with self._lock:
            self._states.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._states)
