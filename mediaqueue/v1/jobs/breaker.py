"""
Circuit breaker guarding the downstream analysis service.
"""

import threading
import time
from collections.abc import Callable
from enum import Enum
from typing import Any

from mediaqueue.config.logging import get_logger

logger = get_logger(__name__)


class BreakerState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"


class CircuitBreaker:
    """
    Consecutive-failure breaker with a fixed cooldown.

    Once ``threshold`` consecutive failures are recorded the breaker opens and
    ``allow_request`` answers False until ``cooldown_s`` has elapsed. After
    that a single trial request goes through while other callers keep failing
    fast; its success closes the breaker and its failure re-opens it with a
    fresh cooldown. A trial that never reports back is superseded by another
    once a further cooldown has passed.
    """

    def __init__(
        self,
        threshold: int = 3,
        cooldown_s: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if threshold < 1:
            raise ValueError("threshold must be at least 1")
        self.threshold = threshold
        self.cooldown_s = cooldown_s
        self._clock = clock
        self._lock = threading.Lock()
        self._state = BreakerState.CLOSED
        self._failures = 0
        self._opened_at: float | None = None
        self._last_failure_at: float | None = None
        self._trial_started_at: float | None = None

    @property
    def state(self) -> BreakerState:
        with self._lock:
            return self._state

    @property
    def failure_count(self) -> int:
        with self._lock:
            return self._failures

    def allow_request(self) -> bool:
        with self._lock:
            if self._state is BreakerState.CLOSED:
                return True
            if not self._cooldown_elapsed():
                return False

            now = self._clock()
            if (
                self._trial_started_at is not None
                and now - self._trial_started_at < self.cooldown_s
            ):
                return False
            self._trial_started_at = now
            logger.info("Cooldown elapsed, letting a trial request through")
            return True

    def record_success(self) -> None:
        with self._lock:
            if self._state is BreakerState.OPEN:
                logger.info("Analysis service recovered, closing breaker")
            self._state = BreakerState.CLOSED
            self._failures = 0
            self._opened_at = None
            self._trial_started_at = None

    def record_failure(self) -> None:
        with self._lock:
            now = self._clock()
            self._failures += 1
            self._last_failure_at = now
            self._trial_started_at = None

            if self._state is BreakerState.OPEN:
                # Trial request after cooldown failed
                self._opened_at = now
                logger.warning(
                    "Analysis service still failing, breaker re-opened",
                    failures=self._failures,
                    cooldown_s=self.cooldown_s,
                )
            elif self._failures >= self.threshold:
                self._state = BreakerState.OPEN
                self._opened_at = now
                logger.warning(
                    "Analysis service marked unhealthy, breaker opened",
                    failures=self._failures,
                    cooldown_s=self.cooldown_s,
                )

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            retry_in = None
            if self._state is BreakerState.OPEN and self._opened_at is not None:
                retry_in = max(
                    0.0, self.cooldown_s - (self._clock() - self._opened_at)
                )
            since_failure = None
            if self._last_failure_at is not None:
                since_failure = self._clock() - self._last_failure_at
            return {
                "state": self._state.value,
                "failure_count": self._failures,
                "threshold": self.threshold,
                "cooldown_s": self.cooldown_s,
                "retry_in_s": retry_in,
                "seconds_since_failure": since_failure,
            }

    def _cooldown_elapsed(self) -> bool:
        if self._opened_at is None:
            return True
        return self._clock() - self._opened_at >= self.cooldown_s
