"""
Per-operation-name circuit breakers.

CLOSED counts completions until enough have been seen to judge the failure
rate; OPEN short-circuits every call until the timeout has elapsed, then the
next check moves the breaker to HALF_OPEN which lets exactly one trial through.
"""

import threading
import time
from typing import Callable, Dict, Optional

from ..helper.logging import get_logger
from ..model.breaker import BreakerState, CircuitState
from ..model.options import BreakerConfig

logger = get_logger(__name__)


class CircuitBreakerRegistry:
    """Holds one BreakerState per operation name."""

    def __init__(
        self,
        config: Optional[BreakerConfig] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        """
        :param config: Threshold, timeout and minimum request count.
        :param clock: Monotonic time source in seconds.
        """
        self.config = config or BreakerConfig()
        self._clock = clock or time.monotonic
        self._breakers: Dict[str, BreakerState] = {}
        self._lock = threading.Lock()

    def _get(self, name: str) -> BreakerState:
        if name not in self._breakers:
            self._breakers[name] = BreakerState(name=name)
        return self._breakers[name]

    def _maybe_half_open(self, breaker: BreakerState) -> None:
        if breaker.state != CircuitState.OPEN or breaker.last_failure_time is None:
            return
        if self._clock() - breaker.last_failure_time >= self.config.timeout:
            breaker.state = CircuitState.HALF_OPEN
            breaker.trial_in_flight = False
            logger.info(f"Circuit breaker half-open for {breaker.name}")

    def is_open(self, name: str) -> bool:
        """
        Check whether calls for a name are currently rejected.

        An OPEN breaker whose timeout has elapsed becomes HALF_OPEN here.
        A HALF_OPEN breaker counts as open while its trial is in flight.
        """
        with self._lock:
            breaker = self._get(name)
            self._maybe_half_open(breaker)
            if breaker.state == CircuitState.OPEN:
                return True
            if breaker.state == CircuitState.HALF_OPEN:
                return breaker.trial_in_flight
            return False

    def allow_request(self, name: str) -> bool:
        """
        Admit a call, reserving the single trial slot when HALF_OPEN.

        :returns: False if the call must short-circuit.
        """
        with self._lock:
            breaker = self._get(name)
            self._maybe_half_open(breaker)
            if breaker.state == CircuitState.OPEN:
                return False
            if breaker.state == CircuitState.HALF_OPEN:
                if breaker.trial_in_flight:
                    return False
                breaker.trial_in_flight = True
            return True

    def release_trial(self, name: str) -> None:
        """
        Free the HALF_OPEN trial slot of a call that ended without an outcome.

        The breaker stays HALF_OPEN so the next call becomes the trial.
        """
        with self._lock:
            breaker = self._breakers.get(name)
            if breaker is not None and breaker.state == CircuitState.HALF_OPEN:
                breaker.trial_in_flight = False

    def record(self, name: str, success: bool) -> CircuitState:
        """
        Record a terminal outcome for a name.

        :returns: The breaker state after the update.
        """
        with self._lock:
            breaker = self._get(name)
            now = self._clock()
            breaker.total_requests += 1

            if success:
                breaker.successes += 1
                breaker.last_success_time = now
                if breaker.state == CircuitState.HALF_OPEN:
                    breaker.reset()
                    logger.info(f"Circuit breaker closed for {name}")
                return breaker.state

            breaker.failures += 1
            breaker.last_failure_time = now

            if breaker.state == CircuitState.HALF_OPEN:
                breaker.state = CircuitState.OPEN
                breaker.trial_in_flight = False
                logger.warning(f"Circuit breaker re-opened for {name}")
            elif (
                breaker.state == CircuitState.CLOSED
                and breaker.total_requests >= self.config.min_requests
                and breaker.failure_rate >= self.config.failure_threshold
            ):
                breaker.state = CircuitState.OPEN
                logger.warning(
                    f"Circuit breaker opened for {name}",
                    failure_rate=f"{breaker.failure_rate:.2f}",
                    total=breaker.total_requests,
                )
            return breaker.state

    def retry_after(self, name: str) -> float:
        """Seconds until an OPEN breaker may move to HALF_OPEN."""
        with self._lock:
            breaker = self._get(name)
            if breaker.state != CircuitState.OPEN or breaker.last_failure_time is None:
                return 0.0
            elapsed = self._clock() - breaker.last_failure_time
            return max(0.0, self.config.timeout - elapsed)

    def get_status(self, name: str) -> BreakerState:
        """Return a copy of the breaker state of a name."""
        with self._lock:
            breaker = self._get(name)
            self._maybe_half_open(breaker)
            return BreakerState(**vars(breaker))

    def get_all_statuses(self) -> Dict[str, BreakerState]:
        with self._lock:
            for breaker in self._breakers.values():
                self._maybe_half_open(breaker)
            return {
                name: BreakerState(**vars(breaker))
                for name, breaker in self._breakers.items()
            }

    def reset(self, name: Optional[str] = None) -> None:
        """Reset one breaker, or all of them."""
        with self._lock:
            if name is None:
                self._breakers.clear()
            elif name in self._breakers:
                self._breakers[name].reset()
                self._breakers[name].last_failure_time = None
        logger.info(f"Circuit breaker reset for {name or 'all operations'}")
