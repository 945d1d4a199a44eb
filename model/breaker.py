"""
Circuit breaker state model.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


class CircuitState(str, Enum):
    """Breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class BreakerState:
    """
    Health counters of one operation name.

    Timestamps are values of the breaker clock (monotonic seconds by default).
    """

    name: str = ""
    state: CircuitState = CircuitState.CLOSED
    total_requests: int = 0
    failures: int = 0
    successes: int = 0
    last_failure_time: Optional[float] = None
    last_success_time: Optional[float] = None
    trial_in_flight: bool = False

    @property
    def failure_rate(self) -> float:
        if self.total_requests == 0:
            return 0.0
        return self.failures / self.total_requests

    def reset(self) -> None:
        """Return to CLOSED with zeroed counters."""
        self.state = CircuitState.CLOSED
        self.total_requests = 0
        self.failures = 0
        self.successes = 0
        self.trial_in_flight = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "state": self.state.value,
            "total_requests": self.total_requests,
            "failures": self.failures,
            "successes": self.successes,
            "failure_rate": self.failure_rate,
            "last_failure_time": self.last_failure_time,
            "last_success_time": self.last_success_time,
        }
