"""
Retry engine of the pipeliner.

Classifies failures, decides whether they are retried, computes the jittered
exponential backoff and keeps one circuit breaker per operation name.
"""

import asyncio
import random
from typing import Any, Callable, Dict, Optional

import httpx

from .circuit_breaker import CircuitBreakerRegistry
from ..helper.error import (
    HTTPError,
    NetworkError,
    PipelineError,
    RequestTimeoutError,
    has_security_wording,
)
from ..helper.logging import get_logger
from ..model.breaker import BreakerState, CircuitState
from ..model.error_policy import ErrorKind, ErrorPolicy, default_error_policies
from ..model.options import BreakerConfig, RetryConfig

logger = get_logger(__name__)

MIN_DELAY = 0.1
DEFAULT_MULTIPLIER = 2.0

TIMEOUT_TYPES = (
    RequestTimeoutError,
    asyncio.TimeoutError,
    TimeoutError,
    httpx.TimeoutException,
)
NETWORK_TYPES = (NetworkError, httpx.TransportError, ConnectionError, OSError)


def classify_error(error: BaseException) -> ErrorKind:
    """
    Map a failure onto an error kind. The first matching rule wins.

    :param error: Any exception raised while performing an operation.
    :returns: The error kind.
    """
    if isinstance(error, PipelineError) and error.kind not in (
        ErrorKind.NETWORK,
        ErrorKind.TIMEOUT,
        ErrorKind.SERVER,
        ErrorKind.RATE_LIMIT,
        ErrorKind.CLIENT,
        ErrorKind.SECURITY,
    ):
        return error.kind

    if isinstance(error, TIMEOUT_TYPES):
        return ErrorKind.TIMEOUT
    if isinstance(error, NETWORK_TYPES):
        return ErrorKind.NETWORK

    status = getattr(error, "status", None)
    if isinstance(error, HTTPError) and status is not None:
        if status >= 500:
            return ErrorKind.SERVER
        if status == 429:
            return ErrorKind.RATE_LIMIT
        wording = f"{error.message} {error.body}"
        if status in (401, 403) and has_security_wording(wording):
            return ErrorKind.SECURITY
        if 400 <= status < 500:
            return ErrorKind.CLIENT

    message = str(getattr(error, "message", error)).lower()
    if "nonce" in message or "security" in message:
        return ErrorKind.SECURITY
    if "rate limit" in message or "too many" in message:
        return ErrorKind.RATE_LIMIT
    if "timeout" in message or "connection" in message:
        return ErrorKind.NETWORK

    return ErrorKind.NETWORK


class RetryEngine:
    """Retry decisions, backoff and circuit breaking."""

    def __init__(
        self,
        config: Optional[RetryConfig] = None,
        breaker_config: Optional[BreakerConfig] = None,
        rng: Optional[random.Random] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        """Initialize the retry engine.

        :param config: Global retry limits and backoff parameters.
        :param breaker_config: Circuit breaker thresholds.
        :param rng: Random source for jitter.
        :param clock: Monotonic time source for the breakers.
        """
        self.config = config or RetryConfig()
        self.breakers = CircuitBreakerRegistry(breaker_config, clock)
        self.policies: Dict[ErrorKind, ErrorPolicy] = default_error_policies()
        self._rng = rng or random.Random()
        self.retry_decisions = 0
        self.retries_granted = 0

    def classify_error(self, error: BaseException) -> ErrorKind:
        return classify_error(error)

    def get_error_policy(self, kind: ErrorKind) -> ErrorPolicy:
        return self.policies[kind]

    def set_error_policy(self, kind: ErrorKind, **changes: Any) -> ErrorPolicy:
        """
        Replace fields of the policy of an error kind.

        :raises ValueError: If the resulting policy is invalid.
        """
        self.policies[kind] = self.policies[kind].copy(**changes)
        logger.info(f"Updated error policy for {kind.value}", **changes)
        return self.policies[kind]

    def should_retry(
        self,
        error: BaseException,
        attempt: int,
        name: str,
        max_retries: Optional[int] = None,
    ) -> bool:
        """
        Decide whether a failed attempt is retried.

        :param error: The failure of the attempt.
        :param attempt: Retries performed so far.
        :param name: Operation name, selects the circuit breaker.
        :param max_retries: Per-operation retry limit, defaults to the global one.
        :returns: True if another attempt should be made.
        """
        self.retry_decisions += 1

        if self.breakers.is_open(name):
            logger.debug(f"Not retrying {name}: circuit open")
            return False

        kind = self.classify_error(error)
        policy = self.policies[kind]
        if not policy.retryable:
            return False

        limit = self.config.max_retries if max_retries is None else max_retries
        if attempt >= min(policy.max_retries, limit):
            return False

        self.retries_granted += 1
        return True

    def calculate_delay(
        self,
        attempt: int,
        base_delay: Optional[float] = None,
        kind: Optional[ErrorKind] = None,
    ) -> float:
        """
        Compute the backoff before a retry.

        ``min(max_delay, base * multiplier ** attempt)`` shifted by a uniform
        jitter of up to ``jitter_percent`` in either direction, never below
        0.1 seconds.

        :param attempt: Retry number.
        :param base_delay: Base delay in seconds, defaults to the configured one.
        :param kind: Error kind whose multiplier is used.
        :returns: Delay in seconds.
        """
        base = self.config.base_delay if base_delay is None else base_delay
        multiplier = (
            self.policies[kind].backoff_multiplier if kind else DEFAULT_MULTIPLIER
        )

        delay = min(self.config.max_delay, base * multiplier**attempt)
        jitter = delay * self.config.jitter_percent
        delay += self._rng.uniform(-jitter, jitter)

        return max(MIN_DELAY, delay)

    def is_circuit_open(self, name: str) -> bool:
        return self.breakers.is_open(name)

    def allow_request(self, name: str) -> bool:
        return self.breakers.allow_request(name)

    def release_trial(self, name: str) -> None:
        self.breakers.release_trial(name)

    def update_circuit_breaker(self, name: str, success: bool) -> CircuitState:
        return self.breakers.record(name, success)

    def get_circuit_breaker_status(self, name: str) -> BreakerState:
        return self.breakers.get_status(name)

    def get_all_circuit_breaker_statuses(self) -> Dict[str, BreakerState]:
        return self.breakers.get_all_statuses()

    def reset_circuit_breaker(self, name: Optional[str] = None) -> None:
        self.breakers.reset(name)

    def configure(self, **options: Any) -> None:
        """
        Update retry and breaker parameters.

        Accepts the fields of RetryConfig and BreakerConfig.
        """
        retry_values = vars(self.config).copy()
        breaker_values = vars(self.breakers.config).copy()
        for key, value in options.items():
            if key in retry_values:
                retry_values[key] = value
            elif key in breaker_values:
                breaker_values[key] = value
            else:
                raise ValueError(f"unknown retry engine option: {key}")

        self.config = RetryConfig(**retry_values)
        self.breakers.config = BreakerConfig(**breaker_values)

    def get_retry_statistics(self) -> Dict[str, Any]:
        statuses = self.get_all_circuit_breaker_statuses()
        return {
            "retry_decisions": self.retry_decisions,
            "retries_granted": self.retries_granted,
            "circuit_breakers": len(statuses),
            "open_circuits": sum(
                1 for status in statuses.values() if status.state == CircuitState.OPEN
            ),
            "half_open_circuits": sum(
                1
                for status in statuses.values()
                if status.state == CircuitState.HALF_OPEN
            ),
            "config": {
                "max_retries": self.config.max_retries,
                "base_delay": self.config.base_delay,
                "max_delay": self.config.max_delay,
                "jitter_percent": self.config.jitter_percent,
                "failure_threshold": self.breakers.config.failure_threshold,
                "breaker_timeout": self.breakers.config.timeout,
                "min_requests": self.breakers.config.min_requests,
            },
            "error_policies": {
                kind.value: policy.to_dict() for kind, policy in self.policies.items()
            },
        }
