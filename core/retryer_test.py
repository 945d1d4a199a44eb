"""
Tests for the retry engine.
"""

import asyncio
import random
import unittest

import httpx

from .retryer import RetryEngine, classify_error
from ..helper.error import (
    BackendError,
    CapacityError,
    ClientError,
    NetworkError,
    ParseError,
    RequestTimeoutError,
    SecurityError,
    ServerError,
    ValidationError,
)
from ..model.breaker import CircuitState
from ..model.error_policy import ErrorKind
from ..model.options import BreakerConfig, RetryConfig


class TestClassifyError(unittest.TestCase):
    """Test cases for error classification."""

    def test_classification(self):
        test_cases = [
            ("pipeline timeout", RequestTimeoutError("late"), ErrorKind.TIMEOUT),
            ("asyncio timeout", asyncio.TimeoutError(), ErrorKind.TIMEOUT),
            ("httpx timeout", httpx.ReadTimeout("slow"), ErrorKind.TIMEOUT),
            ("pipeline network", NetworkError("refused"), ErrorKind.NETWORK),
            ("httpx connect", httpx.ConnectError("refused"), ErrorKind.NETWORK),
            ("connection reset", ConnectionResetError(), ErrorKind.NETWORK),
            ("server", ServerError("HTTP 502", 502), ErrorKind.SERVER),
            ("client", ClientError("HTTP 404", 404), ErrorKind.CLIENT),
            ("security", SecurityError("HTTP 403", 403, "bad nonce"), ErrorKind.SECURITY),
            (
                "forbidden without wording",
                ClientError("HTTP 403", 403, "denied"),
                ErrorKind.CLIENT,
            ),
            ("validation", ValidationError("no nonce"), ErrorKind.VALIDATION),
            ("capacity", CapacityError("full", 200), ErrorKind.CAPACITY),
            ("parse", ParseError("bad json"), ErrorKind.NETWORK),
            ("backend nonce", BackendError("Invalid nonce"), ErrorKind.SECURITY),
            ("backend rate", BackendError("Too many requests"), ErrorKind.RATE_LIMIT),
            ("message timeout", ValueError("timeout reached"), ErrorKind.NETWORK),
            ("unknown", ValueError("something odd"), ErrorKind.NETWORK),
        ]

        for name, error, expected in test_cases:
            with self.subTest(name=name):
                self.assertEqual(classify_error(error), expected)


class TestShouldRetry(unittest.TestCase):
    """Test cases for retry decisions."""

    def setUp(self):
        self.engine = RetryEngine(RetryConfig(max_retries=3))

    def test_retryable_within_limit(self):
        error = ServerError("HTTP 500", 500)

        self.assertTrue(self.engine.should_retry(error, 0, "save_settings"))
        self.assertTrue(self.engine.should_retry(error, 2, "save_settings"))
        self.assertFalse(self.engine.should_retry(error, 3, "save_settings"))

    def test_policy_limit_wins(self):
        """Test that the kind's cap applies below the global limit."""
        error = httpx.ReadTimeout("slow")

        self.assertTrue(self.engine.should_retry(error, 1, "load_settings"))
        self.assertFalse(self.engine.should_retry(error, 2, "load_settings"))

    def test_operation_limit(self):
        error = NetworkError("refused")

        self.assertTrue(self.engine.should_retry(error, 0, "a", max_retries=1))
        self.assertFalse(self.engine.should_retry(error, 1, "a", max_retries=1))
        self.assertFalse(self.engine.should_retry(error, 0, "a", max_retries=0))

    def test_non_retryable(self):
        self.assertFalse(self.engine.should_retry(ClientError("x", 400), 0, "a"))
        self.assertFalse(self.engine.should_retry(ValidationError("x"), 0, "a"))

    def test_open_circuit_blocks_retry(self):
        engine = RetryEngine(breaker_config=BreakerConfig(min_requests=1))
        engine.update_circuit_breaker("save_settings", False)

        self.assertTrue(engine.is_circuit_open("save_settings"))
        self.assertFalse(
            engine.should_retry(NetworkError("refused"), 0, "save_settings")
        )

    def test_set_error_policy(self):
        self.engine.set_error_policy(ErrorKind.CLIENT, retryable=True, max_retries=1)

        self.assertTrue(self.engine.should_retry(ClientError("x", 400), 0, "a"))
        self.assertFalse(self.engine.should_retry(ClientError("x", 400), 1, "a"))

    def test_statistics(self):
        self.engine.should_retry(NetworkError("refused"), 0, "a")
        self.engine.should_retry(ClientError("x", 400), 0, "a")

        statistics = self.engine.get_retry_statistics()

        self.assertEqual(statistics["retry_decisions"], 2)
        self.assertEqual(statistics["retries_granted"], 1)
        self.assertEqual(statistics["config"]["max_retries"], 3)
        self.assertIn("network", statistics["error_policies"])


class TestCalculateDelay(unittest.TestCase):
    """Test cases for backoff computation."""

    def test_without_jitter(self):
        engine = RetryEngine(RetryConfig(base_delay=1.0, jitter_percent=0.0))

        self.assertEqual(engine.calculate_delay(1, kind=ErrorKind.NETWORK), 1.5)
        self.assertEqual(engine.calculate_delay(2), 4.0)
        self.assertEqual(engine.calculate_delay(10, kind=ErrorKind.SERVER), 30.0)

    def test_minimum_delay(self):
        engine = RetryEngine(RetryConfig(base_delay=0.01, jitter_percent=0.0))

        self.assertEqual(engine.calculate_delay(0), 0.1)

    def test_jitter_bounds(self):
        engine = RetryEngine(
            RetryConfig(base_delay=1.0, jitter_percent=0.1), rng=random.Random(42)
        )

        for _ in range(50):
            delay = engine.calculate_delay(1, kind=ErrorKind.SERVER)
            self.assertGreaterEqual(delay, 1.8)
            self.assertLessEqual(delay, 2.2)

    def test_explicit_base_delay(self):
        engine = RetryEngine(RetryConfig(jitter_percent=0.0))

        self.assertEqual(engine.calculate_delay(1, base_delay=0.5), 1.0)


class TestConfigure(unittest.TestCase):
    """Test cases for runtime configuration."""

    def test_configure(self):
        engine = RetryEngine()

        engine.configure(max_retries=5, failure_threshold=0.8)

        self.assertEqual(engine.config.max_retries, 5)
        self.assertEqual(engine.breakers.config.failure_threshold, 0.8)

    def test_configure_rejects_unknown(self):
        with self.assertRaises(ValueError):
            RetryEngine().configure(retries=5)

    def test_reset_circuit_breaker(self):
        engine = RetryEngine(breaker_config=BreakerConfig(min_requests=1))
        engine.update_circuit_breaker("a", False)

        engine.reset_circuit_breaker("a")

        self.assertEqual(engine.get_circuit_breaker_status("a").state, CircuitState.CLOSED)


if __name__ == "__main__":
    unittest.main()
