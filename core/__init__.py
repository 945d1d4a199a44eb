"""
Core components of the pipeliner: transport, retry engine, circuit breakers,
request queue and the asyncio broadcaster and ticker.
"""

from .broadcaster import Broadcaster
from .circuit_breaker import CircuitBreakerRegistry
from .request_queue import RequestQueue
from .retryer import RetryEngine, classify_error
from .ticker import Ticker
from .transport import HTTPTransport

__all__ = [
    'Broadcaster',
    'CircuitBreakerRegistry',
    'RequestQueue',
    'RetryEngine',
    'classify_error',
    'Ticker',
    'HTTPTransport',
]
