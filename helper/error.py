"""
Error taxonomy of the pipeliner.

Every error raised by the pipeline derives from PipelineError. Errors carry a
classification kind, the retry hint and user-facing message derived from that
kind, and a trace of the functions they passed through.
"""

import inspect
from types import FrameType
from typing import List, Optional

from ..model.error_policy import (
    DEFAULT_ERROR_POLICIES,
    ErrorKind,
    PARSE_USER_MESSAGE,
    user_message_for,
)

SECURITY_WORDING = ("nonce", "security", "token")


def _caller_trace(trace: str, depth: int = 2) -> str:
    """Prefix a trace with the name of the calling function."""
    current_frame = inspect.currentframe()
    frame: Optional[FrameType] = current_frame
    for _ in range(depth):
        if frame is None:
            break
        frame = frame.f_back
    if frame:
        return f"{frame.f_code.co_name} - {trace}"
    return trace


class PipelineError(Exception):
    """
    Base error with classification and trace information.
    """

    kind: ErrorKind = ErrorKind.NETWORK

    def __init__(self, message: str, original: Optional[Exception] = None):
        """Initialize the error with a message and an optional cause."""
        self.message = message
        self.original = original
        self.trace: List[str] = []
        super().__init__(message)

    @property
    def retryable(self) -> bool:
        """Whether the error kind is retried under the default policies."""
        return DEFAULT_ERROR_POLICIES[self.kind].retryable

    @property
    def user_message(self) -> str:
        """Message suitable for end users."""
        return user_message_for(self.kind)

    def wrap(self, trace: str) -> "PipelineError":
        """
        Append a trace entry naming the calling function and return self.

        :param trace: Short description of the failing step.
        :returns: The same error, for use in ``raise err.wrap(...)``.
        """
        self.trace.append(_caller_trace(trace))
        return self

    def __str__(self) -> str:
        """Return formatted error message with trace."""
        if self.trace:
            return f"{self.message} | Trace: {', '.join(self.trace)}"
        return self.message


class TransportError(PipelineError):
    """Failure raised by the HTTP transport."""


class NetworkError(TransportError):
    """No response was received at all."""

    kind = ErrorKind.NETWORK


class RequestTimeoutError(TransportError):
    """The request exceeded its deadline and was cancelled."""

    kind = ErrorKind.TIMEOUT


class ParseError(TransportError):
    """A body was received but could not be decoded."""

    kind = ErrorKind.NETWORK

    @property
    def user_message(self) -> str:
        return PARSE_USER_MESSAGE


class HTTPError(TransportError):
    """The backend answered with an error status."""

    def __init__(
        self,
        message: str,
        status: int,
        body: str = "",
        original: Optional[Exception] = None,
    ):
        super().__init__(message, original)
        self.status = status
        self.body = body


class ClientError(HTTPError):
    """HTTP 4xx."""

    kind = ErrorKind.CLIENT


class RateLimitError(ClientError):
    """HTTP 429."""

    kind = ErrorKind.RATE_LIMIT


class SecurityError(ClientError):
    """HTTP 401/403 caused by a rejected security token."""

    kind = ErrorKind.SECURITY


class ServerError(HTTPError):
    """HTTP 5xx."""

    kind = ErrorKind.SERVER


class BackendError(PipelineError):
    """The backend answered with ``success: false``.

    The kind is derived from the message wording when the error is classified.
    """

    def __init__(self, message: str, data: object = None):
        super().__init__(message)
        self.data = data


class ValidationError(PipelineError):
    """The submission itself is invalid (for example a missing nonce)."""

    kind = ErrorKind.VALIDATION


class CapacityError(PipelineError):
    """The queue is full."""

    kind = ErrorKind.CAPACITY

    def __init__(self, message: str, max_size: int = 0):
        super().__init__(message)
        self.max_size = max_size


class CircuitOpenError(PipelineError):
    """The circuit breaker for an operation name is open."""

    kind = ErrorKind.CIRCUIT_OPEN

    def __init__(self, name: str, retry_after: float = 0.0):
        super().__init__(
            f"Circuit breaker open for '{name}', retry in {retry_after:.1f}s"
        )
        self.name = name
        self.retry_after = retry_after


class PipelineDestroyedError(PipelineError):
    """The pipeline was torn down before the operation completed."""

    kind = ErrorKind.DESTROYED


def has_security_wording(text: str) -> bool:
    """Check whether a message mentions a security token."""
    lowered = text.lower()
    return any(word in lowered for word in SECURITY_WORDING)


def http_error_from_status(status: int, reason: str = "", body: str = "") -> HTTPError:
    """
    Build the HTTPError subclass matching a response status.

    :param status: HTTP status code (>= 400).
    :param reason: Reason phrase of the response.
    :param body: Response body text, inspected for security wording.
    :returns: ServerError, RateLimitError, SecurityError or ClientError.
    """
    message = f"HTTP {status}: {reason}".rstrip(": ")
    if status >= 500:
        return ServerError(message, status, body)
    if status == 429:
        return RateLimitError(message, status, body)
    if status in (401, 403) and has_security_wording(f"{reason} {body}"):
        return SecurityError(message, status, body)
    return ClientError(message, status, body)


def user_message(error: BaseException, kind: ErrorKind) -> str:
    """End-user message for a classified failure."""
    if isinstance(error, ParseError):
        return error.user_message
    return user_message_for(kind)
