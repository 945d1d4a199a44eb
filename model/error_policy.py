"""
Error classification model for the pipeliner.

Each failure is mapped onto an ErrorKind; every kind owns an ErrorPolicy that
decides whether it is retried, how fast the backoff grows and how many retries
it may consume.
"""

import json
from enum import Enum
from typing import Any, Dict


class ErrorKind(str, Enum):
    """Failure classifications."""

    NETWORK = "network"
    TIMEOUT = "timeout"
    SERVER = "server"
    RATE_LIMIT = "rate_limit"
    CLIENT = "client"
    SECURITY = "security"
    VALIDATION = "validation"
    CAPACITY = "capacity"
    CIRCUIT_OPEN = "circuit_open"
    DESTROYED = "destroyed"


class ErrorPolicy:
    """Retry policy of a single error kind.

    Policies are validated on construction and replaced, never mutated.
    """

    def __init__(
        self,
        retryable: bool = True,
        backoff_multiplier: float = 2.0,
        max_retries: int = 3,
    ):
        """Initialize the policy.

        :param retryable: Whether failures of this kind are retried at all.
        :param backoff_multiplier: Growth factor of the backoff per attempt.
        :param max_retries: Retry cap for this kind.
        :raises ValueError: If a value is out of range.
        """
        if backoff_multiplier < 1.0:
            raise ValueError("backoff multiplier must be at least 1.0")
        if max_retries < 0:
            raise ValueError("max retries cannot be negative")

        self.retryable = retryable
        self.backoff_multiplier = backoff_multiplier
        self.max_retries = max_retries

    def is_valid(self) -> bool:
        """Check if the policy values are valid."""
        return self.backoff_multiplier >= 1.0 and self.max_retries >= 0

    def copy(self, **changes: Any) -> "ErrorPolicy":
        """Return a new policy with the given fields replaced."""
        data = self.to_dict()
        data.update(changes)
        return ErrorPolicy.from_dict(data)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "retryable": self.retryable,
            "backoff_multiplier": self.backoff_multiplier,
            "max_retries": self.max_retries,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ErrorPolicy":
        """Create ErrorPolicy from dictionary."""
        return cls(
            retryable=data.get("retryable", True),
            backoff_multiplier=data.get("backoff_multiplier", 2.0),
            max_retries=data.get("max_retries", 3),
        )

    def to_json(self) -> str:
        """Convert to JSON string."""
        return json.dumps(self.to_dict())

    @classmethod
    def from_json(cls, json_str: str) -> "ErrorPolicy":
        """Create ErrorPolicy from JSON string."""
        return cls.from_dict(json.loads(json_str))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ErrorPolicy):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __repr__(self) -> str:
        return f"ErrorPolicy({self.to_dict()})"


def default_error_policies() -> Dict[ErrorKind, ErrorPolicy]:
    """Return a fresh copy of the built-in policy table."""
    return {
        ErrorKind.NETWORK: ErrorPolicy(True, 1.5, 3),
        ErrorKind.TIMEOUT: ErrorPolicy(True, 1.2, 2),
        ErrorKind.SERVER: ErrorPolicy(True, 2.0, 3),
        ErrorKind.RATE_LIMIT: ErrorPolicy(True, 3.0, 2),
        ErrorKind.CLIENT: ErrorPolicy(False, 1.0, 0),
        ErrorKind.SECURITY: ErrorPolicy(False, 1.0, 0),
        ErrorKind.VALIDATION: ErrorPolicy(False, 1.0, 0),
        ErrorKind.CAPACITY: ErrorPolicy(False, 1.0, 0),
        ErrorKind.CIRCUIT_OPEN: ErrorPolicy(False, 1.0, 0),
        ErrorKind.DESTROYED: ErrorPolicy(False, 1.0, 0),
    }


DEFAULT_ERROR_POLICIES: Dict[ErrorKind, ErrorPolicy] = default_error_policies()

USER_MESSAGES: Dict[ErrorKind, str] = {
    ErrorKind.TIMEOUT: "Request timed out. Please check your connection and try again.",
    ErrorKind.NETWORK: "Network connection problem. Please check your internet connection.",
    ErrorKind.SERVER: "Server error occurred. Please try again in a moment.",
    ErrorKind.CLIENT: "Invalid request. Please refresh the page and try again.",
    ErrorKind.RATE_LIMIT: "Too many requests. Please wait a moment and try again.",
    ErrorKind.SECURITY: "Security check failed. Please refresh the page and try again.",
    ErrorKind.VALIDATION: "Invalid request. Please refresh the page and try again.",
    ErrorKind.CAPACITY: "Too many pending requests. Please wait a moment and try again.",
    ErrorKind.CIRCUIT_OPEN: "Service temporarily unavailable. Please try again in a moment.",
    ErrorKind.DESTROYED: "The request was cancelled.",
}

PARSE_USER_MESSAGE = "Invalid response from server. Please try again."
DEFAULT_USER_MESSAGE = "An unexpected error occurred. Please try again."


def user_message_for(kind: ErrorKind) -> str:
    """Return the end-user message for an error kind."""
    return USER_MESSAGES.get(kind, DEFAULT_USER_MESSAGE)
