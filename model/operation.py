"""
Operation model for the pipeliner.
An operation is one named backend call with its payload and outcome handle.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID, uuid4

from .options import Priority, SubmitOptions


class OperationStatus:
    QUEUED = "QUEUED"
    BATCHED = "BATCHED"
    RUNNING = "RUNNING"
    RETRYING = "RETRYING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


@dataclass
class Operation:
    """
    Operation represents one submitted backend call.
    """

    id: UUID = field(default_factory=uuid4)
    name: str = ""
    payload: Dict[str, Any] = field(default_factory=dict)
    priority: Priority = Priority.NORMAL
    options: SubmitOptions = field(default_factory=SubmitOptions)
    fingerprint: str = ""

    # State
    status: str = OperationStatus.QUEUED
    attempts: int = 0
    attempt_times: List[datetime] = field(default_factory=list)
    retry_history: List[Dict[str, Any]] = field(default_factory=list)
    error: Optional[str] = None

    # Timestamps
    created_at: datetime = field(default_factory=datetime.now)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    outcome: Optional["asyncio.Future[Any]"] = field(
        default=None, repr=False, compare=False
    )

    def ensure_outcome(self) -> "asyncio.Future[Any]":
        """Create the outcome future on the running loop if missing."""
        if self.outcome is None:
            self.outcome = asyncio.get_running_loop().create_future()
        return self.outcome

    def resolve_outcome(self, result: Any) -> bool:
        """
        Fulfil the outcome with a result.

        :returns: False if the outcome was already settled.
        """
        if self.is_settled:
            return False
        self.status = OperationStatus.SUCCEEDED
        self.finished_at = datetime.now()
        if self.outcome is not None:
            self.outcome.set_result(result)
        return True

    def fail_outcome(
        self, error: BaseException, status: str = OperationStatus.FAILED
    ) -> bool:
        """
        Fail the outcome with an error.

        :returns: False if the outcome was already settled.
        """
        if self.is_settled:
            return False
        self.status = status
        self.error = str(error)
        self.finished_at = datetime.now()
        if self.outcome is not None:
            self.outcome.set_exception(error)
        return True

    @property
    def is_settled(self) -> bool:
        return self.outcome is not None and self.outcome.done()

    @property
    def duration(self) -> float:
        """Seconds between the first attempt and completion."""
        if self.started_at is None:
            return 0.0
        end = self.finished_at or datetime.now()
        return (end - self.started_at).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        """Convert operation to dictionary for serialization."""
        return {
            "id": str(self.id),
            "name": self.name,
            "payload": self.payload,
            "priority": self.priority.value,
            "options": self.options.to_dict(),
            "fingerprint": self.fingerprint,
            "status": self.status,
            "attempts": self.attempts,
            "error": self.error,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Operation":
        """Create operation from dictionary."""
        operation = cls()
        if data.get("id"):
            operation.id = UUID(data["id"])
        operation.name = data.get("name", "")
        operation.payload = data.get("payload") or {}
        operation.priority = Priority.parse(data.get("priority", Priority.NORMAL))
        if data.get("options"):
            operation.options = SubmitOptions.from_dict(data["options"])
        operation.fingerprint = data.get("fingerprint", "")
        operation.status = data.get("status", OperationStatus.QUEUED)
        operation.attempts = data.get("attempts", 0)
        operation.error = data.get("error")
        if data.get("created_at"):
            operation.created_at = datetime.fromisoformat(data["created_at"])
        return operation


def new_operation(
    name: str,
    payload: Optional[Dict[str, Any]] = None,
    options: Optional[SubmitOptions] = None,
) -> Operation:
    """
    Create a new operation.

    :param name: Logical operation name, for example ``save_settings``.
    :param payload: Insertion-ordered payload mapping.
    :param options: Submission options.
    :returns: New operation in QUEUED state without an outcome handle.
    :raises ValueError: If the name or payload is invalid.
    """
    if not name or len(name) > 100:
        raise ValueError("operation name must have a length between 1 and 100")
    if payload is not None and not isinstance(payload, dict):
        raise ValueError("operation payload must be a mapping")

    options = options or SubmitOptions()

    operation = Operation()
    operation.name = name
    operation.payload = dict(payload or {})
    operation.options = options
    operation.priority = options.priority
    return operation
