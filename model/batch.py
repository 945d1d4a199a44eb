"""
Batch model for the pipeliner.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from .operation import Operation
from .options import SubmitOptions


@dataclass
class PendingBatch:
    """Operations of one name collected during an open batch window."""

    name: str
    operations: List[Operation] = field(default_factory=list)
    created_at: datetime = field(default_factory=datetime.now)
    timer: Optional[asyncio.TimerHandle] = field(default=None, repr=False)

    def cancel_timer(self) -> None:
        if self.timer is not None:
            self.timer.cancel()
            self.timer = None

    @property
    def fingerprints(self) -> List[str]:
        return [operation.fingerprint for operation in self.operations]


@dataclass
class BatchRequest:
    """One member of an explicitly submitted batch."""

    name: str
    payload: Dict[str, Any] = field(default_factory=dict)
    options: Optional[SubmitOptions] = None


@dataclass
class BatchResult:
    """
    Per-member results of a batch, in submission order.

    ``results[i]`` is None when member i failed and ``errors[i]`` is None
    when it succeeded.
    """

    results: List[Any] = field(default_factory=list)
    errors: List[Optional[BaseException]] = field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        return any(error is not None for error in self.errors)

    @property
    def success_count(self) -> int:
        return sum(1 for error in self.errors if error is None)

    @property
    def error_count(self) -> int:
        return len(self.errors) - self.success_count

    def to_dict(self) -> Dict[str, Any]:
        return {
            "results": self.results,
            "errors": [str(error) if error else None for error in self.errors],
            "has_errors": self.has_errors,
            "success_count": self.success_count,
            "error_count": self.error_count,
        }
