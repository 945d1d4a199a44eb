"""
Request history model.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional


class HistoryStatus:
    SUCCESS = "success"
    FAILED = "failed"
    PARTIAL_SUCCESS = "partial_success"


@dataclass
class HistoryEntry:
    """One completed operation (or batch) in the bounded history ring."""

    id: str
    action: str
    status: str
    duration: float = 0.0
    attempts: int = 0
    timestamp: datetime = field(default_factory=datetime.now)
    error: Optional[str] = None
    error_kind: Optional[str] = None
    result_preview: Optional[str] = None
    queue_wait: float = 0.0
    retry_history: List[Dict[str, Any]] = field(default_factory=list)
    debug_info: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self, include_debug_info: bool = False) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "action": self.action,
            "status": self.status,
            "duration": self.duration,
            "attempts": self.attempts,
            "timestamp": self.timestamp.isoformat(),
            "error": self.error,
            "error_kind": self.error_kind,
            "result_preview": self.result_preview,
            "queue_wait": self.queue_wait,
        }
        if include_debug_info:
            data["retry_history"] = self.retry_history
            data["debug_info"] = self.debug_info
        return data


@dataclass
class HistoryFilter:
    """Filter for history queries; entries are returned newest first."""

    limit: int = 50
    action: Optional[str] = None
    status: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    include_debug_info: bool = False

    def matches(self, entry: HistoryEntry) -> bool:
        if self.action is not None and entry.action != self.action:
            return False
        if self.status is not None and entry.status != self.status:
            return False
        if self.start_time is not None and entry.timestamp < self.start_time:
            return False
        if self.end_time is not None and entry.timestamp > self.end_time:
            return False
        return True
