"""
Notifications emitted to UI collaborators.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional


class NotificationType:
    SUCCESS = "success"
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


@dataclass
class Notification:
    """A user-facing message about pipeline activity."""

    type: str
    message: str
    action: Optional[str] = None
    operation_id: Optional[str] = None
    error_kind: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "message": self.message,
            "action": self.action,
            "operation_id": self.operation_id,
            "error_kind": self.error_kind,
            "timestamp": self.timestamp.isoformat(),
        }
