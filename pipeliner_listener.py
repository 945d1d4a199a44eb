"""
Listener-related methods of the Pipeliner.
Notifications and periodic metrics for UI collaborators.
"""

from typing import Any, Callable, Dict, Optional

from .core.broadcaster import BroadcasterQueue
from .helper.logging import get_logger
from .model.notification import Notification
from .model.operation import Operation
from .pipeliner_global import PipelinerGlobalMixin

logger = get_logger(__name__)


class PipelinerListenerMixin(PipelinerGlobalMixin):
    """
    Mixin class containing listener-related methods for the Pipeliner.
    """

    def __init__(self):
        super().__init__()

    def on_notification(self, callback: Callable[[Notification], Any]) -> None:
        """
        Register a sync or async callback for notifications.

        :param callback: Called with every Notification.
        """
        self.notification_broadcaster.add_callback(callback)

    def off_notification(self, callback: Callable[[Notification], Any]) -> bool:
        """Remove a notification callback."""
        return self.notification_broadcaster.remove_callback(callback)

    def on_metrics(self, callback: Callable[[Dict[str, Any]], Any]) -> None:
        """
        Register a callback for the periodic metrics report.

        :param callback: Called with the result of get_metrics().
        """
        self.metrics_broadcaster.add_callback(callback)

    def off_metrics(self, callback: Callable[[Dict[str, Any]], Any]) -> bool:
        """Remove a metrics callback."""
        return self.metrics_broadcaster.remove_callback(callback)

    async def subscribe_notifications(self) -> BroadcasterQueue[Notification]:
        """Subscribe a queue receiving every notification."""
        return await self.notification_broadcaster.subscribe()

    async def unsubscribe_notifications(
        self, queue: BroadcasterQueue[Notification]
    ) -> None:
        await self.notification_broadcaster.unsubscribe(queue)

    async def _notify(
        self,
        notification_type: str,
        message: str,
        operation: Optional[Operation] = None,
        error_kind: Optional[str] = None,
    ) -> None:
        notification = Notification(
            type=notification_type,
            message=message,
            action=operation.name if operation else None,
            operation_id=str(operation.id) if operation else None,
            error_kind=error_kind,
        )
        await self.notification_broadcaster.broadcast(notification)
