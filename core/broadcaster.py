"""
Typed broadcast channel using asyncio.

Each pipeline owns its channels. Listeners either subscribe a queue or
register a callback.
"""

import asyncio
import inspect
import uuid
from typing import Any, Callable, Dict, Generic, List, TypeVar

from ..helper.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class BroadcasterQueue(asyncio.Queue[T]):
    """An asyncio.Queue with a broadcaster ID for tracking."""

    def __init__(self, maxsize: int = 0):
        super().__init__(maxsize)
        self.broadcaster_id: str = ""


class Broadcaster(Generic[T]):
    """A broadcaster that manages listeners and broadcasts messages."""

    def __init__(self, name: str):
        self.name = name
        self.listeners: Dict[str, BroadcasterQueue[T]] = {}
        self.callbacks: List[Callable[[T], Any]] = []
        self._lock = asyncio.Lock()

    async def subscribe(self, maxsize: int = 0) -> BroadcasterQueue[T]:
        """Subscribe to broadcasts and return a queue for receiving messages."""
        queue = BroadcasterQueue[T](maxsize)
        queue.broadcaster_id = str(uuid.uuid4())

        async with self._lock:
            self.listeners[queue.broadcaster_id] = queue

        return queue

    async def unsubscribe(self, queue: BroadcasterQueue[T]) -> None:
        """Unsubscribe a queue from broadcasts."""
        async with self._lock:
            self.listeners.pop(queue.broadcaster_id, None)

    def add_callback(self, callback: Callable[[T], Any]) -> None:
        """Register a sync or async callback."""
        if callback not in self.callbacks:
            self.callbacks.append(callback)

    def remove_callback(self, callback: Callable[[T], Any]) -> bool:
        """Remove a callback. Returns False if it was not registered."""
        if callback in self.callbacks:
            self.callbacks.remove(callback)
            return True
        return False

    async def broadcast(self, message: T) -> None:
        """
        Broadcast a message to all subscribers.

        Callback failures are logged and do not reach the sender.
        """
        async with self._lock:
            current_listeners = list(self.listeners.values())

        for queue in current_listeners:
            try:
                queue.put_nowait(message)
            except asyncio.QueueFull:
                logger.warning(f"Listener queue full on '{self.name}', message dropped")

        for callback in list(self.callbacks):
            try:
                result = callback(message)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Callback failed on '{self.name}'", error=e)

    def clear(self) -> None:
        """Drop every listener and callback."""
        self.listeners.clear()
        self.callbacks.clear()

    @property
    def listener_count(self) -> int:
        return len(self.listeners) + len(self.callbacks)
