"""
Priority request queue of the pipeliner.

Three FIFO lanes (high, normal, low), fingerprint deduplication, a concurrency
ceiling, a bounded backlog and snapshot persistence. Dispatch happens on a
cooperative tick and right after every enqueue and completion.
"""

import asyncio
import dataclasses
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Set
from uuid import UUID

from .ticker import Ticker
from ..database.snapshot_store import SnapshotStore
from ..helper.error import CapacityError, PipelineDestroyedError, PipelineError
from ..helper.fingerprint import create_fingerprint
from ..helper.logging import get_logger
from ..model.operation import Operation, OperationStatus
from ..model.options import PRIORITY_ORDER, Priority, QueueConfig

logger = get_logger(__name__)

SNAPSHOT_VERSION = "1.0.0"

ExecutionCallback = Callable[[Operation], Awaitable[Any]]


@dataclass
class QueueEntry:
    """A pending operation in one lane."""

    operation: Operation
    priority: Priority = Priority.NORMAL
    enqueued_at: float = field(default_factory=time.time)

    @property
    def fingerprint(self) -> str:
        return self.operation.fingerprint

    def wait_time(self, now: Optional[float] = None) -> float:
        return max(0.0, (now or time.time()) - self.enqueued_at)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "operation": self.operation.to_dict(),
            "priority": self.priority.value,
            "enqueued_at": self.enqueued_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "QueueEntry":
        return cls(
            operation=Operation.from_dict(data["operation"]),
            priority=Priority.parse(data.get("priority", Priority.NORMAL)),
            enqueued_at=float(data["enqueued_at"]),
        )


@dataclass
class RecentCompletion:
    operation: Operation
    completed_at: float


def _running_loop() -> Optional[asyncio.AbstractEventLoop]:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


class RequestQueue:
    """Priority lanes with admission control."""

    def __init__(
        self,
        config: Optional[QueueConfig] = None,
        store: Optional[SnapshotStore] = None,
        clock: Optional[Callable[[], float]] = None,
        wall_clock: Optional[Callable[[], float]] = None,
    ):
        """
        Initialize the queue and restore a persisted backlog.

        :param config: Queue sizing, dedup window and persistence settings.
        :param store: Snapshot store; persistence is off without one.
        :param clock: Monotonic time source for the dedup window.
        :param wall_clock: Epoch time source for snapshot staleness.
        """
        self.config = config or QueueConfig()
        self.store = store
        self._clock = clock or time.monotonic
        self._wall_clock = wall_clock or time.time

        self.lanes: Dict[Priority, Deque[QueueEntry]] = {
            priority: deque() for priority in PRIORITY_ORDER
        }
        self.active: Dict[UUID, Operation] = {}
        self.recent: Deque[RecentCompletion] = deque()

        self._execution_callback: Optional[ExecutionCallback] = None
        self._ticker: Optional[Ticker] = None
        self._tasks: Set["asyncio.Task[None]"] = set()
        # Created on first wait so it binds to the running loop.
        self._slot_freed: Optional[asyncio.Event] = None
        self._destroyed = False

        self.total_queued = 0
        self.total_processed = 0
        self.total_deduped = 0
        self.max_queue_length = 0
        self.total_wait_time = 0.0
        self.waited_count = 0

        if self.persistence_enabled:
            self.restore()

    @property
    def persistence_enabled(self) -> bool:
        return self.store is not None and self.config.enable_persistence

    @property
    def total_pending(self) -> int:
        return sum(len(lane) for lane in self.lanes.values())

    @property
    def is_processing(self) -> bool:
        return self._ticker is not None and self._ticker.is_running()

    def fingerprint(self, operation: Operation) -> str:
        return create_fingerprint(
            operation.name, operation.payload, self.config.salient_fields
        )

    def _prune_recent(self) -> None:
        horizon = self._clock() - self.config.dedup_window
        while self.recent and self.recent[0].completed_at < horizon:
            self.recent.popleft()

    def find_duplicate(self, fingerprint: str) -> Optional[Operation]:
        """
        Look up an active, pending or recently completed operation.

        :param fingerprint: Fingerprint of the new operation.
        :returns: The existing operation, or None.
        """
        if not fingerprint:
            return None

        duplicate: Optional[Operation] = None
        for operation in self.active.values():
            if operation.fingerprint == fingerprint:
                duplicate = operation
                break

        if duplicate is None:
            for lane in self.lanes.values():
                for entry in lane:
                    if entry.fingerprint == fingerprint:
                        duplicate = entry.operation
                        break
                if duplicate is not None:
                    break

        if duplicate is None:
            self._prune_recent()
            for completion in reversed(self.recent):
                if completion.operation.fingerprint == fingerprint:
                    duplicate = completion.operation
                    break

        if duplicate is not None:
            self.total_deduped += 1
            logger.debug("Duplicate operation", fingerprint=fingerprint)
        return duplicate

    def enqueue(
        self, operation: Operation, priority: Optional[Priority] = None
    ) -> UUID:
        """
        Add an operation to its lane.

        :param operation: The operation to enqueue.
        :param priority: Lane override; defaults to the operation priority.
        :returns: The id of the enqueued operation, or of the existing
            duplicate.
        :raises PipelineDestroyedError: If the queue was destroyed.
        :raises CapacityError: If the backlog is full. Nothing is mutated.
        """
        if self._destroyed:
            raise PipelineDestroyedError("Request queue destroyed")

        if not operation.fingerprint:
            operation.fingerprint = self.fingerprint(operation)

        duplicate = self.find_duplicate(operation.fingerprint)
        if duplicate is not None:
            return duplicate.id

        if self.total_pending >= self.config.max_queue_size:
            raise CapacityError(
                f"Queue is full (max size: {self.config.max_queue_size})",
                self.config.max_queue_size,
            )

        lane = Priority.parse(priority if priority is not None else operation.priority)
        operation.priority = lane
        operation.status = OperationStatus.QUEUED
        self.lanes[lane].append(QueueEntry(operation, lane, self._wall_clock()))

        self.total_queued += 1
        self.max_queue_length = max(self.max_queue_length, self.total_pending)
        logger.debug(
            "Enqueued operation",
            name=operation.name,
            lane=lane.value,
            pending=self.total_pending,
        )

        self.persist()
        if self._execution_callback is not None:
            self.start_processing()
        return operation.id

    def dequeue(self) -> Optional[QueueEntry]:
        """Pop the oldest entry of the highest non-empty lane."""
        for priority in PRIORITY_ORDER:
            if self.lanes[priority]:
                entry = self.lanes[priority].popleft()
                self.persist()
                return entry
        return None

    def can_admit(self) -> bool:
        return len(self.active) < self.config.max_concurrent

    def mark_active(self, operation: Operation) -> None:
        self.active[operation.id] = operation
        operation.status = OperationStatus.RUNNING

    async def acquire_slot(self, operation: Operation) -> None:
        """
        Wait for a free slot below the ceiling and mark the operation active.

        :raises PipelineDestroyedError: If the queue is destroyed while waiting.
        """
        while not self.can_admit():
            if self._destroyed:
                break
            if self._slot_freed is None:
                self._slot_freed = asyncio.Event()
            self._slot_freed.clear()
            await self._slot_freed.wait()

        if self._destroyed:
            raise PipelineDestroyedError("Request queue destroyed")
        self.mark_active(operation)

    def _wake_slot_waiters(self) -> None:
        if self._slot_freed is not None:
            self._slot_freed.set()

    def complete(self, operation: Operation, success: bool) -> None:
        """
        Release the slot of an active operation.

        Successful operations stay visible to deduplication for the dedup
        window.
        """
        if self.active.pop(operation.id, None) is None:
            return

        self.total_processed += 1
        if success:
            self.recent.append(RecentCompletion(operation, self._clock()))
            self._prune_recent()

        self._wake_slot_waiters()
        self.process_queue()

    def set_execution_callback(self, callback: ExecutionCallback) -> None:
        """
        Set the coroutine that executes dispatched operations.

        A restored backlog waits for start_processing.
        """
        self._execution_callback = callback

    def start_processing(self) -> bool:
        """
        Start the tick loop and dispatch immediately.

        :returns: False if no event loop is running yet.
        """
        if self._destroyed or self._execution_callback is None:
            return False
        if _running_loop() is None:
            logger.debug("No running event loop, processing deferred")
            return False

        if not self.is_processing:
            self._ticker = Ticker(
                timedelta(seconds=self.config.tick_interval), self.process_queue
            )
            self._ticker.go()
            logger.debug("Queue processing started", pending=self.total_pending)

        self.process_queue()
        return True

    def stop_processing(self) -> None:
        if self._ticker is not None:
            self._ticker.stop()
            self._ticker = None

    def process_queue(self) -> None:
        """Dispatch pending entries while the ceiling admits them."""
        loop = _running_loop()
        if self._destroyed or self._execution_callback is None or loop is None:
            return

        now = self._wall_clock()
        while self.can_admit():
            entry = self.dequeue()
            if entry is None:
                break

            self.total_wait_time += entry.wait_time(now)
            self.waited_count += 1
            self.mark_active(entry.operation)

            task = loop.create_task(self._run(entry.operation))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

        if self.total_pending == 0 and not self.active:
            self.stop_processing()

    async def _run(self, operation: Operation) -> None:
        success = False
        try:
            if self._execution_callback is not None:
                await self._execution_callback(operation)
                success = operation.status == OperationStatus.SUCCEEDED
        except Exception as e:
            operation.fail_outcome(e)
            logger.error("Queued operation failed", error=e, name=operation.name)
        finally:
            self.complete(operation, success)

    def persist(self) -> None:
        """Write the pending lanes to the snapshot store."""
        if not self.persistence_enabled or self._destroyed:
            return

        try:
            if self.total_pending == 0:
                self.store.delete(self.config.persistence_key)
                return
            self.store.save(self.config.persistence_key, self.snapshot())
        except PipelineError as e:
            logger.warning("Failed to persist queue", error=e)

    def snapshot(self) -> Dict[str, Any]:
        return {
            "version": SNAPSHOT_VERSION,
            "timestamp": self._wall_clock(),
            "lanes": {
                priority.value: [entry.to_dict() for entry in lane]
                for priority, lane in self.lanes.items()
            },
        }

    def restore(self) -> int:
        """
        Rebuild the lanes from the snapshot store.

        Snapshots older than ``max_snapshot_age`` or unreadable ones are
        deleted.

        :returns: Number of restored entries.
        """
        if not self.persistence_enabled:
            return 0

        key = self.config.persistence_key
        try:
            snapshot = self.store.load(key)
        except PipelineError as e:
            logger.warning("Failed to load queue snapshot", error=e)
            return 0
        if not snapshot:
            return 0

        age = self._wall_clock() - float(snapshot.get("timestamp", 0))
        if age > self.config.max_snapshot_age:
            logger.info("Discarding stale queue snapshot", age=f"{age:.0f}s")
            self.store.delete(key)
            return 0

        try:
            restored: Dict[Priority, List[QueueEntry]] = {
                priority: [
                    QueueEntry.from_dict(item)
                    for item in snapshot.get("lanes", {}).get(priority.value, [])
                ]
                for priority in PRIORITY_ORDER
            }
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("Discarding unreadable queue snapshot", error=e)
            self.store.delete(key)
            return 0

        count = 0
        for priority, entries in restored.items():
            for entry in entries:
                if not entry.operation.fingerprint:
                    entry.operation.fingerprint = self.fingerprint(entry.operation)
                self.lanes[priority].append(entry)
                count += 1

        self.max_queue_length = max(self.max_queue_length, self.total_pending)
        logger.info("Restored queue snapshot", entries=count)
        return count

    def get_pending(self) -> List[Operation]:
        return [
            entry.operation
            for priority in PRIORITY_ORDER
            for entry in self.lanes[priority]
        ]

    def get_active(self) -> List[Operation]:
        return list(self.active.values())

    def get_metrics(self) -> Dict[str, Any]:
        return {
            "total_queued": self.total_queued,
            "total_processed": self.total_processed,
            "total_deduped": self.total_deduped,
            "max_queue_length": self.max_queue_length,
            "average_wait_time": (
                self.total_wait_time / self.waited_count if self.waited_count else 0.0
            ),
            "current_queue_length": self.total_pending,
            "active_requests": len(self.active),
            "lanes": {
                priority.value: len(lane) for priority, lane in self.lanes.items()
            },
        }

    def get_status(self) -> Dict[str, Any]:
        return {
            "lanes": {
                priority.value: len(lane) for priority, lane in self.lanes.items()
            },
            "total_pending": self.total_pending,
            "active": len(self.active),
            "is_processing": self.is_processing,
            "max_concurrent": self.config.max_concurrent,
            "max_queue_size": self.config.max_queue_size,
            "destroyed": self._destroyed,
            "metrics": self.get_metrics(),
        }

    def configure(self, **options: Any) -> None:
        """Replace fields of the queue configuration."""
        self.config = dataclasses.replace(self.config, **options)
        self._wake_slot_waiters()
        self.process_queue()

    def clear(self, error: Optional[BaseException] = None) -> int:
        """
        Fail and drop every pending entry.

        :returns: Number of dropped entries.
        """
        error = error or PipelineError("Queue cleared")
        dropped = 0
        for lane in self.lanes.values():
            while lane:
                lane.popleft().operation.fail_outcome(error, OperationStatus.CANCELLED)
                dropped += 1
        self.persist()
        return dropped

    def destroy(
        self, error: Optional[BaseException] = None, keep_backlog: bool = False
    ) -> None:
        """
        Stop processing and fail every pending outcome.

        :param error: Error set on pending outcomes.
        :param keep_backlog: Persist the backlog for the next instance instead
            of deleting the snapshot.
        """
        if self._destroyed:
            return

        self.stop_processing()
        if self.persistence_enabled:
            if keep_backlog and self.total_pending > 0:
                self.persist()
            else:
                self.store.delete(self.config.persistence_key)

        self._destroyed = True
        error = error or PipelineDestroyedError("Request queue destroyed")
        for lane in self.lanes.values():
            while lane:
                lane.popleft().operation.fail_outcome(error, OperationStatus.CANCELLED)

        for task in list(self._tasks):
            task.cancel()
        for operation in self.active.values():
            operation.fail_outcome(error, OperationStatus.CANCELLED)
        self.active.clear()
        self.recent.clear()
        self._wake_slot_waiters()
        logger.info("Request queue destroyed")
