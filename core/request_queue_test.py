"""
Tests for the priority request queue.
"""

import asyncio
import unittest
from typing import List

from .request_queue import SNAPSHOT_VERSION, RequestQueue
from ..database.snapshot_store import MemorySnapshotStore
from ..helper.error import CapacityError, PipelineDestroyedError
from ..model.operation import Operation, OperationStatus, new_operation
from ..model.options import Priority, QueueConfig, SubmitOptions


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def _operation(name: str, priority: Priority = Priority.NORMAL, **payload) -> Operation:
    return new_operation(name, payload, SubmitOptions(priority=priority))


class TestRequestQueue(unittest.TestCase):
    """Test cases for lanes, deduplication and capacity."""

    def test_priority_order(self):
        queue = RequestQueue(QueueConfig())
        low = _operation("low", Priority.LOW)
        normal_first = _operation("normal", n=1)
        high = _operation("high", Priority.HIGH)
        normal_second = _operation("normal", n=2)

        for operation in (low, normal_first, high, normal_second):
            queue.enqueue(operation)

        order = []
        entry = queue.dequeue()
        while entry is not None:
            order.append(entry.operation)
            entry = queue.dequeue()

        self.assertEqual(order, [high, normal_first, normal_second, low])

    def test_priority_override(self):
        queue = RequestQueue(QueueConfig())
        operation = _operation("a")

        queue.enqueue(operation, Priority.HIGH)

        self.assertEqual(operation.priority, Priority.HIGH)
        self.assertEqual(queue.get_status()["lanes"]["high"], 1)

    def test_duplicate_returns_existing_id(self):
        queue = RequestQueue(QueueConfig())
        first = _operation("save_settings", settings={"color": "red"})
        second = _operation("save_settings", settings={"color": "red"})

        first_id = queue.enqueue(first)
        second_id = queue.enqueue(second)

        self.assertEqual(first_id, second_id)
        self.assertEqual(queue.total_pending, 1)
        self.assertEqual(queue.total_deduped, 1)

    def test_salient_fields(self):
        """Test that only the salient fields of save_settings are compared."""
        queue = RequestQueue(QueueConfig())
        first = _operation("save_settings", settings={"a": 1}, request_id="x")
        second = _operation("save_settings", settings={"a": 1}, request_id="y")

        self.assertEqual(queue.fingerprint(first), queue.fingerprint(second))

    def test_capacity(self):
        queue = RequestQueue(QueueConfig(max_queue_size=2))
        queue.enqueue(_operation("a"))
        queue.enqueue(_operation("b"))

        with self.assertRaises(CapacityError) as cm:
            queue.enqueue(_operation("c"))

        self.assertEqual(str(cm.exception), "Queue is full (max size: 2)")
        self.assertEqual(queue.total_pending, 2)
        self.assertEqual(queue.total_queued, 2)

    def test_recent_completion_window(self):
        clock = FakeClock()
        queue = RequestQueue(QueueConfig(dedup_window=5.0), clock=clock)
        operation = _operation("load_settings")
        operation.fingerprint = queue.fingerprint(operation)

        queue.mark_active(operation)
        self.assertIs(queue.find_duplicate(operation.fingerprint), operation)

        queue.complete(operation, True)
        clock.now += 4.0
        self.assertIs(queue.find_duplicate(operation.fingerprint), operation)

        clock.now += 2.0
        self.assertIsNone(queue.find_duplicate(operation.fingerprint))

    def test_failed_completion_is_forgotten(self):
        queue = RequestQueue(QueueConfig())
        operation = _operation("load_settings")
        operation.fingerprint = queue.fingerprint(operation)
        queue.mark_active(operation)

        queue.complete(operation, False)

        self.assertIsNone(queue.find_duplicate(operation.fingerprint))
        self.assertEqual(queue.total_processed, 1)

    def test_admission(self):
        queue = RequestQueue(QueueConfig(max_concurrent=1))
        self.assertTrue(queue.can_admit())

        operation = _operation("a")
        queue.mark_active(operation)

        self.assertFalse(queue.can_admit())
        self.assertEqual(operation.status, OperationStatus.RUNNING)

        queue.complete(operation, True)
        queue.complete(operation, True)
        self.assertTrue(queue.can_admit())
        self.assertEqual(queue.total_processed, 1)

    def test_slot_wait_in_loop_started_after_construction(self):
        """Test that a queue built outside any loop can wait for slots later."""
        queue = RequestQueue(QueueConfig(max_concurrent=1))
        first = _operation("first")
        second = _operation("second")

        async def scenario() -> None:
            await queue.acquire_slot(first)
            waiter = asyncio.create_task(queue.acquire_slot(second))
            await asyncio.sleep(0.01)
            queue.complete(first, True)
            await asyncio.wait_for(waiter, 1)

        asyncio.run(scenario())

        self.assertIn(second.id, queue.active)

    def test_clear(self):
        queue = RequestQueue(QueueConfig())
        queue.enqueue(_operation("a"))
        queue.enqueue(_operation("b"))

        self.assertEqual(queue.clear(), 2)
        self.assertEqual(queue.total_pending, 0)

    def test_configure(self):
        queue = RequestQueue(QueueConfig())

        queue.configure(max_concurrent=2)

        self.assertEqual(queue.config.max_concurrent, 2)
        with self.assertRaises(ValueError):
            queue.configure(max_concurrent=0)


class TestRequestQueuePersistence(unittest.TestCase):
    """Test cases for snapshot persistence."""

    def test_persist_and_restore(self):
        store = MemorySnapshotStore()
        config = QueueConfig(persistence_key="test_queue")
        queue = RequestQueue(config, store)
        queue.enqueue(_operation("high", Priority.HIGH, value=1))
        queue.enqueue(_operation("low", Priority.LOW))

        snapshot = store.load("test_queue")
        self.assertEqual(snapshot["version"], SNAPSHOT_VERSION)
        self.assertEqual(len(snapshot["lanes"]["high"]), 1)

        restored = RequestQueue(config, store)

        pending = restored.get_pending()
        self.assertEqual([operation.name for operation in pending], ["high", "low"])
        self.assertEqual(pending[0].payload, {"value": 1})
        self.assertIsNone(pending[0].outcome)

    def test_empty_queue_deletes_snapshot(self):
        store = MemorySnapshotStore()
        queue = RequestQueue(QueueConfig(persistence_key="test_queue"), store)
        queue.enqueue(_operation("a"))

        queue.dequeue()

        self.assertNotIn("test_queue", store)

    def test_stale_snapshot_is_discarded(self):
        store = MemorySnapshotStore()
        wall_clock = FakeClock(1_700_000_000.0)
        config = QueueConfig(persistence_key="test_queue")
        RequestQueue(config, store, wall_clock=wall_clock).enqueue(_operation("a"))

        wall_clock.now += 3601.0
        restored = RequestQueue(config, store, wall_clock=wall_clock)

        self.assertEqual(restored.total_pending, 0)
        self.assertNotIn("test_queue", store)

    def test_unreadable_snapshot_is_discarded(self):
        store = MemorySnapshotStore()
        store.save(
            "test_queue",
            {"version": "1.0.0", "timestamp": 9e12, "lanes": {"high": [{}]}},
        )

        queue = RequestQueue(QueueConfig(persistence_key="test_queue"), store)

        self.assertEqual(queue.total_pending, 0)
        self.assertNotIn("test_queue", store)

    def test_persistence_disabled(self):
        store = MemorySnapshotStore()
        queue = RequestQueue(
            QueueConfig(persistence_key="test_queue", enable_persistence=False), store
        )

        queue.enqueue(_operation("a"))

        self.assertFalse(queue.persistence_enabled)
        self.assertNotIn("test_queue", store)

    def test_destroy_keeps_backlog(self):
        store = MemorySnapshotStore()
        config = QueueConfig(persistence_key="test_queue")
        queue = RequestQueue(config, store)
        queue.enqueue(_operation("a"))

        queue.destroy(keep_backlog=True)

        self.assertIn("test_queue", store)
        self.assertEqual(RequestQueue(config, store).total_pending, 1)

    def test_destroy_deletes_backlog(self):
        store = MemorySnapshotStore()
        queue = RequestQueue(QueueConfig(persistence_key="test_queue"), store)
        queue.enqueue(_operation("a"))

        queue.destroy()

        self.assertNotIn("test_queue", store)


class TestRequestQueueProcessing(unittest.IsolatedAsyncioTestCase):
    """Test cases for dispatching with an execution callback."""

    async def test_concurrency_ceiling(self):
        queue = RequestQueue(QueueConfig(max_concurrent=2, tick_interval=0.01))
        release = asyncio.Event()
        peak: List[int] = []

        async def execute(operation: Operation) -> None:
            peak.append(len(queue.active))
            await release.wait()
            operation.resolve_outcome(operation.name)

        queue.set_execution_callback(execute)
        operations = [_operation(f"op_{i}") for i in range(5)]
        for operation in operations:
            operation.ensure_outcome()
            queue.enqueue(operation)

        await asyncio.sleep(0.05)
        self.assertEqual(len(queue.active), 2)
        self.assertEqual(queue.total_pending, 3)

        release.set()
        results = await asyncio.wait_for(
            asyncio.gather(*(operation.outcome for operation in operations)), 1
        )

        self.assertEqual(results, [f"op_{i}" for i in range(5)])
        self.assertLessEqual(max(peak), 2)
        await asyncio.sleep(0.02)
        self.assertEqual(queue.get_metrics()["total_processed"], 5)
        self.assertFalse(queue.is_processing)

    async def test_callback_error_fails_outcome(self):
        queue = RequestQueue(QueueConfig(tick_interval=0.01))

        async def execute(operation: Operation) -> None:
            raise RuntimeError("boom")

        queue.set_execution_callback(execute)
        operation = _operation("a")
        outcome = operation.ensure_outcome()
        queue.enqueue(operation)

        with self.assertRaises(RuntimeError):
            await asyncio.wait_for(outcome, 1)
        self.assertEqual(operation.status, OperationStatus.FAILED)

    async def test_acquire_slot_waits(self):
        queue = RequestQueue(QueueConfig(max_concurrent=1))
        first = _operation("first")
        second = _operation("second")
        await queue.acquire_slot(first)

        waiter = asyncio.create_task(queue.acquire_slot(second))
        await asyncio.sleep(0.02)
        self.assertFalse(waiter.done())

        queue.complete(first, True)
        await asyncio.wait_for(waiter, 1)

        self.assertIn(second.id, queue.active)

    async def test_acquire_slot_after_destroy(self):
        queue = RequestQueue(QueueConfig(max_concurrent=1))
        await queue.acquire_slot(_operation("first"))

        waiter = asyncio.create_task(queue.acquire_slot(_operation("second")))
        await asyncio.sleep(0.01)
        queue.destroy()

        with self.assertRaises(PipelineDestroyedError):
            await asyncio.wait_for(waiter, 1)

    async def test_destroy_fails_pending(self):
        queue = RequestQueue(QueueConfig())
        operation = _operation("a")
        outcome = operation.ensure_outcome()
        queue.enqueue(operation)

        queue.destroy()

        with self.assertRaises(PipelineDestroyedError):
            await outcome
        self.assertEqual(operation.status, OperationStatus.CANCELLED)
        with self.assertRaises(PipelineDestroyedError):
            queue.enqueue(_operation("b"))


if __name__ == "__main__":
    unittest.main()
