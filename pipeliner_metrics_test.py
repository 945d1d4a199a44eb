"""
Tests for metrics, history and debug information of the Pipeliner.
"""

import unittest
from datetime import datetime, timedelta

from .helper.error import ClientError
from .helper.test_backend import FakeBackend
from .model.history import HistoryFilter, HistoryStatus
from .pipeliner_test import new_test_pipeliner


class TestPipelinerMetrics(unittest.IsolatedAsyncioTestCase):
    """Test cases for metrics and history queries."""

    async def asyncSetUp(self):
        self.backend = FakeBackend()
        self.backend.respond("las_missing", (404, "not found"))
        self.pipeliner = new_test_pipeliner(self.backend)

    async def asyncTearDown(self):
        await self.pipeliner.destroy()

    async def _run_mixed(self):
        await self.pipeliner.submit("load_settings", {"tab": "a"})
        await self.pipeliner.submit("load_settings", {"tab": "b"})
        with self.assertRaises(ClientError):
            await self.pipeliner.submit("missing")

    async def test_get_metrics(self):
        await self._run_mixed()

        metrics = self.pipeliner.get_metrics()

        self.assertEqual(metrics["total_requests"], 3)
        self.assertEqual(metrics["successful_requests"], 2)
        self.assertEqual(metrics["failed_requests"], 1)
        self.assertAlmostEqual(metrics["success_rate"], 200 / 3)
        self.assertEqual(
            metrics["requests_by_action"]["load_settings"],
            {"total": 2, "success": 2, "failed": 0, "retried": 0},
        )
        self.assertEqual(metrics["error_breakdown"]["client"]["percentage"], 100.0)
        self.assertEqual(metrics["transport"]["total_requests"], 3)
        self.assertEqual(metrics["queue"]["active_requests"], 0)
        self.assertEqual(metrics["outstanding_operations"], 0)
        self.assertIn("missing", metrics["circuit_breakers"])

    async def test_history_is_newest_first(self):
        await self._run_mixed()

        history = self.pipeliner.get_history()

        self.assertEqual(
            [entry["action"] for entry in history],
            ["missing", "load_settings", "load_settings"],
        )
        self.assertNotIn("debug_info", history[0])
        self.assertEqual(history[0]["error_kind"], "client")

    async def test_history_filters(self):
        await self._run_mixed()

        failed = self.pipeliner.get_history(status=HistoryStatus.FAILED)
        limited = self.pipeliner.get_history(limit=1)
        by_action = self.pipeliner.get_history(
            HistoryFilter(action="load_settings", include_debug_info=True)
        )
        future = self.pipeliner.get_history(
            start_time=datetime.now() + timedelta(hours=1)
        )

        self.assertEqual([entry["action"] for entry in failed], ["missing"])
        self.assertEqual(len(limited), 1)
        self.assertEqual(len(by_action), 2)
        self.assertEqual(by_action[0]["debug_info"]["payload_keys"], ["tab"])
        self.assertEqual(future, [])

    async def test_result_preview_is_truncated(self):
        self.backend.respond("las_export", {"success": True, "data": "x" * 500})

        await self.pipeliner.submit("export")

        preview = self.pipeliner.get_history()[0]["result_preview"]
        self.assertEqual(len(preview), 103)
        self.assertTrue(preview.endswith("..."))

    async def test_history_size_limit(self):
        self.pipeliner.configure(max_history_size=50)

        for i in range(55):
            await self.pipeliner.submit("load_settings", {"n": i})

        self.assertEqual(len(self.pipeliner.get_history(limit=100)), 50)

    async def test_reset_and_clear(self):
        await self._run_mixed()

        self.pipeliner.reset_metrics()
        self.pipeliner.clear_history()

        metrics = self.pipeliner.get_metrics()
        self.assertEqual(metrics["total_requests"], 0)
        self.assertEqual(metrics["transport"]["total_requests"], 0)
        self.assertEqual(self.pipeliner.get_history(), [])

    async def test_debug_info(self):
        self.pipeliner.configure(debug_mode=True)
        await self._run_mixed()

        info = self.pipeliner.get_debug_info()

        self.assertEqual(
            set(info),
            {
                "performance",
                "queue_status",
                "circuit_breakers",
                "recent_errors",
                "configuration",
                "debug_logs",
            },
        )
        self.assertEqual(len(info["recent_errors"]), 1)
        self.assertIn("retry_history", info["recent_errors"][0])
        self.assertIsNone(info["configuration"]["nonce"])
        self.assertTrue(
            any("Operation succeeded" in line for line in info["debug_logs"])
        )

    async def test_debug_logs_only_in_debug_mode(self):
        await self._run_mixed()

        self.assertEqual(self.pipeliner.get_debug_info()["debug_logs"], [])


if __name__ == "__main__":
    unittest.main()
