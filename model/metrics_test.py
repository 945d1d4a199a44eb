"""
Tests for pipeline metrics, history and batch results.
"""

from datetime import datetime, timedelta

from .batch import BatchResult, PendingBatch
from .history import HistoryEntry, HistoryFilter, HistoryStatus
from .metrics import PipelineMetrics
from .operation import new_operation


class TestPipelineMetrics:
    """Test incremental metric updates."""

    def test_empty(self):
        metrics = PipelineMetrics()
        assert metrics.success_rate == 0.0
        assert metrics.average_response_time == 0.0
        assert metrics.to_dict()["fastest_request"] == 0.0

    def test_record(self):
        metrics = PipelineMetrics()
        metrics.record_success("save_settings", 0.2, attempts=0)
        metrics.record_success("save_settings", 0.4, attempts=1)
        metrics.record_failure("load_settings", 1.0, attempts=2, error_kind="server")
        metrics.batch_requests = 1

        assert metrics.total_requests == 3
        assert metrics.successful_requests == 2
        assert metrics.failed_requests == 1
        assert metrics.retried_requests == 2
        assert round(metrics.success_rate, 2) == 66.67
        assert round(metrics.average_response_time, 3) == round(1.6 / 3, 3)
        assert metrics.fastest_request == 0.2
        assert metrics.slowest_request == 1.0
        assert metrics.requests_by_action["save_settings"].retried == 1
        assert metrics.errors_by_kind == {"server": 1}
        assert metrics.error_breakdown()["server"]["percentage"] == 100.0
        assert round(metrics.batch_rate, 2) == 33.33

    def test_throughput(self):
        metrics = PipelineMetrics(started_at=100.0)
        metrics.record_success("a", 0.1, 0)
        metrics.record_success("a", 0.1, 0)

        assert metrics.uptime(now=110.0) == 10.0
        assert metrics.requests_per_second(now=110.0) == 0.2


class TestHistoryFilter:
    """Test history filtering."""

    def test_matches(self):
        now = datetime.now()
        entry = HistoryEntry(
            id="1", action="save_settings", status=HistoryStatus.FAILED, timestamp=now
        )

        assert HistoryFilter().matches(entry)
        assert HistoryFilter(action="save_settings").matches(entry)
        assert not HistoryFilter(action="load_settings").matches(entry)
        assert not HistoryFilter(status=HistoryStatus.SUCCESS).matches(entry)
        assert HistoryFilter(start_time=now - timedelta(seconds=1)).matches(entry)
        assert not HistoryFilter(end_time=now - timedelta(seconds=1)).matches(entry)

    def test_debug_info_only_on_request(self):
        entry = HistoryEntry(
            id="1",
            action="save_settings",
            status=HistoryStatus.SUCCESS,
            debug_info={"fingerprint": "save_settings:abc"},
        )

        assert "debug_info" not in entry.to_dict()
        assert entry.to_dict(include_debug_info=True)["debug_info"] == {
            "fingerprint": "save_settings:abc"
        }


class TestBatchModel:
    """Test batch helpers."""

    def test_result_counts(self):
        result = BatchResult(results=[1, None, 3], errors=[None, ValueError("x"), None])

        assert result.has_errors
        assert result.success_count == 2
        assert result.error_count == 1
        assert result.to_dict()["errors"] == [None, "x", None]

    def test_pending_batch_fingerprints(self):
        first = new_operation("save_settings")
        first.fingerprint = "save_settings:1"
        second = new_operation("save_settings")
        second.fingerprint = "save_settings:2"

        batch = PendingBatch(name="save_settings", operations=[first, second])
        batch.cancel_timer()

        assert batch.fingerprints == ["save_settings:1", "save_settings:2"]
        assert batch.timer is None
