"""
Metrics, history and debug methods of the Pipeliner.
"""

from collections import deque
from datetime import datetime
from typing import Any, Dict, List, Optional

from .helper.logging import get_logger
from .model.batch import BatchResult
from .model.history import HistoryEntry, HistoryFilter, HistoryStatus
from .model.metrics import PipelineMetrics
from .model.operation import Operation
from .pipeliner_global import PipelinerGlobalMixin

logger = get_logger(__name__)

RESULT_PREVIEW_LENGTH = 100


class PipelinerMetricsMixin(PipelinerGlobalMixin):
    """
    Mixin class containing metrics and history methods for the Pipeliner.
    """

    def __init__(self):
        super().__init__()

    def _debug(self, message: str, **context: Any) -> None:
        """Log at debug level and keep the line for get_debug_info in debug mode."""
        logger.debug(message, **context)
        if self.debug_mode:
            context_str = " ".join(f"{k}={v}" for k, v in context.items())
            self.debug_logs.append(
                f"{datetime.now().isoformat()} {message} {context_str}".rstrip()
            )

    def _history_entry(
        self, operation: Operation, status: str, **fields: Any
    ) -> HistoryEntry:
        queue_wait = 0.0
        if operation.started_at is not None:
            queue_wait = max(
                0.0, (operation.started_at - operation.created_at).total_seconds()
            )
        return HistoryEntry(
            id=str(operation.id),
            action=operation.name,
            status=status,
            duration=operation.duration,
            attempts=operation.attempts,
            queue_wait=queue_wait,
            retry_history=list(operation.retry_history),
            debug_info={
                "fingerprint": operation.fingerprint,
                "priority": operation.priority.value,
                "payload_keys": list(operation.payload.keys()),
                "attempt_times": [t.isoformat() for t in operation.attempt_times],
            },
            **fields,
        )

    def _record_success(self, operation: Operation, result: Any) -> None:
        self.metrics.record_success(
            operation.name, operation.duration, operation.attempts
        )
        preview = repr(result)
        if len(preview) > RESULT_PREVIEW_LENGTH:
            preview = preview[:RESULT_PREVIEW_LENGTH] + "..."
        self.history.append(
            self._history_entry(
                operation, HistoryStatus.SUCCESS, result_preview=preview
            )
        )

    def _record_failure(
        self, operation: Operation, error: BaseException, error_kind: str
    ) -> None:
        self.metrics.record_failure(
            operation.name, operation.duration, operation.attempts, error_kind
        )
        self.history.append(
            self._history_entry(
                operation,
                HistoryStatus.FAILED,
                error=str(error),
                error_kind=error_kind,
            )
        )

    def _record_batch(
        self, batch_id: str, name: str, duration: float, result: BatchResult
    ) -> None:
        status = (
            HistoryStatus.PARTIAL_SUCCESS if result.has_errors else HistoryStatus.SUCCESS
        )
        self.history.append(
            HistoryEntry(
                id=batch_id,
                action="batch_request",
                status=status,
                duration=duration,
                debug_info={
                    "operation": name,
                    "size": len(result.results),
                    "success_count": result.success_count,
                    "error_count": result.error_count,
                },
            )
        )

    def _breaker_statuses(self) -> Dict[str, Dict[str, Any]]:
        statuses = self.retry_engine.get_all_circuit_breaker_statuses()
        return {name: status.to_dict() for name, status in statuses.items()}

    def get_metrics(self) -> Dict[str, Any]:
        """
        Snapshot of pipeline, queue, retry engine and transport metrics.
        """
        data = self.metrics.to_dict()
        data["queue"] = self.queue.get_metrics()
        data["retry_engine"] = self.retry_engine.get_retry_statistics()
        data["transport"] = self.transport.get_metrics()
        data["circuit_breakers"] = self._breaker_statuses()
        data["pending_batches"] = sum(
            len(batch.operations) for batch in self.pending_batches.values()
        )
        data["outstanding_operations"] = len(self.operations)
        return data

    def get_history(
        self, history_filter: Optional[HistoryFilter] = None, **filters: Any
    ) -> List[Dict[str, Any]]:
        """
        Return history entries, newest first.

        :param history_filter: Filter; keyword arguments build one otherwise.
        :returns: Serialised history entries.
        """
        history_filter = history_filter or HistoryFilter(**filters)
        entries: List[Dict[str, Any]] = []
        for entry in reversed(self.history):
            if len(entries) >= history_filter.limit:
                break
            if history_filter.matches(entry):
                entries.append(entry.to_dict(history_filter.include_debug_info))
        return entries

    def get_debug_info(self) -> Dict[str, Any]:
        return {
            "performance": self.get_metrics(),
            "queue_status": self.queue.get_status(),
            "circuit_breakers": self._breaker_statuses(),
            "recent_errors": self.get_history(
                limit=10, status=HistoryStatus.FAILED, include_debug_info=True
            ),
            "configuration": self.config.to_dict(),
            "debug_logs": list(self.debug_logs)[-50:],
        }

    def reset_metrics(self) -> None:
        """Zero the pipeline and transport counters."""
        self.metrics = PipelineMetrics()
        self.transport.reset_metrics()
        logger.info("Metrics reset")

    def clear_history(self) -> None:
        self.history.clear()
        logger.info("History cleared")

    def _resize_history(self, max_size: int) -> None:
        self.history = deque(self.history, maxlen=max_size)

    async def _report_metrics(self) -> None:
        """Broadcast the current metrics to metrics listeners."""
        snapshot = self.get_metrics()
        self._debug(
            "Metrics report",
            total=snapshot["total_requests"],
            success_rate=f"{snapshot['success_rate']:.1f}%",
        )
        await self.metrics_broadcaster.broadcast(snapshot)
