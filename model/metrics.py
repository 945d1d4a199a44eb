"""
Running metrics of a pipeline, updated incrementally on every completion.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass
class ActionStats:
    total: int = 0
    success: int = 0
    failed: int = 0
    retried: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "total": self.total,
            "success": self.success,
            "failed": self.failed,
            "retried": self.retried,
        }


@dataclass
class PipelineMetrics:
    """Counters and response time aggregates."""

    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    retried_requests: int = 0
    batch_requests: int = 0
    total_response_time: float = 0.0
    slowest_request: float = 0.0
    fastest_request: Optional[float] = None
    requests_by_action: Dict[str, ActionStats] = field(default_factory=dict)
    errors_by_kind: Dict[str, int] = field(default_factory=dict)
    started_at: float = field(default_factory=time.time)

    def _action(self, action: str) -> ActionStats:
        if action not in self.requests_by_action:
            self.requests_by_action[action] = ActionStats()
        return self.requests_by_action[action]

    def _record_time(self, duration: float) -> None:
        self.total_response_time += duration
        self.slowest_request = max(self.slowest_request, duration)
        if self.fastest_request is None or duration < self.fastest_request:
            self.fastest_request = duration

    def record_success(self, action: str, duration: float, attempts: int) -> None:
        self.total_requests += 1
        self.successful_requests += 1
        stats = self._action(action)
        stats.total += 1
        stats.success += 1
        if attempts > 0:
            self.retried_requests += 1
            stats.retried += 1
        self._record_time(duration)

    def record_failure(
        self, action: str, duration: float, attempts: int, error_kind: str
    ) -> None:
        self.total_requests += 1
        self.failed_requests += 1
        stats = self._action(action)
        stats.total += 1
        stats.failed += 1
        if attempts > 0:
            self.retried_requests += 1
            stats.retried += 1
        self.errors_by_kind[error_kind] = self.errors_by_kind.get(error_kind, 0) + 1
        self._record_time(duration)

    @property
    def average_response_time(self) -> float:
        if self.total_requests == 0:
            return 0.0
        return self.total_response_time / self.total_requests

    @property
    def success_rate(self) -> float:
        if self.total_requests == 0:
            return 0.0
        return self.successful_requests / self.total_requests * 100

    @property
    def retry_rate(self) -> float:
        if self.total_requests == 0:
            return 0.0
        return self.retried_requests / self.total_requests * 100

    @property
    def batch_rate(self) -> float:
        if self.total_requests == 0:
            return 0.0
        return self.batch_requests / self.total_requests * 100

    def uptime(self, now: Optional[float] = None) -> float:
        return max(0.0, (now or time.time()) - self.started_at)

    def requests_per_second(self, now: Optional[float] = None) -> float:
        uptime = self.uptime(now)
        if uptime <= 0:
            return 0.0
        return self.total_requests / uptime

    def error_breakdown(self) -> Dict[str, Dict[str, float]]:
        """Count and share of failures per error kind."""
        total = sum(self.errors_by_kind.values())
        return {
            kind: {"count": count, "percentage": count / total * 100}
            for kind, count in self.errors_by_kind.items()
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_requests": self.total_requests,
            "successful_requests": self.successful_requests,
            "failed_requests": self.failed_requests,
            "retried_requests": self.retried_requests,
            "batch_requests": self.batch_requests,
            "success_rate": self.success_rate,
            "retry_rate": self.retry_rate,
            "batch_rate": self.batch_rate,
            "average_response_time": self.average_response_time,
            "slowest_request": self.slowest_request,
            "fastest_request": self.fastest_request or 0.0,
            "requests_per_second": self.requests_per_second(),
            "uptime": self.uptime(),
            "requests_by_action": {
                action: stats.to_dict()
                for action, stats in self.requests_by_action.items()
            },
            "errors_by_kind": dict(self.errors_by_kind),
            "error_breakdown": self.error_breakdown(),
        }
