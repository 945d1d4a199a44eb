"""
Model package for the pipeliner.

Contains data models and configuration objects.
"""

from .batch import BatchRequest, BatchResult, PendingBatch
from .breaker import BreakerState, CircuitState
from .error_policy import ErrorKind, ErrorPolicy, default_error_policies
from .history import HistoryEntry, HistoryFilter, HistoryStatus
from .metrics import PipelineMetrics
from .notification import Notification, NotificationType
from .operation import Operation, OperationStatus, new_operation
from .options import (
    BatchConfig,
    BreakerConfig,
    PipelineConfig,
    Priority,
    QueueConfig,
    RetryConfig,
    SubmitOptions,
)
from .request import FormBody, MultipartBody, TransportRequest, TransportResponse

__all__ = [
    # Operation related
    "Operation",
    "OperationStatus",
    "new_operation",
    # Batch related
    "BatchRequest",
    "BatchResult",
    "PendingBatch",
    # Errors and breakers
    "ErrorKind",
    "ErrorPolicy",
    "default_error_policies",
    "BreakerState",
    "CircuitState",
    # Instrumentation
    "HistoryEntry",
    "HistoryFilter",
    "HistoryStatus",
    "PipelineMetrics",
    "Notification",
    "NotificationType",
    # Options
    "PipelineConfig",
    "RetryConfig",
    "BreakerConfig",
    "QueueConfig",
    "BatchConfig",
    "SubmitOptions",
    "Priority",
    # Transport
    "FormBody",
    "MultipartBody",
    "TransportRequest",
    "TransportResponse",
]
