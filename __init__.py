"""
Pipeliner - A resilient request pipeline for admin backends

Submits named operations to a single backend endpoint and provides:
- Deduplication of equivalent in-flight and recent operations
- Priority queueing with a concurrency ceiling and a bounded backlog
- Retries with classified errors, jittered backoff and circuit breakers
- Batch coalescing of low-latency-tolerant operations
- Snapshot persistence of the pending backlog
- History, metrics and notifications for UI collaborators
"""

from ._version import __version__

__author__ = "Simon Herrmann"
__email__ = "siherrmann@users.noreply.github.com"

# Core exports
from .pipeliner import (
    Pipeliner,
    new_pipeliner,
)

from .core.transport import (
    HTTPTransport,
)

from .database.snapshot_store import (
    FileSnapshotStore,
    MemorySnapshotStore,
    SnapshotStore,
)

from .model.options import (
    BatchConfig,
    BreakerConfig,
    PipelineConfig,
    Priority,
    QueueConfig,
    RetryConfig,
    SubmitOptions,
)

from .model.batch import (
    BatchRequest,
    BatchResult,
)

from .model.notification import (
    Notification,
    NotificationType,
)

from .model.error_policy import (
    ErrorKind,
    ErrorPolicy,
)

from .helper.error import (
    BackendError,
    CapacityError,
    CircuitOpenError,
    PipelineDestroyedError,
    PipelineError,
    ValidationError,
)

# Import submodules for direct access
from . import core
from . import database
from . import helper
from . import model

# Convenience imports for common use cases
__all__ = [
    # Core classes
    "Pipeliner",
    "new_pipeliner",
    "HTTPTransport",
    # Persistence
    "SnapshotStore",
    "MemorySnapshotStore",
    "FileSnapshotStore",
    # Configuration
    "PipelineConfig",
    "RetryConfig",
    "BreakerConfig",
    "QueueConfig",
    "BatchConfig",
    "SubmitOptions",
    "Priority",
    # Models
    "BatchRequest",
    "BatchResult",
    "Notification",
    "NotificationType",
    "ErrorKind",
    "ErrorPolicy",
    # Exceptions
    "PipelineError",
    "BackendError",
    "CapacityError",
    "CircuitOpenError",
    "PipelineDestroyedError",
    "ValidationError",
    # Submodules
    "core",
    "database",
    "helper",
    "model",
    # Version info
    "__version__",
    "__author__",
    "__email__",
]
