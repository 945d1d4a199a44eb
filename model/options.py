"""
Options and configuration model for the pipeliner.

All durations are seconds.
"""

import os
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class Priority(str, Enum):
    """Queue lanes, highest first."""

    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"

    @classmethod
    def parse(cls, value: Any) -> "Priority":
        """Parse a priority, falling back to NORMAL for unknown values."""
        if isinstance(value, Priority):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            return cls.NORMAL


PRIORITY_ORDER: List[Priority] = [Priority.HIGH, Priority.NORMAL, Priority.LOW]


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _env_bool(name: str, default: bool) -> bool:
    return os.getenv(name, "true" if default else "false").lower() == "true"


@dataclass
class RetryConfig:
    """Global retry limits and backoff parameters."""

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    jitter_percent: float = 0.1

    def __post_init__(self):
        if self.max_retries < 0:
            raise ValueError("max retries cannot be negative")
        if self.base_delay < 0:
            raise ValueError("base delay cannot be negative")
        if self.max_delay < self.base_delay:
            raise ValueError("max delay must not be smaller than base delay")
        if not 0.0 <= self.jitter_percent <= 1.0:
            raise ValueError("jitter percent must be between 0 and 1")


@dataclass
class BreakerConfig:
    """Circuit breaker thresholds."""

    failure_threshold: float = 0.5
    timeout: float = 60.0
    min_requests: int = 5

    def __post_init__(self):
        if not 0.0 < self.failure_threshold <= 1.0:
            raise ValueError("failure threshold must be in (0, 1]")
        if self.timeout <= 0:
            raise ValueError("breaker timeout must be positive")
        if self.min_requests < 1:
            raise ValueError("min requests must be at least 1")


@dataclass
class QueueConfig:
    """Request queue sizing, deduplication and persistence."""

    max_concurrent: int = 5
    max_queue_size: int = 200
    dedup_window: float = 5.0
    tick_interval: float = 0.1
    enable_persistence: bool = True
    persistence_key: str = "las_request_queue"
    max_snapshot_age: float = 3600.0
    salient_fields: Dict[str, List[str]] = field(
        default_factory=lambda: {"save_settings": ["settings"]}
    )

    def __post_init__(self):
        if self.max_concurrent < 1:
            raise ValueError("max concurrent must be at least 1")
        if self.max_queue_size < 1:
            raise ValueError("max queue size must be at least 1")
        if self.dedup_window < 0:
            raise ValueError("dedup window cannot be negative")
        if self.tick_interval <= 0:
            raise ValueError("tick interval must be positive")
        if not self.persistence_key:
            raise ValueError("persistence key cannot be empty")


@dataclass
class BatchConfig:
    """Batch coalescing of low-latency-tolerant operations."""

    enabled: bool = True
    max_batch_size: int = 10
    batch_timeout: float = 1.0
    max_concurrent: int = 3
    fail_fast: bool = False
    batchable_actions: List[str] = field(
        default_factory=lambda: ["save_settings", "load_settings", "get_preview_css"]
    )

    def __post_init__(self):
        if self.max_batch_size < 1:
            raise ValueError("max batch size must be at least 1")
        if self.batch_timeout <= 0:
            raise ValueError("batch timeout must be positive")
        if self.max_concurrent < 1:
            raise ValueError("batch max concurrent must be at least 1")


@dataclass
class PipelineConfig:
    """
    Complete configuration of a pipeline.

    ``from_env`` reads the PIPELINER_* environment variables.
    """

    endpoint: str = "http://localhost/wp-admin/admin-ajax.php"
    nonce: Optional[str] = None
    action_prefix: str = "las_"
    timeout: float = 30.0
    max_history_size: int = 200
    metrics_interval: float = 30.0
    debug: bool = False
    retry: RetryConfig = field(default_factory=RetryConfig)
    breaker: BreakerConfig = field(default_factory=BreakerConfig)
    queue: QueueConfig = field(default_factory=QueueConfig)
    batch: BatchConfig = field(default_factory=BatchConfig)

    def __post_init__(self):
        if not self.endpoint:
            raise ValueError("endpoint cannot be empty")
        if self.timeout <= 0:
            raise ValueError("timeout must be positive")
        if self.max_history_size < 1:
            raise ValueError("max history size must be at least 1")
        if self.metrics_interval <= 0:
            raise ValueError("metrics interval must be positive")

    @classmethod
    def from_env(cls) -> "PipelineConfig":
        """Create configuration from environment variables."""
        return cls(
            endpoint=os.getenv(
                "PIPELINER_ENDPOINT", "http://localhost/wp-admin/admin-ajax.php"
            ),
            nonce=os.getenv("PIPELINER_NONCE") or None,
            action_prefix=os.getenv("PIPELINER_ACTION_PREFIX", "las_"),
            timeout=_env_float("PIPELINER_TIMEOUT", 30.0),
            max_history_size=_env_int("PIPELINER_MAX_HISTORY_SIZE", 200),
            metrics_interval=_env_float("PIPELINER_METRICS_INTERVAL", 30.0),
            debug=_env_bool("PIPELINER_DEBUG", False),
            retry=RetryConfig(
                max_retries=_env_int("PIPELINER_MAX_RETRIES", 3),
                base_delay=_env_float("PIPELINER_BASE_DELAY", 1.0),
                max_delay=_env_float("PIPELINER_MAX_DELAY", 30.0),
                jitter_percent=_env_float("PIPELINER_JITTER_PERCENT", 0.1),
            ),
            breaker=BreakerConfig(
                failure_threshold=_env_float("PIPELINER_BREAKER_THRESHOLD", 0.5),
                timeout=_env_float("PIPELINER_BREAKER_TIMEOUT", 60.0),
                min_requests=_env_int("PIPELINER_BREAKER_MIN_REQUESTS", 5),
            ),
            queue=QueueConfig(
                max_concurrent=_env_int("PIPELINER_MAX_CONCURRENT", 5),
                max_queue_size=_env_int("PIPELINER_MAX_QUEUE_SIZE", 200),
                enable_persistence=_env_bool("PIPELINER_PERSISTENCE", True),
                persistence_key=os.getenv(
                    "PIPELINER_PERSISTENCE_KEY", "las_request_queue"
                ),
            ),
            batch=BatchConfig(
                enabled=_env_bool("PIPELINER_BATCHING", True),
                max_batch_size=_env_int("PIPELINER_MAX_BATCH_SIZE", 10),
                batch_timeout=_env_float("PIPELINER_BATCH_TIMEOUT", 1.0),
            ),
        )

    def is_valid(self) -> bool:
        """Re-run validation after in-place changes."""
        try:
            for item in (self, self.retry, self.breaker, self.queue, self.batch):
                item.__post_init__()
        except ValueError:
            return False
        return True

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary, hiding the nonce value."""
        data = asdict(self)
        data["nonce"] = "***" if self.nonce else None
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PipelineConfig":
        """Create configuration from dictionary."""
        values = dict(data)
        nested = {
            "retry": RetryConfig,
            "breaker": BreakerConfig,
            "queue": QueueConfig,
            "batch": BatchConfig,
        }
        for key, config_class in nested.items():
            if isinstance(values.get(key), dict):
                values[key] = config_class(**values[key])
        return cls(**values)


@dataclass
class SubmitOptions:
    """Per-operation submission options."""

    priority: Priority = Priority.NORMAL
    max_retries: Optional[int] = None
    timeout: Optional[float] = None
    batchable: Optional[bool] = None

    def __post_init__(self):
        self.priority = Priority.parse(self.priority)
        if self.max_retries is not None and self.max_retries < 0:
            raise ValueError("max retries cannot be negative")
        if self.timeout is not None and self.timeout <= 0:
            raise ValueError("timeout must be positive")

    def to_dict(self) -> Dict[str, Any]:
        """Convert options to dictionary for serialization."""
        return {
            "priority": self.priority.value,
            "max_retries": self.max_retries,
            "timeout": self.timeout,
            "batchable": self.batchable,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SubmitOptions":
        """Create options from dictionary."""
        return cls(
            priority=Priority.parse(data.get("priority", Priority.NORMAL)),
            max_retries=data.get("max_retries"),
            timeout=data.get("timeout"),
            batchable=data.get("batchable"),
        )
