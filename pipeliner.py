"""
Main Pipeliner class.

A pipeliner submits named operations to one backend endpoint. It deduplicates
equivalent operations, coalesces batchable ones, admits work through a
priority queue with a concurrency ceiling, retries transient failures with
backoff behind per-name circuit breakers and reports history, metrics and
notifications.
"""

import asyncio
import dataclasses
import random
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional

from .core.ticker import Ticker
from .core.transport import HTTPTransport
from .database.snapshot_store import SnapshotStore
from .helper.error import PipelineDestroyedError
from .helper.logging import get_logger
from .helper.nonce import NonceProvider, PageSource
from .model.operation import OperationStatus
from .model.options import PipelineConfig
from .pipeliner_batch import PipelinerBatchMixin
from .pipeliner_listener import PipelinerListenerMixin
from .pipeliner_metrics import PipelinerMetricsMixin
from .pipeliner_operation import PipelinerOperationMixin

logger = get_logger(__name__)

# (min, max) accepted by configure; values outside are clamped.
CONFIGURE_LIMITS: Dict[str, tuple] = {
    "max_retries": (0, 10),
    "timeout": (1.0, 120.0),
    "max_concurrent": (1, 20),
    "base_delay": (0.1, 10.0),
    "max_history_size": (50, 1000),
}

CONFIGURE_SECTIONS = ("batch", "retry_engine", "transport", "queue")


def _clamp(value: Any, minimum: Any, maximum: Any) -> Any:
    return max(minimum, min(maximum, value))


def new_pipeliner(
    endpoint: str,
    nonce: Optional[str] = None,
    store: Optional[SnapshotStore] = None,
    **options: Any,
) -> "Pipeliner":
    """
    Create a Pipeliner for an endpoint.

    :param endpoint: Backend URL all operations are posted to.
    :param nonce: Security nonce; resolved from the environment otherwise.
    :param store: Snapshot store for the queue backlog.
    :param options: Further PipelineConfig fields, nested sections as dicts.
    :returns: The new Pipeliner.
    """
    config = PipelineConfig.from_dict({"endpoint": endpoint, "nonce": nonce, **options})
    return Pipeliner(config, store=store)


class Pipeliner(
    PipelinerOperationMixin,
    PipelinerBatchMixin,
    PipelinerListenerMixin,
    PipelinerMetricsMixin,
):
    """
    Resilient request pipeline for one backend endpoint.
    """

    def __init__(
        self,
        config: Optional[PipelineConfig] = None,
        transport: Optional[HTTPTransport] = None,
        store: Optional[SnapshotStore] = None,
        nonce_providers: Optional[List[NonceProvider]] = None,
        page_source: Optional[PageSource] = None,
        rng: Optional[random.Random] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        """
        Initialize the pipeline.

        The configuration is read from the PIPELINER_* environment variables
        if none is given. A persisted queue backlog is restored from the store
        and resumes once the pipeline starts.

        :param config: Pipeline configuration.
        :param transport: Transport to use; an owned one is created otherwise.
        :param store: Snapshot store; the backlog is not persisted without one.
        :param nonce_providers: Ordered nonce sources.
        :param page_source: Page HTML used by the default nonce providers.
        :param rng: Random source for the retry jitter.
        :param clock: Monotonic clock for breakers and the dedup window.
        """
        super().__init__()

        super().initialise(
            config=config or PipelineConfig.from_env(),
            transport=transport,
            store=store,
            nonce_providers=nonce_providers,
            page_source=page_source,
            rng=rng,
            clock=clock,
        )
        self.queue.set_execution_callback(self._execute_operation)

        logger.info(
            "Pipeliner created",
            endpoint=self.config.endpoint,
            restored=self.queue.total_pending,
        )

    def start(self) -> None:
        """
        Start queue processing and the periodic metrics report.

        Must be called from a running event loop; dispatch calls it on first
        use.

        :raises PipelineDestroyedError: If the pipeline was destroyed.
        """
        if self.destroyed:
            raise PipelineDestroyedError("Pipeline destroyed")
        if self.running:
            return

        self.running = True
        self.metrics_ticker = Ticker(
            timedelta(seconds=self.config.metrics_interval), self._report_metrics
        )
        self.metrics_ticker.go()
        self.queue.start_processing()

        logger.info("Pipeliner started", pending=self.queue.total_pending)

    async def destroy(self, keep_backlog: bool = False) -> None:
        """
        Tear the pipeline down.

        Every outstanding outcome fails with PipelineDestroyedError.

        :param keep_backlog: Persist the pending backlog for the next pipeline
            instead of deleting it.
        """
        if self.destroyed:
            return

        self.destroyed = True
        self.running = False
        error = PipelineDestroyedError("Pipeline destroyed")

        if self.metrics_ticker is not None:
            self.metrics_ticker.stop()
            self.metrics_ticker = None

        for batch in self.pending_batches.values():
            batch.cancel_timer()
            for operation in batch.operations:
                operation.fail_outcome(error, OperationStatus.CANCELLED)
        self.pending_batches.clear()

        self.queue.destroy(error, keep_backlog)

        tasks = list(self.tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self.tasks.clear()

        for operation in list(self.operations.values()):
            operation.fail_outcome(error, OperationStatus.CANCELLED)
        self.operations.clear()

        if self._owns_transport:
            await self.transport.close()

        self.notification_broadcaster.clear()
        self.metrics_broadcaster.clear()
        self.history.clear()
        self.debug_logs.clear()

        logger.info("Pipeliner destroyed", keep_backlog=keep_backlog)

    def configure(self, **options: Any) -> None:
        """
        Update the configuration at runtime.

        Numeric options are clamped to their accepted range. The sections
        ``batch``, ``retry_engine``, ``transport`` and ``queue`` take dicts of
        their component options.

        :raises ValueError: For unknown options or invalid section values.
        """
        known = set(CONFIGURE_LIMITS) | set(CONFIGURE_SECTIONS) | {"debug_mode"}
        unknown = set(options) - known
        if unknown:
            raise ValueError(f"unknown configuration options: {sorted(unknown)}")

        for key, (minimum, maximum) in CONFIGURE_LIMITS.items():
            if key in options and options[key] is not None:
                options[key] = _clamp(options[key], minimum, maximum)

        if "max_retries" in options:
            self.retry_engine.configure(max_retries=int(options["max_retries"]))
        if "base_delay" in options:
            base_delay = float(options["base_delay"])
            max_delay = max(self.retry_engine.config.max_delay, base_delay)
            self.retry_engine.configure(base_delay=base_delay, max_delay=max_delay)
        if "timeout" in options:
            self.config.timeout = float(options["timeout"])
            self.transport.configure(timeout=self.config.timeout)
        if "max_concurrent" in options:
            self.queue.configure(max_concurrent=int(options["max_concurrent"]))
        if "max_history_size" in options:
            self.config.max_history_size = int(options["max_history_size"])
            self._resize_history(self.config.max_history_size)
        if "debug_mode" in options:
            self.debug_mode = bool(options["debug_mode"])
            self.config.debug = self.debug_mode

        if options.get("batch"):
            self.config.batch = dataclasses.replace(self.config.batch, **options["batch"])
        if options.get("retry_engine"):
            self.retry_engine.configure(**options["retry_engine"])
        if options.get("transport"):
            self.transport.configure(**options["transport"])
        if options.get("queue"):
            self.queue.configure(**options["queue"])

        self.config.retry = self.retry_engine.config
        self.config.breaker = self.retry_engine.breakers.config
        self.config.queue = self.queue.config

        logger.info("Pipeliner configured", options=sorted(options))

    async def __aenter__(self) -> "Pipeliner":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.destroy()
