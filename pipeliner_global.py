import asyncio
import random
from collections import deque
from typing import Any, Callable, Deque, Dict, List, Optional, Set
from uuid import UUID

from .core.broadcaster import Broadcaster
from .core.request_queue import RequestQueue
from .core.retryer import RetryEngine
from .core.ticker import Ticker
from .core.transport import HTTPTransport
from .database.snapshot_store import SnapshotStore
from .helper.logging import get_logger
from .helper.nonce import NonceProvider, PageSource, default_nonce_providers
from .model.batch import PendingBatch
from .model.history import HistoryEntry
from .model.metrics import PipelineMetrics
from .model.notification import Notification
from .model.operation import Operation
from .model.options import PipelineConfig

logger = get_logger(__name__)


class PipelinerGlobalMixin:
    def __init__(self):
        self.running: bool = False
        self.destroyed: bool = False
        self.debug_mode: bool = False

        # Broadcaster
        self.notification_broadcaster = Broadcaster[Notification]("notification")
        self.metrics_broadcaster = Broadcaster[Dict[str, Any]]("metrics")

        # Ticker
        self.metrics_ticker: Optional[Ticker] = None

        # Instrumentation
        self.metrics: PipelineMetrics = PipelineMetrics()
        self.history: Deque[HistoryEntry] = deque(maxlen=200)
        self.debug_logs: Deque[str] = deque(maxlen=100)

        # Outstanding work
        self.operations: Dict[UUID, Operation] = {}
        self.pending_batches: Dict[str, PendingBatch] = {}
        self.tasks: Set["asyncio.Task[Any]"] = set()

        self.config: PipelineConfig
        self.transport: HTTPTransport
        self.retry_engine: RetryEngine
        self.queue: RequestQueue
        self.nonce_providers: List[NonceProvider] = []

    def initialise(
        self,
        config: PipelineConfig,
        transport: Optional[HTTPTransport] = None,
        store: Optional[SnapshotStore] = None,
        nonce_providers: Optional[List[NonceProvider]] = None,
        page_source: Optional[PageSource] = None,
        rng: Optional[random.Random] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.config = config
        self.debug_mode = config.debug
        self.history = deque(maxlen=config.max_history_size)

        # Transport
        self._owns_transport: bool = transport is None
        self.transport = transport or HTTPTransport(timeout=config.timeout)

        # Retry engine and queue
        self.retry_engine = RetryEngine(config.retry, config.breaker, rng, clock)
        self.queue = RequestQueue(config.queue, store, clock=clock)

        # Nonce
        self.nonce_providers = nonce_providers or default_nonce_providers(
            config.nonce, page_source
        )
