"""
Batch-related methods of the Pipeliner.

Batchable operations of the same name are collected during a short window
and executed together in chunks below the concurrency ceiling.
"""

import asyncio
import time
from typing import Dict, List, Optional
from uuid import uuid4

from .helper.error import PipelineDestroyedError
from .helper.logging import get_logger
from .helper.nonce import resolve_nonce
from .model.batch import BatchRequest, BatchResult, PendingBatch
from .model.operation import Operation, OperationStatus
from .pipeliner_global import PipelinerGlobalMixin

logger = get_logger(__name__)


class PipelinerBatchMixin(PipelinerGlobalMixin):
    """
    Mixin class containing batch-related methods for the Pipeliner.
    """

    def __init__(self):
        super().__init__()

    def _can_batch(self, operation: Operation) -> bool:
        if not self.config.batch.enabled:
            return False
        if operation.options.batchable is not None:
            return operation.options.batchable
        return operation.name in self.config.batch.batchable_actions

    def _add_to_batch(self, operation: Operation) -> None:
        """
        Add an operation to the pending batch of its name.

        The window starts when the batch is created. The batch is flushed
        when the window closes or the size threshold is reached.
        """
        operation.status = OperationStatus.BATCHED
        batch = self.pending_batches.get(operation.name)
        if batch is None:
            batch = PendingBatch(name=operation.name)
            batch.timer = asyncio.get_running_loop().call_later(
                self.config.batch.batch_timeout, self._flush_batch, operation.name
            )
            self.pending_batches[operation.name] = batch

        batch.operations.append(operation)
        self._debug(
            "Operation batched",
            name=operation.name,
            size=len(batch.operations),
        )

        if len(batch.operations) >= self.config.batch.max_batch_size:
            self._flush_batch(operation.name)

    def _flush_batch(self, name: str) -> None:
        batch = self.pending_batches.pop(name, None)
        if batch is None:
            return
        batch.cancel_timer()
        if self.destroyed:
            return
        self._spawn(self._process_batch(batch))

    async def _process_batch(self, batch: PendingBatch) -> None:
        result = await self.execute_batch(batch.operations)
        logger.info(
            "Batch processed",
            name=batch.name,
            size=len(batch.operations),
            errors=result.error_count,
        )

    async def execute_batch(
        self,
        operations: List[Operation],
        max_concurrent: Optional[int] = None,
        fail_fast: Optional[bool] = None,
    ) -> BatchResult:
        """
        Execute operations in chunks through the direct path.

        Each member takes a queue slot, so the concurrency ceiling holds
        across batches and the queue.

        :param operations: Members in submission order.
        :param max_concurrent: Chunk size, defaults to the batch configuration.
        :param fail_fast: Stop after the first failing chunk and fail the
            unexecuted members with the first error.
        :returns: Results and errors per member.
        """
        chunk_size = max_concurrent or self.config.batch.max_concurrent
        if fail_fast is None:
            fail_fast = self.config.batch.fail_fast

        self.metrics.batch_requests += 1
        batch_id = str(uuid4())
        start = time.monotonic()

        first_error: Optional[BaseException] = None
        for index in range(0, len(operations), chunk_size):
            chunk = operations[index : index + chunk_size]
            if first_error is not None:
                for operation in chunk:
                    operation.fail_outcome(first_error, OperationStatus.CANCELLED)
                continue

            await asyncio.gather(
                *(self._run_batch_member(operation) for operation in chunk)
            )
            if fail_fast:
                first_error = self._first_error(chunk)

        result = self._collect_results(operations)
        names = sorted({operation.name for operation in operations})
        self._record_batch(
            batch_id, ",".join(names), time.monotonic() - start, result
        )
        return result

    async def _run_batch_member(self, operation: Operation) -> None:
        if operation.is_settled:
            return
        try:
            await self.queue.acquire_slot(operation)
        except PipelineDestroyedError as e:
            operation.fail_outcome(e, OperationStatus.CANCELLED)
            return
        await self._run_active(operation)

    @staticmethod
    def _first_error(operations: List[Operation]) -> Optional[BaseException]:
        for operation in operations:
            outcome = operation.outcome
            if outcome is None or not outcome.done() or outcome.cancelled():
                continue
            if outcome.exception() is not None:
                return outcome.exception()
        return None

    @staticmethod
    def _collect_results(operations: List[Operation]) -> BatchResult:
        result = BatchResult()
        for operation in operations:
            outcome = operation.outcome
            if outcome is None or not outcome.done():
                result.results.append(None)
                result.errors.append(
                    PipelineDestroyedError(f"Operation {operation.id} did not finish")
                )
            elif outcome.cancelled():
                result.results.append(None)
                result.errors.append(asyncio.CancelledError())
            elif outcome.exception() is not None:
                result.results.append(None)
                result.errors.append(outcome.exception())
            else:
                result.results.append(outcome.result())
                result.errors.append(None)
        return result

    async def submit_batch(
        self,
        requests: List[BatchRequest],
        max_concurrent: Optional[int] = None,
        fail_fast: Optional[bool] = None,
    ) -> BatchResult:
        """
        Submit an explicit batch and wait for every member.

        Members that duplicate an outstanding operation or an earlier member
        share its outcome and are not executed again.

        :param requests: Batch members in order.
        :param max_concurrent: Chunk size, defaults to the batch configuration.
        :param fail_fast: Fail unexecuted members after the first failure.
        :returns: Results and errors per request, in request order.
        :raises PipelineDestroyedError: If the pipeline was destroyed.
        :raises ValidationError: If a member is invalid or no nonce exists.
        """
        self._ensure_alive()
        resolve_nonce(self.nonce_providers)

        prepared = [
            self._new_operation(request.name, request.payload, request.options)
            for request in requests
        ]

        members: List[Operation] = []
        fresh: List[Operation] = []
        seen: Dict[str, Operation] = {}
        for operation in prepared:
            duplicate = seen.get(operation.fingerprint) or self._find_duplicate(
                operation.fingerprint
            )
            if duplicate is not None:
                duplicate.ensure_outcome()
                members.append(duplicate)
                continue

            self._track(operation)
            operation.status = OperationStatus.BATCHED
            seen[operation.fingerprint] = operation
            fresh.append(operation)
            members.append(operation)

        if fresh:
            await self.execute_batch(fresh, max_concurrent, fail_fast)

        pending = [m.outcome for m in members if m.outcome and not m.outcome.done()]
        if pending:
            await asyncio.wait(pending)
        return self._collect_results(members)
