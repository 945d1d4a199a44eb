"""
Operation-related methods of the Pipeliner.

Submission, deduplication, direct execution with retries and the response
envelope handling.
"""

import asyncio
from datetime import datetime
from typing import Any, Coroutine, Dict, Optional

from .helper.encoding import encode_body
from .helper.error import (
    BackendError,
    CircuitOpenError,
    PipelineDestroyedError,
    ValidationError,
    user_message,
)
from .helper.logging import get_logger
from .helper.nonce import resolve_nonce
from .model.error_policy import ErrorKind
from .model.notification import NotificationType
from .model.operation import Operation, OperationStatus, new_operation
from .model.options import SubmitOptions
from .model.request import TransportRequest, TransportResponse
from .pipeliner_global import PipelinerGlobalMixin

logger = get_logger(__name__)

# Failures that never reached the backend and do not count against its breaker.
LOCAL_ERROR_KINDS = (
    ErrorKind.VALIDATION,
    ErrorKind.CAPACITY,
    ErrorKind.CIRCUIT_OPEN,
    ErrorKind.DESTROYED,
)


class PipelinerOperationMixin(PipelinerGlobalMixin):
    """
    Mixin class containing operation-related methods for the Pipeliner.
    """

    def __init__(self):
        super().__init__()

    def dispatch(
        self,
        name: str,
        payload: Optional[Dict[str, Any]] = None,
        options: Optional[SubmitOptions] = None,
    ) -> "asyncio.Future[Any]":
        """
        Submit an operation without waiting for it.

        Must be called from a running event loop. Duplicates of an active,
        pending, batched or recently succeeded operation share its outcome.

        :param name: Logical operation name.
        :param payload: Operation payload.
        :param options: Priority, retry limit, timeout and batching override.
        :returns: The outcome future of the operation.
        :raises PipelineDestroyedError: If the pipeline was destroyed.
        :raises ValidationError: If the operation is invalid or no nonce exists.
        :raises CapacityError: If the queue is full.
        """
        self._ensure_alive()
        operation = self._new_operation(name, payload, options)
        resolve_nonce(self.nonce_providers)

        duplicate = self._find_duplicate(operation.fingerprint)
        if duplicate is not None:
            self._debug(
                "Deduplicated operation",
                name=name,
                existing=duplicate.id,
                fingerprint=operation.fingerprint,
            )
            return duplicate.ensure_outcome()

        self._track(operation)
        if self._can_batch(operation):
            self._add_to_batch(operation)
        elif self.queue.can_admit() and self.queue.total_pending == 0:
            self._start_direct(operation)
        else:
            try:
                self.queue.enqueue(operation, operation.priority)
            except Exception:
                self.operations.pop(operation.id, None)
                raise
            self._debug("Operation queued", name=name, id=operation.id)

        return operation.ensure_outcome()

    async def submit(
        self,
        name: str,
        payload: Optional[Dict[str, Any]] = None,
        options: Optional[SubmitOptions] = None,
    ) -> Any:
        """
        Submit an operation and wait for its result.

        :returns: The ``data`` of the backend response envelope.
        :raises PipelineError: The terminal failure of the operation.
        """
        return await asyncio.shield(self.dispatch(name, payload, options))

    def _ensure_alive(self) -> None:
        if self.destroyed:
            raise PipelineDestroyedError("Pipeline destroyed")
        if not self.running:
            self.start()

    def _new_operation(
        self,
        name: str,
        payload: Optional[Dict[str, Any]],
        options: Optional[SubmitOptions],
    ) -> Operation:
        try:
            operation = new_operation(name, payload, options)
        except ValueError as e:
            raise ValidationError(str(e), e)
        operation.fingerprint = self.queue.fingerprint(operation)
        return operation

    def _find_duplicate(self, fingerprint: str) -> Optional[Operation]:
        """
        Find an unfinished or recently succeeded operation with a fingerprint.

        Tracked operations cover open batches and flushed batch members
        that are still waiting for a chunk or a queue slot.
        """
        duplicate = self.queue.find_duplicate(fingerprint)
        if duplicate is not None:
            return duplicate
        for operation in self.operations.values():
            if operation.fingerprint == fingerprint and not operation.is_settled:
                self.queue.total_deduped += 1
                return operation
        return None

    def _track(self, operation: Operation) -> None:
        outcome = operation.ensure_outcome()
        self.operations[operation.id] = operation
        outcome.add_done_callback(lambda _: self.operations.pop(operation.id, None))

    def _spawn(self, coroutine: Coroutine[Any, Any, Any]) -> "asyncio.Task[Any]":
        task = asyncio.get_running_loop().create_task(coroutine)
        self.tasks.add(task)
        task.add_done_callback(self.tasks.discard)
        return task

    def _start_direct(self, operation: Operation) -> None:
        self.queue.mark_active(operation)
        self._spawn(self._run_active(operation))

    async def _run_active(self, operation: Operation) -> None:
        """Execute an operation holding a queue slot and release the slot."""
        try:
            await self._execute_operation(operation)
        finally:
            self.queue.complete(
                operation, operation.status == OperationStatus.SUCCEEDED
            )

    def _max_retries(self, operation: Operation) -> int:
        if operation.options.max_retries is not None:
            return operation.options.max_retries
        return self.retry_engine.config.max_retries

    async def _execute_operation(self, operation: Operation) -> None:
        """
        Run an operation to its terminal state, retrying per policy.

        The outcome future carries the result; this coroutine never raises
        for operation failures.
        """
        if operation.is_settled:
            return
        if operation.started_at is None:
            operation.started_at = datetime.now()

        if not self.retry_engine.allow_request(operation.name):
            error = CircuitOpenError(
                operation.name, self.retry_engine.breakers.retry_after(operation.name)
            )
            await self._fail(operation, error, ErrorKind.CIRCUIT_OPEN)
            return

        # Set only when this call reserved the HALF_OPEN trial.
        holds_trial = self.retry_engine.get_circuit_breaker_status(
            operation.name
        ).trial_in_flight
        recorded = False
        try:
            while True:
                operation.status = OperationStatus.RUNNING
                operation.attempt_times.append(datetime.now())
                try:
                    result = await self._perform(operation)
                except asyncio.CancelledError:
                    raise
                except Exception as error:
                    kind = self.retry_engine.classify_error(error)
                    max_retries = self._max_retries(operation)
                    if self.retry_engine.should_retry(
                        error, operation.attempts, operation.name, max_retries
                    ):
                        await self._wait_for_retry(operation, error, kind, max_retries)
                        if self.destroyed:
                            return
                        continue

                    if kind not in LOCAL_ERROR_KINDS:
                        self.retry_engine.update_circuit_breaker(operation.name, False)
                        recorded = True
                    await self._fail(operation, error, kind)
                    return

                self.retry_engine.update_circuit_breaker(operation.name, True)
                recorded = True
                await self._succeed(operation, result)
                return
        finally:
            # A trial that ended locally or was cancelled hands its slot on.
            if holds_trial and not recorded:
                self.retry_engine.release_trial(operation.name)

    async def _wait_for_retry(
        self,
        operation: Operation,
        error: BaseException,
        kind: ErrorKind,
        max_retries: int,
    ) -> None:
        operation.attempts += 1
        operation.status = OperationStatus.RETRYING
        delay = self.retry_engine.calculate_delay(operation.attempts, kind=kind)
        limit = min(self.retry_engine.get_error_policy(kind).max_retries, max_retries)

        operation.retry_history.append(
            {
                "attempt": operation.attempts,
                "error": str(error),
                "error_kind": kind.value,
                "delay": delay,
                "timestamp": datetime.now().isoformat(),
            }
        )
        logger.warning(
            "Retrying operation",
            name=operation.name,
            attempt=f"{operation.attempts}/{limit}",
            kind=kind.value,
            delay=f"{delay:.2f}s",
        )
        await self._notify(
            NotificationType.WARNING,
            f"Retrying request... ({operation.attempts}/{limit})",
            operation,
            kind.value,
        )
        await asyncio.sleep(delay)

    async def _perform(self, operation: Operation) -> Any:
        """One network attempt."""
        request = TransportRequest(
            url=self.config.endpoint,
            body=encode_body(self._prepare_request_data(operation)),
            timeout=operation.options.timeout or self.config.timeout,
        )
        response = await self.transport.send(request)
        return self._process_transport_response(response)

    def _prepare_request_data(self, operation: Operation) -> Dict[str, Any]:
        """
        Build the form fields: prefixed action, nonce, then the payload.

        :raises ValidationError: If no nonce provider yields a value.
        """
        data: Dict[str, Any] = {
            "action": f"{self.config.action_prefix}{operation.name}",
            "nonce": resolve_nonce(self.nonce_providers),
        }
        for key, value in operation.payload.items():
            if key not in data:
                data[key] = value
        return data

    @staticmethod
    def _process_transport_response(response: TransportResponse) -> Any:
        """
        Unwrap the ``{success, data}`` envelope.

        :raises BackendError: If the backend reported ``success: false``.
        """
        body = response.data
        if not isinstance(body, dict):
            return body

        if body.get("success") is False:
            data = body.get("data")
            if isinstance(data, dict) and data.get("message"):
                message = str(data["message"])
            elif data:
                message = str(data)
            else:
                message = "Request failed"
            raise BackendError(message, data)

        if "data" in body:
            return body["data"]
        return body

    async def _succeed(self, operation: Operation, result: Any) -> None:
        if not operation.resolve_outcome(result):
            return
        self._record_success(operation, result)
        self._debug(
            "Operation succeeded",
            name=operation.name,
            attempts=operation.attempts,
            duration=f"{operation.duration:.3f}s",
        )
        await self._notify(
            NotificationType.SUCCESS, "Request completed successfully", operation
        )

    async def _fail(
        self, operation: Operation, error: BaseException, kind: ErrorKind
    ) -> None:
        if not operation.fail_outcome(error):
            return
        self._record_failure(operation, error, kind.value)
        logger.error(
            "Operation failed",
            error=error,
            name=operation.name,
            kind=kind.value,
            attempts=operation.attempts,
        )
        await self._notify(
            NotificationType.ERROR, user_message(error, kind), operation, kind.value
        )
