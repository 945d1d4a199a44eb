"""
Fixed-rate background loop on the running event loop.

Used for queue processing ticks and periodic metrics broadcasts.
"""

import asyncio
import inspect
import time
from datetime import timedelta
from typing import Any, Callable, Optional

from ..helper.logging import get_logger

logger = get_logger(__name__)


class Ticker:
    """
    Calls a sync or async function every ``interval`` until stopped.

    A tick that outlasts the interval is followed directly by the next one.
    Exceptions raised by the function are logged and do not end the loop.
    """

    def __init__(
        self,
        interval: timedelta,
        task: Callable[..., Any],
        *args: Any,
        **kwargs: Any,
    ):
        if interval.total_seconds() <= 0:
            raise ValueError("Interval must be a positive timedelta.")

        self.interval_seconds: float = interval.total_seconds()
        self.name = getattr(task, "__name__", repr(task))
        self._call = lambda: task(*args, **kwargs)
        self._runner: Optional["asyncio.Task[None]"] = None

    async def _tick(self) -> None:
        result = self._call()
        if inspect.isawaitable(result):
            await result

    async def _loop(self) -> None:
        logger.debug("Ticker started", ticker=self.name, interval=self.interval_seconds)

        while True:
            started = time.monotonic()
            try:
                await self._tick()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("Ticker task failed", error=e, ticker=self.name)

            remaining = self.interval_seconds - (time.monotonic() - started)
            if remaining <= 0:
                logger.warning(
                    "Ticker task exceeded its interval",
                    ticker=self.name,
                    interval=self.interval_seconds,
                )
            await asyncio.sleep(max(remaining, 0))

    def go(self) -> None:
        """
        Start the loop as a task of the running event loop.

        :raises RuntimeError: If no event loop is running.
        """
        if not self.is_running():
            self._runner = asyncio.get_running_loop().create_task(self._loop())

    def stop(self) -> None:
        runner, self._runner = self._runner, None
        if runner is None:
            return
        if not runner.done():
            runner.cancel()
        logger.debug("Ticker stopped", ticker=self.name)

    def is_running(self) -> bool:
        return self._runner is not None and not self._runner.done()
