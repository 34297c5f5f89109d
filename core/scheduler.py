"""Cancellable periodic tasks for the polling and evaluation loops."""

from __future__ import annotations

import asyncio
import inspect
import time
from typing import Any, Awaitable, Callable, Optional, Union

from core.logger import get_logger


system_logger = get_logger("system")
error_logger = get_logger("errors")

TaskCallback = Callable[[], Union[Any, Awaitable[Any]]]


class PeriodicTask:
    """Runs ``callback`` every ``interval`` seconds on the running event loop.

    Runs never overlap: the next one starts only after the previous finished,
    sleeping whatever is left of the interval. Exceptions and timeouts are
    logged and the task keeps going.
    """

    def __init__(
        self,
        name: str,
        interval: float,
        callback: TaskCallback,
        *,
        timeout: Optional[float] = None,
        run_immediately: bool = True,
    ) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.name = name
        self.interval = interval
        self.callback = callback
        self.timeout = timeout
        self.run_immediately = run_immediately
        self.runs = 0
        self.failures = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task:
        if self.running:
            return self._task  # type: ignore[return-value]
        self._task = asyncio.get_running_loop().create_task(self._run(), name=self.name)
        system_logger.info("Task %s started | every %.2fs", self.name, self.interval)
        return self._task

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        system_logger.info("Task %s stopped after %d runs", self.name, self.runs)

    async def run_once(self) -> None:
        try:
            result = self.callback()
            if inspect.isawaitable(result):
                if self.timeout is not None:
                    await asyncio.wait_for(result, timeout=self.timeout)
                else:
                    await result
        except asyncio.CancelledError:
            raise
        except asyncio.TimeoutError:
            self.failures += 1
            error_logger.error("Task %s timed out after %.2fs", self.name, self.timeout)
        except Exception:
            self.failures += 1
            error_logger.exception("Task %s failed", self.name)
        finally:
            self.runs += 1

    async def _run(self) -> None:
        if not self.run_immediately:
            await asyncio.sleep(self.interval)
        while True:
            loop_start = time.monotonic()
            await self.run_once()
            elapsed = time.monotonic() - loop_start
            await asyncio.sleep(max(0.0, self.interval - elapsed))


__all__ = ["PeriodicTask", "TaskCallback"]
