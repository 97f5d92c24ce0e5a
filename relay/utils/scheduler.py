import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Optional

from .exception_logging import log_exception_with_details

logger = logging.getLogger("uvicorn.error")

Callback = Callable[[], Awaitable[object]]


class ScheduledHandle:
    """Cancellation handle for a scheduled callback."""

    def __init__(self) -> None:
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True

    @property
    def active(self) -> bool:
        return not self.cancelled


class Scheduler(ABC):
    """Schedules async callbacks on the running event loop."""

    @abstractmethod
    def call_later(self, delay: float, callback: Callback) -> ScheduledHandle:
        """Run ``callback`` once after ``delay`` seconds."""

    @abstractmethod
    def call_every(self, period: float, callback: Callback) -> ScheduledHandle:
        """Run ``callback`` every ``period`` seconds until cancelled."""


class _TaskHandle(ScheduledHandle):
    def __init__(self) -> None:
        super().__init__()
        self.task: Optional[asyncio.Task] = None

    def cancel(self) -> None:
        if self.cancelled:
            return
        self.cancelled = True
        # Cancelled from inside its own callback: let the callback finish,
        # the runner loop exits on the flag.
        if self.task is None or self.task.done():
            return
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        if self.task is not current:
            self.task.cancel()

    @property
    def active(self) -> bool:
        return not self.cancelled and self.task is not None and not self.task.done()


class AsyncioScheduler(Scheduler):
    def __init__(self) -> None:
        self._tasks: set[asyncio.Task] = set()

    async def _invoke(self, callback: Callback) -> None:
        try:
            await callback()
        except Exception as e:
            log_exception_with_details(logger, "[Scheduler]", e)

    def _spawn(self, handle: _TaskHandle, runner: Awaitable[None]) -> _TaskHandle:
        task = asyncio.create_task(runner)
        handle.task = task
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return handle

    def call_later(self, delay: float, callback: Callback) -> ScheduledHandle:
        handle = _TaskHandle()

        async def runner():
            await asyncio.sleep(delay)
            if not handle.cancelled:
                await self._invoke(callback)

        return self._spawn(handle, runner())

    def call_every(self, period: float, callback: Callback) -> ScheduledHandle:
        handle = _TaskHandle()

        async def runner():
            while not handle.cancelled:
                await asyncio.sleep(period)
                if handle.cancelled:
                    break
                await self._invoke(callback)

        return self._spawn(handle, runner())

    async def shutdown(self) -> None:
        """Cancel and await every outstanding scheduled task."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
