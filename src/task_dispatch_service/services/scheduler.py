"""Periodic background jobs on the application event loop."""

from __future__ import annotations

import asyncio
import contextlib
from typing import TYPE_CHECKING, Any

from task_dispatch_service.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable


class PeriodicJob:
    """
    Runs a blocking callable every ``interval_seconds`` in a worker thread.

    Exceptions are logged and the loop keeps going; ``stop`` cancels it.
    """

    def __init__(self, name: str, interval_seconds: float, func: Callable[[], Any]) -> None:
        self.name = name
        self._interval_seconds = interval_seconds
        self._func = func
        self._task: asyncio.Task[None] | None = None
        self._logger = get_logger(__name__)
        self.runs = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name=f"periodic-{self.name}")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    async def run_once(self) -> Any:
        try:
            return await asyncio.to_thread(self._func)
        except Exception:
            self._logger.exception("Periodic job failed", extra={"job": self.name})
            return None
        finally:
            self.runs += 1

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self._interval_seconds)
            await self.run_once()
