"""Single-slot asyncio timers."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any, Awaitable, Callable


logger = logging.getLogger(__name__)


class SingleSlotTimer:
    """Holds at most one pending delayed callback.

    Scheduling replaces (and cancels) whatever was pending, so only the most
    recently scheduled callback can ever run.
    """

    def __init__(self, name: str) -> None:
        self._name = name
        self._task: asyncio.Task[Any] | None = None

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    def schedule(self, delay: float, callback: Callable[[], Awaitable[None]]) -> asyncio.Task[Any]:
        self.cancel()

        async def run() -> None:
            await asyncio.sleep(delay)
            try:
                await callback()
            except Exception:
                logger.exception("Timer callback failed", extra={"timer": self._name})
            finally:
                if self._task is asyncio.current_task():
                    self._task = None

        self._task = asyncio.create_task(run(), name=f"timer-{self._name}")
        return self._task

    def cancel(self) -> None:
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()

    async def wait(self) -> None:
        """Wait for the pending callback, if any, to finish (used by tests)."""

        task = self._task
        if task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await task
