from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class ScheduledTask:
    """
    Debounce timer on the running event loop.

    `reschedule()` restarts the countdown; when it expires `callback()` runs as
    a task. `close()` drops the countdown and cancels every callback still running,
    so nothing fires against a torn-down surface.
    """

    def __init__(self, delay_s: float, callback: Callable[[], Awaitable[None]]) -> None:
        self.delay_s = delay_s
        self._callback = callback
        self._handle: Optional[asyncio.TimerHandle] = None
        self._task: Optional[asyncio.Task[None]] = None
        # every callback still running, not just the latest firing
        self._tasks: set[asyncio.Task[None]] = set()
        self._closed = False

    @property
    def pending(self) -> bool:
        return self._handle is not None

    @property
    def running(self) -> bool:
        return any(not t.done() for t in self._tasks)

    def reschedule(self, delay_s: Optional[float] = None) -> None:
        if self._closed:
            return
        self.cancel()
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self.delay_s if delay_s is None else delay_s, self._fire)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self) -> None:
        self._handle = None
        self._task = asyncio.get_running_loop().create_task(self._run())
        self._tasks.add(self._task)
        self._task.add_done_callback(self._tasks.discard)

    async def _run(self) -> None:
        try:
            await self._callback()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("scheduled callback failed")

    async def wait(self) -> None:
        """Wait for the callback spawned by the last firing, if any."""
        if self._task is not None:
            await asyncio.shield(self._task)

    def close(self) -> None:
        self._closed = True
        self.cancel()
        for task in list(self._tasks):
            task.cancel()

    async def __aenter__(self) -> "ScheduledTask":
        return self

    async def __aexit__(self, *exc: object) -> None:
        self.close()
