"""
Single-threaded scheduler pumped by the host's update tick.

Scenario bodies are coroutines running on a private event loop that only
advances when ``Scheduler.tick()`` is called, so all scene access happens
from the host's update loop.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Coroutine, List, Optional

logger = logging.getLogger(__name__)


class Scheduler:
    def __init__(self, passes_per_tick: int = 8) -> None:
        self._loop = asyncio.new_event_loop()
        self._passes = max(1, int(passes_per_tick))
        self._frame_waiters: List[asyncio.Future] = []
        self.frame = 0

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        return self._loop

    @property
    def closed(self) -> bool:
        return self._loop.is_closed()

    def spawn(self, coro: Coroutine[Any, Any, Any], name: Optional[str] = None) -> asyncio.Task:
        return self._loop.create_task(coro, name=name)

    def next_frame(self) -> asyncio.Future:
        """Future resolved at the start of the next tick."""
        future = self._loop.create_future()
        self._frame_waiters.append(future)
        return future

    def tick(self) -> None:
        """Advance one frame and run every callback that is ready, without blocking."""
        if self._loop.is_closed():
            return
        self.frame += 1
        waiters, self._frame_waiters = self._frame_waiters, []
        for future in waiters:
            if not future.done():
                future.set_result(self.frame)
        # Each pass drains the callbacks that were ready when it started.
        for _ in range(self._passes):
            self._loop.call_soon(self._loop.stop)
            self._loop.run_forever()

    def cancel_pending(self) -> int:
        """Cancel every unfinished task; they unwind on the next tick."""
        if self._loop.is_closed():
            return 0
        pending = [task for task in asyncio.all_tasks(self._loop) if not task.done()]
        for task in pending:
            task.cancel()
        return len(pending)

    def close(self) -> None:
        if self._loop.is_closed():
            return
        pending = [task for task in asyncio.all_tasks(self._loop) if not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            self._loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
        self._loop.close()
        logger.debug("Scheduler closed after %s frames", self.frame)
