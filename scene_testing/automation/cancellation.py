"""Cancellation scope shared by every wait primitive of one scenario."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Optional, TypeVar

from .driver.exceptions import ScenarioCancelledError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CancellationScope:
    """
    One scope per in-flight scenario.

    ``cancel()`` wakes every pending ``sleep``/``wait`` immediately; they raise
    ``ScenarioCancelledError`` without running another polling cycle.
    """

    def __init__(self, name: str = "scenario") -> None:
        self.name = name
        self._event = asyncio.Event()
        self._released = False

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def released(self) -> bool:
        return self._released

    def cancel(self) -> None:
        if not self._event.is_set():
            logger.debug("Cancelling scope '%s'", self.name)
        self._event.set()

    def release(self) -> None:
        """Cancel and mark the scope as finished; it cannot be reused."""
        self.cancel()
        self._released = True

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise ScenarioCancelledError(f"Scope '{self.name}' was cancelled")

    async def sleep(self, seconds: float) -> None:
        """Suspend for ``seconds`` unless the scope is cancelled first."""
        self.raise_if_cancelled()
        try:
            await asyncio.wait_for(self._event.wait(), timeout=max(float(seconds), 0.0))
        except asyncio.TimeoutError:
            return
        self.raise_if_cancelled()

    async def wait(self, awaitable: Awaitable[T], timeout: Optional[float] = None) -> T:
        """Await ``awaitable`` racing it against cancellation."""
        self.raise_if_cancelled()
        work = asyncio.ensure_future(awaitable)
        stopper = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait({work, stopper}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stopper.cancel()
        if work in done:
            return work.result()
        work.cancel()
        self.raise_if_cancelled()
        raise asyncio.TimeoutError(f"Timed out after {timeout}s")
