"""
Timeout clocks shared between the update loop and the background watchdog.

The foreground checks live in the orchestrator and run once per host tick.
``BackgroundWatchdog`` runs on its own thread and only reads the clocks; when
they show the host has stopped making progress it calls the injected
``terminate`` capability and nothing else.
"""

from __future__ import annotations

import logging
import os
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

from .driver.exceptions import HostFrozenError

logger = logging.getLogger(__name__)

DEFAULT_TRANSITION_TIMEOUT = 30.0
DEFAULT_WATCHDOG_GRACE = 10.0
DEFAULT_WATCHDOG_POLL_INTERVAL = 1.0
FROZEN_EXIT_CODE = 1


@dataclass(frozen=True)
class ClockSnapshot:
    waiting_for_transition: bool
    transition_started: Optional[float]
    scenario_started: Optional[float]
    scenario_timeout: float


class TimeoutClocks:
    """The two timestamps both watchdogs observe. Thread-safe."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._waiting = False
        self._transition_started: Optional[float] = None
        self._scenario_started: Optional[float] = None
        self._scenario_timeout = 0.0

    def now(self) -> float:
        return self._clock()

    def begin_transition(self) -> None:
        with self._lock:
            self._waiting = True
            self._transition_started = self._clock()

    def end_transition(self) -> None:
        with self._lock:
            self._waiting = False
            self._transition_started = None

    def begin_scenario(self, timeout: float) -> None:
        with self._lock:
            self._scenario_started = self._clock()
            self._scenario_timeout = float(timeout)

    def end_scenario(self) -> None:
        with self._lock:
            self._scenario_started = None
            self._scenario_timeout = 0.0

    def reset(self) -> None:
        with self._lock:
            self._waiting = False
            self._transition_started = None
            self._scenario_started = None
            self._scenario_timeout = 0.0

    def snapshot(self) -> ClockSnapshot:
        with self._lock:
            return ClockSnapshot(
                waiting_for_transition=self._waiting,
                transition_started=self._transition_started,
                scenario_started=self._scenario_started,
                scenario_timeout=self._scenario_timeout,
            )


def transition_elapsed(snapshot: ClockSnapshot, now: float) -> Optional[float]:
    if not snapshot.waiting_for_transition or snapshot.transition_started is None:
        return None
    return now - snapshot.transition_started


def scenario_elapsed(snapshot: ClockSnapshot, now: float) -> Optional[float]:
    if snapshot.scenario_started is None or snapshot.scenario_timeout <= 0:
        return None
    return now - snapshot.scenario_started


def evaluate_frozen(
    snapshot: ClockSnapshot,
    now: float,
    *,
    transition_timeout: float = DEFAULT_TRANSITION_TIMEOUT,
    grace: float = DEFAULT_WATCHDOG_GRACE,
) -> Optional[HostFrozenError]:
    """Return the reason the host is considered frozen, or ``None``."""

    elapsed = transition_elapsed(snapshot, now)
    if elapsed is not None and elapsed > transition_timeout + grace:
        return HostFrozenError(f"Mode transition timeout after {elapsed:.1f}s - host may be frozen")
    elapsed = scenario_elapsed(snapshot, now)
    if elapsed is not None and elapsed > snapshot.scenario_timeout + grace:
        return HostFrozenError(f"Scenario timeout after {elapsed:.1f}s - host may be frozen")
    return None


def _hard_exit(code: int) -> None:  # pragma: no cover - terminates the interpreter
    logging.shutdown()
    os._exit(code)


class BackgroundWatchdog:
    """Polls ``TimeoutClocks`` from a daemon thread and terminates a frozen host."""

    def __init__(
        self,
        clocks: TimeoutClocks,
        *,
        terminate: Callable[[int], None] = _hard_exit,
        transition_timeout: float = DEFAULT_TRANSITION_TIMEOUT,
        grace: float = DEFAULT_WATCHDOG_GRACE,
        poll_interval: float = DEFAULT_WATCHDOG_POLL_INTERVAL,
    ) -> None:
        self._clocks = clocks
        self._terminate = terminate
        self.transition_timeout = transition_timeout
        self.grace = grace
        self.poll_interval = poll_interval
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.reason: Optional[HostFrozenError] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="scene-testing-watchdog", daemon=True)
        self._thread.start()
        logger.debug("Background watchdog started (poll %ss)", self.poll_interval)

    def stop(self) -> None:
        self._stop_event.set()
        thread, self._thread = self._thread, None
        if thread is not None and thread.is_alive() and thread is not threading.current_thread():
            thread.join(timeout=2)
        logger.debug("Background watchdog stopped")

    def check(self) -> bool:
        """Evaluate the clocks once; terminate and return True when the host is frozen."""
        reason = evaluate_frozen(
            self._clocks.snapshot(),
            self._clocks.now(),
            transition_timeout=self.transition_timeout,
            grace=self.grace,
        )
        if reason is None:
            return False
        self.reason = reason
        logger.error("BACKGROUND WATCHDOG: %s", reason)
        logger.error("BACKGROUND WATCHDOG: forcing exit with code %s", FROZEN_EXIT_CODE)
        self._terminate(FROZEN_EXIT_CODE)
        return True

    def _loop(self) -> None:
        while not self._stop_event.wait(self.poll_interval):
            try:
                if self.check():
                    return
            except Exception:
                logger.exception("Background watchdog error")
