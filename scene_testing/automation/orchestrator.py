"""
Run orchestrator: discovers scenarios, runs them one at a time across host
mode transitions and finalizes each scenario's artifacts before the next.

Foreground timeouts are checked on every host update tick and recover by
failing the current scenario. The ``BackgroundWatchdog`` covers the case where
those ticks stop arriving at all.
"""

from __future__ import annotations

import enum
import logging
import time
from collections import deque
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Deque, Dict, List, Optional

from ..app.environment import DEFAULT_OUTPUT_DIRNAME, Paths
from ..app.settings import RunnerSettings
from .artifacts import ArtifactBundle
from .driver.exceptions import ScenarioValidationError
from .flake_tracker import FlakeTracker
from .host import CaptureService, HeadlessHost, HostMode, ModeChange, NullCaptureService, SessionHandshake
from .registry import ScenarioDescriptor, ScenarioRegistry, validate_descriptors
from .reporting.workbook import write_results_summary
from .watchdog import BackgroundWatchdog, TimeoutClocks, _hard_exit, scenario_elapsed, transition_elapsed

logger = logging.getLogger(__name__)

VIDEO_FILENAME = "video.mp4"


class RunState(enum.Enum):
    IDLE = "idle"
    DISCOVERING = "discovering"
    AWAITING_INTERACTIVE = "awaiting_interactive"
    EXECUTING = "executing"
    AWAITING_AUTHORING = "awaiting_authoring"


class RunOrchestrator:
    """Drives a batch of scenarios through the host, strictly in id order."""

    def __init__(
        self,
        host: HeadlessHost,
        registry: ScenarioRegistry,
        settings: Optional[RunnerSettings] = None,
        paths: Optional[Paths] = None,
        *,
        capture: Optional[CaptureService] = None,
        terminate: Callable[[int], None] = _hard_exit,
        scenario_filter: Optional[int] = None,
        flake_tracker: Optional[FlakeTracker] = None,
        run_name: str = "",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.host = host
        self.registry = registry
        self.settings = settings or RunnerSettings()
        self.paths = paths or Paths(output_dir=_default_output_dir())
        self.capture = capture or NullCaptureService()
        self.scenario_filter = scenario_filter
        self.flake_tracker = flake_tracker
        self.run_name = run_name or datetime.now().strftime("run_%Y%m%d_%H%M%S")
        self.clocks = TimeoutClocks(clock)
        self.watchdog = BackgroundWatchdog(
            self.clocks,
            terminate=terminate,
            transition_timeout=self.settings.transition_timeout,
            grace=self.settings.watchdog_grace,
            poll_interval=self.settings.watchdog_poll_interval,
        )
        self.state = RunState.IDLE
        self.queue: Deque[ScenarioDescriptor] = deque()
        self.current: Optional[ScenarioDescriptor] = None
        self.bundle: Optional[ArtifactBundle] = None
        self.results: List[ArtifactBundle] = []
        self.failures = 0
        self.exit_code: Optional[int] = None
        self.finished = False
        self._handshake: Optional[SessionHandshake] = None
        self._forced_error: Optional[str] = None
        self._recording = False
        self._scenario_timeout = self.settings.default_scenario_timeout
        self._rows: List[Dict[str, Any]] = []
        self._listening = False

    # ------------------------------------------------------------- discovery
    def discover(self) -> List[ScenarioDescriptor]:
        """Validate every registered scenario and return the ones to run, sorted by id."""
        self.state = RunState.DISCOVERING
        try:
            descriptors = validate_descriptors(self.registry.descriptors())
        except ScenarioValidationError:
            self.state = RunState.IDLE
            raise
        logger.info("Found %s scenario(s)", len(descriptors))
        if self.scenario_filter is not None:
            descriptors = [d for d in descriptors if d.scenario_id == self.scenario_filter]
            if not descriptors:
                logger.error("Scenario %s is not registered", self.scenario_filter)
        return descriptors

    def start(self) -> bool:
        """Queue the scenarios and request the first interactive session."""
        if self.state is not RunState.IDLE or self._listening:
            logger.warning("Run already in progress")
            return False
        descriptors = self.discover()
        self.queue = deque(descriptors)
        self.results.clear()
        self._rows.clear()
        self.failures = 0
        self.exit_code = None
        self.finished = False
        if not self.queue:
            logger.warning("No scenarios to run")
            self.failures = 1 if self.scenario_filter is not None else 0
            self._teardown()
            return False

        self.paths.output_dir.mkdir(parents=True, exist_ok=True)
        self.clocks.reset()
        self.host.add_mode_listener(self._on_mode_change)
        self.host.add_update_listener(self._on_update)
        self._listening = True
        self.watchdog.start()
        logger.info("Starting run '%s' with %s scenario(s)", self.run_name, len(self.queue))
        self._run_next()
        return True

    def run(self, *, tick_interval: float = 1 / 60, max_ticks: Optional[int] = None) -> int:
        """Start the run and pump the host until it finishes; return the exit code."""
        if self.start():
            self.host.run(lambda: self.finished, tick_interval=tick_interval, max_ticks=max_ticks)
            if not self.finished:
                logger.error("Host loop ended before the run finished")
                if self.current is not None:
                    reason = self.watchdog.reason
                    if reason is not None:
                        self._forced_error = str(reason)
                    else:
                        self._forced_error = "Host loop ended before the scenario finished"
                    if self._recording:
                        self.capture.cancel_recording()
                        self._recording = False
                    self._complete_current()
                else:
                    self.failures += 1
                self._teardown()
        return self.exit_code if self.exit_code is not None else 1

    def stop(self) -> None:
        """Abort the run: drop the queue and leave interactive mode."""
        logger.warning("Run stop requested; %s scenario(s) skipped", len(self.queue))
        self.queue.clear()
        if self.state in (RunState.EXECUTING, RunState.AWAITING_INTERACTIVE):
            self._forced_error = "Run stopped by operator"
        if self.host.mode is HostMode.INTERACTIVE:
            self.state = RunState.AWAITING_AUTHORING
            self.host.request_authoring_mode()
        elif self.state is RunState.IDLE and self._listening:
            self._teardown()

    def abort(self, reason: str = "Run stopped by operator") -> None:
        """Finalize the in-flight scenario as failed and tear down without pumping the host."""
        if self.finished:
            return
        logger.warning("Run aborted (%s); %s scenario(s) skipped", reason, len(self.queue))
        self.queue.clear()
        if self.current is not None:
            self._forced_error = reason
            if self._recording:
                self.capture.cancel_recording()
                self._recording = False
            self.clocks.end_transition()
            self.clocks.end_scenario()
            self._complete_current()
        self._teardown()

    # ------------------------------------------------------------- sequencing
    def _run_next(self) -> None:
        if self.finished:
            return
        if not self.queue:
            self._teardown()
            return
        descriptor = self.queue.popleft()
        self.current = descriptor
        self._scenario_timeout = descriptor.timeout_or(self.settings.default_scenario_timeout)
        self._forced_error = None
        self.bundle = ArtifactBundle.create(descriptor, self.paths.output_dir)
        self.bundle.start_capture()
        logger.info("Running scenario %s: %s", descriptor.scenario_id, descriptor.name)
        self._handshake = SessionHandshake(
            managed_run=True,
            scenario_id=descriptor.scenario_id,
            scenario_name=descriptor.name,
            run_name=self.run_name,
            artifact_dir=self.bundle.directory,
        )
        self.state = RunState.AWAITING_INTERACTIVE
        self.clocks.begin_transition()
        self.host.request_interactive_mode(self._handshake)

    def _on_mode_change(self, change: ModeChange) -> None:
        if change is ModeChange.ENTERED_INTERACTIVE:
            if self.state is not RunState.AWAITING_INTERACTIVE or self.current is None:
                return
            self.clocks.end_transition()
            self.clocks.begin_scenario(self._scenario_timeout)
            self.state = RunState.EXECUTING
            if self.settings.record_video and self.bundle is not None:
                self.capture.start_recording(self.bundle.directory / VIDEO_FILENAME)
                self._recording = True
        elif change is ModeChange.EXITING_INTERACTIVE:
            if self._recording and self.bundle is not None:
                self.bundle.video_path = self.capture.stop_recording()
                self._recording = False
            if self.state in (RunState.EXECUTING, RunState.AWAITING_AUTHORING):
                self._await_authoring()
        elif change is ModeChange.ENTERED_AUTHORING:
            if self.current is None or self.state not in (RunState.EXECUTING, RunState.AWAITING_AUTHORING):
                return
            self.clocks.end_scenario()
            self.clocks.end_transition()
            self.state = RunState.AWAITING_AUTHORING
            # Interactive tasks were just cancelled; they unwind during this tick.
            self.host.call_soon(self._finish_current)

    def _await_authoring(self) -> None:
        """Swap the scenario clock for a transition clock while interactive mode shuts down."""
        self.clocks.end_scenario()
        self.clocks.begin_transition()
        self.state = RunState.AWAITING_AUTHORING

    def _finish_current(self) -> None:
        if self.finished or self.current is None or self.state is not RunState.AWAITING_AUTHORING:
            return
        self._complete_current()
        self._run_next()

    def _on_update(self) -> None:
        """Foreground watchdog, polled once per host tick."""
        if self.current is None:
            return
        now = self.clocks.now()
        snapshot = self.clocks.snapshot()
        if self.state in (RunState.AWAITING_INTERACTIVE, RunState.AWAITING_AUTHORING):
            elapsed = transition_elapsed(snapshot, now)
            if elapsed is not None and elapsed > self.settings.transition_timeout:
                logger.error(
                    "Mode transition timeout after %.1fs for scenario %s (%s)",
                    elapsed,
                    self.current.scenario_id,
                    self.state.value,
                )
                if self._forced_error is None:
                    self._forced_error = f"Mode transition timeout after {elapsed:.1f}s"
                if self._recording or self.state is RunState.AWAITING_INTERACTIVE:
                    self.capture.cancel_recording()
                self._recording = False
                self.clocks.end_transition()
                self._complete_current()
                self.host.call_soon(self._run_next)
        elif self.state is RunState.EXECUTING:
            elapsed = scenario_elapsed(snapshot, now)
            if elapsed is not None and elapsed > self._scenario_timeout:
                logger.error(
                    "Scenario %s timed out after %.1fs (limit %ss)",
                    self.current.scenario_id,
                    elapsed,
                    self._scenario_timeout,
                )
                self._forced_error = f"Scenario timed out after {elapsed:.1f}s"
                self._await_authoring()
                self.host.request_authoring_mode()

    def _complete_current(self) -> None:
        descriptor, bundle = self.current, self.bundle
        if descriptor is None or bundle is None:
            return
        outcome = self._handshake.outcome if self._handshake is not None else None
        bundle.absorb(outcome)
        unfinished = bundle.state in ("not_started", "running")
        if unfinished:
            bundle.duration = None
        if self._forced_error is not None:
            bundle.state = "failed"
            bundle.error = self._forced_error
        elif outcome is None:
            bundle.state = "failed"
            bundle.error = "Scenario reported no outcome"
        elif unfinished:
            bundle.state = "failed"
            bundle.error = bundle.error or "Scenario did not finish"
        if bundle.duration is None:
            bundle.duration = (datetime.now() - bundle.started_at).total_seconds()

        failed = bundle.state == "failed" or (
            bundle.state == "cancelled" and self.settings.cancelled_counts_as_failure
        )
        if failed:
            self.failures += 1
        logger.info(
            "Scenario %s finished: %s%s",
            descriptor.scenario_id,
            bundle.state.upper(),
            f" ({bundle.error})" if bundle.error else "",
        )
        bundle.finalize()
        self.results.append(bundle)
        if self.flake_tracker is not None:
            self.flake_tracker.record(descriptor.name, bundle.state, bundle.error)
        self._rows.append(
            {
                "scenario_id": descriptor.scenario_id,
                "name": descriptor.name,
                "severity": descriptor.severity.value,
                "owner": descriptor.owner,
                "started": bundle.started_at.strftime("%Y-%m-%d %H:%M:%S"),
                "duration": bundle.duration,
                "result": _result_label(bundle.state),
                "error": bundle.error,
                "artifacts": str(bundle.directory),
            }
        )
        self.current = None
        self.bundle = None
        self._handshake = None
        self.state = RunState.IDLE

    def _teardown(self) -> None:
        if self.finished:
            return
        self.watchdog.stop()
        if self._listening:
            self.host.remove_mode_listener(self._on_mode_change)
            self.host.remove_update_listener(self._on_update)
            self._listening = False
        self.clocks.reset()
        self.host.clear_handshake()
        if self._rows:
            write_results_summary(self.paths.output_dir, self._rows)
        self.state = RunState.IDLE
        self.exit_code = 1 if self.failures else 0
        self.finished = True
        passed = sum(1 for bundle in self.results if bundle.state == "passed")
        logger.info(
            "Run '%s' complete: %s passed, %s failed, %s total",
            self.run_name,
            passed,
            self.failures,
            len(self.results),
        )
        if self.host.batch_mode:
            self.host.exit(self.exit_code)

    @property
    def outcomes(self) -> Dict[int, str]:
        return {bundle.descriptor.scenario_id: bundle.state for bundle in self.results}


def _result_label(state: str) -> str:
    return {"passed": "PASS", "cancelled": "CANCELLED"}.get(state, "FAIL")


def _default_output_dir() -> Path:
    return Path.cwd() / DEFAULT_OUTPUT_DIRNAME
