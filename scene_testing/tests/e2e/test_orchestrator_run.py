from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import List, Optional

import pytest

from scene_testing.app.environment import Paths
from scene_testing.app.settings import RunnerSettings
from scene_testing.automation.driver.core import SceneGraph
from scene_testing.automation.driver.exceptions import ScenarioValidationError
from scene_testing.automation.flake_tracker import FlakeTracker
from scene_testing.automation.host import HeadlessHost, HostMode, SessionHandshake
from scene_testing.automation.orchestrator import RunOrchestrator, RunState
from scene_testing.automation.registry import ScenarioDescriptor, ScenarioRegistry
from scene_testing.automation.reporting.workbook import SUMMARY_FILENAME, read_results_summary
from scene_testing.automation.scenario import Scenario, ScenarioLauncher, ScenarioRuntime

pytestmark = pytest.mark.e2e

TICK = 0.005


class _RecordingCapture:
    def __init__(self) -> None:
        self.calls: List[str] = []
        self._path: Optional[Path] = None

    def start_recording(self, path: Path) -> None:
        self.calls.append("start")
        self._path = path

    def stop_recording(self) -> Optional[Path]:
        self.calls.append("stop")
        return self._path

    def cancel_recording(self) -> None:
        self.calls.append("cancel")


def _settings(**overrides) -> RunnerSettings:
    values = dict(
        action_interval=0.05,
        click_settle_delay=0.0,
        find_poll_interval=0.5,
        transition_timeout=1.0,
        watchdog_grace=5.0,
        watchdog_poll_interval=0.05,
        record_video=True,
    )
    values.update(overrides)
    return RunnerSettings(**values)


def _run(
    registry: ScenarioRegistry,
    tmp_path: Path,
    settings: Optional[RunnerSettings] = None,
    host_cls: type = HeadlessHost,
    capture: Optional[_RecordingCapture] = None,
    scenario_filter: Optional[int] = None,
):
    settings = settings or _settings()
    exit_codes: List[int] = []
    terminated: List[int] = []
    host = host_cls(SceneGraph, exit_handler=exit_codes.append)
    launcher = ScenarioLauncher(host, registry, ScenarioRuntime(host, settings))
    orchestrator = RunOrchestrator(
        host,
        registry,
        settings,
        Paths(output_dir=tmp_path / "results"),
        capture=capture,
        terminate=terminated.append,
        scenario_filter=scenario_filter,
        flake_tracker=FlakeTracker(tmp_path / "results" / "flake_stats.json"),
        run_name="e2e",
    )
    try:
        code = orchestrator.run(tick_interval=TICK, max_ticks=20_000)
    finally:
        launcher.close()
        host.shutdown()
    return orchestrator, code, exit_codes, terminated


def test_three_scenarios_run_in_id_order_and_pass(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO)
    registry = ScenarioRegistry()
    events: List[str] = []

    def make(scenario_id: int):
        class Step(Scenario):
            async def test(self) -> None:
                events.append(f"start {scenario_id}")
                await self.wait(0.02)
                events.append(f"end {scenario_id}")

        registry.register(ScenarioDescriptor(scenario_id=scenario_id, name=f"Step{scenario_id}", factory=Step, timeout=10))

    for scenario_id in (3, 1, 2):
        make(scenario_id)

    capture = _RecordingCapture()
    orchestrator, code, exit_codes, terminated = _run(registry, tmp_path, capture=capture)

    assert code == 0
    assert exit_codes == [0]
    assert terminated == []
    assert events == ["start 1", "end 1", "start 2", "end 2", "start 3", "end 3"]
    assert [bundle.descriptor.scenario_id for bundle in orchestrator.results] == [1, 2, 3]
    assert all(bundle.finalized for bundle in orchestrator.results)
    assert orchestrator.outcomes == {1: "passed", 2: "passed", 3: "passed"}
    assert capture.calls == ["start", "stop"] * 3
    assert orchestrator.state is RunState.IDLE
    assert orchestrator.watchdog.running is False

    results = tmp_path / "results"
    first = json.loads((results / "001_Step1" / "result.json").read_text(encoding="utf-8"))
    assert first["state"] == "passed"
    assert first["video"].endswith("video.mp4")
    assert "Test Start: Step1" in (results / "001_Step1" / "log.txt").read_text(encoding="utf-8")
    assert "Step2" not in (results / "001_Step1" / "log.txt").read_text(encoding="utf-8")
    rows = read_results_summary(results / SUMMARY_FILENAME)
    assert [(r["Scenario"], r["Result"]) for r in rows] == [(1, "PASS"), (2, "PASS"), (3, "PASS")]


@pytest.mark.slow
def test_missing_click_fails_and_run_continues(tmp_path: Path) -> None:
    registry = ScenarioRegistry()
    ran: List[str] = []

    @registry.scenario(1)
    class ClickMissing(Scenario):
        async def test(self) -> None:
            await self.click("Missing", throw_if_missing=True, search_time=2)

    @registry.scenario(2)
    class AfterFailure(Scenario):
        async def test(self) -> None:
            ran.append("after")

    orchestrator, code, exit_codes, _ = _run(registry, tmp_path)

    assert code == 1
    assert exit_codes == [1]
    assert ran == ["after"]
    failed, passed = orchestrator.results
    assert failed.state == "failed"
    assert failed.error.startswith("ElementNotFoundError")
    assert 2.0 <= failed.duration < 2.0 + 0.5 + 0.25
    assert passed.state == "passed"
    stats = json.loads((tmp_path / "results" / "flake_stats.json").read_text(encoding="utf-8"))
    assert stats["ClickMissing"]["failures"] == {"failed": 1}


def test_scenario_timeout_fails_and_moves_on(tmp_path: Path) -> None:
    registry = ScenarioRegistry()

    @registry.scenario(1, timeout=0.2)
    class Sleeper(Scenario):
        async def test(self) -> None:
            await self.wait(30)

    @registry.scenario(2)
    class Quick(Scenario):
        async def test(self) -> None:
            await self.wait(0.01)

    started = time.monotonic()
    orchestrator, code, _, terminated = _run(registry, tmp_path)

    assert time.monotonic() - started < 10
    assert code == 1
    assert terminated == []
    assert orchestrator.outcomes == {1: "failed", 2: "passed"}
    assert orchestrator.results[0].error.startswith("Scenario timed out after")


def test_cancelled_policy_is_configurable(tmp_path: Path) -> None:
    def build(registry: ScenarioRegistry) -> None:
        @registry.scenario(1)
        class SelfCancel(Scenario):
            async def test(self) -> None:
                self.runtime.request_stop()
                await self.wait(1)

    strict = ScenarioRegistry()
    build(strict)
    orchestrator, code, _, _ = _run(strict, tmp_path / "strict")
    assert orchestrator.outcomes == {1: "cancelled"}
    assert code == 1

    lenient = ScenarioRegistry()
    build(lenient)
    _, code, _, _ = _run(lenient, tmp_path / "lenient", settings=_settings(cancelled_counts_as_failure=False))
    assert code == 0


class _StuckHost(HeadlessHost):
    """Accepts interactive-mode requests but never completes them."""

    def request_interactive_mode(self, handshake: SessionHandshake) -> None:
        self._handshake = handshake


def test_transition_timeout_fails_each_scenario(tmp_path: Path) -> None:
    registry = ScenarioRegistry()

    @registry.scenario(1)
    class Never(Scenario):
        async def test(self) -> None:
            raise AssertionError("should not run")

    @registry.scenario(2)
    class NeverEither(Scenario):
        async def test(self) -> None:
            raise AssertionError("should not run")

    capture = _RecordingCapture()
    orchestrator, code, exit_codes, terminated = _run(
        registry, tmp_path, settings=_settings(transition_timeout=0.1), host_cls=_StuckHost, capture=capture
    )

    assert code == 1
    assert exit_codes == [1]
    assert terminated == []
    assert orchestrator.host.mode is HostMode.AUTHORING
    assert orchestrator.outcomes == {1: "failed", 2: "failed"}
    assert all(b.error.startswith("Mode transition timeout") for b in orchestrator.results)
    assert capture.calls == ["cancel", "cancel"]


def test_validation_error_aborts_before_running(tmp_path: Path) -> None:
    registry = ScenarioRegistry(strict=False)
    ran: List[int] = []

    class Body(Scenario):
        async def test(self) -> None:
            ran.append(1)

    registry.register(ScenarioDescriptor(scenario_id=4, name="A", factory=Body))
    registry.register(ScenarioDescriptor(scenario_id=4, name="B", factory=Body))

    host = HeadlessHost(SceneGraph)
    orchestrator = RunOrchestrator(host, registry, _settings(), Paths(output_dir=tmp_path), terminate=lambda code: None)
    with pytest.raises(ScenarioValidationError, match="Duplicate scenario id 4: A, B"):
        orchestrator.run(tick_interval=TICK, max_ticks=10)
    host.shutdown()
    assert ran == []
    assert orchestrator.state is RunState.IDLE
    assert not (tmp_path / SUMMARY_FILENAME).exists()


def test_unknown_filter_fails_without_running(tmp_path: Path) -> None:
    registry = ScenarioRegistry()

    @registry.scenario(1)
    class Only(Scenario):
        async def test(self) -> None:
            pass

    orchestrator, code, exit_codes, _ = _run(registry, tmp_path, scenario_filter=9)
    assert code == 1
    assert exit_codes == [1]
    assert orchestrator.results == []
