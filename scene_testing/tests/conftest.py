from __future__ import annotations

import time
from pathlib import Path
from typing import Callable, Dict, List, Optional

import pytest

from scene_testing.app.settings import RunnerSettings
from scene_testing.automation.driver.core import SceneGraph
from scene_testing.automation.host import HeadlessHost, HostMode, SessionHandshake
from scene_testing.automation.registry import ScenarioRegistry
from scene_testing.automation.scenario import ScenarioLauncher, ScenarioOutcome, ScenarioRuntime

TICK = 0.005


def make_fast_settings(**overrides) -> RunnerSettings:
    values = dict(
        action_interval=0.05,
        click_settle_delay=0.0,
        find_poll_interval=0.02,
        find_all_poll_interval=0.02,
        search_retry_interval=0.02,
        transition_timeout=2.0,
        watchdog_grace=1.0,
        watchdog_poll_interval=0.05,
        scene_change_recent_threshold=1.0,
        record_video=False,
    )
    values.update(overrides)
    return RunnerSettings(**values)


class ScenarioHarness:
    """Headless host, runtime and launcher wired together with a private registry."""

    def __init__(self, tmp_path: Path, settings: Optional[RunnerSettings] = None, batch_mode: bool = True) -> None:
        self.scenes: Dict[str, Callable[[], SceneGraph]] = {}
        self.exit_codes: List[int] = []
        self.settings = settings or make_fast_settings()
        self.host = HeadlessHost(self.build_scene, batch_mode=batch_mode, exit_handler=self.exit_codes.append)
        self.registry = ScenarioRegistry()
        self.runtime = ScenarioRuntime(self.host, self.settings)
        self.launcher = ScenarioLauncher(self.host, self.registry, self.runtime)
        self.artifact_dir = tmp_path / "artifacts"

    def build_scene(self, name: str) -> SceneGraph:
        builder = self.scenes.get(name)
        return builder() if builder is not None else SceneGraph(name)

    def run(self, scenario_cls: type, *, managed: bool = True, timeout: float = 10.0) -> Optional[ScenarioOutcome]:
        descriptor = scenario_cls.descriptor
        handshake = SessionHandshake(
            managed_run=managed,
            scenario_id=descriptor.scenario_id,
            scenario_name=descriptor.name,
            artifact_dir=self.artifact_dir,
        )
        self.host.request_interactive_mode(handshake)
        deadline = time.monotonic() + timeout

        def done() -> bool:
            if self.host.exit_code is not None or time.monotonic() > deadline:
                return True
            returned = self.host.mode is HostMode.AUTHORING and not self.host.in_transition
            return handshake.outcome is not None and returned

        self.host.run(done, tick_interval=TICK)
        return handshake.outcome

    def close(self) -> None:
        self.launcher.close()
        self.host.shutdown()


@pytest.fixture
def fast_settings() -> RunnerSettings:
    return make_fast_settings()


@pytest.fixture
def harness(tmp_path: Path):
    instance = ScenarioHarness(tmp_path)
    yield instance
    instance.close()
