from __future__ import annotations

import asyncio
import time
from typing import Dict, List

from scene_testing.automation.driver.core import EventType, Rect, SceneGraph, SceneNode
from scene_testing.automation.scenario import Scenario, ScenarioState


def _noop(node, event) -> None:  # type: ignore[no-untyped-def]
    return None


def _key(name: str, rect: Rect) -> SceneNode:
    return SceneNode(name, rect=rect, handlers={EventType.POINTER_DOWN: _noop, EventType.POINTER_UP: _noop})


def _keys_scene(nodes: Dict[str, SceneNode]):
    def build() -> SceneGraph:
        scene = SceneGraph("Main", screen_size=(400, 300))
        canvas = scene.add_root(SceneNode("Canvas"))
        nodes["a"] = canvas.add_child(_key("KeyA", Rect(10, 10, 40, 40)))
        nodes["b"] = canvas.add_child(_key("KeyB", Rect(60, 10, 40, 40)))
        return scene

    return build


def _presses(node: SceneNode) -> List[EventType]:
    return [event for event, _ in node.events]


def _assert_balanced(events: List[EventType]) -> None:
    assert len(events) >= 2 and len(events) % 2 == 0
    assert events[0] is EventType.POINTER_DOWN
    assert events[-1] is EventType.POINTER_UP
    assert all(
        event is (EventType.POINTER_DOWN if index % 2 == 0 else EventType.POINTER_UP)
        for index, event in enumerate(events)
    )


def test_simulate_play_presses_every_target_concurrently(harness) -> None:
    nodes: Dict[str, SceneNode] = {}
    harness.scenes["Main"] = _keys_scene(nodes)

    @harness.registry.scenario(1)
    class Mash(Scenario):
        async def test(self) -> None:
            self.random.seed(7)
            await self.simulate_play(1.0, "KeyA", "KeyB")

    started = time.monotonic()
    outcome = harness.run(Mash)
    assert outcome is not None
    assert outcome.state is ScenarioState.PASSED, outcome.error
    assert 1.0 <= time.monotonic() - started < 6
    _assert_balanced(_presses(nodes["a"]))
    _assert_balanced(_presses(nodes["b"]))


def test_simulate_play_fails_when_a_target_never_appears(harness) -> None:
    nodes: Dict[str, SceneNode] = {}
    harness.scenes["Main"] = _keys_scene(nodes)

    @harness.registry.scenario(2)
    class MissingKey(Scenario):
        async def test(self) -> None:
            await self.simulate_play(0.3, "KeyA", "KeyZ")

    outcome = harness.run(MissingKey)
    assert outcome.state is ScenarioState.FAILED
    assert "ElementNotFoundError" in outcome.error
    _assert_balanced(_presses(nodes["a"]))


def test_stopping_during_simulate_play_releases_every_key(harness) -> None:
    nodes: Dict[str, SceneNode] = {}
    harness.scenes["Main"] = _keys_scene(nodes)

    @harness.registry.scenario(3)
    class Interrupted(Scenario):
        async def test(self) -> None:
            asyncio.get_running_loop().call_later(0.2, self.runtime.request_stop)
            await self.simulate_play(30, "KeyA")

    outcome = harness.run(Interrupted)
    assert outcome.state is ScenarioState.CANCELLED
    assert outcome.duration < 2
    events = _presses(nodes["a"])
    assert events and events[-1] is EventType.POINTER_UP

    for _ in range(20):
        harness.host.tick()
    assert _presses(nodes["a"]) == events
