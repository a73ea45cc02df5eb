from __future__ import annotations

import asyncio
import time
from typing import List

import pytest

from scene_testing.automation.cancellation import CancellationScope
from scene_testing.automation.driver.core import EventType, Rect, SceneGraph, SceneNode
from scene_testing.automation.driver.exceptions import ScenarioCancelledError
from scene_testing.automation.hit_test import HitTestArbiter, SceneHitSurface
from scene_testing.automation.simulator import (
    ActionPacer,
    InteractionSimulator,
    drag_step_count,
    handler_target,
)


def _noop(node, event) -> None:  # type: ignore[no-untyped-def]
    return None


def _simulator(scene: SceneGraph, interval: float = 0.0) -> InteractionSimulator:
    arbiter = HitTestArbiter(SceneHitSurface(lambda: scene))
    return InteractionSimulator(arbiter, lambda: scene, pacer=ActionPacer(interval), settle_delay=0.0)


def test_drag_step_count_has_a_floor() -> None:
    assert drag_step_count(0.0) == 10
    assert drag_step_count(0.1) == 10
    assert drag_step_count(0.5) == 30
    assert drag_step_count(2.0) == 120


def test_pacer_remaining_uses_last_completion() -> None:
    now = [100.0]
    pacer = ActionPacer(0.5, clock=lambda: now[0])
    assert pacer.remaining() == 0.0
    pacer.mark_complete()
    now[0] += 0.2
    assert pacer.remaining() == pytest.approx(0.3)
    now[0] += 1.0
    assert pacer.remaining() == 0.0
    pacer.reset()
    assert pacer.last_completed is None


def test_click_dispatches_only_implemented_handlers() -> None:
    scene = SceneGraph("Main")
    full = scene.add_root(
        SceneNode(
            "Full",
            rect=Rect(0, 0, 10, 10),
            handlers={EventType.POINTER_DOWN: _noop, EventType.POINTER_UP: _noop, EventType.POINTER_CLICK: _noop},
        )
    )
    click_only = scene.add_root(SceneNode("ClickOnly", rect=Rect(20, 0, 10, 10), handlers={EventType.POINTER_CLICK: _noop}))
    simulator = _simulator(scene)

    async def body() -> None:
        scope = CancellationScope()
        await simulator.click(scope, full)
        await simulator.click(scope, click_only)

    asyncio.run(body())
    assert [event for event, _ in full.events] == [EventType.POINTER_DOWN, EventType.POINTER_UP, EventType.POINTER_CLICK]
    assert [event for event, _ in click_only.events] == [EventType.POINTER_CLICK]


def test_actions_are_paced_from_previous_completion() -> None:
    scene = SceneGraph("Main")
    stamps: List[float] = []
    button = scene.add_root(
        SceneNode("Ok", rect=Rect(0, 0, 10, 10), handlers={EventType.POINTER_CLICK: lambda n, e: stamps.append(time.monotonic())})
    )
    simulator = _simulator(scene, interval=0.2)

    async def body() -> None:
        scope = CancellationScope()
        await simulator.click(scope, button)
        await simulator.click(scope, button)

    asyncio.run(body())
    assert len(stamps) == 2
    assert stamps[1] - stamps[0] >= 0.19


def test_drag_interpolates_from_start_to_end() -> None:
    scene = SceneGraph("Main")
    handle = scene.add_root(
        SceneNode(
            "Handle",
            rect=Rect(0, 0, 20, 20),
            handlers={EventType.POINTER_DOWN: _noop, EventType.POINTER_UP: _noop, EventType.DRAG: _noop},
        )
    )
    simulator = _simulator(scene)

    async def body():
        return await simulator.drag_between(CancellationScope(), (10, 10), (110, 60), duration=0.05)

    assert asyncio.run(body()) is handle
    kinds = [event for event, _ in handle.events]
    assert kinds[0] is EventType.POINTER_DOWN
    assert kinds[1] is EventType.BEGIN_DRAG
    assert kinds[-2] is EventType.END_DRAG
    assert kinds[-1] is EventType.POINTER_UP
    moves = [pointer for event, pointer in handle.events if event is EventType.DRAG]
    assert len(moves) == 10
    assert sum(p.delta[0] for p in moves) == pytest.approx(100)
    assert sum(p.delta[1] for p in moves) == pytest.approx(50)
    assert moves[-1].position == pytest.approx((110, 60))


def test_drag_on_child_targets_draggable_ancestor() -> None:
    scene = SceneGraph("Main")
    slider = scene.add_root(SceneNode("Slider", rect=Rect(0, 0, 100, 20), handlers={EventType.DRAG: _noop}))
    knob = slider.add_child(SceneNode("Knob", rect=Rect(0, 0, 20, 20), hit_testable=True))
    simulator = _simulator(scene)

    async def body():
        return await simulator.drag_between(CancellationScope(), knob.anchor_point, (80, 10), duration=0.0)

    assert asyncio.run(body()) is slider
    assert handler_target(knob, slider.capabilities) is slider


def test_background_drag_still_runs() -> None:
    scene = SceneGraph("Empty")
    simulator = _simulator(scene)

    async def body():
        result = await simulator.drag_between(CancellationScope(), (0, 0), (50, 0), duration=0.0)
        return result, simulator.pacer.last_completed

    target, completed = asyncio.run(body())
    assert target is None
    assert completed is not None


def test_cancel_during_hold_releases_pointer() -> None:
    scene = SceneGraph("Main")
    node = scene.add_root(
        SceneNode("Key", rect=Rect(0, 0, 10, 10), handlers={EventType.POINTER_DOWN: _noop, EventType.POINTER_UP: _noop})
    )
    simulator = _simulator(scene)

    async def body() -> None:
        scope = CancellationScope()
        asyncio.get_running_loop().call_later(0.05, scope.cancel)
        await simulator.hold(scope, node, 10)

    with pytest.raises(ScenarioCancelledError):
        asyncio.run(body())
    assert [event for event, _ in node.events] == [EventType.POINTER_DOWN, EventType.POINTER_UP]


def test_text_input_replaces_content() -> None:
    scene = SceneGraph("Main")
    field = scene.add_root(SceneNode("Name", rect=Rect(0, 0, 10, 10), text="old", text_editable=True))
    simulator = _simulator(scene)
    asyncio.run(simulator.text_input(CancellationScope(), field, "new"))
    assert field.text == "new"


def test_click_at_screen_center_hits_centered_button() -> None:
    scene = SceneGraph("Main", screen_size=(200, 100))
    button = scene.add_root(SceneNode("Center", rect=Rect(90, 40, 20, 20), handlers={EventType.POINTER_CLICK: _noop}))
    simulator = _simulator(scene)

    async def body():
        return await simulator.click_at_screen_center(CancellationScope())

    assert asyncio.run(body()) is button
    assert button.events[-1][0] is EventType.POINTER_CLICK
