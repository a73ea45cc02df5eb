from __future__ import annotations

import asyncio
import time

import pytest

from scene_testing.automation.availability import Availability, check_availability
from scene_testing.automation.cancellation import CancellationScope
from scene_testing.automation.driver.core import Capability, EventType, InteractionGroup, Rect, SceneGraph, SceneNode
from scene_testing.automation.driver.exceptions import ElementNotFoundError, ScenarioCancelledError
from scene_testing.automation.hit_test import HitTestArbiter, SceneHitSurface
from scene_testing.automation.resolver import ElementResolver


def _button(name: str, rect: Rect, **kwargs) -> SceneNode:
    return SceneNode(name, rect=rect, handlers={EventType.POINTER_CLICK: lambda node, event: None}, **kwargs)


def _resolver(scene: SceneGraph, poll_interval: float = 0.05) -> ElementResolver:
    return ElementResolver(lambda: scene, HitTestArbiter(SceneHitSurface(lambda: scene)), poll_interval=poll_interval)


def test_occluded_sibling_is_skipped() -> None:
    scene = SceneGraph("Main")
    root = scene.add_root(SceneNode("Canvas"))
    hidden = root.add_child(_button("Play", Rect(0, 0, 50, 50)))
    root.add_child(SceneNode("Curtain", rect=Rect(0, 0, 50, 50), hit_testable=True))
    visible = root.add_child(_button("Play", Rect(100, 0, 50, 50)))

    resolver = _resolver(scene)
    assert resolver.resolve_once("Play") is visible
    assert resolver.resolve_once("Play") is not hidden


def test_unoccluded_matches_resolve_deterministically() -> None:
    scene = SceneGraph("Main")
    root = scene.add_root(SceneNode("Canvas"))
    first = root.add_child(_button("Item", Rect(0, 0, 10, 10)))
    root.add_child(_button("Item", Rect(20, 0, 10, 10)))

    resolver = _resolver(scene)
    assert resolver.resolve_once("Item") is first
    assert resolver.resolve_once("Item") is first


def test_parent_filter_narrows_candidates() -> None:
    scene = SceneGraph("Main")
    left = scene.add_root(SceneNode("Left"))
    right = scene.add_root(SceneNode("Right"))
    left.add_child(_button("Ok", Rect(0, 0, 10, 10)))
    wanted = right.add_child(_button("Ok", Rect(20, 0, 10, 10)))

    assert _resolver(scene).resolve_once("Ok", parent="Right") is wanted


def test_capability_and_availability_filters() -> None:
    scene = SceneGraph("Main")
    scene.add_root(SceneNode("Ok", rect=Rect(0, 0, 10, 10), hit_testable=True))
    disabled = scene.add_root(_button("Ok", Rect(20, 0, 10, 10), enabled=False))
    resolver = _resolver(scene)

    assert resolver.resolve_once("Ok") is None
    assert resolver.resolve_once("Ok", availability=Availability.ACTIVE) is disabled


def test_hidden_group_disables_subtree() -> None:
    scene = SceneGraph("Main")
    panel = scene.add_root(SceneNode("Panel", group=InteractionGroup(alpha=0.0)))
    button = panel.add_child(_button("Ok", Rect(0, 0, 10, 10)))

    assert check_availability(button, Availability.ENABLED) is False
    assert check_availability(button, Availability.ACTIVE) is True
    assert check_availability(button, Availability.NONE) is True


def test_raycastable_availability_uses_arbiter() -> None:
    scene = SceneGraph("Main")
    button = scene.add_root(_button("Ok", Rect(0, 0, 10, 10)))
    arbiter = HitTestArbiter(SceneHitSurface(lambda: scene))
    assert check_availability(button, Availability.ALL, arbiter) is True
    button.remove()
    assert check_availability(button, Availability.ALL, arbiter) is False


def test_find_all_returns_every_match_in_hierarchy_order() -> None:
    scene = SceneGraph("Main")
    root = scene.add_root(SceneNode("List"))
    items = [root.add_child(_button(f"Row{i}", Rect(0, i * 20, 10, 10))) for i in range(3)]

    assert _resolver(scene).find_all_once("Row*") == items
    assert _resolver(scene).find_all_once(None, parent="List") == items


def test_find_times_out_with_not_found() -> None:
    scene = SceneGraph("Empty")
    resolver = _resolver(scene, poll_interval=0.05)

    async def body() -> float:
        scope = CancellationScope()
        started = time.monotonic()
        with pytest.raises(ElementNotFoundError):
            await resolver.find(scope, "Missing", timeout=0.3)
        return time.monotonic() - started

    elapsed = asyncio.run(body())
    assert 0.3 <= elapsed < 0.3 + 0.05 + 0.1


def test_find_returns_none_when_not_throwing() -> None:
    scene = SceneGraph("Empty")

    async def body():
        return await _resolver(scene).find(CancellationScope(), "Missing", timeout=0.1, throw_if_missing=False)

    assert asyncio.run(body()) is None


def test_find_picks_up_element_added_while_polling() -> None:
    scene = SceneGraph("Main")
    resolver = _resolver(scene, poll_interval=0.02)

    async def body():
        scope = CancellationScope()
        loop = asyncio.get_running_loop()
        loop.call_later(0.1, lambda: scene.add_root(_button("Late", Rect(0, 0, 10, 10))))
        return await resolver.find(scope, "Late", timeout=2)

    node = asyncio.run(body())
    assert node.name == "Late"


def test_cancel_unblocks_find_with_cancelled() -> None:
    scene = SceneGraph("Empty")
    resolver = _resolver(scene, poll_interval=5.0)

    async def body() -> float:
        scope = CancellationScope()
        asyncio.get_running_loop().call_later(0.05, scope.cancel)
        started = time.monotonic()
        with pytest.raises(ScenarioCancelledError):
            await resolver.find(scope, "Missing", timeout=30)
        return time.monotonic() - started

    assert asyncio.run(body()) < 1.0


def test_enumerate_filters_by_capability() -> None:
    scene = SceneGraph("Main")
    scene.add_root(SceneNode("Plain"))
    button = scene.add_root(_button("Ok", Rect(0, 0, 5, 5)))
    resolver = _resolver(scene)
    assert resolver.enumerate(Capability.CLICKABLE) == [button]
    assert len(resolver.enumerate()) == 2
