"""Synthesised pointer input against resolved scene nodes."""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional

import numpy as np

from .cancellation import CancellationScope
from .driver.core import Capability, EventType, Point, PointerEvent, SceneGraph, SceneNode
from .hit_test import HitTestArbiter
from .locator import CandidateInfo

logger = logging.getLogger(__name__)

DEFAULT_ACTION_INTERVAL = 0.5
DEFAULT_SETTLE_DELAY = 0.02
DRAG_STEPS_PER_SECOND = 60
MIN_DRAG_STEPS = 10


class ActionPacer:
    """Rate limiter shared by every simulated action of a runtime."""

    def __init__(self, interval: float = DEFAULT_ACTION_INTERVAL, clock: Callable[[], float] = time.monotonic) -> None:
        self.interval = float(interval)
        self._clock = clock
        self._last_completed: Optional[float] = None

    @property
    def last_completed(self) -> Optional[float]:
        return self._last_completed

    def remaining(self) -> float:
        if self._last_completed is None:
            return 0.0
        return max(0.0, self.interval - (self._clock() - self._last_completed))

    async def wait_turn(self, scope: CancellationScope) -> None:
        while True:
            remaining = self.remaining()
            if remaining <= 0:
                return
            await scope.sleep(remaining)

    def mark_complete(self) -> None:
        self._last_completed = self._clock()

    def reset(self) -> None:
        self._last_completed = None


def handler_target(node: Optional[SceneNode], capability: Capability) -> Optional[SceneNode]:
    """Return ``node`` or its nearest ancestor carrying ``capability``."""

    current = node
    while current is not None:
        if current.has(capability):
            return current
        current = current.parent
    return None


def drag_step_count(duration: float) -> int:
    return max(MIN_DRAG_STEPS, int(duration * DRAG_STEPS_PER_SECOND))


class InteractionSimulator:
    """Dispatches pointer sequences and enforces pacing between actions."""

    def __init__(
        self,
        arbiter: HitTestArbiter,
        scene_provider: Callable[[], Optional[SceneGraph]],
        *,
        pacer: Optional[ActionPacer] = None,
        settle_delay: float = DEFAULT_SETTLE_DELAY,
    ) -> None:
        self._arbiter = arbiter
        self._scene_provider = scene_provider
        self.pacer = pacer or ActionPacer()
        self.settle_delay = settle_delay

    async def click(self, scope: CancellationScope, node: SceneNode) -> None:
        await self.pacer.wait_turn(scope)
        logger.info("CLICK executing - %s", CandidateInfo.describe(node).summary())
        position = node.anchor_point or (0.0, 0.0)
        pointer = PointerEvent(position=position, press_position=position)
        node.dispatch(EventType.POINTER_DOWN, pointer)
        await scope.sleep(self.settle_delay)
        node.dispatch(EventType.POINTER_UP, pointer)
        node.dispatch(EventType.POINTER_CLICK, pointer)
        self.pacer.mark_complete()

    async def hold(self, scope: CancellationScope, node: SceneNode, seconds: float) -> None:
        await self.pacer.wait_turn(scope)
        logger.info("HOLD %ss - %s", seconds, CandidateInfo.describe(node).summary())
        position = node.anchor_point or (0.0, 0.0)
        pointer = PointerEvent(position=position, press_position=position)
        node.dispatch(EventType.POINTER_DOWN, pointer)
        try:
            await scope.sleep(seconds)
        finally:
            node.dispatch(EventType.POINTER_UP, pointer)
        self.pacer.mark_complete()

    async def drag_between(
        self,
        scope: CancellationScope,
        start: Point,
        end: Point,
        duration: float = 0.5,
        button: str = "left",
    ) -> Optional[SceneNode]:
        """
        Drag from ``start`` to ``end`` in ``max(10, duration * 60)`` steps.

        The node under ``start`` (or its nearest draggable ancestor) receives
        the begin/drag/end events. When nothing draggable is there the pointer
        still travels the path without targeting anything.
        """

        await self.pacer.wait_turn(scope)
        hits = self._arbiter.topmost_at(start)
        front = hits[0].node if hits else None
        target = handler_target(front, Capability.DRAG)
        pressed = handler_target(front, Capability.POINTER_DOWN)
        if target is None:
            logger.info("DRAG background from %s to %s", start, end)
        else:
            logger.info("DRAG '%s' from %s to %s", target.name, start, end)

        steps = drag_step_count(duration)
        path = np.linspace(np.asarray(start, dtype=float), np.asarray(end, dtype=float), steps + 1)
        step_delay = max(float(duration), 0.0) / steps

        first = (float(path[0][0]), float(path[0][1]))
        pointer = PointerEvent(position=first, press_position=first, button=button)
        if pressed is not None:
            pressed.dispatch(EventType.POINTER_DOWN, pointer)
        if target is not None:
            target.dispatch(EventType.BEGIN_DRAG, pointer)

        try:
            for index in range(1, steps + 1):
                delta = path[index] - path[index - 1]
                pointer = PointerEvent(
                    position=(float(path[index][0]), float(path[index][1])),
                    press_position=first,
                    delta=(float(delta[0]), float(delta[1])),
                    button=button,
                )
                if target is not None:
                    target.dispatch(EventType.DRAG, pointer)
                await scope.sleep(step_delay)
        finally:
            if target is not None:
                target.dispatch(EventType.END_DRAG, pointer)
            if pressed is not None:
                pressed.dispatch(EventType.POINTER_UP, pointer)
        self.pacer.mark_complete()
        return target

    async def scroll(self, scope: CancellationScope, node: SceneNode, delta: Point) -> None:
        await self.pacer.wait_turn(scope)
        logger.info("SCROLL %s - %s", delta, CandidateInfo.describe(node).summary())
        position = node.anchor_point or (0.0, 0.0)
        node.dispatch(EventType.SCROLL, PointerEvent(position=position, scroll_delta=delta))
        self.pacer.mark_complete()

    async def text_input(self, scope: CancellationScope, node: SceneNode, text: str) -> None:
        await self.pacer.wait_turn(scope)
        logger.info("TEXT '%s' - %s", text, CandidateInfo.describe(node).summary())
        node.set_text(text)
        self.pacer.mark_complete()

    async def click_at_screen_center(self, scope: CancellationScope) -> Optional[SceneNode]:
        scene = self._scene_provider()
        if scene is None:
            return None
        hits = self._arbiter.topmost_at(scene.screen_center)
        target = handler_target(hits[0].node if hits else None, Capability.POINTER_CLICK)
        if target is None:
            logger.debug("Nothing clickable at screen center %s", scene.screen_center)
            return None
        await self.click(scope, target)
        return target
