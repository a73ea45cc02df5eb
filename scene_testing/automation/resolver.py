"""Element resolution: poll the scene, filter by pattern and availability, disambiguate by hit-testing."""

from __future__ import annotations

import logging
import time
from typing import Callable, List, Optional, Tuple

from .availability import DEFAULT_AVAILABILITY, Availability, check_availability
from .cancellation import CancellationScope
from .driver.core import Capability, SceneGraph, SceneNode
from .driver.exceptions import ElementNotFoundError
from .hit_test import HitTestArbiter, is_related
from .locator import CandidateInfo, Patterns, is_wildcard_match, normalize_patterns

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 0.5
DEFAULT_FIND_ALL_POLL_INTERVAL = 0.1


class ElementResolver:
    """
    Locates live elements by name, hierarchy path or nearest text.

    Candidates are enumerated depth-first in hierarchy order, so an unchanged
    scene always resolves to the same element. When several unoccluded
    elements match, the first one wins; narrow the search with ``index`` or
    ``parent`` when that is not the one you want.
    """

    def __init__(
        self,
        scene_provider: Callable[[], Optional[SceneGraph]],
        arbiter: HitTestArbiter,
        *,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        find_all_poll_interval: float = DEFAULT_FIND_ALL_POLL_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._scene_provider = scene_provider
        self._arbiter = arbiter
        self.poll_interval = poll_interval
        self.find_all_poll_interval = find_all_poll_interval
        self._clock = clock

    @property
    def arbiter(self) -> HitTestArbiter:
        return self._arbiter

    def enumerate(self, capability: Capability = Capability.NONE) -> List[SceneNode]:
        scene = self._scene_provider()
        if scene is None:
            return []
        return [node for node in scene.iter_nodes() if node.has(capability)]

    def _string_matches(
        self,
        nodes: List[SceneNode],
        patterns: List[str],
        parent: Optional[str],
    ) -> List[Tuple[CandidateInfo, str]]:
        matched: List[Tuple[CandidateInfo, str]] = []
        for node in nodes:
            info = CandidateInfo.describe(node)
            if parent is not None and not is_wildcard_match(info.parent_name, parent):
                continue
            field = info.match_any(patterns)
            if field:
                matched.append((info, field))
        return matched

    def resolve_once(
        self,
        patterns: Patterns = None,
        *,
        capability: Capability = Capability.CLICKABLE,
        availability: Availability = DEFAULT_AVAILABILITY,
        parent: Optional[str] = None,
    ) -> Optional[SceneNode]:
        """Run a single poll and return the first qualifying element."""

        nodes = self.enumerate(capability)
        search = normalize_patterns(patterns)
        if search is None:
            for node in nodes:
                if parent is not None and not is_wildcard_match(node.parent.name if node.parent else None, parent):
                    continue
                if check_availability(node, availability, self._arbiter):
                    return node
            return None

        for info, field in self._string_matches(nodes, search, parent):
            node = info.node
            if not check_availability(node, availability, self._arbiter):
                continue
            if node.anchor_point is None:
                logger.debug("Match skipped (not on screen): %s", info.summary())
                continue
            front = self._arbiter.front_hit(node)
            if front is not None and is_related(node, front):
                logger.info("Match (top, by %s): '%s' Path: '%s'", field, info.name, info.path)
                return node
            blocker = front.name if front is not None else "none"
            logger.info("Match (blocked by '%s'): '%s' Path: '%s'", blocker, info.name, info.path)
        return None

    def find_all_once(
        self,
        pattern: Patterns = None,
        *,
        capability: Capability = Capability.CLICKABLE,
        availability: Availability = DEFAULT_AVAILABILITY,
        parent: Optional[str] = None,
    ) -> List[SceneNode]:
        nodes = self.enumerate(capability)
        search = normalize_patterns(pattern)
        if search is None:
            candidates = nodes
            if parent is not None:
                candidates = [
                    n for n in nodes if is_wildcard_match(n.parent.name if n.parent else None, parent)
                ]
        else:
            candidates = [info.node for info, _ in self._string_matches(nodes, search, parent)]
        return [node for node in candidates if check_availability(node, availability, self._arbiter)]

    async def find(
        self,
        scope: CancellationScope,
        patterns: Patterns = None,
        *,
        capability: Capability = Capability.CLICKABLE,
        timeout: float = 10.0,
        availability: Availability = DEFAULT_AVAILABILITY,
        throw_if_missing: bool = True,
        parent: Optional[str] = None,
    ) -> Optional[SceneNode]:
        label = _label(patterns)
        logger.debug("Find (%ss) [%s] %s", timeout, label, capability)
        deadline = self._clock() + max(float(timeout), 0.0)
        while True:
            scope.raise_if_cancelled()
            node = self.resolve_once(patterns, capability=capability, availability=availability, parent=parent)
            if node is not None:
                return node
            remaining = deadline - self._clock()
            if remaining <= 0:
                break
            await scope.sleep(min(self.poll_interval, remaining))
        if throw_if_missing:
            raise ElementNotFoundError(f"Unable to locate {capability} '{label}' in {timeout} seconds")
        return None

    async def find_all(
        self,
        scope: CancellationScope,
        pattern: Patterns = None,
        *,
        capability: Capability = Capability.CLICKABLE,
        timeout: float = 10.0,
        availability: Availability = DEFAULT_AVAILABILITY,
        throw_if_missing: bool = True,
        parent: Optional[str] = None,
    ) -> List[SceneNode]:
        label = _label(pattern)
        logger.debug("FindAll (%ss) [%s] %s", timeout, label, capability)
        deadline = self._clock() + max(float(timeout), 0.0)
        while True:
            scope.raise_if_cancelled()
            nodes = self.find_all_once(pattern, capability=capability, availability=availability, parent=parent)
            if nodes:
                return nodes
            remaining = deadline - self._clock()
            if remaining <= 0:
                break
            await scope.sleep(min(self.find_all_poll_interval, remaining))
        if throw_if_missing:
            raise ElementNotFoundError(f"Unable to locate any {capability} '{label}' in {timeout} seconds")
        return []


def _label(patterns: Patterns) -> str:
    search = normalize_patterns(patterns)
    return ", ".join(search) if search else "*"
