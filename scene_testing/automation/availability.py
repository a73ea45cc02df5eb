"""Availability predicates that gate whether an element is a valid target."""

from __future__ import annotations

import enum
from typing import Optional

from .driver.core import SceneNode
from .hit_test import HitTestArbiter


class Availability(enum.Flag):
    NONE = 0
    ACTIVE = 1
    ENABLED = 2
    RAYCASTABLE = 4
    ALL = ACTIVE | ENABLED | RAYCASTABLE


DEFAULT_AVAILABILITY = Availability.ACTIVE | Availability.ENABLED


def check_availability(
    node: Optional[SceneNode],
    availability: Availability,
    arbiter: Optional[HitTestArbiter] = None,
) -> bool:
    """Evaluate the requested availability bits against the live scene."""

    if availability == Availability.NONE:
        return True
    if node is None or node.scene is None:
        return False
    if Availability.ACTIVE in availability and not node.active_in_hierarchy:
        return False
    if Availability.ENABLED in availability:
        if not node.enabled:
            return False
        for owner in (node, *node.ancestors()):
            if owner.group is not None:
                if owner.group.blocks_interaction:
                    return False
                break
    if Availability.RAYCASTABLE in availability:
        if arbiter is None or not arbiter.contains_hit(node):
            return False
    return True
