"""Public exports for the scene-graph driver."""

from .core import (
    Capability,
    EventType,
    InteractionGroup,
    Point,
    PointerEvent,
    Rect,
    SceneGraph,
    SceneNode,
)
from .exceptions import (
    ActionTimeoutError,
    AutomationError,
    ElementNotFoundError,
    HostFrozenError,
    ScenarioCancelledError,
    ScenarioValidationError,
)

__all__ = [
    "Capability",
    "EventType",
    "InteractionGroup",
    "Point",
    "PointerEvent",
    "Rect",
    "SceneGraph",
    "SceneNode",
    "ActionTimeoutError",
    "AutomationError",
    "ElementNotFoundError",
    "HostFrozenError",
    "ScenarioCancelledError",
    "ScenarioValidationError",
]
