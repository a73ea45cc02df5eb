"""
Scene graph primitives the automation layer drives.

A scene is a forest of ``SceneNode`` objects. Every node carries a
``Capability`` set that is derived once from the handlers supplied when the
node is built, so the resolver and simulator never look up interaction
support while polling.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterator, List, Mapping, Optional, Tuple

logger = logging.getLogger(__name__)

Point = Tuple[float, float]


class Capability(enum.Flag):
    NONE = 0
    POINTER_DOWN = 1
    POINTER_UP = 2
    POINTER_CLICK = 4
    DRAG = 8
    SCROLL = 16
    TEXT_EDIT = 32
    HIT_TEST = 64

    # Aliases used when searching for a kind of element.
    CLICKABLE = POINTER_CLICK
    HOLDABLE = POINTER_DOWN
    DRAGGABLE = DRAG
    TEXT_EDITABLE = TEXT_EDIT
    HIT_TESTABLE = HIT_TEST


class EventType(enum.Enum):
    POINTER_DOWN = "pointer_down"
    POINTER_UP = "pointer_up"
    POINTER_CLICK = "pointer_click"
    BEGIN_DRAG = "begin_drag"
    DRAG = "drag"
    END_DRAG = "end_drag"
    SCROLL = "scroll"


_EVENT_CAPABILITY: Dict[EventType, Capability] = {
    EventType.POINTER_DOWN: Capability.POINTER_DOWN,
    EventType.POINTER_UP: Capability.POINTER_UP,
    EventType.POINTER_CLICK: Capability.POINTER_CLICK,
    EventType.BEGIN_DRAG: Capability.DRAG,
    EventType.DRAG: Capability.DRAG,
    EventType.END_DRAG: Capability.DRAG,
    EventType.SCROLL: Capability.SCROLL,
}

Handler = Callable[["SceneNode", "PointerEvent"], None]


@dataclass
class PointerEvent:
    """Pointer state handed to node handlers."""

    position: Point = (0.0, 0.0)
    press_position: Optional[Point] = None
    delta: Point = (0.0, 0.0)
    button: str = "left"
    scroll_delta: Point = (0.0, 0.0)


@dataclass(slots=True)
class Rect:
    """Screen rectangle; origin at the top-left corner."""

    x: float
    y: float
    width: float
    height: float

    @property
    def center(self) -> Point:
        return (self.x + self.width / 2.0, self.y + self.height / 2.0)

    def contains(self, point: Point) -> bool:
        px, py = point
        return self.x <= px <= self.x + self.width and self.y <= py <= self.y + self.height


@dataclass(slots=True)
class InteractionGroup:
    """Group settings that disable a whole subtree when hidden or non-interactable."""

    alpha: float = 1.0
    interactable: bool = True

    @property
    def blocks_interaction(self) -> bool:
        return self.alpha <= 0 or not self.interactable


class SceneNode:
    """A live element of the scene graph."""

    def __init__(
        self,
        name: str,
        *,
        text: Optional[str] = None,
        rect: Optional[Rect] = None,
        active: bool = True,
        enabled: bool = True,
        layer: int = 0,
        group: Optional[InteractionGroup] = None,
        handlers: Optional[Mapping[EventType, Handler]] = None,
        hit_testable: Optional[bool] = None,
        text_editable: bool = False,
    ) -> None:
        self.name = name
        self.text = text
        self.rect = rect
        self.active = active
        self.enabled = enabled
        self.layer = layer
        self.group = group
        self.parent: Optional[SceneNode] = None
        self.children: List[SceneNode] = []
        self.scene: Optional[SceneGraph] = None
        self.events: List[Tuple[EventType, PointerEvent]] = []
        self._handlers: Dict[EventType, Handler] = dict(handlers or {})
        capabilities = Capability.NONE
        for event_type in self._handlers:
            capabilities |= _EVENT_CAPABILITY[event_type]
        if text_editable:
            capabilities |= Capability.TEXT_EDIT
        if hit_testable is None:
            hit_testable = rect is not None and bool(self._handlers or text_editable)
        if hit_testable:
            capabilities |= Capability.HIT_TEST
        self.capabilities = capabilities

    def __repr__(self) -> str:
        return f"SceneNode({self.name!r})"

    def has(self, capability: Capability) -> bool:
        return (self.capabilities & capability) == capability

    def add_child(self, child: "SceneNode") -> "SceneNode":
        if child.parent is not None:
            child.parent.children.remove(child)
        child.parent = self
        self.children.append(child)
        child._attach(self.scene)
        return child

    def remove(self) -> None:
        """Detach the node (and its subtree) from the scene."""
        if self.parent is not None:
            self.parent.children.remove(self)
            self.parent = None
        elif self.scene is not None and self in self.scene.roots:
            self.scene.roots.remove(self)
        self._attach(None)

    def _attach(self, scene: Optional["SceneGraph"]) -> None:
        self.scene = scene
        for child in self.children:
            child._attach(scene)

    def ancestors(self) -> Iterator["SceneNode"]:
        node = self.parent
        while node is not None:
            yield node
            node = node.parent

    def is_descendant_of(self, other: "SceneNode") -> bool:
        return any(ancestor is other for ancestor in self.ancestors())

    def walk(self) -> Iterator["SceneNode"]:
        """Depth-first, pre-order traversal of this subtree."""
        yield self
        for child in list(self.children):
            yield from child.walk()

    @property
    def active_in_hierarchy(self) -> bool:
        if self.scene is None or not self.active:
            return False
        return all(ancestor.active for ancestor in self.ancestors())

    @property
    def anchor_point(self) -> Optional[Point]:
        return self.rect.center if self.rect is not None else None

    def set_text(self, value: str) -> None:
        if not self.has(Capability.TEXT_EDIT):
            raise TypeError(f"{self.name!r} is not text-editable")
        self.text = value

    def dispatch(self, event_type: EventType, pointer: PointerEvent) -> bool:
        """Deliver an event if the node implements it; return True when delivered."""
        if not self.has(_EVENT_CAPABILITY[event_type]):
            return False
        self.events.append((event_type, pointer))
        handler = self._handlers.get(event_type)
        if handler is not None:
            handler(self, pointer)
        return True


@dataclass
class SceneGraph:
    """The active scene: a named forest of nodes with a screen size."""

    name: str
    screen_size: Tuple[int, int] = (1920, 1080)
    roots: List[SceneNode] = field(default_factory=list)

    def add_root(self, node: SceneNode) -> SceneNode:
        if node.parent is not None:
            node.parent.children.remove(node)
            node.parent = None
        self.roots.append(node)
        node._attach(self)
        return node

    def iter_nodes(self) -> Iterator[SceneNode]:
        """Enumerate live nodes depth-first in hierarchy order."""
        for root in list(self.roots):
            yield from root.walk()

    def find_by_name(self, name: str) -> Optional[SceneNode]:
        for node in self.iter_nodes():
            if node.name == name:
                return node
        return None

    @property
    def screen_center(self) -> Point:
        width, height = self.screen_size
        return (width / 2.0, height / 2.0)
