"""
Host application abstraction: two run modes, an update tick and a live scene.

``HeadlessHost`` is the in-process host used by the command line and the test
suite. Mode transitions complete on the tick after they are requested, the
same way an editor finishes entering play mode a frame later.
"""

from __future__ import annotations

import enum
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, List, Optional, Protocol

from PIL import Image, ImageDraw

from .driver.core import SceneGraph
from .scheduler import Scheduler

logger = logging.getLogger(__name__)

SceneFactory = Callable[[str], SceneGraph]
ModeListener = Callable[["ModeChange"], None]
SceneListener = Callable[[Optional[SceneGraph], SceneGraph], None]


class HostMode(enum.Enum):
    AUTHORING = "authoring"
    INTERACTIVE = "interactive"


class ModeChange(enum.Enum):
    EXITING_AUTHORING = "exiting_authoring"
    ENTERED_INTERACTIVE = "entered_interactive"
    EXITING_INTERACTIVE = "exiting_interactive"
    ENTERED_AUTHORING = "entered_authoring"


@dataclass
class SessionHandshake:
    """
    Message handed across the mode boundary with an interactive-mode request.

    The runtime fills in ``outcome`` before asking to return to authoring
    mode; the orchestrator reads it back when authoring mode is entered.
    """

    managed_run: bool = False
    scenario_id: int = 0
    scenario_name: str = ""
    run_name: str = ""
    artifact_dir: Optional[Path] = None
    outcome: Any = None


class Host(Protocol):  # pragma: no cover - interface only
    mode: HostMode
    batch_mode: bool
    scheduler: Scheduler

    @property
    def scene(self) -> Optional[SceneGraph]:
        ...

    @property
    def handshake(self) -> Optional[SessionHandshake]:
        ...

    def request_interactive_mode(self, handshake: SessionHandshake) -> None:
        ...

    def request_authoring_mode(self) -> None:
        ...

    def clear_handshake(self) -> None:
        ...

    def add_mode_listener(self, listener: ModeListener) -> None:
        ...

    def remove_mode_listener(self, listener: ModeListener) -> None:
        ...

    def add_update_listener(self, listener: Callable[[], None]) -> None:
        ...

    def remove_update_listener(self, listener: Callable[[], None]) -> None:
        ...

    def add_scene_listener(self, listener: SceneListener) -> None:
        ...

    def remove_scene_listener(self, listener: SceneListener) -> None:
        ...

    def call_soon(self, callback: Callable[[], None]) -> None:
        ...

    def capture_screenshot(self, path: Path) -> Optional[Path]:
        ...

    def exit(self, code: int) -> None:
        ...


class CaptureService(Protocol):  # pragma: no cover - interface only
    """Video capture collaborator driven by the orchestrator."""

    def start_recording(self, path: Path) -> None:
        ...

    def stop_recording(self) -> Optional[Path]:
        ...

    def cancel_recording(self) -> None:
        ...


class NullCaptureService:
    """Capture service that records nothing."""

    def start_recording(self, path: Path) -> None:
        logger.debug("Video capture unavailable; not recording %s", path)

    def stop_recording(self) -> Optional[Path]:
        return None

    def cancel_recording(self) -> None:
        return None


def empty_scene(name: str) -> SceneGraph:
    return SceneGraph(name=name)


class HeadlessHost:
    """In-process host driven by ``run()`` or by explicit ``tick()`` calls."""

    def __init__(
        self,
        scene_factory: Optional[SceneFactory] = None,
        *,
        initial_scene: str = "Main",
        batch_mode: bool = True,
        scheduler: Optional[Scheduler] = None,
        data_dir: Optional[Path] = None,
        exit_handler: Optional[Callable[[int], None]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.scene_factory: SceneFactory = scene_factory or empty_scene
        self.initial_scene = initial_scene
        self.batch_mode = batch_mode
        self.scheduler = scheduler or Scheduler()
        self.data_dir = data_dir
        self.mode = HostMode.AUTHORING
        self.exit_code: Optional[int] = None
        self._exit_handler = exit_handler
        self._sleep = sleep
        self._scene: Optional[SceneGraph] = None
        self._handshake: Optional[SessionHandshake] = None
        self._pending: List[Callable[[], None]] = []
        self._transition: Optional[HostMode] = None
        self._mode_listeners: List[ModeListener] = []
        self._update_listeners: List[Callable[[], None]] = []
        self._scene_listeners: List[SceneListener] = []
        self._running = False
        self.frozen = False

    # ------------------------------------------------------------------ state
    @property
    def scene(self) -> Optional[SceneGraph]:
        return self._scene

    @property
    def handshake(self) -> Optional[SessionHandshake]:
        return self._handshake

    @property
    def in_transition(self) -> bool:
        return self._transition is not None

    def clear_handshake(self) -> None:
        self._handshake = None

    # -------------------------------------------------------------- listeners
    def add_mode_listener(self, listener: ModeListener) -> None:
        if listener not in self._mode_listeners:
            self._mode_listeners.append(listener)

    def remove_mode_listener(self, listener: ModeListener) -> None:
        if listener in self._mode_listeners:
            self._mode_listeners.remove(listener)

    def add_update_listener(self, listener: Callable[[], None]) -> None:
        if listener not in self._update_listeners:
            self._update_listeners.append(listener)

    def remove_update_listener(self, listener: Callable[[], None]) -> None:
        if listener in self._update_listeners:
            self._update_listeners.remove(listener)

    def add_scene_listener(self, listener: SceneListener) -> None:
        if listener not in self._scene_listeners:
            self._scene_listeners.append(listener)

    def remove_scene_listener(self, listener: SceneListener) -> None:
        if listener in self._scene_listeners:
            self._scene_listeners.remove(listener)

    def _notify_mode(self, change: ModeChange) -> None:
        logger.debug("Mode change: %s", change.name)
        for listener in list(self._mode_listeners):
            listener(change)

    # ------------------------------------------------------------ transitions
    def request_interactive_mode(self, handshake: SessionHandshake) -> None:
        if self.mode is not HostMode.AUTHORING or self._transition is not None:
            logger.warning("Ignoring interactive-mode request while %s", self.mode.value)
            return
        self._handshake = handshake
        self._transition = HostMode.INTERACTIVE
        self._notify_mode(ModeChange.EXITING_AUTHORING)
        self.call_soon(self._enter_interactive)

    def request_authoring_mode(self) -> None:
        if self.mode is not HostMode.INTERACTIVE or self._transition is not None:
            return
        self._transition = HostMode.AUTHORING
        self._notify_mode(ModeChange.EXITING_INTERACTIVE)
        self.call_soon(self._enter_authoring)

    def _enter_interactive(self) -> None:
        self._set_scene(self.scene_factory(self.initial_scene))
        self.mode = HostMode.INTERACTIVE
        self._transition = None
        self._notify_mode(ModeChange.ENTERED_INTERACTIVE)

    def _enter_authoring(self) -> None:
        cancelled = self.scheduler.cancel_pending()
        if cancelled:
            logger.debug("Stopped %s interactive task(s)", cancelled)
        self._scene = None
        self.mode = HostMode.AUTHORING
        self._transition = None
        self._notify_mode(ModeChange.ENTERED_AUTHORING)

    # ------------------------------------------------------------------ scene
    def load_scene(self, name: str) -> SceneGraph:
        """Replace the active scene; scene listeners observe the change."""
        if self.mode is not HostMode.INTERACTIVE:
            raise RuntimeError("Scenes can only be loaded in interactive mode")
        scene = self.scene_factory(name)
        self._set_scene(scene)
        return scene

    def _set_scene(self, scene: SceneGraph) -> None:
        previous, self._scene = self._scene, scene
        logger.info("Scene loaded: %s", scene.name)
        for listener in list(self._scene_listeners):
            listener(previous, scene)

    # ------------------------------------------------------------------- loop
    def call_soon(self, callback: Callable[[], None]) -> None:
        self._pending.append(callback)

    def tick(self) -> None:
        """One host frame: deferred callbacks, scenario tasks, then update listeners."""
        if self.frozen:
            return
        pending, self._pending = self._pending, []
        for callback in pending:
            callback()
        self.scheduler.tick()
        for listener in list(self._update_listeners):
            listener()

    def run(
        self,
        until: Optional[Callable[[], bool]] = None,
        *,
        tick_interval: float = 1 / 60,
        max_ticks: Optional[int] = None,
    ) -> Optional[int]:
        """Tick until stopped, ``until()`` is true or ``max_ticks`` is reached."""
        self._running = True
        ticks = 0
        while self._running:
            self.tick()
            ticks += 1
            if until is not None and until():
                break
            if max_ticks is not None and ticks >= max_ticks:
                break
            self._sleep(tick_interval)
        self._running = False
        return self.exit_code

    def stop(self) -> None:
        self._running = False

    def exit(self, code: int) -> None:
        logger.info("Host exiting with code %s", code)
        self.exit_code = int(code)
        self.stop()
        if self._exit_handler is not None:
            self._exit_handler(self.exit_code)

    def shutdown(self) -> None:
        self.scheduler.close()

    # ------------------------------------------------------------ diagnostics
    def capture_screenshot(self, path: Path) -> Optional[Path]:
        """Render the active scene's rectangles and labels to a PNG."""
        scene = self._scene
        if scene is None:
            logger.warning("No active scene to capture")
            return None
        width, height = scene.screen_size
        image = Image.new("RGB", (int(width), int(height)), (32, 32, 32))
        draw = ImageDraw.Draw(image)
        nodes = [node for node in scene.iter_nodes() if node.rect is not None and node.active_in_hierarchy]
        for node in sorted(nodes, key=lambda n: n.layer):
            rect = node.rect
            box = (rect.x, rect.y, rect.x + rect.width, rect.y + rect.height)
            fill = (70, 110, 160) if node.enabled else (90, 90, 90)
            draw.rectangle(box, fill=fill, outline=(220, 220, 220))
            label = node.text or node.name
            draw.text((rect.x + 4, rect.y + 4), label, fill=(255, 255, 255))
        path.parent.mkdir(parents=True, exist_ok=True)
        image.save(path)
        logger.debug("Screenshot saved: %s", path)
        return path
