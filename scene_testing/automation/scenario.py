"""
Scenario runtime: the base class scenario authors subclass, plus the services
and launcher that run the selected scenario once the host is interactive.

A scenario body is ordinary sequential ``async`` code::

    @scenario(3, timeout=60, severity=TestSeverity.CRITICAL)
    class OpenSettings(Scenario):
        async def test(self):
            await self.click("Settings*")
            await self.wait_for_element("SettingsPanel")
            await self.text_input("PlayerName", "tester")

Every primitive suspends on the scenario's cancellation scope, so cancelling
the scope unblocks whatever the body is waiting on.
"""

from __future__ import annotations

import asyncio
import contextlib
import enum
import inspect
import json
import logging
import random
import tempfile
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, ClassVar, Dict, Iterator, List, Optional

from ..app.settings import RunnerSettings
from .availability import DEFAULT_AVAILABILITY, Availability
from .cancellation import CancellationScope
from .driver.core import Capability, EventType, Point, PointerEvent, SceneGraph, SceneNode
from .driver.exceptions import ActionTimeoutError, ElementNotFoundError, ScenarioCancelledError
from .fixtures import prepare_fixture_data
from .hit_test import HitTestArbiter, SceneHitSurface
from .host import HeadlessHost, ModeChange, SessionHandshake
from .locator import Patterns, normalize_patterns
from .registry import ScenarioDescriptor, ScenarioRegistry
from .resolver import ElementResolver
from .simulator import ActionPacer, InteractionSimulator

logger = logging.getLogger(__name__)


class ScenarioState(enum.Enum):
    NOT_STARTED = "not_started"
    RUNNING = "running"
    PASSED = "passed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class ScenarioOutcome:
    scenario_id: int
    name: str
    state: ScenarioState = ScenarioState.NOT_STARTED
    error: Optional[str] = None
    started_at: float = 0.0
    duration: float = 0.0
    screenshots: List[Path] = field(default_factory=list)
    attachments: List[Dict[str, str]] = field(default_factory=list)
    parameters: Dict[str, str] = field(default_factory=dict)
    steps: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return self.state is ScenarioState.PASSED


class SceneTracker:
    """Remembers when the active scene last changed."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self.last_scene: Optional[str] = None
        self.last_change: Optional[float] = None
        self.changes = 0

    def on_scene_loaded(self, previous: Optional[SceneGraph], current: SceneGraph) -> None:
        if previous is not None and previous is not current:
            logger.info("Scene changed: %s -> %s", previous.name, current.name)
            self.last_change = self._clock()
            self.changes += 1
        self.last_scene = current.name

    def changed_within(self, seconds: float) -> bool:
        if self.last_change is None:
            return False
        return self._clock() - self.last_change < seconds


class ScenarioRuntime:
    """Services shared by every scenario that runs inside one host."""

    def __init__(
        self,
        host: HeadlessHost,
        settings: Optional[RunnerSettings] = None,
        *,
        fixture_root: Optional[Path] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.host = host
        self.settings = settings or RunnerSettings()
        self.fixture_root = fixture_root
        self.clock = clock
        scene_provider = lambda: host.scene  # noqa: E731
        self.arbiter = HitTestArbiter(SceneHitSurface(scene_provider))
        self.resolver = ElementResolver(
            scene_provider,
            self.arbiter,
            poll_interval=self.settings.find_poll_interval,
            find_all_poll_interval=self.settings.find_all_poll_interval,
            clock=clock,
        )
        self.pacer = ActionPacer(self.settings.action_interval, clock)
        self.simulator = InteractionSimulator(
            self.arbiter,
            scene_provider,
            pacer=self.pacer,
            settle_delay=self.settings.click_settle_delay,
        )
        self.scenes = SceneTracker(clock)
        self.active_scope: Optional[CancellationScope] = None
        host.add_scene_listener(self.scenes.on_scene_loaded)

    def request_stop(self) -> bool:
        """Cancel the running scenario, if any."""
        if self.active_scope is None:
            return False
        logger.warning("Stop requested; cancelling scenario scope '%s'", self.active_scope.name)
        self.active_scope.cancel()
        return True

    def close(self) -> None:
        self.host.remove_scene_listener(self.scenes.on_scene_loaded)


class Scenario:
    """Base class for scenarios; implement ``async def test(self)``."""

    descriptor: ClassVar[Optional[ScenarioDescriptor]] = None

    def __init__(self) -> None:
        self.state = ScenarioState.NOT_STARTED
        self.scope: Optional[CancellationScope] = None
        self.outcome: Optional[ScenarioOutcome] = None
        self.destroyed = False
        self.random = random.Random()
        self._runtime: Optional[ScenarioRuntime] = None
        self._handshake: Optional[SessionHandshake] = None

    # ---------------------------------------------------------------- wiring
    def bind(self, runtime: ScenarioRuntime, descriptor: Optional[ScenarioDescriptor] = None) -> "Scenario":
        self._runtime = runtime
        if descriptor is not None:
            self.descriptor = descriptor
        return self

    @property
    def runtime(self) -> ScenarioRuntime:
        if self._runtime is None:
            raise RuntimeError(f"{type(self).__name__} is not bound to a runtime")
        return self._runtime

    @property
    def host(self) -> HeadlessHost:
        return self.runtime.host

    @property
    def scene(self) -> Optional[SceneGraph]:
        return self.runtime.host.scene

    @property
    def name(self) -> str:
        return self.descriptor.name if self.descriptor is not None else type(self).__name__

    @property
    def scenario_id(self) -> int:
        if self.descriptor is None:
            raise RuntimeError(f"{type(self).__name__} is not registered as a scenario")
        if self.descriptor.scenario_id <= 0:
            raise RuntimeError(f"{type(self).__name__} scenario id must be > 0")
        return self.descriptor.scenario_id

    async def test(self) -> None:
        raise NotImplementedError

    # -------------------------------------------------------------- lifecycle
    async def start(self, handshake: Optional[SessionHandshake]) -> Optional[ScenarioOutcome]:
        """Run the body if this scenario is the one selected by ``handshake``."""

        runtime = self.runtime
        await runtime.host.scheduler.next_frame()

        selected = handshake.scenario_id if handshake is not None else 0
        if not selected or selected != self.scenario_id:
            logger.debug("Scenario %s not selected (selected=%s); discarding", self.name, selected)
            self.destroyed = True
            return None

        self._handshake = handshake
        descriptor = self.descriptor
        prepare_fixture_data(self.name, descriptor.data_mode, runtime.fixture_root, getattr(runtime.host, "data_dir", None))

        if runtime.active_scope is not None:
            runtime.active_scope.release()
        self.scope = CancellationScope(self.name)
        runtime.active_scope = self.scope
        started = runtime.clock()
        self.outcome = ScenarioOutcome(
            scenario_id=self.scenario_id, name=self.name, state=ScenarioState.RUNNING, started_at=time.time()
        )
        self.state = ScenarioState.RUNNING
        if handshake is not None:
            # Published while running so a forced teardown still sees steps and screenshots.
            handshake.outcome = self.outcome
        logger.info("Test Start: %s", self.name)
        try:
            await self.test()
            self.state = ScenarioState.PASSED
            logger.info("Test PASSED: %s", self.name)
        except ScenarioCancelledError:
            self.state = ScenarioState.CANCELLED
            self.outcome.error = "Scenario was cancelled"
            logger.info("Test CANCELLED: %s", self.name)
        except Exception as exc:
            self.state = ScenarioState.FAILED
            self.outcome.error = f"{type(exc).__name__}: {exc}"
            logger.exception("Test FAILED: %s", self.name)
        finally:
            interrupted = self.state is ScenarioState.RUNNING
            if interrupted:
                # The host tore the task down while the body was suspended.
                self.state = ScenarioState.CANCELLED
                self.outcome.error = "Interactive mode ended before the scenario finished"
            logger.info("Test End: %s", self.name)
            self.scope.release()
            if runtime.active_scope is self.scope:
                runtime.active_scope = None
            self.outcome.state = self.state
            self.outcome.duration = runtime.clock() - started
            if handshake is not None:
                handshake.outcome = self.outcome
            if not interrupted:
                runtime.host.call_soon(self._leave_interactive)
        return self.outcome

    def _leave_interactive(self) -> None:
        host = self.runtime.host
        handshake = self._handshake
        if host.handshake is not handshake:
            return
        if handshake is not None and handshake.managed_run:
            host.request_authoring_mode()
        elif host.batch_mode:
            host.exit(0 if self.state is ScenarioState.PASSED else 1)
        else:
            host.request_authoring_mode()

    def _active_scope(self) -> CancellationScope:
        if self.scope is None:
            raise RuntimeError("Scenario primitives are only available while the scenario runs")
        return self.scope

    # ---------------------------------------------------------------- waiting
    async def wait(self, seconds: float = 1) -> None:
        await self._active_scope().sleep(seconds)

    async def wait_for_element(self, patterns: Patterns, seconds: float = 10) -> SceneNode:
        scope = self._active_scope()
        await scope.sleep(self.runtime.settings.action_interval)
        logger.info("Wait (%s) [%s]", seconds, _label(patterns))
        return await self.runtime.resolver.find(scope, patterns, capability=Capability.NONE, timeout=seconds)

    async def wait_for(self, predicate: Callable[[], Any], seconds: float = 60, description: str = "condition") -> None:
        """Poll ``predicate`` until it is truthy; it may return an awaitable."""

        scope = self._active_scope()
        logger.info("WaitFor (%s) [%s]", seconds, description)
        interval = self.runtime.settings.action_interval
        deadline = self.runtime.clock() + seconds
        while True:
            scope.raise_if_cancelled()
            result = predicate()
            if inspect.isawaitable(result):
                result = await result
            if result:
                return
            remaining = deadline - self.runtime.clock()
            if remaining <= 0:
                break
            await scope.sleep(min(interval, remaining))
        scope.raise_if_cancelled()
        raise ActionTimeoutError(f"Condition '{description}' not met within {seconds} seconds")

    async def scene_change(self, seconds: float = 30, recent_threshold: Optional[float] = None) -> SceneGraph:
        """Wait until the active scene is replaced, or return at once if it just was."""

        runtime = self.runtime
        scope = self._active_scope()
        threshold = runtime.settings.scene_change_recent_threshold if recent_threshold is None else recent_threshold
        await runtime.pacer.wait_turn(scope)
        start_scene = runtime.host.scene
        start_name = start_scene.name if start_scene is not None else None
        logger.info("SceneChange - waiting for scene change from '%s' (timeout: %ss)", start_name, seconds)
        if start_scene is not None and runtime.scenes.changed_within(threshold):
            logger.info("SceneChange - scene recently changed to '%s'", runtime.scenes.last_scene)
            runtime.pacer.mark_complete()
            return start_scene

        deadline = runtime.clock() + seconds
        while True:
            current = runtime.host.scene
            if current is not None and current is not start_scene:
                logger.info("SceneChange - scene changed to '%s'", current.name)
                runtime.pacer.mark_complete()
                return current
            remaining = deadline - runtime.clock()
            if remaining <= 0:
                break
            await scope.sleep(min(runtime.settings.action_interval, remaining))
        scope.raise_if_cancelled()
        raise ActionTimeoutError(f"Scene did not change from '{start_name}' within {seconds} seconds")

    async def wait_framerate(self, target_fps: float, sample_duration: float = 2.0, timeout: float = 60.0) -> float:
        runtime = self.runtime
        scope = self._active_scope()
        scheduler = runtime.host.scheduler
        logger.info(
            "WaitFramerate - waiting for %s FPS (sample: %ss, timeout: %ss)", target_fps, sample_duration, timeout
        )
        started = runtime.clock()
        while runtime.clock() - started < timeout:
            first_frame = scheduler.frame
            sample_start = runtime.clock()
            await scope.sleep(sample_duration)
            elapsed = max(runtime.clock() - sample_start, 1e-6)
            fps = (scheduler.frame - first_frame) / elapsed
            if fps >= target_fps:
                logger.info("WaitFramerate - achieved %.1f FPS (target: %s)", fps, target_fps)
                return fps
            logger.info("WaitFramerate - current %.1f FPS, waiting for %s...", fps, target_fps)
        scope.raise_if_cancelled()
        raise ActionTimeoutError(f"Framerate did not reach {target_fps} FPS within {timeout} seconds")

    # ---------------------------------------------------------------- finding
    async def find(
        self,
        patterns: Patterns = None,
        *,
        capability: Capability = Capability.NONE,
        throw_if_missing: bool = True,
        seconds: float = 10,
        availability: Availability = DEFAULT_AVAILABILITY,
        parent: Optional[str] = None,
    ) -> Optional[SceneNode]:
        return await self.runtime.resolver.find(
            self._active_scope(),
            patterns,
            capability=capability,
            timeout=seconds,
            availability=availability,
            throw_if_missing=throw_if_missing,
            parent=parent,
        )

    async def find_all(
        self,
        pattern: Patterns = None,
        *,
        capability: Capability = Capability.NONE,
        throw_if_missing: bool = True,
        seconds: float = 10,
        availability: Availability = DEFAULT_AVAILABILITY,
        parent: Optional[str] = None,
    ) -> List[SceneNode]:
        return await self.runtime.resolver.find_all(
            self._active_scope(),
            pattern,
            capability=capability,
            timeout=seconds,
            availability=availability,
            throw_if_missing=throw_if_missing,
            parent=parent,
        )

    async def _find_indexed(
        self,
        patterns: Patterns,
        index: int,
        search_time: float,
        availability: Availability,
        parent: Optional[str],
    ) -> Optional[SceneNode]:
        runtime = self.runtime
        scope = self._active_scope()
        search = normalize_patterns(patterns)
        first = search[0] if search else None
        deadline = runtime.clock() + search_time
        while True:
            scope.raise_if_cancelled()
            nodes = runtime.resolver.find_all_once(
                first, capability=Capability.CLICKABLE, availability=availability, parent=parent
            )
            if index < len(nodes):
                return nodes[index]
            remaining = deadline - runtime.clock()
            if remaining <= 0:
                return None
            await scope.sleep(min(runtime.resolver.find_all_poll_interval, remaining))

    # ------------------------------------------------------------ interaction
    async def click(
        self,
        patterns: Patterns = None,
        throw_if_missing: bool = True,
        search_time: float = 10,
        repeat: int = 0,
        availability: Availability = DEFAULT_AVAILABILITY,
        index: int = 0,
        parent: Optional[str] = None,
    ) -> Optional[SceneNode]:
        """
        Click the first unoccluded element matching ``patterns``.

        ``index`` > 0 clicks the n-th match of ``find_all`` instead. ``repeat``
        is the number of clicks to perform; values below one still click once.
        """

        runtime = self.runtime
        scope = self._active_scope()
        await runtime.pacer.wait_turn(scope)
        label = _label(patterns)
        clicked: Optional[SceneNode] = None
        remaining_clicks = max(1, repeat)
        while remaining_clicks > 0:
            index_info = f" index={index}" if index > 0 else ""
            logger.info("Click (%s) [%s]%s", search_time, label, index_info)
            if index > 0:
                node = await self._find_indexed(patterns, index, search_time, availability, parent)
            else:
                node = await runtime.resolver.find(
                    scope,
                    patterns,
                    capability=Capability.CLICKABLE,
                    timeout=search_time,
                    availability=availability,
                    throw_if_missing=False,
                    parent=parent,
                )
            if node is None:
                if throw_if_missing:
                    index_msg = f" at index {index}" if index > 0 else ""
                    raise ElementNotFoundError(
                        f"Click on '{label}'{index_msg} could not find any matching target within {search_time}s"
                    )
            else:
                await runtime.simulator.click(scope, node)
                clicked = node
            remaining_clicks -= 1
        return clicked

    async def click_any(
        self,
        patterns: Patterns,
        throw_if_missing: bool = True,
        seconds: float = 5,
        availability: Availability = DEFAULT_AVAILABILITY,
    ) -> Optional[SceneNode]:
        """Click the first of ``patterns`` that resolves, trying them in order each round."""

        runtime = self.runtime
        scope = self._active_scope()
        await runtime.pacer.wait_turn(scope)
        search = normalize_patterns(patterns) or []
        logger.info("ClickAny (%s) [%s]", seconds, ", ".join(search))
        deadline = runtime.clock() + seconds
        while True:
            scope.raise_if_cancelled()
            for pattern in search:
                node = runtime.resolver.resolve_once(
                    pattern, capability=Capability.CLICKABLE, availability=availability
                )
                if node is not None:
                    await runtime.simulator.click(scope, node)
                    return node
            remaining = deadline - runtime.clock()
            if remaining <= 0:
                break
            await scope.sleep(min(runtime.settings.search_retry_interval, remaining))
        if throw_if_missing:
            raise ElementNotFoundError(
                f"ClickAny on '{', '.join(search)}' could not find any matching target within {seconds}s"
            )
        return None

    async def click_random(
        self,
        pattern: Patterns = None,
        seconds: float = 10,
        throw_if_missing: bool = True,
        availability: Availability = DEFAULT_AVAILABILITY,
    ) -> Optional[SceneNode]:
        """Click a random element among every current match of ``pattern``."""

        runtime = self.runtime
        scope = self._active_scope()
        await runtime.pacer.wait_turn(scope)
        label = _label(pattern)
        logger.info("ClickRandom (%s) [%s]", seconds, label)
        deadline = runtime.clock() + seconds
        while True:
            scope.raise_if_cancelled()
            nodes = runtime.resolver.find_all_once(pattern, capability=Capability.CLICKABLE, availability=availability)
            if nodes:
                node = self.random.choice(nodes)
                await runtime.simulator.click(scope, node)
                return node
            remaining = deadline - runtime.clock()
            if remaining <= 0:
                break
            await scope.sleep(min(runtime.settings.search_retry_interval, remaining))
        if throw_if_missing:
            raise ElementNotFoundError(f"ClickRandom on '{label}' could not find any matching target within {seconds}s")
        return None

    async def click_screen_center(self, throw_if_missing: bool = True) -> Optional[SceneNode]:
        logger.info("Click (screen center)")
        node = await self.runtime.simulator.click_at_screen_center(self._active_scope())
        if node is None and throw_if_missing:
            raise ElementNotFoundError("Click (screen center) could not find any target at screen center")
        return node

    async def hold(
        self,
        pattern: Patterns,
        seconds: float,
        throw_if_missing: bool = True,
        search_time: float = 10,
        availability: Availability = DEFAULT_AVAILABILITY,
    ) -> Optional[SceneNode]:
        runtime = self.runtime
        scope = self._active_scope()
        logger.info("Hold (%s) [%s] for %ss", search_time, _label(pattern), seconds)
        node = await runtime.resolver.find(
            scope,
            pattern,
            capability=Capability.HOLDABLE,
            timeout=search_time,
            availability=availability,
            throw_if_missing=False,
        )
        if node is None:
            if throw_if_missing:
                raise ElementNotFoundError(
                    f"Hold on '{_label(pattern)}' could not find any matching target within {search_time}s"
                )
            return None
        await runtime.simulator.hold(scope, node, seconds)
        return node

    async def simulate_play(self, seconds: float = 20, *targets: Patterns) -> None:
        """Press and release every target at random intervals for ``seconds``, all targets at once."""

        runtime = self.runtime
        scope = self._active_scope()
        logger.info("SimulatePlay (%s) [%s]", seconds, ", ".join(_label(target) for target in targets))
        await scope.sleep(runtime.settings.action_interval)
        started = runtime.clock()
        tasks = [
            runtime.host.scheduler.spawn(
                self._simulate_play_target(scope, target, seconds, started),
                name=f"{self.name}:play:{_label(target)}",
            )
            for target in targets
        ]
        try:
            await scope.sleep(seconds)
        finally:
            for task in tasks:
                task.cancel()
            results = await asyncio.gather(*tasks, return_exceptions=True)
        for result in results:
            if isinstance(result, Exception) and not isinstance(result, ScenarioCancelledError):
                raise result

    async def _simulate_play_target(
        self, scope: CancellationScope, pattern: Patterns, seconds: float, started: float
    ) -> None:
        runtime = self.runtime
        node = await runtime.resolver.find(scope, pattern, capability=Capability.HOLDABLE, timeout=seconds)
        position = node.anchor_point or (0.0, 0.0)
        pointer = PointerEvent(position=position, press_position=position)
        longest = max(0.3, min(3.0, seconds))
        while runtime.clock() - started < seconds:
            node.dispatch(EventType.POINTER_DOWN, pointer)
            try:
                await scope.sleep(self.random.uniform(0.3, longest))
            finally:
                node.dispatch(EventType.POINTER_UP, pointer)
            await scope.sleep(self.random.uniform(0.01, 0.1))

    async def drag(
        self,
        pattern: Patterns = None,
        direction: Point = (0.0, 0.0),
        duration: float = 0.5,
        throw_if_missing: bool = True,
        search_time: float = 10,
    ) -> Optional[SceneNode]:
        """Drag by ``direction`` starting at the matched element, or at the screen centre."""

        runtime = self.runtime
        scope = self._active_scope()
        if normalize_patterns(pattern) is None:
            scene = runtime.host.scene
            start = scene.screen_center if scene is not None else (0.0, 0.0)
        else:
            logger.info("Drag (%ss) [%s] delta=(%.0f,%.0f)", duration, _label(pattern), direction[0], direction[1])
            node = await runtime.resolver.find(
                scope, pattern, capability=Capability.NONE, timeout=search_time, throw_if_missing=throw_if_missing
            )
            if node is None:
                return None
            if node.anchor_point is None:
                if throw_if_missing:
                    raise ElementNotFoundError(
                        f"Drag on '{_label(pattern)}' found '{node.name}' but it is not on screen"
                    )
                return None
            start = node.anchor_point
        end = (start[0] + direction[0], start[1] + direction[1])
        return await runtime.simulator.drag_between(scope, start, end, duration)

    async def drag_from_to(self, start: Point, end: Point, duration: float = 0.5) -> Optional[SceneNode]:
        logger.info(
            "DragFromTo (%ss) from (%.0f,%.0f) to (%.0f,%.0f)", duration, start[0], start[1], end[0], end[1]
        )
        return await self.runtime.simulator.drag_between(self._active_scope(), start, end, duration)

    async def scroll(
        self,
        pattern: Patterns,
        delta: Point,
        throw_if_missing: bool = True,
        search_time: float = 10,
    ) -> Optional[SceneNode]:
        runtime = self.runtime
        scope = self._active_scope()
        node = await runtime.resolver.find(
            scope, pattern, capability=Capability.SCROLL, timeout=search_time, throw_if_missing=throw_if_missing
        )
        if node is None:
            return None
        await runtime.simulator.scroll(scope, node, delta)
        return node

    async def text_input(self, pattern: Patterns, text: str, search_time: float = 10) -> SceneNode:
        runtime = self.runtime
        scope = self._active_scope()
        logger.info("TextInput (%s) [%s] %s", search_time, _label(pattern), text)
        node = await runtime.resolver.find(
            scope, pattern, capability=Capability.TEXT_EDITABLE, timeout=search_time
        )
        await runtime.simulator.text_input(scope, node, text)
        return node

    # ------------------------------------------------------------ diagnostics
    @contextlib.contextmanager
    def step(self, name: str) -> Iterator[None]:
        started = time.perf_counter()
        logger.info("Step Start: %s", name)
        status = "passed"
        try:
            yield
        except BaseException:
            status = "failed"
            raise
        finally:
            duration = time.perf_counter() - started
            logger.info("Step End: %s (%.2fs)", name, duration)
            self._record_step({"name": name, "duration": round(duration, 3), "status": status})

    def track_performance(self, section: str) -> contextlib.AbstractContextManager:
        return self.step(f"Performance: {section}")

    def log_step(self, message: str) -> None:
        logger.info("Step: %s", message)
        self._record_step({"name": message, "duration": 0.0, "status": "info"})

    def _record_step(self, entry: Dict[str, Any]) -> None:
        if self.outcome is not None:
            self.outcome.steps.append(entry)

    def _attachment_dir(self) -> Path:
        handshake = self._handshake
        if handshake is not None and handshake.artifact_dir is not None:
            directory = Path(handshake.artifact_dir)
        else:
            directory = Path(tempfile.gettempdir()) / "scene_testing"
        directory.mkdir(parents=True, exist_ok=True)
        return directory

    def capture_screenshot(self, name: str = "screenshot") -> Optional[Path]:
        stamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
        path = self._attachment_dir() / f"{name}_{stamp}.png"
        saved = self.runtime.host.capture_screenshot(path)
        if saved is not None:
            logger.info("Screenshot: %s", saved)
            if self.outcome is not None:
                self.outcome.screenshots.append(saved)
        return saved

    def attach_text(self, name: str, content: str) -> Path:
        logger.info("Attach Text '%s': %s", name, content)
        path = self._attachment_dir() / f"{_safe(name)}.txt"
        path.write_text(content, encoding="utf-8")
        self._record_attachment(name, path, "text/plain")
        return path

    def attach_json(self, name: str, data: Any) -> Path:
        text = json.dumps(data, indent=2, default=str)
        logger.info("Attach JSON '%s': %s", name, text)
        path = self._attachment_dir() / f"{_safe(name)}.json"
        path.write_text(text, encoding="utf-8")
        self._record_attachment(name, path, "application/json")
        return path

    def attach_file(self, path: Path, name: Optional[str] = None, mime_type: str = "application/octet-stream") -> bool:
        path = Path(path)
        if not path.exists():
            logger.warning("Attach File skipped, '%s' does not exist", path)
            return False
        logger.info("Attach File '%s': %s (%s)", name or path.name, path, mime_type)
        self._record_attachment(name or path.name, path, mime_type)
        return True

    def _record_attachment(self, name: str, path: Path, mime_type: str) -> None:
        if self.outcome is not None:
            self.outcome.attachments.append({"name": name, "path": str(path), "mime": mime_type})

    def add_parameter(self, name: str, value: Any) -> None:
        logger.info("Parameter: %s=%s", name, value)
        if self.outcome is not None:
            self.outcome.parameters[name] = str(value)


class ScenarioLauncher:
    """Instantiates the selected scenario when the host enters interactive mode."""

    def __init__(self, host: HeadlessHost, registry: ScenarioRegistry, runtime: Optional[ScenarioRuntime] = None) -> None:
        self.host = host
        self.registry = registry
        self.runtime = runtime or ScenarioRuntime(host)
        self.instances: List[Scenario] = []
        host.add_mode_listener(self._on_mode_change)

    def _on_mode_change(self, change: ModeChange) -> None:
        if change is ModeChange.ENTERED_INTERACTIVE:
            self.launch(self.host.handshake)
        elif change is ModeChange.EXITING_INTERACTIVE:
            self.instances.clear()

    def launch(self, handshake: Optional[SessionHandshake]) -> Optional[Scenario]:
        if handshake is None or not handshake.scenario_id:
            logger.debug("Interactive mode entered without a scenario selection")
            return None
        descriptor = self.registry.get(handshake.scenario_id)
        if descriptor is None or descriptor.name != handshake.scenario_name:
            logger.error(
                "Failed to find scenario %s (%s)", handshake.scenario_id, handshake.scenario_name
            )
            return None
        instance = descriptor.factory()
        instance.bind(self.runtime, descriptor)
        self.instances.append(instance)
        self.host.scheduler.spawn(instance.start(handshake), name=f"scenario-{descriptor.scenario_id}")
        logger.debug("Created scenario instance %s", descriptor.name)
        return instance

    def stop(self) -> bool:
        return self.runtime.request_stop()

    def close(self) -> None:
        self.host.remove_mode_listener(self._on_mode_change)
        self.runtime.close()


def _label(patterns: Patterns) -> str:
    search = normalize_patterns(patterns)
    return ", ".join(search) if search else "*"


def _safe(name: str) -> str:
    return "".join(ch if ch.isalnum() or ch in "-_." else "_" for ch in name) or "attachment"
