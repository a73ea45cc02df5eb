"""Scenario runtime, resolver, simulator and run orchestration."""

from .availability import Availability
from .host import HeadlessHost, HostMode, ModeChange, SessionHandshake
from .orchestrator import RunOrchestrator, RunState
from .registry import ScenarioDescriptor, ScenarioRegistry, default_registry, scenario
from .scenario import Scenario, ScenarioLauncher, ScenarioOutcome, ScenarioRuntime, ScenarioState
