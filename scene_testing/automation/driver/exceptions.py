"""Custom exception types for the scene automation layer."""

from __future__ import annotations

from typing import Iterable, Optional


class AutomationError(RuntimeError):
    """Base class for automation-related failures."""


class ElementNotFoundError(AutomationError):
    """Raised when a search exhausts its timeout without a qualifying element."""


class ActionTimeoutError(AutomationError, TimeoutError):
    """Raised when a condition, framerate or scene change is never satisfied."""


class ScenarioCancelledError(AutomationError):
    """Raised from every pending wait once the scenario's scope is cancelled."""


class ScenarioValidationError(AutomationError, ValueError):
    """Raised when scenario identifiers are invalid or duplicated."""

    def __init__(self, message: str, *, scenario_id: Optional[int] = None, names: Iterable[str] = ()) -> None:
        super().__init__(message)
        self.scenario_id = scenario_id
        self.names = tuple(names)


class HostFrozenError(AutomationError):
    """Reason reported by the background watchdog before it terminates the process."""
