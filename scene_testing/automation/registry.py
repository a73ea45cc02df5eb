"""Explicit scenario registry replacing type scanning at startup."""

from __future__ import annotations

import enum
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from .driver.exceptions import ScenarioValidationError

logger = logging.getLogger(__name__)


class TestSeverity(enum.Enum):
    BLOCKER = "blocker"
    CRITICAL = "critical"
    NORMAL = "normal"
    MINOR = "minor"
    TRIVIAL = "trivial"


class TestDataMode(enum.Enum):
    USE_DEFINED = "use_defined"
    USE_CURRENT = "use_current"
    ASK = "ask"


@dataclass(frozen=True)
class ScenarioDescriptor:
    """Immutable description of one registered scenario."""

    scenario_id: int
    name: str
    factory: Callable[[], Any] = field(compare=False, repr=False)
    timeout: Optional[float] = None
    severity: TestSeverity = TestSeverity.NORMAL
    owner: str = ""
    feature: str = ""
    story: str = ""
    tags: Tuple[str, ...] = ()
    description: str = ""
    data_mode: TestDataMode = TestDataMode.ASK

    def timeout_or(self, default: float) -> float:
        """The scenario timeout, falling back to ``default`` when none was declared."""
        return self.timeout if self.timeout is not None and self.timeout > 0 else float(default)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.scenario_id,
            "name": self.name,
            "timeout": self.timeout,
            "severity": self.severity.value,
            "owner": self.owner,
            "feature": self.feature,
            "story": self.story,
            "tags": list(self.tags),
            "description": self.description,
            "data_mode": self.data_mode.value,
        }


def validate_descriptors(descriptors: Iterable[ScenarioDescriptor]) -> List[ScenarioDescriptor]:
    """Check ids are positive and unique; return the descriptors sorted by id."""

    items = list(descriptors)
    for descriptor in items:
        if descriptor.scenario_id <= 0:
            raise ScenarioValidationError(
                f"Scenario {descriptor.name} has invalid id {descriptor.scenario_id}. Must be > 0.",
                scenario_id=descriptor.scenario_id,
                names=(descriptor.name,),
            )
    by_id: Dict[int, List[str]] = defaultdict(list)
    for descriptor in items:
        by_id[descriptor.scenario_id].append(descriptor.name)
    for scenario_id, names in sorted(by_id.items()):
        if len(names) > 1:
            raise ScenarioValidationError(
                f"Duplicate scenario id {scenario_id}: {', '.join(names)}",
                scenario_id=scenario_id,
                names=names,
            )
    return sorted(items, key=lambda d: d.scenario_id)


class ScenarioRegistry:
    """
    Holds scenario factories keyed by id.

    With ``strict=True`` (the default) a bad id is rejected as soon as it is
    registered. A non-strict registry accepts everything and leaves the
    verdict to ``validate_descriptors`` at discovery time.
    """

    def __init__(self, *, strict: bool = True) -> None:
        self.strict = strict
        self._descriptors: List[ScenarioDescriptor] = []

    def __len__(self) -> int:
        return len(self._descriptors)

    def register(self, descriptor: ScenarioDescriptor) -> ScenarioDescriptor:
        if self.strict:
            validate_descriptors([*self._descriptors, descriptor])
        self._descriptors.append(descriptor)
        logger.debug("Registered scenario %s (%s)", descriptor.scenario_id, descriptor.name)
        return descriptor

    def scenario(
        self,
        scenario_id: int,
        *,
        name: Optional[str] = None,
        timeout: Optional[float] = None,
        severity: TestSeverity = TestSeverity.NORMAL,
        owner: str = "",
        feature: str = "",
        story: str = "",
        tags: Sequence[str] = (),
        description: str = "",
        data_mode: TestDataMode = TestDataMode.ASK,
    ) -> Callable[[type], type]:
        """Class decorator registering a ``Scenario`` subclass."""

        def decorator(cls: type) -> type:
            descriptor = ScenarioDescriptor(
                scenario_id=int(scenario_id),
                name=name or cls.__name__,
                factory=cls,
                timeout=float(timeout) if timeout is not None else None,
                severity=severity,
                owner=owner,
                feature=feature,
                story=story,
                tags=tuple(tags),
                description=description or (cls.__doc__ or "").strip(),
                data_mode=data_mode,
            )
            self.register(descriptor)
            cls.descriptor = descriptor
            return cls

        return decorator

    def descriptors(self) -> List[ScenarioDescriptor]:
        return list(self._descriptors)

    def get(self, scenario_id: int) -> Optional[ScenarioDescriptor]:
        for descriptor in self._descriptors:
            if descriptor.scenario_id == scenario_id:
                return descriptor
        return None

    def clear(self) -> None:
        self._descriptors.clear()


default_registry = ScenarioRegistry()
scenario = default_registry.scenario
