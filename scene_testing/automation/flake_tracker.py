"""Per-scenario run/failure counters persisted as JSON across runs."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


@dataclass
class FlakeTracker:
    path: Path

    def __post_init__(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._stats: Dict[str, Dict[str, Any]] = {}
        if self.path.exists():
            try:
                loaded = json.loads(self.path.read_text(encoding="utf-8"))
            except (OSError, ValueError):
                loaded = {}
            if isinstance(loaded, dict):
                self._stats = loaded

    def record(self, scenario: str, state: str, error: Optional[str] = None) -> None:
        entry = self._stats.setdefault(scenario, {"runs": 0, "failures": {}, "last_error": None})
        entry["runs"] = int(entry.get("runs", 0)) + 1
        if state != "passed":
            failures = entry.setdefault("failures", {})
            failures[state] = int(failures.get(state, 0)) + 1
            entry["last_error"] = error
        self._flush()

    def runs(self, scenario: str) -> int:
        return int(self._stats.get(scenario, {}).get("runs", 0))

    def failures(self, scenario: str) -> int:
        return sum(int(v) for v in self._stats.get(scenario, {}).get("failures", {}).values())

    def failure_rate(self, scenario: str) -> float:
        runs = self.runs(scenario)
        return self.failures(scenario) / runs if runs else 0.0

    def _flush(self) -> None:
        try:
            self.path.write_text(json.dumps(self._stats, indent=2, sort_keys=True), encoding="utf-8")
        except OSError as exc:
            logger.warning("Could not persist flake statistics to %s: %s", self.path, exc)
