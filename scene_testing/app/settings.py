# scene_testing/app/settings.py
from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


@dataclass
class RunnerSettings:
    action_interval: float = 0.5
    click_settle_delay: float = 0.02
    find_poll_interval: float = 0.5
    find_all_poll_interval: float = 0.1
    search_retry_interval: float = 0.1
    transition_timeout: float = 30.0
    default_scenario_timeout: float = 180.0
    watchdog_grace: float = 10.0
    watchdog_poll_interval: float = 1.0
    scene_change_recent_threshold: float = 1.0
    cancelled_counts_as_failure: bool = True
    record_video: bool = True
    fixture_root: Optional[str] = None
    output_dir: Optional[str] = None

    @classmethod
    def load(cls, path: Path) -> RunnerSettings:
        if not path.exists():
            return cls()
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable settings file %s: %s", path, exc)
            return cls()
        if not isinstance(data, dict):
            return cls()
        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> RunnerSettings:
        defaults = cls()
        return cls(
            action_interval=_float(data, "action_interval", defaults.action_interval),
            click_settle_delay=_float(data, "click_settle_delay", defaults.click_settle_delay),
            find_poll_interval=_float(data, "find_poll_interval", defaults.find_poll_interval),
            find_all_poll_interval=_float(data, "find_all_poll_interval", defaults.find_all_poll_interval),
            search_retry_interval=_float(data, "search_retry_interval", defaults.search_retry_interval),
            transition_timeout=_float(data, "transition_timeout", defaults.transition_timeout),
            default_scenario_timeout=_float(data, "default_scenario_timeout", defaults.default_scenario_timeout),
            watchdog_grace=_float(data, "watchdog_grace", defaults.watchdog_grace),
            watchdog_poll_interval=_float(data, "watchdog_poll_interval", defaults.watchdog_poll_interval),
            scene_change_recent_threshold=_float(
                data, "scene_change_recent_threshold", defaults.scene_change_recent_threshold
            ),
            cancelled_counts_as_failure=bool(data.get("cancelled_counts_as_failure", defaults.cancelled_counts_as_failure)),
            record_video=bool(data.get("record_video", defaults.record_video)),
            fixture_root=data.get("fixture_root") or None,
            output_dir=data.get("output_dir") or None,
        )

    def save(self, path: Path) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(asdict(self), indent=2), encoding="utf-8")
        except OSError as exc:
            logger.warning("Could not save settings to %s: %s", path, exc)


def _float(data: Dict[str, Any], key: str, default: float) -> float:
    try:
        return float(data.get(key, default))
    except (TypeError, ValueError):
        return default
