"""Per-scenario artifact bundle: captured log, video path, screenshots and attachments."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from .reporting.allure_helpers import attach_file, attach_image, attach_text
from .registry import ScenarioDescriptor

logger = logging.getLogger(__name__)

LOG_FILENAME = "log.txt"
RESULT_FILENAME = "result.json"


class LogCapture(logging.Handler):
    """
    Collects ``[HH:MM:SS.fff] LEVEL: message`` lines while attached.

    Error records that carry exception info get the formatted traceback
    appended on the following lines.
    """

    def __init__(self, level: int = logging.DEBUG) -> None:
        super().__init__(level)
        self.lines: List[str] = []
        self._target: Optional[logging.Logger] = None
        self.setFormatter(logging.Formatter())

    def emit(self, record: logging.LogRecord) -> None:
        try:
            timestamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S.%f")[:-3]
            entry = f"[{timestamp}] {record.levelname}: {record.getMessage()}"
            if record.exc_info and record.levelno >= logging.ERROR:
                entry += "\n" + self.formatter.formatException(record.exc_info)
            self.lines.append(entry)
        except Exception:
            self.handleError(record)

    def attach(self, target: Optional[logging.Logger] = None) -> None:
        self._target = target or logging.getLogger()
        self._target.addHandler(self)

    def detach(self) -> None:
        if self._target is not None:
            self._target.removeHandler(self)
            self._target = None

    def clear(self) -> None:
        self.lines.clear()


def artifact_dir_name(descriptor: ScenarioDescriptor) -> str:
    safe = re.sub(r"[^A-Za-z0-9_.-]+", "_", descriptor.name).strip("_") or "scenario"
    return f"{descriptor.scenario_id:03d}_{safe}"


@dataclass
class ArtifactBundle:
    descriptor: ScenarioDescriptor
    directory: Path
    started_at: datetime = field(default_factory=datetime.now)
    state: str = "not_started"
    error: Optional[str] = None
    duration: Optional[float] = None
    video_path: Optional[Path] = None
    screenshots: List[Path] = field(default_factory=list)
    attachments: List[Dict[str, str]] = field(default_factory=list)
    parameters: Dict[str, str] = field(default_factory=dict)
    steps: List[Dict[str, Any]] = field(default_factory=list)
    capture: LogCapture = field(default_factory=LogCapture)
    finalized: bool = False

    @classmethod
    def create(cls, descriptor: ScenarioDescriptor, output_dir: Path) -> "ArtifactBundle":
        directory = output_dir / artifact_dir_name(descriptor)
        directory.mkdir(parents=True, exist_ok=True)
        return cls(descriptor=descriptor, directory=directory)

    @property
    def log_lines(self) -> List[str]:
        return self.capture.lines

    @property
    def log_path(self) -> Path:
        return self.directory / LOG_FILENAME

    @property
    def result_path(self) -> Path:
        return self.directory / RESULT_FILENAME

    def start_capture(self) -> None:
        self.capture.attach()

    def stop_capture(self) -> None:
        self.capture.detach()

    def absorb(self, outcome: Any) -> None:
        """Copy what the runtime reported for this scenario into the bundle."""
        if outcome is None:
            return
        self.state = outcome.state.value
        self.error = outcome.error
        self.duration = outcome.duration
        self.screenshots.extend(outcome.screenshots)
        self.attachments.extend(outcome.attachments)
        self.parameters.update(outcome.parameters)
        self.steps.extend(outcome.steps)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scenario": self.descriptor.to_dict(),
            "state": self.state,
            "error": self.error,
            "started_at": self.started_at.isoformat(timespec="seconds"),
            "duration": self.duration,
            "video": str(self.video_path) if self.video_path else None,
            "screenshots": [str(p) for p in self.screenshots],
            "attachments": list(self.attachments),
            "parameters": dict(self.parameters),
            "steps": list(self.steps),
            "log": LOG_FILENAME,
        }

    def finalize(self) -> Path:
        """Write ``log.txt`` and ``result.json``; the captured lines are released afterwards."""
        self.stop_capture()
        self.directory.mkdir(parents=True, exist_ok=True)
        log_text = "\n".join(self.capture.lines)
        self.log_path.write_text(log_text + ("\n" if log_text else ""), encoding="utf-8")
        self.result_path.write_text(json.dumps(self.to_dict(), indent=2), encoding="utf-8")
        logger.info(
            "Artifacts for scenario %s written to %s (%s log lines)",
            self.descriptor.scenario_id,
            self.directory,
            len(self.capture.lines),
        )
        attach_text(f"{self.descriptor.name} log", log_text)
        if self.video_path is not None:
            attach_file("video", self.video_path, attachment_type="video/mp4")
        for shot in self.screenshots:
            attach_image(shot.stem, shot)
        self.capture.clear()
        self.finalized = True
        return self.result_path
