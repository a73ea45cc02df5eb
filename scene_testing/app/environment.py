# scene_testing/app/environment.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .settings import RunnerSettings

DEFAULT_OUTPUT_DIRNAME = "TestResults"
SETTINGS_FILENAME = "scene_testing_settings.json"
FLAKE_STATS_FILENAME = "flake_stats.json"

logger = logging.getLogger(__name__)


@dataclass
class Paths:
    """Resolved filesystem locations used by a run."""

    output_dir: Path
    fixture_root: Optional[Path] = None
    data_dir: Optional[Path] = None

    @property
    def flake_stats(self) -> Path:
        return self.output_dir / FLAKE_STATS_FILENAME


def resolve_output_dir(cli_value: Optional[Path], settings: RunnerSettings, cwd: Optional[Path] = None) -> Path:
    """CLI argument first, then settings, then ``./TestResults``."""
    if cli_value is not None:
        return Path(cli_value).expanduser()
    if settings.output_dir:
        return Path(settings.output_dir).expanduser()
    return (cwd or Path.cwd()) / DEFAULT_OUTPUT_DIRNAME


def build_paths(
    settings: RunnerSettings,
    output_dir: Optional[Path] = None,
    data_dir: Optional[Path] = None,
    cwd: Optional[Path] = None,
) -> Paths:
    """Create the Paths collection and ensure the output directory exists."""
    resolved = resolve_output_dir(output_dir, settings, cwd)
    resolved.mkdir(parents=True, exist_ok=True)
    fixture_root = Path(settings.fixture_root).expanduser() if settings.fixture_root else None
    if fixture_root is not None and not fixture_root.is_dir():
        logger.warning("Fixture root '%s' does not exist; scenarios will use existing data", fixture_root)
    logger.debug("Output directory: %s", resolved)
    return Paths(output_dir=resolved, fixture_root=fixture_root, data_dir=data_dir)
