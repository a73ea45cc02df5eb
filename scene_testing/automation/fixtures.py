"""Fixture data preparation before a scenario body runs."""

from __future__ import annotations

import logging
import shutil
import zipfile
from pathlib import Path
from typing import Optional

from .registry import TestDataMode

logger = logging.getLogger(__name__)


def find_fixture_data(scenario_name: str, fixture_root: Optional[Path]) -> Optional[Path]:
    """Return ``<root>/<name>.zip`` or ``<root>/<name>/`` when either exists."""

    if fixture_root is None:
        return None
    archive = fixture_root / f"{scenario_name}.zip"
    if archive.is_file():
        return archive
    folder = fixture_root / scenario_name
    if folder.is_dir():
        return folder
    return None


def prepare_fixture_data(
    scenario_name: str,
    mode: TestDataMode,
    fixture_root: Optional[Path],
    data_dir: Optional[Path],
) -> Optional[Path]:
    """
    Replace ``data_dir`` with the scenario's fixture data.

    ``USE_CURRENT`` keeps whatever is there. ``ASK`` behaves like
    ``USE_DEFINED`` because headless runs never prompt. Copy failures are
    logged and the scenario continues on the existing data.
    """

    if mode is TestDataMode.USE_CURRENT:
        logger.info("DataMode=UseCurrent, using existing data")
        return None
    if data_dir is None:
        logger.debug("No data directory configured; skipping fixture data")
        return None
    source = find_fixture_data(scenario_name, fixture_root)
    if source is None:
        logger.info("No test data found for %s, using existing data", scenario_name)
        return None
    try:
        if data_dir.exists():
            shutil.rmtree(data_dir)
        if source.suffix.lower() == ".zip":
            data_dir.mkdir(parents=True, exist_ok=True)
            with zipfile.ZipFile(source) as archive:
                archive.extractall(data_dir)
            logger.info("Extracted test data from: %s", source)
        else:
            shutil.copytree(source, data_dir)
            logger.info("Copied test data from: %s", source)
    except (OSError, zipfile.BadZipFile) as exc:
        logger.error("Failed to prepare test data: %s", exc)
        return None
    return source
