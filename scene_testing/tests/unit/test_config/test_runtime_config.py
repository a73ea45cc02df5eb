from __future__ import annotations

from pathlib import Path
from typing import Dict

import pytest

from scene_testing.app.configuration import RuntimeConfig, load_runtime_config
from scene_testing.app.settings import RunnerSettings


@pytest.fixture
def temp_ini(tmp_path: Path) -> Path:
    ini = tmp_path / "scene_testing.ini"
    ini.write_text(
        "[runtime]\n"
        "action_interval = 0.2\n"
        "transition_timeout = 12\n"
        "cancelled_counts_as_failure = false\n"
        "fixture_root = fixtures\n",
        encoding="utf-8",
    )
    return ini


def test_load_runtime_config_prefers_explicit_path(temp_ini: Path) -> None:
    cfg = load_runtime_config({}, config_path=temp_ini)
    assert cfg.action_interval == pytest.approx(0.2)
    assert cfg.transition_timeout == pytest.approx(12.0)
    assert cfg.cancelled_counts_as_failure is False
    assert cfg.fixture_root == "fixtures"
    # Config source should reflect the file used
    assert cfg.config_source == temp_ini


def test_env_overrides_ini(temp_ini: Path) -> None:
    env: Dict[str, str] = {
        "SCENE_TESTING_ACTION_INTERVAL": "0.75",
        "SCENE_TESTING_CANCELLED_COUNTS_AS_FAILURE": "1",
        "SCENE_TESTING_OUTPUT_DIR": "/tmp/results",
    }
    cfg = load_runtime_config(env, config_path=temp_ini)
    assert cfg.action_interval == pytest.approx(0.75)
    assert cfg.cancelled_counts_as_failure is True
    assert cfg.output_dir == "/tmp/results"
    assert cfg.transition_timeout == pytest.approx(12.0)


def test_env_config_file_is_used_when_no_explicit_path(temp_ini: Path) -> None:
    cfg = load_runtime_config({"SCENE_TESTING_CONFIG_FILE": str(temp_ini)})
    assert cfg.config_source == temp_ini
    assert cfg.action_interval == pytest.approx(0.2)


def test_invalid_values_keep_previous(temp_ini: Path) -> None:
    cfg = load_runtime_config({"SCENE_TESTING_ACTION_INTERVAL": "fast", "SCENE_TESTING_RECORD_VIDEO": "maybe"}, config_path=temp_ini)
    assert cfg.action_interval == pytest.approx(0.2)
    assert cfg.record_video is None


def test_runtime_config_applies_to_settings(temp_ini: Path) -> None:
    cfg = load_runtime_config({}, config_path=temp_ini)
    settings = RunnerSettings(find_poll_interval=0.25)
    cfg.apply_to_settings(settings)
    assert settings.action_interval == pytest.approx(0.2)
    assert settings.transition_timeout == pytest.approx(12.0)
    assert settings.cancelled_counts_as_failure is False
    assert settings.fixture_root == "fixtures"
    assert settings.find_poll_interval == pytest.approx(0.25)


def test_load_runtime_config_handles_missing_file(tmp_path: Path) -> None:
    missing = tmp_path / "does_not_exist.ini"
    cfg = load_runtime_config({}, config_path=missing)
    assert cfg == RuntimeConfig(config_source=missing)
