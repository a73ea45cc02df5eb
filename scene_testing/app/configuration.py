"""Runtime configuration loading helpers for the scene testing runner."""

from __future__ import annotations

import configparser
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Mapping, Optional

from .settings import RunnerSettings

_ENV_PREFIX = "SCENE_TESTING_"
_BOOL_TRUE = {"1", "true", "yes", "on"}
_BOOL_FALSE = {"0", "false", "no", "off"}

_FLOAT_KEYS = (
    "action_interval",
    "click_settle_delay",
    "find_poll_interval",
    "find_all_poll_interval",
    "search_retry_interval",
    "transition_timeout",
    "default_scenario_timeout",
    "watchdog_grace",
    "watchdog_poll_interval",
    "scene_change_recent_threshold",
)
_BOOL_KEYS = ("cancelled_counts_as_failure", "record_video")
_STR_KEYS = ("fixture_root", "output_dir")


@dataclass(slots=True)
class RuntimeConfig:
    """Declarative overrides sourced from environment variables or config files."""

    config_source: Optional[Path] = None
    action_interval: Optional[float] = None
    click_settle_delay: Optional[float] = None
    find_poll_interval: Optional[float] = None
    find_all_poll_interval: Optional[float] = None
    search_retry_interval: Optional[float] = None
    transition_timeout: Optional[float] = None
    default_scenario_timeout: Optional[float] = None
    watchdog_grace: Optional[float] = None
    watchdog_poll_interval: Optional[float] = None
    scene_change_recent_threshold: Optional[float] = None
    cancelled_counts_as_failure: Optional[bool] = None
    record_video: Optional[bool] = None
    fixture_root: Optional[str] = None
    output_dir: Optional[str] = None

    def apply_to_settings(self, settings: RunnerSettings) -> None:
        """Project runtime overrides onto persisted settings without destroying saved values."""

        for item in fields(self):
            if item.name == "config_source":
                continue
            value = getattr(self, item.name)
            if value is not None:
                setattr(settings, item.name, value)


def load_runtime_config(
    env: Mapping[str, str] | None = None,
    config_path: Optional[Path] = None,
) -> RuntimeConfig:
    """Load runtime configuration overrides from environment variables and optional INI files."""

    source_env = os.environ if env is None else env
    config_file = _determine_config_path(source_env, config_path)
    config = RuntimeConfig(config_source=config_file)

    if config_file is not None and config_file.is_file():
        parser: Optional[configparser.ConfigParser] = configparser.ConfigParser()
        try:
            parser.read(config_file, encoding="utf-8")
        except configparser.Error:
            parser = None  # pragma: no cover - invalid file handled via env overrides only
        if parser and parser.has_section("runtime"):
            section = parser["runtime"]
            for key in _FLOAT_KEYS:
                setattr(config, key, _get_float(section, key, getattr(config, key)))
            for key in _BOOL_KEYS:
                setattr(config, key, _get_bool(section, key, getattr(config, key)))
            for key in _STR_KEYS:
                setattr(config, key, section.get(key, getattr(config, key)))

    _apply_env_overrides(config, source_env)
    return config


def _determine_config_path(env: Mapping[str, str], explicit: Optional[Path]) -> Optional[Path]:
    if explicit is not None:
        return explicit
    env_override = env.get(f"{_ENV_PREFIX}CONFIG_FILE")
    if env_override:
        return Path(env_override).expanduser()
    candidates = (
        Path(env.get("SCENE_TESTING_ROOT", "")) / "scene_testing.ini" if env.get("SCENE_TESTING_ROOT") else None,
        Path.cwd() / "scene_testing.ini",
        Path.cwd() / "scene-testing.ini",
    )
    for candidate in candidates:
        if candidate and candidate.is_file():
            return candidate
    return None


def _apply_env_overrides(config: RuntimeConfig, env: Mapping[str, str]) -> None:
    for key in _FLOAT_KEYS:
        setattr(config, key, _get_float(env, f"{_ENV_PREFIX}{key.upper()}", getattr(config, key)))
    for key in _BOOL_KEYS:
        setattr(config, key, _get_bool(env, f"{_ENV_PREFIX}{key.upper()}", getattr(config, key)))
    for key in _STR_KEYS:
        setattr(config, key, env.get(f"{_ENV_PREFIX}{key.upper()}", getattr(config, key)))


def _get_float(source: Mapping[str, str], key: str, default: Optional[float]) -> Optional[float]:
    raw = source.get(key)
    if raw is None:
        return default
    try:
        return float(str(raw).strip())
    except (TypeError, ValueError):
        return default


def _get_bool(source: Mapping[str, str], key: str, default: Optional[bool]) -> Optional[bool]:
    raw = source.get(key)
    if raw is None:
        return default
    value = str(raw).strip().lower()
    if value in _BOOL_TRUE:
        return True
    if value in _BOOL_FALSE:
        return False
    return default
