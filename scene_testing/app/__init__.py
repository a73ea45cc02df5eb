"""Application-level utilities (environment, settings, runtime configuration)."""

from .settings import RunnerSettings
from .environment import Paths, build_paths, resolve_output_dir
from .configuration import RuntimeConfig, load_runtime_config
