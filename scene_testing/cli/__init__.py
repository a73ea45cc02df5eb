from __future__ import annotations

import argparse
import importlib
import logging
import sys
from pathlib import Path
from typing import List, Optional

from scene_testing.app.configuration import RuntimeConfig, load_runtime_config
from scene_testing.app.environment import SETTINGS_FILENAME, build_paths
from scene_testing.app.settings import RunnerSettings
from scene_testing.automation.driver.exceptions import ScenarioValidationError
from scene_testing.automation.flake_tracker import FlakeTracker
from scene_testing.automation.host import HeadlessHost, SceneFactory
from scene_testing.automation.orchestrator import RunOrchestrator
from scene_testing.automation.registry import ScenarioRegistry, default_registry, validate_descriptors
from scene_testing.automation.scenario import ScenarioLauncher, ScenarioRuntime

logger = logging.getLogger("scene_testing.cli")

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_INVALID = 2


def main(argv: Optional[List[str]] = None, registry: ScenarioRegistry = default_registry) -> int:
    parser = argparse.ArgumentParser(prog="scene-testing", description="Scene scenario test runner")
    parser.add_argument("--verbose", action="store_true", help="Enable verbose logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Run registered scenarios in id order")
    run_parser.add_argument("--module", action="append", required=True, help="Module that registers scenarios (repeatable)")
    run_parser.add_argument("--output-dir", type=Path, help="Artifact directory (defaults to ./TestResults)")
    run_parser.add_argument("--scenario", type=int, help="Run only the scenario with this id")
    run_parser.add_argument("--settings", type=Path, help=f"Settings JSON (defaults to ./{SETTINGS_FILENAME})")
    run_parser.add_argument("--data-dir", type=Path, help="Host data directory that fixture data is copied into")
    run_parser.add_argument("--interactive", action="store_true", help="Do not exit the host when the run finishes")

    list_parser = subparsers.add_parser("list", help="List registered scenarios")
    list_parser.add_argument("--module", action="append", required=True, help="Module that registers scenarios (repeatable)")

    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO, format="%(levelname)s %(name)s - %(message)s")

    runtime_cfg = load_runtime_config()
    logger.debug("Loaded runtime config overrides: %s", runtime_cfg)

    if args.command == "run":
        return _handle_run(args, registry, runtime_cfg)
    if args.command == "list":
        return _handle_list(args, registry)
    parser.print_help()
    return EXIT_FAILED


def _import_modules(names: List[str]) -> Optional[List[object]]:
    modules = []
    for name in names:
        try:
            modules.append(importlib.import_module(name))
        except ScenarioValidationError as exc:
            logger.error("Scenario validation failed while importing '%s': %s", name, exc)
            return None
        except ImportError as exc:
            logger.error("Could not import scenario module '%s': %s", name, exc)
            return None
    return modules


def _scene_factory(modules: List[object]) -> Optional[SceneFactory]:
    factory = None
    for module in modules:
        candidate = getattr(module, "build_scene", None)
        if callable(candidate):
            factory = candidate
    return factory


def _handle_run(args: argparse.Namespace, registry: ScenarioRegistry, runtime_cfg: RuntimeConfig) -> int:
    modules = _import_modules(args.module)
    if modules is None:
        return EXIT_INVALID
    settings = _load_settings(args.settings, runtime_cfg)
    paths = build_paths(settings, output_dir=args.output_dir, data_dir=args.data_dir)
    host = HeadlessHost(_scene_factory(modules), batch_mode=not args.interactive, data_dir=paths.data_dir)
    runtime = ScenarioRuntime(host, settings, fixture_root=paths.fixture_root)
    launcher = ScenarioLauncher(host, registry, runtime)
    orchestrator = RunOrchestrator(
        host,
        registry,
        settings,
        paths,
        scenario_filter=args.scenario,
        flake_tracker=FlakeTracker(paths.flake_stats),
    )
    try:
        exit_code = orchestrator.run()
    except ScenarioValidationError as exc:
        logger.error("Scenario validation failed: %s", exc)
        return EXIT_INVALID
    except KeyboardInterrupt:
        logger.warning("Interrupted; stopping run")
        runtime.request_stop()
        orchestrator.abort("Run stopped by operator")
        logger.info("Results written to %s", paths.output_dir)
        return EXIT_FAILED
    finally:
        launcher.close()
        host.shutdown()
    logger.info("Results written to %s", paths.output_dir)
    return exit_code


def _handle_list(args: argparse.Namespace, registry: ScenarioRegistry) -> int:
    if _import_modules(args.module) is None:
        return EXIT_INVALID
    try:
        descriptors = validate_descriptors(registry.descriptors())
    except ScenarioValidationError as exc:
        logger.error("Scenario validation failed: %s", exc)
        return EXIT_INVALID
    if not descriptors:
        print("No scenarios registered.", file=sys.stderr)
        return EXIT_FAILED
    for descriptor in descriptors:
        tags = ",".join(descriptor.tags)
        timeout = f"{descriptor.timeout:g}s" if descriptor.timeout else "default"
        print(
            f"{descriptor.scenario_id}\t{descriptor.name}\tseverity={descriptor.severity.value}"
            f"\ttimeout={timeout}\ttags={tags}"
        )
    return EXIT_OK


def _load_settings(settings_path: Optional[Path], runtime_cfg: RuntimeConfig) -> RunnerSettings:
    path = settings_path or Path.cwd() / SETTINGS_FILENAME
    settings = RunnerSettings.load(path)
    runtime_cfg.apply_to_settings(settings)
    return settings


if __name__ == "__main__":
    sys.exit(main())
