"""Command-line entry point.

Commands:

* ``poolman watch`` -- reconcile every profile once, then keep watching the
  filament directory and reconcile each changed profile.
* ``poolman reconcile [PATH ...]`` -- one-shot pass over the given files or
  directories (the filament directory when none are given).
* ``poolman init-config`` -- write a starter ``.poolman/config.yml``.
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

from . import __version__
from .config import Config, load_config
from .config_loader import (
    discover_config_files,
    ensure_config,
    load_hierarchical_config,
)
from .config_schema import UnifiedConfig, build_config
from .core.async_utils import init_semaphore
from .file_handler import PROFILE_SUFFIX, is_profile_file
from .logger import setup_logging
from .sync.codec import ProfileCodec
from .sync.dispatcher import ChangeDispatcher, PollingChangeSource
from .sync.engine import ReconciliationEngine
from .sync.models import RunReport
from .sync.reporter import (
    format_dry_run_preview,
    format_run_report,
    report_to_json,
)
from .sync.service import ReconciliationService
from .sync.state import PoolDirectory

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="poolman",
        description="Keep slicer filament profiles in sync with the filament pool",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Watch the default OrcaSlicer filament directory
  poolman watch

  # One-shot pass over two profiles, machine-readable output
  poolman reconcile "PLA Red @Voron.json" "PETG @Prusa.json" --json

  # Use a different pool directory
  poolman --pool-dir ~/pool reconcile

Clear a profile's 'errors' list in its filament_notes to resume
reconciliation after a conflict or identity error.
        """,
    )
    parser.add_argument(
        "--filament-dir",
        help="Override filament profile directory (takes precedence over "
        "POOLMAN_FILAMENT_DIR and config files)",
    )
    parser.add_argument(
        "--pool-dir",
        help="Override pool document directory (takes precedence over "
        "POOLMAN_POOL_DIR and config files)",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--log-file",
        help="Also write logs to this file (watch default: /tmp/poolman.log)",
    )
    parser.add_argument(
        "--log-format",
        choices=["text", "json"],
        default="text",
        help="Log line format (default: text)",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"poolman version {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser(
        "watch", help="Reconcile all profiles, then watch for changes"
    )

    reconcile_parser = subparsers.add_parser(
        "reconcile", help="Reconcile profiles once and exit"
    )
    reconcile_parser.add_argument(
        "paths",
        nargs="*",
        type=Path,
        metavar="PATH",
        help="Profile files or directories (default: the filament directory)",
    )
    reconcile_parser.add_argument(
        "--json",
        action="store_true",
        help="Print the run report as JSON",
    )

    subparsers.add_parser(
        "init-config", help="Write a starter .poolman/config.yml"
    )
    return parser


# ---------------------------------------------------------------------------
# Setup
# ---------------------------------------------------------------------------


def load_runtime_config(
    args: argparse.Namespace, require_filament_dir: bool = False
) -> tuple[Config, UnifiedConfig]:
    """Load configuration with unified precedence.

    CLI args > env vars (.env loaded first) > YAML config > defaults

    Raises:
        ValueError: If the configuration is invalid.
    """
    # .env first so ${VAR} interpolation in YAML can use its values
    load_dotenv()

    unified = build_config(load_hierarchical_config())

    config = load_config(
        filament_dir=args.filament_dir,
        pool_dir=args.pool_dir,
        debug=args.debug,
        unified=unified,
        require_filament_dir=require_filament_dir,
    )
    return config, unified


def build_service(config: Config) -> ReconciliationService:
    return ReconciliationService(
        pool=PoolDirectory(Path(config.pool_dir)),
        engine=ReconciliationEngine(settings=config.engine_settings()),
        codec=ProfileCodec(config.reconcilable_fields),
    )


def _expand(paths: list[Path]) -> list[Path]:
    """Replace directories by the profile files they contain."""
    expanded: list[Path] = []
    for path in paths:
        if path.is_dir():
            expanded.extend(
                sorted(
                    p
                    for p in path.glob(f"*{PROFILE_SUFFIX}")
                    if is_profile_file(p)
                )
            )
        else:
            expanded.append(path)
    return expanded


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


async def watch(config: Config) -> None:
    """Reconcile every profile once, then reconcile changes until cancelled."""
    init_semaphore(config.max_parallel_passes)
    service = build_service(config)
    dispatcher = ChangeDispatcher(
        service,
        debounce=config.debounce_seconds,
        quiet_window=config.quiet_window_seconds,
    )
    source = PollingChangeSource(Path(config.filament_dir))
    logger.info(
        "Watching %s (pool: %s)", config.filament_dir, config.pool_dir
    )
    try:
        # The first scan reports every profile, which is the initial pass
        await dispatcher.run(source.changes(config.poll_interval))
    finally:
        await dispatcher.drain()


def reconcile(config: Config, paths: list[Path], as_json: bool) -> int:
    """Run one pass over *paths* and print the report.

    Returns:
        Process exit code: 1 if any file failed or gained errors.
    """
    targets = _expand(paths or [Path(config.filament_dir)])
    report = build_service(config).reconcile_paths(targets)

    if as_json:
        print(json.dumps(report_to_json(report), indent=2))
    else:
        _print_report(report)

    return 1 if report.failed or report.errored else 0


def _print_report(report: RunReport) -> None:
    for result in report.results:
        outcome = result.outcome
        if outcome and outcome.dry_run and not (outcome.errors or outcome.sealed):
            print(format_dry_run_preview(outcome))
            print()
    print(format_run_report(report))


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    if args.command == "init-config":
        setup_logging(mode="cli", debug=args.debug)
        path = ensure_config()
        print(f"Config file: {path}")
        return 0

    daemon = args.command == "watch"
    try:
        config, unified = load_runtime_config(
            args, require_filament_dir=daemon
        )
    except ValueError as e:
        print(f"ERROR: Configuration error: {e}", file=sys.stderr)
        return 2

    setup_logging(
        mode="daemon" if daemon else "cli",
        debug=config.debug,
        log_file=args.log_file or unified.logging.file,
        debug_format=args.log_format,
        level=unified.logging.level,
    )
    config_files = discover_config_files()
    logger.info(
        "Configuration loaded from: %s",
        config_files[0] if config_files else "defaults and environment",
    )

    if daemon:
        try:
            asyncio.run(watch(config))
        except KeyboardInterrupt:
            print("\nInterrupted.", file=sys.stderr)
        return 0

    return reconcile(config, args.paths, args.json)


def run() -> None:
    """Entry point that exits with the command's status code."""
    sys.exit(main())


if __name__ == "__main__":
    run()
