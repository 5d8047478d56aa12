"""Runtime configuration for the reconciler.

Reads directory locations and reconciliation policy from CLI args,
environment variables, .env files, and YAML config file fallbacks.

Precedence (highest to lowest):
    CLI args > Environment variables > .env file > YAML config > Built-in defaults

Environment variables:
    POOLMAN_FILAMENT_DIR: Slicer filament profile directory
        (default: OrcaSlicer's ``user/default/filament`` for the platform)
    POOLMAN_POOL_DIR: Pool document directory
        (default: ~/.local/share/poolman/pool)
    POOLMAN_DEBUG: Enable debug logging (optional, default: false)
    POOLMAN_DEBOUNCE: Per-path debounce in seconds (optional, default: 0.5)
    POOLMAN_POLL_INTERVAL: Directory scan interval in seconds
        (optional, default: 1.0)
    POOLMAN_MAX_PARALLEL: Max concurrent reconciliation passes
        (optional, default: 4)
"""

import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path

from .config_schema import UnifiedConfig
from .file_handler import validate_directory
from .sync.codec import DEFAULT_RECONCILABLE_FIELDS
from .sync.models import EngineSettings

logger = logging.getLogger(__name__)

_DRY_RUN_POLICIES = ("persist", "clear")


def default_filament_dir() -> Path:
    """Return OrcaSlicer's user filament directory for this platform."""
    if sys.platform == "win32":
        base = Path(os.environ.get("APPDATA", Path.home() / "AppData" / "Roaming"))
    elif sys.platform == "darwin":
        base = Path.home() / "Library" / "Application Support"
    else:
        base = Path(os.environ.get("XDG_CONFIG_HOME") or Path.home() / ".config")
    return base / "OrcaSlicer" / "user" / "default" / "filament"


def default_pool_dir() -> Path:
    """Return the default pool document directory."""
    base = Path(
        os.environ.get("XDG_DATA_HOME") or Path.home() / ".local" / "share"
    )
    return base / "poolman" / "pool"


@dataclass
class Config:
    filament_dir: str
    pool_dir: str
    debug: bool = False
    debounce_seconds: float = 0.5
    quiet_window_seconds: float = 2.0
    poll_interval: float = 1.0
    max_parallel_passes: int = 4
    reconcilable_fields: tuple[str, ...] = DEFAULT_RECONCILABLE_FIELDS
    dry_run_policy: str = "persist"
    clear_force_flags: bool = True
    debug_history_limit: int | None = None

    def engine_settings(self) -> EngineSettings:
        return EngineSettings(
            dry_run_policy=self.dry_run_policy,
            clear_force_flags=self.clear_force_flags,
            debug_history_limit=self.debug_history_limit,
        )


def validate_config(config: Config, require_filament_dir: bool = False) -> None:
    """Validate configuration values and raise ValueError if invalid.

    Args:
        config: Config instance to validate.
        require_filament_dir: Also require the filament directory to exist
            (the watcher needs it, one-shot runs on explicit paths do not).

    Raises:
        ValueError: If a value is out of range or a required directory is
            missing.
    """
    config.filament_dir = str(Path(config.filament_dir).expanduser())
    config.pool_dir = str(Path(config.pool_dir).expanduser())

    for name in ("debounce_seconds", "poll_interval"):
        if getattr(config, name) <= 0:
            raise ValueError(
                f"Invalid {name} '{getattr(config, name)}': must be a positive number"
            )
    if config.quiet_window_seconds < 0:
        raise ValueError(
            f"Invalid quiet_window_seconds '{config.quiet_window_seconds}': "
            "must not be negative"
        )
    if not (1 <= config.max_parallel_passes <= 64):
        raise ValueError(
            f"Invalid max_parallel_passes '{config.max_parallel_passes}': "
            "must be a number between 1 and 64"
        )
    if config.dry_run_policy not in _DRY_RUN_POLICIES:
        raise ValueError(
            f"Invalid dry_run_policy '{config.dry_run_policy}': "
            f"must be one of {', '.join(_DRY_RUN_POLICIES)}"
        )
    if not config.reconcilable_fields:
        raise ValueError("reconcilable_fields cannot be empty")

    if require_filament_dir:
        try:
            validate_directory(config.filament_dir)
        except ValueError as exc:
            raise ValueError(
                f"{exc}. Set POOLMAN_FILAMENT_DIR, pass --filament-dir, "
                "or add 'filament_dir' to config.yml."
            ) from None


def _get_bool_env(key: str) -> bool | None:
    """Return True/False from env var, or None if unset."""
    val = os.getenv(key)
    if val is None:
        return None
    return val.lower() in ("true", "1", "yes", "on")


def _get_number_env(key: str, cast: type) -> float | int | None:
    raw = os.getenv(key)
    if raw is None:
        return None
    try:
        return cast(raw)
    except ValueError:
        raise ValueError(f"Invalid {key} '{raw}': must be a number") from None


def load_config(
    filament_dir: str | None = None,
    pool_dir: str | None = None,
    debug: bool = False,
    unified: UnifiedConfig | None = None,
    require_filament_dir: bool = False,
) -> Config:
    """Load configuration with unified precedence.

    Resolution order for each field (highest to lowest):
        CLI arg > env var / .env > YAML (``unified``) > built-in default

    The caller is responsible for calling ``load_dotenv()`` before this
    function so that .env values are available via ``os.getenv()``.

    Args:
        filament_dir: Override filament directory (CLI).
        pool_dir: Override pool directory (CLI).
        debug: Enable debug logging (CLI flag).
        unified: Config built from YAML files; defaults when omitted.
        require_filament_dir: Passed through to ``validate_config()``.

    Returns:
        Validated Config instance.

    Raises:
        ValueError: If a value is invalid after checking all sources.
    """
    unified = unified or UnifiedConfig()
    paths = unified.poolman
    sync = unified.sync

    # --- Paths: CLI > env > YAML > platform default ---

    final_filament_dir = (
        filament_dir
        or os.getenv("POOLMAN_FILAMENT_DIR")
        or paths.filament_dir
        or str(default_filament_dir())
    )
    final_pool_dir = (
        pool_dir
        or os.getenv("POOLMAN_POOL_DIR")
        or paths.pool_dir
        or str(default_pool_dir())
    )

    # --- Boolean fields: CLI > env > YAML > default ---

    if debug:
        final_debug = True
    else:
        env_debug = _get_bool_env("POOLMAN_DEBUG")
        final_debug = env_debug if env_debug is not None else paths.debug

    # --- Numeric fields: env > YAML > default ---

    env_debounce = _get_number_env("POOLMAN_DEBOUNCE", float)
    env_poll = _get_number_env("POOLMAN_POLL_INTERVAL", float)
    env_parallel = _get_number_env("POOLMAN_MAX_PARALLEL", int)

    config = Config(
        filament_dir=final_filament_dir,
        pool_dir=final_pool_dir,
        debug=final_debug,
        debounce_seconds=(
            env_debounce if env_debounce is not None else sync.debounce_seconds
        ),
        quiet_window_seconds=sync.quiet_window_seconds,
        poll_interval=env_poll if env_poll is not None else sync.poll_interval,
        max_parallel_passes=(
            env_parallel
            if env_parallel is not None
            else sync.max_parallel_passes
        ),
        reconcilable_fields=tuple(sync.reconcilable_fields),
        dry_run_policy=sync.dry_run_policy,
        clear_force_flags=sync.clear_force_flags,
        debug_history_limit=sync.debug_history_limit,
    )

    validate_config(config, require_filament_dir=require_filament_dir)

    return config
