"""
YAML configuration files for poolman.

Files are discovered by convention, may pull in fragments with
``!include`` and may reference the environment with ``${VAR}`` or
``${VAR:-default}``.  Higher-precedence files replace whole top-level
sections (``poolman``, ``sync``, ``logging``) of lower ones.
"""

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml

from poolman.sync.codec import DEFAULT_RECONCILABLE_FIELDS

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "POOLMAN_CONFIG"
PROJECT_CONFIG_DIR = ".poolman"

# ${VAR} or ${VAR:-default}
_ENV_VAR_PATTERN = re.compile(r"\$\{([^}:]+?)(?::-(.*?))?\}")


def interpolate_env_vars(value: str) -> str:
    """Substitute ``${VAR}`` and ``${VAR:-default}`` in *value*.

    Unset variables become the default, or ``""`` without one.  A
    ``${`` that is never closed is left as is.
    """

    def _replace(match: re.Match) -> str:
        return os.environ.get(match.group(1)) or (match.group(2) or "")

    return _ENV_VAR_PATTERN.sub(_replace, value)


def _interpolate_recursive(obj: Any) -> Any:
    if isinstance(obj, str):
        return interpolate_env_vars(obj)
    if isinstance(obj, dict):
        return {k: _interpolate_recursive(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_interpolate_recursive(item) for item in obj]
    return obj


# ---------------------------------------------------------------------------
# !include
# ---------------------------------------------------------------------------


class ConfigLoader(yaml.SafeLoader):
    """``SafeLoader`` that understands ``!include <path>``.

    Relative paths are resolved against the including file.
    """

    include_stack: tuple[Path, ...] = ()


def _include_constructor(loader: ConfigLoader, node: yaml.ScalarNode) -> Any:
    target = Path(loader.construct_scalar(node))
    source = Path(loader.name).resolve()
    if not target.is_absolute():
        target = source.parent / target
    target = target.resolve()

    if target in loader.include_stack:
        chain = " -> ".join(str(p) for p in (*loader.include_stack, target))
        raise ValueError(f"Circular include detected: {chain}")
    if not target.exists():
        raise FileNotFoundError(
            f"Include file not found: {target} (referenced from {source})"
        )
    return _load_yaml_with_includes(target, (*loader.include_stack, target))


ConfigLoader.add_constructor("!include", _include_constructor)


def _load_yaml_with_includes(
    path: Path, include_stack: tuple[Path, ...] | None = None
) -> Any:
    path = path.resolve()
    with open(path, "r", encoding="utf-8") as fh:
        loader = ConfigLoader(fh)
        loader.include_stack = include_stack or (path,)
        try:
            return loader.get_single_data()
        finally:
            loader.dispose()


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------


def discover_config_files() -> list[Path]:
    """Return existing config files, highest precedence first.

    1. ``$POOLMAN_CONFIG``
    2. ``./.poolman/config.yml``
    3. ``./.poolman/config.yaml``
    4. ``~/.config/poolman/config.yml``
    """
    candidates: list[Path] = []
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        candidates.append(Path(env_path).expanduser().resolve())
    project = Path.cwd() / PROJECT_CONFIG_DIR
    candidates += [project / "config.yml", project / "config.yaml"]
    candidates.append(Path.home() / ".config" / "poolman" / "config.yml")
    return [p for p in candidates if p.exists()]


def _starter_config() -> str:
    fields = "\n".join(
        f"#     - {name}" for name in DEFAULT_RECONCILABLE_FIELDS
    )
    return f"""\
# poolman configuration
#
# Paths can also be set via environment variables:
#   POOLMAN_FILAMENT_DIR, POOLMAN_POOL_DIR
#
# poolman:
#   filament_dir: ~/.config/OrcaSlicer/user/default/filament
#   pool_dir: ~/.local/share/poolman/pool
#   debug: false
#
# sync:
#   debounce_seconds: 0.5
#   quiet_window_seconds: 2.0
#   poll_interval: 1.0
#   max_parallel_passes: 4
#   dry_run_policy: persist      # persist | clear
#   clear_force_flags: true
#   debug_history_limit: null
#   reconcilable_fields:
{fields}
#
# logging:
#   level: INFO
#   file: null
"""


def ensure_config(target: Path | None = None) -> Path:
    """Return the config file in use, writing a starter file if none exists.

    Args:
        target: Where to create the starter file; defaults to
            ``./.poolman/config.yml``.  Ignored when a config file is
            already discovered.
    """
    existing = discover_config_files()
    if existing:
        logger.debug("Config file already exists: %s", existing[0])
        return existing[0]

    config_path = target or Path.cwd() / PROJECT_CONFIG_DIR / "config.yml"
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(_starter_config(), encoding="utf-8")
    logger.info("Created starter config: %s", config_path)
    return config_path


# ---------------------------------------------------------------------------
# Merge
# ---------------------------------------------------------------------------


def load_hierarchical_config() -> dict[str, Any]:
    """Load every discovered file and merge them, highest precedence last.

    Returns an empty dict when no config file exists.

    Raises:
        yaml.YAMLError: If a file is not valid YAML.
        FileNotFoundError: If an ``!include`` target is missing.
        ValueError: On circular includes.
    """
    merged: dict[str, Any] = {}
    for path in reversed(discover_config_files()):
        logger.debug("Loading config: %s", path)
        data = _load_yaml_with_includes(path)
        if isinstance(data, dict):
            merged.update(data)
        elif data is not None:
            logger.warning(
                "Config file %s has non-dict root (%s), skipping",
                path,
                type(data).__name__,
            )
    return _interpolate_recursive(merged)
