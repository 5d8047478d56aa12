"""Tests for poolman.config -- runtime config loading and validation.

NOT to be confused with test_config_loader.py (hierarchical YAML config)
or test_config_schema.py (Pydantic models). This tests the bootstrap path:
validate_config() and load_config().
"""

from pathlib import Path

import pytest

from poolman.config import (
    Config,
    default_filament_dir,
    default_pool_dir,
    load_config,
    validate_config,
)
from poolman.config_schema import PoolmanConfig, SyncConfig, UnifiedConfig
from poolman.sync.models import EngineSettings

_ENV_VARS = (
    "POOLMAN_FILAMENT_DIR",
    "POOLMAN_POOL_DIR",
    "POOLMAN_DEBUG",
    "POOLMAN_DEBOUNCE",
    "POOLMAN_POLL_INTERVAL",
    "POOLMAN_MAX_PARALLEL",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in _ENV_VARS:
        monkeypatch.delenv(key, raising=False)


def _config(tmp_path: Path, **kwargs) -> Config:
    return Config(
        filament_dir=str(tmp_path), pool_dir=str(tmp_path / "pool"), **kwargs
    )


# -------------------------------------------------------------------------
# Platform defaults
# -------------------------------------------------------------------------


class TestDefaults:
    """Tests for default_filament_dir() and default_pool_dir()."""

    def test_linux_filament_dir(self, monkeypatch, tmp_path):
        monkeypatch.setattr("poolman.config.sys.platform", "linux")
        monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path))
        assert default_filament_dir() == (
            tmp_path / "OrcaSlicer" / "user" / "default" / "filament"
        )

    def test_linux_without_xdg(self, monkeypatch, tmp_path):
        monkeypatch.setattr("poolman.config.sys.platform", "linux")
        monkeypatch.delenv("XDG_CONFIG_HOME", raising=False)
        monkeypatch.setenv("HOME", str(tmp_path))
        assert default_filament_dir() == (
            tmp_path / ".config" / "OrcaSlicer" / "user" / "default" / "filament"
        )

    def test_windows_filament_dir(self, monkeypatch, tmp_path):
        monkeypatch.setattr("poolman.config.sys.platform", "win32")
        monkeypatch.setenv("APPDATA", str(tmp_path))
        assert default_filament_dir() == (
            tmp_path / "OrcaSlicer" / "user" / "default" / "filament"
        )

    def test_macos_filament_dir(self, monkeypatch, tmp_path):
        monkeypatch.setattr("poolman.config.sys.platform", "darwin")
        monkeypatch.setenv("HOME", str(tmp_path))
        assert default_filament_dir() == (
            tmp_path
            / "Library"
            / "Application Support"
            / "OrcaSlicer"
            / "user"
            / "default"
            / "filament"
        )

    def test_pool_dir(self, monkeypatch, tmp_path):
        monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path))
        assert default_pool_dir() == tmp_path / "poolman" / "pool"


# -------------------------------------------------------------------------
# validate_config()
# -------------------------------------------------------------------------


class TestValidateConfig:
    """Tests for validate_config() range and directory checks."""

    def test_valid_config(self, tmp_path):
        validate_config(_config(tmp_path), require_filament_dir=True)

    def test_home_expanded(self, monkeypatch, tmp_path):
        monkeypatch.setenv("HOME", str(tmp_path))
        config = Config(filament_dir="~/filament", pool_dir="~/pool")
        validate_config(config)
        assert config.filament_dir == str(tmp_path / "filament")
        assert config.pool_dir == str(tmp_path / "pool")

    @pytest.mark.parametrize(
        "field,value,message",
        [
            ("debounce_seconds", 0, "positive"),
            ("poll_interval", -1.0, "positive"),
            ("quiet_window_seconds", -1.0, "negative"),
            ("max_parallel_passes", 0, "between 1 and 64"),
            ("max_parallel_passes", 65, "between 1 and 64"),
            ("dry_run_policy", "discard", "persist, clear"),
            ("reconcilable_fields", (), "cannot be empty"),
        ],
    )
    def test_invalid_values(self, tmp_path, field, value, message):
        config = _config(tmp_path, **{field: value})
        with pytest.raises(ValueError, match=message):
            validate_config(config)

    def test_missing_filament_dir_only_when_required(self, tmp_path):
        config = Config(
            filament_dir=str(tmp_path / "missing"), pool_dir=str(tmp_path)
        )
        validate_config(config)
        with pytest.raises(ValueError, match="POOLMAN_FILAMENT_DIR"):
            validate_config(config, require_filament_dir=True)

    def test_engine_settings(self, tmp_path):
        config = _config(
            tmp_path,
            dry_run_policy="clear",
            clear_force_flags=False,
            debug_history_limit=10,
        )
        assert config.engine_settings() == EngineSettings(
            dry_run_policy="clear",
            clear_force_flags=False,
            debug_history_limit=10,
        )


# -------------------------------------------------------------------------
# load_config()
# -------------------------------------------------------------------------


class TestLoadConfig:
    """Tests for load_config() precedence: CLI > env > YAML > default."""

    def test_defaults(self, monkeypatch, tmp_path):
        monkeypatch.setattr(
            "poolman.config.default_filament_dir", lambda: tmp_path / "f"
        )
        monkeypatch.setattr(
            "poolman.config.default_pool_dir", lambda: tmp_path / "p"
        )
        config = load_config()
        assert config.filament_dir == str(tmp_path / "f")
        assert config.pool_dir == str(tmp_path / "p")
        assert config.debug is False
        assert config.max_parallel_passes == 4

    def test_env_vars(self, monkeypatch, tmp_path):
        monkeypatch.setenv("POOLMAN_FILAMENT_DIR", str(tmp_path / "env-f"))
        monkeypatch.setenv("POOLMAN_POOL_DIR", str(tmp_path / "env-p"))
        monkeypatch.setenv("POOLMAN_DEBUG", "yes")
        monkeypatch.setenv("POOLMAN_DEBOUNCE", "1.5")
        monkeypatch.setenv("POOLMAN_POLL_INTERVAL", "3")
        monkeypatch.setenv("POOLMAN_MAX_PARALLEL", "8")

        config = load_config()

        assert config.filament_dir == str(tmp_path / "env-f")
        assert config.pool_dir == str(tmp_path / "env-p")
        assert config.debug is True
        assert config.debounce_seconds == 1.5
        assert config.poll_interval == 3.0
        assert config.max_parallel_passes == 8

    def test_yaml_fallback(self, tmp_path):
        unified = UnifiedConfig(
            poolman=PoolmanConfig(
                filament_dir=str(tmp_path / "yaml-f"),
                pool_dir=str(tmp_path / "yaml-p"),
                debug=True,
            ),
            sync=SyncConfig(
                debounce_seconds=0.25,
                reconcilable_fields=["nozzle_temperature"],
                dry_run_policy="clear",
            ),
        )

        config = load_config(unified=unified)

        assert config.filament_dir == str(tmp_path / "yaml-f")
        assert config.debug is True
        assert config.debounce_seconds == 0.25
        assert config.reconcilable_fields == ("nozzle_temperature",)
        assert config.dry_run_policy == "clear"

    def test_env_overrides_yaml(self, monkeypatch, tmp_path):
        monkeypatch.setenv("POOLMAN_POOL_DIR", str(tmp_path / "env-p"))
        monkeypatch.setenv("POOLMAN_DEBUG", "false")
        monkeypatch.setenv("POOLMAN_MAX_PARALLEL", "2")
        unified = UnifiedConfig(
            poolman=PoolmanConfig(pool_dir=str(tmp_path / "yaml-p"), debug=True),
            sync=SyncConfig(max_parallel_passes=16),
        )

        config = load_config(unified=unified)

        assert config.pool_dir == str(tmp_path / "env-p")
        assert config.debug is False
        assert config.max_parallel_passes == 2

    def test_cli_overrides_env(self, monkeypatch, tmp_path):
        monkeypatch.setenv("POOLMAN_FILAMENT_DIR", str(tmp_path / "env-f"))
        monkeypatch.setenv("POOLMAN_DEBUG", "0")

        config = load_config(filament_dir=str(tmp_path / "cli-f"), debug=True)

        assert config.filament_dir == str(tmp_path / "cli-f")
        assert config.debug is True

    def test_non_numeric_env_raises(self, monkeypatch):
        monkeypatch.setenv("POOLMAN_MAX_PARALLEL", "many")
        with pytest.raises(ValueError, match="POOLMAN_MAX_PARALLEL"):
            load_config()

    def test_out_of_range_env_raises(self, monkeypatch):
        monkeypatch.setenv("POOLMAN_DEBOUNCE", "0")
        with pytest.raises(ValueError, match="debounce_seconds"):
            load_config()

    def test_require_filament_dir(self, tmp_path):
        with pytest.raises(ValueError, match="Directory not found"):
            load_config(
                filament_dir=str(tmp_path / "missing"),
                require_filament_dir=True,
            )
