"""Unified configuration schema for poolman.

Defines Pydantic models for the unified config structure with dedicated
sections for paths, reconciliation policy and logging.

Usage:
    from poolman.config_schema import UnifiedConfig, build_config

    raw = load_hierarchical_config()
    unified = build_config(raw)
"""

from __future__ import annotations

import logging
from typing import Literal

from pydantic import BaseModel, Field

from .sync.codec import DEFAULT_RECONCILABLE_FIELDS

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Section models
# ---------------------------------------------------------------------------


class PoolmanConfig(BaseModel):
    """Filesystem locations.

    All fields are optional to support zero-config: env vars and CLI args
    can supply them at runtime, and platform defaults fill the rest.
    """

    filament_dir: str | None = Field(
        default=None, description="Slicer filament profile directory"
    )
    pool_dir: str | None = Field(
        default=None, description="Directory of pool documents"
    )
    debug: bool = Field(default=False, description="Enable debug mode")

    model_config = {"frozen": True}


class SyncConfig(BaseModel):
    """Reconciliation and watcher policy."""

    reconcilable_fields: list[str] = Field(
        default_factory=lambda: list(DEFAULT_RECONCILABLE_FIELDS),
        min_length=1,
        description="Profile keys subject to the merge policy",
    )
    debounce_seconds: float = Field(
        default=0.5,
        gt=0,
        description="Per-path event coalescing window",
    )
    quiet_window_seconds: float = Field(
        default=2.0,
        ge=0,
        description="How long self-authored writes are ignored",
    )
    poll_interval: float = Field(
        default=1.0,
        gt=0,
        description="Seconds between filament directory scans",
    )
    max_parallel_passes: int = Field(
        default=4,
        ge=1,
        le=64,
        description="Maximum concurrent reconciliation passes (1-64)",
    )
    dry_run_policy: Literal["persist", "clear"] = Field(
        default="persist",
        description="Keep or reset 'dry_run' after a preview",
    )
    clear_force_flags: bool = Field(
        default=True,
        description="Reset force_push/force_pull after an applied pass",
    )
    debug_history_limit: int | None = Field(
        default=None,
        ge=1,
        description="Keep only the newest N debug entries",
    )

    model_config = {"frozen": True}


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        file: Optional log file path.
    """

    level: str = Field(default="INFO", description="Log level")
    file: str | None = Field(default=None, description="Log file path")

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Top-level unified config
# ---------------------------------------------------------------------------


class UnifiedConfig(BaseModel):
    """Top-level unified configuration.

    Every section has sensible defaults, so ``UnifiedConfig()``
    (zero-config) is always valid.
    """

    poolman: PoolmanConfig = Field(default_factory=PoolmanConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"frozen": True}


def build_config(raw_data: dict) -> UnifiedConfig:
    """Construct a ``UnifiedConfig`` from the raw dict returned by
    ``load_hierarchical_config()``.

    Missing sections get defaults.

    Args:
        raw_data: Merged configuration dictionary.

    Returns:
        Validated ``UnifiedConfig`` instance.

    Raises:
        pydantic.ValidationError: If a value is out of range.
    """
    if not raw_data:
        return UnifiedConfig()

    return UnifiedConfig(**raw_data)
