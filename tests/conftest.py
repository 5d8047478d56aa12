"""Shared pytest fixtures for poolman tests."""

import json
from pathlib import Path

import pytest

from poolman.sync.engine import ReconciliationEngine
from poolman.sync.models import (
    FilamentRecord,
    LocalProfile,
    PoolRecord,
    ReconciliationNotes,
)
from poolman.sync.state import InMemoryPoolStore

PASS_TIME = 1000


def make_profile_dict(
    name: str = "PLA Red @Voron",
    notes: dict | None = None,
    **fields,
) -> dict:
    """Build a slicer-style profile document.

    Scalars are wrapped in one-element arrays like the slicer does.
    """
    data: dict = {
        "filament_settings_id": [name],
        "name": name,
        "from": "User",
        "inherits": "Generic PLA @System",
        "filament_vendor": ["Generic"],
        "filament_type": ["PLA"],
        "default_filament_colour": ["#FF0000"],
    }
    for key, value in fields.items():
        data[key] = value
    if notes is not None:
        data["filament_notes"] = [json.dumps(notes)]
    return data


@pytest.fixture
def profile_bytes():
    """Factory fixture returning encoded profile documents."""

    def _create(**kwargs) -> bytes:
        return (json.dumps(make_profile_dict(**kwargs), indent=4) + "\n").encode(
            "utf-8"
        )

    return _create


@pytest.fixture
def write_profile(tmp_path: Path, profile_bytes):
    """Factory fixture writing a profile into ``tmp_path / 'filament'``."""
    filament_dir = tmp_path / "filament"
    filament_dir.mkdir(exist_ok=True)

    def _write(filename: str = "PLA Red @Voron.json", **kwargs) -> Path:
        path = filament_dir / filename
        path.write_bytes(profile_bytes(**kwargs))
        return path

    return _write


@pytest.fixture
def engine() -> ReconciliationEngine:
    """Engine with a fixed clock."""
    return ReconciliationEngine(clock=lambda: PASS_TIME)


def make_profile(
    name: str | None = "PLA Red @Voron",
    fields: dict[str, str | None] | None = None,
    static: dict | None = None,
    **notes,
) -> LocalProfile:
    """Build a decoded ``LocalProfile`` directly."""
    return LocalProfile(
        id=name,
        name=name,
        static_fields=static if static is not None else {"filament_vendor": ["Generic"]},
        reconcilable_fields=fields or {},
        notes=ReconciliationNotes(**notes),
    )


def make_store(
    printer_id: str | None = None,
    fields: dict[str, str | None] | None = None,
    last_modified: int | None = None,
    overrides: dict[str, str] | None = None,
    pool_id: int | None = None,
) -> InMemoryPoolStore:
    """Build an in-memory pool store holding at most one printer record."""
    record = PoolRecord(overrides=overrides or {})
    if printer_id is not None:
        record.printers[printer_id] = FilamentRecord(
            fields=fields or {}, last_modified=last_modified
        )
    return InMemoryPoolStore(record, pool_id=pool_id)


@pytest.fixture
def profile_factory():
    """Factory fixture for decoded profiles (see ``make_profile``)."""
    return make_profile


@pytest.fixture
def store_factory():
    """Factory fixture for in-memory pool stores (see ``make_store``)."""
    return make_store
