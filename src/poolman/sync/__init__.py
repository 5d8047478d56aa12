"""Filament profile reconciliation engine.

Public API for keeping slicer filament profiles in step with the filament
pool.

Architecture
------------
Each profile file embeds its own sync state (``filament_notes``).  A pass
decodes the file, resolves the printer it belongs to, merges every
reconcilable field against the pool record for that printer and writes
back only what actually changed.  Data problems are recorded in the
profile's ``errors`` log and seal it until a human clears them.

Modules:

- ``codec``      -- ``ProfileCodec``: bytes <-> ``LocalProfile``.
- ``resolver``   -- ``resolve_printer``: printer identity of a profile.
- ``merger``     -- ``merge_field``: per-field merge policy.
- ``engine``     -- ``ReconciliationEngine``: one profile, one pass.
- ``state``      -- ``PoolStore`` implementations, ``PoolDirectory``,
  ``PrinterLocks``.
- ``service``    -- ``ReconciliationService``: file-level passes with
  idempotence and supersession guards.
- ``dispatcher`` -- ``ChangeDispatcher``, ``PollingChangeSource``.
- ``models``     -- data contracts.
- ``reporter``   -- human-readable and JSON report formatting.

Usage example
-------------
::

    from pathlib import Path
    from poolman.sync import (
        PoolDirectory,
        ReconciliationService,
        format_run_report,
    )

    service = ReconciliationService(PoolDirectory(Path("pool")))
    report = service.reconcile_paths(Path("filament").glob("*.json"))
    print(format_run_report(report))
"""

from .codec import ProfileCodec, decode, encode
from .dispatcher import ChangeDispatcher, PollingChangeSource
from .engine import ReconciliationEngine
from .errors import (
    AmbiguousPrinter,
    ConflictUnresolvable,
    DecodeError,
    ForceFlagConflict,
    NoPrinter,
    PoolmanError,
    PoolUnavailable,
    ReconciliationError,
    ResolutionError,
)
from .merger import aggregate_status, merge_field
from .models import (
    EngineSettings,
    FilamentRecord,
    LocalProfile,
    PassAction,
    PassResult,
    PoolRecord,
    ReconciliationNotes,
    ReconciliationOutcome,
    ReconciliationStatus,
    RunReport,
    StatusKind,
)
from .reporter import (
    format_dry_run_preview,
    format_outcome,
    format_run_report,
    report_to_json,
)
from .resolver import resolve_printer
from .service import ReconciliationService
from .state import InMemoryPoolStore, JsonPoolStore, PoolDirectory, PrinterLocks

__all__ = [
    "AmbiguousPrinter",
    "ChangeDispatcher",
    "ConflictUnresolvable",
    "DecodeError",
    "EngineSettings",
    "FilamentRecord",
    "ForceFlagConflict",
    "InMemoryPoolStore",
    "JsonPoolStore",
    "LocalProfile",
    "NoPrinter",
    "PassAction",
    "PassResult",
    "PollingChangeSource",
    "PoolDirectory",
    "PoolRecord",
    "PoolUnavailable",
    "PoolmanError",
    "PrinterLocks",
    "ProfileCodec",
    "ReconciliationEngine",
    "ReconciliationError",
    "ReconciliationNotes",
    "ReconciliationOutcome",
    "ReconciliationService",
    "ReconciliationStatus",
    "ResolutionError",
    "RunReport",
    "StatusKind",
    "aggregate_status",
    "decode",
    "encode",
    "format_dry_run_preview",
    "format_outcome",
    "format_run_report",
    "merge_field",
    "report_to_json",
    "resolve_printer",
]
