"""Pydantic models for the reconciliation engine.

Defines the data contracts shared by the codec, resolver, merge policy,
engine and service:

- ``LocalProfile``: one slicer filament file, split into static and
  reconcilable fields plus the embedded ``ReconciliationNotes``.
- ``ReconciliationNotes``: the sync-state blob stored inside the profile.
- ``ReconciliationStatus``: outcome of the last reconciliation pass.
- ``FilamentRecord`` / ``PoolRecord``: pool-side state per printer.
- ``FieldMerge``: result of merging one field.
- ``ReconciliationOutcome``: result of one engine pass.
- ``PassResult`` / ``RunReport``: file-level results of the service.

Result types are frozen.  ``LocalProfile`` and ``ReconciliationNotes`` are
mutable; the engine only ever mutates deep copies of them.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field


class StatusKind(str, Enum):
    """Terminal state of one reconciliation pass."""

    UPDATE_SPOOLMAN = "UpdateSpoolman"
    UPDATED_LOCAL = "UpdatedLocal"
    UPDATED_BOTH = "UpdatedBoth"
    NOOP = "Noop"


class Destination(str, Enum):
    """Which side(s) a merge result must be written to."""

    NONE = "none"
    LOCAL = "local"
    REMOTE = "remote"
    BOTH = "both"

    @property
    def touches_local(self) -> bool:
        return self in (Destination.LOCAL, Destination.BOTH)

    @property
    def touches_remote(self) -> bool:
        return self in (Destination.REMOTE, Destination.BOTH)


class ReconciliationStatus(BaseModel):
    """Last reconciliation outcome, kept for observability only.

    Attributes:
        kind: The status variant.
        local_reason: Why the local profile changed (``UpdatedLocal`` and
            ``UpdatedBoth``).
        remote_reason: Why the pool record changed (``UpdateSpoolman`` and
            ``UpdatedBoth``).
    """

    kind: StatusKind = StatusKind.NOOP
    local_reason: str | None = None
    remote_reason: str | None = None

    model_config = {"frozen": True}

    @classmethod
    def noop(cls) -> ReconciliationStatus:
        return cls()

    @classmethod
    def update_spoolman(cls, reason: str) -> ReconciliationStatus:
        return cls(kind=StatusKind.UPDATE_SPOOLMAN, remote_reason=reason)

    @classmethod
    def updated_local(cls, reason: str) -> ReconciliationStatus:
        return cls(kind=StatusKind.UPDATED_LOCAL, local_reason=reason)

    @classmethod
    def updated_both(
        cls, local_reason: str, remote_reason: str
    ) -> ReconciliationStatus:
        return cls(
            kind=StatusKind.UPDATED_BOTH,
            local_reason=local_reason,
            remote_reason=remote_reason,
        )

    def describe(self) -> str:
        """One-line summary used for ``debug`` entries and reports."""
        if self.kind == StatusKind.UPDATE_SPOOLMAN:
            return f"UpdateSpoolman({self.remote_reason})"
        if self.kind == StatusKind.UPDATED_LOCAL:
            return f"UpdatedLocal({self.local_reason})"
        if self.kind == StatusKind.UPDATED_BOTH:
            return (
                f"UpdatedBoth(local: {self.local_reason}; "
                f"remote: {self.remote_reason})"
            )
        return "Noop"


class DebugEntry(BaseModel):
    """One line of the append-only ``debug`` log."""

    timestamp: int
    message: str

    model_config = {"frozen": True}


class ReconciliationNotes(BaseModel):
    """Sync state embedded in a local profile.

    Attributes:
        pool_id: Pool document this profile is linked to; ``None`` until the
            first successful pass links it.
        printer_id: Explicit printer identity; overrides name-based
            resolution.
        force_push: One-shot override: the pool adopts local values.
        force_pull: One-shot override: the profile adopts pool values.
        dry_run: Compute the outcome into ``desired_*`` without applying it.
        last_modified: Logical timestamp of the last write of reconcilable
            fields; ``None`` sorts older than any timestamp.
        status: Outcome of the last pass that wrote this profile.
        desired_local: Dry-run preview of the profile's reconcilable fields.
        desired_remote: Dry-run preview of the pool record's fields.
        debug: Append-only audit log.
        errors: Append-only error log.  Non-empty seals the profile.
    """

    pool_id: int | None = Field(default=None, ge=0)
    printer_id: str | None = None
    force_push: bool | None = None
    force_pull: bool | None = None
    dry_run: bool | None = None
    last_modified: int | None = Field(default=None, ge=0)
    status: ReconciliationStatus = Field(
        default_factory=ReconciliationStatus
    )
    desired_local: dict[str, str] | None = None
    desired_remote: dict[str, str] | None = None
    debug: list[DebugEntry] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)

    # Unknown keys survive the write-back
    model_config = {"extra": "allow"}


class LocalProfile(BaseModel):
    """One slicer filament profile.

    Attributes:
        id: Display/settings id (``filament_settings_id``).
        name: Profile name.
        static_fields: Every field the engine must never alter, as raw JSON
            values in on-disk order.
        reconcilable_fields: Fields subject to the merge policy, unwrapped
            to a single string or ``None``.
        inherits: Parent profile reference, opaque to the engine.
        notes: Embedded sync state.
        key_order: On-disk key order, used to re-emit the file stably.
        wrapped_keys: Scalar keys (id, name, inherits) that were stored in
            one-element arrays on disk.
    """

    id: str | None = None
    name: str | None = None
    static_fields: dict[str, Any] = Field(default_factory=dict)
    reconcilable_fields: dict[str, str | None] = Field(default_factory=dict)
    inherits: str | None = None
    notes: ReconciliationNotes = Field(default_factory=ReconciliationNotes)
    key_order: list[str] = Field(default_factory=list)
    wrapped_keys: list[str] = Field(default_factory=list)

    @property
    def display_name(self) -> str:
        return self.name or self.id or "<unnamed profile>"


class FilamentRecord(BaseModel):
    """Pool-side mirror of a profile's reconcilable fields for one printer."""

    fields: dict[str, str | None] = Field(default_factory=dict)
    last_modified: int | None = Field(default=None, ge=0)

    model_config = {"frozen": True}


class PoolRecord(BaseModel):
    """One pool document: per-printer records plus static overrides."""

    printers: dict[str, FilamentRecord] = Field(default_factory=dict)
    overrides: dict[str, str] = Field(default_factory=dict)


class FieldMerge(BaseModel):
    """Result of applying the merge policy to one field.

    Attributes:
        field: Field name.
        value: Merged value (``None`` = unset).
        destination: Side(s) that must adopt ``value``.
        conflict: ``True`` when both sides held different values.
        local_reason: Audit text for the local side, if it changes.
        remote_reason: Audit text for the pool side, if it changes.
    """

    field: str
    value: str | None = None
    destination: Destination = Destination.NONE
    conflict: bool = False
    local_reason: str | None = None
    remote_reason: str | None = None

    model_config = {"frozen": True}


class EngineSettings(BaseModel):
    """Policies that shape a reconciliation pass.

    Attributes:
        dry_run_policy: ``"persist"`` keeps ``dry_run`` set after a preview,
            ``"clear"`` resets it.
        clear_force_flags: Reset ``force_push``/``force_pull`` after an
            applied pass.
        debug_history_limit: Keep only the newest N ``debug`` entries.
    """

    dry_run_policy: Literal["persist", "clear"] = "persist"
    clear_force_flags: bool = True
    debug_history_limit: int | None = Field(default=None, ge=1)

    model_config = {"frozen": True}


class ReconciliationOutcome(BaseModel):
    """Outcome of one engine pass over one profile.

    Attributes:
        printer_id: Resolved printer, or ``None`` if resolution failed.
        status: Computed status (hypothetical for dry runs).
        merges: Per-field merge results, sorted by field name.
        errors: Error entries appended during this pass.
        profile: The profile after the pass.
        record: The pool record after the pass (the unchanged current
            record for dry runs), ``None`` if the pool was never read.
        write_local: The profile differs from its pre-pass form.
        write_remote: The pool record must be written.
        dry_run: The pass was a preview.
        sealed: The pass was skipped because ``errors`` was non-empty.
        effective_static: Static fields with pool overrides layered on top.
    """

    printer_id: str | None = None
    status: ReconciliationStatus = Field(
        default_factory=ReconciliationStatus
    )
    merges: list[FieldMerge] = []
    errors: list[str] = []
    profile: LocalProfile
    record: FilamentRecord | None = None
    write_local: bool = False
    write_remote: bool = False
    dry_run: bool = False
    sealed: bool = False
    effective_static: dict[str, Any] = {}

    model_config = {"frozen": True}

    @property
    def changed_fields(self) -> list[str]:
        return [
            m.field
            for m in self.merges
            if m.destination != Destination.NONE
        ]


class PassAction(str, Enum):
    """What the service did with one file."""

    WRITTEN = "written"
    UNCHANGED = "unchanged"
    SEALED = "sealed"
    DECODE_FAILED = "decode_failed"
    POOL_UNAVAILABLE = "pool_unavailable"
    SUPERSEDED = "superseded"
    IGNORED = "ignored"
    FAILED = "failed"


class PassResult(BaseModel):
    """Result of reconciling one profile file.

    Attributes:
        path: Profile file path.
        action: What happened.
        outcome: Engine outcome, when the engine ran.
        wrote_local: The profile file was rewritten.
        wrote_remote: The pool record was written.
        error: Failure description for infrastructure errors.
    """

    path: str
    action: PassAction
    outcome: ReconciliationOutcome | None = None
    wrote_local: bool = False
    wrote_remote: bool = False
    error: str | None = None

    model_config = {"frozen": True}


class RunReport(BaseModel):
    """Aggregate results for a batch of profile files.

    Attributes:
        results: Individual pass results.
        started_at: ISO 8601 timestamp when the run started.
        completed_at: ISO 8601 timestamp when the run completed.
    """

    results: list[PassResult] = []
    started_at: str
    completed_at: str | None = None

    model_config = {"frozen": True}

    def _with_action(self, action: PassAction) -> list[PassResult]:
        return [r for r in self.results if r.action == action]

    @property
    def written(self) -> list[PassResult]:
        return self._with_action(PassAction.WRITTEN)

    @property
    def unchanged(self) -> list[PassResult]:
        return self._with_action(PassAction.UNCHANGED)

    @property
    def sealed(self) -> list[PassResult]:
        return self._with_action(PassAction.SEALED)

    @property
    def failed(self) -> list[PassResult]:
        """Results with infrastructure failures."""
        return [
            r
            for r in self.results
            if r.action
            in (
                PassAction.DECODE_FAILED,
                PassAction.POOL_UNAVAILABLE,
                PassAction.FAILED,
            )
        ]

    @property
    def errored(self) -> list[PassResult]:
        """Results whose pass appended entries to ``errors``."""
        return [
            r for r in self.results if r.outcome and r.outcome.errors
        ]

    def summary(self) -> str:
        """Format a human-readable summary of the run.

        Returns:
            Multi-line summary string with counts by action.
        """
        lines = [
            "Reconciliation report",
            f"  Written:     {len(self.written)}",
            f"  Unchanged:   {len(self.unchanged)}",
            f"  Sealed:      {len(self.sealed)}",
            f"  New errors:  {len(self.errored)}",
            f"  Failed:      {len(self.failed)}",
            f"  Total:       {len(self.results)}",
        ]
        return "\n".join(lines)
