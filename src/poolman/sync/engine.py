"""Reconciliation engine: one profile against one pool document.

``ReconciliationEngine.reconcile`` is the orchestrator.  It:

1. Returns immediately, untouched, if the profile's ``errors`` is non-empty.
2. Resolves the printer id; failures are appended to ``errors``.
3. Loads the pool record for that printer (empty if absent) and overrides.
4. Runs the merge policy for every reconcilable field not shadowed by a
   static field or pool override.
5. Aggregates the per-field destinations into one status.
6. Dry run: writes the would-be values to ``desired_local`` /
   ``desired_remote`` and the hypothetical status; applies nothing.
7. Otherwise: applies merged values to copies of the profile and record,
   resets one-shot force flags, advances ``last_modified`` on both sides and
   appends one ``debug`` entry.
8. Reports whether either side actually differs from its pre-pass form.

The engine reads from the pool store but never writes to it: committing
the outcome is the caller's job, so a superseded pass can be dropped
without side effects.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable

from poolman.sync.errors import (
    ConflictUnresolvable,
    ForceFlagConflict,
    ReconciliationError,
    ResolutionError,
)
from poolman.sync.merger import ForceDirection, aggregate_status, merge_field
from poolman.sync.models import (
    DebugEntry,
    EngineSettings,
    FieldMerge,
    FilamentRecord,
    LocalProfile,
    ReconciliationNotes,
    ReconciliationOutcome,
    ReconciliationStatus,
    StatusKind,
)
from poolman.sync.resolver import resolve_printer
from poolman.sync.state import PoolStore

logger = logging.getLogger(__name__)


class ReconciliationEngine:
    """Reconcile local filament profiles with pool records.

    Args:
        settings: Dry-run, force-flag and audit-log policies.
        clock: Returns the current time in seconds; used as the logical
            pass time.
    """

    def __init__(
        self,
        settings: EngineSettings | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.settings = settings or EngineSettings()
        self.clock = clock

    # ------------------------------------------------------------------
    # Main entry point
    # ------------------------------------------------------------------

    def reconcile(
        self, profile: LocalProfile, store: PoolStore
    ) -> ReconciliationOutcome:
        """Run one reconciliation pass.

        Args:
            profile: The freshly decoded local profile.  Never mutated.
            store: The pool document the profile is (or will be) linked to.

        Returns:
            The outcome, carrying the post-pass profile and record.

        Raises:
            PoolUnavailable: If the store cannot be read.
        """
        if profile.notes.errors:
            logger.debug(
                "Skipping %s: %d unresolved error(s)",
                profile.display_name,
                len(profile.notes.errors),
            )
            return ReconciliationOutcome(
                status=profile.notes.status,
                profile=profile,
                dry_run=bool(profile.notes.dry_run),
                sealed=True,
            )

        try:
            printer_id = resolve_printer(profile)
        except ResolutionError as exc:
            return self._fail(profile, None, [exc])

        notes = profile.notes
        if notes.force_push and notes.force_pull:
            return self._fail(profile, printer_id, [ForceFlagConflict()])

        overrides = store.get_overrides()
        current = store.get(printer_id)
        exists = printer_id in store

        merges, errors = self._merge_fields(profile, current, overrides)
        if errors:
            return self._fail(profile, printer_id, errors)

        status = aggregate_status(merges)
        effective_static: dict[str, Any] = {
            **profile.static_fields,
            **overrides,
        }

        if notes.dry_run:
            return self._preview(
                profile, printer_id, current, merges, status, effective_static
            )
        return self._apply(
            profile,
            store,
            printer_id,
            current,
            exists,
            merges,
            status,
            effective_static,
        )

    # ------------------------------------------------------------------
    # Merge
    # ------------------------------------------------------------------

    def _merge_fields(
        self,
        profile: LocalProfile,
        current: FilamentRecord,
        overrides: dict[str, str],
    ) -> tuple[list[FieldMerge], list[ReconciliationError]]:
        """Merge every reconcilable field, collecting unresolvable ones."""
        force = _force_direction(profile.notes)
        shadowed = set(profile.static_fields) | set(overrides)
        names = sorted(
            (set(profile.reconcilable_fields) | set(current.fields))
            - shadowed
        )

        merges: list[FieldMerge] = []
        errors: list[ReconciliationError] = []
        for name in names:
            try:
                merges.append(
                    merge_field(
                        name,
                        profile.reconcilable_fields.get(name),
                        current.fields.get(name),
                        profile.notes.last_modified,
                        current.last_modified,
                        force,
                    )
                )
            except ConflictUnresolvable as exc:
                errors.append(exc)
        return merges, errors

    # ------------------------------------------------------------------
    # Branches
    # ------------------------------------------------------------------

    def _fail(
        self,
        profile: LocalProfile,
        printer_id: str | None,
        errors: list[ReconciliationError],
    ) -> ReconciliationOutcome:
        """Append *errors* to the profile and leave everything else as is."""
        updated = profile.model_copy(deep=True)
        entries = [exc.entry() for exc in errors]
        updated.notes.errors.extend(entries)
        for entry in entries:
            logger.warning("%s: %s", profile.display_name, entry)
        return ReconciliationOutcome(
            printer_id=printer_id,
            status=profile.notes.status,
            errors=entries,
            profile=updated,
            write_local=True,
            dry_run=bool(profile.notes.dry_run),
        )

    def _preview(
        self,
        profile: LocalProfile,
        printer_id: str,
        current: FilamentRecord,
        merges: list[FieldMerge],
        status: ReconciliationStatus,
        effective_static: dict[str, Any],
    ) -> ReconciliationOutcome:
        """Dry run: surface would-be values without applying them."""
        local_fields, remote_fields = _merged_fields(
            profile.reconcilable_fields, current.fields, merges
        )
        updated = profile.model_copy(deep=True)
        notes = updated.notes
        notes.desired_local = _set_only(local_fields)
        notes.desired_remote = _set_only(remote_fields)
        notes.status = status
        if self.settings.dry_run_policy == "clear":
            notes.dry_run = False

        logger.info(
            "Dry run for %s on %s: %s",
            profile.display_name,
            printer_id,
            status.describe(),
        )
        return ReconciliationOutcome(
            printer_id=printer_id,
            status=status,
            merges=merges,
            profile=updated,
            record=current,
            write_local=updated != profile,
            dry_run=True,
            effective_static=effective_static,
        )

    def _apply(
        self,
        profile: LocalProfile,
        store: PoolStore,
        printer_id: str,
        current: FilamentRecord,
        exists: bool,
        merges: list[FieldMerge],
        status: ReconciliationStatus,
        effective_static: dict[str, Any],
    ) -> ReconciliationOutcome:
        """Apply merged values to copies of both sides."""
        updated = profile.model_copy(deep=True)
        notes = updated.notes
        record = current
        pass_time = self._pass_time(notes.last_modified, current.last_modified)
        housekeeping: list[str] = []

        if status.kind != StatusKind.NOOP:
            local_fields, remote_fields = _merged_fields(
                profile.reconcilable_fields, current.fields, merges
            )
            updated.reconcilable_fields = local_fields
            notes.last_modified = pass_time
            record = FilamentRecord(
                fields=remote_fields, last_modified=pass_time
            )

        if notes.pool_id is None and store.pool_id is not None:
            notes.pool_id = store.pool_id
            housekeeping.append(f"linked to pool {store.pool_id}")

        if self.settings.clear_force_flags and (
            notes.force_push or notes.force_pull
        ):
            notes.force_push = False if notes.force_push else notes.force_push
            notes.force_pull = False if notes.force_pull else notes.force_pull
            housekeeping.append("force flags cleared")

        if notes.desired_local is not None or notes.desired_remote is not None:
            notes.desired_local = None
            notes.desired_remote = None
            housekeeping.append("dry-run preview cleared")

        if status.kind != StatusKind.NOOP or housekeeping:
            # Written profiles always carry the status of this pass
            notes.status = status
            message = status.describe()
            if housekeeping:
                message += f" ({', '.join(housekeeping)})"
            self._append_debug(notes, pass_time, message)

        write_remote = record != current or not exists
        write_local = updated != profile
        if write_local or write_remote:
            logger.info(
                "Reconciled %s on %s: %s",
                profile.display_name,
                printer_id,
                status.describe(),
            )
        else:
            logger.debug(
                "%s already converged on %s", profile.display_name, printer_id
            )

        return ReconciliationOutcome(
            printer_id=printer_id,
            status=status,
            merges=merges,
            profile=updated,
            record=record,
            write_local=write_local,
            write_remote=write_remote,
            effective_static=effective_static,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _pass_time(self, *timestamps: int | None) -> int:
        """Current logical time, never behind a timestamp already seen."""
        return max(int(self.clock()), *(t or 0 for t in timestamps))

    def _append_debug(
        self, notes: ReconciliationNotes, timestamp: int, message: str
    ) -> None:
        notes.debug.append(DebugEntry(timestamp=timestamp, message=message))
        limit = self.settings.debug_history_limit
        if limit is not None and len(notes.debug) > limit:
            del notes.debug[: len(notes.debug) - limit]

    def record_transient_failure(
        self, profile: LocalProfile, message: str
    ) -> LocalProfile:
        """Return a copy of *profile* with a ``debug`` entry for *message*.

        Used for infrastructure failures (pool outages) which must stay out
        of the sticky ``errors`` log.
        """
        updated = profile.model_copy(deep=True)
        self._append_debug(
            updated.notes,
            self._pass_time(updated.notes.last_modified),
            message,
        )
        return updated

    def try_resolve(self, profile: LocalProfile) -> str | None:
        """Resolve the printer id, returning ``None`` instead of raising."""
        try:
            return resolve_printer(profile)
        except ResolutionError:
            return None


def _force_direction(notes: ReconciliationNotes) -> ForceDirection | None:
    if notes.force_pull:
        return ForceDirection.PULL
    if notes.force_push:
        return ForceDirection.PUSH
    return None


def _merged_fields(
    local: dict[str, str | None],
    remote: dict[str, str | None],
    merges: list[FieldMerge],
) -> tuple[dict[str, str | None], dict[str, str | None]]:
    """Apply *merges* to copies of the local and remote field maps."""
    local_fields = dict(local)
    remote_fields = dict(remote)
    for merge in merges:
        if merge.destination.touches_local:
            local_fields[merge.field] = merge.value
        if merge.destination.touches_remote:
            remote_fields[merge.field] = merge.value
    return local_fields, remote_fields


def _set_only(fields: dict[str, str | None]) -> dict[str, str]:
    return {k: v for k, v in sorted(fields.items()) if v is not None}
