"""File-level reconciliation: read, decode, reconcile, guard, commit.

``ReconciliationService.reconcile_file`` wraps one engine pass with the
I/O around it:

1. Read the profile bytes and decode them (``DecodeError`` -> skipped).
2. Skip sealed profiles (non-empty ``errors``) without touching the pool.
3. Hold the printer lock while the pool record is read, merged and written.
4. Open the linked pool document, or allocate one for unlinked profiles
   (dry runs use a throwaway in-memory store instead).
5. Idempotence guard: encode the profile before and after the pass and
   skip the write when the bytes are identical.
6. Supersession guard: right before committing, make sure the caller still
   considers this pass current and the file still holds the bytes that were
   read.  Otherwise the result is discarded.
7. Commit the pool record first, then the profile, and report the written
   bytes through ``on_write`` so the change dispatcher can ignore its own
   writes.  If the profile write fails after a freshly allocated pool
   document was stored, that document is left orphaned: the profile never
   learns its ``pool_id`` and the next pass allocates a new one.

Error handling is per file: one broken profile never aborts a batch.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterable

from poolman.file_handler import is_profile_file, write_file
from poolman.sync.codec import ProfileCodec
from poolman.sync.engine import ReconciliationEngine
from poolman.sync.errors import DecodeError, PoolUnavailable
from poolman.sync.models import (
    LocalProfile,
    PassAction,
    PassResult,
    ReconciliationOutcome,
    RunReport,
)
from poolman.sync.state import (
    InMemoryPoolStore,
    PoolDirectory,
    PoolStore,
    PrinterLocks,
)

logger = logging.getLogger(__name__)


def _always_current() -> bool:
    return True


class ReconciliationService:
    """Reconcile profile files against a pool directory.

    Args:
        pool: Directory of pool documents.
        engine: Reconciliation engine; a default one is created if omitted.
        codec: Profile codec; a default one is created if omitted.
        locks: Per-printer locks, shared with any other service writing
            to the same pool.
        on_write: Called with ``(path, bytes)`` after every profile write.
    """

    def __init__(
        self,
        pool: PoolDirectory,
        engine: ReconciliationEngine | None = None,
        codec: ProfileCodec | None = None,
        locks: PrinterLocks | None = None,
        on_write: Callable[[Path, bytes], None] | None = None,
    ) -> None:
        self.pool = pool
        self.engine = engine or ReconciliationEngine()
        self.codec = codec or ProfileCodec()
        self.locks = locks or PrinterLocks()
        self.on_write = on_write

    # ------------------------------------------------------------------
    # Batch entry point
    # ------------------------------------------------------------------

    def reconcile_paths(self, paths: Iterable[Path]) -> RunReport:
        """Reconcile every path in *paths* and return a ``RunReport``."""
        started_at = datetime.now(timezone.utc).isoformat()
        results: list[PassResult] = []
        for path in paths:
            try:
                results.append(self.reconcile_file(path))
            except Exception as exc:
                logger.error("Error reconciling %s: %s", path, exc)
                results.append(
                    PassResult(
                        path=str(path),
                        action=PassAction.FAILED,
                        error=str(exc),
                    )
                )
        return RunReport(
            results=results,
            started_at=started_at,
            completed_at=datetime.now(timezone.utc).isoformat(),
        )

    # ------------------------------------------------------------------
    # Per-file pass
    # ------------------------------------------------------------------

    def reconcile_file(
        self,
        path: Path,
        is_current: Callable[[], bool] = _always_current,
    ) -> PassResult:
        """Run one reconciliation pass for the profile at *path*.

        Args:
            path: Profile file.
            is_current: Returns ``False`` once a newer change event for the
                same path has been observed.

        Returns:
            A ``PassResult`` describing what was done.
        """
        if not is_profile_file(path):
            logger.debug("Ignoring non-profile path: %s", path)
            return PassResult(path=str(path), action=PassAction.IGNORED)

        try:
            raw = path.read_bytes()
        except FileNotFoundError:
            logger.debug("Profile vanished before reconciliation: %s", path)
            return PassResult(path=str(path), action=PassAction.IGNORED)

        try:
            profile = self.codec.decode(raw)
        except DecodeError as exc:
            logger.warning("File parsing error: %s, err: %s", path, exc)
            return PassResult(
                path=str(path),
                action=PassAction.DECODE_FAILED,
                error=str(exc),
            )

        if profile.notes.errors:
            outcome = self.engine.reconcile(profile, InMemoryPoolStore())
            return PassResult(
                path=str(path), action=PassAction.SEALED, outcome=outcome
            )

        printer_id = self.engine.try_resolve(profile)
        with self.locks.hold(printer_id):
            try:
                store = self._open_store(profile, printer_id)
                outcome = self.engine.reconcile(profile, store)
            except PoolUnavailable as exc:
                return self._pool_unavailable(
                    path, raw, profile, exc, is_current
                )
            return self._commit(path, raw, profile, store, outcome, is_current)

    def _open_store(
        self, profile: LocalProfile, printer_id: str | None
    ) -> PoolStore:
        """Pick the pool document for *profile*."""
        notes = profile.notes
        if notes.pool_id is not None:
            return self.pool.open(notes.pool_id)
        if (
            printer_id is None
            or notes.dry_run
            or (notes.force_push and notes.force_pull)
        ):
            # The pass will fail or nothing may be created: no allocation.
            return InMemoryPoolStore()
        return self.pool.allocate()

    # ------------------------------------------------------------------
    # Commit
    # ------------------------------------------------------------------

    def _commit(
        self,
        path: Path,
        raw: bytes,
        profile: LocalProfile,
        store: PoolStore,
        outcome: ReconciliationOutcome,
        is_current: Callable[[], bool],
    ) -> PassResult:
        new_bytes = self.codec.encode(outcome.profile)
        local_dirty = outcome.write_local and new_bytes != self.codec.encode(
            profile
        )
        remote_dirty = (
            outcome.write_remote
            and outcome.record is not None
            and outcome.printer_id is not None
        )

        if not local_dirty and not remote_dirty:
            logger.debug("No changes for %s", path)
            return PassResult(
                path=str(path), action=PassAction.UNCHANGED, outcome=outcome
            )

        if self._superseded(path, raw, is_current):
            return PassResult(
                path=str(path), action=PassAction.SUPERSEDED, outcome=outcome
            )

        if remote_dirty:
            try:
                store.put(outcome.printer_id, outcome.record)
            except PoolUnavailable as exc:
                return self._pool_unavailable(
                    path, raw, profile, exc, is_current
                )

        if local_dirty:
            self._write_profile(path, new_bytes)

        return PassResult(
            path=str(path),
            action=PassAction.WRITTEN,
            outcome=outcome,
            wrote_local=local_dirty,
            wrote_remote=remote_dirty,
        )

    def _pool_unavailable(
        self,
        path: Path,
        raw: bytes,
        profile: LocalProfile,
        exc: PoolUnavailable,
        is_current: Callable[[], bool],
    ) -> PassResult:
        """Log a pool outage and record it in the profile's ``debug`` log."""
        logger.warning("Pool unavailable while reconciling %s: %s", path, exc)
        wrote_local = False
        if not self._superseded(path, raw, is_current):
            updated = self.engine.record_transient_failure(
                profile, f"PoolUnavailable: {exc}"
            )
            try:
                self._write_profile(path, self.codec.encode(updated))
                wrote_local = True
            except OSError as write_exc:
                logger.error("Cannot write %s: %s", path, write_exc)
        return PassResult(
            path=str(path),
            action=PassAction.POOL_UNAVAILABLE,
            wrote_local=wrote_local,
            error=str(exc),
        )

    def _superseded(
        self, path: Path, raw: bytes, is_current: Callable[[], bool]
    ) -> bool:
        """Return ``True`` if a newer event or newer content exists."""
        if not is_current():
            logger.info("Discarding superseded pass for %s", path)
            return True
        try:
            on_disk = path.read_bytes()
        except FileNotFoundError:
            logger.info("Profile removed during reconciliation: %s", path)
            return True
        if on_disk != raw:
            logger.info("Profile changed during reconciliation: %s", path)
            return True
        return False

    def _write_profile(self, path: Path, data: bytes) -> None:
        write_file(path, data)
        logger.info("Wrote %s", path)
        if self.on_write is not None:
            self.on_write(path, data)
