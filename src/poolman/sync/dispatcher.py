"""Change dispatcher: turns raw file events into reconciliation passes.

Two pieces:

* ``PollingChangeSource`` -- polls the filament directory and reports the
  profile files whose ``(mtime_ns, size)`` signature changed since the
  previous scan.  The first scan reports every profile.
* ``ChangeDispatcher`` -- consumes paths and schedules one debounced
  reconciliation pass per path.

Dispatcher guarantees:

* **Debounce** -- bursts of events for one path within ``debounce`` seconds
  collapse into a single pass over the latest content.
* **Supersession** -- every event bumps the path's generation.  A pass only
  commits while its generation is still the newest one; the service checks
  this right before writing.
* **Serialisation** -- passes for the same path never overlap.
* **Self-write suppression** -- the service reports every write it makes.
  Events whose file content matches a write made within ``quiet_window``
  seconds are dropped.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import threading
import time
from pathlib import Path
from typing import AsyncIterator, Callable

from poolman.core.async_utils import run_sync, run_sync_limited
from poolman.file_handler import PROFILE_SUFFIX, is_profile_file
from poolman.sync.models import PassResult
from poolman.sync.service import ReconciliationService

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Change source
# ---------------------------------------------------------------------------


class PollingChangeSource:
    """Poll-based change detection for one directory of profiles.

    Args:
        directory: Directory to scan (top-level only).
        pattern: Glob pattern selecting candidate files.
    """

    def __init__(
        self, directory: Path, pattern: str = f"*{PROFILE_SUFFIX}"
    ) -> None:
        self.directory = directory
        self.pattern = pattern
        self._signatures: dict[Path, tuple[int, int]] = {}

    def scan(self) -> list[Path]:
        """Return profiles that are new or changed since the last scan.

        Files are returned in deterministic order (sorted by path).
        """
        current: dict[Path, tuple[int, int]] = {}
        if self.directory.is_dir():
            for path in sorted(self.directory.glob(self.pattern)):
                if not is_profile_file(path):
                    continue
                try:
                    stat = path.stat()
                except OSError:
                    # Removed between glob and stat
                    continue
                current[path] = (stat.st_mtime_ns, stat.st_size)
        else:
            logger.warning("Filament directory missing: %s", self.directory)

        changed = [
            path
            for path, signature in current.items()
            if self._signatures.get(path) != signature
        ]
        self._signatures = current
        return changed

    async def changes(self, interval: float) -> AsyncIterator[Path]:
        """Yield changed paths forever, scanning every *interval* seconds."""
        while True:
            for path in await run_sync(self.scan):
                yield path
            await asyncio.sleep(interval)


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------


class ChangeDispatcher:
    """Debounce change events and run reconciliation passes for them.

    The dispatcher registers itself as the service's ``on_write`` callback
    so that writes made by the service are recognised as self-authored.

    Args:
        service: The file-level reconciliation service.
        debounce: Seconds to wait for further events before reconciling.
        quiet_window: Seconds during which a self-authored write is ignored.
        clock: Monotonic clock used for the quiet window.
    """

    def __init__(
        self,
        service: ReconciliationService,
        debounce: float = 0.5,
        quiet_window: float = 2.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.service = service
        self.debounce = debounce
        self.quiet_window = quiet_window
        self.clock = clock
        self.last_results: dict[Path, PassResult] = {}

        self._generations: dict[Path, int] = {}
        self._pending: set[asyncio.Task] = set()
        self._path_locks: dict[Path, asyncio.Lock] = {}
        # Written from worker threads, read from the event loop
        self._self_writes: dict[Path, tuple[str, float]] = {}
        self._self_writes_lock = threading.Lock()

        service.on_write = self.record_self_write

    # ------------------------------------------------------------------
    # Event intake
    # ------------------------------------------------------------------

    def notify(self, path: Path) -> None:
        """Record a change event for *path* and schedule a pass."""
        key = _key(path)
        generation = self._generations.get(key, 0) + 1
        self._generations[key] = generation
        logger.debug("Change event for %s (generation %d)", key, generation)

        task = asyncio.get_running_loop().create_task(
            self._debounced(key, generation)
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def run(self, source: AsyncIterator[Path]) -> None:
        """Dispatch every path produced by *source*."""
        async for path in source:
            self.notify(path)

    async def drain(self) -> None:
        """Wait until every scheduled pass has finished."""
        while self._pending:
            await asyncio.gather(*list(self._pending))

    # ------------------------------------------------------------------
    # Self-authored writes
    # ------------------------------------------------------------------

    def record_self_write(self, path: Path, data: bytes) -> None:
        """Remember that *data* was just written to *path* by the service.

        Called from worker threads.
        """
        digest = hashlib.sha256(data).hexdigest()
        with self._self_writes_lock:
            self._self_writes[_key(path)] = (
                digest,
                self.clock() + self.quiet_window,
            )

    def is_self_write(self, path: Path) -> bool:
        """Return ``True`` if *path* still holds a recent self-authored write."""
        key = _key(path)
        with self._self_writes_lock:
            entry = self._self_writes.get(key)
            if entry is None:
                return False
            digest, expires_at = entry
            if self.clock() > expires_at:
                del self._self_writes[key]
                return False
        try:
            data = key.read_bytes()
        except OSError:
            return False
        return hashlib.sha256(data).hexdigest() == digest

    # ------------------------------------------------------------------
    # Passes
    # ------------------------------------------------------------------

    def _is_current(self, key: Path, generation: int) -> bool:
        return self._generations.get(key) == generation

    def _lock_for(self, key: Path) -> asyncio.Lock:
        return self._path_locks.setdefault(key, asyncio.Lock())

    async def _debounced(self, key: Path, generation: int) -> None:
        await asyncio.sleep(self.debounce)
        if not self._is_current(key, generation):
            logger.debug("Coalesced event for %s", key)
            return

        if await run_sync(self.is_self_write, key):
            logger.debug("Ignoring self-authored write to %s", key)
            return

        async with self._lock_for(key):
            if not self._is_current(key, generation):
                logger.debug("Superseded before start: %s", key)
                return
            try:
                result = await run_sync_limited(
                    self.service.reconcile_file,
                    key,
                    lambda: self._is_current(key, generation),
                )
            except Exception:
                logger.exception("Reconciliation pass failed for %s", key)
                return

        self.last_results[key] = result
        logger.debug("Pass for %s: %s", key, result.action.value)


def _key(path: Path) -> Path:
    return Path(path).absolute()
