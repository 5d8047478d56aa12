"""Pool store persistence layer.

The pool is a directory of JSON documents, one per pool id
(``<pool_dir>/<pool_id>.json``), each laid out as::

    {"printers": {"<printer_id>": {"fields": {...}, "last_modified": 9}},
     "overrides": {"<key>": "<value>"}}

Key design choices:

* **Atomic writes** -- ``save()`` writes to a temp file then calls
  ``os.replace()`` so readers never see partial data.
* **Transient failures** -- unreadable or corrupt documents raise
  ``PoolUnavailable`` instead of being silently replaced.
* **Locking** -- ``PrinterLocks`` serialises read-modify-write cycles for
  one printer id; each document additionally guards its own
  read-modify-write so records of different printers in the same document
  cannot clobber each other.
"""

from __future__ import annotations

import json
import logging
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Protocol

from pydantic import ValidationError

from poolman.file_handler import write_file
from poolman.sync.errors import PoolUnavailable
from poolman.sync.models import FilamentRecord, PoolRecord

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


class PoolStore(Protocol):
    """Read/write access to one pool document."""

    pool_id: int | None

    def get(self, printer_id: str) -> FilamentRecord:
        """Return the record for *printer_id*, empty if absent."""
        ...  # pragma: no cover

    def put(self, printer_id: str, record: FilamentRecord) -> None:
        """Store *record* for *printer_id*."""
        ...  # pragma: no cover

    def get_overrides(self) -> dict[str, str]:
        """Return the static overrides of this pool document."""
        ...  # pragma: no cover

    def __contains__(self, printer_id: object) -> bool: ...  # pragma: no cover


# ---------------------------------------------------------------------------
# In-memory store
# ---------------------------------------------------------------------------


class InMemoryPoolStore:
    """Pool store backed by a ``PoolRecord`` held in memory.

    Used for dry runs of unlinked profiles and in tests.
    """

    def __init__(
        self, record: PoolRecord | None = None, pool_id: int | None = None
    ) -> None:
        self.record = record or PoolRecord()
        self.pool_id = pool_id

    def get(self, printer_id: str) -> FilamentRecord:
        return self.record.printers.get(printer_id) or FilamentRecord()

    def put(self, printer_id: str, record: FilamentRecord) -> None:
        self.record.printers[printer_id] = record

    def get_overrides(self) -> dict[str, str]:
        return dict(self.record.overrides)

    def __contains__(self, printer_id: object) -> bool:
        return printer_id in self.record.printers


# ---------------------------------------------------------------------------
# JSON document store
# ---------------------------------------------------------------------------


class JsonPoolStore:
    """Pool store backed by one JSON document on disk.

    Args:
        path: Location of the document.
        pool_id: Pool id the document belongs to.
        lock: Lock guarding read-modify-write of the document; a private
            lock is created when omitted.
    """

    def __init__(
        self,
        path: Path,
        pool_id: int | None = None,
        lock: threading.Lock | None = None,
    ) -> None:
        self.path = path
        self.pool_id = pool_id
        self._lock = lock or threading.Lock()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def load(self) -> PoolRecord:
        """Load the document.

        Returns:
            The parsed record, or an empty one if the file does not exist.

        Raises:
            PoolUnavailable: If the file cannot be read or parsed.
        """
        if not self.path.exists():
            return PoolRecord()
        try:
            raw = self.path.read_text(encoding="utf-8")
            return PoolRecord.model_validate(json.loads(raw))
        except (OSError, ValueError, ValidationError) as exc:
            raise PoolUnavailable(
                f"cannot read pool document {self.path}: {exc}"
            ) from exc

    def save(self, record: PoolRecord) -> None:
        """Persist the document atomically.

        Raises:
            PoolUnavailable: If the file cannot be written.
        """
        payload = record.model_dump(mode="json")
        data = (json.dumps(payload, indent=2, sort_keys=True) + "\n").encode(
            "utf-8"
        )
        try:
            write_file(self.path, data)
        except OSError as exc:
            raise PoolUnavailable(
                f"cannot write pool document {self.path}: {exc}"
            ) from exc

    # ------------------------------------------------------------------
    # PoolStore interface
    # ------------------------------------------------------------------

    def get(self, printer_id: str) -> FilamentRecord:
        return self.load().printers.get(printer_id) or FilamentRecord()

    def put(self, printer_id: str, record: FilamentRecord) -> None:
        with self._lock:
            document = self.load()
            document.printers[printer_id] = record
            self.save(document)
        logger.debug(
            "Stored pool record %s/%s", self.pool_id, printer_id
        )

    def get_overrides(self) -> dict[str, str]:
        return dict(self.load().overrides)

    def __contains__(self, printer_id: object) -> bool:
        return printer_id in self.load().printers


# ---------------------------------------------------------------------------
# Directory of pool documents
# ---------------------------------------------------------------------------


class PoolDirectory:
    """A directory of pool documents keyed by integer pool id.

    Args:
        root: Directory holding ``<pool_id>.json`` documents.
    """

    def __init__(self, root: Path) -> None:
        self.root = root
        self._guard = threading.Lock()
        self._document_locks: dict[int, threading.Lock] = {}
        self._reserved: set[int] = set()

    def ids(self) -> list[int]:
        """Return the pool ids present on disk, ascending."""
        if not self.root.is_dir():
            return []
        found = []
        for path in self.root.glob("*.json"):
            if path.stem.isdigit():
                found.append(int(path.stem))
        return sorted(found)

    def open(self, pool_id: int) -> JsonPoolStore:
        """Return the store for *pool_id* (the document may not exist yet)."""
        with self._guard:
            lock = self._document_locks.setdefault(pool_id, threading.Lock())
        return JsonPoolStore(self._path(pool_id), pool_id=pool_id, lock=lock)

    def allocate(self) -> JsonPoolStore:
        """Reserve the next free pool id and return its store.

        Ids reserved in this process are never handed out twice, even if
        their document has not been written yet.
        """
        with self._guard:
            taken = set(self.ids()) | self._reserved
            pool_id = max(taken, default=0) + 1
            self._reserved.add(pool_id)
        logger.info("Allocated pool id %d", pool_id)
        return self.open(pool_id)

    def _path(self, pool_id: int) -> Path:
        return self.root / f"{pool_id}.json"


# ---------------------------------------------------------------------------
# Per-printer locking
# ---------------------------------------------------------------------------


class PrinterLocks:
    """One lock per printer id, created on demand."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    def lock_for(self, printer_id: str) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault(printer_id, threading.Lock())

    @contextmanager
    def hold(self, printer_id: str | None) -> Iterator[None]:
        """Hold the lock for *printer_id*; no-op for ``None``."""
        if printer_id is None:
            yield
            return
        with self.lock_for(printer_id):
            yield
