"""Exception taxonomy for the reconciliation engine.

Two families:

* **Sticky data errors** (``ReconciliationError`` subclasses) -- identity
  resolution failures, unresolvable conflicts and contradictory force
  flags.  The engine never lets these escape; it converts them into entries
  of the profile's ``errors`` log via ``entry()`` and suspends automatic
  reconciliation for that profile until a human clears the log.
* **Infrastructure errors** -- ``DecodeError`` (the file cannot be read as a
  profile) and ``PoolUnavailable`` (the pool cannot be read or written).
  These are logged and retried on the next change event; they never reach
  the ``errors`` log.
"""

from __future__ import annotations


class PoolmanError(Exception):
    """Base class for all poolman errors."""


class DecodeError(PoolmanError):
    """Raised when raw bytes cannot be decoded into a ``LocalProfile``."""


class PoolUnavailable(PoolmanError):
    """Raised when the pool store cannot be read or written."""


class ReconciliationError(PoolmanError):
    """Base class for errors recorded in a profile's ``errors`` log."""

    kind = "ReconciliationError"

    def entry(self) -> str:
        """Return the string appended to ``notes.errors``."""
        return f"{self.kind}: {self}"


class ResolutionError(ReconciliationError):
    """The profile could not be attributed to exactly one printer."""

    kind = "ResolutionError"


class NoPrinter(ResolutionError):
    kind = "NoPrinter"


class AmbiguousPrinter(ResolutionError):
    kind = "AmbiguousPrinter"


class ConflictUnresolvable(ReconciliationError):
    """Both sides changed a field and the timestamps cannot break the tie."""

    kind = "ConflictUnresolvable"

    def __init__(
        self,
        field: str,
        local_value: str,
        remote_value: str,
        timestamp: int | None,
    ) -> None:
        self.field = field
        self.local_value = local_value
        self.remote_value = remote_value
        self.timestamp = timestamp
        when = "unset" if timestamp is None else str(timestamp)
        super().__init__(
            f"{field}: local {local_value!r} and pool {remote_value!r} "
            f"share last_modified={when}; set force_push or force_pull"
        )


class ForceFlagConflict(ReconciliationError):
    """``force_push`` and ``force_pull`` were both set for one pass."""

    kind = "ForceFlagConflict"

    def __init__(self) -> None:
        super().__init__(
            "force_push and force_pull are both set; clear one of them"
        )
