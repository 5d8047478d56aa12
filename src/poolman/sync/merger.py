"""Per-field merge policy and diff utilities for the reconciliation engine.

``merge_field`` is a pure function deciding, for one reconcilable field,
which value wins and which side has to adopt it.  Rules, in order:

1. Static fields and pool overrides never reach this function.
2. Both sides unset -> nothing to do.
3. Exactly one side set -> the other side is seeded with it.  This is a
   one-directional update, not a conflict.
4. Both set and equal -> nothing to do.
5. Both set and different -> a conflict:

   * ``force`` pull/push picks the pool/local value regardless of time;
   * otherwise the strictly newer ``last_modified`` wins;
   * equal timestamps raise ``ConflictUnresolvable`` (no silent pick).

   A resolved conflict targets ``Destination.BOTH``: the losing side adopts
   the value and the winning side gets its timestamp advanced.

The audit strings carried by ``FieldMerge`` are generated here so that the
same inputs always produce the same status and ``debug`` text.
"""

from __future__ import annotations

import difflib
from enum import Enum
from typing import Iterable

from poolman.sync.errors import ConflictUnresolvable
from poolman.sync.models import (
    Destination,
    FieldMerge,
    ReconciliationStatus,
)


class ForceDirection(str, Enum):
    """One-shot override of timestamp-based conflict resolution."""

    PUSH = "push"
    PULL = "pull"


def _ts(timestamp: int | None) -> int:
    """Sort key for logical timestamps; unset is older than anything."""
    return -1 if timestamp is None else timestamp


def _fmt(timestamp: int | None) -> str:
    return "unset" if timestamp is None else str(timestamp)


def merge_field(
    field: str,
    local_value: str | None,
    remote_value: str | None,
    local_ts: int | None,
    remote_ts: int | None,
    force: ForceDirection | None = None,
) -> FieldMerge:
    """Merge one reconcilable field.

    Args:
        field: Field name.
        local_value: Value in the local profile (``None`` = unset).
        remote_value: Value in the pool record (``None`` = unset).
        local_ts: The profile's ``last_modified``.
        remote_ts: The pool record's ``last_modified``.
        force: Optional force direction for this pass.

    Returns:
        The ``FieldMerge`` describing the merged value and destination.

    Raises:
        ConflictUnresolvable: If both values are set, differ, no force
            direction is given and the timestamps are equal.
    """
    if local_value is None and remote_value is None:
        return FieldMerge(field=field)

    if local_value is None:
        return FieldMerge(
            field=field,
            value=remote_value,
            destination=Destination.LOCAL,
            local_reason=f"{field} seeded with {remote_value!r} from pool",
        )

    if remote_value is None:
        return FieldMerge(
            field=field,
            value=local_value,
            destination=Destination.REMOTE,
            remote_reason=f"{field} seeded with {local_value!r} from profile",
        )

    if local_value == remote_value:
        return FieldMerge(field=field, value=local_value)

    if force == ForceDirection.PULL:
        return _resolved(field, remote_value, local_value, "pool", "force pull")
    if force == ForceDirection.PUSH:
        return _resolved(field, local_value, remote_value, "local", "force push")

    if _ts(local_ts) > _ts(remote_ts):
        why = f"local newer, {_fmt(local_ts)} > {_fmt(remote_ts)}"
        return _resolved(field, local_value, remote_value, "local", why)
    if _ts(remote_ts) > _ts(local_ts):
        why = f"pool newer, {_fmt(remote_ts)} > {_fmt(local_ts)}"
        return _resolved(field, remote_value, local_value, "pool", why)

    raise ConflictUnresolvable(field, local_value, remote_value, local_ts)


def _resolved(
    field: str, winner: str, loser: str, winning_side: str, why: str
) -> FieldMerge:
    """Build a conflict result where *winning_side*'s value is adopted."""
    adopted = f"{field} {loser!r} -> {winner!r} ({why})"
    kept = f"{field} kept {winner!r} ({why})"
    if winning_side == "local":
        local_reason, remote_reason = kept, adopted
    else:
        local_reason, remote_reason = adopted, kept
    return FieldMerge(
        field=field,
        value=winner,
        destination=Destination.BOTH,
        conflict=True,
        local_reason=local_reason,
        remote_reason=remote_reason,
    )


def aggregate_status(merges: Iterable[FieldMerge]) -> ReconciliationStatus:
    """Fold per-field destinations into one ``ReconciliationStatus``.

    Any remote-bound change yields ``UpdateSpoolman``, any local-bound
    change ``UpdatedLocal``, both together ``UpdatedBoth``, none ``Noop``.
    Reasons are joined in field order.
    """
    local_reasons: list[str] = []
    remote_reasons: list[str] = []
    for merge in merges:
        if merge.destination.touches_local and merge.local_reason:
            local_reasons.append(merge.local_reason)
        if merge.destination.touches_remote and merge.remote_reason:
            remote_reasons.append(merge.remote_reason)

    if local_reasons and remote_reasons:
        return ReconciliationStatus.updated_both(
            "; ".join(local_reasons), "; ".join(remote_reasons)
        )
    if remote_reasons:
        return ReconciliationStatus.update_spoolman("; ".join(remote_reasons))
    if local_reasons:
        return ReconciliationStatus.updated_local("; ".join(local_reasons))
    return ReconciliationStatus.noop()


def generate_diff(
    old_content: str,
    new_content: str,
    label_old: str = "old",
    label_new: str = "new",
) -> str:
    """Generate a unified diff between two strings.

    Args:
        old_content: The original content.
        new_content: The modified content.
        label_old: Label for the old side in the diff header.
        label_new: Label for the new side in the diff header.

    Returns:
        A unified diff string.  Empty string if the contents are identical.
    """
    diff_lines = difflib.unified_diff(
        old_content.splitlines(True),
        new_content.splitlines(True),
        fromfile=label_old,
        tofile=label_new,
    )
    return "".join(diff_lines)
