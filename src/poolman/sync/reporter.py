"""Reconciliation report formatting functions.

Provides human-readable and machine-readable output for reconciliation:

- ``format_outcome`` -- one engine pass over one profile.
- ``format_run_report`` -- full post-run summary for a batch of files.
- ``format_dry_run_preview`` -- unified diff of desired vs actual values.
- ``report_to_json`` -- structured dict for ``--json`` output.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from .merger import generate_diff
from .models import Destination, PassAction

if TYPE_CHECKING:
    from .models import ReconciliationOutcome, RunReport


def _render_fields(fields: dict[str, str | None] | None) -> str:
    if not fields:
        return ""
    return "".join(
        f"{name}: {value}\n"
        for name, value in sorted(fields.items())
        if value is not None
    )


# ------------------------------------------------------------------
# Single outcome
# ------------------------------------------------------------------


def format_outcome(outcome: ReconciliationOutcome) -> str:
    """Format one engine outcome as human-readable text.

    Args:
        outcome: The outcome of one reconciliation pass.

    Returns:
        Multi-line formatted string.
    """
    profile = outcome.profile
    header = profile.display_name
    if outcome.printer_id:
        header += f" @ {outcome.printer_id}"
    if outcome.dry_run:
        header += " (DRY RUN)"
    lines = [header]

    if outcome.sealed:
        lines.append(
            f"  Sealed: {len(profile.notes.errors)} unresolved error(s)"
        )
        for entry in profile.notes.errors:
            lines.append(f"    {entry}")
        return "\n".join(lines)

    if outcome.errors:
        lines.append("  Errors:")
        for entry in outcome.errors:
            lines.append(f"    {entry}")
        return "\n".join(lines)

    lines.append(f"  Status: {outcome.status.describe()}")
    for merge in outcome.merges:
        if merge.destination == Destination.NONE:
            continue
        marker = " (conflict)" if merge.conflict else ""
        lines.append(
            f"  {merge.field} = {merge.value!r} -> "
            f"{merge.destination.value}{marker}"
        )
    return "\n".join(lines)


# ------------------------------------------------------------------
# Human-readable run report
# ------------------------------------------------------------------


def format_run_report(report: RunReport) -> str:
    """Format a complete run report as human-readable text.

    Sections are only included when they contain at least one result.
    Unchanged files are summarised by count only.

    Args:
        report: The completed run report.

    Returns:
        Multi-line formatted string.
    """
    lines: list[str] = []
    lines.append("Reconciliation report")
    lines.append(f"Started: {report.started_at}")
    if report.completed_at:
        lines.append(f"Completed: {report.completed_at}")
    lines.append("")

    lines.append(
        f"Reconciled {len(report.results)} files: "
        f"{len(report.written)} written, "
        f"{len(report.unchanged)} unchanged, "
        f"{len(report.sealed)} sealed, "
        f"{len(report.errored)} new errors, "
        f"{len(report.failed)} failed"
    )
    lines.append("")

    if report.written:
        lines.append("Written:")
        for r in report.written:
            sides = []
            if r.wrote_local:
                sides.append("profile")
            if r.wrote_remote:
                sides.append("pool")
            status = r.outcome.status.describe() if r.outcome else ""
            lines.append(f"  {r.path} [{', '.join(sides)}] {status}")
        lines.append("")

    if report.errored:
        lines.append("New errors:")
        for r in report.errored:
            for entry in r.outcome.errors:
                lines.append(f"  {r.path}: {entry}")
        lines.append("")

    if report.sealed:
        lines.append("Sealed (clear 'errors' to resume):")
        for r in report.sealed:
            lines.append(f"  {r.path}")
        lines.append("")

    if report.failed:
        lines.append("Failed:")
        for r in report.failed:
            lines.append(f"  {r.path} ({r.action.value}): {r.error}")
        lines.append("")

    return "\n".join(lines).rstrip()


# ------------------------------------------------------------------
# Dry-run preview
# ------------------------------------------------------------------


def format_dry_run_preview(outcome: ReconciliationOutcome) -> str:
    """Show what a dry-run pass would change on each side.

    Args:
        outcome: Outcome of a dry-run pass (``dry_run=True``).

    Returns:
        Unified diffs of actual vs desired values for the profile and the
        pool record, or a note that nothing would change.
    """
    profile = outcome.profile
    notes = profile.notes
    lines = [f"DRY RUN -- {profile.display_name}"]
    if outcome.printer_id:
        lines.append(f"Printer: {outcome.printer_id}")
    lines.append(f"Status: {outcome.status.describe()}")
    lines.append("")

    local_diff = generate_diff(
        _render_fields(profile.reconcilable_fields),
        _render_fields(notes.desired_local),
        label_old="profile (actual)",
        label_new="profile (desired)",
    )
    remote_fields = outcome.record.fields if outcome.record else None
    remote_diff = generate_diff(
        _render_fields(remote_fields),
        _render_fields(notes.desired_remote),
        label_old="pool (actual)",
        label_new="pool (desired)",
    )

    if not local_diff and not remote_diff:
        lines.append("No changes needed.")
    for diff in (local_diff, remote_diff):
        if diff:
            lines.append(diff.rstrip())
            lines.append("")

    return "\n".join(lines).rstrip()


# ------------------------------------------------------------------
# JSON output
# ------------------------------------------------------------------


def report_to_json(report: RunReport) -> dict:
    """Convert a run report to a structured dict for JSON serialisation.

    Args:
        report: The run report.

    Returns:
        Dict with timestamps, counts, and per-file details.
    """
    results_list = []
    for r in report.results:
        entry: dict = {
            "path": r.path,
            "action": r.action.value,
            "wrote_local": r.wrote_local,
            "wrote_remote": r.wrote_remote,
        }
        if r.outcome is not None:
            entry["printer_id"] = r.outcome.printer_id
            entry["status"] = r.outcome.status.kind.value
            entry["dry_run"] = r.outcome.dry_run
            entry["changed_fields"] = r.outcome.changed_fields
            if r.outcome.errors:
                entry["errors"] = list(r.outcome.errors)
        if r.error:
            entry["error"] = r.error
        results_list.append(entry)

    return {
        "started_at": report.started_at,
        "completed_at": report.completed_at,
        "counts": {
            "total": len(report.results),
            "written": len(report.written),
            "unchanged": len(report.unchanged),
            "sealed": len(report.sealed),
            "errored": len(report.errored),
            "failed": len(report.failed),
            "superseded": sum(
                1 for r in report.results if r.action == PassAction.SUPERSEDED
            ),
        },
        "results": results_list,
    }
