"""Printer identity resolution.

Decides which printer a filament profile belongs to.  Attempts, in order:

1. **Explicit id** -- ``notes.printer_id``.
2. **Name suffix** -- a trailing ``@Printer`` in the profile name or
   settings id (``"PLA Red @Voron"`` -> ``"Voron"``).  Name and id must
   agree.
3. **Compatible printers** -- exactly one entry in the static
   ``compatible_printers`` list.
4. **Parent suffix** -- a trailing ``@Printer`` in ``inherits``, only when
   the profile carries no ``compatible_printers`` entries.  The parent is
   matched as a string; inheritance itself is not resolved.

Several candidates at any step raise ``AmbiguousPrinter``; running out of
steps raises ``NoPrinter``.
"""

from __future__ import annotations

import logging
import re
from typing import Any

from poolman.sync.errors import AmbiguousPrinter, NoPrinter
from poolman.sync.models import LocalProfile

logger = logging.getLogger(__name__)

COMPATIBLE_PRINTERS_KEY = "compatible_printers"

_SUFFIX_PATTERN = re.compile(r"@\s*(?P<printer>[^@]+?)\s*$")


def printer_suffix(text: str | None) -> str | None:
    """Return the printer named by a trailing ``@Printer`` suffix.

    Args:
        text: A profile name, settings id or parent reference.

    Returns:
        The printer name, or ``None`` if *text* carries no suffix.

    Raises:
        AmbiguousPrinter: If *text* contains more than one ``@``.
    """
    if not text or "@" not in text:
        return None
    if text.count("@") > 1:
        raise AmbiguousPrinter(f"multiple printer suffixes in {text!r}")
    match = _SUFFIX_PATTERN.search(text)
    if match is None:
        return None
    return match.group("printer").strip() or None


def compatible_printers(static_fields: dict[str, Any]) -> list[str]:
    """Return the distinct, non-empty ``compatible_printers`` entries."""
    raw = static_fields.get(COMPATIBLE_PRINTERS_KEY)
    if raw is None:
        return []
    if isinstance(raw, str):
        raw = [raw]
    if not isinstance(raw, list):
        return []
    printers: list[str] = []
    for entry in raw:
        if isinstance(entry, str) and entry.strip():
            name = entry.strip()
            if name not in printers:
                printers.append(name)
    return printers


def resolve_printer(profile: LocalProfile) -> str:
    """Determine the printer id *profile* belongs to.

    Raises:
        AmbiguousPrinter: If more than one printer matches.
        NoPrinter: If no printer can be determined.
    """
    explicit = profile.notes.printer_id
    if explicit and explicit.strip():
        return explicit.strip()

    # Suffix on name or id
    candidates: list[str] = []
    for text in (profile.name, profile.id):
        suffix = printer_suffix(text)
        if suffix and suffix not in candidates:
            candidates.append(suffix)
    if len(candidates) == 1:
        return candidates[0]
    if len(candidates) > 1:
        raise AmbiguousPrinter(
            f"name and settings id name different printers: "
            f"{', '.join(repr(c) for c in candidates)}"
        )

    compatible = compatible_printers(profile.static_fields)
    if len(compatible) == 1:
        return compatible[0]
    if len(compatible) > 1:
        raise AmbiguousPrinter(
            f"{len(compatible)} compatible printers "
            f"({', '.join(compatible)}); set printer_id in the notes"
        )

    parent = printer_suffix(profile.inherits)
    if parent:
        logger.debug(
            "Resolved %s to %r via inherits", profile.display_name, parent
        )
        return parent

    raise NoPrinter(
        f"cannot determine a printer for {profile.display_name!r}; "
        f"add an @Printer suffix or set printer_id in the notes"
    )
