"""Profile codec: slicer filament JSON <-> ``LocalProfile``.

The slicer stores most scalar settings wrapped in one-element arrays
(``"nozzle_temperature": ["220"]``) and keeps free-form notes in
``filament_notes``, itself a one-element array holding a string.  The sync
state lives in that string as a JSON object.  This module is the only place
that knows about those conventions; everything past ``decode()`` works with
clean typed models.

Encoding is deterministic: ``encode(decode(encode(p))) == encode(p)``, which
is what lets the service compare pre- and post-pass encodings byte for byte.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Iterable

from pydantic import ValidationError

from poolman.file_handler import decode_text
from poolman.sync.errors import DecodeError
from poolman.sync.models import LocalProfile, ReconciliationNotes

logger = logging.getLogger(__name__)

ID_KEY = "filament_settings_id"
NAME_KEY = "name"
INHERITS_KEY = "inherits"
NOTES_KEY = "filament_notes"

_SCALAR_KEYS = (ID_KEY, NAME_KEY, INHERITS_KEY)

DEFAULT_RECONCILABLE_FIELDS: tuple[str, ...] = (
    "nozzle_temperature",
    "nozzle_temperature_initial_layer",
    "hot_plate_temp",
    "hot_plate_temp_initial_layer",
    "cool_plate_temp",
    "cool_plate_temp_initial_layer",
    "textured_plate_temp",
    "textured_plate_temp_initial_layer",
    "chamber_temperature",
    "filament_flow_ratio",
    "filament_max_volumetric_speed",
    "pressure_advance",
)


def _first(key: str, value: Any) -> Any:
    """Extract the only element if value is a list, otherwise return as-is.

    Raises:
        DecodeError: If *value* is a list of more than one element.
    """
    if isinstance(value, list):
        if len(value) > 1:
            raise DecodeError(
                f"{key}: expected a single value, got {len(value)} elements"
            )
        return value[0] if value else None
    return value


def _as_text(key: str, value: Any) -> str | None:
    """Unwrap *value* and coerce it to a single string (or ``None``)."""
    value = _first(key, value)
    if value is None:
        return None
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, (str, int, float)):
        return str(value)
    raise DecodeError(
        f"{key}: expected a scalar or one-element array, "
        f"got {type(value).__name__}"
    )


class ProfileCodec:
    """Decode and encode slicer filament profiles.

    Args:
        reconcilable_fields: Keys routed to ``reconcilable_fields``.  Every
            other key (apart from id, name, inherits and notes) is static.
    """

    def __init__(
        self,
        reconcilable_fields: Iterable[str] = DEFAULT_RECONCILABLE_FIELDS,
    ) -> None:
        self.reconcilable_fields = frozenset(reconcilable_fields)

    # ------------------------------------------------------------------
    # Decoding
    # ------------------------------------------------------------------

    def decode(self, raw: bytes) -> LocalProfile:
        """Parse profile bytes.

        Raises:
            DecodeError: If the bytes are not a JSON object, a field has an
                unexpected shape, or the notes text is not a sync-state
                JSON object.
        """
        try:
            text = decode_text(raw)
            data = json.loads(text)
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise DecodeError(f"not a JSON document: {exc}") from exc
        if not isinstance(data, dict):
            raise DecodeError(
                f"expected a JSON object, got {type(data).__name__}"
            )

        scalars: dict[str, str | None] = {}
        wrapped: list[str] = []
        for key in _SCALAR_KEYS:
            if key not in data:
                continue
            if isinstance(data[key], list):
                wrapped.append(key)
            scalars[key] = _as_text(key, data[key])

        reconcilable: dict[str, str | None] = {}
        static: dict[str, Any] = {}
        for key, value in data.items():
            if key in _SCALAR_KEYS or key == NOTES_KEY:
                continue
            if key in self.reconcilable_fields:
                reconcilable[key] = _as_text(key, value)
            else:
                static[key] = value

        return LocalProfile(
            id=scalars.get(ID_KEY),
            name=scalars.get(NAME_KEY),
            inherits=scalars.get(INHERITS_KEY),
            static_fields=static,
            reconcilable_fields=reconcilable,
            notes=self._decode_notes(data.get(NOTES_KEY)),
            key_order=list(data.keys()),
            wrapped_keys=wrapped,
        )

    @staticmethod
    def _decode_notes(value: Any) -> ReconciliationNotes:
        text = _as_text(NOTES_KEY, value)
        if text is None or not text.strip():
            return ReconciliationNotes()
        try:
            payload = json.loads(text)
        except json.JSONDecodeError as exc:
            raise DecodeError(
                f"{NOTES_KEY} does not hold sync state: {exc}"
            ) from exc
        if not isinstance(payload, dict):
            raise DecodeError(f"{NOTES_KEY} does not hold a JSON object")
        try:
            return ReconciliationNotes.model_validate(payload)
        except ValidationError as exc:
            raise DecodeError(f"invalid sync state: {exc}") from exc

    # ------------------------------------------------------------------
    # Encoding
    # ------------------------------------------------------------------

    def encode(self, profile: LocalProfile) -> bytes:
        """Serialise *profile* back to the slicer's on-disk layout.

        Keys are emitted in their original order; keys new to the file are
        appended.  Unset scalars and reconcilable fields are omitted.
        """
        values: dict[str, Any] = {}
        for key, value in (
            (ID_KEY, profile.id),
            (NAME_KEY, profile.name),
            (INHERITS_KEY, profile.inherits),
        ):
            if value is not None:
                values[key] = (
                    [value] if key in profile.wrapped_keys else value
                )
        values.update(profile.static_fields)
        for key, value in profile.reconcilable_fields.items():
            if value is not None:
                values[key] = [value]
        values[NOTES_KEY] = [
            profile.notes.model_dump_json(exclude_none=True)
        ]

        ordered: dict[str, Any] = {}
        for key in profile.key_order:
            if key in values:
                ordered[key] = values.pop(key)
        ordered.update(values)

        text = json.dumps(ordered, indent=4, ensure_ascii=False)
        return (text + "\n").encode("utf-8")


_default_codec = ProfileCodec()


def decode(raw: bytes) -> LocalProfile:
    """Decode with the default reconcilable field set."""
    return _default_codec.decode(raw)


def encode(profile: LocalProfile) -> bytes:
    """Encode with the default codec."""
    return _default_codec.encode(profile)
