"""File handler module: profile path checks, encoding-aware decoding, atomic writes.

Provides the file I/O infrastructure shared by the profile codec, the pool
store and the reconciliation service.
"""

import os
import tempfile
from pathlib import Path

from charset_normalizer import from_bytes

# =============================================================================
# Path checks
# =============================================================================

PROFILE_SUFFIX = ".json"


def is_profile_file(path: Path) -> bool:
    """Return ``True`` if *path* looks like a slicer filament profile.

    Directories, editor swap files and non-JSON files are rejected.
    """
    if path.suffix.lower() != PROFILE_SUFFIX:
        return False
    if path.name.startswith("."):
        return False
    return not path.is_dir()


def validate_directory(path_str: str) -> Path:
    """Validate and resolve a directory path.

    Args:
        path_str: Path string to an existing directory.

    Returns:
        Resolved Path object.

    Raises:
        ValueError: If the path does not exist or is not a directory.
    """
    resolved = Path(path_str).expanduser().resolve()
    if not resolved.exists():
        raise ValueError(f"Directory not found: {path_str}")
    if not resolved.is_dir():
        raise ValueError(f"Path is not a directory: {path_str}")
    return resolved


# =============================================================================
# Decoding
# =============================================================================


def decode_text(raw: bytes) -> str:
    """Decode profile bytes to text.

    UTF-8 (with or without BOM) is tried first since that is what the slicer
    writes.  Anything else goes through charset-normalizer detection.

    Args:
        raw: Raw file content.

    Returns:
        Decoded text.

    Raises:
        UnicodeDecodeError: If no encoding could be detected.
    """
    if not raw:
        return ""
    try:
        return raw.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        result = from_bytes(raw).best()
        if result is None:
            raise exc
        return str(result)


# =============================================================================
# Writing
# =============================================================================


def write_file(path: Path, data: bytes) -> int:
    """Write *data* to *path* atomically, creating parent directories.

    Writes to a temporary file in the same directory then calls
    ``os.replace()`` so readers (including the slicer) never see a partial
    file.

    Args:
        path: Path to the output file.
        data: Bytes to write.

    Returns:
        Number of bytes written.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(
        dir=str(path.parent), prefix=".", suffix=".tmp"
    )
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
        os.replace(tmp_path, path)
    except BaseException:
        # Clean up temp file on any failure.
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise
    return len(data)
