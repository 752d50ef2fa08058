"""Input hardening for archives, provenance files and key material.

Provides:
- Regular-file checks (directories are rejected before any hashing or crypto)
- Size limits on files that are read fully into memory
"""

from __future__ import annotations

import stat
from pathlib import Path

from chartprov.errors import FileTypeError

# Default security limits
DEFAULT_MAX_FILE_SIZE = 16 * 1024 * 1024  # 16 MB (provenance files, keyrings)
DEFAULT_MAX_MANIFEST_SIZE = 1024 * 1024  # 1 MB (Chart.yaml inside an archive)


class SecurityLimits:
    """Configurable security limits."""

    def __init__(
        self,
        max_file_size: int = DEFAULT_MAX_FILE_SIZE,
        max_manifest_size: int = DEFAULT_MAX_MANIFEST_SIZE,
    ) -> None:
        self.max_file_size = max_file_size
        self.max_manifest_size = max_manifest_size


class SecurityError(Exception):
    """Security violation detected."""
    pass


def require_file(path: Path) -> Path:
    """Verify ``path`` exists and is not a directory.

    Raises:
        FileNotFoundError: If the path does not exist
        FileTypeError: If the path is a directory
    """
    mode = Path(path).stat().st_mode
    if stat.S_ISDIR(mode):
        raise FileTypeError(f"{path} cannot be a directory")
    return Path(path)


def safe_read_file(path: Path, limits: SecurityLimits | None = None) -> bytes:
    """Read a whole file, refusing files larger than the limit.

    Args:
        path: File path
        limits: Security limits

    Returns:
        File contents as bytes

    Raises:
        SecurityError: If file too large
        FileTypeError: If the path is a directory
    """
    if limits is None:
        limits = SecurityLimits()

    path = require_file(path)

    # Check file size before reading
    size = path.stat().st_size
    if size > limits.max_file_size:
        raise SecurityError(
            f"File too large: {path} ({size} bytes > {limits.max_file_size})"
        )

    return path.read_bytes()
