"""Content hashing for chart archives."""

from __future__ import annotations

import hashlib
from pathlib import Path

# Algorithm tag prefixed to digests in provenance files, e.g. "sha256:<hex>".
DIGEST_ALGORITHM = "sha256"
CHUNK_SIZE = 8192


def sum_archive(path: Path) -> str:
    """Compute the SHA-256 hex digest of a file.

    The file is streamed in fixed-size chunks, so archives of any size can be
    hashed without loading them into memory.

    Raises:
        OSError: If the file cannot be opened or read
    """
    hasher = hashlib.sha256()
    with open(path, "rb") as f:
        while chunk := f.read(CHUNK_SIZE):
            hasher.update(chunk)
    return hasher.hexdigest()


def tagged_digest(digest: str) -> str:
    """Prefix a hex digest with its algorithm tag."""
    return f"{DIGEST_ALGORITHM}:{digest}"
