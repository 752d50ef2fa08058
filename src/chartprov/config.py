"""Configuration for signing and verifying chart provenance.

Supports:
- Environment variable configuration
- YAML file configuration
- Runtime overrides (CLI flags)
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from chartprov.openpgp import UnsupportedError, hash_id_from_name
from chartprov.openpgp.packet import SIGNING_HASHES
from chartprov.security import DEFAULT_MAX_FILE_SIZE, SecurityLimits

DEFAULT_HASH_ALGORITHM = "SHA512"
PROVENANCE_SUFFIX = ".prov"
PROVENANCE_MODE = 0o644


def default_keyring() -> Path:
    """Keyring used when none is given: $CHARTPROV_KEYRING or the GnuPG public keyring."""
    env = os.getenv("CHARTPROV_KEYRING")
    if env:
        return Path(env).expanduser()
    return Path.home() / ".gnupg" / "pubring.gpg"


@dataclass
class ProvenanceConfig:
    """
    Configuration for provenance operations.

    Defaults:
    - hash_algorithm: SHA512 (hash used inside new signatures)
    - keyring: $CHARTPROV_KEYRING or ~/.gnupg/pubring.gpg
    - provenance files: <archive>.prov, mode 0644
    """

    hash_algorithm: str = DEFAULT_HASH_ALGORITHM
    keyring: Path = field(default_factory=default_keyring)
    provenance_suffix: str = PROVENANCE_SUFFIX
    provenance_mode: int = PROVENANCE_MODE
    max_file_size: int = DEFAULT_MAX_FILE_SIZE

    def __post_init__(self):
        """Validate configuration after initialization."""
        self.keyring = Path(self.keyring).expanduser()
        try:
            hash_id = hash_id_from_name(self.hash_algorithm)
        except UnsupportedError:
            raise ValueError(f"unsupported hash_algorithm: {self.hash_algorithm}")
        if hash_id not in SIGNING_HASHES:
            raise ValueError(f"hash_algorithm {self.hash_algorithm} is too weak for signing")

        if not self.provenance_suffix:
            raise ValueError("provenance_suffix must not be empty")

        if self.max_file_size < 1:
            raise ValueError(f"max_file_size must be >= 1, got {self.max_file_size}")

    @property
    def hash_id(self) -> int:
        """OpenPGP algorithm id for ``hash_algorithm``."""
        return hash_id_from_name(self.hash_algorithm)

    @property
    def limits(self) -> SecurityLimits:
        return SecurityLimits(max_file_size=self.max_file_size)

    def provenance_path(self, archive: Path) -> Path:
        """Sibling provenance path for an archive."""
        archive = Path(archive)
        return archive.with_name(archive.name + self.provenance_suffix)

    @classmethod
    def from_env(cls) -> ProvenanceConfig:
        """
        Create configuration from environment variables.

        Environment variables:
            CHARTPROV_KEYRING: Keyring path
            CHARTPROV_SIGNING_HASH: Signature hash (SHA256, SHA384, SHA512, SHA224)
        """
        return cls(
            hash_algorithm=os.getenv("CHARTPROV_SIGNING_HASH", DEFAULT_HASH_ALGORITHM),
            keyring=default_keyring(),
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProvenanceConfig:
        """Create configuration from dictionary (e.g., YAML)."""
        mode = data.get("provenance_mode", PROVENANCE_MODE)
        if isinstance(mode, str):
            mode = int(mode, 8)

        return cls(
            hash_algorithm=data.get("hash_algorithm", DEFAULT_HASH_ALGORITHM),
            keyring=Path(data["keyring"]) if data.get("keyring") else default_keyring(),
            provenance_suffix=data.get("provenance_suffix", PROVENANCE_SUFFIX),
            provenance_mode=mode,
            max_file_size=data.get("max_file_size", DEFAULT_MAX_FILE_SIZE),
        )

    @classmethod
    def from_yaml(cls, path: Path) -> ProvenanceConfig:
        """Load configuration from a YAML file."""
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"configuration file {path} must contain a mapping")
        return cls.from_dict(data)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "hash_algorithm": self.hash_algorithm,
            "keyring": str(self.keyring),
            "provenance_suffix": self.provenance_suffix,
            "provenance_mode": f"{self.provenance_mode:o}",
            "max_file_size": self.max_file_size,
        }
