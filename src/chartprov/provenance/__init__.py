"""Chart provenance (tamper-evident, signed chart archives).

Signs a chart archive into a clear-signed provenance file holding the chart
metadata and the archive checksum, and verifies archives against such files.
"""

from __future__ import annotations

from chartprov.errors import (
    AmbiguousIdentityError,
    ChecksumMismatchError,
    IntegrityError,
    MissingChecksumError,
    SignatureNotFoundError,
    SigningError,
    VerificationError,
)
from chartprov.provenance.hashing import sum_archive
from chartprov.provenance.keys import load_key, load_keyring, resolve_identity
from chartprov.provenance.message import SumCollection, encode_message_block, parse_message_block
from chartprov.provenance.signing import Signatory
from chartprov.provenance.verifier import Verification, verify_and_report

__all__ = [
    "AmbiguousIdentityError",
    "ChecksumMismatchError",
    "IntegrityError",
    "MissingChecksumError",
    "Signatory",
    "SignatureNotFoundError",
    "SigningError",
    "SumCollection",
    "Verification",
    "VerificationError",
    "encode_message_block",
    "load_key",
    "load_keyring",
    "parse_message_block",
    "resolve_identity",
    "sum_archive",
    "verify_and_report",
]
