"""Signing chart archives and verifying their provenance files.

A Signatory holds an optional signing key and a keyring. The same Signatory
can sign or verify any number of charts:

    signer = Signatory.from_keyring(Path("secring.gpg"), "Chart Signer")
    prov = signer.clear_sign(Path("mychart-0.1.0.tgz"))

    verifier = Signatory.from_keyring(Path("pubring.gpg"))
    verification = verifier.verify(Path("mychart-0.1.0.tgz"), Path("mychart-0.1.0.tgz.prov"))
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

from chartprov.chart import load_metadata
from chartprov.config import ProvenanceConfig
from chartprov.errors import (
    ChecksumMismatchError,
    MissingChecksumError,
    SignatureNotFoundError,
    SigningError,
    VerificationError,
)
from chartprov.openpgp import Entity, SignatureError, UnknownIssuerError, check_detached_signature
from chartprov.openpgp import clearsign
from chartprov.provenance.hashing import sum_archive, tagged_digest
from chartprov.provenance.keys import load_key, load_keyring, resolve_identity
from chartprov.provenance.message import encode_message_block, parse_message_block
from chartprov.provenance.verifier import Verification
from chartprov.security import SecurityLimits, require_file, safe_read_file

logger = logging.getLogger(__name__)


@dataclass
class Signatory:
    """Signs charts and verifies provenance files.

    ``entity`` is the signing key; it must carry a private key to sign.
    ``keyring`` holds the keys trusted when verifying.
    """

    entity: Entity | None = None
    keyring: list[Entity] = field(default_factory=list)
    limits: SecurityLimits = field(default_factory=SecurityLimits)

    @classmethod
    def from_files(
        cls,
        keyfile: Path,
        keyringfile: Path,
        limits: SecurityLimits | None = None,
    ) -> Signatory:
        """Build a Signatory from a key file and a keyring file.

        The key file may hold a public key, a private key, or both; signing
        additionally requires the private key.

        Raises:
            OSError: If either file cannot be read
            KeyLoadError: If either file holds no valid key data
        """
        limits = limits or SecurityLimits()
        return cls(
            entity=load_key(keyfile, limits),
            keyring=load_keyring(keyringfile, limits),
            limits=limits,
        )

    @classmethod
    def from_keyring(
        cls,
        keyringfile: Path,
        name: str = "",
        limits: SecurityLimits | None = None,
    ) -> Signatory:
        """Build a Signatory from a keyring, picking the signing key by name.

        With an empty name no signing key is set. Otherwise the key is chosen
        by ``resolve_identity``. A name that matches nothing is not an error
        here; signing with the resulting Signatory fails instead.

        Raises:
            OSError: If the keyring cannot be read
            KeyLoadError: If the keyring is invalid
            AmbiguousIdentityError: If several keys match ``name``
        """
        limits = limits or SecurityLimits()
        signatory = cls(keyring=load_keyring(keyringfile, limits), limits=limits)
        if not name:
            return signatory

        signatory.entity = resolve_identity(signatory.keyring, name)
        if signatory.entity is None:
            logger.warning(f"No key in {keyringfile} matches {name!r}")
        else:
            logger.debug(f"Using key {signatory.entity.primary_key.key_id_hex} for {name!r}")
        return signatory

    def clear_sign(self, chart_path: Path, config: ProvenanceConfig | None = None) -> str:
        """Sign a chart archive.

        Args:
            chart_path: Path to the chart archive
            config: Signing configuration (signature hash; default SHA-512)

        Returns:
            Clear-signed provenance text

        Raises:
            SigningError: If there is no usable private key
            FileNotFoundError: If the archive does not exist
            FileTypeError: If chart_path is a directory
            ChartLoadError: If the archive has no readable Chart.yaml
        """
        config = config or ProvenanceConfig()

        if self.entity is None or self.entity.private_key is None:
            raise SigningError("private key not found")
        if self.entity.private_key.key is None:
            raise SigningError(f"private key {self.entity.primary_key.key_id_hex} is encrypted")

        chart_path = require_file(Path(chart_path))

        digest = sum_archive(chart_path)
        metadata = load_metadata(chart_path, self.limits)
        block = encode_message_block(metadata, chart_path.name, digest)
        logger.debug(f"Signing {chart_path.name} ({tagged_digest(digest)}) with {config.hash_algorithm}")

        return clearsign.encode(block, self.entity.private_key, hash_algorithm=config.hash_id)

    def verify(self, chart_path: Path, sig_path: Path) -> Verification:
        """Verify a chart archive against its provenance file.

        Args:
            chart_path: Path to the chart archive
            sig_path: Path to the provenance file

        Returns:
            Verification naming the signer and the verified hash

        Raises:
            FileNotFoundError: If either file does not exist
            FileTypeError: If either path is a directory
            SignatureNotFoundError: If the provenance holds no signed block
            VerificationError: If the signature is invalid or the signer unknown
            MessageBlockError: If the signed message block is malformed
            MissingChecksumError: If the provenance has no hash for the archive
            ChecksumMismatchError: If the archive hash differs
        """
        chart_path = Path(chart_path)
        sig_path = Path(sig_path)
        for path in (chart_path, sig_path):
            require_file(path)

        block = clearsign.decode(safe_read_file(sig_path, self.limits))
        if block is None:
            raise SignatureNotFoundError("failed to decode signature: signature block not found")

        try:
            signed_by = check_detached_signature(
                self.keyring, block.signed_bytes, block.signature, hash_algorithms=block.allowed_hashes
            )
        except UnknownIssuerError as e:
            raise VerificationError(f"signer is not in the keyring: {e}")
        except SignatureError as e:
            raise VerificationError(f"signature verification failed: {e}")
        logger.debug(f"Provenance {sig_path.name} signed by {signed_by.name}")

        actual = tagged_digest(sum_archive(chart_path))
        _, sums = parse_message_block(block.plaintext)

        basename = chart_path.name
        expected = sums.files.get(basename)
        if expected is None:
            raise MissingChecksumError(basename, actual)
        if expected != actual:
            raise ChecksumMismatchError(basename, expected, actual)

        return Verification(signed_by=signed_by, file_hash=actual, file_name=basename)
