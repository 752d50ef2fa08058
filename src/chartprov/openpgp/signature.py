"""Version 4 signature packets (RFC 4880 section 5.2)."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from chartprov.openpgp.errors import PacketError, SignatureError, UnsupportedError
from chartprov.openpgp.packet import (
    SIGNING_HASHES,
    TAG_SIGNATURE,
    Reader,
    encode_length,
    encode_mpi,
    encode_packet,
    hash_name,
    new_hash,
    read_length,
)

if TYPE_CHECKING:
    from chartprov.openpgp.keys import PrivateKey, PublicKey

# Signature types
SIG_BINARY = 0x00
SIG_TEXT = 0x01
SIG_GENERIC_CERT = 0x10
SIG_PERSONA_CERT = 0x11
SIG_CASUAL_CERT = 0x12
SIG_POSITIVE_CERT = 0x13
SIG_SUBKEY_BINDING = 0x18
SIG_PRIMARY_KEY_BINDING = 0x19

CERTIFICATION_TYPES = frozenset({
    SIG_GENERIC_CERT,
    SIG_PERSONA_CERT,
    SIG_CASUAL_CERT,
    SIG_POSITIVE_CERT,
})

# Subpacket types
SUBPACKET_CREATION_TIME = 2
SUBPACKET_ISSUER = 16
SUBPACKET_KEY_FLAGS = 27
SUBPACKET_EMBEDDED_SIGNATURE = 32
SUBPACKET_ISSUER_FINGERPRINT = 33

# Subpacket types that may be marked critical without invalidating a signature.
_KNOWN_SUBPACKETS = frozenset({2, 3, 4, 5, 7, 9, 11, 12, 16, 20, 21, 22, 23, 25, 27, 28, 30, 32, 33})

KEY_FLAG_CERTIFY = 0x01
KEY_FLAG_SIGN = 0x02


def _parse_subpackets(area: bytes) -> list[tuple[int, bytes]]:
    reader = Reader(area)
    subpackets = []
    while reader.remaining():
        try:
            length = read_length(reader)
        except UnsupportedError:
            raise PacketError("invalid subpacket length")
        if length == 0:
            raise PacketError("zero-length subpacket")
        kind = reader.u8()
        critical = bool(kind & 0x80)
        kind &= 0x7F
        if critical and kind not in _KNOWN_SUBPACKETS:
            raise UnsupportedError(f"unknown critical signature subpacket {kind}")
        subpackets.append((kind, reader.take(length - 1)))
    return subpackets


def _encode_subpacket(kind: int, data: bytes) -> bytes:
    return encode_length(len(data) + 1) + bytes([kind]) + data


@dataclass
class Signature:
    """A parsed or freshly created v4 signature."""

    sig_type: int
    pubkey_algorithm: int
    hash_algorithm: int
    hashed_area: bytes
    unhashed_area: bytes
    hash_prefix: bytes
    mpis: list[int] = field(default_factory=list)
    creation_time: int | None = None
    issuer_key_id: bytes | None = None
    issuer_fingerprint: bytes | None = None
    key_flags: int | None = None
    # Raw body of an embedded signature (a subkey's primary key binding).
    embedded: bytes | None = None

    @classmethod
    def parse(cls, body: bytes) -> Signature:
        """Parse a signature packet body.

        Raises:
            PacketError: If the body is malformed
            UnsupportedError: For non-v4 signatures or unknown critical subpackets
        """
        reader = Reader(body)
        version = reader.u8()
        if version != 4:
            raise UnsupportedError(f"unsupported signature version {version}")

        sig_type = reader.u8()
        pubkey_algorithm = reader.u8()
        hash_algorithm = reader.u8()
        hashed_area = reader.take(reader.u16())
        unhashed_area = reader.take(reader.u16())
        hash_prefix = reader.take(2)
        mpis = []
        while reader.remaining():
            mpis.append(reader.mpi())

        sig = cls(
            sig_type=sig_type,
            pubkey_algorithm=pubkey_algorithm,
            hash_algorithm=hash_algorithm,
            hashed_area=hashed_area,
            unhashed_area=unhashed_area,
            hash_prefix=hash_prefix,
            mpis=mpis,
        )

        for kind, data in _parse_subpackets(hashed_area):
            if kind == SUBPACKET_CREATION_TIME and len(data) == 4:
                sig.creation_time = int.from_bytes(data, "big")
            elif kind == SUBPACKET_KEY_FLAGS and data:
                sig.key_flags = data[0]
            elif kind == SUBPACKET_ISSUER and len(data) == 8:
                sig.issuer_key_id = data
            elif kind == SUBPACKET_ISSUER_FINGERPRINT and len(data) == 21:
                sig.issuer_fingerprint = data[1:]
            elif kind == SUBPACKET_EMBEDDED_SIGNATURE:
                sig.embedded = data

        # Issuer is commonly carried unhashed; it only selects the key to try.
        for kind, data in _parse_subpackets(unhashed_area):
            if kind == SUBPACKET_ISSUER and len(data) == 8 and sig.issuer_key_id is None:
                sig.issuer_key_id = data
            elif kind == SUBPACKET_EMBEDDED_SIGNATURE and sig.embedded is None:
                sig.embedded = data

        return sig

    @classmethod
    def create(
        cls,
        private_key: PrivateKey,
        sig_type: int,
        data: bytes,
        hash_algorithm: int,
        created: int | None = None,
        key_flags: int | None = None,
        embedded: Signature | None = None,
    ) -> Signature:
        """Sign ``data`` with ``private_key``.

        Args:
            private_key: Unencrypted private key
            sig_type: Signature type (e.g. SIG_TEXT)
            data: Bytes to sign, already framed for the signature type
            hash_algorithm: OpenPGP hash algorithm id
            created: Creation time (default: now)
            key_flags: Key flags subpacket value for self-signatures
            embedded: Signature to embed, e.g. a signing subkey's back-signature

        Returns:
            Signature
        """
        if hash_algorithm not in SIGNING_HASHES:
            raise UnsupportedError(f"{hash_name(hash_algorithm)} may not be used for new signatures")

        public = private_key.public
        created = int(time.time()) if created is None else int(created)

        hashed = _encode_subpacket(SUBPACKET_CREATION_TIME, created.to_bytes(4, "big"))
        if key_flags is not None:
            hashed += _encode_subpacket(SUBPACKET_KEY_FLAGS, bytes([key_flags]))
        hashed += _encode_subpacket(SUBPACKET_ISSUER_FINGERPRINT, b"\x04" + public.fingerprint)
        if embedded is not None:
            hashed += _encode_subpacket(SUBPACKET_EMBEDDED_SIGNATURE, embedded.serialize())
        unhashed = _encode_subpacket(SUBPACKET_ISSUER, public.key_id)

        sig = cls(
            sig_type=sig_type,
            pubkey_algorithm=public.algorithm,
            hash_algorithm=hash_algorithm,
            hashed_area=hashed,
            unhashed_area=unhashed,
            hash_prefix=b"",
            creation_time=created,
            issuer_key_id=public.key_id,
            issuer_fingerprint=public.fingerprint,
            key_flags=key_flags,
            embedded=embedded.serialize() if embedded is not None else None,
        )
        digest = sig.digest(data)
        sig.hash_prefix = digest[:2]
        sig.mpis = private_key.sign_digest(hash_algorithm, digest)
        return sig

    def _trailer(self) -> bytes:
        fields = (
            bytes([4, self.sig_type, self.pubkey_algorithm, self.hash_algorithm])
            + len(self.hashed_area).to_bytes(2, "big")
            + self.hashed_area
        )
        return fields + b"\x04\xff" + len(fields).to_bytes(4, "big")

    def digest(self, data: bytes) -> bytes:
        """Hash ``data`` plus the signature trailer."""
        h = new_hash(self.hash_algorithm)
        h.update(data)
        h.update(self._trailer())
        return h.digest()

    def issuer(self) -> bytes | None:
        """Key ID of the issuing key, if the signature names one."""
        if self.issuer_key_id is not None:
            return self.issuer_key_id
        if self.issuer_fingerprint is not None:
            return self.issuer_fingerprint[-8:]
        return None

    def verify(self, public_key: PublicKey, data: bytes) -> None:
        """Verify this signature over ``data``.

        Raises:
            SignatureError: If the signature does not verify
            UnsupportedError: If the hash algorithm is unsupported
        """
        if not public_key.matches_algorithm(self.pubkey_algorithm):
            raise SignatureError("public key algorithm does not match signature")
        digest = self.digest(data)
        if digest[:2] != self.hash_prefix:
            raise SignatureError("hash prefix mismatch")
        if not public_key.verify_digest(self.hash_algorithm, digest, self.mpis):
            raise SignatureError("invalid signature")

    def serialize(self) -> bytes:
        """Serialize to a signature packet body."""
        body = (
            bytes([4, self.sig_type, self.pubkey_algorithm, self.hash_algorithm])
            + len(self.hashed_area).to_bytes(2, "big")
            + self.hashed_area
            + len(self.unhashed_area).to_bytes(2, "big")
            + self.unhashed_area
            + self.hash_prefix
        )
        return body + b"".join(encode_mpi(value) for value in self.mpis)

    def to_packet(self) -> bytes:
        return encode_packet(TAG_SIGNATURE, self.serialize())
