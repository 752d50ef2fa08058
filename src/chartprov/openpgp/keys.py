"""Keys, transferable keys (entities) and keyrings.

Supports v4 RSA and EdDSA (Ed25519) keys. Secret keys must be stored
unencrypted to be usable for signing; encrypted secret keys are loaded with
their public half only and flagged as encrypted.
"""

from __future__ import annotations

import hashlib
import logging
import time
from collections.abc import Collection, Iterable, Iterator
from dataclasses import dataclass, field

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ed25519, padding, rsa, utils

from chartprov.openpgp import armor
from chartprov.openpgp.errors import (
    ArmorError,
    PacketError,
    SignatureError,
    UnknownIssuerError,
    UnsupportedError,
)
from chartprov.openpgp.packet import (
    TAG_MARKER,
    TAG_PUBLIC_KEY,
    TAG_PUBLIC_SUBKEY,
    TAG_SECRET_KEY,
    TAG_SECRET_SUBKEY,
    TAG_SIGNATURE,
    TAG_TRUST,
    TAG_USER_ATTRIBUTE,
    TAG_USER_ID,
    Packet,
    Reader,
    encode_mpi,
    encode_packet,
    read_packets,
)
from chartprov.openpgp.signature import (
    CERTIFICATION_TYPES,
    KEY_FLAG_CERTIFY,
    KEY_FLAG_SIGN,
    SIG_BINARY,
    SIG_POSITIVE_CERT,
    SIG_PRIMARY_KEY_BINDING,
    SIG_SUBKEY_BINDING,
    SIG_TEXT,
    Signature,
)

logger = logging.getLogger(__name__)

# Public key algorithms
ALGO_RSA = 1
ALGO_RSA_SIGN_ONLY = 3
ALGO_EDDSA = 22

RSA_ALGORITHMS = frozenset({ALGO_RSA, ALGO_RSA_SIGN_ONLY})

# 1.3.6.1.4.1.11591.15.1
ED25519_OID = bytes.fromhex("2b06010401da470f01")

_CRYPTO_HASHES = {
    2: hashes.SHA1,
    8: hashes.SHA256,
    9: hashes.SHA384,
    10: hashes.SHA512,
    11: hashes.SHA224,
}


def _crypto_hash(hash_id: int) -> hashes.HashAlgorithm:
    try:
        return _CRYPTO_HASHES[hash_id]()
    except KeyError:
        raise UnsupportedError(f"unsupported hash algorithm id: {hash_id}")


@dataclass
class PublicKey:
    """A v4 public key or public subkey."""

    algorithm: int
    created: int
    body: bytes
    key: rsa.RSAPublicKey | ed25519.Ed25519PublicKey
    is_subkey: bool = False

    @classmethod
    def parse(cls, reader: Reader, is_subkey: bool = False) -> PublicKey:
        """Read public key fields from ``reader``, leaving it after the key material."""
        start = reader.pos
        version = reader.u8()
        if version != 4:
            raise UnsupportedError(f"unsupported key version {version}")
        created = reader.u32()
        algorithm = reader.u8()

        if algorithm in RSA_ALGORITHMS:
            n = reader.mpi()
            e = reader.mpi()
            try:
                key = rsa.RSAPublicNumbers(e, n).public_key()
            except ValueError as exc:
                raise PacketError(f"invalid RSA public key: {exc}")
        elif algorithm == ALGO_EDDSA:
            oid = reader.take(reader.u8())
            if oid != ED25519_OID:
                raise UnsupportedError(f"unsupported EdDSA curve OID {oid.hex()}")
            point = reader.mpi_bytes()
            if len(point) != 33 or point[0] != 0x40:
                raise PacketError("invalid Ed25519 public point")
            key = ed25519.Ed25519PublicKey.from_public_bytes(point[1:])
        else:
            raise UnsupportedError(f"unsupported public key algorithm {algorithm}")

        return cls(
            algorithm=algorithm,
            created=created,
            body=reader.data[start:reader.pos],
            key=key,
            is_subkey=is_subkey,
        )

    @classmethod
    def from_crypto(cls, key: object, created: int, is_subkey: bool = False) -> PublicKey:
        """Wrap a ``cryptography`` public key."""
        if isinstance(key, rsa.RSAPublicKey):
            numbers = key.public_numbers()
            algorithm = ALGO_RSA
            material = encode_mpi(numbers.n) + encode_mpi(numbers.e)
        elif isinstance(key, ed25519.Ed25519PublicKey):
            algorithm = ALGO_EDDSA
            raw = key.public_bytes(
                encoding=serialization.Encoding.Raw,
                format=serialization.PublicFormat.Raw,
            )
            material = bytes([len(ED25519_OID)]) + ED25519_OID + encode_mpi(b"\x40" + raw)
        else:
            raise UnsupportedError(f"unsupported key type {type(key).__name__}")

        body = b"\x04" + created.to_bytes(4, "big") + bytes([algorithm]) + material
        return cls(algorithm=algorithm, created=created, body=body, key=key, is_subkey=is_subkey)

    @property
    def fingerprint(self) -> bytes:
        return hashlib.sha1(self.hash_data()).digest()

    @property
    def key_id(self) -> bytes:
        return self.fingerprint[-8:]

    @property
    def key_id_hex(self) -> str:
        return self.key_id.hex().upper()

    def hash_data(self) -> bytes:
        """Key framing hashed into certifications and bindings."""
        return b"\x99" + len(self.body).to_bytes(2, "big") + self.body

    def matches_algorithm(self, algorithm: int) -> bool:
        if self.algorithm in RSA_ALGORITHMS:
            return algorithm in RSA_ALGORITHMS
        return algorithm == self.algorithm

    def verify_digest(self, hash_id: int, digest: bytes, mpis: list[int]) -> bool:
        """Check raw signature values over an already computed digest."""
        try:
            if self.algorithm in RSA_ALGORITHMS:
                if len(mpis) != 1:
                    return False
                size = (self.key.key_size + 7) // 8
                self.key.verify(
                    mpis[0].to_bytes(size, "big"),
                    digest,
                    padding.PKCS1v15(),
                    utils.Prehashed(_crypto_hash(hash_id)),
                )
            else:
                if len(mpis) != 2:
                    return False
                r, s = (value.to_bytes(32, "big") for value in mpis)
                self.key.verify(r + s, digest)
        except (InvalidSignature, OverflowError):
            return False
        return True

    def to_packet(self) -> bytes:
        tag = TAG_PUBLIC_SUBKEY if self.is_subkey else TAG_PUBLIC_KEY
        return encode_packet(tag, self.body)


@dataclass
class PrivateKey:
    """A v4 secret key packet: public half plus (optionally) usable secret material."""

    public: PublicKey
    body: bytes
    key: rsa.RSAPrivateKey | ed25519.Ed25519PrivateKey | None = None
    encrypted: bool = False

    @classmethod
    def parse(cls, body: bytes, is_subkey: bool = False) -> PrivateKey:
        reader = Reader(body)
        public = PublicKey.parse(reader, is_subkey=is_subkey)
        usage = reader.u8()
        if usage != 0:
            return cls(public=public, body=body, encrypted=True)

        secret_start = reader.pos
        if public.algorithm in RSA_ALGORITHMS:
            d, p, q, _u = (reader.mpi() for _ in range(4))
            secret_end = reader.pos
            pub_numbers = public.key.public_numbers()
            try:
                key = rsa.RSAPrivateNumbers(
                    p=p,
                    q=q,
                    d=d,
                    dmp1=rsa.rsa_crt_dmp1(d, p),
                    dmq1=rsa.rsa_crt_dmq1(d, q),
                    iqmp=rsa.rsa_crt_iqmp(p, q),
                    public_numbers=pub_numbers,
                ).private_key()
            except ValueError as exc:
                raise PacketError(f"invalid RSA secret key: {exc}")
        else:
            seed = reader.mpi_bytes().rjust(32, b"\x00")
            secret_end = reader.pos
            if len(seed) != 32:
                raise PacketError("invalid Ed25519 secret key length")
            key = ed25519.Ed25519PrivateKey.from_private_bytes(seed)
            derived = key.public_key().public_bytes(
                encoding=serialization.Encoding.Raw,
                format=serialization.PublicFormat.Raw,
            )
            expected = public.key.public_bytes(
                encoding=serialization.Encoding.Raw,
                format=serialization.PublicFormat.Raw,
            )
            if derived != expected:
                raise PacketError("Ed25519 secret key does not match its public key")

        checksum = reader.u16()
        if sum(body[secret_start:secret_end]) & 0xFFFF != checksum:
            raise PacketError("secret key checksum mismatch")

        return cls(public=public, body=body, key=key)

    @classmethod
    def from_crypto(cls, key: object, created: int, is_subkey: bool = False) -> PrivateKey:
        """Wrap a ``cryptography`` private key as an unencrypted secret key."""
        public = PublicKey.from_crypto(key.public_key(), created, is_subkey=is_subkey)
        if isinstance(key, rsa.RSAPrivateKey):
            numbers = key.private_numbers()
            # OpenPGP stores p < q and u = p^-1 mod q.
            p, q = sorted((numbers.p, numbers.q))
            secret = (
                encode_mpi(numbers.d)
                + encode_mpi(p)
                + encode_mpi(q)
                + encode_mpi(pow(p, -1, q))
            )
        else:
            seed = key.private_bytes(
                encoding=serialization.Encoding.Raw,
                format=serialization.PrivateFormat.Raw,
                encryption_algorithm=serialization.NoEncryption(),
            )
            secret = encode_mpi(seed)

        checksum = (sum(secret) & 0xFFFF).to_bytes(2, "big")
        return cls(public=public, body=public.body + b"\x00" + secret + checksum, key=key)

    def sign_digest(self, hash_id: int, digest: bytes) -> list[int]:
        """Produce raw signature values over an already computed digest."""
        if self.key is None:
            raise UnsupportedError("private key is encrypted")
        if isinstance(self.key, rsa.RSAPrivateKey):
            signature = self.key.sign(digest, padding.PKCS1v15(), utils.Prehashed(_crypto_hash(hash_id)))
            return [int.from_bytes(signature, "big")]
        signature = self.key.sign(digest)
        return [int.from_bytes(signature[:32], "big"), int.from_bytes(signature[32:], "big")]

    def to_packet(self) -> bytes:
        tag = TAG_SECRET_SUBKEY if self.public.is_subkey else TAG_SECRET_KEY
        return encode_packet(tag, self.body)


@dataclass
class Identity:
    """A user ID with its verified self-certification."""

    name: str
    user_id: bytes
    self_signature: Signature
    signatures: list[Signature] = field(default_factory=list)


@dataclass
class Subkey:
    """A subkey bound to its primary key.

    A subkey flagged for signing is only used once it has also signed its
    primary key (the back-signature embedded in the binding); otherwise
    anyone could claim another owner's signing key as their subkey.
    """

    public_key: PublicKey
    binding: Signature
    private_key: PrivateKey | None = None
    cross_certified: bool = False

    def can_sign(self) -> bool:
        flags = self.binding.key_flags
        return flags is not None and bool(flags & KEY_FLAG_SIGN) and self.cross_certified


@dataclass
class Entity:
    """A transferable key: primary key, identities and subkeys."""

    primary_key: PublicKey
    private_key: PrivateKey | None = None
    identities: dict[str, Identity] = field(default_factory=dict)
    subkeys: list[Subkey] = field(default_factory=list)
    direct_signatures: list[Signature] = field(default_factory=list)

    @property
    def fingerprint(self) -> bytes:
        return self.primary_key.fingerprint

    @property
    def key_id(self) -> bytes:
        return self.primary_key.key_id

    @property
    def name(self) -> str:
        """First user ID, for display."""
        return next(iter(self.identities), "")

    def has_private_key(self) -> bool:
        return self.private_key is not None

    def signing_keys(self) -> Iterator[PublicKey]:
        """Primary key plus subkeys flagged for signing."""
        yield self.primary_key
        for subkey in self.subkeys:
            if subkey.can_sign():
                yield subkey.public_key

    @classmethod
    def from_private_key(
        cls,
        key: object,
        user_ids: Iterable[str],
        created: int | None = None,
        hash_algorithm: int = 10,
    ) -> Entity:
        """Build a self-certified entity around an existing ``cryptography`` key."""
        created = int(time.time()) if created is None else created
        secret = PrivateKey.from_crypto(key, created)
        entity = cls(primary_key=secret.public, private_key=secret)
        for name in user_ids:
            user_id = name.encode("utf-8")
            self_signature = Signature.create(
                secret,
                SIG_POSITIVE_CERT,
                _user_id_hash_data(secret.public, user_id),
                hash_algorithm,
                created=created,
                key_flags=KEY_FLAG_CERTIFY | KEY_FLAG_SIGN,
            )
            entity.identities[name] = Identity(name=name, user_id=user_id, self_signature=self_signature)
        return entity

    def add_subkey(
        self,
        key: object,
        created: int | None = None,
        key_flags: int = KEY_FLAG_SIGN,
        hash_algorithm: int = 10,
    ) -> Subkey:
        """Bind an existing ``cryptography`` key to this entity as a subkey.

        Signing subkeys get a back-signature embedded in their binding.

        Raises:
            UnsupportedError: If this entity has no usable private key
        """
        if self.private_key is None or self.private_key.key is None:
            raise UnsupportedError("binding a subkey requires the primary private key")
        created = int(time.time()) if created is None else created
        secret = PrivateKey.from_crypto(key, created, is_subkey=True)
        data = self.primary_key.hash_data() + secret.public.hash_data()

        back_signature = None
        if key_flags & KEY_FLAG_SIGN:
            back_signature = Signature.create(secret, SIG_PRIMARY_KEY_BINDING, data, hash_algorithm, created=created)
        binding = Signature.create(
            self.private_key,
            SIG_SUBKEY_BINDING,
            data,
            hash_algorithm,
            created=created,
            key_flags=key_flags,
            embedded=back_signature,
        )
        subkey = Subkey(
            public_key=secret.public,
            binding=binding,
            private_key=secret,
            cross_certified=back_signature is not None,
        )
        self.subkeys.append(subkey)
        return subkey

    def serialize(self, include_private: bool = False) -> bytes:
        """Serialize as a binary transferable key."""
        if include_private and self.private_key is not None:
            parts = [self.private_key.to_packet()]
        else:
            parts = [self.primary_key.to_packet()]
        parts.extend(sig.to_packet() for sig in self.direct_signatures)
        for identity in self.identities.values():
            parts.append(encode_packet(TAG_USER_ID, identity.user_id))
            parts.append(identity.self_signature.to_packet())
            parts.extend(sig.to_packet() for sig in identity.signatures)
        for subkey in self.subkeys:
            if include_private and subkey.private_key is not None:
                parts.append(subkey.private_key.to_packet())
            else:
                parts.append(subkey.public_key.to_packet())
            parts.append(subkey.binding.to_packet())
        return b"".join(parts)

    def armor(self, include_private: bool = False) -> str:
        block = armor.BLOCK_PRIVATE_KEY if include_private else armor.BLOCK_PUBLIC_KEY
        return armor.encode(block, self.serialize(include_private))


def _user_id_hash_data(primary: PublicKey, user_id: bytes) -> bytes:
    return primary.hash_data() + b"\xb4" + len(user_id).to_bytes(4, "big") + user_id


def _parse_key_packet(packet: Packet, is_subkey: bool) -> tuple[PublicKey, PrivateKey | None]:
    if packet.tag in (TAG_SECRET_KEY, TAG_SECRET_SUBKEY):
        private = PrivateKey.parse(packet.body, is_subkey=is_subkey)
        return private.public, private
    return PublicKey.parse(Reader(packet.body), is_subkey=is_subkey), None


def _self_signature(
    primary: PublicKey,
    signatures: list[Signature],
    sig_types: frozenset[int],
    data: bytes,
    what: str,
) -> Signature:
    """Newest valid signature of the given types issued by ``primary``."""
    best = None
    for sig in signatures:
        if sig.sig_type not in sig_types or sig.issuer() != primary.key_id:
            continue
        try:
            sig.verify(primary, data)
        except UnsupportedError as e:
            logger.debug(f"Skipping self-signature on {what}: {e}")
            continue
        except SignatureError:
            raise PacketError(f"{what} self-signature invalid")
        if best is None or (sig.creation_time or 0) >= (best.creation_time or 0):
            best = sig
    if best is None:
        raise PacketError(f"{what} is not followed by a valid self-signature")
    return best


def _has_back_signature(subkey: PublicKey, binding: Signature, data: bytes) -> bool:
    """Whether ``binding`` embeds a valid primary key binding made by ``subkey``."""
    if binding.embedded is None:
        return False
    try:
        back = Signature.parse(binding.embedded)
        if back.sig_type != SIG_PRIMARY_KEY_BINDING:
            return False
        back.verify(subkey, data)
    except (PacketError, UnsupportedError, SignatureError) as e:
        logger.debug(f"Subkey {subkey.key_id_hex} back-signature rejected: {e}")
        return False
    return True


def _build_entity(packets: list[Packet]) -> Entity:
    primary, private = _parse_key_packet(packets[0], is_subkey=False)
    entity = Entity(primary_key=primary, private_key=private)

    user_ids: list[tuple[bytes, list[Signature]]] = []
    subkeys: list[tuple[PublicKey, PrivateKey | None, list[Signature]]] = []
    sink: list[Signature] | None = entity.direct_signatures

    for packet in packets[1:]:
        if packet.tag == TAG_USER_ID:
            sigs: list[Signature] = []
            user_ids.append((packet.body, sigs))
            sink = sigs
        elif packet.tag in (TAG_PUBLIC_SUBKEY, TAG_SECRET_SUBKEY):
            try:
                sub_public, sub_private = _parse_key_packet(packet, is_subkey=True)
            except UnsupportedError as e:
                logger.debug(f"Skipping subkey of {primary.key_id_hex}: {e}")
                sink = None
                continue
            sigs = []
            subkeys.append((sub_public, sub_private, sigs))
            sink = sigs
        elif packet.tag == TAG_USER_ATTRIBUTE:
            sink = None
        elif packet.tag == TAG_SIGNATURE:
            if sink is None:
                continue
            try:
                sink.append(Signature.parse(packet.body))
            except UnsupportedError as e:
                logger.debug(f"Skipping signature on {primary.key_id_hex}: {e}")
        elif packet.tag in (TAG_TRUST, TAG_MARKER):
            continue
        else:
            raise PacketError(f"unexpected packet tag {packet.tag} in transferable key")

    for user_id, sigs in user_ids:
        name = user_id.decode("utf-8", errors="replace")
        self_signature = _self_signature(
            primary, sigs, CERTIFICATION_TYPES, _user_id_hash_data(primary, user_id), f"user ID {name!r}"
        )
        others = [sig for sig in sigs if sig is not self_signature]
        entity.identities[name] = Identity(
            name=name, user_id=user_id, self_signature=self_signature, signatures=others
        )

    if not entity.identities:
        raise PacketError(f"key {primary.key_id_hex} has no identities")

    for sub_public, sub_private, sigs in subkeys:
        data = primary.hash_data() + sub_public.hash_data()
        binding = _self_signature(
            primary,
            sigs,
            frozenset({SIG_SUBKEY_BINDING}),
            data,
            f"subkey {sub_public.key_id_hex}",
        )
        entity.subkeys.append(Subkey(
            public_key=sub_public,
            binding=binding,
            private_key=sub_private,
            cross_certified=_has_back_signature(sub_public, binding, data),
        ))

    return entity


def _dearmor(data: bytes) -> bytes:
    lines = data.decode("utf-8", errors="replace").replace("\r\n", "\n").split("\n")
    blocks = []
    index = 0
    while any(line.startswith("-----BEGIN PGP") for line in lines[index:]):
        _, _, block, index = armor.decode_lines(lines, index)
        blocks.append(block)
    return b"".join(blocks)


def read_keyring(data: bytes) -> list[Entity]:
    """Read every transferable key in binary or armored ``data``.

    Entities using unsupported algorithms are skipped. An error is raised
    only when nothing at all could be read.

    Raises:
        PacketError: On malformed key data
        ArmorError: On malformed armor
        UnsupportedError: If every entity present was unsupported
    """
    if armor.is_armored(data):
        data = _dearmor(data)

    groups: list[list[Packet]] = []
    for packet in read_packets(data):
        if packet.tag in (TAG_PUBLIC_KEY, TAG_SECRET_KEY):
            groups.append([packet])
        elif packet.tag in (TAG_TRUST, TAG_MARKER) and not groups:
            continue
        elif not groups:
            raise PacketError("key data does not start with a primary key")
        else:
            groups[-1].append(packet)

    entities = []
    last_error: UnsupportedError | None = None
    for group in groups:
        try:
            entities.append(_build_entity(group))
        except UnsupportedError as e:
            logger.debug(f"Skipping unsupported key: {e}")
            last_error = e

    if not entities and last_error is not None:
        raise last_error
    return entities


def read_entity(data: bytes) -> Entity:
    """Read the first transferable key in ``data``."""
    entities = read_keyring(data)
    if not entities:
        raise PacketError("no key found")
    return entities[0]


def check_detached_signature(
    keyring: Iterable[Entity],
    signed: bytes,
    signature_data: bytes,
    hash_algorithms: Collection[int] | None = None,
) -> Entity:
    """Verify a detached signature over ``signed`` and return the signer.

    Args:
        keyring: Candidate signers
        signed: Exact bytes covered by the signature
        signature_data: Binary signature packet(s)
        hash_algorithms: Hash algorithm ids the signature may use (None: any)

    Returns:
        The entity whose key made the signature

    Raises:
        UnknownIssuerError: If no key in the keyring matches the issuer
        SignatureError: If the signature is malformed or does not verify
    """
    signature = None
    try:
        for packet in read_packets(signature_data):
            if packet.tag == TAG_SIGNATURE:
                signature = Signature.parse(packet.body)
                break
    except (PacketError, UnsupportedError, ArmorError) as e:
        raise SignatureError(f"malformed signature: {e}")

    if signature is None:
        raise SignatureError("no signature packet found")
    if signature.sig_type not in (SIG_BINARY, SIG_TEXT):
        raise SignatureError(f"unexpected signature type 0x{signature.sig_type:02x}")
    if hash_algorithms is not None and signature.hash_algorithm not in hash_algorithms:
        raise SignatureError(f"signature hash algorithm {signature.hash_algorithm} is not listed in the Hash header")

    issuer = signature.issuer()
    if issuer is None:
        raise SignatureError("signature does not identify its issuer")

    candidates = [
        (entity, key)
        for entity in keyring
        for key in entity.signing_keys()
        if key.key_id == issuer
    ]
    if not candidates:
        raise UnknownIssuerError(issuer)

    error = SignatureError("invalid signature")
    for entity, key in candidates:
        try:
            signature.verify(key, signed)
        except UnsupportedError as e:
            error = SignatureError(str(e))
            continue
        except SignatureError as e:
            error = e
            continue
        return entity
    raise error
