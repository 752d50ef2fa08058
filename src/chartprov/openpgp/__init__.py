"""Minimal OpenPGP implementation: keys, keyrings and clear signatures.

Covers what provenance files need: v4 RSA and Ed25519 keys, transferable
key (keyring) parsing, text signatures and the cleartext signature
framework. Cryptographic primitives come from ``cryptography``.
"""

from __future__ import annotations

from chartprov.openpgp.clearsign import ClearsignedBlock
from chartprov.openpgp.errors import (
    ArmorError,
    OpenPGPError,
    PacketError,
    SignatureError,
    UnknownIssuerError,
    UnsupportedError,
)
from chartprov.openpgp.keys import (
    Entity,
    Identity,
    PrivateKey,
    PublicKey,
    Subkey,
    check_detached_signature,
    read_entity,
    read_keyring,
)
from chartprov.openpgp.packet import hash_id_from_name, hash_name
from chartprov.openpgp.signature import Signature

__all__ = [
    "ArmorError",
    "ClearsignedBlock",
    "Entity",
    "Identity",
    "OpenPGPError",
    "PacketError",
    "PrivateKey",
    "PublicKey",
    "Signature",
    "SignatureError",
    "Subkey",
    "UnknownIssuerError",
    "UnsupportedError",
    "check_detached_signature",
    "hash_id_from_name",
    "hash_name",
    "read_entity",
    "read_keyring",
]
