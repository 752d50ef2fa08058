"""Cleartext signature framework (RFC 4880 section 7).

A clear-signed document is the plaintext, dash-escaped, between a
``BEGIN PGP SIGNED MESSAGE`` header and an armored detached signature. The
signature covers the canonical form of the text: CRLF line endings, trailing
spaces and tabs removed, and no line ending after the last line.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from chartprov.openpgp import armor
from chartprov.openpgp.errors import ArmorError, UnsupportedError
from chartprov.openpgp.keys import PrivateKey
from chartprov.openpgp.packet import hash_id_from_name, hash_name
from chartprov.openpgp.signature import SIG_TEXT, Signature

BEGIN_SIGNED_MESSAGE = "-----BEGIN PGP SIGNED MESSAGE-----"
BEGIN_SIGNATURE = f"-----BEGIN {armor.BLOCK_SIGNATURE}-----"


@dataclass
class ClearsignedBlock:
    """A decoded clear-signed document."""

    plaintext: str
    signed_bytes: bytes
    signature: bytes
    headers: dict[str, list[str]] = field(default_factory=dict)

    @property
    def hash_names(self) -> list[str]:
        names = []
        for value in self.headers.get("Hash", []):
            names.extend(name.strip() for name in value.split(",") if name.strip())
        return names

    @property
    def allowed_hashes(self) -> set[int] | None:
        """Hash algorithm ids named by the Hash headers, or None without any.

        Names this implementation does not know are dropped, so a header
        listing only unknown hashes allows nothing.
        """
        if "Hash" not in self.headers:
            return None
        allowed = set()
        for name in self.hash_names:
            try:
                allowed.add(hash_id_from_name(name))
            except UnsupportedError:
                continue
        return allowed


def canonical_text(text: str) -> bytes:
    """Canonical bytes covered by a text signature."""
    lines = text.replace("\r\n", "\n").split("\n")
    return "\r\n".join(line.rstrip(" \t") for line in lines).encode("utf-8")


def _escape(line: str) -> str:
    return "- " + line if line.startswith("-") else line


def _unescape(line: str) -> str:
    return line[2:] if line.startswith("- ") else line


def encode(text: str, private_key: PrivateKey, hash_algorithm: int = 10, created: int | None = None) -> str:
    """Clear-sign ``text``.

    Args:
        text: Plaintext to sign
        private_key: Unencrypted signing key
        hash_algorithm: OpenPGP hash algorithm id (default SHA-512)
        created: Signature creation time (default: now)

    Returns:
        The clear-signed document
    """
    signature = Signature.create(private_key, SIG_TEXT, canonical_text(text), hash_algorithm, created)
    escaped = "\n".join(_escape(line) for line in text.replace("\r\n", "\n").split("\n"))
    return (
        f"{BEGIN_SIGNED_MESSAGE}\n"
        f"Hash: {hash_name(hash_algorithm)}\n"
        "\n"
        f"{escaped}\n"
        + armor.encode(armor.BLOCK_SIGNATURE, signature.to_packet())
    )


def decode(data: bytes | str) -> ClearsignedBlock | None:
    """Decode the first clear-signed block in ``data``.

    Returns:
        ClearsignedBlock, or None if ``data`` holds no well-formed block
    """
    if isinstance(data, bytes):
        data = data.decode("utf-8", errors="replace")
    lines = data.replace("\r\n", "\n").split("\n")

    start = next((i for i, line in enumerate(lines) if line.rstrip() == BEGIN_SIGNED_MESSAGE), None)
    if start is None:
        return None

    headers: dict[str, list[str]] = {}
    index = start + 1
    while index < len(lines) and lines[index].strip():
        key, sep, value = lines[index].partition(":")
        if not sep:
            return None
        headers.setdefault(key.strip(), []).append(value.strip())
        index += 1
    if index >= len(lines):
        return None
    index += 1

    body_start = index
    while index < len(lines) and lines[index].rstrip() != BEGIN_SIGNATURE:
        index += 1
    if index >= len(lines):
        return None

    plaintext = "\n".join(_unescape(line) for line in lines[body_start:index])
    try:
        _, _, signature, _ = armor.decode_lines(lines, index)
    except ArmorError:
        return None

    return ClearsignedBlock(
        plaintext=plaintext,
        signed_bytes=canonical_text(plaintext),
        signature=signature,
        headers=headers,
    )
