"""OpenPGP packet framing (RFC 4880 section 4).

Reads both old and new format packet headers and always writes new format
headers. Partial body lengths and indeterminate lengths are rejected: key
files and detached signatures never need them.
"""

from __future__ import annotations

import hashlib
from collections.abc import Iterator
from dataclasses import dataclass

from chartprov.openpgp.errors import PacketError, UnsupportedError

# Packet tags
TAG_SIGNATURE = 2
TAG_SECRET_KEY = 5
TAG_PUBLIC_KEY = 6
TAG_SECRET_SUBKEY = 7
TAG_MARKER = 10
TAG_TRUST = 12
TAG_USER_ID = 13
TAG_PUBLIC_SUBKEY = 14
TAG_USER_ATTRIBUTE = 17

# Hash algorithm ids -> (hashlib name, armor header name)
HASH_ALGORITHMS: dict[int, tuple[str, str]] = {
    2: ("sha1", "SHA1"),
    8: ("sha256", "SHA256"),
    9: ("sha384", "SHA384"),
    10: ("sha512", "SHA512"),
    11: ("sha224", "SHA224"),
}

# SHA-1 is accepted on old signatures but never used to make new ones.
SIGNING_HASHES = frozenset({8, 9, 10, 11})


def hash_id_from_name(name: str) -> int:
    """Map an armor-style hash name (``SHA512``) to its algorithm id."""
    wanted = name.upper().replace("-", "")
    for hash_id, (_, header_name) in HASH_ALGORITHMS.items():
        if header_name == wanted:
            return hash_id
    raise UnsupportedError(f"unsupported hash algorithm: {name}")


def hash_name(hash_id: int) -> str:
    """Armor header name for a hash algorithm id."""
    try:
        return HASH_ALGORITHMS[hash_id][1]
    except KeyError:
        raise UnsupportedError(f"unsupported hash algorithm id: {hash_id}")


def new_hash(hash_id: int):
    """Create a hashlib object for an OpenPGP hash algorithm id."""
    try:
        return hashlib.new(HASH_ALGORITHMS[hash_id][0])
    except KeyError:
        raise UnsupportedError(f"unsupported hash algorithm id: {hash_id}")


@dataclass
class Packet:
    """A single OpenPGP packet: tag plus raw body."""

    tag: int
    body: bytes


class Reader:
    """Bounds-checked cursor over packet body bytes."""

    def __init__(self, data: bytes) -> None:
        self.data = data
        self.pos = 0

    def remaining(self) -> int:
        return len(self.data) - self.pos

    def take(self, n: int) -> bytes:
        if n < 0 or self.pos + n > len(self.data):
            raise PacketError("unexpected end of packet data")
        chunk = self.data[self.pos:self.pos + n]
        self.pos += n
        return chunk

    def rest(self) -> bytes:
        return self.take(self.remaining())

    def u8(self) -> int:
        return self.take(1)[0]

    def u16(self) -> int:
        return int.from_bytes(self.take(2), "big")

    def u32(self) -> int:
        return int.from_bytes(self.take(4), "big")

    def mpi_bytes(self) -> bytes:
        bits = self.u16()
        return self.take((bits + 7) // 8)

    def mpi(self) -> int:
        return int.from_bytes(self.mpi_bytes(), "big")


def encode_mpi(value: int | bytes) -> bytes:
    """Encode an integer (or big-endian bytes) as an OpenPGP MPI."""
    if isinstance(value, bytes):
        value = int.from_bytes(value, "big")
    bits = value.bit_length()
    return bits.to_bytes(2, "big") + value.to_bytes((bits + 7) // 8, "big")


def encode_length(length: int) -> bytes:
    """New-format body length octets (also used for subpacket lengths)."""
    if length < 192:
        return bytes([length])
    if length < 8384:
        length -= 192
        return bytes([(length >> 8) + 192, length & 0xFF])
    return b"\xff" + length.to_bytes(4, "big")


def read_length(reader: Reader) -> int:
    """Read new-format length octets."""
    first = reader.u8()
    if first < 192:
        return first
    if first < 224:
        return ((first - 192) << 8) + reader.u8() + 192
    if first == 255:
        return reader.u32()
    raise UnsupportedError("partial body lengths are not supported")


def encode_packet(tag: int, body: bytes) -> bytes:
    """Frame a packet body with a new-format header."""
    return bytes([0xC0 | tag]) + encode_length(len(body)) + body


def read_packets(data: bytes) -> Iterator[Packet]:
    """Iterate over the packets in a binary OpenPGP stream.

    Raises:
        PacketError: On malformed or truncated framing
        UnsupportedError: On partial or indeterminate lengths
    """
    reader = Reader(data)
    while reader.remaining():
        header = reader.u8()
        if not header & 0x80:
            raise PacketError(f"invalid packet header byte 0x{header:02x}")

        if header & 0x40:
            tag = header & 0x3F
            length = read_length(reader)
        else:
            tag = (header >> 2) & 0x0F
            length_type = header & 0x03
            if length_type == 3:
                raise UnsupportedError("indeterminate packet lengths are not supported")
            length = int.from_bytes(reader.take((1, 2, 4)[length_type]), "big")

        try:
            body = reader.take(length)
        except PacketError:
            raise PacketError(f"truncated packet (tag {tag}, length {length})")
        yield Packet(tag=tag, body=body)
