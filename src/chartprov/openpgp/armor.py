"""ASCII armor (RFC 4880 section 6)."""

from __future__ import annotations

import base64
import binascii
import re

from chartprov.openpgp.errors import ArmorError

BLOCK_SIGNATURE = "PGP SIGNATURE"
BLOCK_PUBLIC_KEY = "PGP PUBLIC KEY BLOCK"
BLOCK_PRIVATE_KEY = "PGP PRIVATE KEY BLOCK"

CRC24_INIT = 0xB704CE
CRC24_POLY = 0x1864CFB

_BEGIN_RE = re.compile(r"^-----BEGIN (?P<type>[A-Z0-9 ,/]+)-----$")
_LINE_WIDTH = 64


def crc24(data: bytes) -> int:
    """Compute the CRC-24 checksum used by armor."""
    crc = CRC24_INIT
    for byte in data:
        crc ^= byte << 16
        for _ in range(8):
            crc <<= 1
            if crc & 0x1000000:
                crc ^= CRC24_POLY
    return crc & 0xFFFFFF


def encode(block_type: str, data: bytes, headers: dict[str, str] | None = None) -> str:
    """Armor binary data.

    Args:
        block_type: Block name, e.g. ``PGP SIGNATURE``
        data: Binary packet data
        headers: Optional armor headers

    Returns:
        Armored text ending with a newline
    """
    lines = [f"-----BEGIN {block_type}-----"]
    for key, value in (headers or {}).items():
        lines.append(f"{key}: {value}")
    lines.append("")

    body = base64.b64encode(data).decode("ascii")
    lines.extend(body[i:i + _LINE_WIDTH] for i in range(0, len(body), _LINE_WIDTH))
    lines.append("=" + base64.b64encode(crc24(data).to_bytes(3, "big")).decode("ascii"))
    lines.append(f"-----END {block_type}-----")
    return "\n".join(lines) + "\n"


def decode_lines(lines: list[str], start: int = 0) -> tuple[str, dict[str, str], bytes, int]:
    """Decode the first armored block found in ``lines`` at or after ``start``.

    Returns:
        Tuple of (block_type, headers, data, index of the line after END)

    Raises:
        ArmorError: If no block is found or the block is malformed
    """
    index = start
    match = None
    while index < len(lines):
        match = _BEGIN_RE.match(lines[index].strip())
        if match:
            break
        index += 1
    if match is None:
        raise ArmorError("armor block not found")

    block_type = match.group("type")
    end_marker = f"-----END {block_type}-----"
    index += 1

    headers: dict[str, str] = {}
    while index < len(lines) and ": " in lines[index]:
        key, _, value = lines[index].partition(": ")
        headers[key.strip()] = value.strip()
        index += 1
    if index < len(lines) and not lines[index].strip():
        index += 1

    body: list[str] = []
    checksum: str | None = None
    while True:
        if index >= len(lines):
            raise ArmorError(f"missing armor end marker for {block_type}")
        line = lines[index].strip()
        index += 1
        if line == end_marker:
            break
        if line.startswith("=") and len(line) == 5:
            checksum = line[1:]
        elif line:
            body.append(line)

    try:
        data = base64.b64decode("".join(body), validate=True)
    except binascii.Error as e:
        raise ArmorError(f"invalid base64 in armor body: {e}")

    if checksum is not None:
        try:
            expected = int.from_bytes(base64.b64decode(checksum, validate=True), "big")
        except binascii.Error as e:
            raise ArmorError(f"invalid armor checksum: {e}")
        if expected != crc24(data):
            raise ArmorError("armor checksum mismatch")

    return block_type, headers, data, index


def decode(text: str) -> tuple[str, dict[str, str], bytes]:
    """Decode the first armored block in ``text``."""
    block_type, headers, data, _ = decode_lines(text.replace("\r\n", "\n").split("\n"))
    return block_type, headers, data


def is_armored(data: bytes) -> bool:
    """Whether ``data`` looks like ASCII armor rather than binary packets."""
    return data.lstrip().startswith(b"-----BEGIN PGP")
