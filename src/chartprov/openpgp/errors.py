"""Errors raised by the OpenPGP subset."""

from __future__ import annotations


class OpenPGPError(Exception):
    """Base class for OpenPGP errors."""
    pass


class PacketError(OpenPGPError):
    """Structurally invalid packet data."""
    pass


class ArmorError(OpenPGPError):
    """Invalid ASCII armor."""
    pass


class UnsupportedError(OpenPGPError):
    """Valid OpenPGP data using a feature this implementation does not support."""
    pass


class SignatureError(OpenPGPError):
    """Signature does not verify."""
    pass


class UnknownIssuerError(SignatureError):
    """Signature was made by a key that is not in the keyring."""

    def __init__(self, key_id: bytes) -> None:
        self.key_id = key_id
        super().__init__(f"signature made by unknown key {key_id.hex().upper()}")
