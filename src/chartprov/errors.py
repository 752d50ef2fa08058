"""Errors raised while signing and verifying chart provenance."""

from __future__ import annotations


class ProvenanceError(Exception):
    """Base class for provenance errors."""
    pass


class FileTypeError(ProvenanceError):
    """A directory (or other non-regular file) was given where a file is required."""
    pass


class ChartLoadError(ProvenanceError):
    """Chart metadata could not be read from an archive."""
    pass


class MessageBlockError(ProvenanceError):
    """Malformed message block inside a provenance file."""
    pass


class KeyLoadError(ProvenanceError):
    """No usable key could be read from a key or keyring file."""
    pass


class SigningError(ProvenanceError):
    """Error during signing operation."""
    pass


class AmbiguousIdentityError(ProvenanceError):
    """More than one key matches an identity name."""

    def __init__(self, name: str, candidates: list[str]) -> None:
        self.name = name
        self.candidates = candidates
        super().__init__(f"more than one key contain the id {name!r}")


class VerificationError(ProvenanceError):
    """Error during verification."""
    pass


class SignatureNotFoundError(VerificationError):
    """The provenance file holds no clear-signed block."""
    pass


class IntegrityError(VerificationError):
    """The archive does not match the checksums in its provenance."""

    def __init__(self, message: str, filename: str, expected: str | None, actual: str) -> None:
        self.filename = filename
        self.expected = expected
        self.actual = actual
        super().__init__(message)


class MissingChecksumError(IntegrityError):
    """The provenance has no checksum for the archive."""

    def __init__(self, filename: str, actual: str) -> None:
        super().__init__(
            f"provenance does not contain a SHA for a file named {filename!r}",
            filename=filename,
            expected=None,
            actual=actual,
        )


class ChecksumMismatchError(IntegrityError):
    """The archive checksum differs from the one in its provenance."""

    def __init__(self, filename: str, expected: str, actual: str) -> None:
        super().__init__(
            f"sha256 sum does not match for {filename}: {expected!r} != {actual!r}",
            filename=filename,
            expected=expected,
            actual=actual,
        )
