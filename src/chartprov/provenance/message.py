"""Message block codec.

A message block is the plaintext inside a provenance file: the chart
metadata as YAML, a separator line, then the checksum collection as YAML::

    name: mychart
    version: 0.1.0

    ...
    files:
      mychart-0.1.0.tgz: sha256:8f2c...

The separator is the YAML document end marker. ``---`` cannot be used because
clear-signed text starting with a dash is escaped.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import yaml

from chartprov.chart import Metadata
from chartprov.errors import MessageBlockError
from chartprov.provenance.hashing import tagged_digest

SEPARATOR = "\n...\n"


@dataclass
class SumCollection:
    """File and image checksums.

    Files map an archive basename to ``"sha256:<hex>"``. Images map
    ``"IMAGE:TAG"`` to a digest; they are recorded but never checked.
    """

    files: dict[str, str] = field(default_factory=dict)
    images: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"files": dict(self.files)}
        if self.images:
            result["images"] = dict(self.images)
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SumCollection:
        return cls(
            files=_string_map(data.get("files"), "files"),
            images=_string_map(data.get("images"), "images"),
        )


def _string_map(value: Any, what: str) -> dict[str, str]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise MessageBlockError(f"{what} must be a mapping")
    return {str(k): str(v) for k, v in value.items()}


def _dump(data: dict[str, Any]) -> str:
    return yaml.safe_dump(data, default_flow_style=False, sort_keys=True, allow_unicode=True)


def _load(part: str, what: str) -> dict[str, Any]:
    try:
        data = yaml.safe_load(part)
    except yaml.YAMLError as e:
        raise MessageBlockError(f"invalid {what} in message block: {e}")
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise MessageBlockError(f"{what} in message block must be a mapping")
    return data


def encode_message_block(metadata: Metadata, basename: str, digest: str) -> str:
    """Build the message block for one archive.

    Args:
        metadata: Chart metadata to embed
        basename: Archive file name (no directory)
        digest: Hex SHA-256 digest of the archive

    Returns:
        Message block text
    """
    sums = SumCollection(files={basename: tagged_digest(digest)})
    return _dump(metadata.to_dict()) + SEPARATOR + _dump(sums.to_dict())


def parse_message_block(text: str) -> tuple[Metadata, SumCollection]:
    """Split and parse a message block.

    Raises:
        MessageBlockError: If the block has fewer than two parts or either
            part is not a YAML mapping
    """
    parts = text.split(SEPARATOR)
    if len(parts) < 2:
        raise MessageBlockError("message block must have at least two parts")

    metadata = Metadata.from_dict(_load(parts[0], "chart metadata"))
    sums = SumCollection.from_dict(_load(parts[1], "checksums"))
    return metadata, sums
