"""Chart metadata (Chart.yaml) and reading it out of a chart archive."""

from __future__ import annotations

import tarfile
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from chartprov.errors import ChartLoadError
from chartprov.security import SecurityLimits

CHART_FILE = "Chart.yaml"


@dataclass
class Maintainer:
    """A chart maintainer."""

    name: str = ""
    email: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {k: v for k, v in (("name", self.name), ("email", self.email)) if v}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Maintainer:
        return cls(name=str(data.get("name") or ""), email=str(data.get("email") or ""))


@dataclass
class Metadata:
    """Descriptive chart fields.

    Carried through provenance files as-is; nothing here is validated.
    Unknown keys are dropped on load and empty fields are omitted on dump.
    """

    name: str = ""
    version: str = ""
    description: str = ""
    home: str = ""
    sources: list[str] = field(default_factory=list)
    keywords: list[str] = field(default_factory=list)
    maintainers: list[Maintainer] = field(default_factory=list)
    engine: str = ""
    icon: str = ""
    apiVersion: str = ""
    appVersion: str = ""
    kubeVersion: str = ""
    deprecated: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary, omitting empty fields."""
        result: dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if not value:
                continue
            if f.name == "maintainers":
                value = [m.to_dict() for m in value]
            result[f.name] = value
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Metadata:
        """Create from dictionary, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        kwargs: dict[str, Any] = {}
        for key, value in data.items():
            if key not in known or value is None:
                continue
            if key == "maintainers":
                items = value if isinstance(value, list) else []
                value = [Maintainer.from_dict(m) for m in items if isinstance(m, dict)]
            elif key in ("sources", "keywords"):
                value = [str(v) for v in value] if isinstance(value, list) else [str(value)]
            elif key == "deprecated":
                value = bool(value)
            else:
                value = str(value)
            kwargs[key] = value
        return cls(**kwargs)


def load_metadata(archive_path: Path, limits: SecurityLimits | None = None) -> Metadata:
    """Read Chart.yaml from a chart archive.

    The archive is a (usually gzipped) tarball whose top-level directory holds
    Chart.yaml.

    Args:
        archive_path: Path to the chart archive
        limits: Security limits (Chart.yaml size)

    Returns:
        Metadata

    Raises:
        ChartLoadError: If the archive is unreadable or has no valid Chart.yaml
    """
    limits = limits or SecurityLimits()

    try:
        with tarfile.open(archive_path, "r:*") as tf:
            member = None
            for candidate in tf.getmembers():
                parts = Path(candidate.name).parts
                if candidate.isfile() and len(parts) == 2 and parts[1] == CHART_FILE:
                    member = candidate
                    break
            if member is None:
                raise ChartLoadError(f"chart metadata ({CHART_FILE}) missing in {archive_path}")
            if member.size > limits.max_manifest_size:
                raise ChartLoadError(f"{CHART_FILE} too large in {archive_path} ({member.size} bytes)")

            src = tf.extractfile(member)
            if src is None:
                raise ChartLoadError(f"cannot read {member.name} from {archive_path}")
            with src:
                raw = src.read()
    except tarfile.TarError as e:
        raise ChartLoadError(f"cannot read chart archive {archive_path}: {e}")

    try:
        data = yaml.safe_load(raw.decode("utf-8")) or {}
    except (yaml.YAMLError, UnicodeDecodeError) as e:
        raise ChartLoadError(f"invalid {CHART_FILE} in {archive_path}: {e}")
    if not isinstance(data, dict):
        raise ChartLoadError(f"{CHART_FILE} in {archive_path} must be a mapping")

    return Metadata.from_dict(data)
