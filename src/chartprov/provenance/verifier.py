"""Verification results and reports."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any

from chartprov.openpgp import Entity

if TYPE_CHECKING:
    from chartprov.provenance.signing import Signatory


@dataclass
class Verification:
    """Result of a successful provenance verification."""

    # Key that signed the chart.
    signed_by: Entity
    # Verified archive hash, prefixed with the scheme ("sha256:...").
    file_hash: str
    file_name: str = ""
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @property
    def signer_name(self) -> str:
        return self.signed_by.name

    @property
    def fingerprint(self) -> str:
        return self.signed_by.fingerprint.hex().upper()

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "file": self.file_name,
            "file_hash": self.file_hash,
            "signed_by": self.signer_name,
            "identities": list(self.signed_by.identities),
            "fingerprint": self.fingerprint,
            "key_id": self.signed_by.primary_key.key_id_hex,
            "timestamp": self.timestamp,
        }

    def write_json(self, path: Path) -> None:
        """Write to JSON file."""
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(self.to_dict(), f, indent=2, sort_keys=True)

    def write_markdown(self, path: Path) -> None:
        """Write to Markdown file."""
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            f.write(self._generate_markdown())

    def _generate_markdown(self) -> str:
        lines = [
            "# Chart Provenance Verification",
            "",
            f"**Chart:** `{self.file_name}`",
            f"**Timestamp:** {self.timestamp}",
            "",
            f"- **Signed by:** {self.signer_name}",
            f"- **Using key with fingerprint:** `{self.fingerprint}`",
            f"- **Chart hash verified:** `{self.file_hash}`",
            "",
        ]
        other_ids = list(self.signed_by.identities)[1:]
        if other_ids:
            lines.extend(["## Other identities on the signing key", ""])
            lines.extend(f"- {name}" for name in other_ids)
            lines.append("")
        return "\n".join(lines)


def verify_and_report(
    signatory: Signatory,
    chart_path: Path,
    sig_path: Path,
    output_dir: Path,
) -> tuple[Verification, dict[str, Path]]:
    """Verify and write reports.

    Returns:
        Tuple of (verification, report_paths)
    """
    verification = signatory.verify(chart_path, sig_path)

    output_dir.mkdir(parents=True, exist_ok=True)
    paths = {}

    json_path = output_dir / "verification_report.json"
    verification.write_json(json_path)
    paths["json"] = json_path

    md_path = output_dir / "verification_report.md"
    verification.write_markdown(md_path)
    paths["markdown"] = md_path

    return verification, paths
