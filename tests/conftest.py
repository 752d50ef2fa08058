"""Shared fixtures: OpenPGP entities, keyrings and chart archives."""

from __future__ import annotations

import io
import tarfile
from pathlib import Path

import pytest
from cryptography.hazmat.primitives.asymmetric import ed25519, rsa

from chartprov.openpgp import Entity

# Fixed key/signature creation time so fixtures are stable.
CREATED = 1700000000

SIGNER_ID = "Chart Signer (test key) <signer@example.com>"

CHART_YAML = """\
name: {name}
version: {version}
description: A Helm chart for testing provenance
home: https://example.com/charts/{name}
keywords:
  - test
  - provenance
maintainers:
  - name: Chart Maintainer
    email: maintainer@example.com
"""


@pytest.fixture(scope="session")
def make_entity():
    """Factory for self-certified Ed25519 (default) or RSA entities."""

    def _make(*user_ids: str, key: object | None = None) -> Entity:
        return Entity.from_private_key(
            key or ed25519.Ed25519PrivateKey.generate(),
            list(user_ids),
            created=CREATED,
        )

    return _make


@pytest.fixture(scope="session")
def signer_entity(make_entity) -> Entity:
    return make_entity(SIGNER_ID)


@pytest.fixture(scope="session")
def rsa_entity(make_entity) -> Entity:
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    return make_entity("RSA Signer <rsa@example.com>", key=key)


@pytest.fixture
def secring(tmp_path: Path, signer_entity: Entity) -> Path:
    """Keyring holding the signer's private key."""
    path = tmp_path / "secring.gpg"
    path.write_bytes(signer_entity.serialize(include_private=True))
    return path


@pytest.fixture
def pubring(tmp_path: Path, signer_entity: Entity) -> Path:
    """Keyring holding only the signer's public key."""
    path = tmp_path / "pubring.gpg"
    path.write_bytes(signer_entity.serialize())
    return path


@pytest.fixture
def make_chart():
    """Factory writing a gzipped chart archive into a directory."""

    def _make(directory: Path, name: str = "mychart", version: str = "0.1.0") -> Path:
        files = {
            "Chart.yaml": CHART_YAML.format(name=name, version=version),
            "values.yaml": "replicaCount: 1\n",
            "templates/deployment.yaml": "kind: Deployment\n",
        }
        path = directory / f"{name}-{version}.tgz"
        with tarfile.open(path, "w:gz") as tf:
            for rel, content in files.items():
                data = content.encode("utf-8")
                info = tarfile.TarInfo(f"{name}/{rel}")
                info.size = len(data)
                info.mtime = CREATED
                tf.addfile(info, io.BytesIO(data))
        return path

    return _make


@pytest.fixture
def chart_archive(tmp_path: Path, make_chart) -> Path:
    charts = tmp_path / "charts"
    charts.mkdir()
    return make_chart(charts)
