"""Tests for signing chart archives and verifying provenance files."""

from __future__ import annotations

import dataclasses
import hashlib
import json
import shutil
import tarfile
from pathlib import Path

import pytest

from chartprov.chart import Maintainer, Metadata, load_metadata
from chartprov.config import ProvenanceConfig
from chartprov.errors import (
    AmbiguousIdentityError,
    ChartLoadError,
    ChecksumMismatchError,
    FileTypeError,
    IntegrityError,
    KeyLoadError,
    MessageBlockError,
    MissingChecksumError,
    SignatureNotFoundError,
    SigningError,
    VerificationError,
)
from chartprov.openpgp import Entity, PrivateKey
from chartprov.provenance import (
    Signatory,
    SumCollection,
    encode_message_block,
    load_key,
    load_keyring,
    parse_message_block,
    resolve_identity,
    sum_archive,
    verify_and_report,
)
from chartprov.security import SecurityError, SecurityLimits

SIGNER_ID = "Chart Signer (test key) <signer@example.com>"


def _sha256(path: Path) -> str:
    return hashlib.sha256(path.read_bytes()).hexdigest()


class TestSumArchive:
    """Test archive hashing."""

    def test_matches_hashlib(self, chart_archive: Path):
        """Test the digest is the plain SHA-256 of the file."""
        assert sum_archive(chart_archive) == _sha256(chart_archive)

    def test_large_file(self, tmp_path: Path):
        """Test files spanning many read chunks."""
        path = tmp_path / "big.bin"
        path.write_bytes(b"0123456789" * 10000)
        assert sum_archive(path) == _sha256(path)

    def test_missing_file(self, tmp_path: Path):
        """Test a missing file raises."""
        with pytest.raises(FileNotFoundError):
            sum_archive(tmp_path / "missing.tgz")


class TestLoadMetadata:
    """Test reading Chart.yaml from archives."""

    def test_load(self, chart_archive: Path):
        """Test metadata fields are read."""
        metadata = load_metadata(chart_archive)

        assert metadata.name == "mychart"
        assert metadata.version == "0.1.0"
        assert metadata.keywords == ["test", "provenance"]
        assert metadata.maintainers == [Maintainer(name="Chart Maintainer", email="maintainer@example.com")]

    def test_missing_chart_yaml(self, tmp_path: Path):
        """Test an archive without Chart.yaml."""
        path = tmp_path / "empty-0.1.0.tgz"
        with tarfile.open(path, "w:gz"):
            pass

        with pytest.raises(ChartLoadError, match="missing"):
            load_metadata(path)

    def test_not_an_archive(self, tmp_path: Path):
        """Test a file that is not a tarball."""
        path = tmp_path / "bogus.tgz"
        path.write_text("not a tarball")

        with pytest.raises(ChartLoadError):
            load_metadata(path)

    def test_unknown_keys_ignored(self):
        """Test unknown Chart.yaml keys are dropped."""
        metadata = Metadata.from_dict({"name": "x", "version": "1.0.0", "dependencies": [{"name": "y"}]})
        assert metadata.to_dict() == {"name": "x", "version": "1.0.0"}


class TestMessageBlock:
    """Test the message block codec."""

    def test_roundtrip(self):
        """Test encoding then parsing a block."""
        metadata = Metadata(name="mychart", version="0.1.0", description="A chart")
        block = encode_message_block(metadata, "mychart-0.1.0.tgz", "ab" * 32)

        assert "\n...\n" in block
        assert "mychart-0.1.0.tgz: sha256:" + "ab" * 32 in block

        parsed, sums = parse_message_block(block)
        assert parsed == metadata
        assert sums.files == {"mychart-0.1.0.tgz": "sha256:" + "ab" * 32}
        assert sums.images == {}

    def test_sorted_keys(self):
        """Test metadata keys are written in sorted order."""
        block = encode_message_block(Metadata(name="z", version="1.0.0", description="d"), "z.tgz", "00")
        head = block.split("\n...\n")[0]
        assert head.index("description:") < head.index("name:") < head.index("version:")

    def test_single_part(self):
        """Test a block without the separator."""
        with pytest.raises(MessageBlockError, match="at least two parts"):
            parse_message_block("name: mychart\nversion: 0.1.0\n")

    def test_extra_parts_ignored(self):
        """Test parts after the checksums are ignored."""
        text = "name: a\n\n...\nfiles:\n  a.tgz: sha256:00\n\n...\nanything: here\n"
        metadata, sums = parse_message_block(text)
        assert metadata.name == "a"
        assert sums.files == {"a.tgz": "sha256:00"}

    def test_invalid_yaml(self):
        """Test an unparseable checksum part."""
        with pytest.raises(MessageBlockError):
            parse_message_block("name: a\n\n...\nfiles: [unclosed\n")

    def test_images(self):
        """Test image digests are kept."""
        sums = SumCollection.from_dict({"files": {"a.tgz": "sha256:00"}, "images": {"nginx:1.25": "sha256:11"}})
        assert sums.to_dict() == {"files": {"a.tgz": "sha256:00"}, "images": {"nginx:1.25": "sha256:11"}}


class TestKeyLoading:
    """Test key and keyring files."""

    def test_load_key(self, secring: Path, signer_entity: Entity):
        """Test loading a private key file."""
        entity = load_key(secring)
        assert entity.fingerprint == signer_entity.fingerprint
        assert entity.has_private_key()

    def test_load_armored_keyring(self, tmp_path: Path, signer_entity: Entity):
        """Test loading an armored keyring."""
        path = tmp_path / "pubring.asc"
        path.write_text(signer_entity.armor())
        assert [e.fingerprint for e in load_keyring(path)] == [signer_entity.fingerprint]

    def test_garbage(self, tmp_path: Path):
        """Test a file with no key data."""
        path = tmp_path / "garbage.gpg"
        path.write_bytes(b"\x00\x01\x02")
        with pytest.raises(KeyLoadError):
            load_keyring(path)

    def test_empty_key_file(self, tmp_path: Path):
        """Test an empty key file."""
        path = tmp_path / "empty.gpg"
        path.write_bytes(b"")
        with pytest.raises(KeyLoadError, match="no key found"):
            load_key(path)

    def test_size_limit(self, pubring: Path):
        """Test keyrings over the size limit are refused before parsing."""
        with pytest.raises(SecurityError, match="File too large"):
            load_keyring(pubring, SecurityLimits(max_file_size=16))


class TestResolveIdentity:
    """Test finding keys by name."""

    def test_exact_match_wins(self, make_entity):
        """Test an exact user ID beats substring matches."""
        exact = make_entity("Alice")
        other = make_entity("Alice Smith <alice@example.com>")

        assert resolve_identity([other, exact], "Alice") is exact

    def test_substring_match(self, make_entity):
        """Test a unique substring match."""
        alice = make_entity("Alice <alice@example.com>")
        bob = make_entity("Bob <bob@example.com>")

        assert resolve_identity([alice, bob], "bob@example") is bob

    def test_ambiguous(self, make_entity):
        """Test several keys containing the name."""
        first = make_entity("Chart Team <one@example.com>")
        second = make_entity("Chart Team <two@example.com>")

        with pytest.raises(AmbiguousIdentityError, match="more than one key contain the id"):
            resolve_identity([first, second], "Chart Team")

    def test_one_key_several_matching_ids(self, make_entity):
        """Test one key matching through several user IDs is not ambiguous."""
        entity = make_entity("Ops <ops@example.com>", "Ops Team <team@example.com>")
        assert resolve_identity([entity], "Ops") is entity

    def test_no_match(self, make_entity):
        """Test no key matches."""
        assert resolve_identity([make_entity("Alice")], "Mallory") is None

    def test_case_sensitive(self, make_entity):
        """Test matching is case-sensitive."""
        assert resolve_identity([make_entity("Alice")], "alice") is None


class TestSignatory:
    """Test signing and verification."""

    def test_sign_and_verify(self, chart_archive: Path, secring: Path, pubring: Path):
        """Test a signed archive verifies against the public keyring."""
        signer = Signatory.from_keyring(secring, "Chart Signer")
        prov = signer.clear_sign(chart_archive)

        assert prov.startswith("-----BEGIN PGP SIGNED MESSAGE-----\nHash: SHA512\n")
        assert f"mychart-0.1.0.tgz: sha256:{_sha256(chart_archive)}" in prov

        sig_path = chart_archive.with_name(chart_archive.name + ".prov")
        sig_path.write_text(prov)

        verifier = Signatory.from_keyring(pubring)
        verification = verifier.verify(chart_archive, sig_path)

        assert verification.file_hash == "sha256:" + _sha256(chart_archive)
        assert verification.file_name == "mychart-0.1.0.tgz"
        assert verification.signer_name == SIGNER_ID

    def test_rsa_sign_and_verify(self, tmp_path: Path, chart_archive: Path, rsa_entity: Entity):
        """Test the full flow with an RSA key."""
        secret = tmp_path / "rsa-secret.gpg"
        secret.write_bytes(rsa_entity.serialize(include_private=True))
        public = tmp_path / "rsa-public.gpg"
        public.write_bytes(rsa_entity.serialize())

        sig_path = tmp_path / "chart.prov"
        sig_path.write_text(Signatory.from_files(secret, public).clear_sign(chart_archive))

        verification = Signatory.from_keyring(public).verify(chart_archive, sig_path)
        assert verification.signed_by.fingerprint == rsa_entity.fingerprint

    def test_signing_hash_from_config(self, chart_archive: Path, secring: Path):
        """Test the configured signature hash is used."""
        signer = Signatory.from_keyring(secring, SIGNER_ID)
        prov = signer.clear_sign(chart_archive, ProvenanceConfig(hash_algorithm="SHA256", keyring=secring))
        assert "\nHash: SHA256\n" in prov

    def test_sign_is_repeatable(self, tmp_path: Path, chart_archive: Path, secring: Path, pubring: Path):
        """Test signing twice yields two provenance files that both verify."""
        signer = Signatory.from_keyring(secring, SIGNER_ID)
        first = signer.clear_sign(chart_archive)
        second = signer.clear_sign(chart_archive)

        split = "-----BEGIN PGP SIGNATURE-----"
        assert first.split(split)[0] == second.split(split)[0]

        verifier = Signatory.from_keyring(pubring)
        hashes = []
        for name, prov in (("first.prov", first), ("second.prov", second)):
            sig_path = tmp_path / name
            sig_path.write_text(prov)
            verification = verifier.verify(chart_archive, sig_path)
            assert verification.signer_name == SIGNER_ID
            hashes.append(verification.file_hash)
        assert hashes == ["sha256:" + _sha256(chart_archive)] * 2

    def test_tampered_archive(self, chart_archive: Path, secring: Path, pubring: Path):
        """Test an archive changed after signing."""
        sig_path = chart_archive.with_name(chart_archive.name + ".prov")
        sig_path.write_text(Signatory.from_keyring(secring, SIGNER_ID).clear_sign(chart_archive))
        expected = "sha256:" + _sha256(chart_archive)

        with open(chart_archive, "ab") as f:
            f.write(b"\x00")

        with pytest.raises(ChecksumMismatchError, match="sha256 sum does not match") as exc_info:
            Signatory.from_keyring(pubring).verify(chart_archive, sig_path)
        assert exc_info.value.expected == expected
        assert exc_info.value.actual == "sha256:" + _sha256(chart_archive)

    def test_tampered_provenance(self, chart_archive: Path, secring: Path, pubring: Path):
        """Test a provenance file whose signed text was edited."""
        prov = Signatory.from_keyring(secring, SIGNER_ID).clear_sign(chart_archive)
        sig_path = chart_archive.with_name(chart_archive.name + ".prov")
        sig_path.write_text(prov.replace("version: 0.1.0", "version: 0.2.0"))

        with pytest.raises(VerificationError) as exc_info:
            Signatory.from_keyring(pubring).verify(chart_archive, sig_path)
        assert not isinstance(exc_info.value, IntegrityError)

    def test_tampered_provenance_checksum(self, chart_archive: Path, secring: Path, pubring: Path):
        """Test a provenance file whose recorded archive hash was edited."""
        prov = Signatory.from_keyring(secring, SIGNER_ID).clear_sign(chart_archive)
        digest = _sha256(chart_archive)
        assert f"sha256:{digest}" in prov

        sig_path = chart_archive.with_name(chart_archive.name + ".prov")
        sig_path.write_text(prov.replace(f"sha256:{digest}", "sha256:" + "0" * 64))

        with pytest.raises(VerificationError, match="signature verification failed") as exc_info:
            Signatory.from_keyring(pubring).verify(chart_archive, sig_path)
        assert not isinstance(exc_info.value, IntegrityError)

    def test_hash_header_mismatch(self, chart_archive: Path, secring: Path, pubring: Path):
        """Test a Hash header that does not list the signature's hash."""
        prov = Signatory.from_keyring(secring, SIGNER_ID).clear_sign(chart_archive)
        sig_path = chart_archive.with_name(chart_archive.name + ".prov")
        sig_path.write_text(prov.replace("Hash: SHA512", "Hash: SHA256"))

        with pytest.raises(VerificationError, match="Hash header"):
            Signatory.from_keyring(pubring).verify(chart_archive, sig_path)

    def test_renamed_archive(self, tmp_path: Path, chart_archive: Path, secring: Path, pubring: Path):
        """Test an archive verified under a different file name."""
        sig_path = tmp_path / "chart.prov"
        sig_path.write_text(Signatory.from_keyring(secring, SIGNER_ID).clear_sign(chart_archive))
        renamed = tmp_path / "renamed-0.1.0.tgz"
        shutil.copy(chart_archive, renamed)

        with pytest.raises(MissingChecksumError, match="renamed-0.1.0.tgz"):
            Signatory.from_keyring(pubring).verify(renamed, sig_path)

    def test_unknown_signer(self, tmp_path: Path, chart_archive: Path, secring: Path, make_entity):
        """Test a keyring that does not hold the signer."""
        other = tmp_path / "other.gpg"
        other.write_bytes(make_entity("Other <other@example.com>").serialize())
        sig_path = tmp_path / "chart.prov"
        sig_path.write_text(Signatory.from_keyring(secring, SIGNER_ID).clear_sign(chart_archive))

        with pytest.raises(VerificationError, match="not in the keyring"):
            Signatory.from_keyring(other).verify(chart_archive, sig_path)

    def test_no_signature_block(self, tmp_path: Path, chart_archive: Path, pubring: Path):
        """Test a provenance file without a signed message."""
        sig_path = tmp_path / "chart.prov"
        sig_path.write_text("name: mychart\n...\nfiles: {}\n")

        with pytest.raises(SignatureNotFoundError, match="signature block not found"):
            Signatory.from_keyring(pubring).verify(chart_archive, sig_path)

    def test_sign_directory_rejected(self, tmp_path: Path, secring: Path, monkeypatch):
        """Test a directory is rejected before hashing."""

        def fail(path):
            raise AssertionError("directory was hashed")

        monkeypatch.setattr("chartprov.provenance.signing.sum_archive", fail)
        signer = Signatory.from_keyring(secring, SIGNER_ID)

        with pytest.raises(FileTypeError, match="cannot be a directory"):
            signer.clear_sign(tmp_path)

    def test_verify_directory_rejected(self, tmp_path: Path, chart_archive: Path, pubring: Path):
        """Test directories are rejected as provenance files."""
        with pytest.raises(FileTypeError):
            Signatory.from_keyring(pubring).verify(chart_archive, tmp_path)

    def test_verify_directory_archive_rejected(self, tmp_path: Path, pubring: Path, monkeypatch):
        """Test a directory given as the archive is rejected before hashing."""
        charts = tmp_path / "mychart-0.1.0.tgz"
        charts.mkdir()
        sig_path = tmp_path / "chart.prov"
        sig_path.write_text("placeholder\n")

        def fail(path):
            raise AssertionError("directory was hashed")

        monkeypatch.setattr("chartprov.provenance.signing.sum_archive", fail)

        with pytest.raises(FileTypeError, match="cannot be a directory"):
            Signatory.from_keyring(pubring).verify(charts, sig_path)

    def test_missing_archive(self, tmp_path: Path, secring: Path):
        """Test signing a missing archive."""
        with pytest.raises(FileNotFoundError):
            Signatory.from_keyring(secring, SIGNER_ID).clear_sign(tmp_path / "missing.tgz")

    def test_sign_without_private_key(self, chart_archive: Path, pubring: Path):
        """Test signing with a public-only key."""
        signer = Signatory.from_keyring(pubring, SIGNER_ID)
        assert signer.entity is not None

        with pytest.raises(SigningError, match="private key not found"):
            signer.clear_sign(chart_archive)

    def test_sign_with_encrypted_key(self, tmp_path: Path, chart_archive: Path, signer_entity: Entity):
        """Test a passphrase-protected secret key cannot sign."""
        # S2K usage 254: the secret material is encrypted and left unparsed.
        locked = PrivateKey(
            public=signer_entity.primary_key,
            body=signer_entity.primary_key.body + b"\xfe" + bytes(32),
            encrypted=True,
        )
        path = tmp_path / "locked.gpg"
        path.write_bytes(dataclasses.replace(signer_entity, private_key=locked).serialize(include_private=True))

        signer = Signatory.from_keyring(path, SIGNER_ID)
        assert signer.entity.private_key.encrypted
        assert signer.entity.private_key.key is None

        with pytest.raises(SigningError, match="encrypted"):
            signer.clear_sign(chart_archive)

    def test_sign_without_key(self, chart_archive: Path):
        """Test signing with no key at all."""
        with pytest.raises(SigningError, match="private key not found"):
            Signatory().clear_sign(chart_archive)

    def test_from_keyring_no_match(self, secring: Path):
        """Test a name matching nothing leaves no signing key."""
        signer = Signatory.from_keyring(secring, "Nobody")
        assert signer.entity is None
        assert len(signer.keyring) == 1

    def test_from_keyring_ambiguous(self, tmp_path: Path, make_entity):
        """Test an ambiguous name."""
        path = tmp_path / "ring.gpg"
        path.write_bytes(
            make_entity("Chart Team <one@example.com>").serialize()
            + make_entity("Chart Team <two@example.com>").serialize()
        )

        with pytest.raises(AmbiguousIdentityError):
            Signatory.from_keyring(path, "Chart Team")


class TestVerifyAndReport:
    """Test verification reports."""

    def test_reports(self, tmp_path: Path, chart_archive: Path, secring: Path, pubring: Path):
        """Test JSON and Markdown reports are written."""
        sig_path = chart_archive.with_name(chart_archive.name + ".prov")
        sig_path.write_text(Signatory.from_keyring(secring, SIGNER_ID).clear_sign(chart_archive))

        verification, paths = verify_and_report(
            Signatory.from_keyring(pubring), chart_archive, sig_path, tmp_path / "reports"
        )

        data = json.loads(paths["json"].read_text())
        assert data["file"] == "mychart-0.1.0.tgz"
        assert data["file_hash"] == verification.file_hash
        assert data["signed_by"] == SIGNER_ID
        assert data["fingerprint"] == verification.fingerprint

        markdown = paths["markdown"].read_text()
        assert "# Chart Provenance Verification" in markdown
        assert verification.file_hash in markdown

    def test_failed_verification_writes_nothing(self, tmp_path: Path, chart_archive: Path, pubring: Path):
        """Test no reports are written when verification fails."""
        sig_path = tmp_path / "chart.prov"
        sig_path.write_text("no signature here\n")

        with pytest.raises(SignatureNotFoundError):
            verify_and_report(Signatory.from_keyring(pubring), chart_archive, sig_path, tmp_path / "reports")
        assert not (tmp_path / "reports").exists()
