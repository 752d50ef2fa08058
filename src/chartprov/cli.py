"""chartprov CLI: sign chart archives and verify provenance files."""

from __future__ import annotations

import logging
import os
import sys
import traceback
from pathlib import Path

import click

from chartprov import __version__
from chartprov.config import ProvenanceConfig
from chartprov.errors import IntegrityError
from chartprov.provenance import Signatory, verify_and_report
from chartprov.provenance.keys import load_keyring


def handle_error(error: Exception, debug: bool) -> None:
    """Handle errors with structured output.

    Args:
        error: The exception that occurred
        debug: Whether to show full traceback
    """
    if debug:
        traceback.print_exc()
    else:
        click.echo(f"Error: {error}", err=True)
    sys.exit(1)


def _config(ctx: click.Context, keyring: Path | None) -> ProvenanceConfig:
    config: ProvenanceConfig = ctx.obj['config']
    if keyring is not None:
        config.keyring = keyring
    return config


@click.group()
@click.version_option(version=__version__, prog_name="chartprov")
@click.option(
    '--config', '-c', 'config_path',
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help='YAML configuration file',
)
@click.option('--debug', is_flag=True, help='Enable debug mode (debug logging, full tracebacks)')
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None, debug: bool):
    """Chart provenance - sign chart archives and verify them."""
    if debug:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")

    ctx.ensure_object(dict)
    ctx.obj['debug'] = debug
    try:
        ctx.obj['config'] = (
            ProvenanceConfig.from_yaml(config_path) if config_path else ProvenanceConfig.from_env()
        )
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="--config")


@cli.command()
@click.argument('archive', type=click.Path(path_type=Path))
@click.option('--key', '-k', required=True, help='Name of the key to sign with (exact or partial user ID)')
@click.option(
    '--keyring',
    type=click.Path(path_type=Path),
    help='Keyring holding the private key (default: $CHARTPROV_KEYRING or ~/.gnupg/pubring.gpg)',
)
@click.option('--out', '-o', type=click.Path(path_type=Path), help='Provenance file (default: ARCHIVE.prov)')
@click.option('--hash', 'hash_algorithm', help='Signature hash (SHA256, SHA384, SHA512)')
@click.pass_context
def sign(
    ctx: click.Context,
    archive: Path,
    key: str,
    keyring: Path | None,
    out: Path | None,
    hash_algorithm: str | None,
):
    """Sign a chart archive and write its provenance file.

    Examples:
      chartprov sign mychart-0.1.0.tgz --key "Chart Signer" --keyring ~/.gnupg/secring.gpg
      chartprov sign mychart-0.1.0.tgz --key signer@example.com --out /tmp/mychart.prov
    """
    debug = ctx.obj.get('debug', False)

    try:
        config = _config(ctx, keyring)
        if hash_algorithm:
            config = ProvenanceConfig.from_dict({**config.to_dict(), "hash_algorithm": hash_algorithm})

        signer = Signatory.from_keyring(config.keyring, key, limits=config.limits)
        provenance = signer.clear_sign(archive, config)

        if debug:
            click.echo(provenance)

        out = out or config.provenance_path(archive)
        out.write_text(provenance, encoding="utf-8")
        os.chmod(out, config.provenance_mode)
        click.echo(f"Signed {archive.name} with {signer.entity.name}")
        click.echo(f"  Provenance: {out}")
    except Exception as e:
        handle_error(e, debug)


@cli.command()
@click.argument('archive', type=click.Path(path_type=Path))
@click.option('--prov', '-p', type=click.Path(path_type=Path), help='Provenance file (default: ARCHIVE.prov)')
@click.option('--keyring', type=click.Path(path_type=Path), help='Keyring of trusted public keys')
@click.option('--report-dir', '-o', type=click.Path(path_type=Path), help='Output directory for verification reports')
@click.pass_context
def verify(
    ctx: click.Context,
    archive: Path,
    prov: Path | None,
    keyring: Path | None,
    report_dir: Path | None,
):
    """Verify a chart archive against its provenance file.

    Examples:
      chartprov verify mychart-0.1.0.tgz
      chartprov verify mychart-0.1.0.tgz --keyring ./trusted.gpg --report-dir ./verification
    """
    debug = ctx.obj.get('debug', False)

    try:
        config = _config(ctx, keyring)
        prov = prov or config.provenance_path(archive)
        verifier = Signatory.from_keyring(config.keyring, limits=config.limits)

        if report_dir:
            verification, paths = verify_and_report(verifier, archive, prov, report_dir)
        else:
            verification = verifier.verify(archive, prov)

        click.echo(f"Signed by: {verification.signer_name}")
        for name in list(verification.signed_by.identities)[1:]:
            click.echo(f"           {name}")
        click.echo(f"Using Key With Fingerprint: {verification.fingerprint}")
        click.echo(f"Chart Hash Verified: {verification.file_hash}")

        if report_dir:
            click.echo("\nVerification reports written to:")
            click.echo(f"  - JSON: {paths['json']}")
            click.echo(f"  - MD:   {paths['markdown']}")
    except IntegrityError as e:
        if debug:
            handle_error(e, debug)
        click.echo(f"Error: {e}", err=True)
        if e.expected:
            click.echo(f"  Expected: {e.expected}", err=True)
        click.echo(f"  Actual:   {e.actual}", err=True)
        sys.exit(1)
    except Exception as e:
        handle_error(e, debug)


@cli.command(name="keys")
@click.option('--keyring', type=click.Path(path_type=Path), help='Keyring to list')
@click.pass_context
def list_keys(ctx: click.Context, keyring: Path | None):
    """List the keys in a keyring."""
    debug = ctx.obj.get('debug', False)

    try:
        config = _config(ctx, keyring)
        entities = load_keyring(config.keyring, config.limits)
        if not entities:
            click.echo(f"No keys in {config.keyring}")
            return
        for entity in entities:
            kind = "sec" if entity.has_private_key() else "pub"
            click.echo(f"{kind}  {entity.primary_key.key_id_hex}  {entity.fingerprint.hex().upper()}")
            for name in entity.identities:
                click.echo(f"     uid  {name}")
    except Exception as e:
        handle_error(e, debug)


def main() -> None:
    """Entry point."""
    cli()


if __name__ == '__main__':
    main()
