# SPDX-License-Identifier: Apache-2.0
"""Click CLI entry point. Install with: pip install . then healthtab --help."""
from __future__ import annotations

import logging
from pathlib import Path

import click
import pandas as pd

from healthtab.audit import verify_audit_log
from healthtab.config import settings
from healthtab.crypto import decrypt_columns, encrypt_columns, read_lookup, write_lookup
from healthtab.exceptions import HealthTabError
from healthtab.files import decrypt_file, encrypt_file
from healthtab.keys import generate_key_pair
from healthtab.missing import CATEGORICAL_TESTS, NUMERIC_TESTS, glimpse, missing_compare, missing_pattern

KEY_LOSS_WARNING = (
    "Keep the private key and its passphrase safe. If either is lost, "
    "data encrypted with this key pair can never be recovered."
)


class _Group(click.Group):
    """Turns library errors into a one-line message and exit status 1."""

    def invoke(self, ctx):
        try:
            return super().invoke(ctx)
        except (HealthTabError, ValueError, FileExistsError) as e:
            raise click.ClickException(str(e)) from e


def _split(value: str | None) -> list[str]:
    if not value:
        return []
    return [v.strip() for v in value.split(",") if v.strip()]


def _read_csv(path: str, as_text: bool = False) -> pd.DataFrame:
    """as_text keeps every cell verbatim (leading zeros, identifiers); empty cells stay missing."""
    if as_text:
        return pd.read_csv(path, dtype=str, keep_default_na=False, na_values=[""])
    return pd.read_csv(path)


def _passphrase_option(confirm: bool = False):
    return click.option(
        "--passphrase",
        envvar="HEALTHTAB_PASSPHRASE",
        prompt="Private key passphrase",
        hide_input=True,
        confirmation_prompt=confirm,
        help="Private key passphrase (prompted if not given)",
    )


@click.group(cls=_Group)
@click.option("--verbose", "-v", is_flag=True, help="Log progress to stderr")
@click.pass_context
def cli(ctx, verbose):
    """healthtab: missing-data inspection and field-level encryption for health data."""
    ctx.ensure_object(dict)
    logging.basicConfig(
        level=logging.INFO if verbose else settings.log_level.upper(),
        format="%(levelname)s %(name)s: %(message)s",
    )


@cli.command()
@click.option("--dir", "directory", default=".", type=click.Path(file_okay=False), help="Where to write id_rsa and id_rsa.pub")
@click.option("--key-size", type=int, default=None, help="RSA key size in bits")
@_passphrase_option(confirm=True)
def genkeys(directory, key_size, passphrase):
    """Generate a key pair; the private key is locked with a passphrase."""
    pair = generate_key_pair(passphrase, key_size=key_size)
    private_path, public_path = pair.save(directory)
    click.echo(f"Private key: {private_path}")
    click.echo(f"Public key:  {public_path}")
    click.echo(f"Fingerprint: {pair.fingerprint}")
    click.echo(KEY_LOSS_WARNING, err=True)


@cli.command("encrypt-csv")
@click.argument("csv_path", type=click.Path(exists=True, dir_okay=False))
@click.option("--columns", required=True, help="Comma-separated columns to encrypt")
@click.option("--public-key", required=True, help="Public key file path or https URL")
@click.option("--lookup", is_flag=True, help="Move ciphertext into a separate lookup table")
@click.option("--lookup-file", default=None, help="Lookup table path (default from settings)")
@click.option("--output", default=None, help="Output CSV (default: <name>.encrypted.csv)")
def encrypt_csv(csv_path, columns, public_key, lookup, lookup_file, output):
    """Encrypt columns of a CSV file. Cells are read as text, so identifiers keep leading zeros."""
    out = Path(output) if output else Path(csv_path).with_suffix(".encrypted.csv")
    if out.resolve() == Path(csv_path).resolve():
        raise click.ClickException("Output path must differ from the input CSV.")
    lookup_path = Path(lookup_file) if lookup_file else settings.lookup_path
    if lookup and lookup_path.exists():
        raise click.ClickException(f"Refusing to overwrite existing lookup table: {lookup_path}")
    table = _read_csv(csv_path, as_text=True)
    result = encrypt_columns(table, _split(columns), public_key, lookup=lookup)
    # lookup first: the keyed table is useless without it
    if result.lookup is not None:
        write_lookup(result.lookup, lookup_path)
        click.echo(f"Lookup table -> {lookup_path}")
    result.table.to_csv(out, index=False)
    click.echo(f"Encrypted {', '.join(result.columns)} -> {out}")


@cli.command("decrypt-csv")
@click.argument("csv_path", type=click.Path(exists=True, dir_okay=False))
@click.option("--columns", required=True, help="Comma-separated columns to decrypt")
@click.option("--private-key", required=True, type=click.Path(exists=True, dir_okay=False))
@click.option("--lookup-file", default=None, type=click.Path(exists=True, dir_okay=False), help="Lookup table written by encrypt-csv --lookup")
@click.option("--output", default=None, help="Output CSV (default: <name>.decrypted.csv)")
@_passphrase_option()
def decrypt_csv(csv_path, columns, private_key, lookup_file, output, passphrase):
    """Decrypt columns of a CSV file."""
    out = Path(output) if output else Path(csv_path).with_suffix(".decrypted.csv")
    if out.resolve() == Path(csv_path).resolve():
        raise click.ClickException("Output path must differ from the encrypted input.")
    table = _read_csv(csv_path, as_text=True)
    lookup = read_lookup(lookup_file) if lookup_file else None
    plain = decrypt_columns(table, _split(columns), private_key, passphrase, lookup=lookup)
    plain.to_csv(out, index=False)
    click.echo(f"Decrypted -> {out}")


@cli.command("encrypt-file")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.option("--public-key", required=True, help="Public key file path or https URL")
@click.option("--output", default=None, help="Output path (default: <path>.encrypted)")
def encrypt_file_cmd(path, public_key, output):
    """Encrypt a whole file."""
    out = encrypt_file(path, public_key, output)
    click.echo(f"Encrypted -> {out}")


@cli.command("decrypt-file")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.option("--private-key", required=True, type=click.Path(exists=True, dir_okay=False))
@click.option("--output", default=None, help="Output path (default: drop .encrypted)")
@_passphrase_option()
def decrypt_file_cmd(path, private_key, output, passphrase):
    """Decrypt a file produced by encrypt-file."""
    out = decrypt_file(path, private_key, passphrase, output)
    click.echo(f"Decrypted -> {out}")


@cli.command("glimpse")
@click.argument("csv_path", type=click.Path(exists=True, dir_okay=False))
@click.option("--columns", default=None, help="Comma-separated columns (default: all)")
def glimpse_cmd(csv_path, columns):
    """Column kinds, missing counts and distributions."""
    result = glimpse(_read_csv(csv_path), _split(columns) or None)
    if not result.numeric.empty:
        click.echo("Numeric / date columns:")
        click.echo(result.numeric.to_string())
    if not result.categorical.empty:
        click.echo("Categorical / text columns:")
        click.echo(result.categorical.to_string())


@cli.command("missing-pattern")
@click.argument("csv_path", type=click.Path(exists=True, dir_okay=False))
@click.option("--dependent", required=True)
@click.option("--explanatory", required=True, help="Comma-separated explanatory columns")
def missing_pattern_cmd(csv_path, dependent, explanatory):
    """Table of missingness patterns (1 = missing)."""
    result = missing_pattern(_read_csv(csv_path), dependent, _split(explanatory))
    click.echo(result.table.to_string(index=False))
    click.echo(f"{result.n_patterns} pattern(s), {result.n_rows} row(s)")


@cli.command("missing-compare")
@click.argument("csv_path", type=click.Path(exists=True, dir_okay=False))
@click.option("--target", required=True, help="Column whose missingness is explained")
@click.option("--explanatory", required=True, help="Comma-separated explanatory columns")
@click.option("--numeric-test", type=click.Choice(sorted(NUMERIC_TESTS)), default="mann_whitney")
@click.option("--categorical-test", type=click.Choice(sorted(CATEGORICAL_TESTS)), default="chi2")
def missing_compare_cmd(csv_path, target, explanatory, numeric_test, categorical_test):
    """Compare explanatory columns between rows with and without the target."""
    result = missing_compare(
        _read_csv(csv_path),
        target,
        _split(explanatory),
        numeric_test=numeric_test,
        categorical_test=categorical_test,
    )
    click.echo(result.to_string(index=False))


@cli.command("verify-audit")
@click.argument("log_path", type=click.Path(exists=True, dir_okay=False))
def verify_audit(log_path):
    """Verify the hash chain of a local audit log."""
    r = verify_audit_log(log_path)
    click.echo(f"Chain valid: {r['chain_valid']}")
    click.echo(f"Entries: {r['total_entries']}")
    for a in r["anomalies"]:
        click.echo(f"Anomaly: {a}")
    if not r["chain_valid"]:
        raise SystemExit(1)


def main():
    """Entry point for console_scripts."""
    cli(obj={})


if __name__ == "__main__":
    main()
