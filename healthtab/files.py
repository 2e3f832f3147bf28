# SPDX-License-Identifier: Apache-2.0
"""Whole-file envelope encryption (same scheme as cells, with a file format tag)."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from healthtab.audit import write_audit_log
from healthtab.crypto import seal, unseal
from healthtab.exceptions import OutputPathConflict
from healthtab.keys import load_private_key, load_public_key, public_key_fingerprint

logger = logging.getLogger("healthtab")

FILE_MAGIC = b"HTF1"  # healthtab file format v1
ENCRYPTED_SUFFIX = ".encrypted"
DECRYPTED_SUFFIX = ".decrypted"


def _same_path(a: Path, b: Path) -> bool:
    return a.resolve() == b.resolve()


def _write_output(target: Path, data: bytes) -> None:
    """Writes target; a partially written file is removed if writing fails."""
    try:
        with open(target, "wb") as f:
            f.write(data)
    except BaseException:
        target.unlink(missing_ok=True)
        raise


def encrypt_file(
    path: str | Path,
    public_key: Any,
    output_path: str | Path | None = None,
    *,
    overwrite: bool = False,
) -> Path:
    """Encrypts a file to `output_path` (default: `<path>.encrypted`). The source is left as is."""
    source = Path(path)
    if not source.is_file():
        raise FileNotFoundError(f"File not found: {source}")
    target = Path(output_path) if output_path is not None else source.with_name(source.name + ENCRYPTED_SUFFIX)
    if _same_path(source, target):
        raise OutputPathConflict(f"Output path must differ from the input file: {source}")
    if target.exists() and not overwrite:
        raise FileExistsError(f"Refusing to overwrite existing file: {target}")
    key = load_public_key(public_key)
    with open(source, "rb") as f:
        data = f.read()
    _write_output(target, seal(data, key, FILE_MAGIC))
    fingerprint = public_key_fingerprint(key)
    logger.info("Encrypted %s (%d bytes) -> %s", source, len(data), target)
    write_audit_log(
        "file_encrypted",
        {"source": str(source), "output": str(target), "key_fingerprint": fingerprint},
    )
    return target


def _default_decrypted_path(source: Path) -> Path:
    if source.name.endswith(ENCRYPTED_SUFFIX) and len(source.name) > len(ENCRYPTED_SUFFIX):
        return source.with_name(source.name[: -len(ENCRYPTED_SUFFIX)])
    return source.with_name(source.name + DECRYPTED_SUFFIX)


def decrypt_file(
    path: str | Path,
    private_key: Any,
    passphrase: str | None = None,
    output_path: str | Path | None = None,
    *,
    overwrite: bool = False,
) -> Path:
    """
    Decrypts a file produced by encrypt_file.

    Never writes over the ciphertext: an output path resolving to the input
    raises OutputPathConflict. The default output drops a trailing
    `.encrypted` suffix.
    """
    source = Path(path)
    target = Path(output_path) if output_path is not None else _default_decrypted_path(source)
    if _same_path(source, target):
        raise OutputPathConflict(f"Output path must differ from the encrypted input: {source}")
    if not source.is_file():
        raise FileNotFoundError(f"File not found: {source}")
    if target.exists() and not overwrite:
        raise FileExistsError(f"Refusing to overwrite existing file: {target}")
    key = load_private_key(private_key, passphrase)
    with open(source, "rb") as f:
        blob = f.read()
    plaintext = unseal(blob, key, FILE_MAGIC)
    _write_output(target, plaintext)
    logger.info("Decrypted %s -> %s", source, target)
    write_audit_log("file_decrypted", {"source": str(source), "output": str(target)})
    return target
