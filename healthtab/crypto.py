# SPDX-License-Identifier: Apache-2.0
"""
Field-level envelope encryption for tables.

Every cell gets its own random Fernet key; that key is wrapped with the RSA
public key (OAEP, SHA-256) and stored alongside the Fernet token:

    magic(4) | wrapped_key_len(2, big-endian) | wrapped_key | fernet_token

Cells are stored as URL-safe base64 text. Fresh keys and Fernet's random IV
make two encryptions of the same value differ, so equal ciphertexts never
reveal equal plaintexts. Missing cells stay missing.
"""
from __future__ import annotations

import base64
import binascii
import json
import logging
import struct
from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime
from pathlib import Path
from typing import Any, Callable, Iterable

import numpy as np
import pandas as pd
from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from pydantic import BaseModel, ConfigDict

from healthtab.audit import write_audit_log
from healthtab.config import settings
from healthtab.exceptions import CorruptCiphertext
from healthtab.keys import load_private_key, load_public_key, public_key_fingerprint
from healthtab.table import require_columns

logger = logging.getLogger("healthtab")

CELL_MAGIC = b"HTC1"  # healthtab cell format v1
_LEN = struct.Struct(">H")

_OAEP = padding.OAEP(
    mgf=padding.MGF1(algorithm=hashes.SHA256()),
    algorithm=hashes.SHA256(),
    label=None,
)


# -----------------------------------------------------------------------------
# Envelope
# -----------------------------------------------------------------------------

def seal(data: bytes, public_key: rsa.RSAPublicKey, magic: bytes) -> bytes:
    """Encrypts bytes under a fresh Fernet key wrapped with the RSA public key."""
    fernet_key = Fernet.generate_key()
    wrapped = public_key.encrypt(fernet_key, _OAEP)
    token = Fernet(fernet_key).encrypt(data)
    return magic + _LEN.pack(len(wrapped)) + wrapped + token


def unseal(blob: bytes, private_key: rsa.RSAPrivateKey, magic: bytes) -> bytes:
    """Reverses seal(). Malformed input or a key mismatch raises CorruptCiphertext."""
    header = len(magic) + _LEN.size
    if len(blob) <= header or not blob.startswith(magic):
        raise CorruptCiphertext("Ciphertext header is missing or has the wrong format tag.")
    (wrapped_len,) = _LEN.unpack(blob[len(magic):header])
    wrapped = blob[header:header + wrapped_len]
    token = blob[header + wrapped_len:]
    if len(wrapped) != wrapped_len or not token:
        raise CorruptCiphertext("Ciphertext is truncated.")
    try:
        fernet_key = private_key.decrypt(wrapped, _OAEP)
    except ValueError as e:
        raise CorruptCiphertext("Ciphertext was not encrypted for this key, or is damaged.") from e
    try:
        return Fernet(fernet_key).decrypt(token)
    except (InvalidToken, ValueError) as e:
        raise CorruptCiphertext("Ciphertext payload failed authentication.") from e


# -----------------------------------------------------------------------------
# Single values
# -----------------------------------------------------------------------------

def _pack_value(value: Any) -> bytes:
    if isinstance(value, (bool, np.bool_)):
        tagged = {"t": "bool", "v": bool(value)}
    elif isinstance(value, (int, np.integer)):
        tagged = {"t": "int", "v": int(value)}
    elif isinstance(value, (float, np.floating)):
        tagged = {"t": "num", "v": float(value)}
    elif isinstance(value, (pd.Timestamp, datetime, date, np.datetime64)):
        tagged = {"t": "date", "v": pd.Timestamp(value).isoformat()}
    else:
        tagged = {"t": "str", "v": str(value)}
    return json.dumps(tagged).encode("utf-8")


def _unpack_value(data: bytes) -> Any:
    try:
        tagged = json.loads(data.decode("utf-8"))
        kind, value = tagged["t"], tagged["v"]
    except (UnicodeDecodeError, json.JSONDecodeError, KeyError, TypeError) as e:
        raise CorruptCiphertext("Decrypted cell is not a valid value envelope.") from e
    if kind == "date":
        return pd.Timestamp(value)
    if kind in ("bool", "int", "num", "str"):
        return value
    raise CorruptCiphertext(f"Unknown value type tag: {kind!r}")


def encrypt_value(value: Any, public_key: Any) -> str:
    """Encrypts one non-missing value to base64 text."""
    key = load_public_key(public_key)
    return base64.urlsafe_b64encode(seal(_pack_value(value), key, CELL_MAGIC)).decode("ascii")


def decrypt_value(token: str, private_key: rsa.RSAPrivateKey) -> Any:
    if not isinstance(token, str):
        raise CorruptCiphertext(f"Expected ciphertext text, got {type(token).__name__}.")
    try:
        blob = base64.urlsafe_b64decode(token.encode("ascii"))
    except (binascii.Error, UnicodeEncodeError, ValueError) as e:
        raise CorruptCiphertext("Ciphertext is not valid base64.") from e
    return _unpack_value(unseal(blob, private_key, CELL_MAGIC))


# -----------------------------------------------------------------------------
# Columns
# -----------------------------------------------------------------------------

class EncryptResult(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    table: pd.DataFrame
    lookup: pd.DataFrame | None = None
    columns: list[str]
    key_column: str | None = None
    fingerprint: str
    dtypes: dict[str, Any] = {}


def _map_cells(series: pd.Series, fn: Callable[[Any], Any], max_workers: int) -> pd.Series:
    """Applies fn to every non-missing cell, keeping row order. Missing cells become None."""
    cells = series.tolist()
    present = [i for i, v in enumerate(cells) if not pd.isna(v)]
    out: list[Any] = [None] * len(cells)
    if max_workers > 1 and len(present) > 1:
        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            results = list(pool.map(fn, (cells[i] for i in present)))
    else:
        results = [fn(cells[i]) for i in present]
    for i, result in zip(present, results):
        out[i] = result
    return pd.Series(out, index=series.index, name=series.name, dtype=object)


def encrypt_columns(
    table: pd.DataFrame,
    columns: Iterable[str],
    public_key: Any,
    *,
    lookup: bool = False,
    key_column: str = "key",
    max_workers: int | None = None,
) -> EncryptResult:
    """
    Replaces each cell of `columns` with fresh ciphertext.

    Without lookup the ciphertext stays in place. With lookup, the encrypted
    columns are removed from the table and replaced by one integer key
    column (1..n); the ciphertext moves to a separate lookup frame keyed by
    it. Rows are never reordered or dropped. Columns and key are validated
    before any cell is encrypted.
    The original column dtypes are kept in `dtypes` for decrypt_columns.
    """
    cols = require_columns(table, columns)
    if not cols:
        raise ValueError("No columns given to encrypt.")
    key = load_public_key(public_key)
    if lookup and key_column in table.columns:
        raise ValueError(f"Key column '{key_column}' already exists in the table.")
    workers = max_workers or settings.max_workers

    def encrypt_cell(value: Any) -> str:
        return base64.urlsafe_b64encode(seal(_pack_value(value), key, CELL_MAGIC)).decode("ascii")

    encrypted = {c: _map_cells(table[c], encrypt_cell, workers) for c in cols}
    dtypes = {c: table[c].dtype for c in cols}
    n_cells = sum(int(s.notna().sum()) for s in encrypted.values())
    fingerprint = public_key_fingerprint(key)
    logger.info("Encrypted %d cells in %d column(s), %d rows", n_cells, len(cols), len(table))
    write_audit_log(
        "columns_encrypted",
        {"columns": cols, "rows": len(table), "lookup": lookup, "key_fingerprint": fingerprint},
    )

    if not lookup:
        out = table.copy()
        for c in cols:
            out[c] = encrypted[c]
        return EncryptResult(table=out, columns=cols, fingerprint=fingerprint, dtypes=dtypes)

    keys = pd.Series(np.arange(1, len(table) + 1), index=table.index, name=key_column)
    lookup_frame = pd.DataFrame({key_column: keys.to_numpy()})
    for c in cols:
        lookup_frame[c] = encrypted[c].to_numpy()
    position = min(table.columns.get_loc(c) for c in cols)
    out = table.drop(columns=cols)
    out.insert(position, key_column, keys)
    return EncryptResult(
        table=out,
        lookup=lookup_frame,
        columns=cols,
        key_column=key_column,
        fingerprint=fingerprint,
        dtypes=dtypes,
    )


def decrypt_columns(
    table: pd.DataFrame,
    columns: Iterable[str],
    private_key: Any,
    passphrase: str | None = None,
    *,
    rows: Iterable[Any] | None = None,
    lookup: pd.DataFrame | None = None,
    key_column: str = "key",
    max_workers: int | None = None,
    dtypes: dict[str, Any] | None = None,
) -> pd.DataFrame:
    """
    Decrypts `columns` back to plaintext.

    `rows` limits the work to those row labels; only their cells are
    touched and only they are returned. With `lookup`, ciphertext is taken
    from the lookup frame by `key_column` and the key column is replaced by
    the decrypted columns. The private key is loaded for this call only.
    Decrypted columns get the dtypes inferred from their values unless
    `dtypes` (EncryptResult.dtypes) names the original one, which restores
    nullable integers and categorical levels and order.
    """
    columns = list(dict.fromkeys(columns))
    subset = table if rows is None else table.loc[list(rows)]
    if lookup is None:
        cols = require_columns(subset, columns)
        source = subset[cols]
    else:
        require_columns(subset, [key_column])
        cols = require_columns(lookup, [key_column, *columns])[1:]
        indexed = lookup.set_index(key_column)
        keys = pd.to_numeric(subset[key_column], errors="coerce")
        unknown = subset[key_column][~keys.isin(indexed.index)]
        if len(unknown):
            raise CorruptCiphertext(f"{len(unknown)} key(s) not found in the lookup table: {unknown.tolist()[:5]}")
        source = indexed.loc[keys.to_numpy(), cols].set_axis(subset.index, axis=0)
    if not cols:
        raise ValueError("No columns given to decrypt.")
    key = load_private_key(private_key, passphrase)
    workers = max_workers or settings.max_workers

    def decrypt_cell(token: Any) -> Any:
        return decrypt_value(token, key)

    dtypes = dtypes or {}
    decrypted = {}
    for c in cols:
        values = _map_cells(source[c], decrypt_cell, workers)
        decrypted[c] = values.astype(dtypes[c]) if c in dtypes else values.infer_objects()
    if lookup is None:
        out = subset.copy()
        for c in cols:
            out[c] = decrypted[c]
    else:
        position = subset.columns.get_loc(key_column)
        out = subset.drop(columns=[key_column])
        for offset, c in enumerate(cols):
            out.insert(position + offset, c, decrypted[c])
    logger.info("Decrypted %d column(s) for %d rows", len(cols), len(out))
    write_audit_log("columns_decrypted", {"columns": cols, "rows": len(out), "lookup": lookup is not None})
    return out


# -----------------------------------------------------------------------------
# Lookup table persistence
# -----------------------------------------------------------------------------

def write_lookup(lookup: pd.DataFrame, path: str | Path | None = None, *, overwrite: bool = False) -> Path:
    """Writes the lookup table as CSV (default path from settings)."""
    path = Path(path) if path is not None else settings.lookup_path
    if path.exists() and not overwrite:
        raise FileExistsError(f"Refusing to overwrite existing lookup table: {path}")
    lookup.to_csv(path, index=False)
    logger.info("Lookup table with %d rows written to %s", len(lookup), path)
    return path


def read_lookup(path: str | Path | None = None, key_column: str = "key") -> pd.DataFrame:
    path = Path(path) if path is not None else settings.lookup_path
    frame = pd.read_csv(path, dtype=str, keep_default_na=False, na_values=[""])
    require_columns(frame, [key_column])
    frame[key_column] = frame[key_column].astype(int)
    return frame
