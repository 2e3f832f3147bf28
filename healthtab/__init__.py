# SPDX-License-Identifier: Apache-2.0
"""healthtab: missing-data inspection and field-level encryption for health data tables."""
from .crypto import decrypt_columns, encrypt_columns, read_lookup, write_lookup
from .files import decrypt_file, encrypt_file
from .keys import KeyPair, PassphrasePolicy, generate_key_pair, load_private_key, load_public_key
from .missing import FillMode, glimpse, missing_compare, missing_pairs, missing_pattern
from .table import ColumnKind, ColumnRole, MissingPolicy, apply_missing_policy

__version__ = "0.1.0"

__all__ = [
    "ColumnKind",
    "ColumnRole",
    "FillMode",
    "KeyPair",
    "MissingPolicy",
    "PassphrasePolicy",
    "apply_missing_policy",
    "decrypt_columns",
    "decrypt_file",
    "encrypt_columns",
    "encrypt_file",
    "generate_key_pair",
    "glimpse",
    "load_private_key",
    "load_public_key",
    "missing_compare",
    "missing_pairs",
    "missing_pattern",
    "read_lookup",
    "write_lookup",
]
