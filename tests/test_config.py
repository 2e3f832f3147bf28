# SPDX-License-Identifier: Apache-2.0
"""Config and settings tests."""
from pathlib import Path

import pytest
from pydantic import ValidationError

from healthtab.config import INITIAL_HASH, Settings, settings


def test_settings_exists():
    assert settings is not None
    assert hasattr(settings, "rsa_key_size")
    assert hasattr(settings, "passphrase_min_length")
    assert hasattr(settings, "max_categorical_levels")


def test_defaults(monkeypatch):
    for name in ("RSA_KEY_SIZE", "PASSPHRASE_MIN_LENGTH", "MAX_WORKERS", "AUDIT_LOG", "LOOKUP_FILENAME"):
        monkeypatch.delenv(f"HEALTHTAB_{name}", raising=False)
    s = Settings(_env_file=None)
    assert s.rsa_key_size == 4096
    assert s.passphrase_min_length == 12
    assert s.max_workers == 1
    assert s.audit_log_path is None
    assert s.lookup_path == Path("lookup.csv")


def test_environment_override(monkeypatch, tmp_path):
    monkeypatch.setenv("HEALTHTAB_MAX_WORKERS", "4")
    monkeypatch.setenv("HEALTHTAB_PASSPHRASE_REQUIRE_SYMBOL", "false")
    monkeypatch.setenv("HEALTHTAB_AUDIT_LOG", str(tmp_path / "audit.jsonl"))
    s = Settings(_env_file=None)
    assert s.max_workers == 4
    assert s.passphrase_require_symbol is False
    assert s.audit_log_path == tmp_path / "audit.jsonl"


def test_invalid_value_rejected(monkeypatch):
    monkeypatch.setenv("HEALTHTAB_RSA_KEY_SIZE", "1024")
    with pytest.raises(ValidationError):
        Settings(_env_file=None)


def test_initial_hash():
    assert INITIAL_HASH == "0" * 64
