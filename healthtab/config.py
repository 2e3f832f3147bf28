# SPDX-License-Identifier: Apache-2.0
"""All configuration via environment variables (prefix HEALTHTAB_). No hardcoded policy."""
from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="HEALTHTAB_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Keys
    rsa_key_size: int = Field(default=4096, ge=2048, le=16384, description="RSA modulus size in bits")
    public_key_timeout: float = Field(default=10.0, gt=0, description="Timeout for fetching a public key by URL")

    # Passphrase policy
    passphrase_min_length: int = Field(default=12, ge=1, le=1024)
    passphrase_require_upper: bool = True
    passphrase_require_lower: bool = True
    passphrase_require_digit: bool = True
    passphrase_require_symbol: bool = True

    # Missingness
    max_categorical_levels: int = Field(
        default=20,
        ge=1,
        description="Text columns with at most this many distinct values are treated as categorical",
    )

    # Encryption
    lookup_filename: str = Field(default="lookup.csv", description="Default lookup table path")
    max_workers: int = Field(default=1, ge=1, le=64, description="Threads used for per-cell encryption")

    # Audit and logging
    audit_log: str | None = Field(default=None, description="Append-only local audit log (JSONL); disabled if unset")
    log_level: str = Field(default="WARNING")

    @property
    def audit_log_path(self) -> Path | None:
        return Path(self.audit_log) if self.audit_log else None

    @property
    def lookup_path(self) -> Path:
        return Path(self.lookup_filename)


settings = Settings()

INITIAL_HASH = "0" * 64
