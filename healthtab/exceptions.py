# SPDX-License-Identifier: Apache-2.0
"""Custom exception classes."""
from __future__ import annotations


class HealthTabError(Exception):
    """Base exception for healthtab."""


class ColumnNotFound(HealthTabError, KeyError):
    """One or more requested columns are absent from the table."""

    def __init__(self, missing: list[str], available: list[str] | None = None):
        self.missing = list(missing)
        self.available = list(available or [])
        super().__init__(
            f"Column(s) not found: {self.missing}. Available columns: {self.available}"
        )

    def __str__(self) -> str:
        # KeyError would otherwise repr() the message
        return self.args[0]


class IncompleteData(HealthTabError):
    """Missing cells found where complete data was required."""


class WeakPassphrase(HealthTabError):
    """Passphrase does not satisfy the configured policy."""

    def __init__(self, failures: list[str]):
        self.failures = list(failures)
        super().__init__("Passphrase rejected: " + "; ".join(self.failures))


class InvalidKey(HealthTabError):
    """Key material missing, malformed, or of the wrong type."""


class BadPassphrase(HealthTabError):
    """Passphrase does not unlock the private key."""


class CorruptCiphertext(HealthTabError):
    """Ciphertext is malformed or was not produced for this key."""


class OutputPathConflict(HealthTabError):
    """Decryption output would overwrite the ciphertext input."""


class DegenerateComparison(UserWarning):
    """A comparison could not be tested (empty group, zero variance, single level)."""
