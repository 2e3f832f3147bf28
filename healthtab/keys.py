# SPDX-License-Identifier: Apache-2.0
"""
RSA key pairs for field and file encryption.

The private key is the single root of trust. It is stored as PKCS#8 PEM
encrypted with the caller's passphrase. There is no recovery path: if the
private key file or its passphrase is lost, everything encrypted with the
matching public key is permanently unreadable.
"""
from __future__ import annotations

import logging
import string
from pathlib import Path
from typing import Any

import requests
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from pydantic import BaseModel, Field

from healthtab.audit import sha3_256_hex, write_audit_log
from healthtab.config import settings
from healthtab.exceptions import BadPassphrase, InvalidKey, WeakPassphrase

logger = logging.getLogger("healthtab")

PUBLIC_EXPONENT = 65537
PEM_PREFIX = b"-----BEGIN"
ENCRYPTED_PEM_MARKERS = (b"ENCRYPTED PRIVATE KEY", b"Proc-Type: 4,ENCRYPTED")


class PassphrasePolicy(BaseModel):
    min_length: int = Field(default=12, ge=1)
    require_upper: bool = True
    require_lower: bool = True
    require_digit: bool = True
    require_symbol: bool = True

    @classmethod
    def from_settings(cls) -> "PassphrasePolicy":
        return cls(
            min_length=settings.passphrase_min_length,
            require_upper=settings.passphrase_require_upper,
            require_lower=settings.passphrase_require_lower,
            require_digit=settings.passphrase_require_digit,
            require_symbol=settings.passphrase_require_symbol,
        )


def check_passphrase(passphrase: str, policy: PassphrasePolicy | None = None) -> None:
    """Raises WeakPassphrase listing every rule the passphrase breaks."""
    policy = policy or PassphrasePolicy.from_settings()
    passphrase = passphrase or ""
    failures = []
    if len(passphrase) < policy.min_length:
        failures.append(f"must be at least {policy.min_length} characters")
    if policy.require_upper and not any(c.isupper() for c in passphrase):
        failures.append("must contain an uppercase letter")
    if policy.require_lower and not any(c.islower() for c in passphrase):
        failures.append("must contain a lowercase letter")
    if policy.require_digit and not any(c.isdigit() for c in passphrase):
        failures.append("must contain a digit")
    if policy.require_symbol and not any(c in string.punctuation or c.isspace() for c in passphrase):
        failures.append("must contain a symbol")
    if failures:
        raise WeakPassphrase(failures)


class KeyPair(BaseModel):
    public_pem: bytes
    private_pem: bytes
    fingerprint: str

    def save(
        self,
        directory: str | Path = ".",
        private_name: str = "id_rsa",
        public_name: str = "id_rsa.pub",
        overwrite: bool = False,
    ) -> tuple[Path, Path]:
        """Writes both key files. The private key is readable by the owner only."""
        directory = Path(directory)
        directory.mkdir(parents=True, exist_ok=True)
        private_path = directory / private_name
        public_path = directory / public_name
        if not overwrite:
            for p in (private_path, public_path):
                if p.exists():
                    raise FileExistsError(f"Refusing to overwrite existing key file: {p}")
        private_path.write_bytes(self.private_pem)
        try:
            private_path.chmod(0o600)
        except OSError:
            logger.warning("Could not restrict permissions on %s", private_path)
        public_path.write_bytes(self.public_pem)
        return private_path, public_path


def public_key_fingerprint(key: Any) -> str:
    """SHA3-256 of the SubjectPublicKeyInfo PEM."""
    public_key = load_public_key(key)
    pem = public_key.public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return sha3_256_hex(pem)


def generate_key_pair(
    passphrase: str,
    *,
    key_size: int | None = None,
    policy: PassphrasePolicy | None = None,
) -> KeyPair:
    """
    Creates an RSA key pair with the private key locked by `passphrase`.

    The passphrase is checked against the policy first (WeakPassphrase).
    Losing the private key or forgetting the passphrase makes every
    ciphertext produced with the public key permanently unrecoverable.
    """
    check_passphrase(passphrase, policy)
    key_size = key_size or settings.rsa_key_size
    if key_size < 2048:
        raise ValueError(f"RSA key size must be at least 2048 bits, got {key_size}.")
    private_key = rsa.generate_private_key(public_exponent=PUBLIC_EXPONENT, key_size=key_size)
    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.BestAvailableEncryption(passphrase.encode("utf-8")),
    )
    public_pem = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    fingerprint = sha3_256_hex(public_pem)
    logger.info("Generated %d-bit key pair %s", key_size, fingerprint[:16])
    write_audit_log("key_pair_generated", {"key_fingerprint": fingerprint, "key_size": key_size})
    return KeyPair(public_pem=public_pem, private_pem=private_pem, fingerprint=fingerprint)


def _is_url(source: str) -> bool:
    return source.startswith(("http://", "https://"))


def _fetch_public_key(url: str) -> bytes:
    try:
        resp = requests.get(url, timeout=settings.public_key_timeout)
        resp.raise_for_status()
    except requests.RequestException as e:
        raise InvalidKey(f"Could not fetch public key from {url}: {e}") from e
    return resp.content


def _read_key_source(source: Any, what: str) -> bytes:
    if source is None:
        raise InvalidKey(f"No {what} given.")
    if isinstance(source, bytes):
        return source
    if isinstance(source, str) and source.lstrip().startswith("-----BEGIN"):
        return source.encode("ascii")
    if isinstance(source, (str, Path)):
        path = Path(source)
        if not path.is_file():
            raise InvalidKey(f"{what.capitalize()} file not found: {path}")
        return path.read_bytes()
    raise InvalidKey(f"Unsupported {what} source: {type(source).__name__}")


def load_public_key(source: Any) -> rsa.RSAPublicKey:
    """
    Accepts an RSA public key object, PEM bytes or text, a file path, or an
    http(s) URL. Anything else, or anything that is not an RSA public key,
    raises InvalidKey.
    """
    if isinstance(source, rsa.RSAPublicKey):
        return source
    if isinstance(source, str) and _is_url(source):
        data = _fetch_public_key(source)
    else:
        data = _read_key_source(source, "public key")
    if not data.lstrip().startswith(PEM_PREFIX):
        raise InvalidKey("Public key is not PEM encoded.")
    try:
        key = serialization.load_pem_public_key(data)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise InvalidKey(f"Could not load public key: {e}") from e
    if not isinstance(key, rsa.RSAPublicKey):
        raise InvalidKey(f"Expected an RSA public key, got {type(key).__name__}.")
    return key


def load_private_key(source: Any, passphrase: str | None = None) -> rsa.RSAPrivateKey:
    """
    Accepts an RSA private key object, PEM bytes or text, or a file path.
    A passphrase that does not unlock the key raises BadPassphrase; a
    source that is not a passphrase-protected RSA private key raises InvalidKey.
    """
    if isinstance(source, rsa.RSAPrivateKey):
        return source
    data = _read_key_source(source, "private key")
    if not any(marker in data for marker in ENCRYPTED_PEM_MARKERS):
        raise InvalidKey("Private key must be a passphrase-protected PEM file (PKCS#8 or OpenSSL).")
    if not passphrase:
        raise BadPassphrase("A passphrase is required to unlock the private key.")
    try:
        key = serialization.load_pem_private_key(data, password=passphrase.encode("utf-8"))
    except ValueError as e:
        raise BadPassphrase("Passphrase does not unlock the private key (or the key file is damaged).") from e
    except (TypeError, UnsupportedAlgorithm) as e:
        raise InvalidKey(f"Could not load private key: {e}") from e
    if not isinstance(key, rsa.RSAPrivateKey):
        raise InvalidKey(f"Expected an RSA private key, got {type(key).__name__}.")
    return key
