# SPDX-License-Identifier: Apache-2.0
"""Key generation, passphrase policy and key loading."""
import pytest
import requests
from cryptography.hazmat.primitives import serialization

from healthtab import keys
from healthtab.exceptions import BadPassphrase, InvalidKey, WeakPassphrase
from healthtab.keys import (
    PassphrasePolicy,
    check_passphrase,
    generate_key_pair,
    load_private_key,
    load_public_key,
    public_key_fingerprint,
)


def test_weak_passphrase_rejected():
    with pytest.raises(WeakPassphrase) as exc:
        generate_key_pair("weak", key_size=2048)
    assert any("at least" in f for f in exc.value.failures)


def test_strong_passphrase_accepted(passphrase):
    check_passphrase(passphrase)


def test_policy_is_configurable():
    relaxed = PassphrasePolicy(
        min_length=4, require_upper=False, require_digit=False, require_symbol=False
    )
    check_passphrase("weak", relaxed)
    with pytest.raises(WeakPassphrase):
        check_passphrase("weak", PassphrasePolicy(min_length=4, require_digit=True,
                                                  require_upper=False, require_symbol=False))


def test_policy_reports_every_failure():
    with pytest.raises(WeakPassphrase) as exc:
        check_passphrase("")
    assert len(exc.value.failures) == 5


def test_small_key_size_rejected(passphrase):
    with pytest.raises(ValueError, match="2048"):
        generate_key_pair(passphrase, key_size=1024)


def test_key_pair_pem_formats(key_pair):
    assert key_pair.public_pem.startswith(b"-----BEGIN PUBLIC KEY-----")
    assert b"ENCRYPTED PRIVATE KEY" in key_pair.private_pem
    assert len(key_pair.fingerprint) == 64
    assert public_key_fingerprint(key_pair.public_pem) == key_pair.fingerprint


def test_key_pair_save(tmp_path, key_pair):
    private_path, public_path = key_pair.save(tmp_path)
    assert private_path.read_bytes() == key_pair.private_pem
    assert public_path.read_bytes() == key_pair.public_pem
    assert private_path.stat().st_mode & 0o077 == 0
    with pytest.raises(FileExistsError):
        key_pair.save(tmp_path)


def test_load_keys_from_paths(tmp_path, key_pair, passphrase):
    private_path, public_path = key_pair.save(tmp_path)
    assert load_public_key(public_path).key_size == 2048
    assert load_private_key(str(private_path), passphrase).key_size == 2048


def test_load_private_key_bad_passphrase(key_pair):
    with pytest.raises(BadPassphrase):
        load_private_key(key_pair.private_pem, "Wr0ng-Passphrase!")
    with pytest.raises(BadPassphrase):
        load_private_key(key_pair.private_pem, None)


def test_load_private_key_rejects_public_pem(key_pair, passphrase):
    with pytest.raises(InvalidKey):
        load_private_key(key_pair.public_pem, passphrase)


def test_load_public_key_invalid_sources(tmp_path, key_pair):
    with pytest.raises(InvalidKey):
        load_public_key(None)
    with pytest.raises(InvalidKey):
        load_public_key(b"not a key")
    with pytest.raises(InvalidKey):
        load_public_key(tmp_path / "missing.pub")
    with pytest.raises(InvalidKey):
        load_public_key(key_pair.private_pem)
    with pytest.raises(InvalidKey):
        load_public_key(12345)


class _FakeResponse:
    def __init__(self, content, status=200):
        self.content = content
        self.status = status

    def raise_for_status(self):
        if self.status >= 400:
            raise requests.HTTPError(f"{self.status} error")


def test_load_public_key_from_url(monkeypatch, key_pair):
    calls = []

    def fake_get(url, timeout):
        calls.append((url, timeout))
        return _FakeResponse(key_pair.public_pem)

    monkeypatch.setattr(keys.requests, "get", fake_get)
    key = load_public_key("https://example.org/id_rsa.pub")
    assert public_key_fingerprint(key) == key_pair.fingerprint
    assert calls[0][0] == "https://example.org/id_rsa.pub"


def test_load_public_key_from_url_http_error(monkeypatch):
    monkeypatch.setattr(keys.requests, "get", lambda url, timeout: _FakeResponse(b"", status=404))
    with pytest.raises(InvalidKey, match="Could not fetch"):
        load_public_key("https://example.org/missing.pub")


def test_load_traditional_openssl_encrypted_key(key_pair, passphrase):
    key = load_private_key(key_pair.private_pem, passphrase)
    legacy = key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.BestAvailableEncryption(passphrase.encode("utf-8")),
    )
    assert b"Proc-Type: 4,ENCRYPTED" in legacy
    assert public_key_fingerprint(load_private_key(legacy, passphrase).public_key()) == key_pair.fingerprint
    with pytest.raises(BadPassphrase):
        load_private_key(legacy, "Wr0ng-Passphrase!")


def test_unencrypted_private_key_rejected(key_pair, passphrase):
    key = load_private_key(key_pair.private_pem, passphrase)
    plain = key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )
    with pytest.raises(InvalidKey):
        load_private_key(plain, passphrase)
