# SPDX-License-Identifier: Apache-2.0
"""Whole-file encryption."""
import os

import pytest

from healthtab.exceptions import CorruptCiphertext, OutputPathConflict
from healthtab.files import FILE_MAGIC, decrypt_file, encrypt_file


@pytest.fixture
def report(tmp_path):
    path = tmp_path / "report.pdf"
    path.write_bytes(b"%PDF-1.7\n" + os.urandom(5000) + b"\x00\xff end")
    return path


def test_round_trip_is_byte_exact(tmp_path, report, key_pair, passphrase):
    original = report.read_bytes()
    encrypted = encrypt_file(report, key_pair.public_pem)
    assert encrypted == tmp_path / "report.pdf.encrypted"
    assert encrypted.read_bytes().startswith(FILE_MAGIC)
    assert report.read_bytes() == original

    out = decrypt_file(encrypted, key_pair.private_pem, passphrase, tmp_path / "restored.pdf")
    assert out.read_bytes() == original
    assert encrypted.exists()


def test_default_decrypted_path_drops_suffix(tmp_path, report, key_pair, passphrase):
    original = report.read_bytes()
    encrypted = encrypt_file(report, key_pair.public_pem)
    report.unlink()
    out = decrypt_file(encrypted, key_pair.private_pem, passphrase)
    assert out == report
    assert out.read_bytes() == original


def test_default_decrypted_path_without_suffix(tmp_path, report, key_pair, passphrase):
    encrypted = encrypt_file(report, key_pair.public_pem, tmp_path / "blob.bin")
    out = decrypt_file(encrypted, key_pair.private_pem, passphrase)
    assert out == tmp_path / "blob.bin.decrypted"


def test_output_equal_to_input_is_rejected(tmp_path, report, key_pair, passphrase):
    with pytest.raises(OutputPathConflict):
        encrypt_file(report, key_pair.public_pem, report)
    encrypted = encrypt_file(report, key_pair.public_pem)
    before = encrypted.read_bytes()
    with pytest.raises(OutputPathConflict):
        decrypt_file(encrypted, key_pair.private_pem, passphrase, encrypted)
    with pytest.raises(OutputPathConflict):
        decrypt_file(encrypted, key_pair.private_pem, passphrase, str(tmp_path / "." / encrypted.name))
    assert encrypted.read_bytes() == before


def test_existing_output_is_not_overwritten(tmp_path, report, key_pair, passphrase):
    encrypted = encrypt_file(report, key_pair.public_pem)
    with pytest.raises(FileExistsError):
        encrypt_file(report, key_pair.public_pem)
    with pytest.raises(FileExistsError):
        decrypt_file(encrypted, key_pair.private_pem, passphrase)
    encrypt_file(report, key_pair.public_pem, overwrite=True)


def test_missing_source(tmp_path, key_pair, passphrase):
    with pytest.raises(FileNotFoundError):
        encrypt_file(tmp_path / "nope.csv", key_pair.public_pem)
    with pytest.raises(FileNotFoundError):
        decrypt_file(tmp_path / "nope.csv.encrypted", key_pair.private_pem, passphrase)


def test_corrupt_ciphertext(tmp_path, report, key_pair, passphrase):
    encrypted = encrypt_file(report, key_pair.public_pem)
    blob = bytearray(encrypted.read_bytes())
    blob[-10] ^= 0x01
    encrypted.write_bytes(bytes(blob))
    target = tmp_path / "restored.pdf"
    with pytest.raises(CorruptCiphertext):
        decrypt_file(encrypted, key_pair.private_pem, passphrase, target)
    assert not target.exists()


def test_wrong_format_tag(tmp_path, key_pair, passphrase):
    bogus = tmp_path / "plain.txt.encrypted"
    bogus.write_bytes(b"just some text that was never encrypted")
    with pytest.raises(CorruptCiphertext):
        decrypt_file(bogus, key_pair.private_pem, passphrase)


def test_wrong_key(tmp_path, report, key_pair, other_key_pair):
    encrypted = encrypt_file(report, key_pair.public_pem)
    with pytest.raises(CorruptCiphertext):
        decrypt_file(encrypted, other_key_pair.private_pem, "An0ther-Passphrase!", tmp_path / "out")
