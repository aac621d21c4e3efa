"""Unit tests for the AES-GCM encryption engine."""

import base64
import os

import pytest

from dstorage.core.exceptions import DecryptionFailedError, ValidationError
from dstorage.security import crypto


@pytest.mark.parametrize("size", [0, 1, 10, 4096, 250_000])
def test_encrypt_decrypt_roundtrip(size):
    data = os.urandom(size)
    key = crypto.generate_key()

    ciphertext, nonce = crypto.encrypt(data, key)

    assert len(nonce) == crypto.NONCE_SIZE
    assert len(ciphertext) == size + crypto.TAG_SIZE
    assert crypto.decrypt(ciphertext, key, nonce) == data


def test_generate_key_is_256_bit_and_fresh():
    k1 = crypto.generate_key()
    k2 = crypto.generate_key()
    assert len(k1) == 32
    assert k1 != k2


def test_two_encryptions_use_different_nonces():
    key = crypto.generate_key()
    ct1, n1 = crypto.encrypt(b"same message", key)
    ct2, n2 = crypto.encrypt(b"same message", key)
    assert n1 != n2
    assert ct1 != ct2


def test_flipping_any_bit_fails_authentication():
    """Every single-bit change in ciphertext or tag is rejected."""
    key = crypto.generate_key()
    ciphertext, nonce = crypto.encrypt(b"0123456789", key)

    for byte_index in range(len(ciphertext)):
        for bit in range(8):
            tampered = bytearray(ciphertext)
            tampered[byte_index] ^= 1 << bit
            with pytest.raises(DecryptionFailedError):
                crypto.decrypt(bytes(tampered), key, nonce)


def test_decrypt_with_wrong_key_fails():
    ciphertext, nonce = crypto.encrypt(b"secret", crypto.generate_key())
    with pytest.raises(DecryptionFailedError):
        crypto.decrypt(ciphertext, crypto.generate_key(), nonce)


def test_decrypt_with_wrong_nonce_fails():
    key = crypto.generate_key()
    ciphertext, nonce = crypto.encrypt(b"secret", key)
    other = bytes([nonce[0] ^ 0xFF]) + nonce[1:]
    with pytest.raises(DecryptionFailedError):
        crypto.decrypt(ciphertext, key, other)


def test_decrypt_truncated_ciphertext_fails():
    key = crypto.generate_key()
    ciphertext, nonce = crypto.encrypt(b"secret", key)
    with pytest.raises(DecryptionFailedError):
        crypto.decrypt(ciphertext[:5], key, nonce)
    with pytest.raises(DecryptionFailedError):
        crypto.decrypt(ciphertext[:-1], key, nonce)


def test_decrypt_rejects_bad_key_or_nonce_length():
    key = crypto.generate_key()
    ciphertext, nonce = crypto.encrypt(b"secret", key)
    with pytest.raises(DecryptionFailedError):
        crypto.decrypt(ciphertext, key[:16], nonce)
    with pytest.raises(DecryptionFailedError):
        crypto.decrypt(ciphertext, key, nonce[:8])


def test_export_import_key_lossless():
    key = crypto.generate_key()
    raw = crypto.export_key(key)
    assert isinstance(raw, bytes)
    assert crypto.import_key(raw) == key


@pytest.mark.parametrize("raw", [b"", b"x" * 16, b"x" * 33, "not-bytes"])
def test_import_key_rejects_wrong_size(raw):
    with pytest.raises(ValidationError):
        crypto.import_key(raw)


def test_transport_key_roundtrip_and_format():
    key = crypto.generate_key()
    nonce = os.urandom(12)

    text = crypto.encode_transport_key(key, nonce)

    k, n = text.split(":")
    assert base64.b64decode(k) == key
    assert base64.b64decode(n) == nonce
    assert crypto.decode_transport_key(text) == (key, nonce)


@pytest.mark.parametrize(
    "text",
    [
        "",
        "onlyonesegment",
        "a:b:c",
        ":AAAAAAAAAAAAAAAA",
        "AAAA:",
        "!!!!:????",
    ],
)
def test_decode_transport_key_rejects_malformed(text):
    with pytest.raises(ValidationError):
        crypto.decode_transport_key(text)


def test_decode_transport_key_rejects_wrong_sizes():
    short_key = base64.b64encode(b"k" * 16).decode()
    good_key = base64.b64encode(b"k" * 32).decode()
    good_nonce = base64.b64encode(b"n" * 12).decode()
    short_nonce = base64.b64encode(b"n" * 8).decode()

    with pytest.raises(ValidationError):
        crypto.decode_transport_key(f"{short_key}:{good_nonce}")
    with pytest.raises(ValidationError):
        crypto.decode_transport_key(f"{good_key}:{short_nonce}")


def test_encrypt_for_upload_and_decrypt_from_download():
    data = b"file body" * 50
    ciphertext, transport = crypto.encrypt_for_upload(data)

    assert ciphertext != data
    assert transport.count(":") == 1
    assert crypto.decrypt_from_download(ciphertext, transport) == data
