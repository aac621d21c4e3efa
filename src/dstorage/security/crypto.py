"""AES-256-GCM primitives for client-side file encryption.

Keys are plain 32-byte strings. Each ``encrypt`` call draws a fresh 96-bit
nonce from the OS RNG; reusing a (key, nonce) pair is never done on purpose
and is not checked at runtime.

Transport encoding packs the exported key and nonce as two standard base64
segments joined by a single colon::

    "<base64(key)>:<base64(nonce)>"

That string is the only form in which key material is ever persisted.
"""
import base64
import binascii
import os
from typing import Tuple

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from dstorage.core.exceptions import DecryptionFailedError, ValidationError


KEY_SIZE = 32
NONCE_SIZE = 12
TAG_SIZE = 16
TRANSPORT_SEPARATOR = ":"


def generate_key() -> bytes:
    return AESGCM.generate_key(bit_length=KEY_SIZE * 8)


def export_key(key: bytes) -> bytes:
    return bytes(import_key(key))


def import_key(raw: bytes) -> bytes:
    if not isinstance(raw, (bytes, bytearray)) or len(raw) != KEY_SIZE:
        raise ValidationError(f"AES-256 key must be {KEY_SIZE} bytes")
    return bytes(raw)


def encrypt(plaintext: bytes, key: bytes) -> Tuple[bytes, bytes]:
    """Encrypt ``plaintext`` and return ``(ciphertext, nonce)``.

    The ciphertext carries the 16-byte GCM tag at its end.
    """
    aead = AESGCM(import_key(key))
    nonce = os.urandom(NONCE_SIZE)
    return aead.encrypt(nonce, bytes(plaintext), None), nonce


def decrypt(ciphertext: bytes, key: bytes, nonce: bytes) -> bytes:
    """Authenticate and decrypt; raises DecryptionFailedError on any mismatch."""
    if len(key) != KEY_SIZE or len(nonce) != NONCE_SIZE:
        raise DecryptionFailedError("Key or nonce has the wrong length")
    if len(ciphertext) < TAG_SIZE:
        raise DecryptionFailedError("Ciphertext too short to contain a tag")
    try:
        return AESGCM(bytes(key)).decrypt(bytes(nonce), bytes(ciphertext), None)
    except InvalidTag:
        raise DecryptionFailedError("Authentication tag did not verify") from None


def encode_transport_key(key: bytes, nonce: bytes) -> str:
    k = base64.b64encode(export_key(key)).decode("ascii")
    n = base64.b64encode(bytes(nonce)).decode("ascii")
    return f"{k}{TRANSPORT_SEPARATOR}{n}"


def decode_transport_key(text: str) -> Tuple[bytes, bytes]:
    """Split a transport string into ``(key, nonce)``.

    Raises ValidationError unless the string is exactly two valid base64
    segments holding a 32-byte key and a 12-byte nonce.
    """
    if not isinstance(text, str):
        raise ValidationError("Transport key must be a string")
    parts = text.strip().split(TRANSPORT_SEPARATOR)
    if len(parts) != 2 or not all(parts):
        raise ValidationError("Transport key must have exactly two segments")
    try:
        key = base64.b64decode(parts[0], validate=True)
        nonce = base64.b64decode(parts[1], validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValidationError(f"Transport key is not valid base64: {e}") from None
    if len(nonce) != NONCE_SIZE:
        raise ValidationError(f"Nonce must be {NONCE_SIZE} bytes")
    return import_key(key), nonce


def encrypt_for_upload(data: bytes) -> Tuple[bytes, str]:
    """Generate a key, encrypt ``data`` and return ``(ciphertext, transport_key)``."""
    key = generate_key()
    ciphertext, nonce = encrypt(data, key)
    return ciphertext, encode_transport_key(key, nonce)


def decrypt_from_download(ciphertext: bytes, transport_key: str) -> bytes:
    key, nonce = decode_transport_key(transport_key)
    return decrypt(ciphertext, key, nonce)
