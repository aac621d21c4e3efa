"""Unit tests for hashing functionality."""

import hashlib
from pathlib import Path

from dstorage.core import hashing


def test_calculate_sha256_bytes_basic() -> None:
    """Hashing bytes should match hashlib output."""
    data = b"hello world"
    assert hashing.calculate_sha256_bytes(data) == hashlib.sha256(data).hexdigest()


def test_calculate_sha256_bytes_empty() -> None:
    assert hashing.calculate_sha256_bytes(b"") == hashlib.sha256(b"").hexdigest()


def test_calculate_sha256_file_matches_bytes(tmp_path: Path) -> None:
    """A file spanning several read chunks hashes like the same bytes in memory."""
    content = b"x" * (hashing.CHUNK_SIZE * 2 + 17)
    file_path = tmp_path / "sample.bin"
    file_path.write_bytes(content)

    assert hashing.calculate_sha256(file_path) == hashing.calculate_sha256_bytes(content)


def test_is_content_hash() -> None:
    assert hashing.is_content_hash(hashlib.sha256(b"a").hexdigest())
    assert not hashing.is_content_hash("abc")
    assert not hashing.is_content_hash("g" * 64)
    assert not hashing.is_content_hash(None)


def test_is_content_hash_requires_exactly_64_hex_digits() -> None:
    assert hashing.is_content_hash("AB" * 32)
    assert not hashing.is_content_hash("0x" + "a" * 62)
    assert not hashing.is_content_hash("a" * 32 + "_" + "a" * 31)
    assert not hashing.is_content_hash(" " + "a" * 63)
    assert not hashing.is_content_hash("a" * 64 + "\n")
    assert not hashing.is_content_hash("a" * 65)
