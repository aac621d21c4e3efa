""" Utility for content hashing operations. """

import hashlib
import re
from pathlib import Path


CHUNK_SIZE = 65536  # 64KB
CONTENT_HASH_PATTERN = re.compile(r"[0-9a-fA-F]{64}")

def calculate_sha256(file_path: Path) -> str:

    # Calculates the SHA-256 hash of a file.

    sha256 = hashlib.sha256()
    with open(file_path, 'rb') as f:
        while True:
            data = f.read(CHUNK_SIZE)
            if not data:
                break
            sha256.update(data)
    return sha256.hexdigest()


def calculate_sha256_bytes(data: bytes) -> str:
    # Content hash of an in-memory buffer; used as the blob address.
    return hashlib.sha256(data).hexdigest()


def is_content_hash(value: str) -> bool:
    """True if ``value`` is exactly 64 hex digits (a SHA-256 digest)."""
    return isinstance(value, str) and CONTENT_HASH_PATTERN.fullmatch(value) is not None
