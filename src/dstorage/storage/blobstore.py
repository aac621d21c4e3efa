"""
Local content-addressed blob store

Structure Map for reference:
==============================
 - <store_root>/
      - blobs/
          - {sha256[:2]}/
              - {sha256}
==============================
For reference:
> Blobs are addressed by the SHA-256 of their bytes, so identical bytes always
  land at the same address and a repeated put is a no-op.
> The store is not owner-scoped and never deletes; blobs orphaned by a failed
  registration simply stay.
> Encrypted uploads arrive here already encrypted; the store only ever sees
  opaque bytes.
"""

import asyncio
import logging
import os
import tempfile
from pathlib import Path
from typing import AsyncIterator, Optional

from ..core.exceptions import ContentStoreUnavailableError, ValidationError
from ..core.hashing import calculate_sha256, calculate_sha256_bytes, is_content_hash, CHUNK_SIZE

logger = logging.getLogger(__name__)


class LocalContentStore:
    """Filesystem implementation of the ContentStore interface"""

    def __init__(self, root_path: Optional[str] = None, chunk_size: int = CHUNK_SIZE):
        self.root = (
            Path(root_path).expanduser() if root_path else Path.home() / ".dstorage"
        )
        if chunk_size <= 0:
            raise ValidationError("chunk_size must be positive")
        self.chunk_size = chunk_size

    def blob_root(self) -> Path:
        return self.root / "blobs"

    def blob_path(self, content_hash: str) -> Path:
        if not is_content_hash(content_hash):
            raise ValidationError(f"Not a content hash: {content_hash!r}")
        content_hash = content_hash.lower()
        return self.blob_root() / content_hash[:2] / content_hash

    def exists(self, content_hash: str) -> bool:
        return self.blob_path(content_hash).exists()

    def _write_blob(self, data: bytes) -> str:
        content_hash = calculate_sha256_bytes(data)
        if self.exists(content_hash):
            return content_hash
        destination = self.blob_path(content_hash)
        destination.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=".blob-", dir=str(destination.parent))
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, destination)
        finally:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
        return content_hash

    async def put(self, data: bytes) -> str:
        """Store bytes and return their SHA-256 content hash."""
        try:
            content_hash = await asyncio.to_thread(self._write_blob, bytes(data))
        except OSError as e:
            raise ContentStoreUnavailableError(f"Failed to store blob: {e}") from e
        logger.debug("Stored blob %s (%d bytes)", content_hash, len(data))
        return content_hash

    async def get(self, content_hash: str) -> AsyncIterator[bytes]:
        """Yield the blob's bytes in order, ``chunk_size`` at a time."""
        path = self.blob_path(content_hash)
        try:
            f = open(path, "rb")
        except FileNotFoundError:
            raise ContentStoreUnavailableError(f"Blob {content_hash} not found") from None
        except OSError as e:
            raise ContentStoreUnavailableError(f"Failed to open blob {content_hash}: {e}") from e

        with f:
            while True:
                try:
                    chunk = await asyncio.to_thread(f.read, self.chunk_size)
                except OSError as e:
                    raise ContentStoreUnavailableError(f"Failed reading blob {content_hash}: {e}") from e
                if not chunk:
                    break
                yield chunk

    def verify(self, content_hash: str) -> bool:
        """True if the blob on disk still hashes to its address."""
        path = self.blob_path(content_hash)
        if not path.exists():
            return False
        return calculate_sha256(path) == content_hash.lower()
