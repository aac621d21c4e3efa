"""
Download pipeline: check access -> audit -> fetch -> decrypt.

The access check is repeated on every download and nothing is fetched when
it fails. The audit entry is written before the fetch. Chunks are collected
into one buffer before decryption because GCM only authenticates the whole
ciphertext.
"""

import logging
from typing import Optional

from .access import AccessControlManager
from .exceptions import (
    AccessDeniedError,
    ContentStoreUnavailableError,
    DecryptionFailedError,
    MissingKeyError,
    ValidationError,
)
from .interfaces import AccessDirectory, ContentStore
from .models import FileRecord
from ..security import crypto
from ..security.vault import BaseKeyVault

logger = logging.getLogger(__name__)


class DownloadResult:
    """Plaintext of a downloaded file plus its record."""

    __slots__ = ('record', 'data')

    def __init__(self, record: FileRecord, data: bytes):
        self.record = record
        self.data = data

    def __repr__(self):
        return f"DownloadResult(record={self.record!r}, size={len(self.data)})"


class DownloadOrchestrator:
    """Fetch and decrypt files the active principal may read."""

    def __init__(
        self,
        store: ContentStore,
        directory: AccessDirectory,
        vault: BaseKeyVault,
        access: Optional[AccessControlManager] = None,
        max_bytes: Optional[int] = None,
    ):
        self.store = store
        self.directory = directory
        self.vault = vault
        self.access = access or AccessControlManager(directory)
        self.max_bytes = max_bytes

    async def download(self, record: FileRecord, principal: str) -> DownloadResult:
        """
        Run the full pipeline for ``record`` on behalf of ``principal``.

        Raises:
            AccessDeniedError: the directory says no; nothing was fetched
            ContentStoreUnavailableError: fetch failed; safe to call again
            MissingKeyError: encrypted and no key on this device
            DecryptionFailedError: key present but authentication failed
        """
        file_id = record.file_id

        # Step 1: fresh access check
        if not await self.access.check_access(file_id, principal):
            raise AccessDeniedError(f"{principal} may not access file {file_id}")

        # Step 2: audit before fetch
        await self.directory.record_access(file_id)
        logger.debug("Recorded access to file %s by %s", file_id, principal)

        # Step 3: fetch and reassemble
        payload = await self._fetch(record)

        # Step 4: decrypt
        if record.is_encrypted:
            payload = self._decrypt(file_id, payload)

        logger.info("Downloaded file %s (%d bytes) for %s", file_id, len(payload), principal)
        return DownloadResult(record, payload)

    async def download_by_id(self, file_id, principal: str) -> DownloadResult:
        """Look the record up in the directory, then download it."""
        record = await self.directory.get_file(file_id)
        return await self.download(record, principal)

    async def _fetch(self, record: FileRecord) -> bytes:
        buffer = bytearray()
        try:
            async for chunk in self.store.get(record.content_hash):
                buffer.extend(chunk)
                if self.max_bytes is not None and len(buffer) > self.max_bytes:
                    raise ContentStoreUnavailableError(
                        f"Content for file {record.file_id} exceeds {self.max_bytes} bytes"
                    )
        except ContentStoreUnavailableError:
            raise
        except Exception as e:
            raise ContentStoreUnavailableError(
                f"Failed to fetch {record.content_hash} for file {record.file_id}: {e}"
            ) from e
        logger.debug("Fetched %d bytes for file %s", len(buffer), record.file_id)
        return bytes(buffer)

    def _decrypt(self, file_id, ciphertext: bytes) -> bytes:
        key_string = self.vault.get(file_id)
        if key_string is None:
            raise MissingKeyError(file_id)
        try:
            key, nonce = crypto.decode_transport_key(key_string)
        except ValidationError as e:
            raise DecryptionFailedError(f"Stored key for file {file_id} is malformed: {e}") from e
        try:
            return crypto.decrypt(ciphertext, key, nonce)
        except DecryptionFailedError as e:
            raise DecryptionFailedError(f"File {file_id} failed authentication: {e}") from e
