"""
Upload pipeline: encrypt -> store -> register -> grant -> persist key.

Steps run strictly in order and each one awaits the previous. Where a step
fails decides what the caller is left with:

- before/at the content store: nothing registered, retry from scratch
- at registration: an orphaned blob at most, nothing to undo
- at the grant step: the record exists, PartialSuccessError, no rollback
- at the key step: the record exists, KeyPersistenceError (terminal)
"""

import logging
from typing import Iterable, Optional

from .access import AccessControlManager, normalize_recipients
from .exceptions import (
    ContentStoreUnavailableError,
    DStorageError,
    KeyPersistenceError,
    PartialSuccessError,
    ValidationError,
)
from .interfaces import AccessDirectory, ContentStore
from .metadata import MetadataExtractor
from .models import AccessType, FileRecord, parse_access_type
from ..security import crypto
from ..security.vault import BaseKeyVault

logger = logging.getLogger(__name__)


class UploadResult:
    """Outcome of a completed upload."""

    __slots__ = ('record', 'key_string', 'recipients')

    def __init__(self, record: FileRecord, key_string: Optional[str] = None, recipients=None):
        self.record = record
        self.key_string = key_string
        self.recipients = list(recipients or [])

    @property
    def file_id(self):
        return self.record.file_id

    def __repr__(self):
        return f"UploadResult(record={self.record!r}, recipients={self.recipients!r})"


class UploadOrchestrator:
    """Drive one upload at a time through the store and the registry."""

    def __init__(
        self,
        store: ContentStore,
        directory: AccessDirectory,
        vault: BaseKeyVault,
        access: Optional[AccessControlManager] = None,
        metadata_extractor: Optional[MetadataExtractor] = None,
    ):
        self.store = store
        self.directory = directory
        self.vault = vault
        self.access = access or AccessControlManager(directory)
        self.metadata_extractor = metadata_extractor or MetadataExtractor()

    async def upload(
        self,
        data: bytes,
        file_name: str,
        description: str = "",
        access_type=AccessType.PUBLIC,
        recipients: Iterable[str] = (),
        encrypt: bool = False,
        file_type: Optional[str] = None,
    ) -> UploadResult:
        """
        Upload ``data`` and register it.

        Args:
            data: raw file bytes
            file_name: name recorded in the registry
            description: free-text description
            access_type: AccessType, wire int (0/1/2) or name
            recipients: addresses granted access; required for RESTRICTED
            encrypt: encrypt client-side and keep the key in the vault
            file_type: MIME type; detected from name/content when omitted

        Returns:
            UploadResult with the registered FileRecord

        Raises:
            ValidationError: bad input, before any collaborator call
            ContentStoreUnavailableError: store failed, nothing registered
            PartialSuccessError: registered, granting recipients failed
            KeyPersistenceError: registered, key could not be saved locally
        """
        # All validation happens before the first collaborator call.
        if not isinstance(data, (bytes, bytearray, memoryview)):
            raise ValidationError("Upload data must be bytes")
        if not file_name or not str(file_name).strip():
            raise ValidationError("A file name is required")
        access_type = parse_access_type(access_type)
        addresses = normalize_recipients(recipients)
        if access_type is AccessType.RESTRICTED and not addresses:
            raise ValidationError("A restricted upload needs at least one valid recipient")
        if access_type is not AccessType.RESTRICTED and addresses:
            logger.warning("Ignoring %d recipient(s) for %s upload", len(addresses), access_type.name)
            addresses = []

        data = bytes(data)
        if file_type is None:
            file_type = self.metadata_extractor.detect_type(file_name, data)

        # Step 1: encrypt
        key_string = None
        payload = data
        if encrypt:
            payload, key_string = crypto.encrypt_for_upload(data)
            logger.debug("Encrypted %d bytes for upload", len(data))

        # Step 2: store
        try:
            content_hash = await self.store.put(payload)
        except ContentStoreUnavailableError:
            raise
        except Exception as e:
            raise ContentStoreUnavailableError(f"Content store rejected upload: {e}") from e
        logger.debug("Stored %s as %s", file_name, content_hash)

        # Step 3: register
        file_id = await self.directory.register_file(
            content_hash,
            len(payload),
            file_name,
            description,
            access_type,
            bool(encrypt),
            file_type=file_type,
        )
        record = await self._registered_record(file_id, content_hash, len(payload), file_name, description, file_type, access_type, encrypt)
        logger.debug("Registered %s as file %s", file_name, file_id)

        # Step 4: grant
        grant_error = None
        if access_type is AccessType.RESTRICTED:
            try:
                await self.access.add_recipients(file_id, addresses)
            except Exception as e:
                grant_error = e
                logger.warning("File %s registered but granting recipients failed: %s", file_id, e)

        # Step 5: persist key (runs even when step 4 failed)
        if encrypt:
            try:
                self.vault.put(file_id, key_string)
            except Exception as e:
                logger.error("File %s registered but its key could not be saved", file_id)
                raise KeyPersistenceError(
                    f"File {file_id} was uploaded but its key could not be saved: {e}",
                    file_id=file_id,
                    key_string=key_string,
                ) from e

        if grant_error is not None:
            raise PartialSuccessError(
                f"File {file_id} was registered but granting recipients failed: {grant_error}",
                record=record,
                cause=grant_error,
            ) from grant_error

        logger.info("Uploaded %s as file %s (%s, encrypted=%s)", file_name, file_id, access_type.name, bool(encrypt))
        return UploadResult(record, key_string=key_string, recipients=addresses)

    async def retry_grants(self, file_id, recipients) -> list:
        """Re-run only the grant step after a PartialSuccessError."""
        return await self.access.add_recipients(file_id, recipients)

    async def _registered_record(self, file_id, content_hash, size, file_name, description, file_type, access_type, encrypt):
        try:
            return await self.directory.get_file(file_id)
        except DStorageError as e:
            # the id is committed; build the record locally rather than fail the upload
            logger.debug("Could not read back file %s: %s", file_id, e)
            return FileRecord(
                file_id=file_id,
                content_hash=content_hash,
                file_size=size,
                file_name=file_name,
                file_description=description,
                file_type=file_type,
                uploader=getattr(self.directory, "principal", ""),
                access_type=access_type,
                is_encrypted=encrypt,
            )
