"""
Exceptions for DStorage
Everything raised on purpose derives from DStorageError so callers have one
general error catcher.
"""


class DStorageError(Exception):
    # general container for errors
    pass


class ValidationError(DStorageError):
    # malformed address, unknown access type, empty restricted recipient list
    pass


class UnauthorizedError(DStorageError):
    # raised by the directory when a non-owner tries to share/revoke
    pass


class AccessDeniedError(DStorageError):
    # raised when the directory denies a fetch
    pass


class ConflictError(DStorageError):
    """Registry write rejected because of stale state."""

    def __init__(self, message, retryable=False):
        super().__init__(message)
        self.retryable = retryable


class ContentStoreUnavailableError(DStorageError):
    # content store put/get failed
    pass


class PartialSuccessError(DStorageError):
    """The file was registered but granting recipients failed.

    ``record`` is the already-committed FileRecord; it is never rolled back.
    """

    def __init__(self, message, record, cause=None):
        super().__init__(message)
        self.record = record
        self.cause = cause


class MissingKeyError(DStorageError):
    """No key material for an encrypted file on this device."""

    def __init__(self, file_id):
        super().__init__(f"No key for file {file_id} in the local key vault")
        self.file_id = file_id


class DecryptionFailedError(DStorageError):
    # authentication tag did not verify or key material is unusable
    pass


class KeyPersistenceError(DStorageError):
    """The upload is registered but its key could not be saved locally.

    ``key_string`` is kept on the exception so the caller can store it by other
    means; without it the file is unreadable on this device.
    """

    def __init__(self, message, file_id, key_string):
        super().__init__(message)
        self.file_id = file_id
        self.key_string = key_string


class RecordNotFoundError(DStorageError):
    # raised when a file id is unknown to the registry
    pass


class VaultError(DStorageError):
    # raised when the key vault backend cannot be used
    pass


class RegistryError(DStorageError):
    # raised when the registry backend fails for reasons other than a conflict
    pass
