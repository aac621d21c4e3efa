"""
Collaborator interfaces the orchestrators are built against.

Both collaborators are external: a content-addressed blob store and the
authoritative registry (Access Directory). Implementations are injected into
the orchestrators; ``dstorage.storage.blobstore`` and ``dstorage.registry``
ship local reference implementations.
"""

from __future__ import annotations

from typing import AsyncIterator, List, Protocol, Set

from .models import AccessGrant, AccessLogEntry, AccessType, FileRecord


class ContentStore(Protocol):
    """Content-addressable byte storage."""

    async def put(self, data: bytes) -> str:
        """Store ``data`` and return its content hash.

        Identical bytes always produce the identical hash.
        """
        ...

    def get(self, content_hash: str) -> AsyncIterator[bytes]:
        """Return the stored bytes as an ordered, finite stream of chunks.

        The stream cannot be restarted; retrying needs a fresh call.
        """
        ...


class AccessDirectory(Protocol):
    """Registry of file records and grants.

    An instance is bound to the principal that signs its mutating calls.
    """

    principal: str

    async def register_file(
        self,
        content_hash: str,
        size: int,
        name: str,
        description: str,
        access_type: AccessType,
        is_encrypted: bool,
        file_type: str = "application/octet-stream",
    ) -> int:
        ...

    async def get_file(self, file_id: int) -> FileRecord:
        ...

    async def list_owned(self, principal: str) -> Set[int]:
        ...

    async def list_shared(self, principal: str) -> Set[int]:
        ...

    async def list_public(self) -> Set[int]:
        ...

    async def has_access(self, file_id: int, principal: str) -> bool:
        ...

    async def grant_access(self, file_id: int, principal: str) -> None:
        ...

    async def revoke_access(self, file_id: int, principal: str) -> None:
        ...

    async def record_access(self, file_id: int) -> None:
        ...

    async def get_access_log(self, file_id: int) -> List[AccessLogEntry]:
        ...

    async def list_grants(self, file_id: int) -> List[AccessGrant]:
        """Grants on a file the caller owns, active or not."""
        ...
