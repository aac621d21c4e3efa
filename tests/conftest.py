"""Shared fixtures and collaborator doubles for the DStorage test suite."""

from __future__ import annotations

from pathlib import Path
from typing import AsyncIterator, List

import pytest

from dstorage.core.access import AccessControlManager
from dstorage.core.download import DownloadOrchestrator
from dstorage.core.exceptions import ContentStoreUnavailableError
from dstorage.core.upload import UploadOrchestrator
from dstorage.registry import DatabaseConnection, SqliteAccessDirectory
from dstorage.security.vault import KeyVault
from dstorage.storage import LocalContentStore

OWNER = "0x" + "11" * 20
ALICE = "0x" + "aa" * 20
BOB = "0x" + "bb" * 20


class RecordingStore:
    """Wraps a real content store and records every call made to it."""

    def __init__(self, inner: LocalContentStore):
        self.inner = inner
        self.calls: List[tuple] = []
        self.fail_put = False
        self.fail_get_after = None  # number of chunks delivered before failing

    async def put(self, data: bytes) -> str:
        self.calls.append(("put", len(data)))
        if self.fail_put:
            raise ContentStoreUnavailableError("store offline")
        return await self.inner.put(data)

    async def get(self, content_hash: str) -> AsyncIterator[bytes]:
        self.calls.append(("get", content_hash))
        delivered = 0
        async for chunk in self.inner.get(content_hash):
            if self.fail_get_after is not None and delivered >= self.fail_get_after:
                raise ConnectionError("connection reset")
            delivered += 1
            yield chunk

    def count(self, name: str) -> int:
        return sum(1 for call in self.calls if call[0] == name)


class RecordingDirectory:
    """Delegates to a SqliteAccessDirectory and records method names."""

    def __init__(self, inner: SqliteAccessDirectory):
        self.inner = inner
        self.calls: List[str] = []
        self.fail_grant = False
        self.fail_register = False

    @property
    def principal(self):
        return self.inner.principal

    def __getattr__(self, name):
        target = getattr(self.inner, name)
        if not callable(target):
            return target

        async def wrapper(*args, **kwargs):
            self.calls.append(name)
            if name == "grant_access" and self.fail_grant:
                raise RuntimeError("transaction reverted")
            if name == "register_file" and self.fail_register:
                raise RuntimeError("transaction reverted")
            return await target(*args, **kwargs)

        wrapper.__name__ = name
        return wrapper


class BrokenVault(KeyVault):
    """KeyVault whose writes always fail."""

    def put(self, file_id, key_string):
        raise OSError("disk full")


@pytest.fixture
def db():
    """In-memory registry database."""
    conn = DatabaseConnection(":memory:")
    conn.initialize()
    try:
        yield conn
    finally:
        conn.close()


@pytest.fixture
def directory(db) -> SqliteAccessDirectory:
    """Registry handle signed by OWNER."""
    return SqliteAccessDirectory(db, OWNER)


@pytest.fixture
def store(tmp_path: Path) -> LocalContentStore:
    return LocalContentStore(str(tmp_path / "store"), chunk_size=4)


@pytest.fixture
def vault(tmp_path: Path) -> KeyVault:
    return KeyVault(tmp_path / "vault.json")


@pytest.fixture
def recording_store(store) -> RecordingStore:
    return RecordingStore(store)


@pytest.fixture
def recording_directory(directory) -> RecordingDirectory:
    return RecordingDirectory(directory)


@pytest.fixture
def uploader(recording_store, recording_directory, vault) -> UploadOrchestrator:
    access = AccessControlManager(recording_directory)
    return UploadOrchestrator(recording_store, recording_directory, vault, access=access)


@pytest.fixture
def downloader(recording_store, recording_directory, vault) -> DownloadOrchestrator:
    access = AccessControlManager(recording_directory)
    return DownloadOrchestrator(recording_store, recording_directory, vault, access=access)
