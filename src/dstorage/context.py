"""Small helper to build a DStorage app context from Settings."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from dstorage.config import Settings
from dstorage.core.access import AccessControlManager, validate_address
from dstorage.core.download import DownloadOrchestrator
from dstorage.core.exceptions import ValidationError
from dstorage.core.upload import UploadOrchestrator
from dstorage.registry import DatabaseConnection, SqliteAccessDirectory
from dstorage.security.vault import BaseKeyVault, KeyringKeyVault, KeyVault
from dstorage.storage import LocalContentStore


@dataclass
class AppContext:
    """Container for the runtime objects the CLI needs."""

    settings: Settings
    principal: str
    db: DatabaseConnection
    store: LocalContentStore
    directory: SqliteAccessDirectory
    vault: BaseKeyVault
    access: AccessControlManager
    uploader: UploadOrchestrator
    downloader: DownloadOrchestrator

    def close(self) -> None:
        self.db.close()


def build_vault(settings: Settings) -> BaseKeyVault:
    if settings.vault_backend == "keyring":
        return KeyringKeyVault(settings.keyring_service)
    return KeyVault(settings.vault_path)


def build_context(settings: Settings, principal: Optional[str] = None) -> AppContext:
    """
    Wire collaborators for one principal on one network.

    The network named in ``settings`` is taken as already resolved; it picks
    the registry database and vault file and is not re-derived afterwards.
    """
    who = principal or settings.principal
    if not who:
        raise ValidationError("No principal given; pass --principal or set DSTORAGE_PRINCIPAL")
    who = validate_address(who)

    db = DatabaseConnection(settings.registry_path)
    db.initialize()

    store = LocalContentStore(str(settings.store_root), chunk_size=settings.chunk_size)
    directory = SqliteAccessDirectory(db, who)
    vault = build_vault(settings)
    access = AccessControlManager(directory)

    return AppContext(
        settings=settings,
        principal=who,
        db=db,
        store=store,
        directory=directory,
        vault=vault,
        access=access,
        uploader=UploadOrchestrator(store, directory, vault, access=access),
        downloader=DownloadOrchestrator(
            store, directory, vault, access=access, max_bytes=settings.max_download_bytes
        ),
    )
