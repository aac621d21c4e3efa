"""
SQLite-backed Access Directory.

Reference registry used for local operation and tests. It enforces the
same rules the authoritative registry does: sequential ids, owner-only
share/revoke, append-only records and audit log. Each instance is bound to
the principal that "signs" its mutating calls.

sqlite3 calls block (a write may wait up to the connection timeout for a
lock), so every public method runs its query in a worker thread.
"""

import asyncio
import logging
import time
from typing import List, Set

from .connection import DatabaseConnection
from ..core.exceptions import RecordNotFoundError, UnauthorizedError, ValidationError
from ..core.models import (
    AccessGrant,
    AccessLogEntry,
    AccessType,
    FileRecord,
    create_record_from_dict,
    parse_access_type,
)

logger = logging.getLogger(__name__)


def _norm(address):
    return (address or "").strip().lower()


class SqliteAccessDirectory:
    """AccessDirectory implementation over a DatabaseConnection."""

    def __init__(self, db: DatabaseConnection, principal: str):
        self.db = db
        self.db.initialize()
        self.principal = _norm(principal)

    def as_principal(self, principal: str) -> "SqliteAccessDirectory":
        """Same registry, calls signed by another principal."""
        return SqliteAccessDirectory(self.db, principal)

    def _require_principal(self):
        if not self.principal:
            raise UnauthorizedError("No principal configured to sign registry writes")
        return self.principal

    def _get_row(self, cur, file_id):
        cur.execute("SELECT * FROM files WHERE file_id = ?", (int(file_id),))
        row = cur.fetchone()
        if row is None:
            raise RecordNotFoundError(f"File {file_id} is not registered")
        return dict(row)

    def _require_owner(self, cur, file_id):
        caller = self._require_principal()
        row = self._get_row(cur, file_id)
        if row["uploader"] != caller:
            raise UnauthorizedError(f"{caller} is not the owner of file {file_id}")
        return caller

    # ------------------------------------------------------------------
    # Blocking implementations
    # ------------------------------------------------------------------

    def _register_file(self, content_hash, size, name, description, access_type, is_encrypted, file_type):
        uploader = self._require_principal()
        access_type = parse_access_type(access_type)
        if not content_hash:
            raise ValidationError("content_hash is required")
        if int(size) < 0:
            raise ValidationError("size must not be negative")

        file_id = self.db.execute(
            """
            INSERT INTO files (content_hash, file_size, file_name, file_description,
                               file_type, uploader, upload_time, access_type, is_encrypted)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                content_hash,
                int(size),
                name or "",
                description or "",
                file_type,
                uploader,
                int(time.time()),
                int(access_type),
                1 if is_encrypted else 0,
            ),
        )
        logger.debug("Registered file %s for %s", file_id, uploader)
        return int(file_id)

    def _get_file(self, file_id) -> FileRecord:
        row = self.db.fetch_one("SELECT * FROM files WHERE file_id = ?", (int(file_id),))
        if row is None:
            raise RecordNotFoundError(f"File {file_id} is not registered")
        return create_record_from_dict(row)

    def _ids(self, query, params=()) -> Set[int]:
        return {r["file_id"] for r in self.db.fetch_all(query, params)}

    def _has_access(self, file_id, principal) -> bool:
        row = self.db.fetch_one(
            "SELECT uploader, access_type FROM files WHERE file_id = ?", (int(file_id),)
        )
        if row is None:
            return False
        who = _norm(principal)
        if row["access_type"] == AccessType.PUBLIC or row["uploader"] == who:
            return True
        grant = self.db.fetch_one(
            "SELECT active FROM access_grants WHERE file_id = ? AND grantee = ?",
            (int(file_id), who),
        )
        return bool(grant and grant["active"])

    def _set_grant(self, file_id, principal, active):
        grantee = _norm(principal)
        with self.db.transaction() as cur:
            self._require_owner(cur, file_id)
            if active:
                cur.execute(
                    """
                    INSERT INTO access_grants (file_id, grantee, active, updated_at)
                    VALUES (?, ?, 1, ?)
                    ON CONFLICT(file_id, grantee) DO UPDATE SET active = 1, updated_at = excluded.updated_at
                    """,
                    (int(file_id), grantee, int(time.time())),
                )
            else:
                # no row, or an inactive one, is left as it is
                cur.execute(
                    "UPDATE access_grants SET active = 0, updated_at = ? WHERE file_id = ? AND grantee = ?",
                    (int(time.time()), int(file_id), grantee),
                )
        logger.debug("%s %s on file %s", "Granted" if active else "Revoked", grantee, file_id)

    def _record_access(self, file_id):
        accessor = self._require_principal()
        with self.db.transaction() as cur:
            self._get_row(cur, file_id)
            cur.execute(
                "INSERT INTO access_log (file_id, accessor, accessed_at) VALUES (?, ?, ?)",
                (int(file_id), accessor, int(time.time())),
            )

    def _owner_rows(self, file_id, query):
        with self.db.transaction() as cur:
            self._require_owner(cur, file_id)
            cur.execute(query, (int(file_id),))
            return [dict(r) for r in cur.fetchall()]

    # ------------------------------------------------------------------
    # AccessDirectory interface
    # ------------------------------------------------------------------

    async def register_file(
        self,
        content_hash,
        size,
        name,
        description,
        access_type,
        is_encrypted,
        file_type="application/octet-stream",
    ) -> int:
        return await asyncio.to_thread(
            self._register_file, content_hash, size, name, description, access_type, is_encrypted, file_type
        )

    async def get_file(self, file_id) -> FileRecord:
        return await asyncio.to_thread(self._get_file, file_id)

    async def list_owned(self, principal) -> Set[int]:
        return await asyncio.to_thread(
            self._ids, "SELECT file_id FROM files WHERE uploader = ?", (_norm(principal),)
        )

    async def list_shared(self, principal) -> Set[int]:
        return await asyncio.to_thread(
            self._ids,
            "SELECT file_id FROM access_grants WHERE grantee = ? AND active = 1",
            (_norm(principal),),
        )

    async def list_public(self) -> Set[int]:
        return await asyncio.to_thread(
            self._ids, "SELECT file_id FROM files WHERE access_type = ?", (int(AccessType.PUBLIC),)
        )

    async def has_access(self, file_id, principal) -> bool:
        return await asyncio.to_thread(self._has_access, file_id, principal)

    async def grant_access(self, file_id, principal) -> None:
        await asyncio.to_thread(self._set_grant, file_id, principal, True)

    async def revoke_access(self, file_id, principal) -> None:
        await asyncio.to_thread(self._set_grant, file_id, principal, False)

    async def record_access(self, file_id) -> None:
        await asyncio.to_thread(self._record_access, file_id)

    async def get_access_log(self, file_id) -> List[AccessLogEntry]:
        rows = await asyncio.to_thread(
            self._owner_rows,
            file_id,
            "SELECT file_id, accessor, accessed_at FROM access_log WHERE file_id = ? ORDER BY log_id",
        )
        return [AccessLogEntry(**r) for r in rows]

    async def list_grants(self, file_id) -> List[AccessGrant]:
        """Every grant ever issued on an owned file, revoked ones included."""
        rows = await asyncio.to_thread(
            self._owner_rows,
            file_id,
            "SELECT file_id, grantee, active FROM access_grants WHERE file_id = ? ORDER BY grantee",
        )
        return [AccessGrant(**r) for r in rows]
