"""
Device-local custody of per-file key material.

The vault maps a registry ``file_id`` to the transport-encoded key string of
that file. Nothing in here is ever sent to the registry or the content store.

Lifecycle rules:
- entries are written once by a successful encrypted upload (``put``)
- entries are only removed by an explicit ``delete``; there is no eviction
- ``export_backup`` / ``import_backup`` move entries between devices as a
  password-sealed blob (Argon2id + AES-GCM)

Two backends share that interface: ``KeyVault`` (a JSON file rewritten
atomically) and ``KeyringKeyVault`` (one OS keyring secret per file).
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Dict, List, Optional

from dstorage.core.exceptions import DecryptionFailedError, ValidationError, VaultError

from . import crypto
from .kdf import derive_backup_key, generate_salt, kdf_params_from_dict, kdf_params_to_dict, DEFAULT_MEMORY_COST, DEFAULT_PARALLELISM, DEFAULT_TIME_COST
from .keystore import assess_keyring_backend, delete_secret, load_secret, save_secret

logger = logging.getLogger(__name__)

BACKUP_FORMAT = "dstorage-vault-backup"
BACKUP_VERSION = 1


def _normalize_id(file_id) -> int:
    try:
        value = int(file_id)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid file id: {file_id!r}") from None
    if value < 0:
        raise ValidationError(f"Invalid file id: {file_id!r}")
    return value


class BaseKeyVault:
    """Backup/restore shared by every vault backend."""

    def put(self, file_id, key_string: str) -> None:
        raise NotImplementedError

    def get(self, file_id) -> Optional[str]:
        raise NotImplementedError

    def delete(self, file_id) -> bool:
        raise NotImplementedError

    def file_ids(self) -> List[int]:
        raise NotImplementedError

    def __contains__(self, file_id) -> bool:
        return self.get(file_id) is not None

    def export_backup(
        self,
        password,
        time_cost: int = DEFAULT_TIME_COST,
        memory_cost: int = DEFAULT_MEMORY_COST,
        parallelism: int = DEFAULT_PARALLELISM,
    ) -> bytes:
        """Seal every entry under a password-derived key and return the blob."""
        entries = {str(fid): self.get(fid) for fid in self.file_ids()}
        entries = {k: v for k, v in entries.items() if v is not None}

        salt = generate_salt()
        key = derive_backup_key(password, salt, time_cost, memory_cost, parallelism)
        ciphertext, nonce = crypto.encrypt(json.dumps(entries).encode("utf-8"), key)

        doc = {
            "format": BACKUP_FORMAT,
            "version": BACKUP_VERSION,
            "kdf": kdf_params_to_dict(salt, time_cost, memory_cost, parallelism),
            "nonce": base64.b64encode(nonce).decode("ascii"),
            "ciphertext": base64.b64encode(ciphertext).decode("ascii"),
        }
        logger.info("Exported %d key vault entries", len(entries))
        return json.dumps(doc).encode("utf-8")

    def import_backup(self, blob: bytes, password, overwrite: bool = False) -> int:
        """Merge a backup produced by export_backup; returns entries written.

        Existing entries win unless ``overwrite`` is set. A wrong password or a
        tampered blob raises DecryptionFailedError before anything is written.
        """
        try:
            doc = json.loads(blob.decode("utf-8") if isinstance(blob, bytes) else blob)
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ValidationError(f"Not a key vault backup: {e}") from None
        if not isinstance(doc, dict) or doc.get("format") != BACKUP_FORMAT:
            raise ValidationError("Not a key vault backup")
        if doc.get("version") != BACKUP_VERSION:
            raise ValidationError(f"Unsupported backup version: {doc.get('version')!r}")

        salt, time_cost, memory_cost, parallelism = kdf_params_from_dict(doc.get("kdf") or {})
        try:
            nonce = base64.b64decode(doc["nonce"], validate=True)
            ciphertext = base64.b64decode(doc["ciphertext"], validate=True)
        except (KeyError, TypeError, binascii.Error) as e:
            raise ValidationError(f"Malformed key vault backup: {e}") from None

        key = derive_backup_key(password, salt, time_cost, memory_cost, parallelism)
        entries = json.loads(crypto.decrypt(ciphertext, key, nonce).decode("utf-8"))
        if not isinstance(entries, dict):
            raise ValidationError("Malformed key vault backup: entries are not a mapping")

        # validate everything before the first write
        parsed: Dict[int, str] = {}
        for raw_id, key_string in entries.items():
            crypto.decode_transport_key(key_string)
            parsed[_normalize_id(raw_id)] = key_string

        written = 0
        for file_id, key_string in sorted(parsed.items()):
            if not overwrite and self.get(file_id) is not None:
                continue
            self.put(file_id, key_string)
            written += 1
        logger.info("Imported %d of %d key vault entries", written, len(parsed))
        return written


class KeyVault(BaseKeyVault):
    """
    JSON-file vault.

    Every write replaces the whole file through a temp file + ``os.replace``,
    so an interrupted write leaves the previous file intact.
    """

    def __init__(self, path: Path | str):
        self.path = Path(path).expanduser()
        self._lock = threading.Lock()

    def _load(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise VaultError(f"Key vault at {self.path} is corrupt: {e}") from e
        except OSError as e:
            raise VaultError(f"Cannot read key vault at {self.path}: {e}") from e
        if not isinstance(data, dict):
            raise VaultError(f"Key vault at {self.path} is corrupt")
        return data

    def _write(self, entries: Dict[str, str]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=".vault-", dir=str(self.path.parent))
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(entries, f, sort_keys=True)
                    f.flush()
                    os.fsync(f.fileno())
                os.chmod(tmp_name, 0o600)
                os.replace(tmp_name, self.path)
            finally:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
        except OSError as e:
            raise VaultError(f"Cannot write key vault at {self.path}: {e}") from e

    def put(self, file_id, key_string: str) -> None:
        fid = _normalize_id(file_id)
        crypto.decode_transport_key(key_string)
        with self._lock:
            entries = self._load()
            if str(fid) in entries:
                logger.warning("Overwriting key vault entry for file %s", fid)
            entries[str(fid)] = key_string
            self._write(entries)

    def get(self, file_id) -> Optional[str]:
        fid = _normalize_id(file_id)
        with self._lock:
            return self._load().get(str(fid))

    def delete(self, file_id) -> bool:
        fid = _normalize_id(file_id)
        with self._lock:
            entries = self._load()
            if entries.pop(str(fid), None) is None:
                return False
            self._write(entries)
        return True

    def file_ids(self) -> List[int]:
        with self._lock:
            return sorted(int(k) for k in self._load())


class KeyringKeyVault(BaseKeyVault):
    """
    Vault kept in the OS keystore, one secret per file id.

    keyring cannot enumerate accounts, so the known ids are kept in an extra
    index secret under the same service.
    """

    INDEX_ACCOUNT = "__index__"

    def __init__(self, service: str, allow_insecure: bool = False):
        self.service = service
        secure, msg = assess_keyring_backend()
        if not secure:
            if not allow_insecure:
                raise VaultError(f"refusing to keep file keys in OS keystore: {msg}")
            logger.warning("Using insecure keyring backend: %s", msg)
        self._lock = threading.Lock()

    def _index(self) -> List[int]:
        raw = load_secret(self.service, self.INDEX_ACCOUNT)
        if not raw:
            return []
        try:
            return sorted(int(x) for x in json.loads(raw))
        except (json.JSONDecodeError, TypeError, ValueError) as e:
            raise VaultError(f"Keyring vault index is corrupt: {e}") from e

    def _save_index(self, ids) -> None:
        save_secret(self.service, self.INDEX_ACCOUNT, json.dumps(sorted(set(ids))))

    def put(self, file_id, key_string: str) -> None:
        fid = _normalize_id(file_id)
        crypto.decode_transport_key(key_string)
        with self._lock:
            save_secret(self.service, str(fid), key_string)
            ids = self._index()
            if fid not in ids:
                self._save_index(ids + [fid])

    def get(self, file_id) -> Optional[str]:
        return load_secret(self.service, str(_normalize_id(file_id)))

    def delete(self, file_id) -> bool:
        fid = _normalize_id(file_id)
        with self._lock:
            removed = delete_secret(self.service, str(fid))
            ids = self._index()
            if fid in ids:
                self._save_index([i for i in ids if i != fid])
        return removed

    def file_ids(self) -> List[int]:
        return self._index()
