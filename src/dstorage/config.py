"""Runtime settings, read from ``DSTORAGE_*`` environment variables."""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Mapping, Optional

from dstorage.core.exceptions import ValidationError

VAULT_BACKENDS = ("file", "keyring")
_NETWORK_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+$")


@dataclass(frozen=True)
class Settings:
    """Everything the context builder needs; network identity is fixed here."""

    home: Path
    network: str = "local"
    principal: Optional[str] = None
    vault_backend: str = "file"
    chunk_size: int = 65536
    max_download_bytes: Optional[int] = None
    log_level: int = logging.WARNING

    @property
    def network_root(self) -> Path:
        return self.home / self.network

    @property
    def registry_path(self) -> Path:
        return self.network_root / "registry.db"

    @property
    def vault_path(self) -> Path:
        return self.network_root / "vault.json"

    @property
    def store_root(self) -> Path:
        # blobs are content-addressed and shared across networks
        return self.home

    @property
    def keyring_service(self) -> str:
        return f"dstorage:{self.network}"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ

        home = Path(env.get("DSTORAGE_HOME") or Path.home() / ".dstorage").expanduser()

        network = env.get("DSTORAGE_NETWORK", "local").strip() or "local"
        if not _NETWORK_PATTERN.match(network):
            raise ValidationError(f"Invalid DSTORAGE_NETWORK: {network!r}")

        backend = env.get("DSTORAGE_VAULT_BACKEND", "file").strip().lower()
        if backend not in VAULT_BACKENDS:
            raise ValidationError(f"DSTORAGE_VAULT_BACKEND must be one of {VAULT_BACKENDS}, got {backend!r}")

        chunk_size = _positive_int(env, "DSTORAGE_CHUNK_SIZE", 65536)
        max_bytes = _positive_int(env, "DSTORAGE_MAX_DOWNLOAD_BYTES", None)

        level_name = env.get("DSTORAGE_LOG_LEVEL", "WARNING").strip().upper()
        level = logging.getLevelName(level_name)
        if not isinstance(level, int):
            raise ValidationError(f"Invalid DSTORAGE_LOG_LEVEL: {level_name!r}")

        return cls(
            home=home,
            network=network,
            principal=(env.get("DSTORAGE_PRINCIPAL") or "").strip() or None,
            vault_backend=backend,
            chunk_size=chunk_size,
            max_download_bytes=max_bytes,
            log_level=level,
        )

    def with_overrides(self, **changes) -> "Settings":
        """Copy with the non-None values in ``changes`` applied."""
        network = changes.get("network")
        if network is not None and not _NETWORK_PATTERN.match(network):
            raise ValidationError(f"Invalid network: {network!r}")
        return replace(self, **{k: v for k, v in changes.items() if v is not None})


def _positive_int(env, name, default):
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an integer, got {raw!r}") from None
    if value <= 0:
        raise ValidationError(f"{name} must be positive, got {value}")
    return value
