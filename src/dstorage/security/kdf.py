"""Argon2id password derivation for key-vault backups."""
import os
from typing import Dict, Tuple

from argon2.low_level import Type, hash_secret_raw

from dstorage.core.exceptions import ValidationError


DEFAULT_TIME_COST = 3
DEFAULT_MEMORY_COST = 65536
DEFAULT_PARALLELISM = 1


def generate_salt(length: int = 16) -> bytes:
    """Return a cryptographically secure random salt."""
    return os.urandom(length)


def derive_backup_key(
    password,
    salt: bytes,
    time_cost: int = DEFAULT_TIME_COST,
    memory_cost: int = DEFAULT_MEMORY_COST,
    parallelism: int = DEFAULT_PARALLELISM,
    key_len: int = 32,
) -> bytes:
    """
    Derive the key that seals a vault backup.
    ``password`` may be str (UTF-8 encoded) or bytes.
    """
    if isinstance(password, str):
        password = password.encode("utf-8")
    if not password:
        raise ValidationError("Backup password must not be empty")

    return hash_secret_raw(
        secret=password,
        salt=salt,
        time_cost=time_cost,
        memory_cost=memory_cost,
        parallelism=parallelism,
        hash_len=key_len,
        type=Type.ID,
    )


def kdf_params_to_dict(salt: bytes, time_cost: int, memory_cost: int, parallelism: int) -> Dict:
    return {
        "algo": "argon2id",
        "salt": salt.hex(),
        "time": time_cost,
        "memory": memory_cost,
        "parallelism": parallelism,
    }


def kdf_params_from_dict(params: Dict) -> Tuple[bytes, int, int, int]:
    """Inverse of kdf_params_to_dict: ``(salt, time, memory, parallelism)``."""
    if params.get("algo") != "argon2id":
        raise ValidationError(f"Unsupported KDF: {params.get('algo')!r}")
    try:
        return (
            bytes.fromhex(params["salt"]),
            int(params.get("time", DEFAULT_TIME_COST)),
            int(params.get("memory", DEFAULT_MEMORY_COST)),
            int(params.get("parallelism", DEFAULT_PARALLELISM)),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise ValidationError(f"Malformed KDF parameters: {e}") from None
