"""Security helpers: AEAD file encryption and local key custody for DStorage.

This package provides:
- AES-256-GCM encryption with per-call random nonces and key transport encoding
- A device-local Key Vault (JSON file or OS keyring) mapping file ids to keys
- Argon2id-sealed Key Vault backups for moving keys between devices
"""

from .crypto import (
    generate_key,
    export_key,
    import_key,
    encrypt,
    decrypt,
    encode_transport_key,
    decode_transport_key,
    encrypt_for_upload,
    decrypt_from_download,
)
from .vault import BaseKeyVault, KeyVault, KeyringKeyVault

__all__ = [
    "generate_key",
    "export_key",
    "import_key",
    "encrypt",
    "decrypt",
    "encode_transport_key",
    "decode_transport_key",
    "encrypt_for_upload",
    "decrypt_from_download",
    "BaseKeyVault",
    "KeyVault",
    "KeyringKeyVault",
]
