"""OS keystore integration using keyring for device-local key custody.

Thin wrappers around `keyring` that store string secrets (transport-encoded
file keys) under a service/account pair. Do not assume keyring provides
hardware-backed security on all platforms; use assess_keyring_backend()
before trusting a backend.
"""
from typing import Optional

import keyring
from keyring.errors import KeyringError, PasswordDeleteError

from dstorage.core.exceptions import VaultError


def save_secret(service: str, account: str, secret: str) -> None:
    """Persist ``secret`` in the OS keystore under (service, account)."""
    try:
        keyring.set_password(service, account, secret)
    except KeyringError as e:
        raise VaultError(f"keyring refused to store secret: {e}") from e


def load_secret(service: str, account: str) -> Optional[str]:
    """Load a secret from the OS keystore; returns None when absent."""
    try:
        return keyring.get_password(service, account)
    except KeyringError as e:
        raise VaultError(f"keyring lookup failed: {e}") from e


def delete_secret(service: str, account: str) -> bool:
    """Remove a secret; returns False if there was nothing to remove."""
    try:
        keyring.delete_password(service, account)
    except PasswordDeleteError:
        return False
    except KeyringError as e:
        raise VaultError(f"keyring delete failed: {e}") from e
    return True


# backends that keep secrets on disk unencrypted, or not at all
UNTRUSTED_BACKENDS = ("Plaintext", "Uncrypted", "Simple", "File", "Fail", "Null")
PLATFORM_BACKENDS = ("Win", "Keychain", "SecretService", "KWallet")


def assess_keyring_backend() -> tuple[bool, str]:
    """Return (is_secure, message) for the active keyring backend.

    KeyringKeyVault refuses a backend judged insecure unless told otherwise.
    """
    try:
        backend = keyring.get_keyring()
    except KeyringError as e:
        return False, f"failed to get keyring backend: {e}"

    name = type(backend).__name__
    priority = getattr(backend, "priority", None)
    label = f"{name} (priority={priority})"

    if any(token in name for token in UNTRUSTED_BACKENDS):
        return False, f"backend {label} does not protect stored file keys"
    if priority is not None and priority <= 0:
        return False, f"backend {label} is not usable on this system"
    if any(token in name for token in PLATFORM_BACKENDS):
        return True, f"platform keystore {label}"
    return True, f"unrecognised backend {label}; file keys depend on its protection"
