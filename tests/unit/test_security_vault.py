"""
Unit tests for the key vault backends.
"""

import base64
import json
import os
from unittest.mock import patch

import pytest

from dstorage.core.exceptions import DecryptionFailedError, ValidationError, VaultError
from dstorage.security import crypto
from dstorage.security.vault import KeyringKeyVault, KeyVault


# Cheap Argon2 parameters so backup tests stay fast
FAST_KDF = {"time_cost": 1, "memory_cost": 8, "parallelism": 1}


def _key_string():
    return crypto.encode_transport_key(crypto.generate_key(), os.urandom(12))


# ==============================================================================
# Fixtures
# ==============================================================================

@pytest.fixture
def vault_path(tmp_path):
    return tmp_path / "net" / "vault.json"


@pytest.fixture
def vault(vault_path):
    return KeyVault(vault_path)


class FakeKeyring:
    """Dict-backed stand-in for the keyring module."""

    def __init__(self):
        self.store = {}

    def set_password(self, service, account, secret):
        self.store[(service, account)] = secret

    def get_password(self, service, account):
        return self.store.get((service, account))

    def delete_password(self, service, account):
        from keyring.errors import PasswordDeleteError

        if (service, account) not in self.store:
            raise PasswordDeleteError("not found")
        del self.store[(service, account)]


@pytest.fixture
def fake_keyring():
    fake = FakeKeyring()
    with patch("dstorage.security.keystore.keyring", fake), \
            patch("dstorage.security.vault.assess_keyring_backend", return_value=(True, "ok")):
        yield fake


# ==============================================================================
# Tests: KeyVault basics
# ==============================================================================

def test_get_absent_returns_none(vault):
    """Absence is a normal outcome, not an error."""
    assert vault.get(1) is None
    assert 1 not in vault


def test_put_then_get(vault):
    key = _key_string()
    vault.put(7, key)
    assert vault.get(7) == key
    assert 7 in vault
    assert vault.file_ids() == [7]


def test_put_accepts_string_ids(vault):
    key = _key_string()
    vault.put("7", key)
    assert vault.get(7) == key


def test_put_is_upsert(vault):
    first, second = _key_string(), _key_string()
    vault.put(3, first)
    vault.put(3, second)
    assert vault.get(3) == second
    assert vault.file_ids() == [3]


def test_put_rejects_malformed_key_string(vault):
    with pytest.raises(ValidationError):
        vault.put(1, "not-a-key")
    assert vault.get(1) is None


def test_put_rejects_bad_file_id(vault):
    with pytest.raises(ValidationError):
        vault.put("abc", _key_string())
    with pytest.raises(ValidationError):
        vault.put(-1, _key_string())


def test_entries_persist_across_instances(vault_path):
    key = _key_string()
    KeyVault(vault_path).put(11, key)
    assert KeyVault(vault_path).get(11) == key


def test_vault_file_is_private(vault, vault_path):
    vault.put(1, _key_string())
    if os.name == "posix":
        assert (vault_path.stat().st_mode & 0o777) == 0o600


def test_delete(vault):
    vault.put(1, _key_string())
    vault.put(2, _key_string())

    assert vault.delete(1) is True
    assert vault.delete(1) is False
    assert vault.get(1) is None
    assert vault.file_ids() == [2]


def test_corrupt_vault_raises(vault, vault_path):
    vault_path.parent.mkdir(parents=True, exist_ok=True)
    vault_path.write_text("{not json")
    with pytest.raises(VaultError):
        vault.get(1)


def test_failed_write_keeps_existing_entries(vault, vault_path):
    """An interrupted write must not corrupt entries already stored."""
    kept = _key_string()
    vault.put(1, kept)

    with patch("dstorage.security.vault.os.replace", side_effect=OSError("power loss")):
        with pytest.raises(VaultError):
            vault.put(2, _key_string())

    assert vault.get(1) == kept
    assert vault.get(2) is None
    leftovers = [p.name for p in vault_path.parent.iterdir() if p.name.startswith(".vault-")]
    assert leftovers == []


# ==============================================================================
# Tests: Backup export / import
# ==============================================================================

def test_backup_roundtrip(tmp_path, vault):
    k1, k2 = _key_string(), _key_string()
    vault.put(1, k1)
    vault.put(2, k2)

    blob = vault.export_backup("hunter2", **FAST_KDF)
    assert b"hunter2" not in blob
    assert k1.encode() not in blob

    other = KeyVault(tmp_path / "other.json")
    assert other.import_backup(blob, "hunter2") == 2
    assert other.get(1) == k1
    assert other.get(2) == k2


def test_backup_wrong_password(tmp_path, vault):
    vault.put(1, _key_string())
    blob = vault.export_backup("right", **FAST_KDF)

    other = KeyVault(tmp_path / "other.json")
    with pytest.raises(DecryptionFailedError):
        other.import_backup(blob, "wrong")
    assert other.file_ids() == []


def test_backup_tampered(tmp_path, vault):
    vault.put(1, _key_string())
    doc = json.loads(vault.export_backup("pw", **FAST_KDF))
    ct = bytearray(base64.b64decode(doc["ciphertext"]))
    ct[0] ^= 1
    doc["ciphertext"] = base64.b64encode(bytes(ct)).decode()

    with pytest.raises(DecryptionFailedError):
        KeyVault(tmp_path / "other.json").import_backup(json.dumps(doc).encode(), "pw")


def test_backup_import_keeps_existing_unless_overwrite(tmp_path, vault):
    vault.put(1, _key_string())
    blob = vault.export_backup("pw", **FAST_KDF)

    other = KeyVault(tmp_path / "other.json")
    local = _key_string()
    other.put(1, local)

    assert other.import_backup(blob, "pw") == 0
    assert other.get(1) == local

    assert other.import_backup(blob, "pw", overwrite=True) == 1
    assert other.get(1) == vault.get(1)


@pytest.mark.parametrize("blob", [b"garbage", b"{}", b'{"format": "dstorage-vault-backup", "version": 99}'])
def test_backup_import_rejects_malformed(vault, blob):
    with pytest.raises(ValidationError):
        vault.import_backup(blob, "pw")


def test_backup_empty_password_rejected(vault):
    with pytest.raises(ValidationError):
        vault.export_backup("", **FAST_KDF)


# ==============================================================================
# Tests: KeyringKeyVault
# ==============================================================================

def test_keyring_vault_put_get_delete(fake_keyring):
    kv = KeyringKeyVault("dstorage:test")
    key = _key_string()

    kv.put(5, key)
    assert kv.get(5) == key
    assert kv.file_ids() == [5]
    assert fake_keyring.store[("dstorage:test", "5")] == key

    assert kv.delete(5) is True
    assert kv.get(5) is None
    assert kv.file_ids() == []
    assert kv.delete(5) is False


def test_keyring_vault_backup_roundtrip(fake_keyring, tmp_path):
    kv = KeyringKeyVault("dstorage:test")
    key = _key_string()
    kv.put(9, key)

    blob = kv.export_backup("pw", **FAST_KDF)
    file_vault = KeyVault(tmp_path / "v.json")
    file_vault.import_backup(blob, "pw")
    assert file_vault.get(9) == key


def test_keyring_vault_refuses_insecure_backend():
    with patch("dstorage.security.vault.assess_keyring_backend", return_value=(False, "insecure backend detected: PlaintextKeyring")):
        with pytest.raises(VaultError, match="refusing"):
            KeyringKeyVault("dstorage:test")


def test_keyring_vault_allows_insecure_when_asked(fake_keyring):
    with patch("dstorage.security.vault.assess_keyring_backend", return_value=(False, "insecure")):
        kv = KeyringKeyVault("dstorage:test", allow_insecure=True)
    kv.put(1, _key_string())
    assert kv.file_ids() == [1]
