"""Encryption tests: AES-GCM round-trip, wrong key, missing key, master-secret sealing."""

import base64
import os
from unittest.mock import patch

import pytest

from vaultguard.security.encryption import EncryptionService, MasterSecretCipher
from vaultguard.security.exceptions import DecryptionError, EncryptionError


def _key(fill: int | None = None) -> str:
    raw = bytes([fill]) * 32 if fill is not None else os.urandom(32)
    return base64.b64encode(raw).decode("ascii")


def test_encryption_round_trip_works():
    """Encrypt then decrypt returns original. Use explicit key (no global state)."""
    svc = EncryptionService(key=_key())
    plain = "sensitive data ✓"
    encrypted = svc.encrypt(plain)
    assert encrypted != plain
    assert svc.decrypt(encrypted) == plain


def test_same_plaintext_encrypts_differently():
    svc = EncryptionService(key=_key())
    assert svc.encrypt("secret") != svc.encrypt("secret")


def test_encryption_fails_with_wrong_key():
    """Decrypting with a different key raises DecryptionError."""
    encrypted = EncryptionService(key=_key(1)).encrypt("secret")
    with pytest.raises(DecryptionError) as exc_info:
        EncryptionService(key=_key(2)).decrypt(encrypted)
    assert "decryption failed" in exc_info.value.message.lower()


def test_decrypt_rejects_garbage():
    svc = EncryptionService(key=_key())
    with pytest.raises(DecryptionError):
        svc.decrypt("not base64 at all!")
    with pytest.raises(DecryptionError):
        svc.decrypt(base64.b64encode(b"short").decode())


def test_encryption_fails_if_key_missing():
    """Service raises EncryptionError when key is missing (no key passed, env unset)."""
    with patch.dict(os.environ, {"ENCRYPTION_KEY": ""}, clear=False):
        with pytest.raises(EncryptionError) as exc_info:
            EncryptionService(key=None)
        assert "ENCRYPTION_KEY" in exc_info.value.message


def test_key_must_be_256_bits():
    with pytest.raises(EncryptionError):
        EncryptionService(key=base64.b64encode(os.urandom(16)).decode())


def test_master_secret_seal_round_trip():
    cipher = MasterSecretCipher("m" * 40)
    sealed = cipher.seal('{"key": "abc"}')
    assert sealed.startswith("vgk1:")
    assert cipher.unseal(sealed) == '{"key": "abc"}'


def test_master_secret_wrong_secret():
    sealed = MasterSecretCipher("a" * 40).seal("payload")
    with pytest.raises(DecryptionError):
        MasterSecretCipher("b" * 40).unseal(sealed)


def test_master_secret_required():
    with pytest.raises(EncryptionError):
        MasterSecretCipher(None)
