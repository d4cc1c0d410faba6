"""AES-256-GCM encryption under the active vault key, plus Fernet sealing under a master secret for key backups."""

import base64
import binascii
import os
import secrets
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from vaultguard.security.exceptions import DecryptionError, EncryptionError

METHOD_TAG = "AES-256-GCM"
NONCE_BYTES = 12
SALT_BYTES = 16
SEAL_PREFIX = "vgk1"


def _derive_key(secret: str, salt: bytes) -> bytes:
    """Derive a 32-byte key for Fernet from a variable-length secret."""
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=salt,
        iterations=480000,
    )
    return base64.urlsafe_b64encode(kdf.derive(secret.encode("utf-8")))


def decode_key(key: str) -> bytes:
    """Decode a base64 key. Raises EncryptionError if it is not valid base64."""
    try:
        return base64.b64decode(key.strip(), validate=True)
    except (binascii.Error, ValueError) as e:
        raise EncryptionError("Encryption key must be base64-encoded") from e


class EncryptionService:
    """
    AES-256-GCM under a 32-byte key. Use environment key; fail if key missing.
    No global state; key is passed in (from settings in production).
    """

    def __init__(self, key: Optional[str] = None) -> None:
        """
        key: base64 of 32 raw bytes (e.g. from ENCRYPTION_KEY env). If None/empty, read
        from os.environ["ENCRYPTION_KEY"]. Raises EncryptionError if key missing or not 256-bit.
        """
        raw = key or os.environ.get("ENCRYPTION_KEY")
        if not raw or not raw.strip():
            raise EncryptionError(
                "Encryption key is required. Set ENCRYPTION_KEY in environment."
            )
        key_bytes = decode_key(raw)
        if len(key_bytes) != 32:
            raise EncryptionError("Encryption key must be exactly 256 bits (32 bytes)")
        self._aead = AESGCM(key_bytes)

    def encrypt(self, data: str) -> str:
        """Encrypt string; return base64 of nonce || ciphertext || tag."""
        try:
            nonce = secrets.token_bytes(NONCE_BYTES)
            sealed = self._aead.encrypt(nonce, data.encode("utf-8"), None)
            return base64.b64encode(nonce + sealed).decode("ascii")
        except Exception as e:
            raise EncryptionError(f"Encryption failed: {e}") from e

    def decrypt(self, data: str) -> str:
        """Decrypt base64 ciphertext. Raises DecryptionError if wrong key/corrupt."""
        try:
            raw = base64.b64decode(data.encode("ascii"), validate=True)
        except (binascii.Error, ValueError, UnicodeEncodeError) as e:
            raise DecryptionError("Decryption failed: ciphertext is not valid base64") from e
        if len(raw) <= NONCE_BYTES:
            raise DecryptionError("Decryption failed: ciphertext too short")
        try:
            plain = self._aead.decrypt(raw[:NONCE_BYTES], raw[NONCE_BYTES:], None)
        except InvalidTag as e:
            raise DecryptionError("Decryption failed: invalid or wrong key") from e
        try:
            return plain.decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecryptionError(f"Decryption failed: {e}") from e


class MasterSecretCipher:
    """Fernet sealing under a PBKDF2-derived key. A fresh salt is stored with every token."""

    def __init__(self, secret: Optional[str]) -> None:
        if not secret or not secret.strip():
            raise EncryptionError(
                "Master secret is required. Set MASTER_SECRET in environment."
            )
        self._secret = secret.strip()

    def seal(self, data: str) -> str:
        salt = secrets.token_bytes(SALT_BYTES)
        token = Fernet(_derive_key(self._secret, salt)).encrypt(data.encode("utf-8"))
        return ":".join(
            [SEAL_PREFIX, base64.urlsafe_b64encode(salt).decode("ascii"), token.decode("ascii")]
        )

    def unseal(self, sealed: str) -> str:
        try:
            prefix, salt_b64, token = sealed.strip().split(":", 2)
        except ValueError as e:
            raise DecryptionError("Sealed data has an unknown format") from e
        if prefix != SEAL_PREFIX:
            raise DecryptionError("Sealed data has an unknown format")
        try:
            salt = base64.urlsafe_b64decode(salt_b64.encode("ascii"))
            return Fernet(_derive_key(self._secret, salt)).decrypt(token.encode("ascii")).decode("utf-8")
        except InvalidToken as e:
            raise DecryptionError("Unseal failed: invalid or wrong master secret") from e
        except (binascii.Error, ValueError) as e:
            raise DecryptionError(f"Unseal failed: {e}") from e
