"""Secret envelopes, password strength scoring and password generation. No FastAPI."""

import hashlib
import hmac
import json
import re
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from vaultguard.audit.logger import AuditLogger
from vaultguard.audit.models import Severity
from vaultguard.security.encryption import METHOD_TAG
from vaultguard.security.exceptions import (
    ChecksumMismatch,
    DecryptionError,
    SecurityError,
)
from vaultguard.security.key_manager import KeyManager
from vaultguard.security.sanitizer import match_threat

LOWERCASE = "abcdefghijklmnopqrstuvwxyz"
UPPERCASE = "ABCDEFGHIJKLMNOPQRSTUVWXYZ"
DIGITS = "0123456789"
SYMBOLS = "!@#$%^&*()_+-=[]{}|;:,.<>?"
AMBIGUOUS = set("ilo" + "ILO" + "01")
FALLBACK_POOL = LOWERCASE + DIGITS
GENERATION_ATTEMPTS = 20

_REPEATED_CHAR = re.compile(r"(.)\1{2,}")
_KEYBOARD_SEQUENCE = re.compile(r"123|abc|qwe|asd|zxc", re.IGNORECASE)
_SYMBOL_CLASS = re.compile(r"[!@#$%^&*()_+\-=\[\]{}|;:,.<>?]")

COMMON_WORDS = ("password", "admin", "user", "login", "welcome", "123456", "qwerty")

COMPROMISED_PASSWORDS = frozenset(
    {
        "123456", "password", "123456789", "12345678", "12345",
        "111111", "1234567", "sunshine", "qwerty", "iloveyou",
        "princess", "admin", "welcome", "666666", "abc123",
        "football", "123123", "monkey", "654321", "!@#$%^&*",
        "charlie", "aa123456", "donald", "password1", "qwerty123",
    }
)

STRENGTH_LABELS = {
    1: "Very Weak",
    2: "Weak",
    3: "Fair",
    4: "Strong",
    5: "Very Strong",
}

_EVENT_SEVERITY = {
    "password_generated": Severity.LOW,
    "password_strength_checked": Severity.LOW,
    "weak_password_detected": Severity.MEDIUM,
    "compromised_password_detected": Severity.HIGH,
}


def checksum(plaintext: str) -> str:
    return hashlib.sha256(plaintext.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class SecretEnvelope:
    """Stored form of a secret. Storage only ever sees this, never plaintext."""

    ciphertext: str
    method: str
    encrypted_at: str
    key_version: int
    checksum: str
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "encrypted_data": self.ciphertext,
            "encryption_method": self.method,
            "encrypted_at": self.encrypted_at,
            "key_version": self.key_version,
            "checksum": self.checksum,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SecretEnvelope":
        return cls(
            ciphertext=data["encrypted_data"],
            method=data.get("encryption_method", METHOD_TAG),
            encrypted_at=data.get("encrypted_at", ""),
            key_version=int(data["key_version"]),
            checksum=data["checksum"],
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass
class PasswordOptions:
    length: int = 16
    uppercase: bool = True
    lowercase: bool = True
    numbers: bool = True
    symbols: bool = True
    exclude_ambiguous: bool = True


class PasswordCryptoEngine:
    """
    Encrypts secrets into envelopes and back, and scores/generates passwords.
    Every encrypt/decrypt runs the key self-test first.
    """

    def __init__(self, key_manager: KeyManager, audit: AuditLogger) -> None:
        self._keys = key_manager
        self._audit = audit
        self._rng = secrets.SystemRandom()

    # --- Envelopes ---

    async def encrypt(
        self, plaintext: str | bytearray, metadata: Optional[Dict[str, Any]] = None
    ) -> SecretEnvelope:
        """
        Encrypt under the active key. A bytearray plaintext is wiped after use;
        a str cannot be (see KeyManager.clear_sensitive).
        """
        metadata = dict(metadata or {})
        try:
            await self._keys.verify_integrity()
            text = plaintext.decode("utf-8") if isinstance(plaintext, bytearray) else plaintext
            version = self._keys.active_version
            envelope = SecretEnvelope(
                ciphertext=self._keys.encryption_service(version).encrypt(text),
                method=METHOD_TAG,
                encrypted_at=datetime.now(timezone.utc).isoformat(),
                key_version=version,
                checksum=checksum(text),
                metadata=metadata,
            )
            await self._keys.log_key_usage(
                "password_encryption", {"metadata": metadata, "key_version": version}
            )
            return envelope
        except SecurityError as e:
            await self._audit.record(
                "password_encryption_failed",
                new_values={"error": e.message, "metadata": metadata},
                severity=Severity.HIGH,
                description=f"Password encryption failed: {e.message}",
            )
            raise
        finally:
            self._keys.clear_sensitive(plaintext)

    async def decrypt(self, envelope: SecretEnvelope | Dict[str, Any]) -> str:
        """
        Decrypt and verify the checksum in constant time.
        DecryptionError: no usable key for the envelope. ChecksumMismatch: data was altered.
        """
        if isinstance(envelope, dict):
            envelope = SecretEnvelope.from_dict(envelope)
        try:
            await self._keys.verify_integrity()
            if envelope.method != METHOD_TAG:
                raise DecryptionError(f"Unsupported encryption method '{envelope.method}'")
            service = self._keys.encryption_service(envelope.key_version)
            try:
                plaintext = service.decrypt(envelope.ciphertext)
            except DecryptionError as e:
                raise ChecksumMismatch(
                    "Password integrity verification failed: ciphertext was altered"
                ) from e
            if not hmac.compare_digest(checksum(plaintext), envelope.checksum):
                raise ChecksumMismatch("Password integrity verification failed: checksum mismatch")
            await self._keys.log_key_usage(
                "password_decryption",
                {"key_version": envelope.key_version, "encrypted_at": envelope.encrypted_at},
            )
            return plaintext
        except SecurityError as e:
            await self._audit.record(
                "password_decryption_failed",
                new_values={"error": e.message, "key_version": envelope.key_version},
                severity=Severity.HIGH,
                description=f"Password decryption failed: {e.message}",
            )
            raise

    # --- Strength ---

    @staticmethod
    def score(password: str) -> int:
        """Strength on a 1..5 scale."""
        length = len(password)
        score = (length >= 8) + (length >= 12) + (length >= 16)

        if re.search(r"[a-z]", password):
            score += 1
        if re.search(r"[A-Z]", password):
            score += 1
        if re.search(r"[0-9]", password):
            score += 1
        if _SYMBOL_CLASS.search(password):
            score += 1

        if _REPEATED_CHAR.search(password):
            score -= 1
        if _KEYBOARD_SEQUENCE.search(password):
            score -= 1

        lowered = password.lower()
        if any(word in lowered for word in COMMON_WORDS):
            score -= 2

        return max(1, min(5, score))

    @staticmethod
    def describe(strength: int) -> str:
        return STRENGTH_LABELS.get(strength, "Unknown")

    @staticmethod
    def is_compromised(password: str) -> bool:
        return password.lower() in COMPROMISED_PASSWORDS

    def validate(self, password: str) -> list[str]:
        """Policy check. Empty list means the password is acceptable."""
        errors = []
        if len(password) < 8:
            errors.append("Password must be at least 8 characters long")
        if len(password) > 128:
            errors.append("Password must not exceed 128 characters")
        if not re.search(r"[a-z]", password):
            errors.append("Password must contain at least one lowercase letter")
        if not re.search(r"[A-Z]", password):
            errors.append("Password must contain at least one uppercase letter")
        if not re.search(r"[0-9]", password):
            errors.append("Password must contain at least one number")
        if not _SYMBOL_CLASS.search(password):
            errors.append("Password must contain at least one special character")
        if self.is_compromised(password):
            errors.append("This password has been found in data breaches and should not be used")
        if self.score(password) < 3:
            errors.append("Password is too weak. Please choose a stronger password")
        return errors

    # --- Generation ---

    def generate(self, options: Optional[PasswordOptions] = None, **overrides: Any) -> str:
        opts = options or PasswordOptions()
        if overrides:
            opts = PasswordOptions(**{**opts.__dict__, **overrides})

        classes = []
        for wanted, alphabet in (
            (opts.lowercase, LOWERCASE),
            (opts.uppercase, UPPERCASE),
            (opts.numbers, DIGITS),
            (opts.symbols, SYMBOLS),
        ):
            if wanted:
                if opts.exclude_ambiguous:
                    alphabet = "".join(c for c in alphabet if c not in AMBIGUOUS)
                classes.append(alphabet)

        if opts.length < max(1, len(classes)):
            raise ValueError(
                f"Password length {opts.length} cannot cover {len(classes)} character classes"
            )

        # Redraw anything the input scanner would reject when the password is posted back as JSON.
        for _ in range(GENERATION_ATTEMPTS):
            password = self._draw(opts.length, classes)
            if match_threat(json.dumps({"password": password})) is None:
                break
        return password

    def _draw(self, length: int, classes: list[str]) -> str:
        pool = "".join(classes) or FALLBACK_POOL
        chars = [secrets.choice(pool) for _ in range(length)]

        forced: set[int] = set()
        for alphabet in classes:
            if any(c in alphabet for c in chars):
                continue
            candidates = [
                i
                for i in range(length)
                if i not in forced and self._class_size(chars, chars[i], classes) > 1
            ]
            idx = secrets.choice(candidates)
            chars[idx] = secrets.choice(alphabet)
            forced.add(idx)

        self._rng.shuffle(chars)
        return "".join(chars)

    @staticmethod
    def _class_size(chars: list[str], char: str, classes: list[str]) -> int:
        alphabet = next(a for a in classes if char in a)
        return sum(1 for c in chars if c in alphabet)

    def suggestions(self, count: int = 3) -> list[dict[str, Any]]:
        result = []
        for _ in range(count):
            password = self.generate(PasswordOptions(length=12 + secrets.randbelow(9)))
            strength = self.score(password)
            result.append(
                {
                    "password": password,
                    "strength": strength,
                    "description": self.describe(strength),
                }
            )
        return result

    async def log_event(self, event: str, context: Optional[Dict[str, Any]] = None) -> None:
        await self._audit.record(
            event,
            new_values=context or {},
            severity=_EVENT_SEVERITY.get(event, Severity.MEDIUM),
        )
