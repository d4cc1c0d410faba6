"""Encryption key lifecycle: rotation tracking, integrity self-test, backup/restore, strength checks."""

import asyncio
import base64
import json
import logging
import math
import os
import re
import secrets
import tempfile
import uuid
from collections import Counter
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Optional

from vaultguard.audit.logger import AuditLogger
from vaultguard.audit.models import Severity
from vaultguard.scalability.store import SharedStore
from vaultguard.security.encryption import EncryptionService, MasterSecretCipher, decode_key
from vaultguard.security.exceptions import (
    BackupOrRestoreFailure,
    DecryptionError,
    EncryptionError,
    KeyIntegrityFailure,
)

logger = logging.getLogger(__name__)

KEY_ROTATION_INTERVAL_DAYS = 90
KEY_BYTES = 32
MIN_KEY_BYTES = 32
MAX_KEY_BYTES = 64
MIN_ENTROPY_BITS = 7.0
ROTATION_RECORD_KEY = "key_rotation:last"
ROTATION_RECORD_TTL = 86400 * 365 * 2

_REPEATED_RUN = re.compile(rb"(.)\1{3,}", re.DOTALL)


def shannon_entropy(data: bytes) -> float:
    """Base-2 Shannon entropy over byte frequencies, in bits per byte."""
    if not data:
        return 0.0
    length = len(data)
    return -sum((n / length) * math.log2(n / length) for n in Counter(data).values())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class KeyManager:
    """
    Holds the active vault key and any retired keys by version.
    Rotation timestamps live in the shared store so every worker sees the same age.
    """

    def __init__(
        self,
        store: SharedStore,
        audit: AuditLogger,
        active_key: Optional[str],
        key_version: int = 1,
        master_secret: Optional[str] = None,
        backup_dir: str | Path = "storage/keys/backup",
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._audit = audit
        self._master_secret = master_secret
        self._backup_dir = Path(backup_dir)
        self._clock = clock
        self._keys: dict[int, str] = {}
        self._active_version = key_version
        if active_key:
            self._keys[key_version] = active_key.strip()

    @property
    def active_version(self) -> int:
        return self._active_version

    # --- Rotation ---

    async def needs_rotation(self) -> bool:
        """True when no rotation was ever recorded or the last one is 90+ days old."""
        record = await self._store.get_json(ROTATION_RECORD_KEY)
        if not record:
            return True
        last = datetime.fromisoformat(record["rotated_at"])
        return (self._clock() - last).days >= KEY_ROTATION_INTERVAL_DAYS

    async def record_rotation(self, key_version: int, at: Optional[datetime] = None) -> None:
        rotated_at = at or self._clock()
        await self._store.set_json(
            ROTATION_RECORD_KEY,
            {"rotated_at": rotated_at.isoformat(), "version": key_version},
            ttl=ROTATION_RECORD_TTL,
        )

    async def rotation_status(self) -> dict[str, Any]:
        record = await self._store.get_json(ROTATION_RECORD_KEY)
        status: dict[str, Any] = {
            "last_rotation": None,
            "needs_rotation": await self.needs_rotation(),
            "days_since_rotation": None,
            "next_rotation_due": None,
            "active_version": self._active_version,
        }
        if record:
            last = datetime.fromisoformat(record["rotated_at"])
            due = last.timestamp() + KEY_ROTATION_INTERVAL_DAYS * 86400
            status["last_rotation"] = last.isoformat()
            status["days_since_rotation"] = (self._clock() - last).days
            status["next_rotation_due"] = datetime.fromtimestamp(due, tz=timezone.utc).isoformat()
        return status

    @staticmethod
    def generate_key() -> str:
        """256-bit random key, base64-encoded."""
        return base64.b64encode(secrets.token_bytes(KEY_BYTES)).decode("ascii")

    async def rotate(self, new_key: Optional[str] = None) -> int:
        """
        Back up the active key, install a new one as the next version and record the
        rotation. Retired keys stay available for decrypting older envelopes.
        The candidate key is round-tripped before anything changes; a failed rotation
        leaves the active key and version as they were.
        """
        new_key = new_key or self.generate_key()
        errors = self.validate_key_strength(new_key)
        if not errors:
            try:
                if not self._round_trip(EncryptionService(key=new_key)):
                    errors.append("Key failed encryption round-trip")
            except EncryptionError as e:
                errors.append(e.message)
        if errors:
            await self._audit.record(
                "encryption_key_rotation_failed",
                new_values={"errors": errors},
                severity=Severity.CRITICAL,
                description="Encryption key rotation rejected",
            )
            raise EncryptionError("New key rejected: " + "; ".join(errors))

        if self._active_version in self._keys:
            await self.backup_key()
        previous_version = self._active_version
        new_version = self._active_version + 1 if self._keys else self._active_version
        self._keys[new_version] = new_key
        self._active_version = new_version
        try:
            await self.verify_integrity()
        except KeyIntegrityFailure:
            self._keys.pop(new_version, None)
            self._active_version = previous_version
            raise
        await self.record_rotation(new_version)
        await self._audit.record(
            "encryption_key_rotated",
            new_values={"key_version": new_version},
            severity=Severity.HIGH,
            description=f"Encryption key rotated to version {new_version}",
        )
        return new_version

    # --- Backup / restore ---

    async def backup_key(self) -> Path:
        """
        Seal the active key under the master secret and write it owner-only.
        All or nothing: on failure no file remains and BackupOrRestoreFailure is raised.
        """
        try:
            key = self._keys.get(self._active_version)
            if not key:
                raise EncryptionError("No active key to back up")
            payload = json.dumps(
                {
                    "key": key,
                    "version": self._active_version,
                    "created_at": self._clock().isoformat(),
                }
            )
            sealed = MasterSecretCipher(self._master_secret).seal(payload)
            stamp = self._clock().strftime("%Y-%m-%d_%H-%M-%S")
            target = self._backup_dir / f"key_v{self._active_version}_{stamp}_{uuid.uuid4().hex[:8]}.backup"
            await asyncio.to_thread(self._write_once, target, sealed)
        except Exception as e:
            await self._audit.record(
                "encryption_key_backup_failed",
                new_values={"error": str(e)},
                severity=Severity.CRITICAL,
                description=f"Failed to backup encryption key: {e}",
            )
            raise BackupOrRestoreFailure(f"Key backup failed: {e}") from e

        try:
            await self._audit.record(
                "encryption_key_backed_up",
                new_values={"backup_file": target.name, "key_version": self._active_version},
                severity=Severity.HIGH,
                description="Encryption key backed up",
            )
        except Exception as e:
            target.unlink(missing_ok=True)
            logger.error("Key backup rolled back, audit write failed: %s", e)
            raise BackupOrRestoreFailure(f"Key backup failed: {e}") from e
        return target

    def _write_once(self, target: Path, content: str) -> None:
        self._backup_dir.mkdir(mode=0o700, parents=True, exist_ok=True)
        os.chmod(self._backup_dir, 0o700)
        fd, tmp = tempfile.mkstemp(dir=self._backup_dir, prefix=".tmp-", suffix=".backup")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(content)
                fh.flush()
                os.fsync(fh.fileno())
            os.chmod(tmp, 0o600)
            if target.exists():
                raise FileExistsError(f"Backup {target.name} already exists")
            os.replace(tmp, target)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    async def restore_key(self, backup_file: str | Path) -> int:
        """Unseal a backup, check its strength and register it under its version. Returns the version."""
        path = Path(backup_file)
        try:
            sealed = await asyncio.to_thread(path.read_text, encoding="utf-8")
            payload = json.loads(MasterSecretCipher(self._master_secret).unseal(sealed))
            key, version = payload["key"], int(payload["version"])
            errors = self.validate_key_strength(key)
            if errors:
                raise EncryptionError("Restored key rejected: " + "; ".join(errors))
        except Exception as e:
            await self._audit.record(
                "encryption_key_restore_failed",
                new_values={"backup_file": path.name, "error": str(e)},
                severity=Severity.CRITICAL,
                description=f"Failed to restore encryption key: {e}",
            )
            raise BackupOrRestoreFailure(f"Key restore failed: {e}") from e
        self._keys[version] = key
        await self._audit.record(
            "encryption_key_restored",
            new_values={"backup_file": path.name, "key_version": version},
            severity=Severity.HIGH,
            description=f"Encryption key version {version} restored from backup",
        )
        return version

    # --- Strength / integrity ---

    @staticmethod
    def validate_key_strength(key: str | bytes) -> list[str]:
        """
        Returns a list of problems; empty means the key is acceptable.
        Entropy is compared against 7.0 of 8 bits scaled to what the key length can reach:
        n bytes carry at most log2(min(n, 256)) bits per byte.
        """
        if isinstance(key, str):
            try:
                raw = decode_key(key)
            except EncryptionError:
                return ["Key must be base64-encoded"]
        else:
            raw = bytes(key)

        errors = []
        if len(raw) < MIN_KEY_BYTES:
            errors.append("Key must be at least 256 bits (32 bytes)")
        if len(raw) > MAX_KEY_BYTES:
            errors.append("Key should not exceed 512 bits (64 bytes)")
        if _REPEATED_RUN.search(raw):
            errors.append("Key contains repeated patterns")
        if raw:
            ceiling = math.log2(min(len(raw), 256))
            if shannon_entropy(raw) < MIN_ENTROPY_BITS * ceiling / 8.0:
                errors.append("Key has insufficient entropy")
        return errors

    def encryption_service(self, key_version: Optional[int] = None) -> EncryptionService:
        """Cipher for a key version (active by default). DecryptionError if the version is unknown."""
        version = self._active_version if key_version is None else key_version
        key = self._keys.get(version)
        if not key:
            raise DecryptionError(f"No key available for version {version}")
        return EncryptionService(key=key)

    @classmethod
    def _round_trip(cls, service: EncryptionService) -> bool:
        """Encrypt then decrypt a random marker; True when it comes back intact."""
        marker = bytearray(b"integrity_test_" + secrets.token_hex(16).encode("ascii"))
        try:
            expected = marker.decode("ascii")
            recovered = service.decrypt(service.encrypt(expected))
            return secrets.compare_digest(expected, recovered)
        finally:
            cls.clear_sensitive(marker)

    async def verify_integrity(self) -> bool:
        """Round-trip a random marker under the active key. Raises KeyIntegrityFailure on any problem."""
        try:
            ok = self._round_trip(self.encryption_service())
        except Exception as e:
            await self._audit.record(
                "encryption_key_integrity_error",
                new_values={"error": str(e)},
                severity=Severity.CRITICAL,
                description=f"Error during key integrity verification: {e}",
            )
            raise KeyIntegrityFailure(f"Key integrity verification failed: {e}") from e

        if not ok:
            await self._audit.record(
                "encryption_key_integrity_failed",
                severity=Severity.CRITICAL,
                description="Encryption key integrity verification failed",
            )
            raise KeyIntegrityFailure("Key integrity verification failed: round-trip mismatch")
        return True

    @staticmethod
    def clear_sensitive(value: Any) -> None:
        """
        Best-effort wipe: mutable buffers (bytearray, writable memoryview, dict, list) are
        overwritten with random bytes three times, then emptied. str and bytes are immutable
        in CPython and cannot be overwritten; the caller can only drop its references. This
        shortens the lifetime of secrets in memory; it does not guarantee their removal.
        """
        if isinstance(value, bytearray):
            for _ in range(3):
                value[:] = secrets.token_bytes(len(value))
            del value[:]
        elif isinstance(value, memoryview) and not value.readonly:
            for _ in range(3):
                value[:] = secrets.token_bytes(value.nbytes)
        elif isinstance(value, dict):
            for item in value.values():
                KeyManager.clear_sensitive(item)
            value.clear()
        elif isinstance(value, list):
            for item in value:
                KeyManager.clear_sensitive(item)
            value.clear()

    async def log_key_usage(self, operation: str, context: Optional[dict[str, Any]] = None) -> None:
        await self._audit.record(
            "encryption_key_used",
            new_values={"operation": operation, **(context or {})},
            severity=Severity.LOW,
            description=f"Encryption key used for: {operation}",
        )
