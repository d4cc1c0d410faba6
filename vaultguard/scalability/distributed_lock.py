"""Store-based distributed locking. SETNX pattern, TTL, safe release. Serializes read-modify-write of shared session state across workers."""

import asyncio
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional, Protocol

from vaultguard.scalability.exceptions import LockUnavailableError


class LockBackend(Protocol):
    """Minimal store operations for distributed lock. Injected; no global state."""

    async def set_nx_ex(self, key: str, value: str, ttl: int) -> bool: ...
    async def get(self, key: str) -> str | None: ...
    async def delete_if_value(self, key: str, value: str) -> bool: ...


LOCK_PREFIX = "lock:"


class DistributedLock:
    """
    Distributed lock using SET NX EX. Safe in concurrent async environment.
    Each acquire gets a unique token and only that token can release, so a holder
    that outlived its TTL cannot delete the lock of whoever acquired it next.
    """

    def __init__(
        self,
        backend: LockBackend,
        key_prefix: str = LOCK_PREFIX,
        attempts: int = 50,
        retry_delay: float = 0.02,
    ) -> None:
        self._backend = backend
        self._prefix = key_prefix
        self._attempts = attempts
        self._retry_delay = retry_delay

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    async def acquire(self, key: str, ttl: int) -> Optional[str]:
        """
        Try to acquire the lock. Returns the holder token, or None if already held.
        TTL enforced; lock auto-expires to avoid deadlock.
        """
        token = str(uuid.uuid4())
        if await self._backend.set_nx_ex(self._key(key), token, ttl):
            return token
        return None

    async def release(self, key: str, token: str) -> bool:
        """Release the lock only if token still holds it (atomic compare-and-delete)."""
        return await self._backend.delete_if_value(self._key(key), token)

    @asynccontextmanager
    async def hold(self, key: str, ttl: int = 5) -> AsyncIterator[None]:
        """
        Acquire with bounded retries, release on exit.
        Raises LockUnavailableError when the retry budget is spent.
        """
        for _ in range(self._attempts):
            token = await self.acquire(key, ttl)
            if token is not None:
                break
            await asyncio.sleep(self._retry_delay)
        else:
            raise LockUnavailableError(f"Could not acquire lock '{key}'")
        try:
            yield
        finally:
            await self.release(key, token)
