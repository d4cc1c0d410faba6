"""Shared state for multi-worker deployments: TTL store and distributed locking. No FastAPI."""

from vaultguard.scalability.distributed_lock import DistributedLock
from vaultguard.scalability.exceptions import (
    LockUnavailableError,
    ScalabilityError,
    StoreUnavailableError,
)
from vaultguard.scalability.store import InMemorySharedStore, SharedStore

__all__ = [
    "DistributedLock",
    "InMemorySharedStore",
    "LockUnavailableError",
    "ScalabilityError",
    "SharedStore",
    "StoreUnavailableError",
]
