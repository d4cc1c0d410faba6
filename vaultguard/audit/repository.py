"""Audit repository protocol. Audit layer depends on this; infrastructure implements it."""

import asyncio
from datetime import datetime
from typing import Protocol

from vaultguard.audit.models import AuditEvent, Severity


class AuditRepository(Protocol):
    """Protocol for persisting immutable audit events."""

    async def save(self, event: AuditEvent) -> None:
        """Persist an immutable audit event. Must not allow mutation."""
        ...

    async def purge_low_severity(self, before: datetime) -> int:
        """Delete low-severity events created before the cutoff. Returns rows removed."""
        ...


class InMemoryAuditRepository:
    """Append-only list of events. For tests or single-node development."""

    def __init__(self) -> None:
        self._events: list[AuditEvent] = []
        self._lock = asyncio.Lock()

    @property
    def events(self) -> tuple[AuditEvent, ...]:
        return tuple(self._events)

    def actions(self) -> list[str]:
        return [e.action for e in self._events]

    async def save(self, event: AuditEvent) -> None:
        async with self._lock:
            self._events.append(event)

    async def purge_low_severity(self, before: datetime) -> int:
        async with self._lock:
            kept = [
                e
                for e in self._events
                if not (e.severity == Severity.LOW and e.created_at < before)
            ]
            removed = len(self._events) - len(kept)
            self._events = kept
        return removed
