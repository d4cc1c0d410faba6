"""DB-backed audit repository. Persists audit events to the audit_events table."""

import logging
from datetime import datetime

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from vaultguard.audit.models import AuditEvent, Severity
from vaultguard.infrastructure.database.models import AuditEventRow

logger = logging.getLogger(__name__)


def to_row(event: AuditEvent) -> AuditEventRow:
    return AuditEventRow(
        id=event.id,
        action=event.action,
        severity=event.severity.value,
        actor_id=event.actor_id,
        resource_kind=event.resource.kind if event.resource else None,
        resource_id=event.resource.id if event.resource else None,
        old_values=dict(event.old_values) or None,
        new_values=dict(event.new_values) or None,
        ip_address=event.ip,
        user_agent=event.user_agent,
        session_id=event.session_id,
        description=event.description,
        created_at=event.created_at,
    )


class DbAuditRepository:
    """Implements AuditRepository. One short-lived session per write."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def save(self, event: AuditEvent) -> None:
        async with self._session_factory() as session:
            session.add(to_row(event))
            await session.commit()

    async def purge_low_severity(self, before: datetime) -> int:
        stmt = delete(AuditEventRow).where(
            AuditEventRow.severity == Severity.LOW.value,
            AuditEventRow.created_at < before,
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            await session.commit()
        removed = result.rowcount or 0
        logger.info("Purged %d low-severity audit events older than %s", removed, before.isoformat())
        return removed
