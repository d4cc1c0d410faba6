"""Append-only audit sink for security events. No FastAPI."""

import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping, Optional

from vaultguard.audit.models import AuditEvent, ResourceRef, Severity
from vaultguard.audit.repository import AuditRepository
from vaultguard.core.context import (
    actor_id_ctx,
    client_ip_ctx,
    session_id_ctx,
    user_agent_ctx,
)

logger = logging.getLogger(__name__)

_LOG_LEVELS = {
    Severity.LOW: logging.INFO,
    Severity.MEDIUM: logging.INFO,
    Severity.HIGH: logging.WARNING,
    Severity.CRITICAL: logging.ERROR,
}


class AuditLogger:
    """
    Writes immutable audit events via repository.
    Request origin (ip, user agent, session, actor) is taken from the request context
    unless passed explicitly. Every event is also logged as structured JSON.
    Nothing in the core reads events back.
    """

    def __init__(self, repository: AuditRepository) -> None:
        self._repository = repository

    async def record(
        self,
        action: str,
        actor: Optional[str] = None,
        old_values: Optional[Mapping[str, Any]] = None,
        new_values: Optional[Mapping[str, Any]] = None,
        severity: Severity | str = Severity.LOW,
        description: Optional[str] = None,
        *,
        resource: Optional[ResourceRef] = None,
        ip: Optional[str] = None,
        user_agent: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> AuditEvent:
        """Write one audit event. Timestamp is UTC."""
        event = AuditEvent(
            action=action,
            severity=Severity(severity),
            actor_id=actor if actor is not None else actor_id_ctx.get(),
            resource=resource,
            old_values=old_values or {},
            new_values=new_values or {},
            ip=ip if ip is not None else client_ip_ctx.get(),
            user_agent=user_agent if user_agent is not None else user_agent_ctx.get(),
            session_id=session_id if session_id is not None else session_id_ctx.get(),
            description=description,
        )
        await self._repository.save(event)
        logger.log(
            _LOG_LEVELS[event.severity],
            json.dumps({"event": "audit", **event.to_dict()}, default=str),
        )
        return event

    async def purge_expired(self, retention_days: int, now: Optional[datetime] = None) -> int:
        """Retention job: drop low-severity events older than retention_days."""
        cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=retention_days)
        removed = await self._repository.purge_low_severity(cutoff)
        logger.info("Audit retention removed %d low-severity events", removed)
        return removed
