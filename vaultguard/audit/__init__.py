"""Audit sink: immutable security events, repository protocol. No FastAPI."""

from vaultguard.audit.logger import AuditLogger
from vaultguard.audit.models import AuditEvent, ResourceRef, Severity
from vaultguard.audit.repository import AuditRepository, InMemoryAuditRepository

__all__ = [
    "AuditLogger",
    "AuditEvent",
    "AuditRepository",
    "InMemoryAuditRepository",
    "ResourceRef",
    "Severity",
]
