# vaultguard/infrastructure/database/models.py

from sqlalchemy import JSON, Column, DateTime, Index, String, Text

from vaultguard.infrastructure.database.session import Base


class AuditEventRow(Base):
    """ORM row for one immutable audit event. Rows are inserted, never updated."""

    __tablename__ = "audit_events"

    id = Column(String(36), primary_key=True)
    action = Column(String(100), nullable=False, index=True)
    severity = Column(String(16), nullable=False)
    actor_id = Column(String, nullable=True, index=True)
    resource_kind = Column(String(64), nullable=True)
    resource_id = Column(String, nullable=True)
    old_values = Column(JSON, nullable=True)
    new_values = Column(JSON, nullable=True)
    ip_address = Column(String(45), nullable=True, index=True)
    user_agent = Column(Text, nullable=True)
    session_id = Column(String, nullable=True)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (Index("ix_audit_events_severity_created_at", "severity", "created_at"),)
