"""Immutable audit event model. Domain-level immutability."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass(frozen=True)
class ResourceRef:
    """Tagged reference to the resource an event concerns, e.g. ("secret", "42")."""

    kind: str
    id: str

    def to_dict(self) -> Dict[str, str]:
        return {"kind": self.kind, "id": self.id}


def _freeze(values: Optional[Mapping[str, Any]]) -> Mapping[str, Any]:
    return MappingProxyType(dict(values or {}))


@dataclass(frozen=True)
class AuditEvent:
    """
    Immutable audit event: who, what, where from, how bad, when (UTC).
    old_values/new_values are read-only views over copies of the caller's maps.
    """

    action: str
    severity: Severity
    actor_id: Optional[str] = None
    resource: Optional[ResourceRef] = None
    old_values: Mapping[str, Any] = field(default_factory=dict)
    new_values: Mapping[str, Any] = field(default_factory=dict)
    ip: Optional[str] = None
    user_agent: Optional[str] = None
    session_id: Optional[str] = None
    description: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def __post_init__(self) -> None:
        object.__setattr__(self, "severity", Severity(self.severity))
        object.__setattr__(self, "old_values", _freeze(self.old_values))
        object.__setattr__(self, "new_values", _freeze(self.new_values))

    def to_dict(self) -> Dict[str, Any]:
        """Structured representation for JSON logging and persistence."""
        return {
            "id": self.id,
            "actor_id": self.actor_id,
            "action": self.action,
            "resource": self.resource.to_dict() if self.resource else None,
            "old_values": dict(self.old_values),
            "new_values": dict(self.new_values),
            "ip": self.ip,
            "user_agent": self.user_agent,
            "session_id": self.session_id,
            "severity": self.severity.value,
            "description": self.description,
            "created_at": self.created_at.isoformat(),
        }
