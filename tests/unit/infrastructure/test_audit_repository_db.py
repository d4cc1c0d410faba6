"""DbAuditRepository: row mapping, insert-only writes, retention delete."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from vaultguard.audit.models import AuditEvent, ResourceRef, Severity
from vaultguard.infrastructure.database.audit_repository_db import DbAuditRepository, to_row


class FakeSession:
    def __init__(self, rowcount: int = 0) -> None:
        self.add = MagicMock()
        self.commit = AsyncMock()
        self.execute = AsyncMock(return_value=MagicMock(rowcount=rowcount))

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


def test_to_row_maps_every_field():
    event = AuditEvent(
        action="secret_viewed",
        severity=Severity.MEDIUM,
        actor_id="user-1",
        resource=ResourceRef("secret", "42"),
        new_values={"field": "password"},
        ip="198.51.100.7",
        user_agent="Mozilla/5.0",
        session_id="sess-1",
        description="Secret viewed",
    )
    row = to_row(event)
    assert row.id == event.id
    assert row.severity == "medium"
    assert row.resource_kind == "secret"
    assert row.resource_id == "42"
    assert row.old_values is None
    assert row.new_values == {"field": "password"}
    assert row.ip_address == "198.51.100.7"
    assert row.created_at == event.created_at


@pytest.mark.asyncio
async def test_save_adds_and_commits():
    session = FakeSession()
    repository = DbAuditRepository(lambda: session)
    await repository.save(AuditEvent("login_attempt", Severity.LOW))
    session.add.assert_called_once()
    assert session.add.call_args.args[0].action == "login_attempt"
    session.commit.assert_awaited_once()


@pytest.mark.asyncio
async def test_purge_low_severity_deletes_old_rows():
    session = FakeSession(rowcount=3)
    repository = DbAuditRepository(lambda: session)
    cutoff = datetime(2026, 1, 1, tzinfo=timezone.utc)

    assert await repository.purge_low_severity(cutoff) == 3

    stmt = session.execute.await_args.args[0]
    sql = str(stmt)
    assert sql.startswith("DELETE FROM audit_events")
    assert "audit_events.severity" in sql
    assert "audit_events.created_at" in sql
    session.commit.assert_awaited_once()
