"""Shared fixtures: controllable clock, in-memory store and audit sink."""

import pytest

from vaultguard.audit.logger import AuditLogger
from vaultguard.audit.repository import InMemoryAuditRepository
from vaultguard.domain.models.request import InboundRequest
from vaultguard.scalability.store import InMemorySharedStore

BROWSER_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


class FakeClock:
    """Seconds since epoch that only move when told to."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_request(
    path: str = "/",
    method: str = "GET",
    ip: str = "203.0.113.10",
    user_agent: str | None = BROWSER_UA,
    params: dict | None = None,
    files: list | None = None,
    user_id: str | None = None,
    session_id: str | None = None,
) -> InboundRequest:
    headers = {"User-Agent": user_agent} if user_agent is not None else {}
    return InboundRequest(
        method=method,
        path=path,
        client_ip=ip,
        url=f"https://vault.example{path}",
        headers=headers,
        params=params or {},
        files=files or [],
        user_id=user_id,
        session_id=session_id,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return InMemorySharedStore(clock=clock)


@pytest.fixture
def audit_repository():
    return InMemoryAuditRepository()


@pytest.fixture
def audit(audit_repository):
    return AuditLogger(audit_repository)


@pytest.fixture
def browser_ua():
    return BROWSER_UA


@pytest.fixture(name="make_request")
def make_request_fixture():
    return make_request
