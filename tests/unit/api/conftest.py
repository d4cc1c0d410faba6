"""Fixtures for API unit tests: in-memory store and audit sink wired into the app, AsyncClient."""

import pytest
from httpx import ASGITransport, AsyncClient

from vaultguard.api import dependencies
from vaultguard.audit.logger import AuditLogger
from vaultguard.main import app
from vaultguard.scalability.store import InMemorySharedStore
from vaultguard.security.key_manager import KeyManager
from vaultguard.security.rate_limiter import RateLimiter


@pytest.fixture
def wired(monkeypatch, audit_repository):
    """Fresh singletons per test; penalty delays disabled."""
    dependencies.reset_dependencies()
    store = InMemorySharedStore()
    audit = AuditLogger(audit_repository)
    monkeypatch.setattr(dependencies, "_store", store)
    monkeypatch.setattr(dependencies, "_audit_repository", audit_repository)
    monkeypatch.setattr(dependencies, "_audit_logger", audit)
    monkeypatch.setattr(
        dependencies, "_rate_limiter", RateLimiter(store, audit, penalty_delay_enabled=False)
    )
    monkeypatch.setattr(
        dependencies, "_key_manager", KeyManager(store, audit, active_key=KeyManager.generate_key())
    )
    yield store
    dependencies.reset_dependencies()


@pytest.fixture
async def async_client(wired, browser_ua):
    """Async HTTP client for testing; sends a browser user agent like a real user would."""
    transport = ASGITransport(app=app)
    async with AsyncClient(
        transport=transport, base_url="http://test", headers={"User-Agent": browser_ua}
    ) as client:
        yield client
