"""Tests for API middleware: correlation ID, pipeline adapter, client IP, identity, uploads."""

import pytest
from fastapi import FastAPI, Request
from httpx import ASGITransport, AsyncClient

from vaultguard.api import dependencies
from vaultguard.api.middleware import (
    CorrelationIdMiddleware,
    SecurityPipelineMiddleware,
    parse_trusted_networks,
    resolve_client_ip,
)
from vaultguard.scalability.exceptions import StoreUnavailableError
from vaultguard.security.sanitizer import MAX_REQUEST_BYTES


def header_identity(request: Request):
    return request.headers.get("X-Test-User"), request.headers.get("X-Test-Session")


def build_app() -> FastAPI:
    test_app = FastAPI()
    test_app.add_middleware(
        SecurityPipelineMiddleware,
        pipeline_factory=dependencies.get_pipeline,
        trusted_proxies=["127.0.0.1/32"],
        identity=header_identity,
    )
    test_app.add_middleware(CorrelationIdMiddleware)

    @test_app.post("/entries")
    async def create_entry(request: Request):
        body = await request.json()
        return {"sanitized": request.state.sanitized_params, "raw": body}

    @test_app.post("/login")
    async def login():
        return {"ok": True}

    @test_app.post("/import")
    async def import_file():
        return {"imported": True}

    @test_app.get("/entries")
    async def list_entries():
        return []

    return test_app


@pytest.fixture
async def client(wired, browser_ua):
    transport = ASGITransport(app=build_app())
    async with AsyncClient(
        transport=transport, base_url="http://test", headers={"User-Agent": browser_ua}
    ) as ac:
        yield ac


# --- Correlation ID ---


@pytest.mark.asyncio
async def test_correlation_id_generated(client: AsyncClient):
    r = await client.get("/entries")
    assert r.status_code == 200
    assert len(r.headers["X-Correlation-ID"]) > 0


@pytest.mark.asyncio
async def test_correlation_id_preserved_when_passed(client: AsyncClient):
    r = await client.get("/entries", headers={"X-Correlation-ID": "my-correlation-123"})
    assert r.headers.get("X-Correlation-ID") == "my-correlation-123"


@pytest.mark.asyncio
async def test_correlation_id_on_aborted_response(client: AsyncClient):
    r = await client.post("/entries", json={"notes": "<script>alert(1)</script>"})
    assert r.status_code == 400
    assert "X-Correlation-ID" in r.headers


# --- Pipeline adapter ---


@pytest.mark.asyncio
async def test_sanitized_params_exposed_to_route(client: AsyncClient):
    r = await client.post("/entries", json={"title": "  Bank \u0000", "tags": [" a "]})
    assert r.status_code == 200
    data = r.json()
    assert data["sanitized"] == {"title": "Bank", "tags": ["a"]}
    assert data["raw"]["title"] == "  Bank \u0000"


@pytest.mark.asyncio
async def test_malicious_body_rejected_with_headers(client: AsyncClient, audit_repository):
    r = await client.post("/entries", json={"notes": "1 UNION SELECT secret FROM vault"})
    assert r.status_code == 400
    assert r.json() == {"detail": "Malicious input detected"}
    assert r.headers["Content-Security-Policy"].startswith("default-src 'self'")
    assert "malicious_input_detected" in audit_repository.actions()


@pytest.mark.asyncio
async def test_malicious_query_string_rejected(client: AsyncClient):
    r = await client.get("/entries", params={"file": "../../etc/passwd"})
    assert r.status_code == 400


@pytest.mark.asyncio
async def test_login_rate_limit(client: AsyncClient):
    for _ in range(5):
        assert (await client.post("/login", json={})).status_code == 200
    r = await client.post("/login", json={})
    assert r.status_code == 429
    assert "Too many login attempts" in r.json()["detail"]


@pytest.mark.asyncio
async def test_bot_user_agent_is_audited(client: AsyncClient, audit_repository):
    r = await client.get("/entries", headers={"User-Agent": "curl/8.4.0"})
    assert r.status_code == 200
    event = next(e for e in audit_repository.events if e.action == "suspicious_user_agent")
    assert event.ip == "127.0.0.1"


@pytest.mark.asyncio
async def test_store_outage_returns_503(client: AsyncClient, wired, monkeypatch):
    async def unavailable(key: str) -> bool:
        raise StoreUnavailableError("Shared store unavailable")

    monkeypatch.setattr(wired, "exists", unavailable)
    r = await client.get("/entries")
    assert r.status_code == 503
    assert r.headers["X-Frame-Options"] == "DENY"


# --- Uploads ---


@pytest.mark.asyncio
async def test_valid_upload_accepted(client: AsyncClient):
    files = {"file": ("entries.csv", b"site,user\nexample.com,alice\n", "text/csv")}
    r = await client.post("/import", files=files, data={"source": "export"})
    assert r.status_code == 200


@pytest.mark.asyncio
async def test_executable_upload_rejected(client: AsyncClient):
    files = {"file": ("tool.exe", b"MZ\x90\x00", "application/octet-stream")}
    r = await client.post("/import", files=files)
    assert r.status_code == 400
    assert r.json()["detail"] == "Invalid file type"


@pytest.mark.asyncio
async def test_upload_with_script_content_rejected(client: AsyncClient):
    files = {"file": ("notes.txt", b"<script>steal()</script>", "text/plain")}
    r = await client.post("/import", files=files)
    assert r.status_code == 400

@pytest.mark.asyncio
async def test_declared_oversized_body_rejected_before_reading(client: AsyncClient, audit_repository):
    r = await client.post(
        "/import",
        content=b"{}",
        headers={"Content-Type": "application/json", "Content-Length": str(MAX_REQUEST_BYTES + 1)},
    )
    assert r.status_code == 413
    assert r.json() == {"detail": "Request body too large"}
    event = next(e for e in audit_repository.events if e.action == "malicious_input_detected")
    assert event.new_values["detection_type"] == "oversized_request"


@pytest.mark.asyncio
async def test_streamed_body_capped_without_content_length(wired, browser_ua):
    small_app = FastAPI()
    small_app.add_middleware(
        SecurityPipelineMiddleware, pipeline_factory=dependencies.get_pipeline, max_body_bytes=1024
    )

    @small_app.post("/import")
    async def import_file():
        return {"imported": True}

    async def chunks():
        for _ in range(4):
            yield b"a" * 512

    transport = ASGITransport(app=small_app)
    async with AsyncClient(
        transport=transport, base_url="http://test", headers={"User-Agent": browser_ua}
    ) as ac:
        r = await ac.post("/import", content=chunks(), headers={"Content-Type": "text/plain"})
    assert r.status_code == 413


@pytest.mark.asyncio
async def test_body_within_cap_still_reaches_route(client: AsyncClient):
    r = await client.post("/entries", json={"title": "Bank"})
    assert r.status_code == 200
    assert r.json()["raw"] == {"title": "Bank"}



# --- Identity and client IP ---


@pytest.mark.asyncio
async def test_session_bound_to_forwarded_client_ip(client: AsyncClient):
    identity = {"X-Test-User": "user-1", "X-Test-Session": "session-1"}
    r = await client.get("/entries", headers={**identity, "X-Forwarded-For": "10.0.0.5"})
    assert r.status_code == 200
    r = await client.get("/entries", headers={**identity, "X-Forwarded-For": "10.0.0.9"})
    assert r.status_code == 200
    r = await client.get("/entries", headers={**identity, "X-Forwarded-For": "10.0.1.9"})
    assert r.status_code == 401
    r = await client.get("/entries", headers={**identity, "X-Forwarded-For": "10.0.0.5"})
    assert r.status_code == 401


def test_resolve_client_ip_ignores_untrusted_forwarding():
    networks = parse_trusted_networks(["10.0.0.0/8"])
    assert resolve_client_ip("203.0.113.1", "1.2.3.4", networks) == "203.0.113.1"


def test_resolve_client_ip_picks_rightmost_untrusted_hop():
    networks = parse_trusted_networks(["10.0.0.0/8"])
    assert resolve_client_ip("10.0.0.1", "1.2.3.4, 198.51.100.2, 10.0.0.7", networks) == "198.51.100.2"


def test_resolve_client_ip_all_trusted_uses_leftmost():
    networks = parse_trusted_networks(["10.0.0.0/8"])
    assert resolve_client_ip("10.0.0.1", "10.1.1.1, 10.0.0.7", networks) == "10.1.1.1"


def test_invalid_trusted_proxy_entries_ignored():
    assert [str(n) for n in parse_trusted_networks(["not-a-cidr", "192.168.0.0/16"])] == ["192.168.0.0/16"]
