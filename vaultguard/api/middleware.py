"""API middleware: correlation ID, security pipeline adapter."""

import ipaddress
import json
import logging
import uuid
from typing import Any, Callable, Iterable, Optional

from starlette.datastructures import UploadFile
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from vaultguard.core.context import correlation_id_ctx
from vaultguard.domain.models.request import InboundRequest, UploadedFile
from vaultguard.pipeline.orchestrator import SecurityPipeline
from vaultguard.security.exceptions import SecurityAbort
from vaultguard.security.sanitizer import MAX_REQUEST_BYTES

logger = logging.getLogger(__name__)

CORRELATION_HEADER = "X-Correlation-ID"
BODY_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})

Network = ipaddress.IPv4Network | ipaddress.IPv6Network


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Generate or preserve correlation ID; attach to request.state, response header, and logging context."""

    async def dispatch(self, request: Request, call_next) -> Response:
        correlation_id = request.headers.get(CORRELATION_HEADER) or str(uuid.uuid4())
        request.state.correlation_id = correlation_id
        correlation_id_ctx.set(correlation_id)

        response = await call_next(request)
        response.headers[CORRELATION_HEADER] = correlation_id
        return response


def parse_trusted_networks(entries: Iterable[str]) -> list[Network]:
    """Parse proxy CIDRs; invalid entries are logged and ignored."""
    networks: list[Network] = []
    for entry in entries:
        try:
            networks.append(ipaddress.ip_network(entry.strip(), strict=False))
        except ValueError:
            logger.warning("Invalid trusted proxy entry ignored: %s", entry)
    return networks


def _is_trusted(ip: str, networks: list[Network]) -> bool:
    try:
        addr = ipaddress.ip_address(ip)
    except ValueError:
        return False
    return any(addr in net for net in networks)


def resolve_client_ip(direct_ip: str, forwarded_for: Optional[str], networks: list[Network]) -> str:
    """X-Forwarded-For is honoured only when the direct peer is a trusted proxy."""
    if not forwarded_for or not _is_trusted(direct_ip, networks):
        return direct_ip
    hops = [hop.strip() for hop in forwarded_for.split(",") if hop.strip()]
    # Rightmost untrusted hop is the real client
    for hop in reversed(hops):
        if not _is_trusted(hop, networks):
            return hop
    return hops[0] if hops else direct_ip


def request_identity(request: Request) -> tuple[Optional[str], Optional[str]]:
    """user_id/session_id placed on request.state by upstream authentication."""
    user_id = getattr(request.state, "user_id", None)
    session_id = getattr(request.state, "session_id", None)
    return (
        str(user_id) if user_id is not None else None,
        str(session_id) if session_id is not None else None,
    )


async def _read_body(request: Request, limit: int) -> Optional[bytes]:
    """
    Body bytes, or None when the declared or streamed length passes limit.
    Oversized bodies are never buffered in full.
    """
    declared = request.headers.get("content-length", "")
    if declared.isdigit() and int(declared) > limit:
        return None
    received = bytearray()
    async for chunk in request.stream():
        received.extend(chunk)
        if len(received) > limit:
            return None
    # Same cache Request.body() fills, so form() and the route can read the body again.
    request._body = bytes(received)
    return request._body


async def _read_params(
    request: Request, limit: int = MAX_REQUEST_BYTES
) -> tuple[dict[str, Any], list[UploadedFile], bool]:
    """Merge query string, JSON and form fields into one payload; collect uploads."""
    params: dict[str, Any] = dict(request.query_params)
    files: list[UploadedFile] = []
    if request.method not in BODY_METHODS:
        return params, files, False

    body = await _read_body(request, limit)
    if body is None:
        return params, files, True
    content_type = request.headers.get("content-type", "").lower()

    if content_type.startswith("application/json"):
        if not body:
            return params, files, False
        try:
            payload = json.loads(body)
        except ValueError:
            params["_body"] = body.decode("utf-8", errors="replace")
            return params, files, False
        if isinstance(payload, dict):
            params.update(payload)
        else:
            params["_json"] = payload
    elif content_type.startswith(("multipart/form-data", "application/x-www-form-urlencoded")):
        async with request.form() as form:
            for name, value in form.multi_items():
                if isinstance(value, UploadFile):
                    content = await value.read()
                    files.append(
                        UploadedFile(
                            name=value.filename or name,
                            size=value.size if value.size is not None else len(content),
                            mime_type=value.content_type or "",
                            content=content,
                        )
                    )
                else:
                    params[name] = value
    elif body:
        params["_body"] = body.decode("utf-8", errors="replace")
    return params, files, False


async def build_inbound_request(
    request: Request,
    trusted_networks: list[Network],
    identity: Callable[[Request], tuple[Optional[str], Optional[str]]] = request_identity,
    max_body_bytes: int = MAX_REQUEST_BYTES,
) -> InboundRequest:
    direct_ip = request.client.host if request.client else "unknown"
    params, files, oversized = await _read_params(request, max_body_bytes)
    user_id, session_id = identity(request)
    return InboundRequest(
        method=request.method,
        path=request.url.path,
        client_ip=resolve_client_ip(direct_ip, request.headers.get("x-forwarded-for"), trusted_networks),
        url=str(request.url),
        headers=dict(request.headers),
        params=params,
        files=files,
        user_id=user_id,
        session_id=session_id,
        oversized_body=oversized,
    )


def render_abort(abort: SecurityAbort) -> Response:
    return JSONResponse(status_code=abort.status_code, content={"detail": abort.message})


class SecurityPipelineMiddleware(BaseHTTPMiddleware):
    """
    Runs every request through the security pipeline. Aborts become JSON error responses;
    passing requests reach the route with request.state.sanitized_params set.
    """

    def __init__(
        self,
        app,
        pipeline_factory: Callable[[], SecurityPipeline],
        trusted_proxies: Iterable[str] = (),
        identity: Callable[[Request], tuple[Optional[str], Optional[str]]] = request_identity,
        max_body_bytes: int = MAX_REQUEST_BYTES,
    ) -> None:
        super().__init__(app)
        self._pipeline_factory = pipeline_factory
        self._trusted_networks = parse_trusted_networks(trusted_proxies)
        self._identity = identity
        self._max_body_bytes = max_body_bytes

    async def dispatch(self, request: Request, call_next) -> Response:
        inbound = await build_inbound_request(
            request, self._trusted_networks, self._identity, self._max_body_bytes
        )

        async def handler(checked: InboundRequest) -> Response:
            request.state.sanitized_params = checked.params
            return await call_next(request)

        return await self._pipeline_factory().process(inbound, handler, render_abort)
