"""Security pipeline: ordered, short-circuiting inspection stages around a request handler."""

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterator, MutableMapping, Protocol, Sequence

from vaultguard.audit.logger import AuditLogger
from vaultguard.audit.models import Severity
from vaultguard.core.context import actor_id_ctx, client_ip_ctx, session_id_ctx, user_agent_ctx
from vaultguard.domain.models.request import InboundRequest
from vaultguard.pipeline.headers import apply_security_headers
from vaultguard.scalability.exceptions import StoreUnavailableError
from vaultguard.security.exceptions import SecurityAbort
from vaultguard.security.rate_limiter import RateLimiter
from vaultguard.security.sanitizer import InputSanitizer
from vaultguard.security.session_monitor import SessionMonitor

logger = logging.getLogger(__name__)

MUTATING_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})


class ResponseLike(Protocol):
    status_code: int
    headers: MutableMapping[str, str]


@dataclass
class PipelineResponse:
    """Transport-neutral response, used when no HTTP framework renders aborts."""

    status_code: int
    body: Any = None
    headers: dict[str, str] = field(default_factory=dict)


def default_abort_response(abort: SecurityAbort) -> PipelineResponse:
    return PipelineResponse(status_code=abort.status_code, body={"detail": abort.message})


def determine_action(method: str, path: str) -> str:
    if "/login" in path:
        return "login_attempt"
    if "/logout" in path:
        return "logout"
    if "/password" in path:
        return {
            "GET": "view_password",
            "POST": "create_password",
            "PUT": "update_password",
            "PATCH": "update_password",
            "DELETE": "delete_password",
        }.get(method, "password_action")
    return {
        "GET": "view_page",
        "POST": "create_resource",
        "PUT": "update_resource",
        "PATCH": "update_resource",
        "DELETE": "delete_resource",
    }.get(method, "http_request")


def determine_severity(method: str, path: str, status_code: int) -> Severity:
    if status_code >= 500:
        return Severity.CRITICAL
    if status_code in (401, 403):
        return Severity.HIGH
    if status_code >= 400:
        return Severity.MEDIUM
    if "/password" in path and method in MUTATING_METHODS:
        return Severity.HIGH
    return Severity.LOW


Stage = tuple[str, Callable[[InboundRequest], Awaitable[Any]]]


class SecurityPipeline:
    """
    Runs, in order: rate-limit, anomaly-detect, sanitize, threat-scan, session-integrity.
    Any stage may abort with a SecurityAbort; the abort is audited and rendered, and
    headers are attached on the way out either way. A shared-store outage aborts with
    503: stages are never skipped.
    """

    def __init__(
        self,
        rate_limiter: RateLimiter,
        sanitizer: InputSanitizer,
        session_monitor: SessionMonitor,
        audit: AuditLogger,
        admin_path_prefix: str = "/admin",
        audit_skip_paths: Sequence[str] = (),
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self._audit = audit
        self._admin_prefix = admin_path_prefix
        self._skip_paths = tuple(audit_skip_paths)
        self._clock = clock
        self.stages: list[Stage] = [
            ("rate_limit", rate_limiter.enforce_limits),
            ("anomaly_detect", rate_limiter.detect_anomalies),
            ("sanitize", self._sanitize(sanitizer)),
            ("threat_scan", sanitizer.scan_request),
            ("session_integrity", session_monitor.inspect),
        ]

    @staticmethod
    def _sanitize(sanitizer: InputSanitizer) -> Callable[[InboundRequest], Awaitable[None]]:
        async def stage(request: InboundRequest) -> None:
            sanitizer.sanitize_request(request)

        return stage

    async def process(
        self,
        request: InboundRequest,
        handler: Callable[[InboundRequest], Awaitable[ResponseLike]],
        render_abort: Callable[[SecurityAbort], ResponseLike] = default_abort_response,
    ) -> ResponseLike:
        started = self._clock()
        with self._request_context(request):
            try:
                await self.inspect(request)
            except SecurityAbort as abort:
                response = render_abort(abort)
            else:
                response = await handler(request)
                await self.record_request(
                    request, response.status_code, (self._clock() - started) * 1000
                )
            apply_security_headers(response.headers, request.path, self._admin_prefix)
            return response

    async def inspect(self, request: InboundRequest) -> None:
        """Run every stage in order; the first abort stops the chain after being audited."""
        for name, stage in self.stages:
            try:
                await stage(request)
            except SecurityAbort as abort:
                await self._record_block(request, name, abort)
                raise
            except StoreUnavailableError as e:
                logger.error("Stage %s failed closed: %s", name, e.message)
                abort = SecurityAbort("Security checks temporarily unavailable", status_code=503)
                await self._record_block(request, name, abort)
                raise abort from e

    async def record_request(
        self, request: InboundRequest, status_code: int, duration_ms: float
    ) -> None:
        if any(request.path.startswith(p) for p in self._skip_paths):
            return
        await self._audit.record(
            determine_action(request.method, request.path),
            new_values={
                "method": request.method,
                "url": request.url,
                "status_code": status_code,
                "duration_ms": round(duration_ms, 2),
                "user_agent": request.user_agent,
            },
            severity=determine_severity(request.method, request.path, status_code),
            description=f"HTTP {request.method} request to {request.path}",
        )

    async def _record_block(self, request: InboundRequest, stage: str, abort: SecurityAbort) -> None:
        await self._audit.record(
            "request_blocked",
            new_values={
                "stage": stage,
                "status_code": abort.status_code,
                "reason": abort.message,
                "method": request.method,
                "path": request.path,
            },
            severity=Severity.CRITICAL if abort.status_code in (401, 503) else Severity.HIGH,
            description=f"Request blocked at {stage}: {abort.message}",
        )

    @staticmethod
    @contextmanager
    def _request_context(request: InboundRequest) -> Iterator[None]:
        tokens = [
            (client_ip_ctx, client_ip_ctx.set(request.client_ip)),
            (user_agent_ctx, user_agent_ctx.set(request.user_agent)),
            (session_id_ctx, session_id_ctx.set(request.session_id)),
            (actor_id_ctx, actor_id_ctx.set(request.user_id)),
        ]
        try:
            yield
        finally:
            for var, token in reversed(tokens):
                var.reset(token)
