"""Per-IP rate limiting and anomaly detection: endpoint limits, bot heuristics, bursts, access patterns, penalty box."""

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable

from vaultguard.audit.logger import AuditLogger
from vaultguard.audit.models import Severity
from vaultguard.domain.models.request import InboundRequest
from vaultguard.scalability.store import SharedStore
from vaultguard.security.exceptions import RateLimitExceeded

logger = logging.getLogger(__name__)


class EndpointClass(str, Enum):
    LOGIN = "login"
    PASSWORD_OPS = "password_ops"
    API = "api"
    DEFAULT = "default"


@dataclass(frozen=True)
class EndpointLimit:
    bucket: str
    max_attempts: int
    window_seconds: int
    action: str
    message: str


ENDPOINT_LIMITS: dict[EndpointClass, EndpointLimit] = {
    EndpointClass.LOGIN: EndpointLimit(
        "login_attempts", 5, 15 * 60, "rate_limit_exceeded",
        "Too many login attempts. Please try again in 15 minutes.",
    ),
    EndpointClass.PASSWORD_OPS: EndpointLimit(
        "password_operations", 50, 5 * 60, "password_operations_rate_limit",
        "Too many password operations. Please wait 5 minutes.",
    ),
    EndpointClass.API: EndpointLimit(
        "api_requests", 200, 60, "api_rate_limit_exceeded",
        "API rate limit exceeded. Please slow down.",
    ),
    EndpointClass.DEFAULT: EndpointLimit(
        "requests", 100, 60, "rate_limit_exceeded",
        "Too many requests",
    ),
}

SUSPICIOUS_USER_AGENTS = (
    "bot", "crawler", "spider", "scraper", "curl", "wget",
    "python", "java", "go-http", "okhttp", "apache-httpclient",
)

BOT_LIMIT = 10
BOT_WINDOW_SECONDS = 3600

BURST_WINDOW_SECONDS = 10
BURST_MAX_REQUESTS = 20
BURST_BLOCK_SECONDS = 300

PATTERN_HISTORY = 50
PATTERN_WINDOW_SECONDS = 60
PATTERN_MAX_ENDPOINTS = 10
PATTERN_TTL = 3600

PENALTY_TTL = 3600
PENALTY_STEP_SECONDS = 2
PENALTY_MAX_DELAY = 30


def classify_endpoint(path: str) -> EndpointClass:
    """Most specific class wins: login, then password operations, then API."""
    lowered = path.lower()
    if "login" in lowered:
        return EndpointClass.LOGIN
    if "password" in lowered:
        return EndpointClass.PASSWORD_OPS
    if lowered.startswith("/api/") or "livewire" in lowered:
        return EndpointClass.API
    return EndpointClass.DEFAULT


def is_suspicious_user_agent(user_agent: str | None) -> bool:
    if not user_agent or not user_agent.strip():
        return True
    lowered = user_agent.lower()
    return any(pattern in lowered for pattern in SUSPICIOUS_USER_AGENTS)


class RateLimiter:
    """
    Rate limiter and anomaly detector over the shared store.
    Counters are reset-on-expiry windows (TTL set when the counter is created).
    """

    def __init__(
        self,
        store: SharedStore,
        audit: AuditLogger,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        penalty_delay_enabled: bool = True,
    ) -> None:
        self._store = store
        self._audit = audit
        self._clock = clock
        self._sleep = sleep
        self._penalty_delay_enabled = penalty_delay_enabled

    async def check(self, request: InboundRequest) -> None:
        """Rate-limit and anomaly stages for one request, in order. Raises RateLimitExceeded."""
        await self.enforce_limits(request)
        await self.detect_anomalies(request)

    async def enforce_limits(self, request: InboundRequest) -> None:
        await self.check_lockout(request.client_ip)
        await self.check_endpoint_limit(request)

    async def detect_anomalies(self, request: InboundRequest) -> None:
        ip = request.client_ip
        await self.check_user_agent(request.user_agent, ip, request.path)
        await self.check_burst(ip)
        await self.check_pattern_diversity(ip, request.path, request.method)
        await self.apply_penalty(ip)

    async def check_lockout(self, ip: str) -> None:
        if await self._store.exists(f"blocked_ip:{ip}"):
            raise RateLimitExceeded("Rapid requests detected. IP temporarily blocked.")

    async def check_endpoint_limit(self, request: InboundRequest) -> EndpointClass:
        endpoint = classify_endpoint(request.path)
        limit = ENDPOINT_LIMITS[endpoint]
        ip = request.client_ip
        attempts = await self._store.incr(f"{limit.bucket}:{ip}", limit.window_seconds)
        if attempts > limit.max_attempts:
            await self._log_security_event(
                limit.action,
                ip,
                {
                    "endpoint": endpoint.value,
                    "attempts": attempts,
                    "max_attempts": limit.max_attempts,
                },
            )
            raise RateLimitExceeded(limit.message)
        return endpoint

    async def check_user_agent(self, user_agent: str | None, ip: str, path: str = "") -> bool:
        """Suspicious agents are logged and get a stricter hourly counter. Returns suspicion."""
        if not is_suspicious_user_agent(user_agent):
            return False
        await self._log_security_event(
            "suspicious_user_agent", ip, {"user_agent": user_agent, "endpoint": path}
        )
        count = await self._store.incr(f"bot_requests:{ip}", BOT_WINDOW_SECONDS)
        if count > BOT_LIMIT:
            raise RateLimitExceeded("Automated requests detected. Access temporarily restricted.")
        return True

    async def check_burst(self, ip: str) -> int:
        """More than 20 requests in 10 seconds blocks the IP for 5 minutes."""
        count = await self._store.record_timestamp(
            f"rapid_requests:{ip}", self._clock(), BURST_WINDOW_SECONDS, ttl=60
        )
        if count > BURST_MAX_REQUESTS:
            await self._store.set_flag(f"blocked_ip:{ip}", BURST_BLOCK_SECONDS)
            await self._log_security_event(
                "rapid_requests_detected",
                ip,
                {"requests_count": count, "time_window": f"{BURST_WINDOW_SECONDS}_seconds"},
            )
            raise RateLimitExceeded("Rapid requests detected. IP temporarily blocked.")
        return count

    async def check_pattern_diversity(self, ip: str, endpoint: str, method: str) -> int:
        """Log (never block) when one IP touches more than 10 endpoints in a minute."""
        now = self._clock()
        entry = json.dumps({"endpoint": endpoint, "time": now, "method": method})
        history = await self._store.append_capped(
            f"endpoint_pattern:{ip}", entry, PATTERN_HISTORY, PATTERN_TTL
        )
        recent = {
            item["endpoint"]
            for item in map(json.loads, history)
            if now - item["time"] < PATTERN_WINDOW_SECONDS
        }
        if len(recent) > PATTERN_MAX_ENDPOINTS:
            await self._log_security_event(
                "unusual_access_pattern",
                ip,
                {"unique_endpoints": len(recent), "time_window": f"{PATTERN_WINDOW_SECONDS}_seconds"},
            )
        return len(recent)

    async def apply_penalty(self, ip: str) -> float:
        """Delay this request by min(penalties * 2, 30) seconds. Only the current task waits."""
        penalties = await self._store.get_int(f"penalty_box:{ip}")
        if penalties <= 0:
            return 0
        delay = min(penalties * PENALTY_STEP_SECONDS, PENALTY_MAX_DELAY)
        if self._penalty_delay_enabled:
            await self._sleep(delay)
        await self._log_security_event(
            "progressive_penalty_applied",
            ip,
            {"penalty_count": penalties, "delay_seconds": delay},
        )
        return delay

    async def add_penalty(self, ip: str) -> int:
        return await self._store.incr(f"penalty_box:{ip}", PENALTY_TTL)

    async def _log_security_event(self, action: str, ip: str, context: dict[str, Any]) -> None:
        await self._audit.record(
            action,
            new_values={**context, "ip_address": ip},
            severity=Severity.HIGH,
            description=f"Advanced rate limiting: {action} from IP {ip}",
            ip=ip,
        )
