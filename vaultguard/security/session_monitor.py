"""Session integrity: fingerprint binding, hijack heuristics, concurrent-session cap."""

import logging
import time
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from vaultguard.audit.logger import AuditLogger
from vaultguard.audit.models import Severity
from vaultguard.domain.models.request import InboundRequest
from vaultguard.scalability.distributed_lock import DistributedLock
from vaultguard.scalability.store import SharedStore
from vaultguard.security.exceptions import SessionIntegrityViolation

logger = logging.getLogger(__name__)

SESSION_TTL = 86400
MAX_CONCURRENT_SESSIONS = 3
SESSION_IDLE_SECONDS = 2 * 3600
LOCK_TTL = 5

RAPID_SESSION_MINUTES = 5
RAPID_SESSION_MAX_ACTIVITY = 100
MAX_ACTIVITY_PER_MINUTE = 10


class SessionState(str, Enum):
    NEW = "new"
    TRACKED = "tracked"
    SUSPICIOUS = "suspicious"
    TERMINATED = "terminated"


@dataclass
class SessionFingerprint:
    created_at: float
    ip: str
    user_agent: str
    last_activity: float
    activity_count: int

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SessionFingerprint":
        return cls(
            created_at=float(data["created_at"]),
            ip=data["ip"],
            user_agent=data.get("user_agent") or "",
            last_activity=float(data["last_activity"]),
            activity_count=int(data.get("activity_count", 0)),
        )


def extract_browser_info(user_agent: str) -> tuple[str, str]:
    """(browser family, OS family) from a user-agent string; 'unknown' when unrecognized."""
    browser = "unknown"
    if "Edg/" in user_agent or "Edge" in user_agent:
        browser = "Edge"
    elif "Chrome" in user_agent:
        browser = "Chrome"
    elif "Firefox" in user_agent:
        browser = "Firefox"
    elif "Safari" in user_agent:
        browser = "Safari"

    os_family = "unknown"
    if "Windows" in user_agent:
        os_family = "Windows"
    elif "Android" in user_agent:
        os_family = "Android"
    elif "iPhone" in user_agent or "iPad" in user_agent or "iOS" in user_agent:
        os_family = "iOS"
    elif "Mac" in user_agent:
        os_family = "Mac"
    elif "Linux" in user_agent:
        os_family = "Linux"
    return browser, os_family


def is_allowed_ip_change(original: str, current: str) -> bool:
    """Tolerate moves within the same /24 (first three dotted-decimal octets)."""
    if original == current:
        return True
    original_parts = original.split(".")
    current_parts = current.split(".")
    if len(original_parts) != 4 or len(current_parts) != 4:
        return False
    return original_parts[:3] == current_parts[:3]


def is_allowed_user_agent_change(original: str, current: str) -> bool:
    """Minor version changes are fine; a different browser or OS family is not."""
    if original == current:
        return True
    if not original or not current:
        return False
    return extract_browser_info(original) == extract_browser_info(current)


def has_unusual_activity(fingerprint: SessionFingerprint, now: float) -> bool:
    age_minutes = int((now - fingerprint.created_at) // 60)
    count = fingerprint.activity_count
    if age_minutes < RAPID_SESSION_MINUTES and count > RAPID_SESSION_MAX_ACTIVITY:
        return True
    return age_minutes > 0 and count / age_minutes > MAX_ACTIVITY_PER_MINUTE


def _short(session_id: str) -> str:
    return session_id[:8] + "..."


class SessionMonitor:
    """
    Tracks authenticated sessions: new -> tracked, and on any hijack signal
    suspicious -> terminated (fingerprint dropped, session id revoked, 401).
    Per-user state is mutated under a distributed lock.
    """

    def __init__(
        self,
        store: SharedStore,
        audit: AuditLogger,
        lock: DistributedLock,
        on_logout: Optional[Callable[[str, str], Awaitable[Any]]] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._audit = audit
        self._lock = lock
        self._on_logout = on_logout
        self._clock = clock

    @staticmethod
    def _fingerprint_key(user_id: str, session_id: str) -> str:
        return f"session_security:{user_id}:{session_id}"

    @staticmethod
    def _registry_key(user_id: str) -> str:
        return f"user_sessions:{user_id}"

    @staticmethod
    def _revoked_key(session_id: str) -> str:
        return f"session_revoked:{session_id}"

    async def inspect(self, request: InboundRequest) -> Optional[SessionState]:
        """Run the session checks for an authenticated request. Anonymous requests pass (None)."""
        if not request.is_authenticated:
            return None
        user_id, session_id = request.user_id, request.session_id

        if await self._store.exists(self._revoked_key(session_id)):
            raise SessionIntegrityViolation("Session has been terminated. Please log in again.")

        async with self._lock.hold(f"session:{user_id}", ttl=LOCK_TTL):
            now = self._clock()
            key = self._fingerprint_key(user_id, session_id)
            stored = await self._store.get_json(key)

            if stored is None:
                fingerprint = SessionFingerprint(
                    created_at=now,
                    ip=request.client_ip,
                    user_agent=request.user_agent,
                    last_activity=now,
                    activity_count=1,
                )
                state = SessionState.NEW
                await self._store.set_json(key, asdict(fingerprint), SESSION_TTL)
                await self._audit.record(
                    "new_session_created",
                    new_values={
                        "user_id": user_id,
                        "session_id": _short(session_id),
                        "ip_address": request.client_ip,
                        "user_agent": request.user_agent,
                    },
                    severity=Severity.MEDIUM,
                    description=f"New session created for user {user_id}",
                )
            else:
                fingerprint = SessionFingerprint.from_dict(stored)
                reasons = self.detect_hijacking(fingerprint, request.client_ip, request.user_agent, now)
                if reasons:
                    await self._handle_suspicious(request, reasons)
                fingerprint.last_activity = now
                fingerprint.activity_count += 1
                state = SessionState.TRACKED
                await self._store.set_json(key, asdict(fingerprint), SESSION_TTL)

            await self._register(request, now)
        return state

    @staticmethod
    def detect_hijacking(
        fingerprint: SessionFingerprint, ip: str, user_agent: str, now: float
    ) -> list[str]:
        """Reasons this request does not fit the session's fingerprint; empty when it does."""
        reasons = []
        if not is_allowed_ip_change(fingerprint.ip, ip):
            reasons.append("IP address changed")
        if not is_allowed_user_agent_change(fingerprint.user_agent, user_agent):
            reasons.append("User agent changed significantly")
        if has_unusual_activity(fingerprint, now):
            reasons.append("Unusual activity pattern detected")
        return reasons

    async def _handle_suspicious(self, request: InboundRequest, reasons: list[str]) -> None:
        user_id, session_id = request.user_id, request.session_id
        await self._audit.record(
            "suspicious_session_detected",
            new_values={
                "user_id": user_id,
                "session_id": _short(session_id),
                "ip_address": request.client_ip,
                "user_agent": request.user_agent,
                "reasons": reasons,
            },
            severity=Severity.CRITICAL,
            description=f"Suspicious session activity detected for user {user_id}: "
            + ", ".join(reasons),
        )
        await self._invalidate(user_id, session_id)
        raise SessionIntegrityViolation(
            "Session security violation detected. Please log in again."
        )

    async def terminate(self, user_id: str, session_id: str) -> None:
        """Invalidate a session from outside the request path (e.g. explicit logout)."""
        async with self._lock.hold(f"session:{user_id}", ttl=LOCK_TTL):
            await self._invalidate(user_id, session_id)

    async def _invalidate(self, user_id: str, session_id: str) -> None:
        """Caller holds the user's lock. Terminal: the session id can never be used again."""
        await self._store.set_flag(self._revoked_key(session_id), SESSION_TTL)
        await self._store.delete(self._fingerprint_key(user_id, session_id))
        registry = await self._store.get_json(self._registry_key(user_id)) or {}
        if registry.pop(session_id, None) is not None:
            await self._store.set_json(self._registry_key(user_id), registry, SESSION_TTL)
        if self._on_logout is not None:
            await self._on_logout(user_id, session_id)
        logger.info("Session %s of user %s terminated", _short(session_id), user_id)

    async def _register(self, request: InboundRequest, now: float) -> None:
        """Refresh this session in the user's registry and enforce the concurrent cap."""
        user_id = request.user_id
        registry: dict[str, dict[str, Any]] = await self._store.get_json(self._registry_key(user_id)) or {}
        # Re-insert so the current session sorts last among equal timestamps.
        registry.pop(request.session_id, None)
        registry[request.session_id] = {
            "ip_address": request.client_ip,
            "user_agent": request.user_agent,
            "last_activity": now,
        }
        registry = {
            sid: entry
            for sid, entry in registry.items()
            if now - entry["last_activity"] < SESSION_IDLE_SECONDS
        }

        evicted: list[str] = []
        if len(registry) > MAX_CONCURRENT_SESSIONS:
            by_age = sorted(registry, key=lambda sid: registry[sid]["last_activity"])
            evicted = by_age[: len(registry) - MAX_CONCURRENT_SESSIONS]
            for sid in evicted:
                del registry[sid]

        await self._store.set_json(self._registry_key(user_id), registry, SESSION_TTL)

        if evicted:
            for sid in evicted:
                await self._invalidate(user_id, sid)
            await self._audit.record(
                "concurrent_session_limit_enforced",
                new_values={
                    "user_id": user_id,
                    "active_sessions": len(registry),
                    "evicted_sessions": [_short(sid) for sid in evicted],
                },
                severity=Severity.MEDIUM,
                description=f"Concurrent session limit enforced for user {user_id}",
            )
