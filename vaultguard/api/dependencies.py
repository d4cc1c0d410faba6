"""Dependency wiring: shared store, audit sink, security components, pipeline."""

import logging
from typing import Annotated, Optional

from fastapi import Depends, Request

from vaultguard.audit.logger import AuditLogger
from vaultguard.audit.repository import AuditRepository, InMemoryAuditRepository
from vaultguard.config.settings import get_settings
from vaultguard.infrastructure.cache.redis_client import RedisClient
from vaultguard.infrastructure.database.audit_repository_db import DbAuditRepository
from vaultguard.infrastructure.database.session import create_engine, create_session_factory
from vaultguard.pipeline.orchestrator import SecurityPipeline
from vaultguard.scalability.distributed_lock import DistributedLock
from vaultguard.scalability.store import InMemorySharedStore, SharedStore
from vaultguard.security.key_manager import KeyManager
from vaultguard.security.password_engine import PasswordCryptoEngine
from vaultguard.security.rate_limiter import RateLimiter
from vaultguard.security.sanitizer import InputSanitizer
from vaultguard.security.session_monitor import SessionMonitor

logger = logging.getLogger(__name__)

_store: Optional[SharedStore] = None
_audit_repository: Optional[AuditRepository] = None
_audit_logger: Optional[AuditLogger] = None
_rate_limiter: Optional[RateLimiter] = None
_session_monitor: Optional[SessionMonitor] = None
_key_manager: Optional[KeyManager] = None
_pipeline: Optional[SecurityPipeline] = None


def get_store() -> SharedStore:
    """Redis when configured, otherwise the in-process store (single node only)."""
    global _store
    if _store is None:
        settings = get_settings()
        if settings.redis_url:
            _store = RedisClient(url=settings.redis_url)
        else:
            logger.warning("REDIS_URL not set; security state is local to this process")
            _store = InMemorySharedStore()
    return _store


def get_audit_repository() -> AuditRepository:
    global _audit_repository
    if _audit_repository is None:
        settings = get_settings()
        if settings.database_url:
            engine = create_engine(settings.database_url)
            _audit_repository = DbAuditRepository(create_session_factory(engine))
        else:
            _audit_repository = InMemoryAuditRepository()
    return _audit_repository


def get_audit_logger() -> AuditLogger:
    global _audit_logger
    if _audit_logger is None:
        _audit_logger = AuditLogger(get_audit_repository())
    return _audit_logger


def get_rate_limiter() -> RateLimiter:
    global _rate_limiter
    if _rate_limiter is None:
        _rate_limiter = RateLimiter(
            get_store(),
            get_audit_logger(),
            penalty_delay_enabled=get_settings().penalty_delay_enabled,
        )
    return _rate_limiter


def get_session_monitor() -> SessionMonitor:
    global _session_monitor
    if _session_monitor is None:
        store = get_store()
        _session_monitor = SessionMonitor(store, get_audit_logger(), DistributedLock(store))
    return _session_monitor


def get_key_manager() -> KeyManager:
    global _key_manager
    if _key_manager is None:
        settings = get_settings()
        _key_manager = KeyManager(
            get_store(),
            get_audit_logger(),
            active_key=settings.encryption_key,
            key_version=settings.key_version,
            master_secret=settings.master_secret,
            backup_dir=settings.key_backup_dir,
        )
    return _key_manager


def get_password_engine(
    key_manager: Annotated[KeyManager, Depends(get_key_manager)],
    audit: Annotated[AuditLogger, Depends(get_audit_logger)],
) -> PasswordCryptoEngine:
    return PasswordCryptoEngine(key_manager, audit)


def get_pipeline() -> SecurityPipeline:
    global _pipeline
    if _pipeline is None:
        settings = get_settings()
        rate_limiter = get_rate_limiter()
        audit = get_audit_logger()
        _pipeline = SecurityPipeline(
            rate_limiter,
            InputSanitizer(audit, rate_limiter.add_penalty),
            get_session_monitor(),
            audit,
            admin_path_prefix=settings.admin_path_prefix,
            audit_skip_paths=settings.audit_skip_paths,
        )
    return _pipeline


def reset_dependencies() -> None:
    """Drop every singleton so the next request rebuilds them from current settings."""
    global _store, _audit_repository, _audit_logger, _rate_limiter
    global _session_monitor, _key_manager, _pipeline
    _store = None
    _audit_repository = None
    _audit_logger = None
    _rate_limiter = None
    _session_monitor = None
    _key_manager = None
    _pipeline = None


def get_sanitized_params(request: Request) -> dict:
    """Payload after sanitization (set by the pipeline middleware)."""
    return getattr(request.state, "sanitized_params", None) or {}


def get_correlation_id(request: Request) -> str:
    """Extract correlation_id from request.state (set by middleware)."""
    return getattr(request.state, "correlation_id", "") or ""
