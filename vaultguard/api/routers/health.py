# vaultguard/api/routers/health.py

from typing import Annotated

from fastapi import APIRouter, Depends, Request

from vaultguard.api.dependencies import get_store
from vaultguard.config.settings import get_settings
from vaultguard.infrastructure.cache.redis_client import RedisClient
from vaultguard.scalability.exceptions import StoreUnavailableError
from vaultguard.scalability.store import SharedStore

router = APIRouter()


@router.get("/health")
async def health(request: Request, store: Annotated[SharedStore, Depends(get_store)]):
    """Liveness plus shared-store reachability; rate limits and sessions live in that store."""
    settings = get_settings()
    try:
        store_ok = await store.ping()
    except StoreUnavailableError:
        store_ok = False
    return {
        "status": "ok" if store_ok else "degraded",
        "shared_store": {
            "backend": "redis" if isinstance(store, RedisClient) else "memory",
            "reachable": store_ok,
        },
        "correlation_id": getattr(request.state, "correlation_id", None),
        "environment": settings.environment,
        "version": settings.version,
    }
