# vaultguard/main.py

import logging

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from vaultguard.api.dependencies import get_pipeline
from vaultguard.api.middleware import CorrelationIdMiddleware, SecurityPipelineMiddleware
from vaultguard.api.routers import health, keys, passwords
from vaultguard.config.logging import configure_logging
from vaultguard.config.settings import get_settings
from vaultguard.scalability.exceptions import StoreUnavailableError
from vaultguard.security.exceptions import SecurityAbort, SecurityError

logger = logging.getLogger(__name__)

settings = get_settings()
configure_logging(settings.log_level)

app = FastAPI(
    title=settings.app_name,
    version=settings.version,
    debug=settings.debug,
)

# Middleware order: last added runs first (outermost). Request flow: CorrelationId -> SecurityPipeline.
app.add_middleware(
    SecurityPipelineMiddleware,
    pipeline_factory=get_pipeline,
    trusted_proxies=settings.trusted_proxies,
)
app.add_middleware(CorrelationIdMiddleware)


@app.exception_handler(SecurityAbort)
async def security_abort_handler(request, exc: SecurityAbort):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.exception_handler(StoreUnavailableError)
async def store_unavailable_handler(request, exc: StoreUnavailableError):
    return JSONResponse(
        status_code=503,
        content={"detail": "Security checks temporarily unavailable"},
    )


@app.exception_handler(SecurityError)
async def security_error_handler(request, exc: SecurityError):
    logger.error("Security operation failed: %s", exc.message)
    return JSONResponse(
        status_code=500,
        content={"detail": "Security operation failed"},
    )


@app.exception_handler(Exception)
async def unexpected_error_handler(request, exc: Exception):
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )


# Routers: /health, /api/passwords, /admin/keys
app.include_router(health.router)
app.include_router(passwords.router, prefix="/api/passwords")
app.include_router(keys.router, prefix=f"{settings.admin_path_prefix.rstrip('/')}/keys")
