"""Sky Planner - FastAPI Application Factory."""

import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from skyplanner.api import (
    auth_router,
    csrf_router,
    health_router,
    organization_router,
    proxy_router,
    sessions_router,
    two_factor_router,
)
from skyplanner.api.error_handling import register_exception_handlers
from skyplanner.core import async_session_maker, get_settings, setup_logging
from skyplanner.core.config import Settings
from skyplanner.core.logging import get_logger
from skyplanner.middleware import CSRFMiddleware, SecurityHeadersMiddleware, SessionAuthMiddleware
from skyplanner.middleware.auth import cleanup_expired_jti_cache
from skyplanner.services.crypto import SecretCipher
from skyplanner.services.proxy import BackendProxy
from skyplanner.services.sessions import cleanup_expired_entries
from skyplanner.services.tokens import TokenService
from skyplanner.services.totp import TotpEngine

logger = get_logger("main")

CLEANUP_INTERVAL_SECONDS = 300


async def _expired_entries_cleanup_loop() -> None:
    """Periodically purge expired blacklist entries, sessions and pending logins."""
    while True:
        await asyncio.sleep(CLEANUP_INTERVAL_SECONDS)
        try:
            async with async_session_maker() as db:
                removed = await cleanup_expired_entries(db)
                await db.commit()
            removed["jti_cache"] = cleanup_expired_jti_cache()
            if any(removed.values()):
                logger.info(f"Cleaned up expired entries: {removed}")
        except Exception:
            logger.exception("Error cleaning up expired entries")


def _task_done_callback(task: asyncio.Task[None]) -> None:
    """Log unhandled exceptions from background tasks."""
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error(f"Background task {task.get_name()} failed: {exc}")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup/shutdown."""
    settings: Settings = app.state.settings
    setup_logging(level=settings.log_level, format_type=settings.log_format)
    logger.info(f"Starting {settings.app_name} v{settings.app_version} ({settings.environment})")

    for warning in settings.check_security_configuration():
        logger.warning(f"Security configuration: {warning}")

    cleanup_task = asyncio.create_task(
        _expired_entries_cleanup_loop(), name="expired-entries-cleanup"
    )
    cleanup_task.add_done_callback(_task_done_callback)

    yield

    logger.info("Shutting down...")
    cleanup_task.cancel()
    try:
        await cleanup_task
    except asyncio.CancelledError:
        pass
    await app.state.proxy.close()


def create_app(settings: Settings | None = None, proxy: BackendProxy | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Every component receives the same immutable settings object.
    """
    settings = settings or get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="Authentication, two-factor and session security for Sky Planner",
        version=settings.app_version,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
    )

    tokens = TokenService.from_settings(settings)
    app.state.settings = settings
    app.state.tokens = tokens
    app.state.totp = TotpEngine.from_settings(settings)
    app.state.cipher = SecretCipher.from_settings(settings)
    app.state.proxy = proxy or BackendProxy.from_settings(settings)

    register_exception_handlers(app)

    # Starlette runs middleware in reverse order of registration:
    # CORS -> security headers -> CSRF -> session auth -> route
    app.add_middleware(
        SessionAuthMiddleware,
        tokens=tokens,
        cookie_name=settings.session_cookie_name,
        bypass=settings.auth_bypass and not settings.is_production,
    )
    app.add_middleware(CSRFMiddleware, settings=settings)
    app.add_middleware(SecurityHeadersMiddleware, hsts=settings.is_production)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=[
            "Authorization",
            "Content-Type",
            "Accept",
            settings.csrf_header_name,
        ],
    )

    app.include_router(health_router)
    app.include_router(auth_router)
    app.include_router(csrf_router)
    app.include_router(two_factor_router)
    app.include_router(sessions_router)
    app.include_router(organization_router)
    app.include_router(proxy_router)

    @app.get("/")
    async def root() -> dict[str, str]:
        """Root endpoint with service information."""
        return {
            "name": settings.app_name,
            "version": settings.app_version,
        }

    return app


# Application instance
app = create_app()
