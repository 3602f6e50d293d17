"""API routers."""

from skyplanner.api.auth import csrf_router
from skyplanner.api.auth import router as auth_router
from skyplanner.api.health import router as health_router
from skyplanner.api.organization import router as organization_router
from skyplanner.api.proxy import router as proxy_router
from skyplanner.api.sessions import router as sessions_router
from skyplanner.api.two_factor import router as two_factor_router

__all__ = [
    "auth_router",
    "csrf_router",
    "health_router",
    "organization_router",
    "proxy_router",
    "sessions_router",
    "two_factor_router",
]
