"""Middleware module for Sky Planner."""

from skyplanner.middleware.auth import SessionAuthMiddleware
from skyplanner.middleware.csrf import CSRFMiddleware
from skyplanner.middleware.security_headers import SecurityHeadersMiddleware

__all__ = [
    "CSRFMiddleware",
    "SecurityHeadersMiddleware",
    "SessionAuthMiddleware",
]
