"""Security headers added to every response."""

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.types import ASGIApp

STATIC_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'",
    "Permissions-Policy": "camera=(), microphone=(), geolocation=(self), payment=()",
}


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Adds framing, sniffing and caching protections.

    API responses carry session-specific data and are never cached. HSTS is
    sent in production whenever the request arrived over HTTPS.
    """

    def __init__(self, app: ASGIApp, hsts: bool = True):
        super().__init__(app)
        self.hsts = hsts

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        response = await call_next(request)

        for name, value in STATIC_HEADERS.items():
            response.headers.setdefault(name, value)

        if request.url.path.startswith("/api/"):
            response.headers["Cache-Control"] = "no-store"

        if self.hsts and (
            request.headers.get("x-forwarded-proto", "") == "https"
            or request.url.scheme == "https"
        ):
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"

        return response
