"""CSRF protection using the double-submit cookie pattern.

State-changing API requests must echo the value of the ``__csrf`` cookie in
the ``X-CSRF-Token`` header. A cross-site page can make the browser send the
cookie but cannot read it, so it cannot produce the header.

Before the token comparison, the ``Origin`` header (or ``Referer`` when the
browser sent no ``Origin``) must name the same host the request was sent to.
"""

import logging
import secrets
from urllib.parse import urlparse

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import JSONResponse
from starlette.types import ASGIApp

from skyplanner.core.config import Settings
from skyplanner.core.errors import CSRFValidationError, InvalidOriginError
from skyplanner.core.request_utils import RequestContext

logger = logging.getLogger(__name__)

UNSAFE_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})


def generate_csrf_token() -> str:
    """64 hex characters (32 random bytes)."""
    return secrets.token_hex(32)


def tokens_match(cookie_token: str | None, header_token: str | None) -> bool:
    """Compare two tokens without short-circuiting on the first differing byte."""
    if not cookie_token or not header_token:
        return False
    a = cookie_token.encode("utf-8")
    b = header_token.encode("utf-8")
    if len(a) != len(b):
        return False
    result = 0
    for x, y in zip(a, b):
        result |= x ^ y
    return result == 0


def is_exempt(path: str, exempt_paths: list[str]) -> bool:
    return any(path == exempt or path.startswith(exempt + "/") for exempt in exempt_paths)


def requires_csrf_check(ctx: RequestContext, exempt_paths: list[str]) -> bool:
    return ctx.method in UNSAFE_METHODS and ctx.is_api and not is_exempt(ctx.path, exempt_paths)


def url_host(url: str) -> str | None:
    """``host[:port]`` of an absolute URL, or None if it has no host part."""
    try:
        netloc = urlparse(url).netloc
    except ValueError:
        return None
    host = netloc.rpartition("@")[2].lower()
    return host or None


def check_origin(ctx: RequestContext) -> None:
    """Raise InvalidOriginError if Origin (or, failing that, Referer) is cross-host.

    An Origin that cannot be parsed, including ``null``, is rejected. An
    unparsable Referer is let through, as some browsers strip or mangle it.
    """
    host = (ctx.header("host") or "").lower()
    if not host:
        return

    origin = ctx.header("origin")
    if origin:
        if url_host(origin) != host:
            raise InvalidOriginError()
        return

    referer = ctx.header("referer")
    if referer:
        referer_host = url_host(referer)
        if referer_host is not None and referer_host != host:
            raise InvalidOriginError()


def check_csrf(ctx: RequestContext, cookie_name: str, header_name: str) -> None:
    """Raise CSRFValidationError unless cookie and header tokens match."""
    if not tokens_match(ctx.cookies.get(cookie_name), ctx.header(header_name)):
        raise CSRFValidationError()


def set_csrf_cookie(response: Response, token: str, settings: Settings) -> None:
    # Readable by page scripts so they can copy it into the header
    response.set_cookie(
        key=settings.csrf_cookie_name,
        value=token,
        max_age=settings.csrf_cookie_max_age,
        path="/",
        secure=settings.is_production,
        httponly=False,
        samesite="strict",
    )


class CSRFMiddleware(BaseHTTPMiddleware):
    """Rejects unsafe API requests that are cross-origin or lack a matching CSRF token (403)."""

    def __init__(self, app: ASGIApp, settings: Settings):
        super().__init__(app)
        self.settings = settings

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        ctx = RequestContext.from_request(request)

        if requires_csrf_check(ctx, self.settings.csrf_exempt_paths):
            try:
                check_origin(ctx)
                check_csrf(ctx, self.settings.csrf_cookie_name, self.settings.csrf_header_name)
            except CSRFValidationError as e:
                logger.warning(
                    f"CSRF validation failed: {ctx.method} {ctx.path} from {ctx.client_ip}",
                    extra={"reason": e.message, "client_ip": ctx.client_ip},
                )
                return JSONResponse(status_code=e.status_code, content=e.to_envelope())

        response = await call_next(request)

        # Page navigations hand out a token if the browser has none yet
        if (
            ctx.method == "GET"
            and not ctx.is_api
            and self.settings.csrf_cookie_name not in ctx.cookies
        ):
            set_csrf_cookie(response, generate_csrf_token(), self.settings)

        return response
