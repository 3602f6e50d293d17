"""Session authentication middleware.

Every ``/api/*`` request outside the public allowlist must carry a valid
session token, either as ``Authorization: Bearer <token>`` or in the
session cookie. Verified claims are attached to ``request.state.identity``.

Per-request flow:
1. Public path (or the development bypass flag) -> passes through anonymously
2. No token -> 401 with ``requireLogin``
3. Token fails verification -> 401, expired and invalid reported separately
4. jti in the revocation cache -> 401
5. Otherwise -> identity attached, request continues

Route dependencies check the claims attached here against the database
blacklist, which is the source of truth. Revocations found there are copied
into the cache, so later requests with the same token stop at this layer.
"""

import logging
import threading
import time

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import JSONResponse
from starlette.types import ASGIApp

from skyplanner.core.errors import (
    AuthError,
    InvalidTokenError,
    TokenExpiredError,
    TokenRevokedError,
)
from skyplanner.core.request_utils import RequestContext
from skyplanner.services.tokens import (
    SessionClaims,
    TokenErrorKind,
    TokenService,
    extract_token,
)

logger = logging.getLogger(__name__)


# In-process cache of revoked jtis (jti -> token expiry timestamp). Filled only
# from committed database blacklist rows.
_blacklisted_jtis: dict[str, float] = {}
_blacklist_lock = threading.Lock()


def blacklist_jti(jti: str, exp: float) -> None:
    """Add a jti to the in-memory revocation cache until ``exp``."""
    with _blacklist_lock:
        _blacklisted_jtis[jti] = exp


def is_jti_blacklisted(jti: str) -> bool:
    with _blacklist_lock:
        exp = _blacklisted_jtis.get(jti)
        if exp is None:
            return False
        if time.time() > exp:
            del _blacklisted_jtis[jti]
            return False
        return True


def cleanup_expired_jti_cache() -> int:
    """Remove expired entries from the in-memory cache. Returns count removed."""
    now = time.time()
    with _blacklist_lock:
        expired = [jti for jti, exp in _blacklisted_jtis.items() if now > exp]
        for jti in expired:
            del _blacklisted_jtis[jti]
        return len(expired)


def clear_jti_cache() -> None:
    with _blacklist_lock:
        _blacklisted_jtis.clear()


# API paths that authenticate on their own or are deliberately public
PUBLIC_PATHS = [
    "/api/auth/login",
    "/api/auth/verify-2fa",
    "/api/auth/register",
    "/api/auth/forgot-password",
    "/api/auth/reset-password",
    "/api/auth/verify-reset-token",
    "/api/csrf-token",
    "/api/webhooks",
    "/api/health",
    # The backend verifies the forwarded session itself
    "/api/app",
]


def is_public_path(path: str, public_paths: list[str] = PUBLIC_PATHS) -> bool:
    """Exact or segment-boundary match against the allowlist."""
    return any(path == public or path.startswith(public + "/") for public in public_paths)


def resolve_identity(ctx: RequestContext, tokens: TokenService, cookie_name: str) -> SessionClaims:
    """Verify the request's session token and return its claims.

    Raises:
        AuthError: No token present
        TokenExpiredError: Token past its expiry
        InvalidTokenError: Bad signature or malformed token
        TokenRevokedError: jti found in the in-memory revocation cache
    """
    token = extract_token(ctx, cookie_name)
    if not token:
        raise AuthError()

    result = tokens.verify(token)
    if result.error == TokenErrorKind.EXPIRED:
        raise TokenExpiredError()
    if not result.ok or result.claims is None:
        raise InvalidTokenError()

    if is_jti_blacklisted(result.claims.jti or ""):
        raise TokenRevokedError()
    return result.claims


def auth_error_response(error: AuthError) -> JSONResponse:
    return JSONResponse(
        status_code=error.status_code,
        content=error.to_envelope(),
        headers={"WWW-Authenticate": "Bearer"},
    )


class SessionAuthMiddleware(BaseHTTPMiddleware):
    """Rejects unauthenticated API requests before they reach a route."""

    def __init__(
        self,
        app: ASGIApp,
        tokens: TokenService,
        cookie_name: str,
        public_paths: list[str] | None = None,
        bypass: bool = False,
    ):
        super().__init__(app)
        self.tokens = tokens
        self.cookie_name = cookie_name
        self.public_paths = public_paths if public_paths is not None else PUBLIC_PATHS
        self.bypass = bypass

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        path = request.url.path

        # CORS preflight is answered by CORSMiddleware
        if request.method == "OPTIONS":
            return await call_next(request)

        if not (path == "/api" or path.startswith("/api/")):
            return await call_next(request)

        if self.bypass or is_public_path(path, self.public_paths):
            return await call_next(request)

        ctx = RequestContext.from_request(request)
        try:
            claims = resolve_identity(ctx, self.tokens, self.cookie_name)
        except TokenExpiredError as e:
            logger.debug(f"Expired token for: {request.method} {path}")
            return auth_error_response(e)
        except AuthError as e:
            logger.warning(f"Rejected request ({e.code}): {request.method} {path}")
            return auth_error_response(e)

        request.state.identity = claims
        return await call_next(request)
