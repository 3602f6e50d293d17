"""Shared FastAPI dependencies.

Components are built once in ``create_app`` and kept on ``app.state``;
these dependencies hand them to routes.
"""

from datetime import timedelta

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from skyplanner.core.config import Settings
from skyplanner.core.database import get_db
from skyplanner.core.errors import MissingTenantContextError, TokenRevokedError
from skyplanner.core.request_utils import RequestContext
from skyplanner.middleware.auth import blacklist_jti, resolve_identity
from skyplanner.services.auth import AuthService
from skyplanner.services.crypto import SecretCipher
from skyplanner.services.proxy import BackendProxy
from skyplanner.services.sessions import SessionRegistry
from skyplanner.services.tokens import SessionClaims, TokenService
from skyplanner.services.totp import TotpEngine
from skyplanner.services.two_factor import TwoFactorService


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_token_service(request: Request) -> TokenService:
    return request.app.state.tokens


def get_totp_engine(request: Request) -> TotpEngine:
    return request.app.state.totp


def get_secret_cipher(request: Request) -> SecretCipher:
    return request.app.state.cipher


def get_backend_proxy(request: Request) -> BackendProxy:
    return request.app.state.proxy


def get_request_context(request: Request) -> RequestContext:
    return RequestContext.from_request(request)


def get_session_registry(
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
) -> SessionRegistry:
    return SessionRegistry(db, retention=timedelta(days=settings.blacklist_retention_days))


def get_auth_service(
    db: AsyncSession = Depends(get_db),
    tokens: TokenService = Depends(get_token_service),
    settings: Settings = Depends(get_app_settings),
) -> AuthService:
    return AuthService(db, tokens, settings)


def get_two_factor_service(
    db: AsyncSession = Depends(get_db),
    engine: TotpEngine = Depends(get_totp_engine),
    cipher: SecretCipher = Depends(get_secret_cipher),
    settings: Settings = Depends(get_app_settings),
) -> TwoFactorService:
    return TwoFactorService(db, engine, cipher, settings)


async def get_current_identity(
    request: Request,
    ctx: RequestContext = Depends(get_request_context),
    tokens: TokenService = Depends(get_token_service),
    settings: Settings = Depends(get_app_settings),
    registry: SessionRegistry = Depends(get_session_registry),
) -> SessionClaims:
    """Claims of the authenticated caller.

    Reuses the claims SessionAuthMiddleware attached to the request; the
    token is only verified here when the middleware skipped it (development
    bypass). Checks the database blacklist, so tokens revoked
    by any process are refused here even if this process never saw the
    revocation.
    """
    claims: SessionClaims | None = getattr(request.state, "identity", None)
    if claims is None:
        claims = resolve_identity(ctx, tokens, settings.session_cookie_name)
    jti = claims.jti or ""
    if await registry.is_blacklisted(jti):
        if claims.expires_at is not None:
            blacklist_jti(jti, claims.expires_at.timestamp())
        raise TokenRevokedError()
    await registry.touch(jti)
    return claims


async def require_tenant(
    identity: SessionClaims = Depends(get_current_identity),
) -> SessionClaims:
    """Like get_current_identity, but the token must name an organization."""
    if identity.organization_id is None:
        raise MissingTenantContextError()
    return identity
