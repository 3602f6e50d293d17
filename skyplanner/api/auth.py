"""Authentication API endpoints."""

import logging
import re
import time
from collections import defaultdict

from fastapi import APIRouter, Depends, Response

from skyplanner.api.deps import (
    get_app_settings,
    get_auth_service,
    get_current_identity,
    get_request_context,
    get_two_factor_service,
)
from skyplanner.core.config import Settings
from skyplanner.core.errors import AccountInactiveError, AuthError, RateLimitedError
from skyplanner.core.request_utils import RequestContext
from skyplanner.middleware.csrf import generate_csrf_token, set_csrf_cookie
from skyplanner.models import Klient
from skyplanner.schemas.auth import (
    CsrfTokenData,
    IdentityData,
    LoginData,
    LoginRequest,
    OrganizationData,
    TokenData,
    UserData,
    Verify2FARequest,
)
from skyplanner.schemas.common import Envelope, MessageData
from skyplanner.services.auth import AuthService
from skyplanner.services.tokens import SessionClaims, clear_session_cookie, set_session_cookie
from skyplanner.services.two_factor import TwoFactorService

logger = logging.getLogger(__name__)

# Rate limiting for login attempts, keyed by client IP
_login_attempts: dict[str, list[float]] = defaultdict(list)

_CSRF_TOKEN_RE = re.compile(r"[0-9a-f]{64}")


def _check_login_rate_limit(client_ip: str, settings: Settings) -> None:
    """Check if a client IP has exceeded the login attempt rate limit."""
    now = time.monotonic()
    attempts = _login_attempts[client_ip]
    _login_attempts[client_ip] = [t for t in attempts if now - t < settings.login_window_seconds]
    if len(_login_attempts[client_ip]) >= settings.login_max_attempts:
        logger.warning(f"Login rate limit exceeded for {client_ip}")
        raise RateLimitedError("For mange innloggingsforsøk. Prøv igjen senere.")


def _record_login_attempt(client_ip: str) -> None:
    _login_attempts[client_ip].append(time.monotonic())


def reset_login_attempts() -> None:
    _login_attempts.clear()


async def _user_data(auth: AuthService, klient: Klient) -> UserData:
    organization = await auth.get_organization(klient.organization_id)
    return UserData(
        id=klient.id,
        navn=klient.navn,
        epost=klient.epost,
        organization=OrganizationData(
            id=organization.id, navn=organization.navn, slug=organization.slug
        )
        if organization
        else None,
    )


router = APIRouter(prefix="/api/auth", tags=["auth"])
csrf_router = APIRouter(prefix="/api", tags=["auth"])


@router.post("/login", response_model=Envelope[LoginData], response_model_exclude_none=True)
async def login(
    body: LoginRequest,
    response: Response,
    ctx: RequestContext = Depends(get_request_context),
    auth: AuthService = Depends(get_auth_service),
    settings: Settings = Depends(get_app_settings),
) -> Envelope[LoginData]:
    """Password login.

    Accounts with 2FA get a short-lived pending session token instead of a
    session; the login is completed by ``/verify-2fa``.
    """
    client_ip = ctx.client_ip or "unknown"
    _check_login_rate_limit(client_ip, settings)

    try:
        klient = await auth.authenticate(body.epost, body.passord)
    except AuthError:
        _record_login_attempt(client_ip)
        raise

    if klient.totp_enabled:
        pending_token = await auth.start_pending_login(klient, ctx)
        return Envelope(data=LoginData(requires_2fa=True, session_token=pending_token))

    issued = await auth.start_session(klient, ctx)
    set_session_cookie(response, issued.token, settings)
    return Envelope(data=LoginData(token=issued.token, user=await _user_data(auth, klient)))


@router.post("/verify-2fa", response_model=Envelope[LoginData], response_model_exclude_none=True)
async def verify_two_factor_login(
    body: Verify2FARequest,
    response: Response,
    ctx: RequestContext = Depends(get_request_context),
    auth: AuthService = Depends(get_auth_service),
    two_factor: TwoFactorService = Depends(get_two_factor_service),
    settings: Settings = Depends(get_app_settings),
) -> Envelope[LoginData]:
    """Complete a 2FA login with a TOTP code or a backup code."""
    pending = await auth.claim_pending_login(body.session_token)
    used_backup_code = await two_factor.verify_login(pending.user_id, body.code, ctx)

    klient = await auth.get_klient(pending.user_id)
    if klient is None or not klient.aktiv:
        raise AccountInactiveError()

    await auth.finish_pending_login(pending)
    issued = await auth.start_session(klient, ctx)
    set_session_cookie(response, issued.token, settings)
    return Envelope(
        data=LoginData(
            token=issued.token,
            user=await _user_data(auth, klient),
            used_backup_code=used_backup_code,
        )
    )


@router.post("/logout", response_model=Envelope[MessageData])
async def logout(
    response: Response,
    identity: SessionClaims = Depends(get_current_identity),
    auth: AuthService = Depends(get_auth_service),
    settings: Settings = Depends(get_app_settings),
) -> Envelope[MessageData]:
    """Revoke the current token and end its session."""
    await auth.end_session(identity)
    clear_session_cookie(response, settings)
    return Envelope(data=MessageData(message="Logget ut"))


@router.post("/refresh", response_model=Envelope[TokenData])
async def refresh(
    response: Response,
    identity: SessionClaims = Depends(get_current_identity),
    auth: AuthService = Depends(get_auth_service),
    settings: Settings = Depends(get_app_settings),
) -> Envelope[TokenData]:
    """Swap the current token for a fresh one; the old one is revoked."""
    issued = await auth.refresh_session(identity)
    set_session_cookie(response, issued.token, settings)
    expires_at = issued.claims.expires_at
    return Envelope(
        data=TokenData(
            token=issued.token,
            expires_at=int(expires_at.timestamp()) if expires_at else 0,
        )
    )


@router.get("/me", response_model=Envelope[IdentityData])
async def me(
    identity: SessionClaims = Depends(get_current_identity),
    auth: AuthService = Depends(get_auth_service),
) -> Envelope[IdentityData]:
    """Get the current identity and account."""
    klient = await auth.get_klient(identity.user_id) if identity.user_type == "klient" else None
    return Envelope(
        data=IdentityData(
            user_id=identity.user_id,
            user_type=identity.user_type,
            organization_id=identity.organization_id,
            organization_slug=identity.organization_slug,
            user=await _user_data(auth, klient) if klient else None,
        )
    )


@csrf_router.get("/csrf-token", response_model=Envelope[CsrfTokenData])
async def csrf_token(
    response: Response,
    ctx: RequestContext = Depends(get_request_context),
    settings: Settings = Depends(get_app_settings),
) -> Envelope[CsrfTokenData]:
    """Return the CSRF token for this browser, issuing one if needed."""
    token = ctx.cookies.get(settings.csrf_cookie_name)
    if not token or not _CSRF_TOKEN_RE.fullmatch(token):
        token = generate_csrf_token()
    set_csrf_cookie(response, token, settings)
    return Envelope(data=CsrfTokenData(token=token))
