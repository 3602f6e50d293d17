"""Password authentication, login sessions and pending two-factor logins."""

import hashlib
import logging
import secrets
from datetime import timedelta
from functools import lru_cache

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from skyplanner.core.config import Settings
from skyplanner.core.errors import (
    AccountInactiveError,
    AuthError,
    InvalidCredentialsError,
    RateLimitedError,
)
from skyplanner.core.request_utils import RequestContext
from skyplanner.models import Klient, Organization, TotpPendingSession
from skyplanner.models.base import as_utc, utcnow
from skyplanner.services.sessions import SessionRegistry
from skyplanner.services.tokens import IssuedToken, SessionClaims, TokenService

logger = logging.getLogger(__name__)

# Argon2 password hasher with recommended parameters
# Memory: 64 MiB, Time: 3 iterations, Parallelism: 4
ph = PasswordHasher(
    time_cost=3,
    memory_cost=65536,
    parallelism=4,
    hash_len=32,
    salt_len=16,
)


def hash_password(password: str) -> str:
    """Hash a password using Argon2id."""
    return ph.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    """Verify a password against its hash using constant-time comparison."""
    try:
        return ph.verify(password_hash, password)
    except (VerificationError, InvalidHashError):
        return False


@lru_cache(maxsize=1)
def _dummy_hash() -> str:
    return hash_password("dummy-password-for-timing")


def hash_session_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class AuthService:
    """Login, logout and the session lifecycle around them."""

    def __init__(self, db: AsyncSession, tokens: TokenService, settings: Settings):
        self.db = db
        self.tokens = tokens
        self.settings = settings
        self.sessions = SessionRegistry(
            db, retention=timedelta(days=settings.blacklist_retention_days)
        )

    async def get_klient(self, user_id: int) -> Klient | None:
        result = await self.db.execute(select(Klient).where(Klient.id == user_id))
        return result.scalar_one_or_none()

    async def get_klient_by_epost(self, epost: str) -> Klient | None:
        result = await self.db.execute(
            select(Klient).where(Klient.epost == epost.strip().lower())
        )
        return result.scalar_one_or_none()

    async def get_organization(self, organization_id: int | None) -> Organization | None:
        if organization_id is None:
            return None
        result = await self.db.execute(
            select(Organization).where(Organization.id == organization_id)
        )
        return result.scalar_one_or_none()

    async def authenticate(self, epost: str, password: str) -> Klient:
        """Check credentials and return the account.

        Raises InvalidCredentialsError for both "unknown e-mail" and "wrong
        password" to prevent account enumeration.
        """
        klient = await self.get_klient_by_epost(epost)

        if klient is None:
            # Same cost as a real verification
            verify_password(password, _dummy_hash())
            raise InvalidCredentialsError()

        if not verify_password(password, klient.password_hash):
            raise InvalidCredentialsError()

        if not klient.aktiv:
            raise AccountInactiveError()

        return klient

    async def start_session(self, klient: Klient, ctx: RequestContext) -> IssuedToken:
        """Issue a session token and record the login as an active session."""
        organization = await self.get_organization(klient.organization_id)
        issued = self.tokens.issue(
            SessionClaims(
                user_id=klient.id,
                user_type="klient",
                organization_id=organization.id if organization else None,
                organization_slug=organization.slug if organization else None,
                epost=klient.epost,
            )
        )
        await self.sessions.create(
            user_id=klient.id,
            user_type="klient",
            jti=issued.claims.jti or "",
            expires_at=issued.claims.expires_at or utcnow() + self.tokens.default_ttl,
            ip_address=ctx.client_ip,
            user_agent=ctx.user_agent,
        )
        klient.last_login_at = utcnow()
        await self.db.flush()
        logger.info(f"Klient {klient.id} logged in")
        return issued

    async def end_session(self, claims: SessionClaims) -> None:
        """Logout: revoke the token and drop its active session."""
        jti = claims.jti or ""
        await self.sessions.revoke(
            jti=jti,
            user_id=claims.user_id,
            user_type=claims.user_type,
            reason="logout",
            expires_at=claims.expires_at or utcnow() + self.tokens.default_ttl,
        )
        await self.sessions.end(jti)
        logger.info(f"{claims.user_type} {claims.user_id} logged out")

    async def refresh_session(self, claims: SessionClaims) -> IssuedToken:
        """Replace the current token with a fresh one carrying the same identity."""
        klient = await self.get_klient(claims.user_id)
        if klient is None or not klient.aktiv:
            raise AccountInactiveError()

        organization = await self.get_organization(klient.organization_id)
        issued = self.tokens.issue(
            SessionClaims(
                user_id=klient.id,
                user_type=claims.user_type,
                organization_id=organization.id if organization else None,
                organization_slug=organization.slug if organization else None,
                epost=klient.epost,
            )
        )
        old_jti = claims.jti or ""
        await self.sessions.rotate(
            old_jti=old_jti,
            new_jti=issued.claims.jti or "",
            expires_at=issued.claims.expires_at or utcnow() + self.tokens.default_ttl,
        )
        await self.sessions.revoke(
            jti=old_jti,
            user_id=claims.user_id,
            user_type=claims.user_type,
            reason="refreshed",
            expires_at=claims.expires_at or utcnow() + self.tokens.default_ttl,
        )
        return issued

    async def start_pending_login(self, klient: Klient, ctx: RequestContext) -> str:
        """Park a password-verified login until the second factor arrives.

        Returns the raw session token handed to the client; only its hash
        is stored.
        """
        raw_token = secrets.token_urlsafe(32)
        self.db.add(
            TotpPendingSession(
                user_id=klient.id,
                user_type="klient",
                session_token_hash=hash_session_token(raw_token),
                ip_address=ctx.client_ip,
                user_agent=(ctx.user_agent or "")[:512] or None,
                attempts=0,
                expires_at=utcnow() + timedelta(minutes=self.settings.pending_2fa_ttl_minutes),
            )
        )
        await self.db.flush()
        logger.info(f"Klient {klient.id} passed password check, awaiting 2FA")
        return raw_token

    async def claim_pending_login(self, raw_token: str) -> TotpPendingSession:
        """Look up a pending login and count this attempt against it.

        The attempt is committed immediately so failed codes cannot reset it.

        Raises:
            AuthError: Unknown or expired pending login
            RateLimitedError: Too many attempts
        """
        result = await self.db.execute(
            select(TotpPendingSession)
            .where(TotpPendingSession.session_token_hash == hash_session_token(raw_token))
            .with_for_update()
        )
        pending = result.scalar_one_or_none()
        if pending is None or as_utc(pending.expires_at) < utcnow():
            raise AuthError("Ugyldig eller utløpt sesjon. Logg inn på nytt.")

        if pending.attempts >= self.settings.pending_2fa_max_attempts:
            await self.db.delete(pending)
            await self.db.commit()
            logger.warning(f"Too many 2FA attempts for klient {pending.user_id}")
            raise RateLimitedError("For mange forsøk. Logg inn på nytt.")

        pending.attempts += 1
        await self.db.commit()
        return pending

    async def finish_pending_login(self, pending: TotpPendingSession) -> None:
        await self.db.delete(pending)
        await self.db.flush()
