"""Session token signing, verification and transport.

Tokens are HS256 JWTs. Claim names are shared with the backend API, which
verifies the same cookie after it passes through the reverse proxy.
"""

import logging
import uuid
from dataclasses import dataclass, replace
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any

import jwt
from starlette.responses import Response

from skyplanner.core.config import Settings
from skyplanner.core.request_utils import RequestContext

logger = logging.getLogger(__name__)

REQUIRED_CLAIMS = ["exp", "iat", "jti"]


class TokenErrorKind(str, Enum):
    """Why a token failed verification."""

    EXPIRED = "expired"
    INVALID = "invalid"


@dataclass(frozen=True)
class SessionClaims:
    """Identity and tenant context carried by a session token."""

    user_id: int
    user_type: str = "klient"
    organization_id: int | None = None
    organization_slug: str | None = None
    epost: str | None = None
    jti: str | None = None
    issued_at: datetime | None = None
    expires_at: datetime | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "userId": self.user_id,
            "type": self.user_type,
            "organizationId": self.organization_id,
            "organizationSlug": self.organization_slug,
            "jti": self.jti,
        }
        if self.epost is not None:
            payload["epost"] = self.epost
        return payload

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "SessionClaims":
        """Build claims from a decoded payload.

        Raises:
            ValueError: If the identity claims are missing or mistyped
        """
        user_id = payload.get("userId")
        jti = payload.get("jti")
        if not isinstance(user_id, int) or isinstance(user_id, bool):
            raise ValueError("userId claim missing or not an integer")
        if not isinstance(jti, str) or not jti:
            raise ValueError("jti claim missing")

        organization_id = payload.get("organizationId")
        if organization_id is not None and not isinstance(organization_id, int):
            raise ValueError("organizationId claim is not an integer")

        return cls(
            user_id=user_id,
            user_type=str(payload.get("type") or "klient"),
            organization_id=organization_id,
            organization_slug=payload.get("organizationSlug"),
            epost=payload.get("epost"),
            jti=jti,
            issued_at=datetime.fromtimestamp(payload["iat"], tz=UTC),
            expires_at=datetime.fromtimestamp(payload["exp"], tz=UTC),
        )


@dataclass(frozen=True)
class TokenVerification:
    """Outcome of ``TokenService.verify``: claims on success, an error kind otherwise."""

    claims: SessionClaims | None = None
    error: TokenErrorKind | None = None

    @property
    def ok(self) -> bool:
        return self.claims is not None


@dataclass(frozen=True)
class IssuedToken:
    token: str
    claims: SessionClaims


class TokenService:
    """Signs and verifies session tokens with a server-held secret."""

    def __init__(
        self,
        secret: str,
        algorithm: str = "HS256",
        default_ttl: timedelta = timedelta(hours=24),
    ):
        if not secret:
            raise ValueError("A signing secret is required")
        self._secret = secret
        self._algorithm = algorithm
        self.default_ttl = default_ttl

    @classmethod
    def from_settings(cls, settings: Settings) -> "TokenService":
        return cls(
            secret=settings.jwt_secret,
            algorithm=settings.jwt_algorithm,
            default_ttl=timedelta(hours=settings.session_ttl_hours),
        )

    def sign(self, claims: SessionClaims, ttl: timedelta | None = None) -> str:
        """Sign claims into a token that expires after ``ttl``."""
        return self.issue(claims, ttl).token

    def issue(self, claims: SessionClaims, ttl: timedelta | None = None) -> "IssuedToken":
        """Sign claims and return the token with the claims exactly as signed.

        A jti is generated when the claims carry none.
        """
        now = datetime.now(UTC).replace(microsecond=0)
        expires_at = now + (ttl if ttl is not None else self.default_ttl)
        signed = replace(
            claims,
            jti=claims.jti or str(uuid.uuid4()),
            issued_at=now,
            expires_at=expires_at,
        )
        payload = signed.to_payload()
        payload["iat"] = int(now.timestamp())
        payload["exp"] = int(expires_at.timestamp())
        token = jwt.encode(payload, self._secret, algorithm=self._algorithm)
        return IssuedToken(token=token, claims=signed)

    def verify(self, token: str) -> TokenVerification:
        """Check signature and expiry without raising."""
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm],
                options={"require": REQUIRED_CLAIMS},
            )
        except jwt.ExpiredSignatureError:
            return TokenVerification(error=TokenErrorKind.EXPIRED)
        except jwt.PyJWTError as e:
            logger.debug(f"Token rejected: {e}")
            return TokenVerification(error=TokenErrorKind.INVALID)

        try:
            return TokenVerification(claims=SessionClaims.from_payload(payload))
        except ValueError as e:
            logger.debug(f"Token rejected: {e}")
            return TokenVerification(error=TokenErrorKind.INVALID)


def extract_bearer_token(ctx: RequestContext) -> str | None:
    """Token from ``Authorization: Bearer <token>``, if well formed."""
    auth_header = ctx.header("authorization")
    if not auth_header:
        return None
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def extract_cookie_token(ctx: RequestContext, cookie_name: str) -> str | None:
    return ctx.cookies.get(cookie_name) or None


def extract_token(ctx: RequestContext, cookie_name: str) -> str | None:
    """Pick exactly one token source for a request.

    When an Authorization header is sent it is the only source considered,
    even if it is malformed; otherwise the session cookie is used.
    """
    if ctx.header("authorization") is not None:
        return extract_bearer_token(ctx)
    return extract_cookie_token(ctx, cookie_name)


def set_session_cookie(response: Response, token: str, settings: Settings) -> None:
    response.set_cookie(
        key=settings.session_cookie_name,
        value=token,
        max_age=settings.session_cookie_max_age_days * 24 * 60 * 60,
        path="/",
        domain=settings.cookie_domain,
        secure=settings.is_production,
        httponly=True,
        samesite="lax",
    )


def clear_session_cookie(response: Response, settings: Settings) -> None:
    response.delete_cookie(
        key=settings.session_cookie_name,
        path="/",
        domain=settings.cookie_domain,
        secure=settings.is_production,
        httponly=True,
        samesite="lax",
    )
