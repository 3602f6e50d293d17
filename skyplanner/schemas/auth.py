"""Pydantic schemas for authentication API."""

from pydantic import Field

from skyplanner.schemas.common import CamelModel


class LoginRequest(CamelModel):
    """Request for login."""

    epost: str = Field(..., min_length=1, max_length=255)
    passord: str = Field(..., min_length=1, max_length=256)


class Verify2FARequest(CamelModel):
    """Second step of a login for accounts with 2FA enabled."""

    session_token: str = Field(..., min_length=1, description="Token from the login response")
    code: str = Field(..., min_length=1, max_length=20, description="TOTP or backup code")


class OrganizationData(CamelModel):
    id: int
    navn: str
    slug: str


class UserData(CamelModel):
    id: int
    navn: str
    epost: str
    organization: OrganizationData | None = None


class LoginData(CamelModel):
    """Either a finished login or a request for the second factor."""

    requires_2fa: bool = Field(default=False, alias="requires2FA")
    session_token: str | None = None
    token: str | None = None
    user: UserData | None = None
    used_backup_code: bool = False


class TokenData(CamelModel):
    token: str
    expires_at: int = Field(description="Unix timestamp when the token expires")


class IdentityData(CamelModel):
    user_id: int
    user_type: str
    organization_id: int | None = None
    organization_slug: str | None = None
    user: UserData | None = None


class CsrfTokenData(CamelModel):
    token: str
