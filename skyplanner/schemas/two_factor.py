"""Pydantic schemas for the two-factor API."""

from datetime import datetime

from pydantic import Field

from skyplanner.schemas.common import CamelModel


class TwoFactorStatusData(CamelModel):
    enabled: bool
    enabled_at: datetime | None = None
    backup_codes_remaining: int = 0


class TwoFactorSetupData(CamelModel):
    """Shown once; the client renders ``uri`` as a QR code."""

    secret: str
    uri: str
    backup_codes: list[str]


class TwoFactorCodeRequest(CamelModel):
    code: str = Field(..., max_length=20)


class DisableTwoFactorRequest(CamelModel):
    """Either the account password or a current TOTP code."""

    password: str | None = Field(default=None, max_length=256)
    code: str | None = Field(default=None, max_length=20)
