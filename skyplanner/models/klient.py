"""Klient (customer user account) model, including two-factor state."""

from datetime import datetime

from sqlalchemy import JSON, BigInteger, Boolean, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from skyplanner.models.base import BaseModel


class Klient(BaseModel):
    """A user belonging to an organization.

    Two-factor lifecycle: absent (no secret) -> provisioned (encrypted secret,
    ``totp_enabled`` false) -> confirmed (``totp_enabled`` true) -> disabled
    (all TOTP columns cleared). Backup codes are stored only as keyed hashes;
    a consumed code's hash is removed from ``backup_codes_hash``.
    """

    __tablename__ = "klient"

    epost: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    navn: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    organization_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("organizations.id", ondelete="SET NULL"), nullable=True, index=True
    )
    aktiv: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    totp_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    totp_secret_encrypted: Mapped[str | None] = mapped_column(Text, nullable=True)
    totp_verified_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    backup_codes_hash: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    totp_recovery_codes_used: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    # Last consumed time-step index; a new code must match a strictly later step
    totp_last_used_step: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    last_login_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<Klient {self.epost}>"
