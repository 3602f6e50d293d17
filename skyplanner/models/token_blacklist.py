"""Revoked session tokens, persisted so revocation survives restarts."""

from datetime import datetime

from sqlalchemy import DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from skyplanner.models.base import BaseModel


class TokenBlacklist(BaseModel):
    """A revoked JWT identified by its jti claim.

    Entries are created on logout, refresh and session termination and
    purged once ``expires_at`` has passed.
    """

    __tablename__ = "token_blacklist"

    jti: Mapped[str] = mapped_column(String(64), nullable=False, unique=True, index=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    user_type: Mapped[str] = mapped_column(String(20), nullable=False)
    reason: Mapped[str] = mapped_column(String(50), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, index=True
    )
