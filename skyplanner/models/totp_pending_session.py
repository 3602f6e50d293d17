"""Half-finished logins waiting for a second factor."""

from datetime import datetime

from sqlalchemy import DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from skyplanner.models.base import BaseModel


class TotpPendingSession(BaseModel):
    """Created after a correct password for an account with 2FA enabled.

    Only the SHA-256 hash of the handed-out session token is stored.
    """

    __tablename__ = "totp_pending_sessions"

    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    user_type: Mapped[str] = mapped_column(String(20), nullable=False, default="klient")
    session_token_hash: Mapped[str] = mapped_column(
        String(64), nullable=False, unique=True, index=True
    )
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(512), nullable=True)
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
