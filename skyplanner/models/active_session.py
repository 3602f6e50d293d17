"""Active session model - one row per logical login."""

from datetime import datetime

from sqlalchemy import DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from skyplanner.models.base import BaseModel, utcnow


class ActiveSession(BaseModel):
    """A live login, identified by the jti of the token it was issued with."""

    __tablename__ = "active_sessions"

    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    user_type: Mapped[str] = mapped_column(String(20), nullable=False, default="klient")
    jti: Mapped[str] = mapped_column(String(64), nullable=False, unique=True, index=True)
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(512), nullable=True)
    device_info: Mapped[str | None] = mapped_column(String(255), nullable=True)
    last_activity_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, index=True
    )
