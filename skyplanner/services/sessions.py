"""Session registry: active logins and the token blacklist."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import delete, select, update
from sqlalchemy.engine import CursorResult
from sqlalchemy.ext.asyncio import AsyncSession

from skyplanner.core.errors import CannotTerminateCurrentSessionError, NotFoundError
from skyplanner.models import ActiveSession, TokenBlacklist, TotpPendingSession
from skyplanner.models.base import as_utc, utcnow

logger = logging.getLogger(__name__)

# last_activity_at is refreshed at most this often per session
ACTIVITY_RESOLUTION = timedelta(minutes=1)


def describe_device(user_agent: str | None) -> str:
    """Short human label for a user agent, e.g. ``Chrome på Windows``."""
    if not user_agent:
        return "Ukjent enhet"

    if "Firefox/" in user_agent:
        browser = "Firefox"
    elif "Edg/" in user_agent:
        browser = "Edge"
    elif "Chrome/" in user_agent:
        browser = "Chrome"
    elif "Safari/" in user_agent:
        browser = "Safari"
    else:
        browser = "Ukjent nettleser"

    # Mobile platforms first: their agents also mention Linux or Mac OS X
    if "Android" in user_agent:
        os_name = "Android"
    elif "iPhone" in user_agent or "iPad" in user_agent:
        os_name = "iOS"
    elif "Windows" in user_agent:
        os_name = "Windows"
    elif "Mac OS X" in user_agent or "Macintosh" in user_agent:
        os_name = "macOS"
    elif "Linux" in user_agent:
        os_name = "Linux"
    else:
        os_name = "Ukjent OS"

    return f"{browser} på {os_name}"


@dataclass(frozen=True)
class SessionInfo:
    """An active session as shown to its owner."""

    id: int
    device_info: str | None
    ip_address: str | None
    created_at: datetime
    last_activity_at: datetime
    expires_at: datetime
    is_current: bool


class SessionRegistry:
    """Creates, lists and terminates active sessions and revokes their tokens.

    Writes are flushed into the caller's transaction; the request-scoped
    session from ``get_db`` commits them together.
    """

    def __init__(self, db: AsyncSession, retention: timedelta = timedelta(days=30)):
        self.db = db
        self.retention = retention

    async def create(
        self,
        user_id: int,
        user_type: str,
        jti: str,
        expires_at: datetime,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> ActiveSession:
        now = utcnow()
        session = ActiveSession(
            user_id=user_id,
            user_type=user_type,
            jti=jti,
            ip_address=ip_address,
            user_agent=(user_agent or "")[:512] or None,
            device_info=describe_device(user_agent),
            created_at=now,
            last_activity_at=now,
            expires_at=expires_at,
        )
        self.db.add(session)
        await self.db.flush()
        logger.info(f"Session created for {user_type} {user_id}")
        return session

    async def list_sessions(
        self, user_id: int, user_type: str, current_jti: str | None
    ) -> list[SessionInfo]:
        """Unexpired sessions, most recently active first."""
        result = await self.db.execute(
            select(ActiveSession)
            .where(
                ActiveSession.user_id == user_id,
                ActiveSession.user_type == user_type,
                ActiveSession.expires_at > utcnow(),
            )
            .order_by(ActiveSession.last_activity_at.desc(), ActiveSession.id.desc())
        )
        return [
            SessionInfo(
                id=row.id,
                device_info=row.device_info,
                ip_address=row.ip_address,
                created_at=as_utc(row.created_at),
                last_activity_at=as_utc(row.last_activity_at),
                expires_at=as_utc(row.expires_at),
                is_current=row.jti == current_jti,
            )
            for row in result.scalars().all()
        ]

    async def terminate(
        self, session_id: int, user_id: int, user_type: str, current_jti: str | None
    ) -> None:
        """End one of the caller's other sessions.

        The session's token is blacklisted before the row is deleted; both
        writes belong to the same transaction.

        Raises:
            NotFoundError: No such session owned by the caller
            CannotTerminateCurrentSessionError: The session is the caller's own
        """
        result = await self.db.execute(
            select(ActiveSession).where(
                ActiveSession.id == session_id,
                ActiveSession.user_id == user_id,
                ActiveSession.user_type == user_type,
            )
        )
        session = result.scalar_one_or_none()
        if session is None:
            raise NotFoundError("Sesjonen ble ikke funnet")
        if current_jti is not None and session.jti == current_jti:
            raise CannotTerminateCurrentSessionError()

        await self.revoke(
            jti=session.jti,
            user_id=user_id,
            user_type=user_type,
            reason="session_terminated",
            expires_at=utcnow() + self.retention,
        )
        await self.db.delete(session)
        await self.db.flush()
        logger.info(f"Session {session_id} terminated by {user_type} {user_id}")

    async def revoke(
        self,
        jti: str,
        user_id: int,
        user_type: str,
        reason: str,
        expires_at: datetime,
    ) -> None:
        """Blacklist a jti until ``expires_at``. Revoking twice is a no-op."""
        existing = await self.db.execute(select(TokenBlacklist.id).where(TokenBlacklist.jti == jti))
        if existing.scalar_one_or_none() is None:
            self.db.add(
                TokenBlacklist(
                    jti=jti,
                    user_id=user_id,
                    user_type=user_type,
                    reason=reason,
                    expires_at=expires_at,
                )
            )
            await self.db.flush()
        logger.info(f"Token revoked ({reason}) for {user_type} {user_id}")

    async def is_blacklisted(self, jti: str) -> bool:
        """Whether an unexpired blacklist entry exists for ``jti``."""
        result = await self.db.execute(
            select(TokenBlacklist.id).where(
                TokenBlacklist.jti == jti,
                TokenBlacklist.expires_at > utcnow(),
            )
        )
        return result.scalar_one_or_none() is not None

    async def end(self, jti: str) -> int:
        """Delete the session row for a jti (logout). Returns rows removed."""
        result: CursorResult[Any] = await self.db.execute(  # type: ignore[assignment]
            delete(ActiveSession).where(ActiveSession.jti == jti)
        )
        return result.rowcount

    async def rotate(self, old_jti: str, new_jti: str, expires_at: datetime) -> bool:
        """Move a session to a freshly issued token. Returns False if none existed."""
        result: CursorResult[Any] = await self.db.execute(  # type: ignore[assignment]
            update(ActiveSession)
            .where(ActiveSession.jti == old_jti)
            .values(jti=new_jti, expires_at=expires_at, last_activity_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0

    async def touch(self, jti: str) -> None:
        """Record activity on a session, at most once per minute."""
        now = utcnow()
        await self.db.execute(
            update(ActiveSession)
            .where(
                ActiveSession.jti == jti,
                ActiveSession.last_activity_at < now - ACTIVITY_RESOLUTION,
            )
            .values(last_activity_at=now)
            .execution_options(synchronize_session=False)
        )


async def cleanup_expired_entries(db: AsyncSession) -> dict[str, int]:
    """Purge expired blacklist entries, sessions and pending 2FA logins."""
    now = utcnow()
    removed: dict[str, int] = {}
    for name, model in (
        ("blacklist", TokenBlacklist),
        ("sessions", ActiveSession),
        ("pending_2fa", TotpPendingSession),
    ):
        result: CursorResult[Any] = await db.execute(  # type: ignore[assignment]
            delete(model)
            .where(model.expires_at < now)
            .execution_options(synchronize_session=False)
        )
        removed[name] = result.rowcount
    return removed
