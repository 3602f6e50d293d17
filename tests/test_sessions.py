"""Tests for active session listing, termination and cleanup."""

from datetime import timedelta

import pytest
from sqlalchemy import func, select

from skyplanner.middleware.auth import is_jti_blacklisted
from skyplanner.models import ActiveSession, TokenBlacklist, TotpPendingSession
from skyplanner.models.base import utcnow
from skyplanner.services.sessions import SessionRegistry, cleanup_expired_entries, describe_device
from tests.conftest import bearer

IPHONE_UA = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_5 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.5 Mobile/15E148 Safari/604.1"
)


async def _session_id(db_session, jti: str) -> int:
    result = await db_session.execute(select(ActiveSession.id).where(ActiveSession.jti == jti))
    return result.scalar_one()


class TestDescribeDevice:
    @pytest.mark.parametrize(
        "user_agent,expected",
        [
            (
                "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
                "(KHTML, like Gecko) Chrome/126.0 Safari/537.36",
                "Chrome på Windows",
            ),
            (
                "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
                "(KHTML, like Gecko) Chrome/126.0 Safari/537.36 Edg/126.0",
                "Edge på Windows",
            ),
            (
                "Mozilla/5.0 (Macintosh; Intel Mac OS X 14.5; rv:127.0) Gecko/20100101 Firefox/127.0",
                "Firefox på macOS",
            ),
            (IPHONE_UA, "Safari på iOS"),
            (
                "Mozilla/5.0 (Linux; Android 14; Pixel 8) AppleWebKit/537.36 "
                "(KHTML, like Gecko) Chrome/126.0 Mobile Safari/537.36",
                "Chrome på Android",
            ),
            ("curl/8.5.0", "Ukjent nettleser på Ukjent OS"),
            (None, "Ukjent enhet"),
            ("", "Ukjent enhet"),
        ],
    )
    def test_describe_device(self, user_agent, expected):
        assert describe_device(user_agent) == expected


class TestListSessions:
    """GET /api/dashboard/sessions/list."""

    @pytest.mark.asyncio
    async def test_lists_own_sessions_with_current_flag(
        self, async_client, db_session, klient, login_session
    ):
        desktop = await login_session(klient)
        phone = await login_session(klient, user_agent=IPHONE_UA, ip="10.0.0.2")

        response = await async_client.get(
            "/api/dashboard/sessions/list", headers=bearer(desktop.token)
        )
        assert response.status_code == 200
        sessions = response.json()["data"]["sessions"]
        assert len(sessions) == 2

        by_id = {s["id"]: s for s in sessions}
        current = by_id[await _session_id(db_session, desktop.claims.jti)]
        other = by_id[await _session_id(db_session, phone.claims.jti)]
        assert current["isCurrent"] is True
        assert current["deviceInfo"] == "Chrome på Windows"
        assert other["isCurrent"] is False
        assert other["deviceInfo"] == "Safari på iOS"
        assert other["ipAddress"] == "10.0.0.2"
        assert {"createdAt", "lastActivityAt", "expiresAt"} <= other.keys()

    @pytest.mark.asyncio
    async def test_ordered_by_last_activity(self, async_client, db_session, klient, login_session):
        first = await login_session(klient)
        second = await login_session(klient)
        first_id = await _session_id(db_session, first.claims.jti)
        second_id = await _session_id(db_session, second.claims.jti)

        row = await db_session.get(ActiveSession, first_id)
        row.last_activity_at = utcnow() + timedelta(seconds=30)
        await db_session.commit()

        response = await async_client.get(
            "/api/dashboard/sessions/list", headers=bearer(second.token)
        )
        ids = [s["id"] for s in response.json()["data"]["sessions"]]
        assert ids == [first_id, second_id]

    @pytest.mark.asyncio
    async def test_excludes_expired_and_foreign_sessions(
        self, async_client, db_session, klient, klient_factory, login_session
    ):
        mine = await login_session(klient)
        stale = await login_session(klient)
        other_user = await klient_factory(epost="kari@testfirma.no")
        await login_session(other_user)

        stale_row = await db_session.get(ActiveSession, await _session_id(db_session, stale.claims.jti))
        stale_row.expires_at = utcnow() - timedelta(minutes=1)
        await db_session.commit()

        response = await async_client.get("/api/dashboard/sessions/list", headers=bearer(mine.token))
        sessions = response.json()["data"]["sessions"]
        assert [s["isCurrent"] for s in sessions] == [True]

    @pytest.mark.asyncio
    async def test_requires_auth(self, async_client):
        response = await async_client.get("/api/dashboard/sessions/list")
        assert response.status_code == 401


class TestTerminateSession:
    """POST /api/dashboard/sessions/terminate."""

    @pytest.mark.asyncio
    async def test_terminate_other_session(self, async_client, db_session, klient, login_session):
        current = await login_session(klient)
        other = await login_session(klient, user_agent=IPHONE_UA)
        other_id = await _session_id(db_session, other.claims.jti)

        response = await async_client.post(
            "/api/dashboard/sessions/terminate",
            json={"sessionId": other_id},
            headers=bearer(current.token),
        )
        assert response.status_code == 200
        assert response.json()["success"] is True

        # The terminated token stops working at once
        response = await async_client.get("/api/auth/me", headers=bearer(other.token))
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "TOKEN_REVOKED"

        entry = (
            await db_session.execute(
                select(TokenBlacklist).where(TokenBlacklist.jti == other.claims.jti)
            )
        ).scalar_one()
        assert entry.reason == "session_terminated"

        response = await async_client.get(
            "/api/dashboard/sessions/list", headers=bearer(current.token)
        )
        assert len(response.json()["data"]["sessions"]) == 1

    @pytest.mark.asyncio
    async def test_cannot_terminate_current_session(
        self, async_client, db_session, klient, login_session
    ):
        current = await login_session(klient)
        current_id = await _session_id(db_session, current.claims.jti)

        response = await async_client.post(
            "/api/dashboard/sessions/terminate",
            json={"sessionId": current_id},
            headers=bearer(current.token),
        )
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "CANNOT_TERMINATE_CURRENT_SESSION"

        response = await async_client.get("/api/auth/me", headers=bearer(current.token))
        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_unknown_session(self, async_client, klient, login_session):
        current = await login_session(klient)
        response = await async_client.post(
            "/api/dashboard/sessions/terminate",
            json={"sessionId": 999999},
            headers=bearer(current.token),
        )
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NOT_FOUND"

    @pytest.mark.asyncio
    async def test_other_users_session_not_found(
        self, async_client, db_session, klient, klient_factory, login_session
    ):
        current = await login_session(klient)
        other_user = await klient_factory(epost="kari@testfirma.no")
        foreign = await login_session(other_user)
        foreign_id = await _session_id(db_session, foreign.claims.jti)

        response = await async_client.post(
            "/api/dashboard/sessions/terminate",
            json={"sessionId": foreign_id},
            headers=bearer(current.token),
        )
        assert response.status_code == 404

        response = await async_client.get("/api/auth/me", headers=bearer(foreign.token))
        assert response.status_code == 200

    @pytest.mark.parametrize("session_id", ["abc", "5", None, 1.5])
    @pytest.mark.asyncio
    async def test_session_id_must_be_integer(self, async_client, klient, login_session, session_id):
        current = await login_session(klient)
        response = await async_client.post(
            "/api/dashboard/sessions/terminate",
            json={"sessionId": session_id},
            headers=bearer(current.token),
        )
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"


class TestRevoke:
    """SessionRegistry.revoke() and the in-process revocation cache."""

    async def _revoke(self, db_session, issued) -> None:
        await SessionRegistry(db_session).revoke(
            issued.claims.jti,
            user_id=issued.claims.user_id,
            user_type="klient",
            reason="logout",
            expires_at=issued.claims.expires_at,
        )

    @pytest.mark.asyncio
    async def test_rolled_back_revocation_leaves_token_valid(
        self, async_client, db_session, klient, login_session
    ):
        issued = await login_session(klient)
        await self._revoke(db_session, issued)
        await db_session.rollback()

        assert not is_jti_blacklisted(issued.claims.jti)
        response = await async_client.get("/api/auth/me", headers=bearer(issued.token))
        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_committed_revocation_reaches_cache_on_next_request(
        self, async_client, db_session, klient, login_session
    ):
        issued = await login_session(klient)
        await self._revoke(db_session, issued)
        await db_session.commit()
        assert not is_jti_blacklisted(issued.claims.jti)

        response = await async_client.get("/api/auth/me", headers=bearer(issued.token))
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "TOKEN_REVOKED"
        assert is_jti_blacklisted(issued.claims.jti)


class TestCleanup:
    """cleanup_expired_entries()."""

    @pytest.mark.asyncio
    async def test_removes_only_expired_rows(self, db_session, klient):
        klient_id = klient.id
        past = utcnow() - timedelta(minutes=1)
        future = utcnow() + timedelta(hours=1)
        db_session.add_all(
            [
                TokenBlacklist(jti="old", user_id=klient_id, user_type="klient", reason="logout", expires_at=past),
                TokenBlacklist(jti="new", user_id=klient_id, user_type="klient", reason="logout", expires_at=future),
                ActiveSession(
                    user_id=klient_id,
                    user_type="klient",
                    jti="expired-session",
                    last_activity_at=past,
                    expires_at=past,
                ),
                TotpPendingSession(
                    user_id=klient_id,
                    user_type="klient",
                    session_token_hash="h" * 64,
                    attempts=0,
                    expires_at=past,
                ),
            ]
        )
        await db_session.commit()

        removed = await cleanup_expired_entries(db_session)
        await db_session.commit()

        assert removed == {"blacklist": 1, "sessions": 1, "pending_2fa": 1}
        remaining = await db_session.scalar(select(func.count()).select_from(TokenBlacklist))
        assert remaining == 1
