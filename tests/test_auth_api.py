"""Tests for login, logout, refresh and identity endpoints."""

import pytest
from sqlalchemy import select

from skyplanner.models import ActiveSession, TokenBlacklist
from tests.conftest import TEST_PASSWORD, bearer


async def _login(client, epost="ola@testfirma.no", passord=TEST_PASSWORD):
    return await client.post("/api/auth/login", json={"epost": epost, "passord": passord})


class TestLogin:
    """POST /api/auth/login."""

    @pytest.mark.asyncio
    async def test_login_success(self, async_client, db_session, settings, klient):
        klient_id = klient.id
        response = await _login(async_client)

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        data = body["data"]
        assert data["requires2FA"] is False
        assert data["token"]
        assert data["user"] == {
            "id": klient_id,
            "navn": "Ola Nordmann",
            "epost": "ola@testfirma.no",
            "organization": {"id": data["user"]["organization"]["id"], "navn": "Testfirma AS", "slug": "testfirma"},
        }
        assert response.cookies.get(settings.session_cookie_name) == data["token"]
        set_cookie = response.headers["set-cookie"].lower()
        assert "httponly" in set_cookie
        assert "samesite=lax" in set_cookie

        sessions = (
            await db_session.execute(select(ActiveSession).where(ActiveSession.user_id == klient_id))
        ).scalars().all()
        assert len(sessions) == 1
        assert sessions[0].device_info == "Chrome på Windows"

    @pytest.mark.asyncio
    async def test_email_is_case_insensitive(self, async_client, klient):
        response = await _login(async_client, epost="  OLA@Testfirma.no ")
        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_wrong_password(self, async_client, klient):
        response = await _login(async_client, passord="feil-passord")

        assert response.status_code == 401
        body = response.json()
        assert body["error"]["code"] == "INVALID_CREDENTIALS"
        assert "requireLogin" not in body

    @pytest.mark.asyncio
    async def test_unknown_email_looks_like_wrong_password(self, async_client, klient):
        wrong_password = await _login(async_client, passord="feil-passord")
        unknown = await _login(async_client, epost="ukjent@testfirma.no")

        assert unknown.status_code == wrong_password.status_code == 401
        assert unknown.json() == wrong_password.json()

    @pytest.mark.asyncio
    async def test_inactive_account(self, async_client, klient_factory):
        await klient_factory(epost="inaktiv@testfirma.no", aktiv=False)
        response = await _login(async_client, epost="inaktiv@testfirma.no")

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "ACCOUNT_INACTIVE"

    @pytest.mark.asyncio
    async def test_missing_fields(self, async_client):
        response = await async_client.post("/api/auth/login", json={"epost": "ola@testfirma.no"})

        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["error"]["code"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_rate_limited_after_repeated_failures(self, async_client, settings, klient):
        for _ in range(settings.login_max_attempts):
            response = await _login(async_client, passord="feil-passord")
            assert response.status_code == 401

        response = await _login(async_client)
        assert response.status_code == 429
        assert response.json()["error"]["code"] == "TOO_MANY_REQUESTS"


class TestLogout:
    """POST /api/auth/logout."""

    @pytest.mark.asyncio
    async def test_logout_revokes_token(self, async_client, db_session, klient, login_session):
        issued = await login_session(klient)

        response = await async_client.post("/api/auth/logout", headers=bearer(issued.token))
        assert response.status_code == 200
        assert response.json()["data"]["message"] == "Logget ut"
        assert 'skyplanner_session=""' in response.headers["set-cookie"]

        response = await async_client.get("/api/auth/me", headers=bearer(issued.token))
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "TOKEN_REVOKED"

        entry = (
            await db_session.execute(
                select(TokenBlacklist).where(TokenBlacklist.jti == issued.claims.jti)
            )
        ).scalar_one()
        assert entry.reason == "logout"
        remaining = (
            await db_session.execute(
                select(ActiveSession).where(ActiveSession.jti == issued.claims.jti)
            )
        ).scalar_one_or_none()
        assert remaining is None

    @pytest.mark.asyncio
    async def test_logout_requires_auth(self, async_client):
        response = await async_client.post("/api/auth/logout")
        assert response.status_code == 401


class TestRefresh:
    """POST /api/auth/refresh."""

    @pytest.mark.asyncio
    async def test_refresh_rotates_token(self, async_client, db_session, klient, login_session):
        issued = await login_session(klient)

        response = await async_client.post("/api/auth/refresh", headers=bearer(issued.token))
        assert response.status_code == 200
        data = response.json()["data"]
        new_token = data["token"]
        assert new_token != issued.token
        assert data["expiresAt"] > 0

        old = await async_client.get("/api/auth/me", headers=bearer(issued.token))
        assert old.status_code == 401
        assert old.json()["error"]["code"] == "TOKEN_REVOKED"

        new = await async_client.get("/api/auth/me", headers=bearer(new_token))
        assert new.status_code == 200

        sessions = await async_client.get("/api/dashboard/sessions/list", headers=bearer(new_token))
        listed = sessions.json()["data"]["sessions"]
        assert len(listed) == 1
        assert listed[0]["isCurrent"] is True
