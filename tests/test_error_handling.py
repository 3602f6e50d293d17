"""Tests for the error taxonomy and JSON error envelopes."""

import pytest
from httpx import ASGITransport, AsyncClient

from skyplanner.core.errors import (
    AppError,
    AuthError,
    ConfigError,
    CSRFValidationError,
    InvalidCodeError,
    ProxyError,
    RateLimitedError,
    ReplayedCodeError,
    TokenExpiredError,
)


class TestErrorEnvelope:
    """AppError.to_envelope()."""

    def test_defaults(self):
        assert AppError().to_envelope() == {
            "success": False,
            "error": {"code": "INTERNAL_ERROR", "message": "En uventet feil oppstod"},
        }

    def test_auth_errors_require_login(self):
        envelope = TokenExpiredError().to_envelope()
        assert envelope["requireLogin"] is True
        assert envelope["error"]["code"] == "TOKEN_EXPIRED"
        assert TokenExpiredError.status_code == 401

    def test_code_errors_do_not_require_login(self):
        assert "requireLogin" not in InvalidCodeError().to_envelope()
        assert "requireLogin" not in ReplayedCodeError().to_envelope()
        assert isinstance(ReplayedCodeError(), AuthError)

    def test_custom_message_and_code(self):
        error = ProxyError("Backend svarte ikke i tide", code="PROXY_TIMEOUT")
        assert error.status_code == 502
        assert error.to_envelope()["error"] == {
            "code": "PROXY_TIMEOUT",
            "message": "Backend svarte ikke i tide",
        }
        # The class default is untouched
        assert ProxyError().code == "PROXY_ERROR"

    @pytest.mark.parametrize(
        "error_cls,status",
        [(ConfigError, 500), (CSRFValidationError, 403), (RateLimitedError, 429)],
    )
    def test_status_codes(self, error_cls, status):
        assert error_cls().status_code == status


class TestExceptionHandlers:
    """Handlers registered on the app."""

    @pytest.mark.asyncio
    async def test_not_found(self, async_client):
        response = await async_client.get("/finnes-ikke")

        assert response.status_code == 404
        assert response.json() == {
            "success": False,
            "error": {"code": "NOT_FOUND", "message": "Ressursen ble ikke funnet"},
        }

    @pytest.mark.asyncio
    async def test_method_not_allowed(self, async_client):
        response = await async_client.delete("/health")

        assert response.status_code == 405
        assert response.json()["error"]["code"] == "METHOD_NOT_ALLOWED"

    @pytest.mark.asyncio
    async def test_unexpected_error_is_generic(self, app):
        @app.get("/boom")
        async def boom():
            raise RuntimeError("database password is hunter2")

        transport = ASGITransport(app=app, raise_app_exceptions=False)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.get("/boom")

        assert response.status_code == 500
        assert response.json() == {
            "success": False,
            "error": {"code": "INTERNAL_ERROR", "message": "En uventet feil oppstod"},
        }
        assert "hunter2" not in response.text

    @pytest.mark.asyncio
    async def test_config_error_is_generic(self, app):
        @app.get("/needs-key")
        async def needs_key():
            raise ConfigError()

        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            response = await client.get("/needs-key")

        assert response.status_code == 500
        assert response.json()["error"] == {
            "code": "CONFIG_ERROR",
            "message": "Server-konfigurasjonsfeil",
        }
