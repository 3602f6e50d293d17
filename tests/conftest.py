"""Pytest configuration and fixtures.

The database is an in-memory SQLite engine (aiosqlite) created per test;
HTTP tests drive the app in-process through httpx's ASGITransport.
"""

import os
from collections.abc import AsyncGenerator
from typing import Any

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Set test environment variables before importing app modules
os.environ["ENVIRONMENT"] = "test"
os.environ["JWT_SECRET"] = "test-jwt-secret-that-is-long-enough-0123456789"
os.environ["ENCRYPTION_KEY"] = "test-encryption-key-0123456789abcdef"
os.environ["ENCRYPTION_SALT"] = "test-encryption-salt"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["BACKEND_API_URL"] = "http://backend.test"

TEST_PASSWORD = "riktig-passord-123"
TEST_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/126.0 Safari/537.36"
)
CSRF_TOKEN = "a" * 64

UNIT_TEST_MODULES = {
    "test_tokens",
    "test_totp",
    "test_crypto",
    "test_config",
    "test_request_utils",
    "test_logging",
}


def pytest_collection_modifyitems(config, items):
    """Mark tests as unit or integration by module."""
    for item in items:
        module = item.module.__name__.rsplit(".", 1)[-1]
        if module in UNIT_TEST_MODULES:
            item.add_marker(pytest.mark.unit)
        else:
            item.add_marker(pytest.mark.integration)


@pytest.fixture(autouse=True)
def reset_in_memory_state():
    """Clear the login rate limiter and the revoked-jti cache around each test."""
    from skyplanner.api.auth import reset_login_attempts
    from skyplanner.middleware.auth import clear_jti_cache

    reset_login_attempts()
    clear_jti_cache()
    yield
    reset_login_attempts()
    clear_jti_cache()


@pytest.fixture
def settings():
    from skyplanner.core.config import get_settings

    return get_settings()


@pytest.fixture
def token_service(settings):
    from skyplanner.services.tokens import TokenService

    return TokenService.from_settings(settings)


# --- Database Fixtures ---


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    """In-memory SQLite engine with all tables created."""
    import skyplanner.models  # noqa: F401
    from skyplanner.core.database import Base

    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    async_session = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)
    async with async_session() as session:
        yield session
        await session.rollback()


# --- App and Client Fixtures ---


@pytest.fixture
def app(settings):
    from skyplanner.main import create_app

    return create_app(settings)


def _override_db(app, db_session: AsyncSession) -> None:
    from skyplanner.core.database import get_db

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        try:
            yield db_session
            await db_session.commit()
        except Exception:
            await db_session.rollback()
            raise

    app.dependency_overrides[get_db] = override_get_db


@pytest_asyncio.fixture(scope="function")
async def bare_client(app, db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Client without CSRF cookie or header."""
    _override_db(app, db_session)
    transport = ASGITransport(app=app)
    async with AsyncClient(
        transport=transport,
        base_url="http://test",
        headers={"User-Agent": TEST_USER_AGENT},
    ) as client:
        yield client
    app.dependency_overrides.clear()


@pytest_asyncio.fixture(scope="function")
async def async_client(app, db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Client that passes the CSRF double-submit check on every request."""
    from skyplanner.core.config import get_settings

    settings = get_settings()
    _override_db(app, db_session)
    transport = ASGITransport(app=app)
    async with AsyncClient(
        transport=transport,
        base_url="http://test",
        headers={"User-Agent": TEST_USER_AGENT, settings.csrf_header_name: CSRF_TOKEN},
    ) as client:
        client.cookies.set(settings.csrf_cookie_name, CSRF_TOKEN)
        yield client
    app.dependency_overrides.clear()


# --- Factories ---


@pytest.fixture
def organization_factory(db_session):
    from skyplanner.models import Organization

    async def _create(navn: str = "Testfirma AS", slug: str = "testfirma") -> Organization:
        organization = Organization(navn=navn, slug=slug)
        db_session.add(organization)
        await db_session.commit()
        await db_session.refresh(organization)
        return organization

    return _create


@pytest.fixture
def klient_factory(db_session):
    from skyplanner.models import Klient
    from skyplanner.services.auth import hash_password

    async def _create(
        epost: str = "ola@testfirma.no",
        password: str = TEST_PASSWORD,
        organization_id: int | None = None,
        **kwargs: Any,
    ) -> Klient:
        klient = Klient(
            epost=epost,
            navn=kwargs.pop("navn", "Ola Nordmann"),
            password_hash=hash_password(password),
            organization_id=organization_id,
            **kwargs,
        )
        db_session.add(klient)
        await db_session.commit()
        await db_session.refresh(klient)
        return klient

    return _create


@pytest_asyncio.fixture
async def klient(organization_factory, klient_factory):
    organization = await organization_factory()
    return await klient_factory(organization_id=organization.id)


@pytest.fixture
def login_session(db_session, settings, token_service):
    """Create a logged-in session for a klient; returns the issued token."""
    from skyplanner.core.request_utils import RequestContext
    from skyplanner.services.auth import AuthService

    async def _login(klient, user_agent: str = TEST_USER_AGENT, ip: str = "10.0.0.1"):
        auth = AuthService(db_session, token_service, settings)
        ctx = RequestContext(
            method="POST",
            path="/api/auth/login",
            headers={"user-agent": user_agent},
            client_ip=ip,
        )
        issued = await auth.start_session(klient, ctx)
        await db_session.commit()
        return issued

    return _login


@pytest.fixture
def enable_two_factor(db_session, app):
    """Put a klient into the confirmed-2FA state; returns (secret, backup_codes)."""
    from skyplanner.models.base import utcnow
    from skyplanner.services.crypto import hash_backup_code

    async def _enable(klient) -> tuple[str, list[str]]:
        engine = app.state.totp
        cipher = app.state.cipher
        key = app.state.settings.encryption_key
        secret = engine.generate_secret()
        codes = engine.generate_backup_codes()
        klient.totp_secret_encrypted = cipher.encrypt(secret)
        klient.backup_codes_hash = [hash_backup_code(c, key) for c in codes]
        klient.totp_enabled = True
        klient.totp_verified_at = utcnow()
        await db_session.commit()
        return secret, codes

    return _enable


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}
