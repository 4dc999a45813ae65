# backend/tests/conftest.py
from collections.abc import AsyncGenerator
from typing import Any

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
from starlette.requests import Request

from loginguard.core.auth import get_identity_provider, get_rate_guard
from loginguard.core.rate_limit import AuthRateGuard
from loginguard.db.base import Base
from loginguard.db.session import get_async_session
from loginguard.main import app as fastapi_app
from loginguard.services.event_recorder import alerter
from loginguard.services.identity_provider import SignInResult

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


class FakeIdentityProvider:
    """In-memory identity provider: accounts are {email: (password, subject_id)}."""

    def __init__(self, accounts: dict[str, tuple[str, str]] | None = None):
        self.accounts = accounts or {}
        self.tokens: dict[str, dict[str, Any]] = {}
        self.sign_in_calls: list[str] = []
        self.error: Exception | None = None
        self.verified_codes: set[str] = {"123456"}

    def add_account(self, email: str, password: str, subject_id: str) -> str:
        self.accounts[email] = (password, subject_id)
        token = f"token-{subject_id}"
        self.tokens[token] = {"id": subject_id, "email": email}
        return token

    async def sign_in(self, identity: str, credential: str) -> SignInResult:
        self.sign_in_calls.append(identity)
        if self.error is not None:
            raise self.error
        account = self.accounts.get(identity)
        if account is None or account[0] != credential:
            return SignInResult(ok=False, failure_reason="Invalid login credentials")
        return SignInResult(
            ok=True,
            subject_id=account[1],
            session={"access_token": f"token-{account[1]}", "token_type": "bearer"},
        )

    async def get_user(self, access_token: str) -> dict[str, Any]:
        if access_token not in self.tokens:
            raise PermissionError("Invalid or expired access token")
        return self.tokens[access_token]

    async def enroll_mfa(self, access_token: str, friendly_name: str | None = None) -> dict[str, Any]:
        return {
            "id": "factor-1",
            "type": "totp",
            "totp": {"qr_code": "data:image/svg+xml;...", "secret": "JBSWY3DP", "uri": "otpauth://"},
        }

    async def verify_mfa_challenge(self, access_token: str, factor_id: str, code: str) -> dict[str, Any]:
        if code not in self.verified_codes:
            raise ValueError("Invalid TOTP code entered")
        return {"access_token": access_token}


def make_request(
    ip: str = "1.2.3.4",
    path: str = "/api/v1/auth/login",
    user_agent: str = "pytest-agent/1.0",
) -> Request:
    """A bare Starlette request whose client address is `ip` (via X-Forwarded-For)."""
    scope = {
        "type": "http",
        "method": "POST",
        "path": path,
        "query_string": b"",
        "headers": [
            (b"x-forwarded-for", ip.encode()),
            (b"user-agent", user_agent.encode()),
        ],
        "client": ("10.0.0.1", 50000),
        "server": ("test", 80),
        "scheme": "http",
    }
    return Request(scope)


@pytest.fixture
def fake_provider() -> FakeIdentityProvider:
    return FakeIdentityProvider()


@pytest.fixture
def rate_guard() -> AuthRateGuard:
    """A permissive auth rate guard so lockout behaviour can be exercised."""
    guard = AuthRateGuard(limit="1000/minute")
    return guard


@pytest_asyncio.fixture(scope="function")
async def test_engine():
    """Creates/Disposes an in-memory async engine FOR EACH TEST FUNCTION."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(test_engine) -> AsyncGenerator[AsyncSession, None]:
    """Yields a database session per function, using the function-scoped engine."""
    TestSessionFactory = async_sessionmaker(
        test_engine, expire_on_commit=False, class_=AsyncSession
    )
    async with TestSessionFactory() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
    await alerter.drain()


@pytest_asyncio.fixture(scope="function")
async def test_client(
    db_session: AsyncSession,
    fake_provider: FakeIdentityProvider,
    rate_guard: AuthRateGuard,
) -> AsyncGenerator[AsyncClient, None]:
    """
    Creates an httpx AsyncClient using ASGITransport for testing the FastAPI app.
    Injects the test database session, the fake identity provider and the rate guard.
    """

    async def override_get_async_session_for_test() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    fastapi_app.dependency_overrides[get_async_session] = override_get_async_session_for_test
    fastapi_app.dependency_overrides[get_identity_provider] = lambda: fake_provider
    fastapi_app.dependency_overrides[get_rate_guard] = lambda: rate_guard

    async with AsyncClient(
        transport=ASGITransport(app=fastapi_app), base_url="http://test"
    ) as client:
        yield client

    fastapi_app.dependency_overrides.clear()


@pytest.fixture
def request_factory():
    return make_request
