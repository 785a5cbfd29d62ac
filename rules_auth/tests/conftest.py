"""Pytest fixtures for auth service tests."""

from collections.abc import AsyncGenerator, Awaitable, Callable
from typing import Any

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

import rules_auth.models  # noqa: F401
from rules_auth.config import AuthSettings
from rules_auth.database import Base, build_engine
from rules_auth.models.user import User
from rules_auth.services.auth_service import AuthService
from rules_auth.services.token_service import TokenService
from rules_auth.tests.mocks.mock_provider import FakeClock, MockOAuthProvider

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture
def settings() -> AuthSettings:
    """Settings with a test secret and configured GitHub credentials."""
    return AuthSettings(
        jwt_secret="test-secret-key-for-testing-only-0123456789",
        database_url=TEST_DATABASE_URL,
        github_oauth_client_id="test-client-id",
        github_oauth_client_secret="test-client-secret",
        allowed_redirect_hosts=["localhost", "*.example.com"],
        default_locale="en",
    )


@pytest.fixture
def token_service(settings: AuthSettings) -> TokenService:
    """Create token service."""
    return TokenService(settings)


@pytest.fixture
def clock() -> FakeClock:
    """Controllable clock for expiry and polling interval checks."""
    return FakeClock()


@pytest.fixture
def mock_provider() -> MockOAuthProvider:
    """Create mock GitHub provider."""
    return MockOAuthProvider()


@pytest.fixture
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    """In-memory SQLite engine with all tables created."""
    engine = build_engine(TEST_DATABASE_URL, poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session maker configured like the production one."""
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(
    session_maker: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Database session for one test."""
    async with session_maker() as session:
        yield session


@pytest.fixture
def auth_service(
    db: AsyncSession,
    settings: AuthSettings,
    token_service: TokenService,
    mock_provider: MockOAuthProvider,
    clock: FakeClock,
) -> AuthService:
    """Auth service wired to the mock provider and fake clock."""
    return AuthService(
        db,
        settings,
        token_service,
        {mock_provider.name: mock_provider},
        locale="en",
        clock=clock,
    )


@pytest.fixture
def make_user(db: AsyncSession) -> Callable[..., Awaitable[User]]:
    """Factory persisting a user."""

    async def _make_user(
        email: str = "alice@example.com",
        username: str = "alice",
        **fields: Any,
    ) -> User:
        fields.setdefault("role", "user")
        fields.setdefault("email_verified", True)
        user = User(email=email, username=username, **fields)
        db.add(user)
        await db.commit()
        await db.refresh(user)
        return user

    return _make_user
