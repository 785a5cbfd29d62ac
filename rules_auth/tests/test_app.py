"""HTTP-level tests for the auth procedures."""

from collections.abc import AsyncGenerator

import httpx
import pytest
from fastapi import FastAPI
from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rules_auth.app import create_app
from rules_auth.config import AuthSettings, get_settings
from rules_auth.database import get_async_session
from rules_auth.dependencies import get_oauth_providers
from rules_auth.models.user import User
from rules_auth.services import oauth_state_store
from rules_auth.services.oauth_security import decode_state_payload
from rules_auth.services.rate_limiter import SlidingWindowRateLimiter
from rules_auth.services.token_service import TokenService
from rules_auth.tests.mocks import MockOAuthProvider, state_from_url


@pytest.fixture
def app(
    settings: AuthSettings,
    session_maker: async_sessionmaker[AsyncSession],
    mock_provider: MockOAuthProvider,
) -> FastAPI:
    """App backed by the test database and the mock provider."""
    app = create_app(settings)

    async def override_session() -> AsyncGenerator[AsyncSession, None]:
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_async_session] = override_session
    app.dependency_overrides[get_oauth_providers] = lambda: {mock_provider.name: mock_provider}
    return app


@pytest.fixture
async def client(app: FastAPI) -> AsyncGenerator[httpx.AsyncClient, None]:
    """HTTP client against the app."""
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


async def _start_login(client: httpx.AsyncClient, action: str = "login", **headers: str) -> str:
    response = await client.post(
        "/auth/oauthInitialize",
        json={"provider": "github", "redirectUrl": "/dashboard", "action": action},
        headers=headers,
    )
    assert response.status_code == 200
    return state_from_url(response.json()["authorizationUrl"])


class TestApplication:
    """Tests for the application factory and health endpoint."""

    def test_factory_settings_reach_dependencies(self, settings: AuthSettings) -> None:
        """Test that create_app settings are the ones request dependencies see."""
        app = create_app(settings)

        assert app.dependency_overrides[get_settings]() is settings

    @pytest.mark.asyncio
    async def test_health(self, client: httpx.AsyncClient) -> None:
        """Test the health check."""
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}


class TestRedirectFlowEndpoints:
    """Tests for the redirect flow over HTTP."""

    @pytest.mark.asyncio
    async def test_initialize_records_forwarded_ip(
        self, client: httpx.AsyncClient, db: AsyncSession
    ) -> None:
        """Test that the first X-Forwarded-For hop is stored with the state."""
        state = await _start_login(client, **{"X-Forwarded-For": "198.51.100.7, 10.0.0.1"})

        payload = decode_state_payload(state)
        record = await oauth_state_store.get_csrf_state(db, payload.random)
        assert record.client_ip == "198.51.100.7"
        assert record.redirect_url == "/dashboard"

    @pytest.mark.asyncio
    async def test_initialize_is_rate_limited(
        self, app: FastAPI, client: httpx.AsyncClient
    ) -> None:
        """Test the per-client limit on oauthInitialize."""
        app.state.auth_rate_limiter = SlidingWindowRateLimiter(2, 60)
        headers = {"X-Forwarded-For": "198.51.100.7"}

        await _start_login(client, **headers)
        await _start_login(client, **headers)
        limited = await client.post(
            "/auth/oauthInitialize", json={"provider": "github"}, headers=headers
        )
        other_client = await client.post(
            "/auth/oauthInitialize",
            json={"provider": "github"},
            headers={"X-Forwarded-For": "203.0.113.9"},
        )

        assert limited.status_code == 429
        body = limited.json()
        assert body["code"] == "TOO_MANY_REQUESTS"
        assert body["details"]["code"] == "RATE_LIMIT_EXCEEDED"
        assert body["details"]["retry_after"] >= 1
        assert other_client.status_code == 200

    @pytest.mark.asyncio
    async def test_register_then_me(self, client: httpx.AsyncClient) -> None:
        """Test callback, registration completion and /auth/me end to end."""
        state = await _start_login(client, action="register")

        callback = await client.post(
            "/auth/oauthCallback",
            json={"provider": "github", "code": "abc-code-0123", "state": state},
        )
        assert callback.status_code == 200
        pending = callback.json()
        assert pending["requiresUsername"] is True
        assert pending["provider"] == "github"

        check = await client.post("/auth/checkUsername", json={"username": "octocat"})
        assert check.json() == {"available": True}

        completed = await client.post(
            "/auth/completeOAuthRegistration",
            json={"tempToken": pending["tempToken"], "username": "octocat"},
        )
        assert completed.status_code == 200
        body = completed.json()
        assert body["user"]["username"] == "octocat"
        assert body["user"]["emailVerified"] is True

        me = await client.get(
            "/auth/me", headers={"Authorization": f"Bearer {body['accessToken']}"}
        )
        assert me.status_code == 200
        assert me.json()["email"] == "octocat@example.com"

        login_state = await _start_login(client)
        login = await client.post(
            "/auth/oauthCallback",
            json={"provider": "github", "code": "def-code-0123", "state": login_state},
        )
        assert login.status_code == 200
        assert login.json()["redirectUrl"] == "/dashboard"
        assert login.json()["user"]["id"] == body["user"]["id"]

    @pytest.mark.asyncio
    async def test_replayed_state(self, client: httpx.AsyncClient) -> None:
        """Test that a state can only be used once."""
        state = await _start_login(client, action="register")
        payload = {"provider": "github", "code": "abc-code-0123", "state": state}

        first = await client.post("/auth/oauthCallback", json=payload)
        second = await client.post("/auth/oauthCallback", json=payload)

        assert first.status_code == 200
        assert second.status_code == 400
        assert second.json()["code"] == "BAD_REQUEST"

    @pytest.mark.asyncio
    async def test_unknown_identity_login_is_not_found(self, client: httpx.AsyncClient) -> None:
        """Test that login with an unregistered identity reports NOT_FOUND."""
        state = await _start_login(client)

        response = await client.post(
            "/auth/oauthCallback",
            json={"provider": "github", "code": "abc-code-0123", "state": state},
        )

        assert response.status_code == 404
        assert response.json()["code"] == "NOT_FOUND"


class TestMe:
    """Tests for /auth/me."""

    @pytest.mark.asyncio
    async def test_reflects_role_change(
        self,
        client: httpx.AsyncClient,
        db: AsyncSession,
        token_service: TokenService,
        make_user,
    ) -> None:
        """Test that the stored user wins over stale token claims."""
        user = await make_user()
        pair = token_service.issue_token_pair(user)
        user.role = "admin"
        await db.commit()

        response = await client.get(
            "/auth/me", headers={"Authorization": f"Bearer {pair.access_token}"}
        )

        assert response.status_code == 200
        assert response.json()["role"] == "admin"

    @pytest.mark.asyncio
    async def test_deleted_user(
        self,
        client: httpx.AsyncClient,
        db: AsyncSession,
        token_service: TokenService,
        make_user,
    ) -> None:
        """Test that a token for a deleted user is rejected."""
        user = await make_user()
        pair = token_service.issue_token_pair(user)
        await db.execute(delete(User).where(User.id == user.id))
        await db.commit()

        response = await client.get(
            "/auth/me", headers={"Authorization": f"Bearer {pair.access_token}"}
        )

        assert response.status_code == 401
        assert response.json()["message"] == "User not found"


class TestErrors:
    """Tests for error mapping."""

    @pytest.mark.asyncio
    async def test_me_requires_auth(self, client: httpx.AsyncClient) -> None:
        """Test UNAUTHORIZED for an anonymous caller."""
        response = await client.get("/auth/me")

        assert response.status_code == 401
        assert response.json() == {
            "code": "UNAUTHORIZED",
            "message": "Authentication required",
            "details": None,
        }

    @pytest.mark.asyncio
    async def test_japanese_messages(self, client: httpx.AsyncClient) -> None:
        """Test that Accept-Language selects the message locale."""
        response = await client.get("/auth/me", headers={"Accept-Language": "ja-JP,ja;q=0.9"})

        assert response.status_code == 401
        assert response.json()["message"] == "認証が必要です"

    @pytest.mark.asyncio
    async def test_refresh_with_garbage(self, client: httpx.AsyncClient) -> None:
        """Test that an invalid refresh token is UNAUTHORIZED."""
        response = await client.post("/auth/refresh", json={"refreshToken": "not-a-token"})

        assert response.status_code == 401
        assert response.json()["code"] == "UNAUTHORIZED"

    @pytest.mark.asyncio
    async def test_invalid_username_is_bad_request(self, client: httpx.AsyncClient) -> None:
        """Test that schema validation failures map to BAD_REQUEST."""
        response = await client.post("/auth/checkUsername", json={"username": "no spaces!"})

        assert response.status_code == 400
        body = response.json()
        assert body["code"] == "BAD_REQUEST"
        assert body["message"] == "Invalid input"
        assert body["details"]["errors"]

    @pytest.mark.asyncio
    async def test_unsupported_provider(self, client: httpx.AsyncClient) -> None:
        """Test that unknown providers are rejected before any work."""
        response = await client.post("/auth/oauthInitialize", json={"provider": "gitlab"})

        assert response.status_code == 400


class TestDeviceFlowEndpoints:
    """Tests for the device flow over HTTP."""

    @pytest.mark.asyncio
    async def test_initialize_and_poll(self, client: httpx.AsyncClient) -> None:
        """Test snake_case device payloads and a pending first poll."""
        initialized = await client.post(
            "/auth/oauthDeviceInitialize",
            json={"provider": "github"},
            headers={"User-Agent": "rules-cli/1.0"},
        )
        assert initialized.status_code == 200
        device = initialized.json()
        assert device["user_code"] == "WDJB-MJHT"
        assert device["verification_uri"] == "https://github.com/login/device"
        assert device["expires_in"] == 900
        assert device["interval"] == 5

        polled = await client.post(
            "/auth/oauthDeviceCallback", json={"deviceCode": device["device_code"]}
        )
        assert polled.status_code == 200
        assert polled.json()["error"] == "authorization_pending"
        assert "error_description" in polled.json()

    @pytest.mark.asyncio
    async def test_poll_unknown_code(self, client: httpx.AsyncClient) -> None:
        """Test that an unknown device code is BAD_REQUEST."""
        response = await client.post("/auth/oauthDeviceCallback", json={"deviceCode": "nope"})

        assert response.status_code == 400
        assert response.json()["message"] == "Invalid device code"
