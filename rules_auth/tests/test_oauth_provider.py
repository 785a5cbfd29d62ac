"""Tests for the GitHub provider adapter over a mocked transport."""

import json
from collections.abc import Callable
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from rules_auth.config import AuthSettings
from rules_auth.services.oauth_provider import (
    DEVICE_CODE_GRANT_TYPE,
    GitHubOAuthProvider,
    OAuthProviderError,
    ProviderRequestError,
    create_oauth_providers,
    select_verified_email,
)

Handler = Callable[[httpx.Request], httpx.Response]


def _form(request: httpx.Request) -> dict[str, str]:
    return {key: values[0] for key, values in parse_qs(request.content.decode()).items()}


def _provider(handler: Handler, client_secret: str = "secret") -> GitHubOAuthProvider:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return GitHubOAuthProvider(
        client_id="client-id",
        client_secret=client_secret,
        redirect_uri="http://localhost:3000/auth/callback/github",
        http_client=client,
    )


def _unreachable(request: httpx.Request) -> httpx.Response:
    raise AssertionError(f"Unexpected request to {request.url}")


class TestAuthorizationUrl:
    """Tests for authorization URL construction."""

    def test_contains_oauth_parameters(self) -> None:
        """Test that client id, redirect URI, scope and state are included."""
        url = _provider(_unreachable).authorization_url("state-value-123", ["user:email"])

        parsed = urlparse(url)
        query = parse_qs(parsed.query)
        assert f"{parsed.scheme}://{parsed.netloc}{parsed.path}" == GitHubOAuthProvider.AUTHORIZE_URL
        assert query["client_id"] == ["client-id"]
        assert query["redirect_uri"] == ["http://localhost:3000/auth/callback/github"]
        assert query["scope"] == ["user:email"]
        assert query["state"] == ["state-value-123"]

    def test_is_configured(self) -> None:
        """Test that both client id and secret are required."""
        assert _provider(_unreachable).is_configured is True
        assert _provider(_unreachable, client_secret="").is_configured is False


class TestExchangeCode:
    """Tests for exchange_code."""

    @pytest.mark.asyncio
    async def test_success(self) -> None:
        """Test a successful code exchange."""

        def handler(request: httpx.Request) -> httpx.Response:
            assert str(request.url) == GitHubOAuthProvider.TOKEN_URL
            assert request.headers["accept"] == "application/json"
            form = _form(request)
            assert form["code"] == "auth-code-123"
            assert form["client_secret"] == "secret"
            return httpx.Response(200, json={"access_token": "gho_abc", "token_type": "bearer"})

        assert await _provider(handler).exchange_code("auth-code-123") == "gho_abc"

    @pytest.mark.asyncio
    async def test_oauth_error(self) -> None:
        """Test that an OAuth error body raises OAuthProviderError."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                json={
                    "error": "bad_verification_code",
                    "error_description": "The code passed is incorrect or expired.",
                },
            )

        with pytest.raises(OAuthProviderError) as exc_info:
            await _provider(handler).exchange_code("auth-code-123")
        assert exc_info.value.error == "bad_verification_code"

    @pytest.mark.asyncio
    async def test_non_json_response(self) -> None:
        """Test that an HTML error page raises ProviderRequestError."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(502, text="<html>Bad gateway</html>")

        with pytest.raises(ProviderRequestError):
            await _provider(handler).exchange_code("auth-code-123")

    @pytest.mark.asyncio
    async def test_transport_error(self) -> None:
        """Test that network failures raise ProviderRequestError."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(ProviderRequestError):
            await _provider(handler).exchange_code("auth-code-123")

    @pytest.mark.asyncio
    async def test_missing_access_token(self) -> None:
        """Test that a success body without a token is rejected."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"token_type": "bearer"})

        with pytest.raises(ProviderRequestError):
            await _provider(handler).exchange_code("auth-code-123")


class TestDeviceFlow:
    """Tests for the device authorization endpoints."""

    @pytest.mark.asyncio
    async def test_request_device_code(self) -> None:
        """Test parsing of the device authorization response."""

        def handler(request: httpx.Request) -> httpx.Response:
            assert str(request.url) == GitHubOAuthProvider.DEVICE_CODE_URL
            assert _form(request) == {"client_id": "client-id", "scope": "user:email repo"}
            return httpx.Response(
                200,
                json={
                    "device_code": "3584d83530557fdd1f46af8289938c8ef79f9dc5",
                    "user_code": "WDJB-MJHT",
                    "verification_uri": "https://github.com/login/device",
                    "expires_in": 900,
                    "interval": 5,
                },
            )

        authorization = await _provider(handler).request_device_code(["user:email", "repo"])

        assert authorization.user_code == "WDJB-MJHT"
        assert authorization.expires_in == 900
        assert authorization.verification_uri == "https://github.com/login/device"
        assert authorization.interval == 5

    @pytest.mark.asyncio
    async def test_request_device_code_malformed(self) -> None:
        """Test that a response without required fields is rejected."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"user_code": "WDJB-MJHT"})

        with pytest.raises(ProviderRequestError):
            await _provider(handler).request_device_code(["user:email"])

    @pytest.mark.asyncio
    async def test_poll_pending_is_returned(self) -> None:
        """Test that authorization_pending is data, and no secret is sent."""

        def handler(request: httpx.Request) -> httpx.Response:
            form = _form(request)
            assert form["grant_type"] == DEVICE_CODE_GRANT_TYPE
            assert form["device_code"] == "device-code"
            assert "client_secret" not in form
            return httpx.Response(200, json={"error": "authorization_pending"})

        response = await _provider(handler).poll_device_token("device-code")

        assert response.error == "authorization_pending"
        assert response.access_token is None

    @pytest.mark.asyncio
    async def test_poll_slow_down_carries_interval(self) -> None:
        """Test that the new interval from slow_down is exposed."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"error": "slow_down", "interval": 10})

        response = await _provider(handler).poll_device_token("device-code")

        assert response.error == "slow_down"
        assert response.interval == 10

    @pytest.mark.asyncio
    async def test_poll_success(self) -> None:
        """Test a completed device authorization."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"access_token": "gho_device", "token_type": "bearer"})

        response = await _provider(handler).poll_device_token("device-code")

        assert response.access_token == "gho_device"
        assert response.error is None


class TestFetchProfile:
    """Tests for fetch_profile."""

    @staticmethod
    def _api(emails: list[dict], user_status: int = 200) -> Handler:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.headers["authorization"] == "Bearer gho_abc"
            if request.url.path == "/user":
                return httpx.Response(user_status, json={"id": 583231, "login": "octocat"})
            if request.url.path == "/user/emails":
                return httpx.Response(200, content=json.dumps(emails))
            return httpx.Response(404)

        return handler

    @pytest.mark.asyncio
    async def test_primary_verified_email(self) -> None:
        """Test that the primary verified email is preferred."""
        emails = [
            {"email": "other@example.com", "primary": False, "verified": True},
            {"email": "octocat@example.com", "primary": True, "verified": True},
        ]

        profile = await _provider(self._api(emails)).fetch_profile("gho_abc")

        assert profile.provider_id == "583231"
        assert profile.username == "octocat"
        assert profile.email == "octocat@example.com"

    @pytest.mark.asyncio
    async def test_no_verified_email(self) -> None:
        """Test that unverified addresses are never returned."""
        emails = [{"email": "octocat@example.com", "primary": True, "verified": False}]

        profile = await _provider(self._api(emails)).fetch_profile("gho_abc")

        assert profile.email is None

    @pytest.mark.asyncio
    async def test_api_error_status(self) -> None:
        """Test that a failing API call raises ProviderRequestError."""
        with pytest.raises(ProviderRequestError):
            await _provider(self._api([], user_status=401)).fetch_profile("gho_abc")


class TestSelectVerifiedEmail:
    """Tests for select_verified_email."""

    def test_falls_back_to_any_verified(self) -> None:
        """Test fallback when the primary address is unverified."""
        emails = [
            {"email": "primary@example.com", "primary": True, "verified": False},
            {"email": "backup@example.com", "primary": False, "verified": True},
        ]
        assert select_verified_email(emails) == "backup@example.com"

    def test_ignores_malformed_entries(self) -> None:
        """Test robustness against unexpected list items."""
        assert select_verified_email(["x", {"verified": True}, None]) is None


def test_create_oauth_providers(settings: AuthSettings) -> None:
    """Test that providers are built from settings."""
    providers = create_oauth_providers(settings, httpx.AsyncClient())

    github = providers["github"]
    assert isinstance(github, GitHubOAuthProvider)
    assert github.is_configured is True
    assert github.redirect_uri == "http://localhost:3000/auth/callback/github"
