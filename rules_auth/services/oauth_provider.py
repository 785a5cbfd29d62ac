"""OAuth identity provider adapters.

Only GitHub is supported. The adapter wraps the authorization-code, device
authorization (RFC 8628) and profile endpoints. It never decides what a
failure means for the user; it raises ``OAuthProviderError`` when the
provider answered with an OAuth error code and ``ProviderRequestError`` for
transport failures, non-2xx answers and unexpected payloads.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from rules_auth.config import AuthSettings

logger = logging.getLogger(__name__)

DEVICE_CODE_GRANT_TYPE = "urn:ietf:params:oauth:grant-type:device_code"
DEFAULT_SCOPES = ["user:email"]


class OAuthProviderError(Exception):
    """The provider answered with an OAuth error code."""

    def __init__(self, error: str, description: str | None = None) -> None:
        self.error = error
        self.description = description
        super().__init__(f"{error}: {description}" if description else error)


class ProviderRequestError(Exception):
    """Network failure, non-2xx status or malformed provider response."""


@dataclass(frozen=True)
class ProviderProfile:
    """Identity reported by the provider."""

    provider_id: str
    email: str | None
    username: str | None


@dataclass(frozen=True)
class DeviceAuthorization:
    """Device authorization response (RFC 8628 section 3.2)."""

    device_code: str
    user_code: str
    verification_uri: str
    expires_in: int
    interval: int


@dataclass(frozen=True)
class DeviceTokenResponse:
    """Outcome of one device token poll.

    Exactly one of ``access_token`` and ``error`` is set.
    """

    access_token: str | None = None
    error: str | None = None
    error_description: str | None = None
    interval: int | None = None


class OAuthProvider(Protocol):
    """Contract the auth service expects from an identity provider."""

    name: str
    display_name: str

    @property
    def is_configured(self) -> bool: ...

    def authorization_url(self, state: str, scopes: list[str]) -> str: ...

    async def exchange_code(self, code: str) -> str: ...

    async def request_device_code(self, scopes: list[str]) -> DeviceAuthorization: ...

    async def poll_device_token(self, device_code: str) -> DeviceTokenResponse: ...

    async def fetch_profile(self, access_token: str) -> ProviderProfile: ...


class GitHubOAuthProvider:
    """GitHub OAuth app client."""

    name = "github"
    display_name = "GitHub"

    AUTHORIZE_URL = "https://github.com/login/oauth/authorize"
    TOKEN_URL = "https://github.com/login/oauth/access_token"
    DEVICE_CODE_URL = "https://github.com/login/device/code"
    API_BASE = "https://api.github.com"

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        http_client: httpx.AsyncClient,
        user_agent: str = "rules-auth",
    ) -> None:
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self._client = http_client
        self._user_agent = user_agent

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    def authorization_url(self, state: str, scopes: list[str]) -> str:
        """Build the URL the browser is redirected to."""
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": " ".join(scopes),
            "state": state,
        }
        return str(httpx.URL(self.AUTHORIZE_URL, params=params))

    async def exchange_code(self, code: str) -> str:
        """Exchange an authorization code for a GitHub access token."""
        data = await self._post_form(
            self.TOKEN_URL,
            {
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "code": code,
                "redirect_uri": self.redirect_uri,
            },
        )
        if "error" in data:
            raise OAuthProviderError(data["error"], data.get("error_description"))

        access_token = data.get("access_token")
        if not isinstance(access_token, str) or not access_token:
            raise ProviderRequestError("Token response without access_token")
        return access_token

    async def request_device_code(self, scopes: list[str]) -> DeviceAuthorization:
        """Start a device authorization."""
        data = await self._post_form(
            self.DEVICE_CODE_URL,
            {"client_id": self.client_id, "scope": " ".join(scopes)},
        )
        if "error" in data:
            raise OAuthProviderError(data["error"], data.get("error_description"))

        try:
            return DeviceAuthorization(
                device_code=str(data["device_code"]),
                user_code=str(data["user_code"]),
                verification_uri=str(data["verification_uri"]),
                expires_in=int(data["expires_in"]),
                interval=int(data.get("interval", 5)),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ProviderRequestError(f"Malformed device code response: {e}") from e

    async def poll_device_token(self, device_code: str) -> DeviceTokenResponse:
        """Ask GitHub whether the user has authorized the device yet.

        OAuth error codes (``authorization_pending``, ``slow_down`` ...) are
        returned, not raised; they are expected polling states.
        """
        data = await self._post_form(
            self.TOKEN_URL,
            {
                "client_id": self.client_id,
                "device_code": device_code,
                "grant_type": DEVICE_CODE_GRANT_TYPE,
            },
        )
        if "error" in data:
            interval = data.get("interval")
            return DeviceTokenResponse(
                error=str(data["error"]),
                error_description=data.get("error_description"),
                interval=interval if isinstance(interval, int) else None,
            )

        access_token = data.get("access_token")
        if not isinstance(access_token, str) or not access_token:
            raise ProviderRequestError("Device token response without access_token")
        return DeviceTokenResponse(access_token=access_token)

    async def fetch_profile(self, access_token: str) -> ProviderProfile:
        """Fetch id, login and the primary verified email of the user."""
        headers = {
            "Authorization": f"Bearer {access_token}",
            "Accept": "application/vnd.github+json",
            "User-Agent": self._user_agent,
        }
        try:
            user_response, emails_response = await asyncio.gather(
                self._client.get(f"{self.API_BASE}/user", headers=headers),
                self._client.get(f"{self.API_BASE}/user/emails", headers=headers),
            )
        except httpx.HTTPError as e:
            raise ProviderRequestError(f"GitHub API request failed: {e}") from e

        if user_response.is_error or emails_response.is_error:
            logger.error(
                f"GitHub API error: user={user_response.status_code} "
                f"emails={emails_response.status_code}"
            )
            raise ProviderRequestError("GitHub API returned an error status")

        try:
            user = user_response.json()
            emails = emails_response.json()
            provider_id = str(user["id"])
        except (KeyError, TypeError, ValueError) as e:
            raise ProviderRequestError(f"Malformed GitHub profile: {e}") from e

        login = user.get("login")
        return ProviderProfile(
            provider_id=provider_id,
            email=select_verified_email(emails if isinstance(emails, list) else []),
            username=login if isinstance(login, str) else None,
        )

    async def _post_form(self, url: str, form: dict[str, str]) -> dict[str, Any]:
        try:
            response = await self._client.post(
                url,
                data=form,
                headers={"Accept": "application/json", "User-Agent": self._user_agent},
            )
        except httpx.HTTPError as e:
            raise ProviderRequestError(f"Request to {url} failed: {e}") from e

        try:
            data = response.json()
        except ValueError as e:
            raise ProviderRequestError(
                f"Non-JSON response from {url} (status {response.status_code})"
            ) from e

        if not isinstance(data, dict):
            raise ProviderRequestError(f"Unexpected response shape from {url}")
        if response.is_error and "error" not in data:
            raise ProviderRequestError(f"{url} returned status {response.status_code}")
        return data


def select_verified_email(emails: list[Any]) -> str | None:
    """Primary verified address first, then any verified address."""
    verified = [
        entry["email"]
        for entry in emails
        if isinstance(entry, dict) and entry.get("verified") and isinstance(entry.get("email"), str)
    ]
    for entry in emails:
        if isinstance(entry, dict) and entry.get("primary") and entry.get("email") in verified:
            return entry["email"]
    return verified[0] if verified else None


def create_oauth_providers(
    settings: AuthSettings, http_client: httpx.AsyncClient
) -> dict[str, OAuthProvider]:
    """Build the providers for one request.

    Providers hold no credentials beyond the app's client id/secret, so
    nothing user specific outlives the request.
    """
    return {
        GitHubOAuthProvider.name: GitHubOAuthProvider(
            client_id=settings.github_oauth_client_id,
            client_secret=settings.github_oauth_client_secret,
            redirect_uri=settings.oauth_redirect_uri,
            http_client=http_client,
        ),
    }
