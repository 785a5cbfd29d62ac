"""FastAPI dependencies for auth service."""

from collections.abc import AsyncGenerator

import httpx
from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from rules_auth.config import AuthSettings, get_settings
from rules_auth.core.errors import TooManyRequestsError
from rules_auth.core.messages import ErrorMessages, detect_locale, translate
from rules_auth.database import get_async_session
from rules_auth.services.auth_context import (
    AuthContext,
    AuthUser,
    require_user,
    resolve_auth_context,
)
from rules_auth.services.auth_service import AuthService
from rules_auth.services.oauth_provider import OAuthProvider, create_oauth_providers
from rules_auth.services.oauth_security import client_ip_from_headers
from rules_auth.services.rate_limiter import SlidingWindowRateLimiter
from rules_auth.services.token_service import TokenService


def get_locale(
    accept_language: str | None = Header(default=None),
    settings: AuthSettings = Depends(get_settings),
) -> str:
    """Locale for messages, from ``Accept-Language``."""
    return detect_locale(accept_language, settings.default_locale)


def get_client_ip(request: Request) -> str:
    """Client IP as seen behind the edge proxy."""
    peer = request.client.host if request.client else None
    return client_ip_from_headers(dict(request.headers), peer)


def get_auth_rate_limiter(request: Request) -> SlidingWindowRateLimiter:
    """Limiter shared by the app's rate-limited auth procedures."""
    return request.app.state.auth_rate_limiter


async def auth_rate_limit(
    client_ip: str = Depends(get_client_ip),
    limiter: SlidingWindowRateLimiter = Depends(get_auth_rate_limiter),
    locale: str = Depends(get_locale),
) -> None:
    """Reject the request with TOO_MANY_REQUESTS once the client is over its limit."""
    retry_after = limiter.hit(f"auth:{client_ip}")
    if retry_after is not None:
        raise TooManyRequestsError(
            translate(ErrorMessages.RATE_LIMIT_EXCEEDED, locale, seconds=retry_after),
            details={"code": "RATE_LIMIT_EXCEEDED", "retry_after": retry_after},
        )


async def get_http_client(
    settings: AuthSettings = Depends(get_settings),
) -> AsyncGenerator[httpx.AsyncClient, None]:
    """HTTP client for provider calls, closed when the request ends.

    Yields:
        httpx.AsyncClient: Client with the provider timeout applied
    """
    async with httpx.AsyncClient(timeout=settings.provider_timeout_seconds) as client:
        yield client


def get_oauth_providers(
    settings: AuthSettings = Depends(get_settings),
    http_client: httpx.AsyncClient = Depends(get_http_client),
) -> dict[str, OAuthProvider]:
    """OAuth providers keyed by name."""
    return create_oauth_providers(settings, http_client)


def get_token_service(settings: AuthSettings = Depends(get_settings)) -> TokenService:
    return TokenService(settings)


def get_auth_service(
    db: AsyncSession = Depends(get_async_session),
    settings: AuthSettings = Depends(get_settings),
    token_service: TokenService = Depends(get_token_service),
    providers: dict[str, OAuthProvider] = Depends(get_oauth_providers),
    locale: str = Depends(get_locale),
) -> AuthService:
    """Auth service bound to the request's session and locale."""
    return AuthService(db, settings, token_service, providers, locale)


async def get_auth_context(
    db: AsyncSession = Depends(get_async_session),
    token_service: TokenService = Depends(get_token_service),
    x_api_key: str | None = Header(default=None),
    authorization: str | None = Header(default=None),
) -> AuthContext:
    """Resolve the caller from ``X-API-Key`` or ``Authorization``.

    Never fails; use ``get_current_user`` to require authentication.
    """
    return await resolve_auth_context(db, token_service, x_api_key, authorization)


def get_current_user(
    context: AuthContext = Depends(get_auth_context),
    locale: str = Depends(get_locale),
) -> AuthUser:
    """Authenticated user or UNAUTHORIZED."""
    return require_user(context, locale)
