"""Per-request caller identity.

The context is resolved from the ``X-API-Key`` header first and the
``Authorization: Bearer`` access token second. Resolution never raises for a
missing or bad credential; the guards below turn an insufficient context into
an explicit error.
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from rules_auth.core.errors import ForbiddenError, UnauthorizedError
from rules_auth.core.messages import DEFAULT_LOCALE, ErrorMessages, translate
from rules_auth.services import user_store
from rules_auth.services.hashing import verify_secret
from rules_auth.services.token_service import AccessTokenClaims, TokenService, Valid

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthUser:
    """Authenticated caller as seen by procedures."""

    id: str
    email: str
    username: str
    role: str = "user"
    email_verified: bool = False
    display_name: str | None = None
    avatar_url: str | None = None

    @classmethod
    def from_claims(cls, claims: AccessTokenClaims) -> "AuthUser":
        return cls(
            id=claims.sub,
            email=claims.email,
            username=claims.username,
            role=claims.role,
            email_verified=claims.email_verified,
            display_name=claims.display_name,
            avatar_url=claims.avatar_url,
        )


@dataclass(frozen=True)
class AuthContext:
    """Identity of the current request.

    ``api_key_scopes`` is None for token callers, who carry full access.
    """

    user: AuthUser | None = None
    api_key_scopes: list[str] | None = None

    @property
    def is_authenticated(self) -> bool:
        return self.user is not None


ANONYMOUS = AuthContext()


async def resolve_auth_context(
    db: AsyncSession,
    token_service: TokenService,
    api_key: str | None = None,
    authorization: str | None = None,
    clock: Callable[[], float] = time.time,
) -> AuthContext:
    """Resolve the caller from request credentials.

    Args:
        db: Database session
        token_service: Verifier for bearer tokens
        api_key: Raw ``X-API-Key`` header value
        authorization: Raw ``Authorization`` header value
        clock: Returns the current time in epoch seconds

    Returns:
        AuthContext; anonymous when no credential matched
    """
    if api_key:
        context = await _resolve_api_key(db, api_key, int(clock()))
        if context is not None:
            return context

    if authorization:
        scheme, _, token = authorization.partition(" ")
        if scheme.lower() == "bearer" and token.strip():
            verified = token_service.verify_access_token(token.strip())
            if isinstance(verified, Valid):
                return AuthContext(user=AuthUser.from_claims(verified.value))

    return ANONYMOUS


async def _resolve_api_key(db: AsyncSession, raw_key: str, now: int) -> AuthContext | None:
    # Keys are salted, so every active hash has to be checked
    try:
        for api_key in await user_store.list_active_api_keys(db, now):
            if not verify_secret(raw_key, api_key.key_hash):
                continue
            await user_store.touch_api_key(db, api_key, now)
            user = api_key.user
            return AuthContext(
                user=AuthUser(
                    id=user.id,
                    email=user.email,
                    username=user.username,
                    role=user.role,
                    email_verified=user.email_verified,
                    display_name=user.display_name,
                    avatar_url=user.avatar_url,
                ),
                api_key_scopes=list(api_key.scopes or []),
            )
    except SQLAlchemyError:
        logger.exception("API key lookup failed")
        await db.rollback()
    return None


def require_user(context: AuthContext, locale: str = DEFAULT_LOCALE) -> AuthUser:
    """Return the authenticated user.

    Raises:
        UnauthorizedError: If the request carries no valid credential
    """
    if context.user is None:
        raise UnauthorizedError(translate(ErrorMessages.AUTH_REQUIRED, locale))
    return context.user


def require_verified_email(context: AuthContext, locale: str = DEFAULT_LOCALE) -> AuthUser:
    """Return the authenticated user if their email is verified.

    Raises:
        UnauthorizedError: If unauthenticated
        ForbiddenError: If the email is not verified
    """
    user = require_user(context, locale)
    if not user.email_verified:
        raise ForbiddenError(translate(ErrorMessages.EMAIL_VERIFICATION_REQUIRED, locale))
    return user


def require_admin(context: AuthContext, locale: str = DEFAULT_LOCALE) -> AuthUser:
    """Return the authenticated user if they are an admin.

    Raises:
        UnauthorizedError: If unauthenticated
        ForbiddenError: If the user is not an admin
    """
    user = require_user(context, locale)
    if user.role != "admin":
        raise ForbiddenError(translate(ErrorMessages.ADMIN_REQUIRED, locale))
    return user


def require_scope(context: AuthContext, scope: str, locale: str = DEFAULT_LOCALE) -> AuthUser:
    """Return the authenticated user if the credential grants ``scope``.

    Raises:
        UnauthorizedError: If unauthenticated
        ForbiddenError: If an API key lacks ``scope``
    """
    user = require_user(context, locale)
    if context.api_key_scopes is not None and scope not in context.api_key_scopes:
        raise ForbiddenError(
            translate(ErrorMessages.INSUFFICIENT_SCOPE, locale, scope=scope),
            details={"scope": scope},
        )
    return user
