"""Signed access and refresh tokens.

Verification never raises: callers receive either ``Valid(value)`` or the
``INVALID`` sentinel, which carries no reason. Signature mismatch, expiry,
wrong audience, wrong token type and garbage input are indistinguishable.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

import jwt
from fastapi_users.jwt import decode_jwt, generate_jwt

from rules_auth.config import AuthSettings

logger = logging.getLogger(__name__)

T = TypeVar("T")

ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"


@dataclass(frozen=True)
class Valid(Generic[T]):
    """Successful verification result."""

    value: T


@dataclass(frozen=True)
class Invalid:
    """Failed verification result. Deliberately carries no reason."""


INVALID = Invalid()

VerifyResult = Valid[T] | Invalid


@dataclass(frozen=True)
class AccessTokenClaims:
    """Identity claims embedded in an access token."""

    sub: str
    email: str
    username: str
    role: str = "user"
    email_verified: bool = False
    display_name: str | None = None
    avatar_url: str | None = None

    @classmethod
    def from_user(cls, user: Any) -> "AccessTokenClaims":
        """Build claims from a ``User`` row."""
        return cls(
            sub=user.id,
            email=user.email,
            username=user.username,
            role=user.role,
            email_verified=user.email_verified,
            display_name=user.display_name,
            avatar_url=user.avatar_url,
        )


@dataclass(frozen=True)
class TokenPair:
    """Access token plus the refresh token that can renew it."""

    access_token: str
    refresh_token: str


class TokenService:
    """Issues and verifies HS256 (by default) JWTs with the server secret."""

    def __init__(self, settings: AuthSettings) -> None:
        self._secret = settings.jwt_secret
        self._algorithm = settings.jwt_algorithm
        self._audience = settings.jwt_audience
        self.access_lifetime = settings.access_token_lifetime_seconds
        self.refresh_lifetime = settings.refresh_token_lifetime_seconds

    def issue_access_token(self, claims: AccessTokenClaims) -> str:
        """Sign an access token for ``claims``."""
        payload = {
            "sub": claims.sub,
            "email": claims.email,
            "username": claims.username,
            "role": claims.role,
            "emailVerified": claims.email_verified,
            "displayName": claims.display_name,
            "avatarUrl": claims.avatar_url,
            "type": ACCESS_TOKEN_TYPE,
            "aud": [self._audience],
            "iat": int(time.time()),
        }
        return generate_jwt(
            payload, self._secret, self.access_lifetime, algorithm=self._algorithm
        )

    def issue_refresh_token(self, user_id: str) -> str:
        """Sign a refresh token carrying only the user id and type marker."""
        payload = {
            "sub": user_id,
            "type": REFRESH_TOKEN_TYPE,
            "aud": [self._audience],
            "iat": int(time.time()),
        }
        return generate_jwt(
            payload, self._secret, self.refresh_lifetime, algorithm=self._algorithm
        )

    def issue_token_pair(self, user: Any) -> TokenPair:
        """Issue a fresh access/refresh pair for ``user``."""
        return TokenPair(
            access_token=self.issue_access_token(AccessTokenClaims.from_user(user)),
            refresh_token=self.issue_refresh_token(user.id),
        )

    def verify_access_token(self, token: Any) -> VerifyResult[AccessTokenClaims]:
        """Verify signature, expiry and type of an access token."""
        payload = self._decode(token)
        if payload is None or payload.get("type") != ACCESS_TOKEN_TYPE:
            return INVALID

        sub = payload.get("sub")
        email = payload.get("email")
        username = payload.get("username")
        if not (isinstance(sub, str) and isinstance(email, str) and isinstance(username, str)):
            return INVALID

        role = payload.get("role")
        return Valid(
            AccessTokenClaims(
                sub=sub,
                email=email,
                username=username,
                role=role if isinstance(role, str) else "user",
                email_verified=payload.get("emailVerified") is True,
                display_name=payload.get("displayName"),
                avatar_url=payload.get("avatarUrl"),
            )
        )

    def verify_refresh_token(self, token: Any) -> VerifyResult[str]:
        """Verify a refresh token and return the user id it was issued for."""
        payload = self._decode(token)
        if payload is None or payload.get("type") != REFRESH_TOKEN_TYPE:
            return INVALID

        sub = payload.get("sub")
        if not isinstance(sub, str) or not sub:
            return INVALID
        return Valid(sub)

    def _decode(self, token: Any) -> dict[str, Any] | None:
        if not isinstance(token, str) or not token:
            return None
        try:
            payload = decode_jwt(
                token, self._secret, [self._audience], algorithms=[self._algorithm]
            )
        except jwt.PyJWTError:
            return None
        if not isinstance(payload, dict):
            return None
        return payload
