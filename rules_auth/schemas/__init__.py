"""Pydantic schemas for auth service."""

from rules_auth.schemas.auth import (
    AuthUserResponse,
    CheckUsernameRequest,
    CheckUsernameResponse,
    CompleteRegistrationRequest,
    DeviceCallbackRequest,
    DeviceInitializeRequest,
    DeviceInitializeResponse,
    DevicePollStatusResponse,
    OAuthCallbackRequest,
    OAuthCallbackTokenResponse,
    OAuthInitializeRequest,
    OAuthInitializeResponse,
    PendingRegistrationResponse,
    RefreshTokenRequest,
    SuccessResponse,
    TokenResponse,
)

__all__ = [
    "AuthUserResponse",
    "CheckUsernameRequest",
    "CheckUsernameResponse",
    "CompleteRegistrationRequest",
    "DeviceCallbackRequest",
    "DeviceInitializeRequest",
    "DeviceInitializeResponse",
    "DevicePollStatusResponse",
    "OAuthCallbackRequest",
    "OAuthCallbackTokenResponse",
    "OAuthInitializeRequest",
    "OAuthInitializeResponse",
    "PendingRegistrationResponse",
    "RefreshTokenRequest",
    "SuccessResponse",
    "TokenResponse",
]
