"""Request and response schemas for the auth procedures.

Procedure payloads use camelCase on the wire. The device-flow payloads keep
the RFC 8628 snake_case field names.
"""

from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, StringConstraints
from pydantic.alias_generators import to_camel

ProviderName = Literal["github"]

Username = Annotated[
    str,
    StringConstraints(min_length=1, max_length=50, pattern=r"^[a-zA-Z0-9_-]+$"),
]


class CamelModel(BaseModel):
    """Base schema serialized with camelCase aliases."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# ============================================================================
# Responses
# ============================================================================


class AuthUserResponse(CamelModel):
    """Public identity of the authenticated user."""

    id: str
    email: str
    username: str
    role: str
    email_verified: bool
    display_name: str | None = None
    avatar_url: str | None = None


class TokenResponse(CamelModel):
    """Access/refresh token pair plus the user it belongs to."""

    access_token: str
    refresh_token: str
    user: AuthUserResponse


class OAuthCallbackTokenResponse(TokenResponse):
    """Tokens from the redirect flow, with the post-login redirect target."""

    redirect_url: str | None = None


class PendingRegistrationResponse(CamelModel):
    """The provider identity is new; the client must choose a username."""

    temp_token: str
    provider: str
    requires_username: Literal[True] = True


class OAuthInitializeResponse(CamelModel):
    authorization_url: str


class DeviceInitializeResponse(BaseModel):
    """Device authorization data to show to the user (RFC 8628 section 3.2)."""

    device_code: str
    user_code: str
    verification_uri: str
    expires_in: int
    interval: int


class DevicePollStatusResponse(BaseModel):
    """Device-flow poll outcome that is not a token (RFC 8628 section 3.5)."""

    error: str
    error_description: str
    interval: int | None = None


class SuccessResponse(CamelModel):
    success: bool
    message: str


class CheckUsernameResponse(CamelModel):
    available: bool


# ============================================================================
# Requests
# ============================================================================


class RefreshTokenRequest(CamelModel):
    refresh_token: str


class OAuthInitializeRequest(CamelModel):
    """Start of the redirect flow."""

    provider: ProviderName = "github"
    redirect_url: str | None = None
    action: Literal["login", "register"] = "login"


class OAuthCallbackRequest(CamelModel):
    """Parameters the provider appended to the redirect URI.

    Everything is optional here; presence and length are checked by the
    service so that the caller gets a localized error.
    """

    provider: ProviderName = "github"
    code: str | None = None
    state: str | None = None
    error: str | None = None
    error_description: str | None = None


class DeviceInitializeRequest(CamelModel):
    provider: ProviderName = "github"
    scopes: list[str] = Field(default_factory=lambda: ["user:email"])


class DeviceCallbackRequest(CamelModel):
    device_code: str = Field(min_length=1)


class CheckUsernameRequest(CamelModel):
    username: Username


class CompleteRegistrationRequest(CamelModel):
    temp_token: str = Field(min_length=1)
    username: Username
