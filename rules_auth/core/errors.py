"""Error classes for the auth service.

Every failure the auth core reports to a caller is an ``AuthError`` carrying
one taxonomy code and an already localized message. The FastAPI exception
handler in ``rules_auth.app`` turns it into a JSON response with the code's
HTTP status.
"""

from typing import Any, ClassVar

from pydantic import BaseModel


class AuthErrorResponse(BaseModel):
    """Standard error response body."""

    code: str
    message: str
    details: dict[str, Any] | None = None


class AuthError(Exception):
    """Base exception for auth errors."""

    code: ClassVar[str] = "INTERNAL"
    status_code: ClassVar[int] = 500

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.message = message
        self.details = details
        super().__init__(message)

    def to_response(self) -> AuthErrorResponse:
        """Convert exception to error response model."""
        return AuthErrorResponse(
            code=self.code,
            message=self.message,
            details=self.details,
        )


class UnauthorizedError(AuthError):
    """Missing, invalid or expired credential."""

    code = "UNAUTHORIZED"
    status_code = 401


class ForbiddenError(AuthError):
    """Authenticated, but role, scope or email verification is insufficient."""

    code = "FORBIDDEN"
    status_code = 403


class BadRequestError(AuthError):
    """Malformed input, bad OAuth state/device code, provider-reported error."""

    code = "BAD_REQUEST"
    status_code = 400


class NotFoundError(AuthError):
    """Identity could not be resolved."""

    code = "NOT_FOUND"
    status_code = 404


class ConflictError(AuthError):
    """Username or email already in use."""

    code = "CONFLICT"
    status_code = 409


class TooManyRequestsError(AuthError):
    """Abuse guard or device polling limit hit."""

    code = "TOO_MANY_REQUESTS"
    status_code = 429


class InternalError(AuthError):
    """Unexpected provider/network failure."""

    code = "INTERNAL"
    status_code = 500


class ProviderNotConfiguredError(InternalError):
    """OAuth client credentials are missing from the configuration."""

    def __init__(self, message: str, provider: str) -> None:
        super().__init__(message, details={"provider": provider})
        self.provider = provider
