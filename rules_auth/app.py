"""Main FastAPI application for auth service."""

import logging
from contextlib import asynccontextmanager

from fastapi import APIRouter, Depends, FastAPI, Header, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from rules_auth.config import AuthSettings, get_settings
from rules_auth.core.errors import AuthError, BadRequestError, InternalError
from rules_auth.core.messages import ErrorMessages, detect_locale, translate
from rules_auth.database import create_db_and_tables, dispose_engine
from rules_auth.dependencies import (
    auth_rate_limit,
    get_auth_service,
    get_client_ip,
    get_current_user,
)
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
from rules_auth.services.auth_context import AuthUser
from rules_auth.services.auth_service import (
    AuthResult,
    AuthService,
    DevicePollStatus,
    PendingRegistration,
)
from rules_auth.services.rate_limiter import SlidingWindowRateLimiter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


def _token_response(result: AuthResult) -> TokenResponse:
    return TokenResponse(
        access_token=result.tokens.access_token,
        refresh_token=result.tokens.refresh_token,
        user=AuthUserResponse.model_validate(result.user),
    )


def _flow_response(
    result: AuthResult | PendingRegistration | DevicePollStatus,
) -> OAuthCallbackTokenResponse | TokenResponse | PendingRegistrationResponse | DevicePollStatusResponse:
    """Convert a flow outcome into its wire shape."""
    if isinstance(result, PendingRegistration):
        return PendingRegistrationResponse(temp_token=result.temp_token, provider=result.provider)
    if isinstance(result, DevicePollStatus):
        return DevicePollStatusResponse(
            error=result.error,
            error_description=result.error_description,
            interval=result.interval,
        )
    if result.redirect_url is not None:
        return OAuthCallbackTokenResponse(
            **_token_response(result).model_dump(),
            redirect_url=result.redirect_url,
        )
    return _token_response(result)


# ============================================================================
# Tokens
# ============================================================================


@router.post("/refresh", response_model=TokenResponse)
async def refresh(
    data: RefreshTokenRequest,
    auth: AuthService = Depends(get_auth_service),
):
    """Rotate a refresh token into a new token pair."""
    return _token_response(await auth.refresh(data.refresh_token))


@router.post("/logout", response_model=SuccessResponse)
async def logout(
    data: RefreshTokenRequest,
    auth: AuthService = Depends(get_auth_service),
):
    """Log out. Tokens are stateless; the client drops them."""
    message = await auth.logout(data.refresh_token)
    return SuccessResponse(success=True, message=message)


@router.get("/me", response_model=AuthUserResponse)
async def me(
    user: AuthUser = Depends(get_current_user),
    auth: AuthService = Depends(get_auth_service),
):
    """Current user, authenticated by bearer token or API key."""
    return AuthUserResponse.model_validate(await auth.me(user.id))


# ============================================================================
# Authorization-code flow
# ============================================================================


@router.post(
    "/oauthInitialize",
    response_model=OAuthInitializeResponse,
    dependencies=[Depends(auth_rate_limit)],
)
async def oauth_initialize(
    data: OAuthInitializeRequest,
    client_ip: str = Depends(get_client_ip),
    auth: AuthService = Depends(get_auth_service),
):
    """Create a CSRF state and return the provider authorization URL.

    Args:
        data: Provider, post-login redirect target and login/register action
        client_ip: Client IP, used for the pending-state limit
        auth: Auth service

    Returns:
        The URL to send the browser to
    """
    url = await auth.oauth_initialize(data.provider, data.action, data.redirect_url, client_ip)
    return OAuthInitializeResponse(authorization_url=url)


@router.post(
    "/oauthCallback",
    response_model=OAuthCallbackTokenResponse | PendingRegistrationResponse,
)
async def oauth_callback(
    data: OAuthCallbackRequest,
    client_ip: str = Depends(get_client_ip),
    auth: AuthService = Depends(get_auth_service),
):
    """Validate the state, exchange the code and sign the user in.

    Returns:
        Tokens and user, or a pending registration when a new user must pick
        a username
    """
    result = await auth.oauth_callback(
        data.provider,
        data.code,
        data.state,
        client_ip,
        error=data.error,
        error_description=data.error_description,
    )
    return _flow_response(result)


# ============================================================================
# Device flow
# ============================================================================


@router.post("/oauthDeviceInitialize", response_model=DeviceInitializeResponse)
async def oauth_device_initialize(
    data: DeviceInitializeRequest,
    client_ip: str = Depends(get_client_ip),
    user_agent: str | None = Header(default=None),
    auth: AuthService = Depends(get_auth_service),
):
    """Request a device code for a browserless client."""
    authorization = await auth.oauth_device_initialize(
        data.provider, data.scopes, client_ip, user_agent
    )
    return DeviceInitializeResponse(
        device_code=authorization.device_code,
        user_code=authorization.user_code,
        verification_uri=authorization.verification_uri,
        expires_in=authorization.expires_in,
        interval=authorization.interval,
    )


@router.post(
    "/oauthDeviceCallback",
    response_model=TokenResponse | PendingRegistrationResponse | DevicePollStatusResponse,
)
async def oauth_device_callback(
    data: DeviceCallbackRequest,
    auth: AuthService = Depends(get_auth_service),
):
    """Poll once for a device code.

    Returns:
        Tokens and user, a pending registration, or an RFC 8628 status such
        as ``authorization_pending``
    """
    return _flow_response(await auth.oauth_device_callback(data.device_code))


# ============================================================================
# Registration
# ============================================================================


@router.post("/checkUsername", response_model=CheckUsernameResponse)
async def check_username(
    data: CheckUsernameRequest,
    auth: AuthService = Depends(get_auth_service),
):
    """Check whether a username is still free."""
    return CheckUsernameResponse(available=await auth.check_username(data.username))


@router.post("/completeOAuthRegistration", response_model=TokenResponse)
async def complete_oauth_registration(
    data: CompleteRegistrationRequest,
    auth: AuthService = Depends(get_auth_service),
):
    """Create the account for a pending OAuth registration."""
    result = await auth.complete_oauth_registration(data.temp_token, data.username)
    return _token_response(result)


# ============================================================================
# Application
# ============================================================================


def create_app(settings: AuthSettings | None = None) -> FastAPI:
    """Build the FastAPI application.

    Args:
        settings: Settings to use; loaded from the environment when omitted

    Returns:
        Configured FastAPI app
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager."""
        # Startup
        logging.basicConfig(
            level=getattr(logging, settings.log_level.upper(), logging.INFO),
            format="%(asctime)s %(levelname)s %(name)s %(message)s",
        )
        logger.info("Creating database tables...")
        await create_db_and_tables()
        logger.info("Rules auth service started")
        yield
        # Shutdown
        await dispose_engine()
        logger.info("Rules auth service stopped")

    app = FastAPI(
        title="Rules Auth Service",
        description="OAuth and token authentication for the coding-rules platform",
        version="0.1.0",
        lifespan=lifespan,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.frontend_url],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(AuthError)
    async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content=exc.to_response().model_dump())

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        locale = detect_locale(request.headers.get("accept-language"), settings.default_locale)
        error = BadRequestError(
            translate(ErrorMessages.INVALID_INPUT, locale),
            details={"errors": jsonable_encoder(exc.errors())},
        )
        return JSONResponse(status_code=error.status_code, content=error.to_response().model_dump())

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(f"Unhandled error on {request.url.path}")
        locale = detect_locale(request.headers.get("accept-language"), settings.default_locale)
        error = InternalError(translate(ErrorMessages.INTERNAL_ERROR, locale))
        return JSONResponse(status_code=error.status_code, content=error.to_response().model_dump())

    # Health check endpoint
    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy"}

    app.state.auth_rate_limiter = SlidingWindowRateLimiter(
        settings.auth_rate_limit_requests,
        settings.auth_rate_limit_window_seconds,
    )
    # Request dependencies resolve the same settings as the factory
    app.dependency_overrides[get_settings] = lambda: settings

    app.include_router(router)
    return app
