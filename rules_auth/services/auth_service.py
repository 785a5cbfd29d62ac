"""Auth orchestration: OAuth flows, identity resolution and token issuance.

Both OAuth flows converge on ``resolve_identity``: the provider credential is
exchanged for a profile, the profile is mapped to a local user (or a pending
registration) and a local token pair is issued.
"""

import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from rules_auth.config import AuthSettings
from rules_auth.core.errors import (
    BadRequestError,
    ConflictError,
    InternalError,
    NotFoundError,
    ProviderNotConfiguredError,
    TooManyRequestsError,
    UnauthorizedError,
)
from rules_auth.core.messages import (
    DEFAULT_LOCALE,
    DeviceFlowMessages,
    ErrorMessages,
    Message,
    SuccessMessages,
    oauth_error_message,
    translate,
)
from rules_auth.models.oauth import OAuthDeviceCode
from rules_auth.models.user import User
from rules_auth.services import oauth_state_store, user_store
from rules_auth.services.oauth_provider import (
    DEFAULT_SCOPES,
    DeviceAuthorization,
    DeviceTokenResponse,
    OAuthProvider,
    OAuthProviderError,
    ProviderProfile,
    ProviderRequestError,
)
from rules_auth.services.oauth_security import (
    OAuthAction,
    StatePayload,
    decode_state_payload,
    encode_state_payload,
    generate_nonce,
    generate_state,
    generate_temp_token,
    perform_oauth_security_checks,
    validate_oauth_response,
    validate_redirect_url,
)
from rules_auth.services.token_service import Invalid, TokenPair, TokenService

logger = logging.getLogger(__name__)

# RFC 8628 section 3.5: on slow_down the interval grows by 5 seconds
SLOW_DOWN_INCREMENT = 5


@dataclass(frozen=True)
class AuthResult:
    """Successful authentication: a fresh token pair for ``user``."""

    tokens: TokenPair
    user: User
    redirect_url: str | None = None


@dataclass(frozen=True)
class PendingRegistration:
    """Provider identity is known but the user still has to pick a username."""

    temp_token: str
    provider: str


@dataclass(frozen=True)
class DevicePollStatus:
    """Non-terminal or terminal device-flow outcome reported as data."""

    error: str
    error_description: str
    interval: int | None = None


class AuthService:
    """Auth operations for one request.

    Args:
        db: Database session of the request
        settings: Service settings
        token_service: Token issuer/verifier
        providers: OAuth providers keyed by name
        locale: Locale for error messages
        clock: Returns the current time in epoch seconds
    """

    def __init__(
        self,
        db: AsyncSession,
        settings: AuthSettings,
        token_service: TokenService,
        providers: dict[str, OAuthProvider],
        locale: str = DEFAULT_LOCALE,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.db = db
        self.settings = settings
        self.token_service = token_service
        self.providers = providers
        self.locale = locale
        self._clock = clock

    # ========================================================================
    # Tokens
    # ========================================================================

    async def refresh(self, refresh_token: str) -> AuthResult:
        """Exchange a refresh token for a new token pair.

        Raises:
            UnauthorizedError: If the token is invalid or its user is gone
        """
        verified = self.token_service.verify_refresh_token(refresh_token)
        if isinstance(verified, Invalid):
            raise UnauthorizedError(self._t(ErrorMessages.INVALID_TOKEN))

        user = await user_store.get_user(self.db, verified.value)
        if user is None:
            raise UnauthorizedError(self._t(ErrorMessages.USER_NOT_FOUND))

        return AuthResult(tokens=self.token_service.issue_token_pair(user), user=user)

    async def logout(self, refresh_token: str) -> str:
        """Acknowledge a logout.

        Tokens are stateless, so the client discards them; the refresh token
        is still verified so that garbage input is reported.

        Raises:
            UnauthorizedError: If the refresh token is invalid
        """
        verified = self.token_service.verify_refresh_token(refresh_token)
        if isinstance(verified, Invalid):
            raise UnauthorizedError(self._t(ErrorMessages.INVALID_TOKEN))

        logger.info(f"User {verified.value} logged out")
        return self._t(SuccessMessages.LOGGED_OUT)

    async def me(self, user_id: str) -> User:
        """Current state of the authenticated user.

        Token claims can be stale, so the user is read from the store.

        Raises:
            UnauthorizedError: If the user no longer exists
        """
        user = await user_store.get_user(self.db, user_id)
        if user is None:
            logger.warning(f"Authenticated user {user_id} no longer exists")
            raise UnauthorizedError(self._t(ErrorMessages.USER_NOT_FOUND))
        return user

    # ========================================================================
    # Authorization-code flow
    # ========================================================================

    async def oauth_initialize(
        self,
        provider_name: str,
        action: OAuthAction,
        redirect_url: str | None,
        client_ip: str,
    ) -> str:
        """Start the redirect flow and return the provider authorization URL.

        Raises:
            BadRequestError: If the provider is unknown
            ProviderNotConfiguredError: If the provider has no credentials
            TooManyRequestsError: If the IP holds too many pending states
        """
        provider = self._get_provider(provider_name)

        target = "/"
        if redirect_url:
            if validate_redirect_url(redirect_url, self.settings.allowed_redirect_hosts):
                target = redirect_url
            else:
                logger.warning(f"Rejected OAuth redirect target: {redirect_url}")

        now = self._now()
        await perform_oauth_security_checks(
            self.db,
            client_ip,
            now,
            self.settings.oauth_max_pending_states_per_ip,
            self.locale,
        )
        await oauth_state_store.cleanup_expired_records(self.db, now)

        payload = StatePayload(random=generate_state(), action=action, nonce=generate_nonce())
        await oauth_state_store.create_csrf_state(
            self.db,
            state=payload.random,
            provider=provider.name,
            redirect_url=target,
            client_ip=client_ip,
            expires_at=now + self.settings.oauth_state_ttl_seconds,
        )

        logger.info(f"OAuth {action} initiated for {provider.name} from {client_ip}")
        return provider.authorization_url(encode_state_payload(payload), DEFAULT_SCOPES)

    async def oauth_callback(
        self,
        provider_name: str,
        code: str | None,
        state: str | None,
        client_ip: str,
        error: str | None = None,
        error_description: str | None = None,
    ) -> AuthResult | PendingRegistration:
        """Finish the redirect flow.

        Raises:
            BadRequestError: For provider errors, bad parameters, an invalid,
                expired or already used state, or a profile without email
            NotFoundError: If a login was attempted for an unknown identity
            InternalError: If the provider could not be reached
        """
        provider = self._get_provider(provider_name)
        validate_oauth_response(code, state, self.locale, error, error_description)

        payload = decode_state_payload(state)
        if payload is None:
            logger.warning("Undecodable OAuth state payload")
            raise BadRequestError(self._t(ErrorMessages.INVALID_STATE))

        record = await oauth_state_store.get_csrf_state(self.db, payload.random)
        if record is None or record.provider != provider.name:
            logger.warning(f"Unknown OAuth state for {provider.name}")
            raise BadRequestError(self._t(ErrorMessages.INVALID_STATE))

        if record.expires_at < self._now():
            await self._discard(oauth_state_store.consume_csrf_state, record)
            raise BadRequestError(self._t(ErrorMessages.INVALID_STATE))

        if record.client_ip != client_ip:
            logger.warning(
                f"OAuth state IP mismatch: initiated from {record.client_ip}, "
                f"callback from {client_ip}"
            )

        redirect_url = record.redirect_url
        if not await oauth_state_store.consume_csrf_state(self.db, record):
            logger.warning("OAuth state already consumed by a concurrent callback")
            raise BadRequestError(self._t(ErrorMessages.INVALID_STATE))

        logger.info(f"OAuth callback for {provider.name}, code {code[:10]}...")
        profile = await self._profile_from_code(provider, code)
        result = await self.resolve_identity(provider, profile, payload.action)
        if isinstance(result, AuthResult):
            return AuthResult(tokens=result.tokens, user=result.user, redirect_url=redirect_url)
        return result

    # ========================================================================
    # Device flow
    # ========================================================================

    async def oauth_device_initialize(
        self,
        provider_name: str,
        scopes: list[str] | None,
        client_ip: str,
        user_agent: str | None,
    ) -> DeviceAuthorization:
        """Request a device code from the provider and remember it.

        Raises:
            BadRequestError: If the provider is unknown
            ProviderNotConfiguredError: If the provider has no credentials
            InternalError: If the provider call fails
        """
        provider = self._get_provider(provider_name)
        requested_scopes = scopes or list(DEFAULT_SCOPES)

        now = self._now()
        await oauth_state_store.cleanup_expired_records(self.db, now)

        try:
            authorization = await provider.request_device_code(requested_scopes)
        except (OAuthProviderError, ProviderRequestError) as e:
            logger.error(f"Device code request to {provider.name} failed: {e}")
            raise InternalError(self._t(ErrorMessages.DEVICE_INIT_FAILED)) from e

        await oauth_state_store.create_device_code(
            self.db,
            device_code=authorization.device_code,
            user_code=authorization.user_code,
            provider=provider.name,
            client_ip=client_ip,
            user_agent=user_agent,
            scopes=requested_scopes,
            expires_at=now + authorization.expires_in,
            interval=authorization.interval,
        )

        logger.info(f"Device flow initiated for {provider.name} from {client_ip}")
        return authorization

    async def oauth_device_callback(
        self, device_code: str
    ) -> AuthResult | PendingRegistration | DevicePollStatus:
        """Poll the provider once for a device code.

        Every poll that reaches the provider check is counted, including the
        ones rejected for polling too fast.

        Raises:
            BadRequestError: For an unknown, expired or already used device code
            TooManyRequestsError: When the attempt budget is spent or the
                client polls faster than the interval
            InternalError: If the provider fails unexpectedly
        """
        record = await oauth_state_store.get_device_code(self.db, device_code)
        if record is None:
            raise BadRequestError(self._t(ErrorMessages.INVALID_DEVICE_CODE))

        now = self._now()
        if record.expires_at < now:
            await self._discard(oauth_state_store.consume_device_code, record)
            raise BadRequestError(self._t(ErrorMessages.DEVICE_CODE_EXPIRED))

        max_attempts = self.settings.device_max_poll_attempts
        attempts = record.attempts
        if attempts >= max_attempts:
            logger.warning(f"Device code exceeded {max_attempts} poll attempts")
            await self._discard(oauth_state_store.consume_device_code, record)
            raise TooManyRequestsError(
                self._t(ErrorMessages.DEVICE_TOO_MANY_ATTEMPTS),
                details={"attempts": attempts},
            )

        previous_poll = record.last_poll_at
        await oauth_state_store.record_device_poll(self.db, record, now)

        if previous_poll is not None and now - previous_poll < record.interval:
            raise TooManyRequestsError(
                self._t(ErrorMessages.DEVICE_SLOW_DOWN, interval=record.interval),
                details={"interval": record.interval},
            )

        provider = self._get_provider(record.provider)
        try:
            response = await provider.poll_device_token(record.device_code)
        except ProviderRequestError as e:
            logger.error(f"Device token poll to {provider.name} failed: {e}")
            raise InternalError(
                self._t(ErrorMessages.OAUTH_PROVIDER_FAILED, provider=provider.display_name)
            ) from e

        if response.error:
            return await self._device_poll_status(record, response)

        if not await oauth_state_store.consume_device_code(self.db, record):
            logger.warning("Device code already consumed by a concurrent poll")
            raise BadRequestError(self._t(ErrorMessages.INVALID_DEVICE_CODE))

        profile = await self._fetch_profile(provider, response.access_token)
        return await self.resolve_identity(provider, profile, "register")

    async def _device_poll_status(
        self, record: OAuthDeviceCode, response: DeviceTokenResponse
    ) -> DevicePollStatus:
        """Map a provider poll error to a reported status."""
        error = response.error
        if error == "authorization_pending":
            return DevicePollStatus(error, self._t(DeviceFlowMessages.AUTHORIZATION_PENDING))

        if error == "slow_down":
            interval = max(response.interval or 0, record.interval + SLOW_DOWN_INCREMENT)
            await oauth_state_store.update_device_interval(self.db, record, interval)
            return DevicePollStatus(
                error,
                self._t(DeviceFlowMessages.SLOW_DOWN, interval=interval),
                interval=interval,
            )

        if error in ("access_denied", "expired_token"):
            logger.info(f"Device flow ended by provider: {error}")
            await oauth_state_store.consume_device_code(self.db, record)
            message = (
                DeviceFlowMessages.ACCESS_DENIED
                if error == "access_denied"
                else DeviceFlowMessages.EXPIRED_TOKEN
            )
            return DevicePollStatus(error, self._t(message))

        logger.error(f"Unexpected device flow error: {error} ({response.error_description})")
        raise InternalError(
            self._t(ErrorMessages.OAUTH_AUTH_FAILED),
            details={"error": error},
        )

    # ========================================================================
    # Identity resolution and registration
    # ========================================================================

    async def resolve_identity(
        self,
        provider: OAuthProvider,
        profile: ProviderProfile,
        action: OAuthAction,
    ) -> AuthResult | PendingRegistration:
        """Map a provider identity to a local user.

        Linked account first, then a user with the same email (which gets the
        account linked). Unknown identities fail for ``login`` and become a
        pending registration for ``register``.

        Raises:
            NotFoundError: If ``action`` is login and no user matches
            ConflictError: If the provider identity was linked concurrently
                to a different user
        """
        account = await user_store.get_linked_account(
            self.db, provider.name, profile.provider_id
        )
        if account is not None:
            return await self._login(account.user)

        user = await user_store.get_user_by_email(self.db, profile.email)
        if user is not None:
            return await self._login(await self._link(user, provider, profile))

        if action == "login":
            raise NotFoundError(self._t(ErrorMessages.ACCOUNT_NOT_REGISTERED))

        temp_token = generate_temp_token()
        await oauth_state_store.create_pending_registration(
            self.db,
            token=temp_token,
            provider=provider.name,
            provider_id=profile.provider_id,
            email=profile.email,
            provider_username=profile.username,
            expires_at=self._now() + self.settings.oauth_pending_registration_ttl_seconds,
        )
        logger.info(f"Pending registration created for {provider.name} account {profile.provider_id}")
        return PendingRegistration(temp_token=temp_token, provider=provider.name)

    async def check_username(self, username: str) -> bool:
        """True if nobody uses ``username`` (case-insensitive)."""
        return await user_store.get_user_by_username(self.db, username) is None

    async def complete_oauth_registration(self, temp_token: str, username: str) -> AuthResult:
        """Create the user for a pending registration and sign them in.

        Raises:
            BadRequestError: If the temp token is unknown, expired or used
            ConflictError: If the username, email or provider identity is taken
        """
        pending = await oauth_state_store.get_pending_registration(self.db, temp_token)
        if pending is None:
            raise BadRequestError(self._t(ErrorMessages.INVALID_TOKEN))

        if pending.expires_at < self._now():
            await self._discard(oauth_state_store.delete_pending_registration, pending)
            raise BadRequestError(self._t(ErrorMessages.TOKEN_EXPIRED))

        provider_name = pending.provider
        provider_id = pending.provider_id
        email = pending.email
        provider_username = pending.provider_username
        display_name = self._provider_display_name(provider_name)

        if await user_store.get_user_by_username(self.db, username) is not None:
            raise ConflictError(self._t(ErrorMessages.USERNAME_IN_USE))
        if await user_store.get_user_by_email(self.db, email) is not None:
            raise ConflictError(self._t(ErrorMessages.EMAIL_IN_USE))
        if await user_store.get_linked_account(self.db, provider_name, provider_id) is not None:
            raise ConflictError(
                self._t(ErrorMessages.OAUTH_ACCOUNT_IN_USE, provider=display_name)
            )

        if not await oauth_state_store.claim_pending_registration(self.db, pending):
            await self.db.rollback()
            raise BadRequestError(self._t(ErrorMessages.INVALID_TOKEN))

        try:
            user = await user_store.create_oauth_user(
                self.db,
                email=email,
                username=username,
                provider=provider_name,
                provider_id=provider_id,
                provider_username=provider_username,
            )
        except IntegrityError as e:
            await self.db.rollback()
            logger.warning(f"Registration conflict for {provider_name} account {provider_id}: {e}")
            raise ConflictError(self._t(ErrorMessages.REGISTRATION_FAILED)) from e

        return await self._login(user)

    # ========================================================================
    # Helpers
    # ========================================================================

    def _now(self) -> int:
        return int(self._clock())

    def _t(self, message: Message, **params: object) -> str:
        return translate(message, self.locale, **params)

    def _provider_display_name(self, provider_name: str) -> str:
        provider = self.providers.get(provider_name)
        return provider.display_name if provider is not None else provider_name

    def _get_provider(self, provider_name: str) -> OAuthProvider:
        provider = self.providers.get(provider_name)
        if provider is None:
            raise BadRequestError(
                self._t(ErrorMessages.UNSUPPORTED_PROVIDER, provider=provider_name)
            )
        if not provider.is_configured:
            logger.error(f"OAuth provider {provider_name} is not configured")
            raise ProviderNotConfiguredError(
                self._t(ErrorMessages.PROVIDER_NOT_CONFIGURED, provider=provider.display_name),
                provider=provider_name,
            )
        return provider

    async def _discard(
        self,
        remove: Callable[[AsyncSession, Any], Awaitable[bool]],
        record: Any,
    ) -> None:
        """Delete a rejected record; a failure here must not mask the rejection."""
        label = f"{type(record).__name__} {record.id}"
        try:
            await remove(self.db, record)
        except SQLAlchemyError:
            logger.exception(f"Failed to delete {label}")
            await self.db.rollback()

    async def _profile_from_code(self, provider: OAuthProvider, code: str) -> ProviderProfile:
        try:
            access_token = await provider.exchange_code(code)
        except OAuthProviderError as e:
            logger.warning(f"{provider.name} rejected the authorization code: {e.error}")
            raise BadRequestError(
                oauth_error_message(e.error, self.locale),
                details={"error": e.error},
            ) from e
        except ProviderRequestError as e:
            logger.error(f"Code exchange with {provider.name} failed: {e}")
            raise InternalError(
                self._t(ErrorMessages.OAUTH_PROVIDER_FAILED, provider=provider.display_name)
            ) from e

        return await self._fetch_profile(provider, access_token)

    async def _fetch_profile(self, provider: OAuthProvider, access_token: str) -> ProviderProfile:
        try:
            profile = await provider.fetch_profile(access_token)
        except ProviderRequestError as e:
            logger.error(f"Profile fetch from {provider.name} failed: {e}")
            raise InternalError(
                self._t(ErrorMessages.OAUTH_PROVIDER_FAILED, provider=provider.display_name)
            ) from e

        if not profile.email:
            raise BadRequestError(
                self._t(ErrorMessages.OAUTH_NO_EMAIL, provider=provider.display_name)
            )
        return profile

    async def _link(self, user: User, provider: OAuthProvider, profile: ProviderProfile) -> User:
        """Link ``profile`` to ``user``, tolerating a concurrent identical link."""
        try:
            await user_store.link_account(
                self.db,
                user,
                provider=provider.name,
                provider_id=profile.provider_id,
                email=profile.email,
                username=profile.username,
            )
            return user
        except IntegrityError as e:
            await self.db.rollback()
            account = await user_store.get_linked_account(
                self.db, provider.name, profile.provider_id
            )
            if account is None:
                raise ConflictError(self._t(ErrorMessages.REGISTRATION_FAILED)) from e
            if account.user_id != user.id:
                raise ConflictError(
                    self._t(ErrorMessages.OAUTH_ACCOUNT_IN_USE, provider=provider.display_name)
                ) from e
            return account.user

    async def _login(self, user: User) -> AuthResult:
        await user_store.record_login(self.db, user, self._now())
        return AuthResult(tokens=self.token_service.issue_token_pair(user), user=user)
