"""Queries on users, linked accounts and API keys used by the auth core."""

import logging

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from rules_auth.models.oauth import OAuthLinkedAccount
from rules_auth.models.user import ApiKey, User

logger = logging.getLogger(__name__)


async def get_user(db: AsyncSession, user_id: str) -> User | None:
    """Get a user by ID."""
    return await db.get(User, user_id)


async def get_user_by_email(db: AsyncSession, email: str) -> User | None:
    """Get a user by email, ignoring case."""
    result = await db.execute(select(User).where(func.lower(User.email) == email.lower()))
    return result.scalar_one_or_none()


async def get_user_by_username(db: AsyncSession, username: str) -> User | None:
    """Get a user by username, ignoring case."""
    result = await db.execute(
        select(User).where(func.lower(User.username) == username.lower())
    )
    return result.scalar_one_or_none()


async def get_linked_account(
    db: AsyncSession, provider: str, provider_id: str
) -> OAuthLinkedAccount | None:
    """Get the linked account for a provider identity, with its user loaded."""
    result = await db.execute(
        select(OAuthLinkedAccount).where(
            OAuthLinkedAccount.provider == provider,
            OAuthLinkedAccount.provider_id == provider_id,
        )
    )
    return result.scalar_one_or_none()


async def link_account(
    db: AsyncSession,
    user: User,
    provider: str,
    provider_id: str,
    email: str,
    username: str | None,
) -> OAuthLinkedAccount:
    """Attach a provider identity to an existing user.

    Raises:
        IntegrityError: If the provider identity was linked concurrently
    """
    account = OAuthLinkedAccount(
        user_id=user.id,
        provider=provider,
        provider_id=provider_id,
        email=email.lower(),
        username=username,
    )
    db.add(account)
    await db.commit()
    logger.info(f"Linked {provider} account {provider_id} to user {user.id}")
    return account


async def create_oauth_user(
    db: AsyncSession,
    email: str,
    username: str,
    provider: str,
    provider_id: str,
    provider_username: str | None,
) -> User:
    """Create a user and its linked account in one transaction.

    The user has no password and a verified email, since the provider
    vouched for the address.

    Raises:
        IntegrityError: If the email, username or provider identity is taken
    """
    user = User(
        email=email.lower(),
        username=username.lower(),
        password_hash=None,
        email_verified=True,
        role="user",
    )
    db.add(user)
    await db.flush()

    db.add(
        OAuthLinkedAccount(
            user_id=user.id,
            provider=provider,
            provider_id=provider_id,
            email=email.lower(),
            username=provider_username,
        )
    )
    await db.commit()
    await db.refresh(user)
    logger.info(f"Created user {user.id} from {provider} account {provider_id}")
    return user


async def record_login(db: AsyncSession, user: User, now: int) -> None:
    """Stamp ``last_login_at``."""
    user.last_login_at = now
    await db.commit()


async def list_active_api_keys(db: AsyncSession, now: int) -> list[ApiKey]:
    """API keys that have no expiry or expire in the future, with users loaded."""
    result = await db.execute(
        select(ApiKey).where((ApiKey.expires_at.is_(None)) | (ApiKey.expires_at > now))
    )
    return list(result.scalars().all())


async def touch_api_key(db: AsyncSession, api_key: ApiKey, now: int) -> None:
    """Record that ``api_key`` was just used."""
    api_key.last_used_at = now
    await db.commit()
