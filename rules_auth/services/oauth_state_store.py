"""Persistence for short-lived OAuth records.

CSRF states, device codes and pending registrations are the only channel
between the two halves of a flow. Single use is enforced with a conditional
delete: whoever deletes the row (rowcount 1) owns it, a racing duplicate sees
rowcount 0.
"""

import logging

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from rules_auth.models.oauth import (
    OAuthCsrfState,
    OAuthDeviceCode,
    OAuthPendingRegistration,
)

logger = logging.getLogger(__name__)


# ============================================================================
# CSRF states (authorization-code flow)
# ============================================================================


async def create_csrf_state(
    db: AsyncSession,
    state: str,
    provider: str,
    redirect_url: str,
    client_ip: str,
    expires_at: int,
) -> OAuthCsrfState:
    """Persist a new CSRF state.

    Args:
        db: Database session
        state: Random component of the state payload
        provider: OAuth provider name
        redirect_url: Where to send the user after login
        client_ip: IP that initiated the flow
        expires_at: Epoch seconds after which the state is rejected

    Returns:
        Created OAuthCsrfState instance
    """
    record = OAuthCsrfState(
        state=state,
        provider=provider,
        redirect_url=redirect_url,
        client_ip=client_ip,
        expires_at=expires_at,
    )
    db.add(record)
    await db.commit()
    await db.refresh(record)
    return record


async def get_csrf_state(db: AsyncSession, state: str) -> OAuthCsrfState | None:
    """Get a CSRF state by its random component."""
    result = await db.execute(select(OAuthCsrfState).where(OAuthCsrfState.state == state))
    return result.scalar_one_or_none()


async def count_pending_states(db: AsyncSession, client_ip: str, now: int) -> int:
    """Count unexpired states created from ``client_ip``."""
    query = (
        select(func.count())
        .select_from(OAuthCsrfState)
        .where(
            OAuthCsrfState.client_ip == client_ip,
            OAuthCsrfState.expires_at >= now,
        )
    )
    result = await db.execute(query)
    return result.scalar_one()


async def consume_csrf_state(db: AsyncSession, record: OAuthCsrfState) -> bool:
    """Delete ``record``; True only for the caller that actually removed it."""
    result = await db.execute(
        delete(OAuthCsrfState).where(OAuthCsrfState.id == record.id)
    )
    await db.commit()
    return result.rowcount == 1


async def delete_expired_states(db: AsyncSession, now: int) -> int:
    """Delete expired CSRF states. Returns the number of rows removed."""
    result = await db.execute(delete(OAuthCsrfState).where(OAuthCsrfState.expires_at < now))
    await db.commit()
    return result.rowcount


# ============================================================================
# Device codes (device authorization flow)
# ============================================================================


async def create_device_code(
    db: AsyncSession,
    device_code: str,
    user_code: str,
    provider: str,
    client_ip: str,
    user_agent: str | None,
    scopes: list[str],
    expires_at: int,
    interval: int,
) -> OAuthDeviceCode:
    """Persist a device code returned by the provider, with attempts = 0."""
    record = OAuthDeviceCode(
        device_code=device_code,
        user_code=user_code,
        provider=provider,
        client_ip=client_ip,
        user_agent=user_agent,
        scopes=scopes,
        expires_at=expires_at,
        interval=interval,
        attempts=0,
    )
    db.add(record)
    await db.commit()
    await db.refresh(record)
    return record


async def get_device_code(db: AsyncSession, device_code: str) -> OAuthDeviceCode | None:
    """Get a device-code record by the opaque device code."""
    result = await db.execute(
        select(OAuthDeviceCode).where(OAuthDeviceCode.device_code == device_code)
    )
    return result.scalar_one_or_none()


async def record_device_poll(db: AsyncSession, record: OAuthDeviceCode, now: int) -> None:
    """Count one poll attempt and remember when it happened.

    The increment is done in SQL so concurrent polls cannot lose attempts.
    """
    await db.execute(
        update(OAuthDeviceCode)
        .where(OAuthDeviceCode.id == record.id)
        .values(attempts=OAuthDeviceCode.attempts + 1, last_poll_at=now)
    )
    await db.commit()
    await db.refresh(record)


async def update_device_interval(
    db: AsyncSession, record: OAuthDeviceCode, interval: int
) -> None:
    """Store a longer minimum poll interval requested by the provider."""
    record.interval = interval
    await db.commit()


async def consume_device_code(db: AsyncSession, record: OAuthDeviceCode) -> bool:
    """Delete ``record``; True only for the caller that actually removed it."""
    result = await db.execute(
        delete(OAuthDeviceCode).where(OAuthDeviceCode.id == record.id)
    )
    await db.commit()
    return result.rowcount == 1


async def delete_expired_device_codes(db: AsyncSession, now: int) -> int:
    """Delete expired device codes. Returns the number of rows removed."""
    result = await db.execute(delete(OAuthDeviceCode).where(OAuthDeviceCode.expires_at < now))
    await db.commit()
    return result.rowcount


# ============================================================================
# Pending registrations
# ============================================================================


async def create_pending_registration(
    db: AsyncSession,
    token: str,
    provider: str,
    provider_id: str,
    email: str,
    provider_username: str | None,
    expires_at: int,
) -> OAuthPendingRegistration:
    """Persist a provider identity that still needs a local username."""
    record = OAuthPendingRegistration(
        token=token,
        provider=provider,
        provider_id=provider_id,
        email=email.lower(),
        provider_username=provider_username,
        expires_at=expires_at,
    )
    db.add(record)
    await db.commit()
    await db.refresh(record)
    return record


async def get_pending_registration(
    db: AsyncSession, token: str
) -> OAuthPendingRegistration | None:
    """Get a pending registration by its temp token."""
    result = await db.execute(
        select(OAuthPendingRegistration).where(OAuthPendingRegistration.token == token)
    )
    return result.scalar_one_or_none()


async def claim_pending_registration(
    db: AsyncSession, record: OAuthPendingRegistration
) -> bool:
    """Delete ``record`` inside the caller's transaction without committing.

    The caller commits together with the user it creates, so a failed
    registration rolls the pending row back into place.
    """
    result = await db.execute(
        delete(OAuthPendingRegistration).where(OAuthPendingRegistration.id == record.id)
    )
    return result.rowcount == 1


async def delete_pending_registration(
    db: AsyncSession, record: OAuthPendingRegistration
) -> bool:
    """Delete ``record``; True only for the caller that actually removed it."""
    result = await db.execute(
        delete(OAuthPendingRegistration).where(OAuthPendingRegistration.id == record.id)
    )
    await db.commit()
    return result.rowcount == 1


async def delete_expired_pending_registrations(db: AsyncSession, now: int) -> int:
    """Delete expired pending registrations. Returns the number of rows removed."""
    result = await db.execute(
        delete(OAuthPendingRegistration).where(OAuthPendingRegistration.expires_at < now)
    )
    await db.commit()
    return result.rowcount


# ============================================================================
# Sweeping
# ============================================================================


async def cleanup_expired_records(db: AsyncSession, now: int) -> dict[str, int]:
    """Opportunistically delete every expired OAuth record.

    Best effort: a database failure is logged and reported as zero deletions
    so the flow that triggered the sweep can continue.
    """
    try:
        counts = {
            "states": await delete_expired_states(db, now),
            "device_codes": await delete_expired_device_codes(db, now),
            "pending_registrations": await delete_expired_pending_registrations(db, now),
        }
    except SQLAlchemyError:
        logger.exception("Failed to clean up expired OAuth records")
        await db.rollback()
        return {"states": 0, "device_codes": 0, "pending_registrations": 0}

    if any(counts.values()):
        logger.info(f"Cleaned up expired OAuth records: {counts}")
    return counts
