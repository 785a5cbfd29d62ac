"""Security checks and helpers for the OAuth flows."""

import base64
import binascii
import json
import logging
import secrets
from dataclasses import dataclass
from typing import Literal
from urllib.parse import urlparse

from sqlalchemy.ext.asyncio import AsyncSession

from rules_auth.core.errors import BadRequestError, TooManyRequestsError
from rules_auth.core.messages import ErrorMessages, oauth_error_message, translate
from rules_auth.services import oauth_state_store

logger = logging.getLogger(__name__)

OAuthAction = Literal["login", "register"]
OAUTH_ACTIONS = ("login", "register")

# Accepted length of the code and state callback parameters
MIN_PARAM_LENGTH = 10
MAX_PARAM_LENGTH = 1024


@dataclass(frozen=True)
class StatePayload:
    """Data packed into the ``state`` parameter so it survives the round trip."""

    random: str
    action: OAuthAction
    nonce: str


def generate_state() -> str:
    """32 random bytes, hex encoded. Stored server side as the state key."""
    return secrets.token_hex(32)


def generate_nonce() -> str:
    """16 random bytes, hex encoded, for additional entropy in the state."""
    return secrets.token_hex(16)


def generate_temp_token() -> str:
    """Opaque token identifying a pending registration."""
    return secrets.token_urlsafe(32)


def encode_state_payload(payload: StatePayload) -> str:
    """Serialize the payload as unpadded base64url JSON."""
    raw = json.dumps(
        {"random": payload.random, "action": payload.action, "nonce": payload.nonce},
        separators=(",", ":"),
    ).encode()
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode()


def decode_state_payload(state: str) -> StatePayload | None:
    """Reverse of ``encode_state_payload``; None for anything malformed."""
    try:
        padded = state + "=" * (-len(state) % 4)
        data = json.loads(base64.urlsafe_b64decode(padded.encode()))
    except (binascii.Error, ValueError, UnicodeDecodeError):
        return None

    if not isinstance(data, dict):
        return None
    random_part = data.get("random")
    action = data.get("action") or "login"
    nonce = data.get("nonce") or ""
    if not isinstance(random_part, str) or not random_part:
        return None
    if action not in OAUTH_ACTIONS or not isinstance(nonce, str):
        return None
    return StatePayload(random=random_part, action=action, nonce=nonce)


def validate_redirect_url(url: str, allowed_hosts: list[str]) -> bool:
    """Check a post-login redirect target against an allow list.

    Relative paths are allowed, protocol-relative ``//host`` URLs are not.
    ``*.example.com`` matches ``example.com`` and any of its subdomains.
    """
    if not url:
        return False
    if url.startswith("/") and not url.startswith("//") and "\\" not in url:
        return True

    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        return False

    hostname = parsed.hostname.lower()
    for domain in allowed_hosts:
        domain = domain.lower()
        if domain.startswith("*."):
            base_domain = domain[2:]
            if hostname == base_domain or hostname.endswith(f".{base_domain}"):
                return True
        elif hostname == domain:
            return True
    return False


async def perform_oauth_security_checks(
    db: AsyncSession,
    client_ip: str,
    now: int,
    max_pending_states: int,
    locale: str,
) -> None:
    """Reject an IP that already holds too many unexpired pending states.

    Raises:
        TooManyRequestsError: If the IP is at or above ``max_pending_states``
    """
    pending = await oauth_state_store.count_pending_states(db, client_ip, now)
    if pending >= max_pending_states:
        logger.warning(f"Too many pending OAuth states for {client_ip}: {pending}")
        raise TooManyRequestsError(
            translate(ErrorMessages.TOO_MANY_OAUTH_ATTEMPTS, locale),
            details={"pending_states": pending},
        )


def validate_oauth_response(
    code: str | None,
    state: str | None,
    locale: str,
    error: str | None = None,
    error_description: str | None = None,
) -> None:
    """Validate the parameters the provider sent back to the callback.

    Raises:
        BadRequestError: For a provider-reported error, missing parameters or
            parameters outside the accepted length
    """
    if error:
        logger.info(f"OAuth provider returned error: {error} ({error_description})")
        raise BadRequestError(
            oauth_error_message(error, locale),
            details={"error": error},
        )

    if not code or not state:
        raise BadRequestError(translate(ErrorMessages.MISSING_PARAMS, locale))

    if not MIN_PARAM_LENGTH <= len(code) <= MAX_PARAM_LENGTH:
        raise BadRequestError(translate(ErrorMessages.INVALID_CODE, locale))

    if not MIN_PARAM_LENGTH <= len(state) <= MAX_PARAM_LENGTH:
        raise BadRequestError(translate(ErrorMessages.INVALID_STATE, locale))


def client_ip_from_headers(headers: dict[str, str], peer: str | None = None) -> str:
    """Best guess at the client IP behind the edge proxy.

    ``CF-Connecting-IP`` wins, then the first ``X-Forwarded-For`` hop, then
    the socket peer.
    """
    normalized = {key.lower(): value for key, value in headers.items()}
    cf_ip = normalized.get("cf-connecting-ip", "").strip()
    if cf_ip:
        return cf_ip
    forwarded = normalized.get("x-forwarded-for", "")
    first_hop = forwarded.split(",")[0].strip()
    if first_hop:
        return first_hop
    return peer or "unknown"
