"""One-way salted hashing for passwords and API keys."""

import logging
import secrets

from fastapi_users.password import PasswordHelper
from pwdlib.exceptions import UnknownHashError

logger = logging.getLogger(__name__)

API_KEY_PREFIX = "rk_"

_password_helper = PasswordHelper()


def hash_secret(secret: str) -> str:
    """Hash a password or API key with a fresh random salt."""
    return _password_helper.hash(secret)


def verify_secret(secret: str, secret_hash: str) -> bool:
    """Check ``secret`` against a stored hash.

    Returns False for a wrong secret and for a malformed stored hash.
    """
    try:
        valid, _ = _password_helper.verify_and_update(secret, secret_hash)
    except UnknownHashError:
        # Not a hash format pwdlib recognises
        logger.warning("Stored hash could not be parsed")
        return False
    return valid


def generate_api_key() -> str:
    """Generate a new raw API key. Only its hash should ever be stored."""
    return f"{API_KEY_PREFIX}{secrets.token_urlsafe(32)}"
