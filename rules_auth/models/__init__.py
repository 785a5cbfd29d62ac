"""Database models for the rules auth service."""

from rules_auth.models.oauth import (
    OAuthCsrfState,
    OAuthDeviceCode,
    OAuthLinkedAccount,
    OAuthPendingRegistration,
)
from rules_auth.models.user import ApiKey, User

__all__ = [
    "ApiKey",
    "OAuthCsrfState",
    "OAuthDeviceCode",
    "OAuthLinkedAccount",
    "OAuthPendingRegistration",
    "User",
]
