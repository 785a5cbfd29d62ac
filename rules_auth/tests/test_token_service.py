"""Tests for access and refresh token issuance and verification."""

from rules_auth.config import AuthSettings
from rules_auth.models.user import User
from rules_auth.services.token_service import (
    INVALID,
    AccessTokenClaims,
    Invalid,
    TokenService,
    Valid,
)


def _claims() -> AccessTokenClaims:
    return AccessTokenClaims(
        sub="user-1",
        email="alice@example.com",
        username="alice",
        role="admin",
        email_verified=True,
        display_name="Alice",
        avatar_url="https://avatars.example.com/alice.png",
    )


class TestAccessTokens:
    """Tests for access token round trips."""

    def test_issue_and_verify(self, token_service: TokenService) -> None:
        """Test that a fresh access token verifies to the same claims."""
        token = token_service.issue_access_token(_claims())

        result = token_service.verify_access_token(token)

        assert isinstance(result, Valid)
        assert result.value == _claims()

    def test_expired_token_is_invalid(self, settings: AuthSettings) -> None:
        """Test that an access token past its lifetime is rejected."""
        expired = TokenService(settings.model_copy(update={"access_token_lifetime_seconds": -10}))
        token = expired.issue_access_token(_claims())

        assert expired.verify_access_token(token) is INVALID

    def test_other_secret_is_invalid(
        self, settings: AuthSettings, token_service: TokenService
    ) -> None:
        """Test that a token signed with another secret is rejected."""
        other = TokenService(settings.model_copy(update={"jwt_secret": "another-secret-0123456789abcdef"}))
        token = other.issue_access_token(_claims())

        assert token_service.verify_access_token(token) is INVALID

    def test_other_audience_is_invalid(
        self, settings: AuthSettings, token_service: TokenService
    ) -> None:
        """Test that a token for another audience is rejected."""
        other = TokenService(settings.model_copy(update={"jwt_audience": "someone:else"}))
        token = other.issue_access_token(_claims())

        assert token_service.verify_access_token(token) is INVALID

    def test_tampered_token_is_invalid(self, token_service: TokenService) -> None:
        """Test that flipping a signature character invalidates the token."""
        header, payload, signature = token_service.issue_access_token(_claims()).split(".")
        first = "B" if signature[0] == "A" else "A"
        tampered = ".".join([header, payload, first + signature[1:]])

        assert token_service.verify_access_token(tampered) is INVALID

    def test_garbage_never_raises(self, token_service: TokenService) -> None:
        """Test that malformed input yields INVALID instead of an exception."""
        for garbage in ["", "not-a-jwt", "a.b.c", None, 42, {"sub": "x"}]:
            assert isinstance(token_service.verify_access_token(garbage), Invalid)


class TestTokenTypes:
    """Tests for the access/refresh type discriminator."""

    def test_refresh_token_is_not_an_access_token(self, token_service: TokenService) -> None:
        """Test that a refresh token fails access verification."""
        refresh = token_service.issue_refresh_token("user-1")

        assert token_service.verify_access_token(refresh) is INVALID

    def test_access_token_is_not_a_refresh_token(self, token_service: TokenService) -> None:
        """Test that an access token fails refresh verification."""
        access = token_service.issue_access_token(_claims())

        assert token_service.verify_refresh_token(access) is INVALID

    def test_refresh_token_carries_user_id(self, token_service: TokenService) -> None:
        """Test that refresh verification returns the subject."""
        refresh = token_service.issue_refresh_token("user-1")

        assert token_service.verify_refresh_token(refresh) == Valid("user-1")

    def test_issue_token_pair(self, token_service: TokenService) -> None:
        """Test that a pair is issued from a user row."""
        user = User(
            id="user-2",
            email="bob@example.com",
            username="bob",
            role="user",
            email_verified=False,
        )

        pair = token_service.issue_token_pair(user)

        access = token_service.verify_access_token(pair.access_token)
        assert isinstance(access, Valid)
        assert access.value.sub == "user-2"
        assert access.value.username == "bob"
        assert access.value.email_verified is False
        assert token_service.verify_refresh_token(pair.refresh_token) == Valid("user-2")
