"""Mock provider and clock for testing."""

from rules_auth.tests.mocks.mock_provider import (
    FakeClock,
    MockOAuthProvider,
    state_from_url,
)

__all__ = [
    "FakeClock",
    "MockOAuthProvider",
    "state_from_url",
]
