"""Configuration for the rules auth service."""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class AuthSettings(BaseSettings):
    """Auth service configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Server settings
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8003, description="Server port")
    reload: bool = Field(default=False, description="Enable auto-reload in development")
    log_level: str = Field(default="INFO", description="Root logging level")

    # Database
    database_url: str = Field(
        default="sqlite+aiosqlite:///./rules_auth.db",
        description="Database connection string (asyncpg format in production)",
    )
    database_echo: bool = Field(default=False, description="Log SQL statements")

    # Token signing
    jwt_secret: str = Field(description="Secret key for JWT signing")
    jwt_algorithm: str = Field(default="HS256", description="JWT signing algorithm")
    jwt_audience: str = Field(default="rules:auth", description="JWT audience claim")
    access_token_lifetime_seconds: int = Field(
        default=3600, description="Access token lifetime"
    )
    refresh_token_lifetime_seconds: int = Field(
        default=30 * 24 * 3600, description="Refresh token lifetime"
    )

    # OAuth providers
    github_oauth_client_id: str = Field(default="", description="GitHub OAuth Client ID")
    github_oauth_client_secret: str = Field(
        default="", description="GitHub OAuth Client Secret"
    )
    provider_timeout_seconds: float = Field(
        default=20.0, description="Timeout for calls to OAuth providers"
    )

    # Frontend
    frontend_url: str = Field(
        default="http://localhost:3000",
        description="Frontend base URL used to build OAuth redirect URIs",
    )
    allowed_redirect_hosts: list[str] = Field(
        default_factory=lambda: ["localhost"],
        description="Hosts allowed as post-login redirect targets ('*.example.com' wildcards)",
    )
    default_locale: str = Field(default="ja", description="Locale used when none is requested")

    # OAuth flow limits
    oauth_state_ttl_seconds: int = Field(default=600, description="CSRF state lifetime")
    oauth_max_pending_states_per_ip: int = Field(
        default=5, description="Unexpired states allowed per client IP"
    )
    oauth_pending_registration_ttl_seconds: int = Field(
        default=3600, description="Lifetime of a pending OAuth registration"
    )
    device_max_poll_attempts: int = Field(
        default=50, description="Device-flow polls allowed per device code"
    )
    auth_rate_limit_requests: int = Field(
        default=10, description="oauthInitialize calls allowed per client in one window"
    )
    auth_rate_limit_window_seconds: int = Field(
        default=60, description="Window of the per-client auth rate limit"
    )

    @property
    def oauth_redirect_uri(self) -> str:
        """Redirect URI registered with the GitHub OAuth app."""
        return f"{self.frontend_url.rstrip('/')}/auth/callback/github"


@lru_cache(maxsize=1)
def get_settings() -> AuthSettings:
    """Get cached settings instance."""
    return AuthSettings()
