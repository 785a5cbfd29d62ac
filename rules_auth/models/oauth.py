"""OAuth models: linked accounts and the short-lived flow records."""

from datetime import datetime

from sqlalchemy import JSON, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from rules_auth.database import Base
from rules_auth.models.user import generate_id


class OAuthLinkedAccount(Base):
    """Association between a local user and a provider identity.

    ``(provider, provider_id)`` is unique; one user may link several
    providers.
    """

    __tablename__ = "oauth_accounts"
    __table_args__ = (
        UniqueConstraint("provider", "provider_id", name="uq_oauth_account"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_id)
    user_id: Mapped[str] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    provider: Mapped[str] = mapped_column(String(50), nullable=False)
    provider_id: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    username: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), onupdate=func.now(), nullable=True
    )

    user: Mapped["User"] = relationship(
        "User", back_populates="oauth_accounts", lazy="joined"
    )


class OAuthCsrfState(Base):
    """Single-use CSRF state for the authorization-code flow."""

    __tablename__ = "oauth_states"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_id)
    state: Mapped[str] = mapped_column(
        String(128),
        unique=True,
        index=True,
        nullable=False,
        comment="Random component of the state payload",
    )
    provider: Mapped[str] = mapped_column(String(50), nullable=False)
    redirect_url: Mapped[str] = mapped_column(String(2048), default="/", nullable=False)
    client_ip: Mapped[str] = mapped_column(String(64), default="unknown", nullable=False, index=True)
    expires_at: Mapped[int] = mapped_column(Integer, nullable=False, index=True)


class OAuthDeviceCode(Base):
    """Device-flow record polled by a browserless client."""

    __tablename__ = "oauth_device_codes"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_id)
    device_code: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    user_code: Mapped[str] = mapped_column(String(32), nullable=False)
    provider: Mapped[str] = mapped_column(String(50), nullable=False)
    client_ip: Mapped[str] = mapped_column(String(64), default="unknown", nullable=False)
    user_agent: Mapped[str | None] = mapped_column(String(512), nullable=True)
    scopes: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    expires_at: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    interval: Mapped[int] = mapped_column(
        Integer, default=5, nullable=False, comment="Minimum seconds between polls"
    )
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_poll_at: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )


class OAuthPendingRegistration(Base):
    """Provider identity waiting for the user to choose a username."""

    __tablename__ = "oauth_pending_registrations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_id)
    token: Mapped[str] = mapped_column(String(128), unique=True, index=True, nullable=False)
    provider: Mapped[str] = mapped_column(String(50), nullable=False)
    provider_id: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    provider_username: Mapped[str | None] = mapped_column(String(255), nullable=True)
    expires_at: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
