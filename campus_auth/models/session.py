"""
User session model — one row per login event.

Tracks every authenticated device/browser, enabling:
- Listing a user's active sessions with device & network metadata
- Server-side revocation layered over stateless JWTs
- Throttled `last_activity` tracking and idle-session expiry

`session_id` is the public identifier (URLs / cookies); it is random,
never the sequential primary key.  `is_active=False` is terminal.
"""

import enum
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Enum, ForeignKey, Index, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from campus_auth.models.base import Base, TimestampMixin


class DeviceType(str, enum.Enum):
    MOBILE = "mobile"
    TABLET = "tablet"
    DESKTOP = "desktop"


class UserSession(Base, TimestampMixin):
    __tablename__ = "user_sessions"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    session_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    access_token: Mapped[str] = mapped_column(Text, nullable=False)
    refresh_token: Mapped[str | None] = mapped_column(Text, nullable=True)

    # ── Device descriptor (derived once at login) ────────────────────
    device_type: Mapped[DeviceType] = mapped_column(
        Enum(DeviceType, name="device_type", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )
    device_info: Mapped[str] = mapped_column(String(500), nullable=False)
    browser_info: Mapped[str] = mapped_column(String(500), nullable=False)
    platform: Mapped[str] = mapped_column(String(100), nullable=False)
    ip_address: Mapped[str] = mapped_column(String(45), nullable=False)  # fits IPv6
    user_agent: Mapped[str] = mapped_column(Text, nullable=False, default="")

    # ── Lifecycle ────────────────────────────────────────────────────
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    last_activity: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    login_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    logout_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_user_sessions_user_active", "user_id", "is_active"),
        Index("ix_user_sessions_last_activity", "is_active", "last_activity"),
        # An access token identifies at most one live session.
        Index(
            "uq_user_sessions_active_access_token",
            "access_token",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
    )

    def __repr__(self) -> str:
        return f"<UserSession {self.session_id} user={self.user_id} active={self.is_active}>"
