"""
Models package — import every model so SQLAlchemy's Base.metadata
knows about all tables (critical for `create_all` / Alembic).
"""

from campus_auth.models.base import Base, TimestampMixin
from campus_auth.models.session import DeviceType, UserSession
from campus_auth.models.user import User, UserRole

__all__ = [
    "Base",
    "TimestampMixin",
    "User",
    "UserRole",
    "UserSession",
    "DeviceType",
]
