"""
User model.

Owned by the account subsystem. The auth layer only reads it, except
for password changes which go back through `user_store`.

Design decisions:
- Login accepts either `username` or `email`; both are unique.
- Names are stored as parts; `full_name` joins the non-empty ones.
- `is_active=False` blocks login and token refresh.
"""

import enum

from sqlalchemy import Boolean, String
from sqlalchemy.orm import Mapped, mapped_column

from campus_auth.models.base import Base, TimestampMixin


class UserRole(str, enum.Enum):
    SUPERADMIN = "superadmin"
    ADMIN = "admin"
    STAFF = "staff"
    STUDENT = "student"


def join_name_parts(*parts: str | None) -> str:
    """Join name parts with single spaces, skipping empty ones."""
    return " ".join(p.strip() for p in parts if p and p.strip())


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(100), unique=True, index=True, nullable=False)
    email: Mapped[str] = mapped_column(String(256), unique=True, index=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(String(512), nullable=False)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    middle_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    role: Mapped[str] = mapped_column(String(32), nullable=False, default=UserRole.STUDENT.value)
    status: Mapped[str | None] = mapped_column(String(32), nullable=True)  # academic status
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    @property
    def full_name(self) -> str:
        return join_name_parts(self.first_name, self.middle_name, self.last_name)

    def __repr__(self) -> str:
        return f"<User {self.username}>"
