"""
User store — read-mostly access to the account table.

The auth layer never edits accounts except for password changes and
the one-time admin bootstrap.  Identifier lookups are exact matches
(case-sensitive, as stored) on username OR email.
"""

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from campus_auth.core.security import hash_password
from campus_auth.models.user import User, UserRole


class DuplicateUserError(ValueError):
    """A user with the same username or email already exists."""


async def find_by_identifier(identifier: str, db: AsyncSession) -> User | None:
    stmt = (
        select(User)
        .where(or_(User.username == identifier, User.email == identifier))
        .order_by(User.id)
        .limit(1)
    )
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def find_by_id(user_id: int, db: AsyncSession) -> User | None:
    return await db.get(User, user_id)


async def update_password(user_id: int, password_hash: str, db: AsyncSession) -> bool:
    stmt = update(User).where(User.id == user_id).values(password_hash=password_hash)
    result = await db.execute(stmt)
    return result.rowcount > 0


async def create_user(
    db: AsyncSession,
    *,
    username: str,
    email: str,
    password: str,
    first_name: str,
    last_name: str = "",
    middle_name: str | None = None,
    role: UserRole = UserRole.STUDENT,
    is_active: bool = True,
) -> User:
    """Create an account with a freshly hashed password."""
    existing = await db.execute(
        select(User.id).where(or_(User.username == username, User.email == email))
    )
    if existing.first() is not None:
        raise DuplicateUserError(f"User '{username}' / '{email}' already exists")

    user = User(
        username=username,
        email=email,
        password_hash=hash_password(password),
        first_name=first_name,
        middle_name=middle_name,
        last_name=last_name,
        role=role.value,
        is_active=is_active,
    )
    db.add(user)
    await db.flush()
    return user
