"""
One-time bootstrap script — creates the first SUPERADMIN user.

Usage:
    uv run python -m campus_auth.scripts.create_admin

You only need this ONCE. After the first superadmin exists, all other
accounts are managed by the account subsystem.
"""

import asyncio
import getpass

from campus_auth.core.config import get_settings
from campus_auth.core.database import build_engine, build_session_factory, session_scope
from campus_auth.models.user import UserRole
from campus_auth.services import user_store


async def create_admin() -> None:
    settings = get_settings()
    engine = build_engine(settings.DATABASE_URL)
    session_factory = build_session_factory(engine)

    # ── Collect input ────────────────────────────────────────────────
    print("\n🔧  Campus Auth — First Superadmin Setup\n")
    username = input("  Username:    ").strip() or "admin"
    email = input("  Email:       ").strip()
    first_name = input("  First name:  ").strip()
    last_name = input("  Last name:   ").strip()
    password = getpass.getpass("  Password:    ")
    confirm = getpass.getpass("  Confirm:     ")

    try:
        if password != confirm:
            print("\n❌  Passwords do not match.")
            return

        if not email or not first_name or not password:
            print("\n❌  Email, first name and password are required.")
            return

        try:
            async with session_scope(session_factory) as db:
                admin = await user_store.create_user(
                    db,
                    username=username,
                    email=email,
                    password=password,
                    first_name=first_name,
                    last_name=last_name,
                    role=UserRole.SUPERADMIN,
                )
        except user_store.DuplicateUserError:
            print(f"\n❌  User '{username}' / '{email}' already exists.")
            return

        print("\n✅  Superadmin created successfully!")
        print(f"    ID:       {admin.id}")
        print(f"    Username: {admin.username}")
        print(f"    Email:    {admin.email}")
        print("\n   You can now log in via POST /api/auth/login\n")
    finally:
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(create_admin())
