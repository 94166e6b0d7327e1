import asyncio
import inspect
import os
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

# Secrets must exist before anything builds Settings.
os.environ.setdefault("JWT_ACCESS_SECRET", "test-access-secret-do-not-use-in-production")
os.environ.setdefault("JWT_REFRESH_SECRET", "test-refresh-secret-do-not-use-in-production")
os.environ.setdefault("SESSION_SWEEP_INTERVAL_MINUTES", "0")

import pytest  # noqa: E402
from sqlalchemy import create_engine, select  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402

from campus_auth.core.config import AuthConfig  # noqa: E402
from campus_auth.core.database import build_engine, build_session_factory, session_scope  # noqa: E402
from campus_auth.core.security import TokenCodec, hash_password  # noqa: E402
from campus_auth.models import Base, User, UserSession  # noqa: E402
from campus_auth.services.auth_service import AuthService  # noqa: E402
from campus_auth.services.request_gate import RequestGate  # noqa: E402
from campus_auth.services.session_service import SessionStore  # noqa: E402

IPHONE_UA = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1"
)
DESKTOP_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


def pytest_pyfunc_call(pyfuncitem):
    if inspect.iscoroutinefunction(pyfuncitem.obj):
        call_kwargs = {
            name: pyfuncitem.funcargs[name]
            for name in pyfuncitem._fixtureinfo.argnames
            if name in pyfuncitem.funcargs
        }
        asyncio.run(pyfuncitem.obj(**call_kwargs))
        return True
    return None


def pytest_configure(config):
    config.addinivalue_line("markers", "asyncio: mark test as async")


class FakeClock:
    """Controllable UTC clock for the session store."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@dataclass
class SeededUsers:
    alice: int
    bob: int
    carol: int


# ── Database ─────────────────────────────────────────────────────────


@pytest.fixture
def db_path(tmp_path):
    path = tmp_path / "campus.db"
    engine = create_engine(f"sqlite:///{path}")
    Base.metadata.create_all(engine)
    engine.dispose()
    return path


@pytest.fixture
def db_url(db_path):
    return f"sqlite+aiosqlite:///{db_path}"


@pytest.fixture
def users(db_path) -> SeededUsers:
    """alice (student, active), bob (student, deactivated), carol (admin)."""
    engine = create_engine(f"sqlite:///{db_path}")
    with Session(engine) as db:
        alice = User(
            username="alice",
            email="alice@example.com",
            password_hash=hash_password("correct", rounds=4),
            first_name="Alice",
            middle_name="",
            last_name="Liddell",
            role="student",
            is_active=True,
        )
        bob = User(
            username="bob",
            email="bob@example.com",
            password_hash=hash_password("correct", rounds=4),
            first_name="Bob",
            middle_name="J",
            last_name="Builder",
            role="student",
            is_active=False,
        )
        carol = User(
            username="carol",
            email="carol@example.com",
            password_hash=hash_password("admin-pass", rounds=4),
            first_name="Carol",
            last_name="Admin",
            role="admin",
            is_active=True,
        )
        db.add_all([alice, bob, carol])
        db.commit()
        seeded = SeededUsers(alice=alice.id, bob=bob.id, carol=carol.id)
    engine.dispose()
    return seeded


@pytest.fixture
def session_factory(db_url):
    return build_session_factory(build_engine(db_url))


# ── Services ─────────────────────────────────────────────────────────


@pytest.fixture
def auth_config():
    return AuthConfig(
        access_secret="unit-access-secret",
        refresh_secret="unit-refresh-secret",
        touch_backoff=timedelta(0),
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def codec(auth_config):
    return TokenCodec(auth_config)


@pytest.fixture
def store(auth_config, session_factory, clock):
    return SessionStore(auth_config, session_factory, clock=clock)


@pytest.fixture
def auth_service(auth_config, codec, store, session_factory):
    return AuthService(auth_config, codec, store, session_factory)


@pytest.fixture
def gate(codec, store):
    return RequestGate(codec, store)


# ── Helpers ──────────────────────────────────────────────────────────


async def load_session(session_factory, session_id: str) -> UserSession:
    async with session_scope(session_factory) as db:
        result = await db.execute(select(UserSession).where(UserSession.session_id == session_id))
        return result.scalar_one()


async def count_sessions(session_factory, user_id: int) -> int:
    async with session_scope(session_factory) as db:
        result = await db.execute(select(UserSession.id).where(UserSession.user_id == user_id))
        return len(result.all())


async def set_user_active(session_factory, user_id: int, active: bool) -> None:
    async with session_scope(session_factory) as db:
        user = await db.get(User, user_id)
        user.is_active = active
