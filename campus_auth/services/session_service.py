"""
Session store — lifecycle of per-device login sessions.

Handles:
- Creating one session row per successful login
- Looking up the session behind a presented access token
- Throttled, lock-safe `last_activity` touches (best-effort)
- Listing a user's active sessions
- Revoking one / all-but-one / all sessions, and the idle-expiry sweep

State machine: Active --touch--> Active, Active --logout/sweep-->
Inactive.  Nothing leaves Inactive: every mutating statement filters on
`is_active == True`.

Failure policy:
- Lookups and revocations fail CLOSED: database errors surface as
  `StoreUnavailable` so the calling request fails.
- Touches fail OPEN: they retry on lock contention, then log and give
  up.  They never raise.

There is no in-process cache and no in-memory lock; the database row
lock is the only mutual exclusion.  The throttle window just keeps most
concurrent touches from contending for it.
"""

import asyncio
import logging
import secrets
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import or_, select, update
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from campus_auth.core.config import AuthConfig
from campus_auth.core.database import session_scope
from campus_auth.core.errors import StoreUnavailable
from campus_auth.models.base import utcnow
from campus_auth.models.session import DeviceType, UserSession
from campus_auth.models.user import User, join_name_parts
from campus_auth.services.device import DeviceContext

logger = logging.getLogger(__name__)

# lock_not_available, deadlock_detected, serialization_failure
LOCK_SQLSTATES = frozenset({"55P03", "40P01", "40001"})
# MySQL: lock wait timeout exceeded, deadlock found
LOCK_ERRNOS = frozenset({1205, 1213})
LOCK_MESSAGES = ("lock wait timeout", "deadlock", "database is locked", "could not obtain lock")


def is_lock_contention(exc: DBAPIError) -> bool:
    """True for lock-wait-timeout class errors that are worth retrying."""
    orig = getattr(exc, "orig", None)
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate in LOCK_SQLSTATES:
        return True
    args = getattr(orig, "args", None) or ()
    if args and args[0] in LOCK_ERRNOS:
        return True
    message = str(orig if orig is not None else exc).lower()
    return any(fragment in message for fragment in LOCK_MESSAGES)


def generate_session_id() -> str:
    """Opaque public id: 128 random bits, never derived from the PK."""
    return f"sess_{secrets.token_hex(16)}"


# ── Projections ──────────────────────────────────────────────────────


@dataclass(frozen=True)
class SessionSummary:
    """Device & network metadata only, never tokens."""

    session_id: str
    device_info: str
    browser_info: str
    device_type: DeviceType
    platform: str
    ip_address: str
    last_activity: datetime | None
    login_time: datetime


@dataclass(frozen=True)
class SessionUser:
    id: int
    username: str
    first_name: str
    middle_name: str | None
    last_name: str
    email: str
    role: str
    is_active: bool

    @property
    def full_name(self) -> str:
        return join_name_parts(self.first_name, self.middle_name, self.last_name)


@dataclass(frozen=True)
class SessionView:
    session: UserSession
    user: SessionUser

    @property
    def session_id(self) -> str:
        return self.session.session_id

    @property
    def is_active(self) -> bool:
        return self.session.is_active


_SUMMARY_COLUMNS = (
    UserSession.session_id,
    UserSession.device_info,
    UserSession.browser_info,
    UserSession.device_type,
    UserSession.platform,
    UserSession.ip_address,
    UserSession.last_activity,
    UserSession.login_time,
)


def _summary(row) -> SessionSummary:
    return SessionSummary(
        session_id=row.session_id,
        device_info=row.device_info,
        browser_info=row.browser_info,
        device_type=row.device_type,
        platform=row.platform,
        ip_address=row.ip_address,
        last_activity=row.last_activity,
        login_time=row.login_time,
    )


# ── Store ────────────────────────────────────────────────────────────


class SessionStore:
    def __init__(
        self,
        config: AuthConfig,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Callable[[], datetime] = utcnow,
    ):
        self._config = config
        self._session_factory = session_factory
        self._clock = clock
        self._pending: set[asyncio.Task] = set()

    @asynccontextmanager
    async def _transaction(self, action: str) -> AsyncIterator[AsyncSession]:
        try:
            async with session_scope(self._session_factory) as db:
                yield db
        except SQLAlchemyError as exc:
            logger.exception("Session store failed during %s", action)
            raise StoreUnavailable() from exc

    # ── Create ───────────────────────────────────────────────────────

    async def create(
        self,
        user_id: int,
        access_token: str,
        refresh_token: str | None,
        device: DeviceContext,
        session_id: str | None = None,
    ) -> UserSession:
        now = self._clock()
        session = UserSession(
            session_id=session_id or generate_session_id(),
            user_id=user_id,
            access_token=access_token,
            refresh_token=refresh_token,
            device_type=device.device_type,
            device_info=device.device_info,
            browser_info=device.browser_info,
            platform=device.platform,
            ip_address=device.ip_address,
            user_agent=device.user_agent,
            is_active=True,
            login_time=now,
            last_activity=now,
        )
        async with self._transaction("create") as db:
            db.add(session)
            await db.flush()
        logger.info("Session %s created for user %s (%s)", session.session_id, user_id, device.device_type.value)
        return session

    # ── Lookup ───────────────────────────────────────────────────────

    async def _find_view(self, action: str, *criteria) -> SessionView | None:
        stmt = (
            select(
                UserSession,
                User.username,
                User.first_name,
                User.middle_name,
                User.last_name,
                User.email,
                User.role,
                User.is_active.label("user_is_active"),
            )
            .join(User, User.id == UserSession.user_id)
            .where(UserSession.is_active == True, *criteria)  # noqa: E712
            .order_by(UserSession.id.desc())
            .limit(1)
        )
        async with self._transaction(action) as db:
            row = (await db.execute(stmt)).first()
        if row is None:
            return None
        session = row[0]
        return SessionView(
            session=session,
            user=SessionUser(
                id=session.user_id,
                username=row.username,
                first_name=row.first_name,
                middle_name=row.middle_name,
                last_name=row.last_name,
                email=row.email,
                role=row.role,
                is_active=row.user_is_active,
            ),
        )

    async def find_by_token(self, access_token: str) -> SessionView | None:
        """Active session for `access_token`, with a minimal user projection."""
        return await self._find_view("find_by_token", UserSession.access_token == access_token)

    async def find_by_session_id(self, session_id: str, user_id: int) -> SessionView | None:
        """Active session `session_id` owned by `user_id`, same projection as `find_by_token`."""
        return await self._find_view(
            "find_by_session_id",
            UserSession.session_id == session_id,
            UserSession.user_id == user_id,
        )

    async def find_by_refresh_token(self, refresh_token: str) -> UserSession | None:
        """Most recent session (active or not) issued with `refresh_token`."""
        stmt = (
            select(UserSession)
            .where(UserSession.refresh_token == refresh_token)
            .order_by(UserSession.id.desc())
            .limit(1)
        )
        async with self._transaction("find_by_refresh_token") as db:
            return (await db.execute(stmt)).scalar_one_or_none()

    async def get_active(self, session_id: str, user_id: int | None = None) -> SessionSummary | None:
        stmt = select(*_SUMMARY_COLUMNS).where(
            UserSession.session_id == session_id,
            UserSession.is_active == True,  # noqa: E712
        )
        if user_id is not None:
            stmt = stmt.where(UserSession.user_id == user_id)
        async with self._transaction("get_active") as db:
            row = (await db.execute(stmt)).first()
        return _summary(row) if row is not None else None

    async def list_active(self, user_id: int) -> list[SessionSummary]:
        """Active sessions for a user, most recently active first."""
        stmt = (
            select(*_SUMMARY_COLUMNS)
            .where(
                UserSession.user_id == user_id,
                UserSession.is_active == True,  # noqa: E712
            )
            .order_by(UserSession.last_activity.desc(), UserSession.id.desc())
        )
        async with self._transaction("list_active") as db:
            rows = (await db.execute(stmt)).all()
        return [_summary(row) for row in rows]

    # ── Last-activity touch ──────────────────────────────────────────

    async def touch_last_activity(
        self,
        session_id: str,
        throttle_window: timedelta | None = None,
    ) -> bool:
        """
        Best-effort `last_activity = now` for one active session.

        The UPDATE only matches when the stored timestamp is NULL or older
        than the throttle window, so bursts of requests from one device
        resolve to a fast 0-row no-op instead of queueing on the row
        lock.  Returns True when a row was written.  Never raises.
        """
        window = self._config.touch_throttle if throttle_window is None else throttle_window
        max_attempts = self._config.touch_max_attempts

        for attempt in range(1, max_attempts + 1):
            now = self._clock()
            stmt = (
                update(UserSession)
                .where(
                    UserSession.session_id == session_id,
                    UserSession.is_active == True,  # noqa: E712
                    or_(
                        UserSession.last_activity.is_(None),
                        UserSession.last_activity < now - window,
                    ),
                )
                .values(last_activity=now)
                .execution_options(synchronize_session=False)
            )
            try:
                async with session_scope(self._session_factory) as db:
                    count = (await db.execute(stmt)).rowcount
                return count > 0
            except DBAPIError as exc:
                if is_lock_contention(exc) and attempt < max_attempts:
                    logger.debug(
                        "Lock contention touching session %s (attempt %d/%d)",
                        session_id, attempt, max_attempts,
                    )
                    await asyncio.sleep(self._config.touch_backoff.total_seconds() * attempt)
                    continue
                logger.warning(
                    "Giving up last-activity touch for session %s after %d attempt(s): %s",
                    session_id, attempt, exc.__class__.__name__,
                )
                return False
            except SQLAlchemyError:
                logger.warning("Last-activity touch failed for session %s", session_id, exc_info=True)
                return False
        return False

    def schedule_touch(self, session_id: str) -> asyncio.Task:
        """Run `touch_last_activity` detached from the caller's response."""
        task = asyncio.create_task(self.touch_last_activity(session_id))
        self._pending.add(task)
        task.add_done_callback(self._touch_done)
        return task

    def _touch_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Detached last-activity touch crashed", exc_info=exc)

    @property
    def pending_touches(self) -> int:
        return len(self._pending)

    async def drain(self) -> None:
        """Wait for every outstanding detached touch."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # ── Revocation ───────────────────────────────────────────────────

    async def replace_access_token(self, session_id: str, access_token: str) -> bool:
        """Point an active session at a freshly minted access token."""
        stmt = (
            update(UserSession)
            .where(
                UserSession.session_id == session_id,
                UserSession.is_active == True,  # noqa: E712
            )
            .values(access_token=access_token)
            .execution_options(synchronize_session=False)
        )
        async with self._transaction("replace_access_token") as db:
            count = (await db.execute(stmt)).rowcount
        return count > 0

    async def revoke(self, session_id: str, require_user_id: int | None = None) -> bool:
        """Deactivate one session; scoped to its owner when `require_user_id` is given."""
        stmt = (
            update(UserSession)
            .where(
                UserSession.session_id == session_id,
                UserSession.is_active == True,  # noqa: E712
            )
            .values(is_active=False, logout_time=self._clock())
            .execution_options(synchronize_session=False)
        )
        if require_user_id is not None:
            stmt = stmt.where(UserSession.user_id == require_user_id)
        async with self._transaction("revoke") as db:
            count = (await db.execute(stmt)).rowcount
        revoked = count > 0
        if revoked:
            logger.info("Session %s revoked", session_id)
        return revoked

    async def revoke_all_except(self, user_id: int, keep_session_id: str) -> int:
        stmt = (
            update(UserSession)
            .where(
                UserSession.user_id == user_id,
                UserSession.session_id != keep_session_id,
                UserSession.is_active == True,  # noqa: E712
            )
            .values(is_active=False, logout_time=self._clock())
            .execution_options(synchronize_session=False)
        )
        async with self._transaction("revoke_all_except") as db:
            count = (await db.execute(stmt)).rowcount
        logger.info("Revoked %d other session(s) for user %s", count, user_id)
        return count

    async def revoke_all(self, user_id: int) -> int:
        stmt = (
            update(UserSession)
            .where(
                UserSession.user_id == user_id,
                UserSession.is_active == True,  # noqa: E712
            )
            .values(is_active=False, logout_time=self._clock())
            .execution_options(synchronize_session=False)
        )
        async with self._transaction("revoke_all") as db:
            count = (await db.execute(stmt)).rowcount
        logger.info("Revoked all %d session(s) for user %s", count, user_id)
        return count

    # ── Expiry ───────────────────────────────────────────────────────

    async def sweep_expired(self, inactivity_threshold: timedelta | None = None) -> int:
        """Soft-expire sessions idle longer than the threshold (default 30 days)."""
        threshold = self._config.inactivity_threshold if inactivity_threshold is None else inactivity_threshold
        now = self._clock()
        stmt = (
            update(UserSession)
            .where(
                UserSession.is_active == True,  # noqa: E712
                UserSession.last_activity < now - threshold,
            )
            .values(is_active=False, logout_time=now)
            .execution_options(synchronize_session=False)
        )
        async with self._transaction("sweep_expired") as db:
            count = (await db.execute(stmt)).rowcount
        logger.info("Cleaned up %d expired sessions", count)
        return count

    async def run_sweeper(self, interval: timedelta) -> None:
        """Sweep forever; cancelled by the runtime on shutdown."""
        while True:
            try:
                await self.sweep_expired()
            except StoreUnavailable:
                # Already logged by the store; try again next round.
                pass
            except Exception:
                logger.exception("Session sweep crashed; retrying next round")
            await asyncio.sleep(interval.total_seconds())
