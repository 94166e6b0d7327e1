"""Tests for the session store.

Tests for:
- Session creation and lookup projections
- Throttled, retrying last-activity touches
- Revocation scoping and idempotence
- Idle-session sweep
- Fail-closed lookups vs. fail-open touches
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import timedelta

import pytest
from sqlalchemy.exc import OperationalError

from campus_auth.core.database import build_engine, build_session_factory
from campus_auth.core.errors import AuthFailure, StoreUnavailable
from campus_auth.models.session import DeviceType
from campus_auth.services import session_service
from campus_auth.services.device import parse_user_agent
from campus_auth.services.session_service import SessionStore, generate_session_id, is_lock_contention
from conftest import DESKTOP_UA, IPHONE_UA, load_session

IPHONE = parse_user_agent(IPHONE_UA, "198.51.100.4")
DESKTOP = parse_user_agent(DESKTOP_UA, "10.0.0.9")


async def _open(store, user_id, device=DESKTOP, token=None):
    return await store.create(user_id, token or generate_session_id(), "refresh-" + generate_session_id(), device)


def _locked():
    return OperationalError("UPDATE user_sessions", {}, Exception("database is locked"))


class TestCreate:
    async def test_records_device_and_timestamps(self, store, session_factory, users):
        created = await store.create(users.alice, "access-1", "refresh-1", IPHONE)
        row = await load_session(session_factory, created.session_id)

        assert row.user_id == users.alice
        assert row.access_token == "access-1"
        assert row.refresh_token == "refresh-1"
        assert row.device_type == DeviceType.MOBILE
        assert row.platform == "ios"
        assert row.browser_info == "Safari"
        assert row.ip_address == "198.51.100.4"
        assert row.is_active is True
        assert row.logout_time is None
        assert row.login_time == row.last_activity

    async def test_session_ids_are_opaque_and_unique(self, store, users):
        first = await _open(store, users.alice)
        second = await _open(store, users.alice)

        assert first.session_id != second.session_id
        assert first.session_id.startswith("sess_")
        assert len(first.session_id) == len("sess_") + 32


class TestLookup:
    async def test_find_by_token_joins_user_projection(self, store, users):
        created = await store.create(users.alice, "access-xyz", None, DESKTOP)
        view = await store.find_by_token("access-xyz")

        assert view.session_id == created.session_id
        assert view.is_active
        assert view.user.id == users.alice
        assert view.user.email == "alice@example.com"
        assert view.user.role == "student"
        # Empty middle names are skipped.
        assert view.user.full_name == "Alice Liddell"

    async def test_find_by_token_unknown(self, store, users):
        assert await store.find_by_token("never-issued") is None

    async def test_find_by_session_id_scoped_to_owner(self, store, users):
        created = await store.create(users.alice, "access-sid", None, DESKTOP)

        view = await store.find_by_session_id(created.session_id, users.alice)
        assert view.session_id == created.session_id
        assert view.user.username == "alice"
        assert await store.find_by_session_id(created.session_id, users.carol) is None

        await store.revoke(created.session_id)
        assert await store.find_by_session_id(created.session_id, users.alice) is None

    async def test_access_token_unique_among_active_sessions(self, store, users):
        first = await store.create(users.alice, "shared-token", None, DESKTOP)

        with pytest.raises(StoreUnavailable):
            await store.create(users.alice, "shared-token", None, IPHONE)

        # Once the holder is revoked the token may appear again.
        await store.revoke(first.session_id)
        again = await store.create(users.alice, "shared-token", None, IPHONE)
        assert (await store.find_by_token("shared-token")).session_id == again.session_id

    async def test_get_active_scoped_to_owner(self, store, users):
        created = await _open(store, users.alice)

        assert (await store.get_active(created.session_id)).session_id == created.session_id
        assert await store.get_active(created.session_id, user_id=users.alice) is not None
        assert await store.get_active(created.session_id, user_id=users.carol) is None

    async def test_list_active_most_recent_first(self, store, clock, users):
        older = await _open(store, users.alice)
        clock.advance(minutes=1)
        newer = await _open(store, users.alice, device=IPHONE)
        await _open(store, users.carol)

        listed = await store.list_active(users.alice)
        assert [s.session_id for s in listed] == [newer.session_id, older.session_id]

        clock.advance(seconds=30)
        assert await store.touch_last_activity(older.session_id)
        listed = await store.list_active(users.alice)
        assert [s.session_id for s in listed] == [older.session_id, newer.session_id]

    async def test_summary_never_exposes_tokens(self, store, users):
        await store.create(users.alice, "secret-access", "secret-refresh", DESKTOP)
        (summary,) = await store.list_active(users.alice)

        assert not hasattr(summary, "access_token")
        assert not hasattr(summary, "refresh_token")
        assert summary.device_type == DeviceType.DESKTOP


class TestTouch:
    async def test_throttled_within_window(self, store, clock, session_factory, users):
        created = await _open(store, users.alice)
        before = (await load_session(session_factory, created.session_id)).last_activity

        clock.advance(seconds=10)
        assert await store.touch_last_activity(created.session_id) is False
        assert (await load_session(session_factory, created.session_id)).last_activity == before

    async def test_written_after_window(self, store, clock, session_factory, users):
        created = await _open(store, users.alice)
        before = (await load_session(session_factory, created.session_id)).last_activity

        clock.advance(seconds=16)
        assert await store.touch_last_activity(created.session_id) is True
        after = (await load_session(session_factory, created.session_id)).last_activity
        assert after - before == timedelta(seconds=16)

        # A second touch right away is a no-op again.
        assert await store.touch_last_activity(created.session_id) is False

    async def test_explicit_window_overrides_config(self, store, clock, users):
        created = await _open(store, users.alice)
        clock.advance(seconds=2)

        assert await store.touch_last_activity(created.session_id, throttle_window=timedelta(0))

    async def test_revoked_session_is_never_touched(self, store, clock, session_factory, users):
        created = await _open(store, users.alice)
        await store.revoke(created.session_id)
        clock.advance(minutes=5)

        assert await store.touch_last_activity(created.session_id) is False
        assert (await load_session(session_factory, created.session_id)).is_active is False

    async def test_unknown_session_is_a_no_op(self, store):
        assert await store.touch_last_activity("sess_missing") is False

    async def test_retries_lock_contention(self, store, clock, session_factory, users, monkeypatch):
        created = await _open(store, users.alice)
        clock.advance(minutes=1)
        real_scope = session_service.session_scope
        attempts = []

        @asynccontextmanager
        async def flaky_scope(factory):
            attempts.append(1)
            if len(attempts) < 3:
                raise _locked()
            async with real_scope(factory) as db:
                yield db

        monkeypatch.setattr(session_service, "session_scope", flaky_scope)

        assert await store.touch_last_activity(created.session_id) is True
        assert len(attempts) == 3

    async def test_gives_up_after_max_attempts(self, store, clock, users, monkeypatch):
        created = await _open(store, users.alice)
        clock.advance(minutes=1)
        attempts = []

        @asynccontextmanager
        async def locked_scope(factory):
            attempts.append(1)
            raise _locked()
            yield  # pragma: no cover

        monkeypatch.setattr(session_service, "session_scope", locked_scope)

        assert await store.touch_last_activity(created.session_id) is False
        assert len(attempts) == 3

    async def test_other_database_errors_are_not_retried(self, store, clock, users, monkeypatch):
        created = await _open(store, users.alice)
        attempts = []

        @asynccontextmanager
        async def broken_scope(factory):
            attempts.append(1)
            raise OperationalError("UPDATE user_sessions", {}, Exception("no such column"))
            yield  # pragma: no cover

        monkeypatch.setattr(session_service, "session_scope", broken_scope)

        assert await store.touch_last_activity(created.session_id) is False
        assert len(attempts) == 1

    async def test_scheduled_touch_runs_detached(self, store, clock, session_factory, users):
        created = await _open(store, users.alice)
        clock.advance(minutes=1)

        store.schedule_touch(created.session_id)
        assert store.pending_touches == 1
        await store.drain()

        assert store.pending_touches == 0
        row = await load_session(session_factory, created.session_id)
        assert row.last_activity - row.login_time == timedelta(minutes=1)


class TestLockDetection:
    def test_message_based(self):
        assert is_lock_contention(_locked())

    def test_sqlstate_based(self):
        class PgError(Exception):
            sqlstate = "55P03"

        assert is_lock_contention(OperationalError("UPDATE", {}, PgError("lock timeout")))

    def test_mysql_errno(self):
        assert is_lock_contention(OperationalError("UPDATE", {}, Exception(1205, "timeout")))

    def test_unrelated_error(self):
        assert not is_lock_contention(OperationalError("UPDATE", {}, Exception("disk I/O error")))


class TestRevocation:
    async def test_revoke_is_scoped_and_idempotent(self, store, session_factory, users):
        created = await _open(store, users.alice, token="tok-a")

        assert await store.revoke(created.session_id, require_user_id=users.carol) is False
        assert await store.revoke(created.session_id, require_user_id=users.alice) is True
        assert await store.revoke(created.session_id, require_user_id=users.alice) is False

        row = await load_session(session_factory, created.session_id)
        assert row.is_active is False
        assert row.logout_time is not None
        assert await store.find_by_token("tok-a") is None
        assert await store.get_active(created.session_id) is None

    async def test_revoke_all_except_keeps_current(self, store, users):
        keep = await _open(store, users.alice)
        await _open(store, users.alice)
        await _open(store, users.alice)
        other_user = await _open(store, users.carol)

        assert await store.revoke_all_except(users.alice, keep.session_id) == 2
        assert await store.revoke_all_except(users.alice, keep.session_id) == 0
        assert [s.session_id for s in await store.list_active(users.alice)] == [keep.session_id]
        assert await store.get_active(other_user.session_id) is not None

    async def test_revoke_all(self, store, users):
        await _open(store, users.alice)
        await _open(store, users.alice)

        assert await store.revoke_all(users.alice) == 2
        assert await store.revoke_all(users.alice) == 0
        assert await store.list_active(users.alice) == []


class TestSweep:
    async def test_expires_idle_sessions_only(self, store, clock, session_factory, users):
        idle = await _open(store, users.alice)
        clock.advance(days=31)
        fresh = await _open(store, users.alice)

        assert await store.sweep_expired() == 1
        assert (await load_session(session_factory, idle.session_id)).is_active is False
        assert (await load_session(session_factory, fresh.session_id)).is_active is True
        assert await store.sweep_expired() == 0

    async def test_custom_threshold(self, store, clock, users):
        await _open(store, users.alice)
        clock.advance(hours=2)

        assert await store.sweep_expired(timedelta(hours=1)) == 1

    async def test_sweeper_survives_unexpected_errors(self, store, monkeypatch):
        calls = []

        async def flaky_sweep():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("boom")
            return 0

        monkeypatch.setattr(store, "sweep_expired", flaky_sweep)
        task = asyncio.create_task(store.run_sweeper(timedelta(0)))
        for _ in range(50):
            if len(calls) >= 3:
                break
            await asyncio.sleep(0)

        assert not task.done()
        assert len(calls) >= 3
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task


class TestStoreFailures:
    @pytest.fixture
    def broken_store(self, auth_config, tmp_path, clock):
        # A database without the schema: every statement errors.
        engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'empty.db'}")
        return SessionStore(auth_config, build_session_factory(engine), clock=clock)

    async def test_lookups_fail_closed(self, broken_store):
        with pytest.raises(StoreUnavailable) as exc:
            await broken_store.find_by_token("anything")
        assert exc.value.reason == AuthFailure.STORE_UNAVAILABLE

        with pytest.raises(StoreUnavailable):
            await broken_store.list_active(1)

    async def test_revocation_fails_closed(self, broken_store):
        with pytest.raises(StoreUnavailable):
            await broken_store.revoke("sess_x")

    async def test_touch_fails_open(self, broken_store):
        assert await broken_store.touch_last_activity("sess_x") is False
