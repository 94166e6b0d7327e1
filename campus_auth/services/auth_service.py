"""
Authentication service.

Handles:
- Login: credential check → token pair → per-device session row
- Token refresh (the refresh token is echoed back, not rotated)
- Logout: revokes the caller's current session
- Password change

Credential and token failures come back as result objects with a
`reason`; they are never raised past this layer.  Session creation is
best-effort: if the store is down the login still succeeds, just
without a trackable session.

All business logic lives here; controllers call service methods
and render the result.
"""

import logging
from dataclasses import dataclass

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from campus_auth.core.config import AuthConfig
from campus_auth.core.database import session_scope
from campus_auth.core.errors import MESSAGES, AuthFailure, StoreUnavailable, TokenError
from campus_auth.core.security import REFRESH, TokenCodec, hash_password, verify_password
from campus_auth.models.session import UserSession
from campus_auth.models.user import User
from campus_auth.services import credential_service, user_store
from campus_auth.services.device import DeviceContext
from campus_auth.services.session_service import SessionStore, generate_session_id

logger = logging.getLogger(__name__)


# ── Results ──────────────────────────────────────────────────────────


@dataclass(frozen=True)
class AuthResult:
    success: bool
    message: str
    reason: AuthFailure | None = None

    @classmethod
    def failure(cls, reason: AuthFailure, message: str | None = None):
        return cls(success=False, message=message or MESSAGES[reason], reason=reason)


@dataclass(frozen=True)
class LoginResult(AuthResult):
    access_token: str | None = None
    refresh_token: str | None = None
    user: User | None = None
    session: UserSession | None = None


@dataclass(frozen=True)
class RefreshResult(AuthResult):
    access_token: str | None = None
    refresh_token: str | None = None
    user: User | None = None


# ── Service ──────────────────────────────────────────────────────────


class AuthService:
    def __init__(
        self,
        config: AuthConfig,
        codec: TokenCodec,
        sessions: SessionStore,
        session_factory: async_sessionmaker[AsyncSession],
    ):
        self._config = config
        self._codec = codec
        self._sessions = sessions
        self._session_factory = session_factory

    async def _load_user(self, user_id: int) -> User | None:
        try:
            async with session_scope(self._session_factory) as db:
                return await user_store.find_by_id(user_id, db)
        except SQLAlchemyError as exc:
            logger.exception("User store failed loading user %s", user_id)
            raise StoreUnavailable() from exc

    # ── Login ────────────────────────────────────────────────────────

    async def login(self, identifier: str, password: str, device: DeviceContext) -> LoginResult:
        if not identifier or not password:
            return LoginResult.failure(AuthFailure.INVALID_CREDENTIALS)

        try:
            async with session_scope(self._session_factory) as db:
                outcome = await credential_service.authenticate(identifier, password, db)
        except SQLAlchemyError as exc:
            logger.exception("User store failed during login")
            raise StoreUnavailable() from exc

        if not outcome.ok:
            logger.info("Login failed: %s", outcome.reason.value)
            return LoginResult.failure(outcome.reason)

        user = outcome.user
        session_id = generate_session_id()
        access_token = self._codec.issue_access_token(user, session_id=session_id)
        refresh_token = self._codec.issue_refresh_token(user)

        session: UserSession | None = None
        try:
            session = await self._sessions.create(
                user.id, access_token, refresh_token, device, session_id=session_id,
            )
        except StoreUnavailable:
            # Sessions give visibility, they do not gate login.
            logger.warning("Login for user %s succeeded without a tracked session", user.id)

        logger.info("Login successful for user %s", user.id)
        return LoginResult(
            success=True,
            message="Login successful",
            access_token=access_token,
            refresh_token=refresh_token,
            user=user,
            session=session,
        )

    # ── Refresh ──────────────────────────────────────────────────────

    async def refresh(self, refresh_token: str) -> RefreshResult:
        """
        Mint a new access token from a refresh token.

        The same refresh token is handed back.  When the refresh token
        belongs to a tracked session, the new access token is bound to
        that session (`sid` claim) and the session is re-pointed at it;
        access tokens minted earlier for the same session stay usable
        until they expire.  If the session was revoked the refresh fails.
        """
        try:
            claims = self._codec.verify(refresh_token, REFRESH)
        except TokenError as exc:
            logger.info("Refresh rejected: %s", exc.reason.value)
            return RefreshResult.failure(exc.reason)

        user = await self._load_user(claims["id"])
        if user is None or not user.is_active:
            return RefreshResult.failure(AuthFailure.USER_INACTIVE)

        tracked = await self._sessions.find_by_refresh_token(refresh_token)
        access_token = self._codec.issue_access_token(
            user, session_id=tracked.session_id if tracked is not None else None,
        )
        if tracked is not None:
            if not tracked.is_active or not await self._sessions.replace_access_token(
                tracked.session_id, access_token,
            ):
                return RefreshResult.failure(AuthFailure.SESSION_REVOKED)

        return RefreshResult(
            success=True,
            message="Token refreshed successfully",
            access_token=access_token,
            refresh_token=refresh_token,
            user=user,
        )

    # ── Logout ───────────────────────────────────────────────────────

    async def logout(self, session_id: str, user_id: int) -> AuthResult:
        """Revoke the caller's current session."""
        if not await self._sessions.revoke(session_id, require_user_id=user_id):
            return AuthResult.failure(AuthFailure.SESSION_NOT_FOUND)
        logger.info("User %s logged out of session %s", user_id, session_id)
        return AuthResult(success=True, message="Logged out successfully")

    # ── Password change ──────────────────────────────────────────────

    async def change_password(
        self,
        user_id: int,
        current_password: str,
        new_password: str,
        confirm_password: str,
    ) -> AuthResult:
        """
        Validate and store a new password.

        Existing sessions stay active: a password change does not force
        other devices to log in again.
        """
        if not current_password or not new_password or not confirm_password:
            return AuthResult.failure(AuthFailure.MISSING_FIELDS)
        if new_password != confirm_password:
            return AuthResult.failure(AuthFailure.MISMATCH)
        min_length = self._config.min_password_length
        if len(new_password) < min_length:
            return AuthResult.failure(
                AuthFailure.TOO_SHORT,
                f"New password must be at least {min_length} characters long",
            )
        if new_password == current_password:
            return AuthResult.failure(AuthFailure.SAME_AS_OLD)

        try:
            async with session_scope(self._session_factory) as db:
                user = await user_store.find_by_id(user_id, db)
                if user is None:
                    return AuthResult.failure(AuthFailure.USER_NOT_FOUND)
                if not verify_password(current_password, user.password_hash):
                    return AuthResult.failure(AuthFailure.WRONG_CURRENT)
                await user_store.update_password(user_id, hash_password(new_password), db)
        except SQLAlchemyError as exc:
            logger.exception("User store failed changing password for user %s", user_id)
            raise StoreUnavailable() from exc

        logger.info("Password changed for user %s", user_id)
        return AuthResult(success=True, message="Password changed successfully")
