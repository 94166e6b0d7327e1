"""
Request gate — per-request authentication.

Checks performed on every protected request:
  1. A bearer token is present.
  2. JWT signature, expiry, issuer/audience and type ("access").
  3. The token belongs to an ACTIVE server-side session: either it is
     the session's current access token, or its `sid` claim names the
     session (tokens superseded by a refresh).

Step 3 is what makes logout real: a token that is still perfectly
valid as a JWT is refused once its session has been revoked, and the
refusal says SESSION_REVOKED rather than a token error.

On success the session's `last_activity` is touched in a detached
task; the response never waits for it.
"""

from dataclasses import dataclass
from typing import Any

from campus_auth.core.errors import AuthError, AuthFailure
from campus_auth.core.security import ACCESS, TokenCodec
from campus_auth.services.session_service import SessionStore, SessionView


@dataclass(frozen=True)
class AuthContext:
    """Identity attached to an authenticated request."""

    claims: dict[str, Any]
    session: SessionView
    access_token: str

    @property
    def user_id(self) -> int:
        return self.session.user.id

    @property
    def session_id(self) -> str:
        return self.session.session_id

    @property
    def role(self) -> str:
        return self.session.user.role


def extract_bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


class RequestGate:
    def __init__(self, codec: TokenCodec, sessions: SessionStore):
        self._codec = codec
        self._sessions = sessions

    async def authenticate(self, authorization: str | None) -> AuthContext:
        """Raise `AuthError` unless the header carries a live session's token."""
        token = extract_bearer_token(authorization)
        if token is None:
            raise AuthError(AuthFailure.TOKEN_MISSING)

        claims = self._codec.verify(token, ACCESS)

        # StoreUnavailable propagates: lookup-for-gating fails closed.
        view = await self._sessions.find_by_token(token)
        if view is None and claims.get("sid"):
            # Superseded by a refresh: still good while its session is live.
            view = await self._sessions.find_by_session_id(claims["sid"], claims["id"])
        if view is None or not view.is_active:
            raise AuthError(AuthFailure.SESSION_REVOKED)
        if view.user.id != claims["id"]:
            raise AuthError(AuthFailure.TOKEN_MALFORMED)

        self._sessions.schedule_touch(view.session_id)
        return AuthContext(claims=claims, session=view, access_token=token)
