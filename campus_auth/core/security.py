"""
Password hashing & JWT helpers.

- Passwords are hashed with bcrypt directly (passlib is unmaintained
  and broken with bcrypt>=4.1).  `checkpw` is the constant-time
  comparison used by the credential verifier.
- Access and refresh tokens are signed with DISTINCT secrets and bound
  to an issuer / audience pair.  Verification is pure: no I/O, only
  the `AuthConfig` handed to the codec.
"""

import secrets
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any, Protocol

import bcrypt
from jose import ExpiredSignatureError, JWTError, jwt
from jose.exceptions import JWTClaimsError

from campus_auth.core.config import AuthConfig
from campus_auth.core.errors import AuthFailure, TokenError

ACCESS = "access"
REFRESH = "refresh"
TOKEN_TYPES = (ACCESS, REFRESH)

# ── Password hashing ────────────────────────────────────────────────


def hash_password(plain: str, rounds: int = 12) -> str:
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    if not hashed:
        return False
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Stored value is not a bcrypt hash.
        return False


# ── JWT ──────────────────────────────────────────────────────────────


class TokenSubject(Protocol):
    id: int
    username: str
    email: str
    role: str

    @property
    def full_name(self) -> str: ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenCodec:
    """Issues and verifies access / refresh JWTs."""

    def __init__(self, config: AuthConfig, clock: Callable[[], datetime] = _utcnow):
        self._config = config
        self._clock = clock

    def _secret(self, token_type: str) -> str:
        if token_type == ACCESS:
            return self._config.access_secret
        if token_type == REFRESH:
            return self._config.refresh_secret
        raise ValueError(f"Unknown token type: {token_type!r}")

    def _encode(self, claims: dict[str, Any], token_type: str) -> str:
        now = self._clock()
        ttl = self._config.access_ttl if token_type == ACCESS else self._config.refresh_ttl
        to_encode = dict(claims)
        to_encode.update({
            "type": token_type,
            # Two logins in the same second must still yield distinct tokens.
            "jti": secrets.token_hex(8),
            "iat": now,
            "exp": now + ttl,
            "iss": self._config.issuer,
            "aud": self._config.audience,
        })
        return jwt.encode(to_encode, self._secret(token_type), algorithm=self._config.algorithm)

    def issue_access_token(self, user: TokenSubject, session_id: str | None = None) -> str:
        """Access token; `session_id` binds it to a tracked session (`sid` claim)."""
        claims = {
            "id": user.id,
            "username": user.username,
            "email": user.email,
            "role": user.role,
            "name": user.full_name,
        }
        if session_id is not None:
            claims["sid"] = session_id
        return self._encode(claims, ACCESS)

    def issue_refresh_token(self, user: TokenSubject) -> str:
        return self._encode({"id": user.id, "username": user.username}, REFRESH)

    def verify(self, token: str, expected_type: str) -> dict[str, Any]:
        """
        Decode & validate a token of `expected_type`.

        Raises `TokenError` with one of TOKEN_EXPIRED, TOKEN_MALFORMED,
        TOKEN_WRONG_AUDIENCE or TOKEN_WRONG_TYPE.
        """
        secret = self._secret(expected_type)
        if not token:
            raise TokenError(AuthFailure.TOKEN_MISSING)
        try:
            payload = jwt.decode(
                token,
                secret,
                algorithms=[self._config.algorithm],
                audience=self._config.audience,
                issuer=self._config.issuer,
            )
        except ExpiredSignatureError as exc:
            raise TokenError(AuthFailure.TOKEN_EXPIRED) from exc
        except JWTClaimsError as exc:
            raise TokenError(AuthFailure.TOKEN_WRONG_AUDIENCE) from exc
        except JWTError as exc:
            if self._is_other_type(token, expected_type):
                raise TokenError(AuthFailure.TOKEN_WRONG_TYPE) from exc
            raise TokenError(AuthFailure.TOKEN_MALFORMED) from exc

        if payload.get("type") != expected_type:
            raise TokenError(AuthFailure.TOKEN_WRONG_TYPE)
        if "id" not in payload:
            raise TokenError(AuthFailure.TOKEN_MALFORMED)
        return payload

    def _is_other_type(self, token: str, expected_type: str) -> bool:
        """True when `token` is a genuine token of the other type."""
        other = REFRESH if expected_type == ACCESS else ACCESS
        try:
            payload = jwt.decode(
                token,
                self._secret(other),
                algorithms=[self._config.algorithm],
                options={"verify_exp": False, "verify_aud": False, "verify_iss": False},
            )
        except JWTError:
            return False
        return payload.get("type") == other
