"""
Credential verifier.

Checks an identifier (username OR email) + password against the user
store.  Never raises for bad credentials: it returns an outcome with a
reason.  "No such user" and "wrong password" share the same reason and
message so the response does not reveal which accounts exist.
"""

import logging
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from campus_auth.core.errors import AuthFailure
from campus_auth.core.security import verify_password
from campus_auth.models.user import User
from campus_auth.services import user_store

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CredentialOutcome:
    ok: bool
    user: User | None = None
    reason: AuthFailure | None = None


async def authenticate(identifier: str, password: str, db: AsyncSession) -> CredentialOutcome:
    user = await user_store.find_by_identifier(identifier, db)
    if user is None:
        return CredentialOutcome(ok=False, reason=AuthFailure.INVALID_CREDENTIALS)

    # Deactivated accounts are refused before the password is checked.
    if not user.is_active:
        logger.info("Login refused for deactivated user id=%s", user.id)
        return CredentialOutcome(ok=False, reason=AuthFailure.ACCOUNT_DEACTIVATED)

    if not verify_password(password, user.password_hash):
        return CredentialOutcome(ok=False, reason=AuthFailure.INVALID_CREDENTIALS)

    return CredentialOutcome(ok=True, user=user)
