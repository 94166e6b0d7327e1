"""
Auth failure taxonomy.

Every failure the auth layer reports carries one of these reasons.
The HTTP layer maps reasons to status codes and renders the stable
`{success: false, reason, message}` shape; internal details go to the
log only.
"""

import enum

from fastapi import status


class AuthFailure(str, enum.Enum):
    INVALID_CREDENTIALS = "INVALID_CREDENTIALS"
    ACCOUNT_DEACTIVATED = "ACCOUNT_DEACTIVATED"
    TOKEN_MISSING = "TOKEN_MISSING"
    TOKEN_EXPIRED = "TOKEN_EXPIRED"
    TOKEN_MALFORMED = "TOKEN_MALFORMED"
    TOKEN_WRONG_TYPE = "TOKEN_WRONG_TYPE"
    TOKEN_WRONG_AUDIENCE = "TOKEN_WRONG_AUDIENCE"
    SESSION_REVOKED = "SESSION_REVOKED"
    SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
    USER_INACTIVE = "USER_INACTIVE"
    USER_NOT_FOUND = "USER_NOT_FOUND"
    MISSING_FIELDS = "MISSING_FIELDS"
    MISMATCH = "MISMATCH"
    TOO_SHORT = "TOO_SHORT"
    SAME_AS_OLD = "SAME_AS_OLD"
    WRONG_CURRENT = "WRONG_CURRENT"
    FORBIDDEN = "FORBIDDEN"
    STORE_UNAVAILABLE = "STORE_UNAVAILABLE"
    INVALID_REQUEST = "INVALID_REQUEST"
    INTERNAL_ERROR = "INTERNAL_ERROR"


MESSAGES: dict[AuthFailure, str] = {
    AuthFailure.INVALID_CREDENTIALS: "Invalid username/email or password",
    AuthFailure.ACCOUNT_DEACTIVATED: "Account is deactivated. Please contact administrator.",
    AuthFailure.TOKEN_MISSING: "Access token is required",
    AuthFailure.TOKEN_EXPIRED: "Token has expired",
    AuthFailure.TOKEN_MALFORMED: "Invalid token",
    AuthFailure.TOKEN_WRONG_TYPE: "Invalid token type",
    AuthFailure.TOKEN_WRONG_AUDIENCE: "Token was not issued for this service",
    AuthFailure.SESSION_REVOKED: "Session has been logged out or expired",
    AuthFailure.SESSION_NOT_FOUND: "Session not found or already logged out",
    AuthFailure.USER_INACTIVE: "User not found or inactive",
    AuthFailure.USER_NOT_FOUND: "User not found",
    AuthFailure.MISSING_FIELDS: "All password fields are required",
    AuthFailure.MISMATCH: "New password and confirm password do not match",
    AuthFailure.TOO_SHORT: "New password is too short",
    AuthFailure.SAME_AS_OLD: "New password must be different from current password",
    AuthFailure.WRONG_CURRENT: "Current password is incorrect",
    AuthFailure.FORBIDDEN: "Insufficient permissions",
    AuthFailure.STORE_UNAVAILABLE: "Service temporarily unavailable. Please try again later.",
    AuthFailure.INVALID_REQUEST: "Request body is missing required fields or has the wrong types",
    AuthFailure.INTERNAL_ERROR: "Internal server error",
}


STATUS_CODES: dict[AuthFailure, int] = {
    AuthFailure.INVALID_CREDENTIALS: status.HTTP_401_UNAUTHORIZED,
    AuthFailure.ACCOUNT_DEACTIVATED: status.HTTP_403_FORBIDDEN,
    AuthFailure.TOKEN_MISSING: status.HTTP_401_UNAUTHORIZED,
    AuthFailure.TOKEN_EXPIRED: status.HTTP_401_UNAUTHORIZED,
    AuthFailure.TOKEN_MALFORMED: status.HTTP_401_UNAUTHORIZED,
    AuthFailure.TOKEN_WRONG_TYPE: status.HTTP_401_UNAUTHORIZED,
    AuthFailure.TOKEN_WRONG_AUDIENCE: status.HTTP_401_UNAUTHORIZED,
    AuthFailure.SESSION_REVOKED: status.HTTP_401_UNAUTHORIZED,
    AuthFailure.SESSION_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    AuthFailure.USER_INACTIVE: status.HTTP_401_UNAUTHORIZED,
    AuthFailure.USER_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    AuthFailure.MISSING_FIELDS: status.HTTP_400_BAD_REQUEST,
    AuthFailure.MISMATCH: status.HTTP_400_BAD_REQUEST,
    AuthFailure.TOO_SHORT: status.HTTP_400_BAD_REQUEST,
    AuthFailure.SAME_AS_OLD: status.HTTP_400_BAD_REQUEST,
    AuthFailure.WRONG_CURRENT: status.HTTP_400_BAD_REQUEST,
    AuthFailure.FORBIDDEN: status.HTTP_403_FORBIDDEN,
    AuthFailure.STORE_UNAVAILABLE: status.HTTP_503_SERVICE_UNAVAILABLE,
    AuthFailure.INVALID_REQUEST: status.HTTP_400_BAD_REQUEST,
    AuthFailure.INTERNAL_ERROR: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


class AuthError(Exception):
    """A typed auth failure.  `reason` is stable, `message` is user-safe."""

    def __init__(self, reason: AuthFailure, message: str | None = None):
        self.reason = reason
        self.message = message or MESSAGES[reason]
        super().__init__(self.message)

    @property
    def status_code(self) -> int:
        return STATUS_CODES[self.reason]


class TokenError(AuthError):
    """Token could not be verified."""


class StoreUnavailable(AuthError):
    """The session store failed on a path that must fail closed."""

    def __init__(self, message: str | None = None):
        super().__init__(AuthFailure.STORE_UNAVAILABLE, message)
