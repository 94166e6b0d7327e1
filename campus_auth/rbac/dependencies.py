"""
Auth dependencies — the request gate wired into FastAPI.

`get_auth_context` runs the gate for a request and returns the
`AuthContext` (claims + live session).  `require_role` is a
*dependency factory* on top of it:

    @router.get("/admin-only")
    async def handler(ctx: AuthContext = Depends(require_role("admin", "superadmin"))): ...

Failures raise `AuthError`; the app-level handler renders them as
`{success: false, reason, message}`.
"""

import logging

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from campus_auth.core.errors import AuthError, AuthFailure
from campus_auth.models.user import UserRole
from campus_auth.services.request_gate import AuthContext
from campus_auth.services.runtime import Runtime

logger = logging.getLogger("rbac")

bearer_scheme = HTTPBearer(auto_error=False)


def get_runtime(request: Request) -> Runtime:
    return request.app.state.runtime


async def get_auth_context(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    runtime: Runtime = Depends(get_runtime),
) -> AuthContext:
    header = f"{credentials.scheme} {credentials.credentials}" if credentials else None
    ctx = await runtime.gate.authenticate(header)
    request.state.auth = ctx
    return ctx


class require_role:
    """
    Dependency factory.

    Can be used as:
        Depends(require_role("admin"))
        Depends(require_role(UserRole.ADMIN, UserRole.SUPERADMIN))
    """

    def __init__(self, *roles: str | UserRole):
        self.allowed = {r.value if isinstance(r, UserRole) else r for r in roles}

    async def __call__(self, ctx: AuthContext = Depends(get_auth_context)) -> AuthContext:
        if ctx.role not in self.allowed:
            logger.warning(
                "Role denied for user %s — role: %s, allowed: %s",
                ctx.user_id,
                ctx.role,
                sorted(self.allowed),
            )
            # Intentionally vague — do NOT reveal which roles are allowed
            raise AuthError(AuthFailure.FORBIDDEN)
        return ctx


require_admin = require_role(UserRole.SUPERADMIN, UserRole.ADMIN)
