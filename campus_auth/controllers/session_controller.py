"""
Session controller — list and revoke login sessions.

Every route runs the request gate.  Users manage their own sessions;
the `/users/{user_id}` routes let admins inspect or force-logout
another account (role-guarded).

Revocations complete before the response is sent.
"""

from fastapi import APIRouter, Depends

from campus_auth.core.errors import AuthError, AuthFailure
from campus_auth.rbac.dependencies import get_auth_context, get_runtime, require_admin
from campus_auth.schemas import (
    CountData,
    CountResponse,
    MessageResponse,
    SessionListResponse,
    SessionOut,
    SessionResponse,
)
from campus_auth.services.request_gate import AuthContext
from campus_auth.services.runtime import Runtime

router = APIRouter(prefix="/api/sessions", tags=["Sessions"])


# ── Own sessions ─────────────────────────────────────────────────────
@router.get("", response_model=SessionListResponse)
async def list_sessions(
    ctx: AuthContext = Depends(get_auth_context),
    runtime: Runtime = Depends(get_runtime),
):
    """All active sessions for the logged-in user, newest activity first."""
    sessions = await runtime.sessions.list_active(ctx.user_id)
    return SessionListResponse(
        message="Active sessions retrieved successfully",
        data=[SessionOut.model_validate(s) for s in sessions],
    )


@router.get("/current", response_model=SessionResponse)
async def current_session(
    ctx: AuthContext = Depends(get_auth_context),
    runtime: Runtime = Depends(get_runtime),
):
    summary = await runtime.sessions.get_active(ctx.session_id, ctx.user_id)
    if summary is None:
        raise AuthError(AuthFailure.SESSION_REVOKED)
    return SessionResponse(
        message="Current session retrieved successfully",
        data=SessionOut.model_validate(summary),
    )


@router.delete("/{session_id}", response_model=MessageResponse)
async def logout_session(
    session_id: str,
    ctx: AuthContext = Depends(get_auth_context),
    runtime: Runtime = Depends(get_runtime),
):
    """Log out one of the caller's own sessions."""
    if not await runtime.sessions.revoke(session_id, require_user_id=ctx.user_id):
        raise AuthError(AuthFailure.SESSION_NOT_FOUND)
    return MessageResponse(message="Session logged out successfully")


@router.post("/logout-others", response_model=CountResponse)
async def logout_other_sessions(
    ctx: AuthContext = Depends(get_auth_context),
    runtime: Runtime = Depends(get_runtime),
):
    """Log out every session except the current one."""
    count = await runtime.sessions.revoke_all_except(ctx.user_id, ctx.session_id)
    return CountResponse(
        message=f"Logged out from {count} other sessions successfully",
        data=CountData(count=count),
    )


@router.post("/logout-all", response_model=CountResponse)
async def logout_all_sessions(
    ctx: AuthContext = Depends(get_auth_context),
    runtime: Runtime = Depends(get_runtime),
):
    """Log out every session, including the current one."""
    count = await runtime.sessions.revoke_all(ctx.user_id)
    return CountResponse(
        message=f"Logged out from all {count} sessions successfully",
        data=CountData(count=count),
    )


# ── Admin ────────────────────────────────────────────────────────────
@router.get("/users/{user_id}", response_model=SessionListResponse)
async def list_user_sessions(
    user_id: int,
    ctx: AuthContext = Depends(require_admin),
    runtime: Runtime = Depends(get_runtime),
):
    sessions = await runtime.sessions.list_active(user_id)
    return SessionListResponse(
        message="Active sessions retrieved successfully",
        data=[SessionOut.model_validate(s) for s in sessions],
    )


@router.post("/users/{user_id}/logout-all", response_model=CountResponse)
async def force_logout_user(
    user_id: int,
    ctx: AuthContext = Depends(require_admin),
    runtime: Runtime = Depends(get_runtime),
):
    """Admin force-logout: revoke every session of another user."""
    count = await runtime.sessions.revoke_all(user_id)
    return CountResponse(
        message=f"Logged out from all {count} sessions successfully",
        data=CountData(count=count),
    )
