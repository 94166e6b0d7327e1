"""
Auth controller — login, token refresh, logout & password change.

Login and refresh are PUBLIC.  Logout, password change and the profile
lookup require a live session (request gate).

Transport: the access token travels in the `Authorization: Bearer`
header; the refresh token is set as an httpOnly cookie AND returned in
the body, so both cookie- and header-based clients work.
"""

from fastapi import APIRouter, Depends, Request, Response

from campus_auth.core.errors import AuthError, AuthFailure
from campus_auth.models.user import User
from campus_auth.rbac.dependencies import get_auth_context, get_runtime
from campus_auth.schemas import (
    ChangePasswordRequest,
    LoginData,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    RefreshResponse,
    RefreshTokenRequest,
    SessionOut,
    TokenData,
    UserOut,
    UserResponse,
)
from campus_auth.services.device import client_ip, parse_user_agent
from campus_auth.services.request_gate import AuthContext
from campus_auth.services.runtime import Runtime
from campus_auth.services.session_service import SessionUser

router = APIRouter(prefix="/api/auth", tags=["Auth"])

REFRESH_COOKIE = "refreshToken"


def _user_out(user: User | SessionUser) -> UserOut:
    return UserOut(
        id=user.id,
        username=user.username,
        email=user.email,
        name=user.full_name,
        role=user.role,
        is_active=user.is_active,
    )


def _set_refresh_cookie(response: Response, token: str, runtime: Runtime) -> None:
    response.set_cookie(
        REFRESH_COOKIE,
        token,
        max_age=int(runtime.config.refresh_ttl.total_seconds()),
        httponly=True,
        secure=runtime.settings.REFRESH_COOKIE_SECURE,
        samesite="strict",
        path="/api/auth",
    )


@router.post("/login", response_model=LoginResponse)
async def login(
    body: LoginRequest,
    request: Request,
    response: Response,
    runtime: Runtime = Depends(get_runtime),
):
    """Authenticate with username/email + password → receive JWT pair."""
    device = parse_user_agent(
        request.headers.get("user-agent"),
        client_ip(
            request.headers.get("x-forwarded-for"),
            request.client.host if request.client else None,
        ),
    )
    result = await runtime.auth.login(body.identifier.strip(), body.password, device)
    if not result.success:
        raise AuthError(result.reason, result.message)

    _set_refresh_cookie(response, result.refresh_token, runtime)
    return LoginResponse(
        message=result.message,
        data=LoginData(
            user=_user_out(result.user),
            access_token=result.access_token,
            refresh_token=result.refresh_token,
            session=SessionOut.model_validate(result.session) if result.session else None,
        ),
    )


@router.post("/refresh", response_model=RefreshResponse)
async def refresh_token(
    request: Request,
    response: Response,
    body: RefreshTokenRequest | None = None,
    runtime: Runtime = Depends(get_runtime),
):
    """Exchange a refresh token (cookie or body) for a new access token."""
    token = (body.refresh_token if body else None) or request.cookies.get(REFRESH_COOKIE)
    if not token or not token.strip():
        raise AuthError(AuthFailure.TOKEN_MISSING, "Refresh token is required")

    result = await runtime.auth.refresh(token.strip())
    if not result.success:
        raise AuthError(result.reason, result.message)

    _set_refresh_cookie(response, result.refresh_token, runtime)
    return RefreshResponse(
        message=result.message,
        data=TokenData(
            user=_user_out(result.user),
            access_token=result.access_token,
            refresh_token=result.refresh_token,
        ),
    )


@router.post("/logout", response_model=MessageResponse)
async def logout(
    response: Response,
    ctx: AuthContext = Depends(get_auth_context),
    runtime: Runtime = Depends(get_runtime),
):
    """Revoke the current session (server-side logout)."""
    result = await runtime.auth.logout(ctx.session_id, ctx.user_id)
    if not result.success:
        raise AuthError(result.reason, result.message)
    response.delete_cookie(REFRESH_COOKIE, path="/api/auth")
    return MessageResponse(message=result.message)


@router.post("/change-password", response_model=MessageResponse)
async def change_password(
    body: ChangePasswordRequest,
    ctx: AuthContext = Depends(get_auth_context),
    runtime: Runtime = Depends(get_runtime),
):
    result = await runtime.auth.change_password(
        ctx.user_id,
        body.current_password,
        body.new_password,
        body.confirm_password,
    )
    if not result.success:
        raise AuthError(result.reason, result.message)
    return MessageResponse(message=result.message)


@router.get("/me", response_model=UserResponse)
async def me(ctx: AuthContext = Depends(get_auth_context)):
    """Profile of the logged-in user, from the gate's session lookup."""
    return UserResponse(
        message="User profile retrieved successfully",
        data=_user_out(ctx.session.user),
    )
