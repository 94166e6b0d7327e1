"""
Pydantic schemas for request / response serialization.

Kept in a single file for now — split per-domain when it grows.
Schemas are deliberately decoupled from SQLAlchemy models so the
API surface can evolve independently of the DB layer.

The wire format is camelCase (`accessToken`, `sessionId`, ...);
snake_case field names are accepted on input as well.
"""

from datetime import datetime

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from campus_auth.models.session import DeviceType


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# ── Auth ─────────────────────────────────────────────────────────────
class LoginRequest(CamelModel):
    # Empty values are rejected by the service as INVALID_CREDENTIALS.
    identifier: str = Field(
        default="",
        validation_alias=AliasChoices("identifier", "username", "email"),
    )
    password: str = ""


class RefreshTokenRequest(CamelModel):
    refresh_token: str | None = None


class ChangePasswordRequest(CamelModel):
    current_password: str = ""
    new_password: str = ""
    confirm_password: str = ""


class UserOut(CamelModel):
    id: int
    username: str
    email: str
    name: str
    role: str
    is_active: bool


# ── Sessions ─────────────────────────────────────────────────────────
class SessionOut(CamelModel):
    session_id: str
    device_info: str
    browser_info: str
    device_type: DeviceType
    platform: str
    ip_address: str
    last_activity: datetime | None = None
    login_time: datetime


class LoginData(CamelModel):
    user: UserOut
    access_token: str
    refresh_token: str
    session: SessionOut | None = None


class TokenData(CamelModel):
    user: UserOut
    access_token: str
    refresh_token: str


class CountData(CamelModel):
    count: int


# ── Envelopes ────────────────────────────────────────────────────────
class MessageResponse(CamelModel):
    success: bool = True
    message: str


class LoginResponse(MessageResponse):
    data: LoginData


class RefreshResponse(MessageResponse):
    data: TokenData


class SessionListResponse(MessageResponse):
    data: list[SessionOut]


class SessionResponse(MessageResponse):
    data: SessionOut


class UserResponse(MessageResponse):
    data: UserOut


class CountResponse(MessageResponse):
    data: CountData


class ErrorResponse(CamelModel):
    success: bool = False
    reason: str
    message: str
