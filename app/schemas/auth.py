from datetime import datetime
from typing import Optional, Literal
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field, model_validator


# Role type
RoleType = Literal["SUPER_ADMIN", "IT_STAFF", "DEPARTMENT_INCHARGE"]


# Request schemas
class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1, max_length=128)
    remember_me: bool = False


class RefreshTokenRequest(BaseModel):
    # Browser clients send the refresh cookie instead
    refresh_token: Optional[str] = None


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(..., min_length=1, max_length=128)
    new_password: str = Field(..., min_length=8, max_length=128)
    confirm_password: str = Field(..., min_length=8, max_length=128)

    @model_validator(mode="after")
    def passwords_match(self):
        if self.new_password != self.confirm_password:
            raise ValueError("Password confirmation does not match")
        return self


class UpdateProfileRequest(BaseModel):
    name: str = Field(..., min_length=2, max_length=100)


# Response schemas
class UserResponse(BaseModel):
    id: UUID
    email: str
    name: str
    role: str
    department_id: Optional[UUID] = None
    is_active: bool
    last_login: Optional[datetime] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class AuthResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    session_id: str
    expires_in: int  # access token lifetime in seconds
    # Also set as an http-only cookie; returned for non-browser clients
    refresh_token: str
    user: UserResponse


class RefreshTokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserResponse


class MessageResponse(BaseModel):
    message: str


# Token internals
class TokenClaims(BaseModel):
    sub: str  # user_id
    type: str  # 'access' or 'refresh'
    iat: float  # issued-at, POSIX seconds with sub-second precision
    exp: float
    nbf: Optional[float] = None
    jti: Optional[str] = None


class TokenPair(BaseModel):
    access_token: str
    refresh_token: str
    access_expires_in: int
    refresh_expires_in: int
