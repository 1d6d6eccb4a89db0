"""User and authentication schemas"""

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel
from typing import Optional
from datetime import datetime
from enum import Enum


class UserRole(str, Enum):
    """User role enumeration"""
    USER = "USER"
    EDITOR = "EDITOR"
    ADMIN = "ADMIN"


class UserStatus(str, Enum):
    """Account status enumeration"""
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"
    PENDING = "PENDING"


class CamelModel(BaseModel):
    """Accepts and emits camelCase keys on the wire"""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class RegisterRequest(CamelModel):
    """Self-service registration"""
    email: EmailStr
    # Strength is checked by the service so violations come back as a list
    password: str = Field(..., max_length=256)
    first_name: Optional[str] = Field(None, max_length=100)
    last_name: Optional[str] = Field(None, max_length=100)


class LoginRequest(CamelModel):
    """User login schema"""
    email: EmailStr
    password: str = Field(..., min_length=1, max_length=256)


class RefreshTokenRequest(CamelModel):
    """Refresh/logout body"""
    refresh_token: str = Field(..., min_length=1, max_length=512)


class RequestPasswordResetRequest(CamelModel):
    email: EmailStr


class ResetPasswordRequest(CamelModel):
    token: str = Field(..., min_length=1, max_length=512)
    new_password: str = Field(..., max_length=256)


class TokenPairResponse(CamelModel):
    """Access + refresh token pair"""
    access_token: str
    refresh_token: str


class UserSummary(CamelModel):
    id: int
    email: str
    role: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None


class AuthResponse(CamelModel):
    """Returned by register and login"""
    user: UserSummary
    tokens: TokenPairResponse


class RefreshResponse(CamelModel):
    tokens: TokenPairResponse


class UserProfile(UserSummary):
    status: str
    email_verified_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class ProfileResponse(CamelModel):
    user: UserProfile


class MessageResponse(BaseModel):
    message: str
