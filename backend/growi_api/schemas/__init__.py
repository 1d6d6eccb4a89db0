"""Pydantic schemas for API validation"""

from growi_api.schemas.user import (
    UserRole,
    UserStatus,
    RegisterRequest,
    LoginRequest,
    RefreshTokenRequest,
    RequestPasswordResetRequest,
    ResetPasswordRequest,
    TokenPairResponse,
    AuthResponse,
    RefreshResponse,
    ProfileResponse,
    MessageResponse,
)
from growi_api.schemas.admin import (
    AdminUserCreate,
    AdminUserUpdate,
    AdminUserResponse,
    PaginatedUsersResponse,
    UserStatsResponse,
    TemporaryPasswordResponse,
    AuditEventResponse,
)
from growi_api.schemas.response import ErrorResponse, HealthResponse

__all__ = [
    "UserRole", "UserStatus",
    "RegisterRequest", "LoginRequest", "RefreshTokenRequest",
    "RequestPasswordResetRequest", "ResetPasswordRequest",
    "TokenPairResponse", "AuthResponse", "RefreshResponse", "ProfileResponse", "MessageResponse",
    "AdminUserCreate", "AdminUserUpdate", "AdminUserResponse", "PaginatedUsersResponse",
    "UserStatsResponse", "TemporaryPasswordResponse", "AuditEventResponse",
    "ErrorResponse", "HealthResponse",
]
