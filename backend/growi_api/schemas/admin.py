"""Admin user management schemas"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, EmailStr, Field

from growi_api.schemas.user import CamelModel, UserRole, UserStatus


class AdminUserCreate(CamelModel):
    email: EmailStr
    password: str = Field(..., max_length=256)
    first_name: Optional[str] = Field(None, max_length=100)
    last_name: Optional[str] = Field(None, max_length=100)
    role: UserRole = UserRole.USER
    status: UserStatus = UserStatus.ACTIVE


class AdminUserUpdate(CamelModel):
    first_name: Optional[str] = Field(None, max_length=100)
    last_name: Optional[str] = Field(None, max_length=100)
    role: Optional[UserRole] = None
    status: Optional[UserStatus] = None


class AdminUserResponse(CamelModel):
    id: int
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    role: str
    status: str
    email_verified_at: Optional[datetime] = None
    last_login: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class Pagination(CamelModel):
    total: int
    page: int
    limit: int
    total_pages: int


class PaginatedUsersResponse(CamelModel):
    users: List[AdminUserResponse]
    pagination: Pagination


class StatusCounts(BaseModel):
    active: int
    suspended: int
    pending: int


class UserStatsResponse(CamelModel):
    total: int
    by_status: StatusCounts
    by_role: Dict[str, int]


class TemporaryPasswordResponse(CamelModel):
    temporary_password: str
    message: str


class AuditEventResponse(CamelModel):
    id: int
    actor_id: Optional[int]
    actor_email: Optional[str] = None
    action: str
    target_user_id: Optional[int]
    ip_address: Optional[str]
    metadata: Dict[str, Any] = {}
    created_at: Optional[datetime]
