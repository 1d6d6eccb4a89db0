"""Admin routes - user management and audit trail"""

from fastapi import APIRouter, Depends, Query, Request, Response, status
from sqlalchemy.orm import Session
from typing import List, Optional

from growi_api.core.database import get_db
from growi_api.schemas.admin import (
    AdminUserCreate,
    AdminUserResponse,
    AdminUserUpdate,
    AuditEventResponse,
    PaginatedUsersResponse,
    Pagination,
    TemporaryPasswordResponse,
    UserStatsResponse,
)
from growi_api.schemas.response import ErrorResponse
from growi_api.schemas.user import UserRole, UserStatus
from growi_api.services.user_service import user_service
from growi_api.services.audit_service import audit_service
from growi_api.api.deps import get_client_ip, get_current_admin_user
from growi_api.models.user import User

router = APIRouter()


@router.get("/users", response_model=PaginatedUsersResponse)
def list_users(
    role: Optional[UserRole] = None,
    user_status: Optional[UserStatus] = Query(None, alias="status"),
    search: Optional[str] = Query(None, max_length=100),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    sort: str = "createdAt:desc",
    current_user: User = Depends(get_current_admin_user),
    db: Session = Depends(get_db),
):
    """
    List users (admin only)

    Args:
        role: Optional role filter
        user_status: Optional status filter
        search: Matches email, first or last name
        page: 1-based page number
        limit: Page size
        sort: "field:asc" or "field:desc"

    Returns:
        One page of users with pagination info
    """
    users, pagination = user_service.list_users(
        db,
        role=role.value if role else None,
        status=user_status.value if user_status else None,
        search=search,
        page=page,
        limit=limit,
        sort=sort,
    )
    return PaginatedUsersResponse(
        users=[AdminUserResponse.model_validate(user) for user in users],
        pagination=Pagination(**pagination),
    )


@router.get("/users/stats", response_model=UserStatsResponse)
def get_user_stats(
    current_user: User = Depends(get_current_admin_user),
    db: Session = Depends(get_db),
):
    """User counts per status and role"""
    return UserStatsResponse(**user_service.get_stats(db))


@router.get(
    "/users/{user_id}",
    response_model=AdminUserResponse,
    responses={404: {"model": ErrorResponse}},
)
def get_user(
    user_id: int,
    current_user: User = Depends(get_current_admin_user),
    db: Session = Depends(get_db),
):
    return AdminUserResponse.model_validate(user_service.get_user_or_404(db, user_id))


@router.post(
    "/users",
    response_model=AdminUserResponse,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
def create_user(
    body: AdminUserCreate,
    request: Request,
    send_invitation: bool = Query(False, alias="sendInvitation"),
    current_user: User = Depends(get_current_admin_user),
    db: Session = Depends(get_db),
):
    """
    Create a user with an explicit role and status

    With sendInvitation=true a welcome email is queued for the new account.
    """
    user = user_service.create_user(db, body, send_invitation=send_invitation)
    audit_service.log_event(
        db,
        actor_id=current_user.id,
        action="create_user",
        target_user_id=user.id,
        ip_address=get_client_ip(request),
        metadata={"role": user.role, "status": user.status, "invited": send_invitation},
    )
    return AdminUserResponse.model_validate(user)


@router.patch(
    "/users/{user_id}",
    response_model=AdminUserResponse,
    responses={404: {"model": ErrorResponse}},
)
def update_user(
    user_id: int,
    body: AdminUserUpdate,
    request: Request,
    current_user: User = Depends(get_current_admin_user),
    db: Session = Depends(get_db),
):
    """Update names, role or status; suspending a user revokes their sessions"""
    user = user_service.update_user(db, user_id, body)
    audit_service.log_event(
        db,
        actor_id=current_user.id,
        action="update_user",
        target_user_id=user.id,
        ip_address=get_client_ip(request),
        metadata={"fields": sorted(body.model_dump(exclude_unset=True))},
    )
    return AdminUserResponse.model_validate(user)


@router.post(
    "/users/{user_id}/toggle-status",
    response_model=AdminUserResponse,
    responses={404: {"model": ErrorResponse}},
)
def toggle_user_status(
    user_id: int,
    request: Request,
    current_user: User = Depends(get_current_admin_user),
    db: Session = Depends(get_db),
):
    user = user_service.toggle_status(db, user_id)
    audit_service.log_event(
        db,
        actor_id=current_user.id,
        action="toggle_user_status",
        target_user_id=user.id,
        ip_address=get_client_ip(request),
        metadata={"status": user.status},
    )
    return AdminUserResponse.model_validate(user)


@router.post(
    "/users/{user_id}/reset-password",
    response_model=TemporaryPasswordResponse,
    responses={404: {"model": ErrorResponse}},
)
def reset_user_password(
    user_id: int,
    request: Request,
    current_user: User = Depends(get_current_admin_user),
    db: Session = Depends(get_db),
):
    """
    Replace the user's password with a temporary one

    The temporary password is returned once and emailed when SMTP is
    configured. All of the user's refresh tokens are revoked.
    """
    temporary_password, emailed = user_service.reset_password(db, user_id)
    audit_service.log_event(
        db,
        actor_id=current_user.id,
        action="reset_user_password",
        target_user_id=user_id,
        ip_address=get_client_ip(request),
        metadata={"emailed": emailed},
    )
    message = "Temporary password sent by email" if emailed else "Temporary password generated"
    return TemporaryPasswordResponse(temporary_password=temporary_password, message=message)


@router.delete(
    "/users/{user_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
def delete_user(
    user_id: int,
    request: Request,
    current_user: User = Depends(get_current_admin_user),
    db: Session = Depends(get_db),
):
    user_service.delete_user(db, user_id, acting_user_id=current_user.id)
    audit_service.log_event(
        db,
        actor_id=current_user.id,
        action="delete_user",
        target_user_id=user_id,
        ip_address=get_client_ip(request),
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/audit-events", response_model=List[AuditEventResponse])
def list_audit_events(
    action: Optional[str] = None,
    target_user_id: Optional[int] = Query(None, alias="targetUserId"),
    limit: int = Query(100, ge=1, le=500),
    current_user: User = Depends(get_current_admin_user),
    db: Session = Depends(get_db),
):
    """Most recent audit events first"""
    events = audit_service.list_events(
        db, action=action, target_user_id=target_user_id, limit=limit
    )
    return [AuditEventResponse(**event) for event in events]
