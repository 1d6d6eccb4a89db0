"""API dependencies - authentication and authorization"""

from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from typing import Any, Dict, Optional

from growi_api.core.database import get_db
from growi_api.core.security import decode_access_token
from growi_api.core.exceptions import AuthenticationError, AuthorizationError, InactiveAccountError
from growi_api.models.user import User
from growi_api.services.user_service import user_service

# HTTP Bearer token scheme; missing credentials are reported as 401 below
security = HTTPBearer(auto_error=False)


def get_client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def get_token_claims(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Dict[str, Any]:
    """
    Validate the bearer access token without touching the database

    Raises:
        AuthenticationError: If the token is missing, invalid or expired
    """
    if not credentials:
        raise AuthenticationError("Authentication token required")

    payload = decode_access_token(credentials.credentials)
    if not payload:
        raise AuthenticationError("Invalid or expired token")

    subject = payload.get("sub")
    if not subject or not str(subject).isdigit():
        raise AuthenticationError("Invalid token payload")

    return payload


def get_current_user(
    claims: Dict[str, Any] = Depends(get_token_claims),
    db: Session = Depends(get_db)
) -> User:
    """
    Get current authenticated user from JWT token

    Args:
        claims: Validated access token claims
        db: Database session

    Returns:
        Current user

    Raises:
        AuthenticationError: If user not found or not ACTIVE
    """
    user = user_service.get_user_by_id(db, int(claims["sub"]))
    if not user:
        raise AuthenticationError("User not found")

    if not user.is_active:
        raise InactiveAccountError(user.status)

    return user


def get_current_admin_user(
    current_user: User = Depends(get_current_user)
) -> User:
    """
    Get current admin user (authorization check)

    Raises:
        AuthorizationError: If user is not admin
    """
    if current_user.role != "ADMIN":
        raise AuthorizationError("Admin access required")
    return current_user
