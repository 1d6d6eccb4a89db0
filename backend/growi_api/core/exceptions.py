"""Custom exception classes for the application"""

from datetime import datetime
from typing import Optional, Dict, Any, List


class BaseAPIException(Exception):
    """Base exception for all API errors"""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        details: Optional[Any] = None
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


# Authentication Errors
class AuthenticationError(BaseAPIException):
    """Base authentication error"""
    def __init__(self, message: str = "Authentication failed", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, status_code=401, details=details)


class InvalidCredentialsError(AuthenticationError):
    """Unknown email or wrong password (indistinguishable on purpose)"""
    def __init__(self):
        super().__init__("Invalid email or password")


class InactiveAccountError(AuthenticationError):
    """Account is suspended or awaiting validation"""
    def __init__(self, status: str):
        if status == "SUSPENDED":
            message = "Your account has been suspended"
        elif status == "PENDING":
            message = "Your account is pending validation"
        else:
            message = "User account is inactive"
        super().__init__(message)


class InvalidTokenError(AuthenticationError):
    """Token is unknown, revoked, expired or malformed"""
    def __init__(self, message: str = "Invalid or expired token"):
        super().__init__(message)


class RateLimitedError(AuthenticationError):
    """Too many attempts from the same client"""
    def __init__(self, reset_time: datetime):
        super().__init__(
            "Too many login attempts",
            details={"resetTime": reset_time.isoformat()}
        )


# Authorization Errors
class AuthorizationError(BaseAPIException):
    """Insufficient permissions"""
    def __init__(self, message: str = "Insufficient permissions"):
        super().__init__(message, status_code=403)


# Resource Errors
class NotFoundError(BaseAPIException):
    """Resource not found"""
    def __init__(self, resource: str):
        super().__init__(f"{resource} not found", status_code=404)


class ConflictError(BaseAPIException):
    """Resource already exists"""
    def __init__(self, message: str):
        super().__init__(message, status_code=409)


class EmailAlreadyRegisteredError(ConflictError):
    """An account already uses this email"""
    def __init__(self):
        super().__init__("An account already exists with this email address")


# Validation Errors
class ValidationError(BaseAPIException):
    """Malformed or weak input"""
    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message, status_code=400, details=details)


class WeakPasswordError(ValidationError):
    """Password does not satisfy the strength policy"""
    def __init__(self, errors: List[str], message: str = "Invalid password"):
        super().__init__(message, details=list(errors))
