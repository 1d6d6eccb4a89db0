"""Database models"""

from growi_api.models.user import User
from growi_api.models.security import RefreshToken, PasswordResetToken
from growi_api.models.task import BackgroundTask
from growi_api.models.audit import AuditEvent

__all__ = ["User", "RefreshToken", "PasswordResetToken", "BackgroundTask", "AuditEvent"]
