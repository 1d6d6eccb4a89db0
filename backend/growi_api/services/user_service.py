"""User service - lookups and administrative account management"""

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from typing import Dict, List, Optional, Tuple
import logging
import math

from growi_api.models.user import User
from growi_api.schemas.admin import AdminUserCreate, AdminUserUpdate
from growi_api.core.security import (
    generate_temporary_password,
    get_password_hash,
    validate_password_strength,
)
from growi_api.core.exceptions import (
    EmailAlreadyRegisteredError,
    NotFoundError,
    ValidationError,
    WeakPasswordError,
)
from growi_api.services.mail_service import mail_service, redact_email
from growi_api.services.task_queue import WELCOME_EMAIL, task_queue
from growi_api.services.token_service import token_service

logger = logging.getLogger(__name__)

SORTABLE_FIELDS = {
    "createdAt": User.created_at,
    "created_at": User.created_at,
    "email": User.email,
    "lastName": User.last_name,
    "last_name": User.last_name,
    "role": User.role,
    "status": User.status,
}


class UserService:
    """Service for user management"""

    MAX_PAGE_SIZE = 100

    @staticmethod
    def get_user_by_id(db: Session, user_id: int) -> Optional[User]:
        """Get user by ID"""
        return db.query(User).filter(User.id == user_id).first()

    @staticmethod
    def get_user_by_email(db: Session, email: str) -> Optional[User]:
        """Get user by email (case-insensitive)"""
        return db.query(User).filter(User.email == email.strip().lower()).first()

    @staticmethod
    def get_user_or_404(db: Session, user_id: int) -> User:
        user = UserService.get_user_by_id(db, user_id)
        if not user:
            raise NotFoundError("User")
        return user

    @staticmethod
    def list_users(
        db: Session,
        *,
        role: Optional[str] = None,
        status: Optional[str] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
        sort: str = "createdAt:desc",
    ) -> Tuple[List[User], Dict[str, int]]:
        """
        List users with filters and pagination

        Args:
            db: Database session
            role: Optional role filter
            status: Optional status filter
            search: Substring matched against email, first and last name
            page: 1-based page number
            limit: Page size (capped at MAX_PAGE_SIZE)
            sort: "field:asc" or "field:desc"

        Returns:
            Tuple of (users on the page, pagination info)
        """
        page = max(1, page)
        limit = max(1, min(limit, UserService.MAX_PAGE_SIZE))

        query = db.query(User)
        if role:
            query = query.filter(User.role == role)
        if status:
            query = query.filter(User.status == status)
        if search:
            pattern = f"%{search.strip().lower()}%"
            query = query.filter(
                or_(
                    func.lower(User.email).like(pattern),
                    func.lower(User.first_name).like(pattern),
                    func.lower(User.last_name).like(pattern),
                )
            )

        sort_field, _, direction = sort.partition(":")
        column = SORTABLE_FIELDS.get(sort_field)
        if column is None:
            raise ValidationError(
                f"Cannot sort by '{sort_field}'",
                details={"allowed": sorted(SORTABLE_FIELDS)},
            )
        order = column.desc() if direction.lower() == "desc" else column.asc()

        total = query.count()
        users = query.order_by(order, User.id.asc()).offset((page - 1) * limit).limit(limit).all()
        pagination = {
            "total": total,
            "page": page,
            "limit": limit,
            "total_pages": math.ceil(total / limit) if total else 0,
        }
        return users, pagination

    @staticmethod
    def get_stats(db: Session) -> dict:
        """Count users per status and per role"""
        by_status = dict(
            db.query(User.status, func.count(User.id)).group_by(User.status).all()
        )
        by_role = dict(
            db.query(User.role, func.count(User.id)).group_by(User.role).all()
        )
        return {
            "total": sum(by_status.values()),
            "by_status": {
                "active": by_status.get("ACTIVE", 0),
                "suspended": by_status.get("SUSPENDED", 0),
                "pending": by_status.get("PENDING", 0),
            },
            "by_role": by_role,
        }

    @staticmethod
    def create_user(db: Session, data: AdminUserCreate, send_invitation: bool = False) -> User:
        """
        Create a user with an explicit role and status (admin only)

        Raises:
            EmailAlreadyRegisteredError: Email already in use
            WeakPasswordError: Password violates the policy
        """
        email = data.email.strip().lower()
        if UserService.get_user_by_email(db, email):
            raise EmailAlreadyRegisteredError()

        strength = validate_password_strength(data.password)
        if not strength.is_valid:
            raise WeakPasswordError(strength.errors)

        user = User(
            email=email,
            password_hash=get_password_hash(data.password),
            first_name=data.first_name.strip() if data.first_name else None,
            last_name=data.last_name.strip() if data.last_name else None,
            role=data.role.value,
            status=data.status.value,
        )
        db.add(user)
        try:
            db.flush()
        except IntegrityError:
            # Lost a race against a concurrent create of the same email
            db.rollback()
            raise EmailAlreadyRegisteredError()

        if send_invitation:
            task_queue.enqueue(
                db,
                WELCOME_EMAIL,
                {"email": user.email, "first_name": user.first_name},
                idempotency_key=f"welcome:{user.id}",
                commit=False,
            )

        db.commit()
        db.refresh(user)
        logger.info(f"User created by admin: {redact_email(user.email)} (role: {user.role})")
        return user

    @staticmethod
    def update_user(db: Session, user_id: int, data: AdminUserUpdate) -> User:
        """Update names, role or status. Suspension revokes all refresh tokens."""
        user = UserService.get_user_or_404(db, user_id)

        changes = data.model_dump(exclude_unset=True)
        if "first_name" in changes:
            user.first_name = changes["first_name"].strip() if changes["first_name"] else None
        if "last_name" in changes:
            user.last_name = changes["last_name"].strip() if changes["last_name"] else None
        if changes.get("role") is not None:
            user.role = data.role.value
        if changes.get("status") is not None:
            UserService._apply_status(db, user, data.status.value)

        db.commit()
        db.refresh(user)
        logger.info(f"User updated: {redact_email(user.email)}")
        return user

    @staticmethod
    def toggle_status(db: Session, user_id: int) -> User:
        """Switch ACTIVE <-> SUSPENDED (PENDING becomes ACTIVE)"""
        user = UserService.get_user_or_404(db, user_id)
        new_status = "SUSPENDED" if user.status == "ACTIVE" else "ACTIVE"
        UserService._apply_status(db, user, new_status)
        db.commit()
        db.refresh(user)
        logger.info(f"User status changed: {redact_email(user.email)} -> {new_status}")
        return user

    @staticmethod
    def _apply_status(db: Session, user: User, new_status: str) -> None:
        user.status = new_status
        if new_status == "SUSPENDED":
            token_service.revoke_all_for_user(db, user.id, commit=False)

    @staticmethod
    def reset_password(db: Session, user_id: int) -> Tuple[str, bool]:
        """
        Replace the password with a generated temporary one

        Returns:
            Tuple of (temporary password, whether the email was delivered)
        """
        user = UserService.get_user_or_404(db, user_id)
        temporary_password = generate_temporary_password()
        user.password_hash = get_password_hash(temporary_password)
        token_service.revoke_all_for_user(db, user.id, commit=False)
        db.commit()

        emailed = mail_service.is_configured and mail_service.send_temporary_password_email(
            user.email, user.first_name, temporary_password
        )
        logger.info(f"Temporary password issued for {redact_email(user.email)} (emailed: {emailed})")
        return temporary_password, emailed

    @staticmethod
    def delete_user(db: Session, user_id: int, acting_user_id: int) -> None:
        user = UserService.get_user_or_404(db, user_id)
        if user.id == acting_user_id:
            raise ValidationError("Administrators cannot delete their own account")

        email = user.email
        db.delete(user)
        db.commit()
        logger.info(f"Deleted user: {redact_email(email)}")

    @staticmethod
    def ensure_admin(db: Session, email: str, password: str) -> bool:
        """Create the bootstrap admin account if missing. Returns True if created."""
        if UserService.get_user_by_email(db, email):
            return False
        user = User(
            email=email.strip().lower(),
            password_hash=get_password_hash(password),
            role="ADMIN",
            status="ACTIVE",
        )
        db.add(user)
        db.commit()
        return True


# Singleton instance
user_service = UserService()
