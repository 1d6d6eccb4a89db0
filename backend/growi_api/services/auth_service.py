"""Authentication flows - registration, login, token refresh, password reset"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Tuple
from urllib.parse import urlencode
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from growi_api.config import settings
from growi_api.core.exceptions import (
    EmailAlreadyRegisteredError,
    InactiveAccountError,
    InvalidCredentialsError,
    RateLimitedError,
    ValidationError,
    WeakPasswordError,
)
from growi_api.core.security import (
    generate_reset_token,
    get_password_hash,
    hash_token,
    validate_password_strength,
    verify_password,
)
from growi_api.models.security import PasswordResetToken
from growi_api.models.user import User
from growi_api.services.mail_service import mail_service, redact_email
from growi_api.services.rate_limiter import rate_limiter
from growi_api.services.task_queue import WELCOME_EMAIL, task_queue
from growi_api.services.token_service import TokenPair, token_service
from growi_api.services.user_service import user_service

logger = logging.getLogger(__name__)

LOGIN_RATE_LIMIT_IDENTIFIER = "login"


@dataclass(frozen=True)
class PasswordResetEmail:
    email: str
    first_name: Optional[str]
    reset_url: str


class AuthService:
    """Service for the authentication lifecycle"""

    @staticmethod
    def _normalize_email(email: str) -> str:
        return email.strip().lower()

    @staticmethod
    def _clean_name(value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip()
        return value or None

    @staticmethod
    def register(
        db: Session,
        email: str,
        password: str,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
    ) -> Tuple[User, TokenPair]:
        """
        Create an ACTIVE USER account and sign it in

        Args:
            db: Database session
            email: Email address (case-insensitive)
            password: Plain text password, checked against the policy
            first_name: Optional first name
            last_name: Optional last name

        Returns:
            Created user and its first token pair

        Raises:
            EmailAlreadyRegisteredError: Email already in use
            WeakPasswordError: Password violates the policy
        """
        email = AuthService._normalize_email(email)
        if user_service.get_user_by_email(db, email):
            raise EmailAlreadyRegisteredError()

        strength = validate_password_strength(password)
        if not strength.is_valid:
            raise WeakPasswordError(strength.errors)

        user = User(
            email=email,
            password_hash=get_password_hash(password),
            first_name=AuthService._clean_name(first_name),
            last_name=AuthService._clean_name(last_name),
            role="USER",
            status="ACTIVE",
        )
        db.add(user)
        try:
            db.flush()
        except IntegrityError:
            # Lost a race against a concurrent registration of the same email
            db.rollback()
            raise EmailAlreadyRegisteredError()

        task_queue.enqueue(
            db,
            WELCOME_EMAIL,
            {"email": user.email, "first_name": user.first_name},
            idempotency_key=f"welcome:{user.id}",
            commit=False,
        )
        tokens = token_service.issue_for_user(db, user, commit=False)
        db.commit()
        db.refresh(user)

        logger.info(f"New user registered: {redact_email(user.email)}")
        return user, tokens

    @staticmethod
    def login(db: Session, email: str, password: str, client_ip: str) -> Tuple[User, TokenPair]:
        """
        Authenticate with email/password under the per-IP attempt limit

        Raises:
            RateLimitedError: Too many attempts in the current window
            InvalidCredentialsError: Unknown email or wrong password
            InactiveAccountError: Account suspended or pending
        """
        rate_key = rate_limiter.build_key(LOGIN_RATE_LIMIT_IDENTIFIER, client_ip)
        limit = rate_limiter.check_and_increment(rate_key)
        if not limit.allowed:
            logger.warning(f"Login rate limit reached for {client_ip}")
            raise RateLimitedError(limit.reset_time)

        user = user_service.get_user_by_email(db, AuthService._normalize_email(email))
        if not user:
            raise InvalidCredentialsError()

        if not user.is_active:
            raise InactiveAccountError(user.status)

        if not verify_password(password, user.password_hash):
            raise InvalidCredentialsError()

        rate_limiter.reset(rate_key)

        if settings.SINGLE_SESSION_ON_LOGIN:
            token_service.revoke_all_for_user(db, user.id, commit=False)

        user.last_login = datetime.utcnow()
        tokens = token_service.issue_for_user(db, user, commit=False)
        db.commit()
        db.refresh(user)

        logger.info(f"User logged in: {redact_email(user.email)}")
        return user, tokens

    @staticmethod
    def refresh(db: Session, refresh_token: str) -> TokenPair:
        _, tokens = token_service.rotate_refresh_token(db, refresh_token)
        return tokens

    @staticmethod
    def logout(db: Session, refresh_token: str) -> None:
        revoked = token_service.revoke_refresh_token(db, refresh_token)
        logger.info(f"Logout processed (token revoked: {revoked})")

    @staticmethod
    def request_password_reset(db: Session, email: str) -> Optional[PasswordResetEmail]:
        """
        Issue a single-use reset secret

        Nothing is sent here. The caller delivers the returned email after
        the response is written, so the reply takes the same time whether
        or not the email is registered.

        Returns:
            The email to deliver, or None for an unknown address
        """
        email = AuthService._normalize_email(email)
        user = user_service.get_user_by_email(db, email)
        if not user:
            logger.warning(f"Password reset requested for unknown email: {redact_email(email)}")
            return None

        reset_token = generate_reset_token()

        # Only the latest reset link stays valid
        db.query(PasswordResetToken).filter(
            PasswordResetToken.user_id == user.id,
            PasswordResetToken.used == False,  # noqa: E712
        ).update({PasswordResetToken.used: True}, synchronize_session=False)

        db.add(
            PasswordResetToken(
                user_id=user.id,
                token_hash=hash_token(reset_token),
                expires_at=datetime.utcnow() + timedelta(seconds=settings.PASSWORD_RESET_TOKEN_TTL_SECONDS),
                used=False,
            )
        )
        db.commit()

        reset_url = (
            f"{settings.FRONTEND_URL.rstrip('/')}/reset-password/new?"
            f"{urlencode({'token': reset_token})}"
        )
        return PasswordResetEmail(email=user.email, first_name=user.first_name, reset_url=reset_url)

    @staticmethod
    def deliver_password_reset_email(reset_email: PasswordResetEmail) -> bool:
        """Send a reset link issued by request_password_reset"""
        if not mail_service.send_password_reset_email(
            reset_email.email, reset_email.first_name, reset_email.reset_url
        ):
            logger.error(f"Password reset email could not be delivered to {redact_email(reset_email.email)}")
            return False

        logger.info(f"Password reset email sent to {redact_email(reset_email.email)}")
        return True

    @staticmethod
    def reset_password(db: Session, token: str, new_password: str) -> None:
        """
        Consume a reset secret, set the new password and revoke every session

        Raises:
            WeakPasswordError: New password violates the policy
            ValidationError: Secret unknown, used or expired
        """
        strength = validate_password_strength(new_password)
        if not strength.is_valid:
            raise WeakPasswordError(strength.errors, message="Invalid new password")

        now = datetime.utcnow()
        record = (
            db.query(PasswordResetToken)
            .filter(
                PasswordResetToken.token_hash == hash_token(token),
                PasswordResetToken.used == False,  # noqa: E712
                PasswordResetToken.expires_at > now,
            )
            .first()
        )
        if not record:
            raise ValidationError("Invalid or expired reset token")

        # Consume the secret exactly once
        consumed = (
            db.query(PasswordResetToken)
            .filter(PasswordResetToken.id == record.id, PasswordResetToken.used == False)  # noqa: E712
            .update({PasswordResetToken.used: True}, synchronize_session=False)
        )
        if consumed != 1:
            db.rollback()
            raise ValidationError("Invalid or expired reset token")

        user = record.user
        user.password_hash = get_password_hash(new_password)
        token_service.revoke_all_for_user(db, user.id, commit=False)
        db.commit()

        logger.info(f"Password reset completed for {redact_email(user.email)}")


auth_service = AuthService()
