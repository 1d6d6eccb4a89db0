"""Refresh token issuance, rotation and revocation service."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Tuple

from sqlalchemy import or_
from sqlalchemy.orm import Session

from growi_api.config import settings
from growi_api.core.exceptions import InactiveAccountError, InvalidTokenError
from growi_api.core.security import create_access_token, generate_refresh_token, hash_token
from growi_api.models.security import PasswordResetToken, RefreshToken
from growi_api.models.user import User

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str


class TokenService:
    """Manage the refresh token ledger."""

    @staticmethod
    def _naive_utc(dt: Optional[datetime]) -> Optional[datetime]:
        return dt.replace(tzinfo=None) if dt and dt.tzinfo else dt

    @staticmethod
    def claims_for(user: User) -> Dict[str, Any]:
        return {"sub": str(user.id), "email": user.email, "role": user.role}

    @staticmethod
    def issue_tokens(claims: Dict[str, Any]) -> TokenPair:
        """Sign an access token for the claims and draw a fresh refresh secret."""
        return TokenPair(
            access_token=create_access_token(claims),
            refresh_token=generate_refresh_token(),
        )

    @staticmethod
    def issue_for_user(db: Session, user: User, *, commit: bool = True) -> TokenPair:
        pair = TokenService.issue_tokens(TokenService.claims_for(user))
        db.add(
            RefreshToken(
                user_id=user.id,
                token_hash=hash_token(pair.refresh_token),
                expires_at=datetime.utcnow() + timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS),
                revoked=False,
            )
        )
        if commit:
            db.commit()
        else:
            db.flush()
        return pair

    @staticmethod
    def rotate_refresh_token(db: Session, refresh_token: str) -> Tuple[User, TokenPair]:
        record = (
            db.query(RefreshToken)
            .filter(RefreshToken.token_hash == hash_token(refresh_token))
            .first()
        )
        if not record or record.revoked:
            raise InvalidTokenError("Invalid or expired refresh token")

        now = datetime.utcnow()
        if TokenService._naive_utc(record.expires_at) <= now:
            raise InvalidTokenError("Invalid or expired refresh token")

        user = record.user
        if not user.is_active:
            raise InactiveAccountError(user.status)

        # Conditional revoke: only one concurrent caller can flip the flag.
        claimed = (
            db.query(RefreshToken)
            .filter(RefreshToken.id == record.id, RefreshToken.revoked == False)  # noqa: E712
            .update(
                {RefreshToken.revoked: True, RefreshToken.revoked_at: now},
                synchronize_session=False,
            )
        )
        if claimed != 1:
            db.rollback()
            logger.warning(f"Refresh token {record.id} was already rotated by a concurrent request")
            raise InvalidTokenError("Invalid or expired refresh token")

        pair = TokenService.issue_for_user(db, user, commit=False)
        db.commit()
        return user, pair

    @staticmethod
    def revoke_refresh_token(db: Session, refresh_token: str) -> bool:
        """Revoke one token. Unknown or already revoked tokens are a no-op."""
        count = (
            db.query(RefreshToken)
            .filter(
                RefreshToken.token_hash == hash_token(refresh_token),
                RefreshToken.revoked == False,  # noqa: E712
            )
            .update(
                {RefreshToken.revoked: True, RefreshToken.revoked_at: datetime.utcnow()},
                synchronize_session=False,
            )
        )
        db.commit()
        return count > 0

    @staticmethod
    def revoke_all_for_user(db: Session, user_id: int, *, commit: bool = True) -> int:
        count = (
            db.query(RefreshToken)
            .filter(RefreshToken.user_id == user_id, RefreshToken.revoked == False)  # noqa: E712
            .update(
                {RefreshToken.revoked: True, RefreshToken.revoked_at: datetime.utcnow()},
                synchronize_session=False,
            )
        )
        if commit:
            db.commit()
        if count:
            logger.info(f"Revoked {count} refresh token(s) for user {user_id}")
        return count

    @staticmethod
    def purge_expired(db: Session, older_than: datetime) -> Dict[str, int]:
        """
        Delete ledger rows that can no longer be used and are older than the cutoff.

        Args:
            db: Database session
            older_than: Rows expired/revoked/used before this instant are removed

        Returns:
            Number of deleted rows per table
        """
        refresh_deleted = (
            db.query(RefreshToken)
            .filter(
                or_(
                    RefreshToken.expires_at < older_than,
                    (RefreshToken.revoked == True) & (RefreshToken.revoked_at < older_than),  # noqa: E712
                )
            )
            .delete(synchronize_session=False)
        )
        reset_deleted = (
            db.query(PasswordResetToken)
            .filter(
                PasswordResetToken.expires_at < older_than,
            )
            .delete(synchronize_session=False)
        )
        db.commit()
        logger.info(
            f"Purged {refresh_deleted} refresh token(s) and {reset_deleted} password reset token(s)"
        )
        return {"refresh_tokens": refresh_deleted, "password_reset_tokens": reset_deleted}


token_service = TokenService()
