"""Security utilities - JWT, password hashing, opaque token helpers"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional, Dict, Any, List
from jose import JWTError, jwt
import bcrypt
import hashlib
import logging
import re
import secrets
from growi_api.config import settings

logger = logging.getLogger(__name__)

# bcrypt cost parameter
BCRYPT_WORK_FACTOR = 12

MIN_PASSWORD_LENGTH = 8
MAX_PASSWORD_BYTES = 72
_LETTER_RE = re.compile(r"[A-Za-z]")
_DIGIT_RE = re.compile(r"[0-9]")

_TEMP_PASSWORD_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnpqrstuvwxyz23456789"


@dataclass
class PasswordStrength:
    """Outcome of a password policy check"""
    is_valid: bool
    errors: List[str] = field(default_factory=list)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """
    Verify a password against its hash

    Never raises: a malformed hash or any bcrypt failure counts as a mismatch.

    Args:
        plain_password: Plain text password
        hashed_password: Hashed password

    Returns:
        bool: True if password matches
    """
    try:
        return bcrypt.checkpw(
            plain_password.encode('utf-8'),
            hashed_password.encode('utf-8')
        )
    except Exception as exc:
        logger.debug(f"Password verification failed on malformed input: {exc}")
        return False


def get_password_hash(password: str) -> str:
    """
    Hash a password using bcrypt

    Args:
        password: Plain text password

    Returns:
        str: Hashed password
    """
    return bcrypt.hashpw(
        password.encode('utf-8'),
        bcrypt.gensalt(rounds=BCRYPT_WORK_FACTOR)
    ).decode('utf-8')


def validate_password_strength(password: str) -> PasswordStrength:
    """
    Check a candidate password against the policy: at least 8 characters,
    at least one letter, at least one digit, at most 72 bytes.
    """
    errors = []
    if len(password) < MIN_PASSWORD_LENGTH:
        errors.append(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")
    if not _LETTER_RE.search(password):
        errors.append("Password must contain at least one letter")
    if not _DIGIT_RE.search(password):
        errors.append("Password must contain at least one digit")
    # bcrypt only consumes the first 72 bytes
    if len(password.encode('utf-8')) > MAX_PASSWORD_BYTES:
        errors.append(f"Password must not exceed {MAX_PASSWORD_BYTES} bytes")
    return PasswordStrength(is_valid=not errors, errors=errors)


def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """
    Create JWT access token

    Args:
        data: Claims to encode in token (sub, email, role)
        expires_delta: Token expiration time

    Returns:
        str: Encoded JWT token
    """
    to_encode = data.copy()

    if expires_delta:
        expire = datetime.utcnow() + expires_delta
    else:
        expire = datetime.utcnow() + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

    to_encode.update({
        "typ": "access",
        "exp": expire,
        "iat": datetime.utcnow(),
        "jti": secrets.token_urlsafe(16)  # Unique token ID
    })

    encoded_jwt = jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)
    return encoded_jwt


def decode_access_token(token: str) -> Optional[Dict[str, Any]]:
    """
    Decode and verify JWT access token

    Args:
        token: JWT token string

    Returns:
        Optional[Dict]: Decoded token data or None if invalid, expired
        or not an access token
    """
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        return None
    if payload.get("typ") != "access":
        return None
    return payload


def generate_refresh_token() -> str:
    """Random opaque refresh secret (no embedded claims)"""
    return secrets.token_hex(64)


def generate_reset_token() -> str:
    """Random opaque password reset secret"""
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    """One-way SHA-256 digest used to store opaque secrets"""
    return hashlib.sha256(token.encode('utf-8')).hexdigest()


def generate_temporary_password(length: int = 12) -> str:
    """
    Generate a temporary password for admin-driven resets

    Always contains at least one letter and one digit so it passes the
    strength policy.
    """
    while True:
        candidate = "".join(secrets.choice(_TEMP_PASSWORD_ALPHABET) for _ in range(length))
        if validate_password_strength(candidate).is_valid:
            return candidate
