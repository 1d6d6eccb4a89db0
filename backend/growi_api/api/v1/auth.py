"""Authentication routes"""

from typing import Any, Dict

from fastapi import APIRouter, BackgroundTasks, Depends, Request, Response, status
from sqlalchemy.orm import Session

from growi_api.api.deps import get_client_ip, get_token_claims
from growi_api.core.database import get_db
from growi_api.core.exceptions import BaseAPIException, InactiveAccountError, NotFoundError
from growi_api.core.metrics import LOGIN_ATTEMPTS
from growi_api.models.user import User
from growi_api.schemas.response import ErrorResponse
from growi_api.schemas.user import (
    AuthResponse,
    LoginRequest,
    MessageResponse,
    ProfileResponse,
    RefreshResponse,
    RefreshTokenRequest,
    RegisterRequest,
    RequestPasswordResetRequest,
    ResetPasswordRequest,
    TokenPairResponse,
    UserProfile,
    UserSummary,
)
from growi_api.services.auth_service import auth_service
from growi_api.services.token_service import TokenPair
from growi_api.services.user_service import user_service

router = APIRouter()

PASSWORD_RESET_MESSAGE = "If your email is registered, you will receive a password reset link"


def _auth_response(user: User, tokens: TokenPair) -> AuthResponse:
    return AuthResponse(
        user=UserSummary.model_validate(user),
        tokens=TokenPairResponse(access_token=tokens.access_token, refresh_token=tokens.refresh_token),
    )


@router.post(
    "/register",
    response_model=AuthResponse,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
def register(body: RegisterRequest, db: Session = Depends(get_db)):
    """
    Register a new account and return its first token pair

    A welcome email is queued for the task worker.
    """
    user, tokens = auth_service.register(
        db,
        email=body.email,
        password=body.password,
        first_name=body.first_name,
        last_name=body.last_name,
    )
    return _auth_response(user, tokens)


@router.post(
    "/login",
    response_model=AuthResponse,
    status_code=status.HTTP_200_OK,
    responses={401: {"model": ErrorResponse}},
)
def login(body: LoginRequest, request: Request, db: Session = Depends(get_db)):
    """
    Authenticate with email and password

    Limited to LOGIN_RATE_LIMIT_MAX attempts per client IP per window; the
    401 raised past the limit carries details.resetTime.
    """
    try:
        user, tokens = auth_service.login(db, body.email, body.password, get_client_ip(request))
    except BaseAPIException as exc:
        LOGIN_ATTEMPTS.labels(type(exc).__name__).inc()
        raise
    LOGIN_ATTEMPTS.labels("success").inc()
    return _auth_response(user, tokens)


@router.post(
    "/refresh",
    response_model=RefreshResponse,
    responses={401: {"model": ErrorResponse}},
)
def refresh(body: RefreshTokenRequest, db: Session = Depends(get_db)):
    """Exchange a refresh token for a new pair; the presented token is revoked"""
    tokens = auth_service.refresh(db, body.refresh_token)
    return RefreshResponse(
        tokens=TokenPairResponse(access_token=tokens.access_token, refresh_token=tokens.refresh_token)
    )


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
def logout(body: RefreshTokenRequest, db: Session = Depends(get_db)):
    """Revoke the refresh token (idempotent)"""
    auth_service.logout(db, body.refresh_token)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/request-password-reset", response_model=MessageResponse)
def request_password_reset(
    body: RequestPasswordResetRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
):
    """Always answers with the same message, registered email or not"""
    reset_email = auth_service.request_password_reset(db, body.email)
    if reset_email:
        background_tasks.add_task(auth_service.deliver_password_reset_email, reset_email)
    return MessageResponse(message=PASSWORD_RESET_MESSAGE)


@router.post(
    "/reset-password",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={400: {"model": ErrorResponse}},
)
def reset_password(body: ResetPasswordRequest, db: Session = Depends(get_db)):
    """Set a new password from a reset token; all refresh tokens are revoked"""
    auth_service.reset_password(db, body.token, body.new_password)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get(
    "/me",
    response_model=ProfileResponse,
    responses={401: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
def get_profile(
    claims: Dict[str, Any] = Depends(get_token_claims),
    db: Session = Depends(get_db),
):
    """Profile of the bearer token's user"""
    user = user_service.get_user_by_id(db, int(claims["sub"]))
    if not user:
        raise NotFoundError("User")
    if not user.is_active:
        raise InactiveAccountError(user.status)
    return ProfileResponse(user=UserProfile.model_validate(user))
