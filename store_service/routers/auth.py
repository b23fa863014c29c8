"""Authentication API router."""
from datetime import timedelta
from fastapi import APIRouter, Depends, Path, Response
from sqlalchemy.orm import Session
import logging

from store_service.auth import get_current_user
from store_service.config import ENVIRONMENT, JWT_COOKIE_EXPIRES_IN_DAYS
from store_service.database import get_db
from store_service.errors import ApiError
from store_service.models import User, utcnow
from store_service.monitoring import auth_attempts_counter, auth_failures_counter
from store_service.responses import success
from store_service.schemas import (
    ForgotPasswordRequest,
    LoginRequest,
    ResetPasswordRequest,
    SignupRequest,
    UpdatePasswordRequest,
    UserResponse,
)
from store_service.security import (
    create_access_token,
    create_password_reset_token,
    hash_password,
    hash_reset_token,
    now_utc,
    verify_password,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["authentication"])

# Backdated so a token issued in the same second as the change stays valid
PASSWORD_CHANGE_SKEW_SECONDS = 1


def _issue_token(user: User, response: Response, message: str = "Success") -> dict:
    """Sign a token, set it as the httpOnly ``jwt`` cookie and build the body."""
    token = create_access_token(user.id)
    response.set_cookie(
        "jwt",
        token,
        max_age=JWT_COOKIE_EXPIRES_IN_DAYS * 24 * 60 * 60,
        httponly=True,
        secure=ENVIRONMENT == "production",
        samesite="strict",
    )
    return success(message, {
        "token": token,
        "user": UserResponse.model_validate(user),
    })


def _set_password(user: User, password: str) -> None:
    user.password_hash = hash_password(password)
    user.password_changed_at = utcnow().replace(microsecond=0) - timedelta(seconds=PASSWORD_CHANGE_SKEW_SECONDS)


@router.post("/signup", status_code=201)
async def signup(
    request: SignupRequest,
    response: Response,
    db: Session = Depends(get_db)
):
    """Register a customer account and log it in."""
    email = request.email.lower()
    if db.query(User).filter(User.email == email).first():
        raise ApiError("Email already in use", 400)

    user = User(
        name=request.name,
        email=email,
        password_hash=hash_password(request.password),
        role="user"
    )
    db.add(user)
    db.commit()
    db.refresh(user)

    logger.info("User signed up", extra={"user_id": user.id})
    return _issue_token(user, response)


@router.post("/login")
async def login(
    request: LoginRequest,
    response: Response,
    db: Session = Depends(get_db)
):
    """Authenticate with email and password and return a token."""
    auth_attempts_counter.add(1, {"type": "login"})

    user = db.query(User).filter(User.email == request.email.lower()).first()
    if user is None or not verify_password(request.password, user.password_hash):
        auth_failures_counter.add(1, {"reason": "invalid_credentials"})
        logger.warning("Login failed: Invalid email or password", extra={
            "email": request.email.lower()
        })
        raise ApiError("Invalid email or password", 401)

    logger.info("User logged in successfully", extra={"user_id": user.id})
    return _issue_token(user, response)


@router.post("/logout")
async def logout(response: Response, user: User = Depends(get_current_user)):
    response.set_cookie("jwt", "", max_age=10, httponly=True)
    return success("Logged out successfully")


@router.get("/me")
async def get_me(user: User = Depends(get_current_user)):
    return success("Success", {"user": UserResponse.model_validate(user)})


@router.patch("/update-password")
async def update_password(
    request: UpdatePasswordRequest,
    response: Response,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user)
):
    if not verify_password(request.current_password, user.password_hash):
        raise ApiError("Your current password is incorrect", 401)
    if request.new_password != request.password_confirm:
        raise ApiError("New passwords do not match", 400)

    _set_password(user, request.new_password)
    db.commit()
    db.refresh(user)

    logger.info("Password updated", extra={"user_id": user.id})
    return _issue_token(user, response)


@router.post("/forgot-password")
async def forgot_password(
    request: ForgotPasswordRequest,
    db: Session = Depends(get_db)
):
    """
    Generate a password-reset token.

    Only its SHA-256 hash is stored. There is no mail delivery, so the plain
    token is returned to the caller.
    """
    user = db.query(User).filter(User.email == request.email.lower()).first()
    if user is None:
        raise ApiError("There is no user with that email address", 404)

    token, token_hash, expires = create_password_reset_token()
    user.password_reset_token = token_hash
    user.password_reset_expires = expires
    db.commit()

    logger.info("Password reset token issued", extra={"user_id": user.id})
    return success("Reset token generated successfully", {"reset_token": token})


@router.patch("/reset-password/{token}")
async def reset_password(
    request: ResetPasswordRequest,
    response: Response,
    token: str = Path(...),
    db: Session = Depends(get_db)
):
    user = db.query(User).filter(
        User.password_reset_token == hash_reset_token(token),
        User.password_reset_expires > now_utc().replace(tzinfo=None)
    ).first()
    if user is None:
        raise ApiError("Token is invalid or has expired", 400)

    _set_password(user, request.password)
    user.password_reset_token = None
    user.password_reset_expires = None
    db.commit()
    db.refresh(user)

    logger.info("Password reset", extra={"user_id": user.id})
    return _issue_token(user, response)
