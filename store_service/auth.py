"""Authentication dependencies."""
from typing import Optional
import jwt
from fastapi import Cookie, Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session
import logging

from store_service.database import get_db
from store_service.errors import ApiError
from store_service.models import User
from store_service.monitoring import auth_attempts_counter, auth_failures_counter
from store_service.security import decode_access_token

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    jwt_cookie: Optional[str] = Cookie(None, alias="jwt"),
    db: Session = Depends(get_db)
) -> User:
    """
    Resolve the authenticated user from a bearer token or the ``jwt`` cookie.

    Args:
        credentials: Parsed ``Authorization: Bearer`` header
        jwt_cookie: Token cookie set at login
        db: Database session

    Returns:
        The user the token was issued to

    Raises:
        ApiError: 401 when the token is missing, the user is gone, or the
            password changed after the token was issued
        jwt.InvalidTokenError: When the token fails verification
    """
    auth_attempts_counter.add(1, {"type": "bearer_token"})

    token = credentials.credentials if credentials else jwt_cookie
    if not token:
        auth_failures_counter.add(1, {"reason": "missing_token"})
        raise ApiError("You are not logged in! Please log in to get access.", 401)

    try:
        payload = decode_access_token(token)
    except jwt.InvalidTokenError:
        auth_failures_counter.add(1, {"reason": "invalid_token"})
        logger.warning("Authentication failed: Invalid token", extra={
            "token_prefix": token[:8] + "..." if len(token) > 8 else token
        })
        raise

    user = db.get(User, payload.get("id")) if payload.get("id") is not None else None
    if user is None:
        auth_failures_counter.add(1, {"reason": "user_not_found"})
        raise ApiError("The user belonging to this token no longer exists.", 401)

    if user.changed_password_after(payload.get("iat", 0)):
        auth_failures_counter.add(1, {"reason": "password_changed"})
        logger.warning("Authentication failed: Password changed after token issue", extra={
            "user_id": user.id
        })
        raise ApiError("User recently changed password! Please log in again.", 401)

    return user


def restrict_to(*roles: str):
    """Dependency factory allowing only users whose role is in ``roles``."""
    def _checker(user: User = Depends(get_current_user)) -> User:
        if user.role not in roles:
            raise ApiError("You do not have permission to perform this action", 403)
        return user
    return _checker
