"""Password hashing, JWT issuance and password-reset tokens."""
import hashlib
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Tuple

import jwt
from passlib.context import CryptContext

from store_service.config import (
    JWT_ALGORITHM,
    JWT_EXPIRES_IN_SECONDS,
    JWT_SECRET,
    PASSWORD_RESET_EXPIRES_MINUTES,
)

pwd_ctx = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_ctx.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return pwd_ctx.verify(password, password_hash)


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def create_access_token(user_id: int, issued_at: Optional[datetime] = None) -> str:
    """
    Sign a token for ``user_id``.

    Args:
        user_id: Subject of the token
        issued_at: Override for the ``iat`` claim, defaults to now

    Returns:
        Encoded JWT carrying ``id``, ``iat`` and ``exp``
    """
    iat = issued_at or now_utc()
    payload = {
        "id": user_id,
        "iat": iat,
        "exp": iat + timedelta(seconds=JWT_EXPIRES_IN_SECONDS),
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


def decode_access_token(token: str) -> Dict[str, Any]:
    """Verify signature and expiry. Raises ``jwt.InvalidTokenError`` subclasses."""
    return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])


def hash_reset_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def create_password_reset_token() -> Tuple[str, str, datetime]:
    """
    Generate a password-reset token.

    Returns:
        Tuple of (plain token for the user, hash to store, naive UTC expiry)
    """
    token = secrets.token_hex(32)
    expires = now_utc().replace(tzinfo=None) + timedelta(minutes=PASSWORD_RESET_EXPIRES_MINUTES)
    return token, hash_reset_token(token), expires
