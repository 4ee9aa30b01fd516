# auth.py
"""
Minimal bearer-token authentication.

Passwords are stored as PBKDF2-SHA256 hashes (`<iterations>$<salt>$<hash>`).
Each login issues a fresh opaque token stored on the user row; logout clears it.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.orm import Session

from .db import get_session
from .models import User

logger = logging.getLogger(__name__)

PBKDF2_ITERATIONS = 200_000

_bearer = HTTPBearer(auto_error=False)


def hash_password(password: str, *, iterations: int = PBKDF2_ITERATIONS) -> str:
    salt = secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt.encode("ascii"), iterations)
    return f"{iterations}${salt}${digest.hex()}"


def verify_password(password: str, stored: str) -> bool:
    try:
        iterations, salt, expected = stored.split("$", 2)
        digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt.encode("ascii"), int(iterations))
    except ValueError:
        return False
    return hmac.compare_digest(digest.hex(), expected)


def new_token() -> str:
    return secrets.token_urlsafe(32)


def _unauthorized(detail: str = "Not authenticated") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def authenticate(session: Session, username: str, password: str) -> Optional[User]:
    user = session.scalars(select(User).where(User.username == username)).first()
    if user is None or not verify_password(password, user.password_hash):
        logger.info("Failed login for %r", username)
        return None
    return user


def current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
    session: Session = Depends(get_session),
) -> User:
    """FastAPI dependency: the user owning the bearer token, else 401."""
    if credentials is None or not credentials.credentials:
        raise _unauthorized()
    user = session.scalars(select(User).where(User.token == credentials.credentials)).first()
    if user is None:
        raise _unauthorized("Invalid or expired token")
    return user
