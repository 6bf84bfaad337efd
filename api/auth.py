"""Authentication and role checks for PaperSmith.

Provides JWT-based authentication with:
- Password hashing using bcrypt
- JWT token creation and verification using PyJWT
- FastAPI dependencies for the current user and role gates
  (STUDENT, TEAM, SUPER_ADMIN)
"""

import os
from datetime import datetime, timedelta
from typing import Optional

import bcrypt
import jwt
from fastapi import Depends, HTTPException, Header
from sqlalchemy.orm import Session

from .database.connection import get_db_dependency
from .database.models import User

# JWT configuration
JWT_SECRET_KEY = os.environ.get("JWT_SECRET_KEY", "dev-secret-key-change-in-production")
JWT_ALGORITHM = os.environ.get("JWT_ALGORITHM", "HS256")
JWT_ACCESS_TOKEN_EXPIRE_MINUTES = int(
    os.environ.get("JWT_ACCESS_TOKEN_EXPIRE_MINUTES", "60")
)

STAFF_ROLES = ("SUPER_ADMIN", "TEAM")


def hash_password(password: str) -> str:
    """Hash a password using bcrypt."""
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against its hash."""
    return bcrypt.checkpw(
        plain_password.encode("utf-8"), hashed_password.encode("utf-8")
    )


def create_access_token(user_id: str, email: str, role: str) -> str:
    """Create a JWT access token carrying user_id, email and role."""
    expire = datetime.utcnow() + timedelta(minutes=JWT_ACCESS_TOKEN_EXPIRE_MINUTES)
    payload = {
        "user_id": user_id,
        "email": email,
        "role": role,
        "exp": expire,
    }
    return jwt.encode(payload, JWT_SECRET_KEY, algorithm=JWT_ALGORITHM)


def decode_access_token(token: str) -> dict:
    """Decode and validate a JWT access token.

    Raises HTTPException on invalid or expired tokens.
    """
    try:
        payload = jwt.decode(token, JWT_SECRET_KEY, algorithms=[JWT_ALGORITHM])
        return payload
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token has expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")


def _user_from_header(authorization: Optional[str], db: Session) -> User:
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(
            status_code=401,
            detail="Missing or invalid Authorization header",
        )

    token = authorization.split(" ", 1)[1]
    payload = decode_access_token(token)

    user = db.query(User).filter_by(id=payload["user_id"]).first()
    if not user:
        raise HTTPException(status_code=401, detail="User not found")

    if not user.is_active:
        raise HTTPException(status_code=401, detail="User account is deactivated")

    return user


async def get_current_user(
    authorization: str = Header(None),
    db: Session = Depends(get_db_dependency),
) -> User:
    """FastAPI dependency that extracts and validates the current user.

    Raises 401 if the token is missing, invalid, or the user doesn't exist.
    """
    return _user_from_header(authorization, db)


async def get_optional_user(
    authorization: str = Header(None),
    db: Session = Depends(get_db_dependency),
) -> Optional[User]:
    """Like get_current_user, but anonymous requests yield None."""
    if not authorization:
        return None
    return _user_from_header(authorization, db)


def require_roles(*roles: str):
    """Build a dependency that only admits users holding one of `roles`."""

    async def dependency(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role not in roles:
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        return current_user

    return dependency


require_staff = require_roles(*STAFF_ROLES)
require_super_admin = require_roles("SUPER_ADMIN")
