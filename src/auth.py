"""
Authentication module for the chat dashboard.

Two roles share one login:
- admin: full settings control, user management, analytics
- user: views chat history, may change the theme

The identity token is a JWT carried in a cookie. Its payload is the
sanitized user record, so role changes only take effect on next login.
"""

import os
import logging
from datetime import datetime, timedelta, timezone
from dataclasses import dataclass, asdict
from typing import Optional
from enum import Enum

import jwt
import bcrypt
from fastapi import HTTPException, status, Cookie, Depends

from db.db import get_conn, put_conn

logger = logging.getLogger(__name__)

# ═══════════════════════════════════════════════════════════════════════════
# CONFIGURATION
# ═══════════════════════════════════════════════════════════════════════════

JWT_SECRET = os.environ.get("JWT_SECRET", "dev-secret-change-in-production")
JWT_ALGORITHM = "HS256"

SESSION_COOKIE = "chatdash_session"
SESSION_MAX_AGE = 86400  # 24 hours


class Role(str, Enum):
    ADMIN = "admin"
    USER = "user"


# ═══════════════════════════════════════════════════════════════════════════
# DATA CLASSES
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class SessionUser:
    """Sanitized user: identity and role, never the password hash."""
    id: int
    username: str
    name: str
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    def to_dict(self) -> dict:
        data = asdict(self)
        data["role"] = self.role.value
        return data


# ═══════════════════════════════════════════════════════════════════════════
# PASSWORD UTILITIES
# ═══════════════════════════════════════════════════════════════════════════

def hash_password(password: str) -> str:
    """Hash a password with bcrypt."""
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt()).decode()


def verify_password(password: str, password_hash: str) -> bool:
    """Verify a password against its hash."""
    try:
        return bcrypt.checkpw(password.encode(), password_hash.encode())
    except ValueError:
        return False


# Compared against when the username is unknown so both failure paths cost the same.
_DUMMY_HASH = hash_password("not-a-real-password")


# ═══════════════════════════════════════════════════════════════════════════
# JWT TOKEN UTILITIES
# ═══════════════════════════════════════════════════════════════════════════

def create_token(payload: dict, expires_in: int) -> str:
    """Create a JWT token."""
    now = datetime.now(timezone.utc)
    payload = dict(payload)
    payload["exp"] = now + timedelta(seconds=expires_in)
    payload["iat"] = now
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


def verify_token(token: str) -> Optional[dict]:
    """Verify and decode a JWT token."""
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        logger.debug("Token expired")
        return None
    except jwt.InvalidTokenError as e:
        logger.debug(f"Invalid token: {e}")
        return None


# ═══════════════════════════════════════════════════════════════════════════
# AUTHENTICATOR
# ═══════════════════════════════════════════════════════════════════════════

def authenticate(username: str, password: str) -> Optional[SessionUser]:
    """
    Authenticate by username and password.

    Returns None both for an unknown username and for a wrong password,
    so callers cannot tell the two apart.
    """
    conn = get_conn()
    try:
        with conn.cursor() as cur:
            cur.execute(
                "SELECT id, username, password_hash, name, role FROM users WHERE username = %s",
                (username,)
            )
            row = cur.fetchone()
    finally:
        put_conn(conn)

    if not row:
        verify_password(password, _DUMMY_HASH)
        return None

    user_id, user_name, password_hash, name, role = row
    if not verify_password(password, password_hash):
        return None

    return SessionUser(id=user_id, username=user_name, name=name, role=Role(role))


# ═══════════════════════════════════════════════════════════════════════════
# SESSION GUARD
# ═══════════════════════════════════════════════════════════════════════════

def create_session(user: SessionUser) -> str:
    """Issue an identity token for a sanitized user."""
    return create_token(user.to_dict(), SESSION_MAX_AGE)


def identify(token: Optional[str]) -> Optional[SessionUser]:
    """
    Resolve an identity token to a user.

    Returns None when the token is missing, expired, tampered with or
    does not carry a well-formed user. The store is not consulted.
    """
    if not token:
        return None

    payload = verify_token(token)
    if not payload:
        return None

    try:
        return SessionUser(
            id=int(payload["id"]),
            username=str(payload["username"]),
            name=str(payload["name"]),
            role=Role(payload["role"]),
        )
    except (KeyError, TypeError, ValueError):
        logger.debug("Malformed identity token payload")
        return None


# ═══════════════════════════════════════════════════════════════════════════
# FASTAPI DEPENDENCIES
# ═══════════════════════════════════════════════════════════════════════════

async def get_current_user(
    session: Optional[str] = Cookie(None, alias=SESSION_COOKIE)
) -> SessionUser:
    """
    FastAPI dependency: requires a valid session.
    Raises 401 if not authenticated.
    """
    if not session:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Cookie"},
        )

    user = identify(session)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired session",
            headers={"WWW-Authenticate": "Cookie"},
        )

    return user


async def admin_required(
    user: SessionUser = Depends(get_current_user)
) -> SessionUser:
    """FastAPI dependency: requires the admin role."""
    if not user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required"
        )
    return user


async def get_optional_user(
    session: Optional[str] = Cookie(None, alias=SESSION_COOKIE)
) -> Optional[SessionUser]:
    """FastAPI dependency: optionally authenticated."""
    return identify(session)
