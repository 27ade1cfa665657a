"""
User account administration.

Create, list, delete and reset passwords for dashboard accounts.
Password hashes never leave this module: every record returned is a
sanitized `UserRecord`.

Example:
    >>> user = create_user("alice", "s3cret-pass", "Alice", "user")
    >>> reset_password(user.id, "n3w-pass")
    >>> delete_user(user.id, caller_id=1)
"""

import logging
from datetime import datetime
from typing import Optional

import psycopg2.errors
from pydantic import BaseModel

from db.db import get_conn, put_conn, transaction
from src.auth import Role, hash_password

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# ERRORS
# ═══════════════════════════════════════════════════════════════════════════

class UserError(Exception):
    """Base exception for user administration."""
    pass


class DuplicateUsernameError(UserError):
    """Username is already taken."""
    pass


class InvalidRoleError(UserError):
    """Role is not 'admin' or 'user'."""
    pass


class UserNotFoundError(UserError):
    """User does not exist."""
    pass


class SelfActionError(UserError):
    """Caller attempted a destructive action on their own account."""
    pass


class SelfDeletionError(SelfActionError):
    """Caller attempted to delete their own account."""
    pass


# ═══════════════════════════════════════════════════════════════════════════
# MODELS
# ═══════════════════════════════════════════════════════════════════════════

class UserRecord(BaseModel):
    """A user account without secret material."""

    id: int
    username: str
    name: str
    role: Role
    created_at: Optional[datetime] = None


def _row_to_record(row) -> UserRecord:
    return UserRecord(id=row[0], username=row[1], name=row[2], role=Role(row[3]), created_at=row[4])


def _parse_role(role) -> Role:
    try:
        return Role(role)
    except ValueError:
        raise InvalidRoleError(f"Invalid role: {role!r}")


# ═══════════════════════════════════════════════════════════════════════════
# QUERIES
# ═══════════════════════════════════════════════════════════════════════════

def list_users() -> list[UserRecord]:
    """List all users, newest first."""
    conn = get_conn()
    try:
        with conn.cursor() as cur:
            cur.execute(
                "SELECT id, username, name, role, created_at FROM users ORDER BY id DESC"
            )
            return [_row_to_record(row) for row in cur.fetchall()]
    finally:
        put_conn(conn)


def get_user(user_id: int) -> Optional[UserRecord]:
    """Get a user by id."""
    conn = get_conn()
    try:
        with conn.cursor() as cur:
            cur.execute(
                "SELECT id, username, name, role, created_at FROM users WHERE id = %s",
                (user_id,)
            )
            row = cur.fetchone()
            return _row_to_record(row) if row else None
    finally:
        put_conn(conn)


def get_user_by_username(username: str) -> Optional[UserRecord]:
    """Get a user by exact username."""
    conn = get_conn()
    try:
        with conn.cursor() as cur:
            cur.execute(
                "SELECT id, username, name, role, created_at FROM users WHERE username = %s",
                (username,)
            )
            row = cur.fetchone()
            return _row_to_record(row) if row else None
    finally:
        put_conn(conn)


def count_users() -> int:
    conn = get_conn()
    try:
        with conn.cursor() as cur:
            cur.execute("SELECT COUNT(*) FROM users")
            return cur.fetchone()[0]
    finally:
        put_conn(conn)


# ═══════════════════════════════════════════════════════════════════════════
# MUTATIONS
# ═══════════════════════════════════════════════════════════════════════════

def create_user(username: str, password: str, name: str, role: str) -> UserRecord:
    """
    Create a user account.

    The insert and the read-back of the created row run in one
    transaction; any failure rolls both back.

    Raises:
        InvalidRoleError: If role is not 'admin' or 'user'
        DuplicateUsernameError: If the username is taken
    """
    parsed_role = _parse_role(role)

    if get_user_by_username(username):
        raise DuplicateUsernameError(f"Username '{username}' already exists")

    password_hash = hash_password(password)

    try:
        with transaction() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO users (username, password_hash, name, role)
                    VALUES (%s, %s, %s, %s)
                    RETURNING id
                    """,
                    (username, password_hash, name, parsed_role.value)
                )
                user_id = cur.fetchone()[0]

                cur.execute(
                    "SELECT id, username, name, role, created_at FROM users WHERE id = %s",
                    (user_id,)
                )
                row = cur.fetchone()
                if not row:
                    raise UserError(f"Failed to read back created user {user_id}")
                user = _row_to_record(row)
    except psycopg2.errors.UniqueViolation:
        raise DuplicateUsernameError(f"Username '{username}' already exists")

    logger.info(f"Created user '{user.username}' (id={user.id}, role={user.role.value})")
    return user


def delete_user(user_id: int, caller_id: int) -> None:
    """
    Delete a user account.

    Raises:
        SelfDeletionError: If the caller targets their own account
        UserNotFoundError: If no such user exists
    """
    if user_id == caller_id:
        raise SelfDeletionError("You cannot delete your own account")

    conn = get_conn()
    try:
        with conn.cursor() as cur:
            cur.execute("DELETE FROM users WHERE id = %s", (user_id,))
            deleted = cur.rowcount
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        put_conn(conn)

    if not deleted:
        raise UserNotFoundError(f"User {user_id} not found")

    logger.info(f"Deleted user {user_id} (by user {caller_id})")


def reset_password(user_id: int, new_password: str, caller_id: Optional[int] = None) -> None:
    """
    Overwrite a user's password with a fresh hash.

    Raises:
        SelfActionError: If caller_id is given and targets their own account
        UserNotFoundError: If no such user exists
    """
    if caller_id is not None and user_id == caller_id:
        raise SelfActionError("You cannot reset your own password here")

    password_hash = hash_password(new_password)

    conn = get_conn()
    try:
        with conn.cursor() as cur:
            cur.execute(
                "UPDATE users SET password_hash = %s WHERE id = %s",
                (password_hash, user_id)
            )
            updated = cur.rowcount
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        put_conn(conn)

    if not updated:
        raise UserNotFoundError(f"User {user_id} not found")

    logger.info(f"Password reset for user {user_id}")


def ensure_default_admin(username: str, password: str, name: str) -> bool:
    """
    Seed the bootstrap admin if no account with that username exists.

    Returns True if an account was created.
    """
    if get_user_by_username(username):
        return False
    try:
        create_user(username, password, name, Role.ADMIN.value)
    except DuplicateUsernameError:
        return False
    logger.info(f"Seeded default admin '{username}'")
    return True


def recreate_admin(username: str, password: str, name: str) -> UserRecord:
    """Drop any account with the given username and recreate it as admin."""
    with transaction() as conn:
        with conn.cursor() as cur:
            cur.execute("DELETE FROM users WHERE username = %s", (username,))
    return create_user(username, password, name, Role.ADMIN.value)
