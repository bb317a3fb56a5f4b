"""
backend/auth_context.py

Auth Gate: bearer credential -> authenticated identity.

Contains:
- AuthContext: immutable identity resolved from the token and the users table
- require_auth_context: FastAPI dependency for auth enforcement
- verify_token / create_access_token: JWT helpers
- hash_password / verify_password

The resolved user id is never stored in a global. Handlers pass
ctx.user_id explicitly into every write that records an acting user.

This module MUST NOT import backend.main to avoid circular dependencies.
"""

from __future__ import annotations

import hashlib
from datetime import datetime, timedelta
from typing import Optional

import jwt
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel

from backend.config import SECRET_KEY, ALGORITHM, ACCESS_TOKEN_MINUTES, IS_DEV
from backend.db import get_db
from backend.errors import ApiError, ErrorCode

# auto_error=False so a missing header maps to UNAUTHORIZED instead of
# FastAPI's default "Not authenticated" response
security = HTTPBearer(auto_error=False)


# ---------------------------------------------------------
# Password + token helpers
# ---------------------------------------------------------
def hash_password(password: str) -> str:
    return hashlib.sha256(password.encode()).hexdigest()


def verify_password(password: str, password_hash: str) -> bool:
    return hash_password(password) == password_hash


def create_access_token(user_id: int, email: str, minutes: Optional[int] = None) -> str:
    expires = datetime.utcnow() + timedelta(minutes=minutes or ACCESS_TOKEN_MINUTES)
    payload = {"sub": str(user_id), "email": email, "exp": expires}
    return jwt.encode(payload, SECRET_KEY, algorithm=ALGORITHM)


def verify_token(token: str) -> dict:
    """
    Verify JWT access token and return decoded payload.

    Raises:
        ApiError(401, INVALID_TOKEN): If token is expired or invalid
    """
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise ApiError(ErrorCode.INVALID_TOKEN, "Token expired")
    except jwt.InvalidTokenError:
        raise ApiError(ErrorCode.INVALID_TOKEN, "Invalid token")


# ---------------------------------------------------------
# AuthContext
# ---------------------------------------------------------
class AuthContext(BaseModel):
    """
    Identity derived from server-side JWT verification.
    This is the ONLY source of truth for the acting user in protected endpoints.
    Never trust user ids from request bodies for created_by/changed_by columns.
    """
    user_id: int
    email: str
    full_name: Optional[str] = None
    is_admin: bool = False


def load_identity(conn, user_id) -> Optional[AuthContext]:
    """Fetch the user row and global admin flag; None when the user no longer exists."""
    cur = conn.cursor()
    cur.execute("SELECT id, email, full_name FROM users WHERE id = ?", (user_id,))
    user_row = cur.fetchone()
    if not user_row:
        return None
    cur.execute(
        "SELECT 1 FROM user_roles WHERE user_id = ? AND role = 'admin'",
        (user_row["id"],),
    )
    is_admin = cur.fetchone() is not None
    return AuthContext(
        user_id=user_row["id"],
        email=user_row["email"],
        full_name=user_row["full_name"],
        is_admin=is_admin,
    )


def require_auth_context(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> AuthContext:
    """
    Auth Gate dependency.

    Process:
    1. Require an "Authorization: Bearer <token>" header (UNAUTHORIZED)
    2. Verify JWT signature and expiration (INVALID_TOKEN)
    3. Fetch the user record from the database (USER_NOT_FOUND)

    Usage:
        @router.get("/protected")
        def protected_route(ctx: AuthContext = Depends(require_auth_context)):
            ...
    """
    if credentials is None or credentials.scheme.lower() != "bearer" or not credentials.credentials:
        raise ApiError(ErrorCode.UNAUTHORIZED, "Authorization header with Bearer token required")

    payload = verify_token(credentials.credentials)
    user_id = payload.get("sub")
    if not user_id:
        print("[AUTH] Missing user_id in token payload")
        raise ApiError(ErrorCode.INVALID_TOKEN, "Invalid token payload")

    conn = get_db()
    try:
        ctx = load_identity(conn, user_id)
    finally:
        conn.close()

    if ctx is None:
        print(f"[AUTH] User not found: user_id={user_id}")
        raise ApiError(ErrorCode.USER_NOT_FOUND, "User not found")

    if IS_DEV:
        print(f"[AUTH] Authenticated: user_id={ctx.user_id}, admin={ctx.is_admin}")

    return ctx
