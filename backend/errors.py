"""
backend/errors.py

Error taxonomy shared by every handler.

Handlers raise ApiError (an HTTPException carrying a machine-readable code);
main.py renders it into the failure envelope {success: false, error, code}.
Storage exceptions are translated here so constraint violations surface with
a stable code instead of a generic 500.
"""

from __future__ import annotations

import sqlite3
from enum import Enum
from typing import Any, Optional

from fastapi import HTTPException


class ErrorCode(str, Enum):
    # Identity
    UNAUTHORIZED = "UNAUTHORIZED"
    INVALID_TOKEN = "INVALID_TOKEN"
    USER_NOT_FOUND = "USER_NOT_FOUND"
    # Policy
    ACCESS_DENIED = "ACCESS_DENIED"
    FORBIDDEN = "FORBIDDEN"
    # Validation
    MISSING_FIELDS = "MISSING_FIELDS"
    MISSING_PROJECT_ID = "MISSING_PROJECT_ID"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_TYPE = "INVALID_TYPE"
    MISSING_TYPE = "MISSING_TYPE"
    # Resource missing
    NOT_FOUND = "NOT_FOUND"
    PROJECT_NOT_FOUND = "PROJECT_NOT_FOUND"
    CARD_NOT_FOUND = "CARD_NOT_FOUND"
    COLUMN_NOT_FOUND = "COLUMN_NOT_FOUND"
    RETRO_NOT_FOUND = "RETRO_NOT_FOUND"
    ITERATION_NOT_FOUND = "ITERATION_NOT_FOUND"
    # Storage constraints
    DUPLICATE_ENTRY = "DUPLICATE_ENTRY"
    FOREIGN_KEY_VIOLATION = "FOREIGN_KEY_VIOLATION"
    NOT_NULL_VIOLATION = "NOT_NULL_VIOLATION"
    # Operation class
    CREATE_ERROR = "CREATE_ERROR"
    UPDATE_ERROR = "UPDATE_ERROR"
    DELETE_ERROR = "DELETE_ERROR"
    FETCH_ERROR = "FETCH_ERROR"
    GRANT_ERROR = "GRANT_ERROR"
    REVOKE_ERROR = "REVOKE_ERROR"
    MOVE_ERROR = "MOVE_ERROR"
    PARTIAL_CREATE = "PARTIAL_CREATE"
    # Catch-all
    INTERNAL_ERROR = "INTERNAL_ERROR"


# Default HTTP status per code; operation-class failures are server errors
STATUS_BY_CODE = {
    ErrorCode.UNAUTHORIZED: 401,
    ErrorCode.INVALID_TOKEN: 401,
    ErrorCode.USER_NOT_FOUND: 401,
    ErrorCode.ACCESS_DENIED: 403,
    ErrorCode.FORBIDDEN: 403,
    ErrorCode.MISSING_FIELDS: 400,
    ErrorCode.MISSING_PROJECT_ID: 400,
    ErrorCode.VALIDATION_ERROR: 400,
    ErrorCode.INVALID_TYPE: 400,
    ErrorCode.MISSING_TYPE: 400,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.PROJECT_NOT_FOUND: 404,
    ErrorCode.CARD_NOT_FOUND: 404,
    ErrorCode.COLUMN_NOT_FOUND: 404,
    ErrorCode.RETRO_NOT_FOUND: 404,
    ErrorCode.ITERATION_NOT_FOUND: 404,
    ErrorCode.DUPLICATE_ENTRY: 409,
    ErrorCode.FOREIGN_KEY_VIOLATION: 400,
    ErrorCode.NOT_NULL_VIOLATION: 400,
}


class ApiError(HTTPException):
    """HTTPException with a taxonomy code. Rendered by the handlers in main.py."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        status_code: Optional[int] = None,
        details: Any = None,
    ) -> None:
        super().__init__(status_code=status_code or STATUS_BY_CODE.get(code, 500), detail=message)
        self.code = code
        self.details = details


def not_found(what: str = "Resource", code: ErrorCode = ErrorCode.NOT_FOUND) -> ApiError:
    return ApiError(code, f"{what} not found")


def forbidden(message: str = "Insufficient permissions") -> ApiError:
    return ApiError(ErrorCode.FORBIDDEN, message)


def missing_fields(message: str) -> ApiError:
    return ApiError(ErrorCode.MISSING_FIELDS, message)


def translate_db_error(exc: sqlite3.Error, fallback: ErrorCode, message: str) -> ApiError:
    """
    Map a storage exception to the taxonomy.

    Known SQLite constraint signatures become DUPLICATE_ENTRY,
    FOREIGN_KEY_VIOLATION or NOT_NULL_VIOLATION; anything else becomes
    the operation-class fallback (CREATE_ERROR, UPDATE_ERROR, ...) with 500.
    """
    text = str(exc)
    if isinstance(exc, sqlite3.IntegrityError):
        if "UNIQUE constraint failed" in text:
            return ApiError(ErrorCode.DUPLICATE_ENTRY, "Duplicate entry", details=text)
        if "FOREIGN KEY constraint failed" in text:
            return ApiError(ErrorCode.FOREIGN_KEY_VIOLATION, "Referenced record does not exist", details=text)
        if "NOT NULL constraint failed" in text:
            return ApiError(ErrorCode.NOT_NULL_VIOLATION, "Required field is missing", details=text)
    return ApiError(fallback, message, status_code=500, details=text)
