# ---------------------------------------------------------
# backend/main.py
# Project Workspace Backend
#
# Run: uvicorn backend.main:app --reload (from repo root)
#
# - FastAPI + SQLite
# - /auth/*, /users/{id}/role      : register, login, current identity, role lookup
# - /departments                  : department registry (admin writes)
# - /projects/*                   : projects, members, module access grants
# - roadmap, tasks, risks, stakeholders, discussions, backlog,
#   capacity, retrospectives, budget : per-module resource handlers
# - /projects/{id}/analytics/*    : aggregated project analytics
# ---------------------------------------------------------

from __future__ import annotations

import sqlite3
import time
import traceback
from typing import Any, Dict

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from backend.auth_context import (
    AuthContext,
    create_access_token,
    hash_password,
    require_auth_context,
    verify_password,
)
from backend.config import CORS_ORIGINS, ENV, IS_DEV, IS_PROD
from backend.db import get_db, now_iso, transaction
from backend.errors import ApiError, ErrorCode, translate_db_error
from backend.migrate import run_migrations
from backend.responses import fail, ok
from backend.schemas_projects import LoginRequest, RegisterRequest

from backend import (
    routes_access,
    routes_analytics,
    routes_audit,
    routes_backlog,
    routes_budget,
    routes_capacity,
    routes_departments,
    routes_discussions,
    routes_projects,
    routes_retro,
    routes_risks,
    routes_roadmap,
    routes_stakeholders,
    routes_tasks,
    routes_wizard,
)

SENSITIVE_KEYS = {"authorization", "password", "token", "access_token"}


def init_db() -> None:
    """Create or upgrade the schema. Idempotent."""
    run_migrations()


# ---------------------------------------------------------
# FastAPI app
# ---------------------------------------------------------
app = FastAPI(title="Project Workspace Backend", version="0.1")

# CORS configuration from config module
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS if IS_PROD else ["*"],  # Restrict origins in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

init_db()


# ---------------------------------------------------------
# Request logging
# ---------------------------------------------------------
def mask_sensitive(values: Dict[str, Any]) -> Dict[str, Any]:
    return {k: ("***" if k.lower() in SENSITIVE_KEYS else v) for k, v in values.items()}


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - start) * 1000
    print(f"[REQUEST] {request.method} {request.url.path} -> {response.status_code} ({elapsed_ms:.1f}ms)")
    if IS_DEV:
        query = mask_sensitive(dict(request.query_params))
        auth = "present" if request.headers.get("authorization") else "absent"
        print(f"[REQUEST] query={query}, authorization={auth}")
    return response


# ---------------------------------------------------------
# Error envelope
# ---------------------------------------------------------
def error_response(status_code: int, message: str, code: str, details: Any = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=fail(message, code, None if IS_PROD else details),
    )


@app.exception_handler(ApiError)
async def api_error_handler(request: Request, exc: ApiError):
    if exc.status_code >= 500:
        print(f"[ERROR] {request.method} {request.url.path}: {exc.code.value} {exc.detail} ({exc.details})")
    return error_response(exc.status_code, str(exc.detail), exc.code.value, exc.details)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    fallback = ErrorCode.INTERNAL_ERROR if exc.status_code >= 500 else ErrorCode.VALIDATION_ERROR
    code = {401: ErrorCode.UNAUTHORIZED, 403: ErrorCode.FORBIDDEN, 404: ErrorCode.NOT_FOUND}.get(
        exc.status_code, fallback
    )
    return error_response(exc.status_code, str(exc.detail), code.value)


def is_missing_error(error: Dict[str, Any]) -> bool:
    return "missing" in str(error.get("type", "")) or "required" in str(error.get("msg", "")).lower()


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    details = [
        {"field": ".".join(str(p) for p in e.get("loc", ()) if p != "body"), "message": str(e.get("msg"))}
        for e in errors
    ]
    missing = [d["field"] for d, e in zip(details, errors) if is_missing_error(e)]
    if missing:
        return error_response(400, f"Missing required fields: {', '.join(missing)}",
                              ErrorCode.MISSING_FIELDS.value, details)
    return error_response(400, "Validation failed", ErrorCode.VALIDATION_ERROR.value, details)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    print(f"[ERROR] Unhandled exception on {request.method} {request.url.path}: {exc}")
    traceback.print_exc()
    return error_response(500, "Internal server error", ErrorCode.INTERNAL_ERROR.value, str(exc))


# ---------------------------------------------------------
# Routers (fixed paths before parameterized ones)
# ---------------------------------------------------------
app.include_router(routes_wizard.router)
app.include_router(routes_projects.router)
app.include_router(routes_departments.router)
app.include_router(routes_access.router)
app.include_router(routes_roadmap.router)
app.include_router(routes_tasks.router)
app.include_router(routes_risks.router)
app.include_router(routes_stakeholders.router)
app.include_router(routes_discussions.router)
app.include_router(routes_backlog.router)
app.include_router(routes_capacity.router)
app.include_router(routes_retro.router)
app.include_router(routes_budget.router)
app.include_router(routes_audit.router)
app.include_router(routes_analytics.router)


# ---------------------------------------------------------
# Routes
# ---------------------------------------------------------
@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok", "env": ENV}


# Auth endpoints
@app.post("/auth/register")
def register(req: RegisterRequest):
    conn = get_db()
    try:
        with transaction(conn) as cur:
            cur.execute(
                "INSERT INTO users (email, password_hash, full_name, created_at) VALUES (?, ?, ?, ?)",
                (req.email, hash_password(req.password), req.full_name, now_iso()),
            )
            user_id = cur.lastrowid
            cur.execute(
                "INSERT INTO user_roles (user_id, role, created_at) VALUES (?, 'user', ?)",
                (user_id, now_iso()),
            )
        print(f"[REGISTER] User created: id={user_id}")
    except sqlite3.IntegrityError as e:
        print(f"[REGISTER] IntegrityError: {e}")
        if "UNIQUE" in str(e):
            raise ApiError(ErrorCode.DUPLICATE_ENTRY, "Email already registered")
        raise translate_db_error(e, ErrorCode.CREATE_ERROR, "Registration failed")
    except sqlite3.Error as e:
        print(f"[REGISTER] DB error: {e}")
        raise translate_db_error(e, ErrorCode.CREATE_ERROR, "Registration failed")
    finally:
        conn.close()

    access_token = create_access_token(user_id, req.email)
    return ok({
        "access_token": access_token,
        "token_type": "bearer",
        "user": {"id": user_id, "email": req.email, "full_name": req.full_name, "is_admin": False},
    }, "Registration successful")


@app.post("/auth/login")
def login(req: LoginRequest):
    conn = get_db()
    try:
        cur = conn.cursor()
        cur.execute("SELECT id, email, full_name, password_hash FROM users WHERE email = ?", (req.email,))
        row = cur.fetchone()
        if not row or not row["password_hash"] or not verify_password(req.password, row["password_hash"]):
            print("[LOGIN] Invalid credentials")
            raise ApiError(ErrorCode.UNAUTHORIZED, "Invalid credentials")
        cur.execute("SELECT 1 FROM user_roles WHERE user_id = ? AND role = 'admin'", (row["id"],))
        is_admin = cur.fetchone() is not None
    finally:
        conn.close()

    print(f"[LOGIN] Login successful: user_id={row['id']}")
    return ok({
        "access_token": create_access_token(row["id"], row["email"]),
        "token_type": "bearer",
        "user": {"id": row["id"], "email": row["email"], "full_name": row["full_name"], "is_admin": is_admin},
    })


@app.get("/auth/me")
def me(ctx: AuthContext = Depends(require_auth_context)):
    return ok(ctx.dict())


@app.get("/users/{user_id}/role")
def user_role(user_id: int, ctx: AuthContext = Depends(require_auth_context)):
    """A user's global role; callers may read their own, admins may read anyone's."""
    if user_id != ctx.user_id and not ctx.is_admin:
        raise ApiError(ErrorCode.FORBIDDEN, "Access denied")
    conn = get_db()
    try:
        cur = conn.cursor()
        cur.execute("SELECT role FROM user_roles WHERE user_id = ?", (user_id,))
        roles = {row["role"] for row in cur.fetchall()}
    except sqlite3.Error as e:
        print(f"[AUTH] DB error on role lookup: {e}")
        raise translate_db_error(e, ErrorCode.FETCH_ERROR, "Failed to get user role")
    finally:
        conn.close()
    # admin outranks user; no row at all reports null
    role = "admin" if "admin" in roles else ("user" if "user" in roles else None)
    return ok({"userId": user_id, "role": role})
