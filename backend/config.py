# backend/config.py
# Environment-aware configuration for the project workspace backend

import os
from typing import Literal

# Environment detection
ENV: Literal["dev", "staging", "prod"] = os.environ.get("ENV", "dev")  # type: ignore
IS_DEV = (ENV == "dev")
IS_STAGING = (ENV == "staging")
IS_PROD = (ENV == "prod")

# JWT configuration
SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")
ALGORITHM = "HS256"

# Token lifetime
ACCESS_TOKEN_MINUTES = int(os.environ.get("ACCESS_TOKEN_MINUTES", "60"))

# Database configuration (relative paths resolve against backend/)
DATABASE_PATH = os.environ.get("DATABASE_PATH", "workspace.db")

# CORS origins (expand for staging/prod)
CORS_ORIGINS = [
    "http://localhost:5173",  # Vite dev server
    "http://127.0.0.1:5173",
]

if IS_STAGING or IS_PROD:
    extra_origins = os.environ.get("CORS_ORIGINS", "")
    if extra_origins:
        CORS_ORIGINS.extend(o.strip() for o in extra_origins.split(",") if o.strip())

# Analytics tuning
ANALYTICS_MAX_WORKERS = int(os.environ.get("ANALYTICS_MAX_WORKERS", "8"))
HIGH_RISK_THRESHOLD = int(os.environ.get("HIGH_RISK_THRESHOLD", "9"))
TEAM_HEALTH_WITH_MEMBERS = int(os.environ.get("TEAM_HEALTH_WITH_MEMBERS", "85"))

# "optimistic": a health sub-score with no data counts as 100
# "exclude": it is reported as null and left out of the overall mean
HEALTH_EMPTY_POLICY: Literal["optimistic", "exclude"] = os.environ.get(  # type: ignore
    "HEALTH_EMPTY_POLICY", "optimistic"
)
if HEALTH_EMPTY_POLICY not in ("optimistic", "exclude"):
    raise ValueError(f"Invalid HEALTH_EMPTY_POLICY: {HEALTH_EMPTY_POLICY!r}")

print(f"[CONFIG] Environment: {ENV}")
print(f"[CONFIG] Database: SQLite ({DATABASE_PATH})")
print(f"[CONFIG] Access token: {ACCESS_TOKEN_MINUTES} minutes")
print(f"[CONFIG] Health empty-data policy: {HEALTH_EMPTY_POLICY}")
