# backend/audit.py
# Audit trail writers. The acting user is always passed in by the caller.

import sqlite3
from enum import Enum
from typing import Any, Optional

from backend.db import dump_json, now_iso
from backend.models import ModuleName


def record_audit(
    cur: sqlite3.Cursor,
    user_id: int,
    project_id: int,
    module: ModuleName,
    action: str,
    entity_type: str,
    entity_id: Optional[int] = None,
    old_values: Optional[dict] = None,
    new_values: Optional[dict] = None,
    description: Optional[str] = None,
) -> int:
    """Append an audit_log row on the caller's cursor (same transaction as the change)."""
    cur.execute(
        """
        INSERT INTO audit_log (
            project_id, user_id, module, action, entity_type, entity_id,
            old_values, new_values, description, created_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            project_id,
            user_id,
            ModuleName(module).value,
            action,
            entity_type,
            entity_id,
            dump_json(_jsonable(old_values)),
            dump_json(_jsonable(new_values)),
            description,
            now_iso(),
        ),
    )
    return cur.lastrowid


def record_module_access(
    cur: sqlite3.Cursor,
    user_id: int,
    project_id: int,
    module: ModuleName,
    access_type: str = "view",
) -> int:
    cur.execute(
        """
        INSERT INTO module_access_audit (project_id, user_id, module, access_type, accessed_at)
        VALUES (?, ?, ?, ?, ?)
        """,
        (project_id, user_id, ModuleName(module).value, access_type, now_iso()),
    )
    return cur.lastrowid


def _jsonable(values: Optional[dict]) -> Any:
    if values is None:
        return None
    out = {}
    for key, value in values.items():
        if isinstance(value, Enum):
            value = value.value
        elif not isinstance(value, (int, float, str, bool, list, dict, type(None))):
            # dates and decimals
            value = str(value)
        out[key] = value
    return out
