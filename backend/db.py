# backend/db.py
# SQLite connection helpers, transaction scope and row conversion

import json
import sqlite3
from contextlib import contextmanager
from datetime import date, datetime
from enum import Enum
from pathlib import Path as FsPath
from typing import Any, Dict, Generator, Iterable, List, Optional, Tuple

from backend.config import DATABASE_PATH


def db_path() -> str:
    """Absolute path of the SQLite file (relative DATABASE_PATH resolves against backend/)."""
    return str(FsPath(__file__).resolve().parent / DATABASE_PATH)


def get_db() -> sqlite3.Connection:
    """
    Create and return a SQLite connection with Row factory.
    Foreign keys are enforced per connection (SQLite default is off).
    """
    conn = sqlite3.connect(db_path())
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


@contextmanager
def transaction(conn: sqlite3.Connection) -> Generator[sqlite3.Cursor, None, None]:
    """
    Run a block of statements atomically.

    Commits when the block exits normally, rolls back on any exception and
    re-raises it. The connection stays open; the caller owns closing it.

    Usage:
        with transaction(conn) as cur:
            cur.execute("INSERT ...")
            cur.execute("UPDATE ...")
    """
    cur = conn.cursor()
    try:
        yield cur
        conn.commit()
    except BaseException:
        conn.rollback()
        raise


# ---------------------------------------------------------
# Row Conversion Helpers
# ---------------------------------------------------------
def row_to_dict(row) -> dict:
    """
    Convert a sqlite3.Row to dict ({} for None).
    Use this whenever you need .get() behavior on a row.
    """
    if row is None:
        return {}
    return dict(row)


def rows_to_dicts(rows: Iterable) -> List[dict]:
    return [dict(r) for r in rows]


def dump_json(value: Any) -> Optional[str]:
    if value is None:
        return None
    return json.dumps(value)


def load_json(raw: Optional[str], default: Any = None) -> Any:
    """Parse a JSON column, falling back to default on empty or corrupt values."""
    if not raw:
        return default
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        return default


def db_value(value: Any) -> Any:
    """Adapt a request value for a SQLite column (enums, dates, JSON lists)."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, (list, dict)):
        return json.dumps(value)
    return value


def build_update(changes: Dict[str, Any]) -> Tuple[str, List[Any]]:
    """
    SET clause + params for a partial update.
    Only keys present in changes are touched (patch semantics).
    Column names come from schema field names, never from raw client keys.
    """
    columns = [f"{column} = ?" for column in changes]
    params = [db_value(v) for v in changes.values()]
    return ", ".join(columns), params


def now_iso() -> str:
    return datetime.utcnow().isoformat() + "Z"


def today_iso() -> str:
    return date.today().isoformat()
