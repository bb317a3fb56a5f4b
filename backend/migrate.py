# backend/migrate.py
# Idempotent SQLite schema for the project workspace
# Run: python -m backend.migrate

import sqlite3

from backend.db import get_db, db_path


SCHEMA = [
    # ---------------------------------------------------------
    # Identity
    # ---------------------------------------------------------
    """
    CREATE TABLE IF NOT EXISTS users (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        email TEXT UNIQUE NOT NULL,
        password_hash TEXT,
        full_name TEXT,
        created_at TEXT DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS user_roles (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        role TEXT NOT NULL CHECK (role IN ('admin', 'user')),
        created_at TEXT DEFAULT CURRENT_TIMESTAMP,
        UNIQUE (user_id, role)
    )
    """,
    # ---------------------------------------------------------
    # Projects + access
    # ---------------------------------------------------------
    """
    CREATE TABLE IF NOT EXISTS departments (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT UNIQUE NOT NULL,
        created_at TEXT,
        updated_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS projects (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        description TEXT,
        status TEXT DEFAULT 'planning',
        priority TEXT DEFAULT 'medium',
        start_date TEXT,
        end_date TEXT,
        department_id INTEGER REFERENCES departments(id),
        created_by INTEGER NOT NULL REFERENCES users(id),
        created_at TEXT,
        updated_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS project_members (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        project_id INTEGER NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
        user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        role TEXT DEFAULT 'member',
        joined_at TEXT,
        UNIQUE (project_id, user_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS module_permissions (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        project_id INTEGER NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
        user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        module TEXT NOT NULL,
        access_level TEXT NOT NULL DEFAULT 'read' CHECK (access_level IN ('read', 'write')),
        granted_by INTEGER NOT NULL REFERENCES users(id),
        created_at TEXT,
        updated_at TEXT,
        UNIQUE (project_id, user_id, module)
    )
    """,
    # ---------------------------------------------------------
    # Roadmap, tasks, risks, stakeholders, discussions, backlog
    # ---------------------------------------------------------
    """
    CREATE TABLE IF NOT EXISTS milestones (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        project_id INTEGER NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
        name TEXT NOT NULL,
        description TEXT,
        due_date TEXT NOT NULL,
        status TEXT DEFAULT 'planning',
        created_by INTEGER NOT NULL REFERENCES users(id),
        created_at TEXT,
        updated_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS tasks (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        project_id INTEGER NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
        milestone_id INTEGER REFERENCES milestones(id) ON DELETE SET NULL,
        title TEXT NOT NULL,
        description TEXT,
        status TEXT DEFAULT 'todo',
        priority TEXT DEFAULT 'medium',
        due_date TEXT,
        owner_id INTEGER REFERENCES users(id) ON DELETE SET NULL,
        created_by INTEGER NOT NULL REFERENCES users(id),
        created_at TEXT,
        updated_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS task_status_history (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        task_id INTEGER NOT NULL REFERENCES tasks(id) ON DELETE CASCADE,
        old_status TEXT,
        new_status TEXT NOT NULL,
        changed_by INTEGER NOT NULL REFERENCES users(id),
        notes TEXT,
        changed_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS risk_register (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        project_id INTEGER NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
        risk_code TEXT NOT NULL,
        title TEXT NOT NULL,
        description TEXT,
        category TEXT,
        cause TEXT,
        consequence TEXT,
        owner TEXT,
        likelihood INTEGER CHECK (likelihood BETWEEN 1 AND 5),
        impact INTEGER CHECK (impact BETWEEN 1 AND 5),
        risk_score INTEGER,
        response_strategy TEXT,
        mitigation_plan TEXT,
        contingency_plan TEXT,
        status TEXT DEFAULT 'open',
        identified_date TEXT,
        last_updated TEXT,
        next_review_date TEXT,
        residual_likelihood INTEGER CHECK (residual_likelihood BETWEEN 1 AND 5),
        residual_impact INTEGER CHECK (residual_impact BETWEEN 1 AND 5),
        residual_risk_score INTEGER,
        notes TEXT,
        created_by INTEGER NOT NULL REFERENCES users(id),
        created_at TEXT,
        updated_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS stakeholders (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        project_id INTEGER NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
        name TEXT NOT NULL,
        email TEXT,
        department TEXT,
        raci TEXT,
        influence_level TEXT,
        notes TEXT,
        created_by INTEGER NOT NULL REFERENCES users(id),
        created_at TEXT,
        updated_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS project_discussions (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        project_id INTEGER NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
        meeting_title TEXT NOT NULL,
        meeting_date TEXT NOT NULL,
        attendees TEXT DEFAULT '[]',
        summary_notes TEXT,
        created_by INTEGER NOT NULL REFERENCES users(id),
        created_at TEXT,
        updated_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS discussion_action_items (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        discussion_id INTEGER NOT NULL REFERENCES project_discussions(id) ON DELETE CASCADE,
        task_description TEXT NOT NULL,
        owner_id INTEGER REFERENCES users(id) ON DELETE SET NULL,
        target_date TEXT,
        status TEXT DEFAULT 'open',
        created_by INTEGER NOT NULL REFERENCES users(id),
        created_at TEXT,
        updated_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS task_backlog (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        project_id INTEGER NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
        title TEXT NOT NULL,
        description TEXT,
        priority TEXT DEFAULT 'medium',
        status TEXT DEFAULT 'backlog',
        owner_id INTEGER REFERENCES users(id) ON DELETE SET NULL,
        target_date TEXT,
        source_type TEXT DEFAULT 'manual',
        source_id INTEGER,
        created_by INTEGER NOT NULL REFERENCES users(id),
        created_at TEXT,
        updated_at TEXT
    )
    """,
    # ---------------------------------------------------------
    # Capacity
    # ---------------------------------------------------------
    """
    CREATE TABLE IF NOT EXISTS teams (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        project_id INTEGER NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
        name TEXT NOT NULL,
        description TEXT,
        created_by INTEGER NOT NULL REFERENCES users(id),
        created_at TEXT,
        updated_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS team_members (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        team_id INTEGER NOT NULL REFERENCES teams(id) ON DELETE CASCADE,
        member_name TEXT NOT NULL,
        role TEXT,
        email TEXT,
        work_mode TEXT DEFAULT 'office' CHECK (work_mode IN ('office', 'wfh', 'hybrid')),
        default_availability_percent INTEGER DEFAULT 100
            CHECK (default_availability_percent BETWEEN 0 AND 100),
        created_by INTEGER NOT NULL REFERENCES users(id),
        created_at TEXT,
        updated_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS capacity_iterations (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        project_id INTEGER NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
        team_id INTEGER REFERENCES teams(id) ON DELETE SET NULL,
        iteration_name TEXT NOT NULL,
        start_date TEXT NOT NULL,
        end_date TEXT NOT NULL,
        working_days INTEGER NOT NULL,
        committed_story_points INTEGER DEFAULT 0,
        weeks_count INTEGER NOT NULL DEFAULT 1,
        created_by INTEGER NOT NULL REFERENCES users(id),
        created_at TEXT,
        updated_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS iteration_weeks (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        iteration_id INTEGER NOT NULL REFERENCES capacity_iterations(id) ON DELETE CASCADE,
        week_index INTEGER NOT NULL,
        week_start TEXT NOT NULL,
        week_end TEXT NOT NULL,
        UNIQUE (iteration_id, week_index)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS capacity_members (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        iteration_id INTEGER NOT NULL REFERENCES capacity_iterations(id) ON DELETE CASCADE,
        team_member_id INTEGER REFERENCES team_members(id) ON DELETE SET NULL,
        member_name TEXT NOT NULL,
        role TEXT NOT NULL,
        work_mode TEXT DEFAULT 'office',
        leaves INTEGER DEFAULT 0,
        availability_percent INTEGER DEFAULT 100 CHECK (availability_percent BETWEEN 0 AND 100),
        effective_capacity_days REAL DEFAULT 0,
        created_by INTEGER NOT NULL REFERENCES users(id),
        created_at TEXT,
        updated_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS weekly_availability (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        iteration_week_id INTEGER NOT NULL REFERENCES iteration_weeks(id) ON DELETE CASCADE,
        team_member_id INTEGER NOT NULL REFERENCES team_members(id) ON DELETE CASCADE,
        availability_percent INTEGER DEFAULT 100 CHECK (availability_percent BETWEEN 0 AND 100),
        leaves INTEGER DEFAULT 0,
        effective_capacity REAL DEFAULT 0,
        notes TEXT,
        updated_at TEXT,
        UNIQUE (iteration_week_id, team_member_id)
    )
    """,
    # ---------------------------------------------------------
    # Retrospectives
    # ---------------------------------------------------------
    """
    CREATE TABLE IF NOT EXISTS retrospectives (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        project_id INTEGER NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
        iteration_id INTEGER REFERENCES capacity_iterations(id) ON DELETE SET NULL,
        framework TEXT DEFAULT 'classic',
        status TEXT DEFAULT 'active',
        created_by INTEGER NOT NULL REFERENCES users(id),
        created_at TEXT,
        updated_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS retrospective_columns (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        retrospective_id INTEGER NOT NULL REFERENCES retrospectives(id) ON DELETE CASCADE,
        title TEXT NOT NULL,
        subtitle TEXT,
        column_order INTEGER DEFAULT 0,
        created_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS retrospective_cards (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        column_id INTEGER NOT NULL REFERENCES retrospective_columns(id) ON DELETE CASCADE,
        text TEXT NOT NULL,
        votes INTEGER NOT NULL DEFAULT 0,
        card_order INTEGER DEFAULT 0,
        created_by INTEGER NOT NULL REFERENCES users(id),
        created_at TEXT,
        updated_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS retrospective_card_votes (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        card_id INTEGER NOT NULL REFERENCES retrospective_cards(id) ON DELETE CASCADE,
        user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        created_at TEXT,
        UNIQUE (card_id, user_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS retrospective_action_items (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        retrospective_id INTEGER NOT NULL REFERENCES retrospectives(id) ON DELETE CASCADE,
        from_card_id INTEGER REFERENCES retrospective_cards(id) ON DELETE SET NULL,
        what_task TEXT NOT NULL,
        how_approach TEXT,
        who_responsible TEXT,
        when_sprint TEXT,
        backlog_ref_id TEXT,
        backlog_status TEXT DEFAULT 'Open',
        converted_to_task INTEGER DEFAULT 0,
        created_by INTEGER NOT NULL REFERENCES users(id),
        created_at TEXT,
        updated_at TEXT
    )
    """,
    # ---------------------------------------------------------
    # Budget
    # ---------------------------------------------------------
    """
    CREATE TABLE IF NOT EXISTS budget_type_config (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        code TEXT UNIQUE NOT NULL,
        label TEXT NOT NULL,
        description TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS project_budgets (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        project_id INTEGER NOT NULL UNIQUE REFERENCES projects(id) ON DELETE CASCADE,
        currency TEXT DEFAULT 'INR',
        total_budget_allocated REAL DEFAULT 0,
        total_budget_received REAL DEFAULT 0,
        created_by INTEGER NOT NULL REFERENCES users(id),
        created_at TEXT,
        updated_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS budget_categories (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        project_budget_id INTEGER NOT NULL REFERENCES project_budgets(id) ON DELETE CASCADE,
        budget_type_code TEXT NOT NULL REFERENCES budget_type_config(code),
        name TEXT NOT NULL,
        budget_allocated REAL DEFAULT 0,
        amount_spent REAL DEFAULT 0,
        created_at TEXT,
        updated_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS budget_spending (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        budget_category_id INTEGER NOT NULL REFERENCES budget_categories(id) ON DELETE CASCADE,
        date TEXT NOT NULL,
        vendor TEXT,
        description TEXT,
        amount REAL NOT NULL CHECK (amount > 0),
        status TEXT DEFAULT 'pending',
        created_by INTEGER NOT NULL REFERENCES users(id),
        created_at TEXT
    )
    """,
    # ---------------------------------------------------------
    # Audit
    # ---------------------------------------------------------
    """
    CREATE TABLE IF NOT EXISTS audit_log (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        project_id INTEGER NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
        user_id INTEGER NOT NULL REFERENCES users(id),
        module TEXT NOT NULL,
        action TEXT NOT NULL,
        entity_type TEXT NOT NULL,
        entity_id INTEGER,
        old_values TEXT,
        new_values TEXT,
        description TEXT,
        created_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS module_access_audit (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        project_id INTEGER NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
        user_id INTEGER NOT NULL REFERENCES users(id),
        module TEXT NOT NULL,
        access_type TEXT DEFAULT 'view',
        accessed_at TEXT
    )
    """,
]

INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_projects_created_by ON projects(created_by)",
    "CREATE INDEX IF NOT EXISTS idx_module_permissions_project_user ON module_permissions(project_id, user_id)",
    "CREATE INDEX IF NOT EXISTS idx_milestones_project ON milestones(project_id)",
    "CREATE INDEX IF NOT EXISTS idx_tasks_project ON tasks(project_id)",
    "CREATE INDEX IF NOT EXISTS idx_tasks_milestone ON tasks(milestone_id)",
    "CREATE INDEX IF NOT EXISTS idx_risks_project ON risk_register(project_id)",
    "CREATE INDEX IF NOT EXISTS idx_stakeholders_project ON stakeholders(project_id)",
    "CREATE INDEX IF NOT EXISTS idx_discussions_project ON project_discussions(project_id)",
    "CREATE INDEX IF NOT EXISTS idx_backlog_project ON task_backlog(project_id)",
    "CREATE INDEX IF NOT EXISTS idx_teams_project ON teams(project_id)",
    "CREATE INDEX IF NOT EXISTS idx_iterations_project ON capacity_iterations(project_id)",
    "CREATE INDEX IF NOT EXISTS idx_retros_project ON retrospectives(project_id)",
    "CREATE INDEX IF NOT EXISTS idx_cards_column ON retrospective_cards(column_id)",
    "CREATE INDEX IF NOT EXISTS idx_audit_project_created ON audit_log(project_id, created_at)",
]

BUDGET_TYPES = [
    ("CAPEX", "Capital Expenditure", "Long-term asset investments"),
    ("OPEX", "Operational Expenditure", "Day-to-day operating costs"),
]


# Columns added after the first release; CREATE TABLE IF NOT EXISTS leaves older files without them
ADDED_COLUMNS = [
    ("projects", "department_id", "INTEGER REFERENCES departments(id)"),
]


def ensure_column(cur: sqlite3.Cursor, table: str, column: str, ddl: str) -> None:
    """Add column to an existing table if missing (idempotent)."""
    cur.execute(f"PRAGMA table_info({table})")
    if column not in {row[1] for row in cur.fetchall()}:
        cur.execute(f"ALTER TABLE {table} ADD COLUMN {column} {ddl}")
        print(f"[MIGRATE] Added column {table}.{column}")


def run_migrations(conn: sqlite3.Connection = None) -> None:
    """
    Create tables, indexes and reference rows if missing.
    Safe to run multiple times.
    """
    own_conn = conn is None
    if own_conn:
        conn = get_db()
    try:
        cur = conn.cursor()
        for ddl in SCHEMA:
            cur.execute(ddl)
        for table, column, ddl in ADDED_COLUMNS:
            ensure_column(cur, table, column, ddl)
        for ddl in INDEXES:
            cur.execute(ddl)
        cur.executemany(
            "INSERT OR IGNORE INTO budget_type_config (code, label, description) VALUES (?, ?, ?)",
            BUDGET_TYPES,
        )
        conn.commit()
        print(f"[MIGRATE] Schema ready: {len(SCHEMA)} tables, {len(INDEXES)} indexes")
    finally:
        if own_conn:
            conn.close()


if __name__ == "__main__":
    print(f"[MIGRATE] Database: {db_path()}")
    run_migrations()
