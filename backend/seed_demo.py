#!/usr/bin/env python3
"""
Seed a demo workspace for local development.

Creates three users (one admin) and two projects. The first carries the
full set of modules (roadmap, risks, stakeholders, backlog, capacity,
retrospective board with votes, budget); the second only a roadmap and
risks. The viewer gets read access to a few modules on each.

DEV-ONLY: refuses to run unless ENV=dev.

Run:
    python -m backend.seed_demo
    python -m backend.seed_demo --purge-only
"""

import argparse
import json
import sys
from datetime import date, timedelta

from backend.auth_context import hash_password
from backend.config import IS_DEV
from backend.db import db_path, get_db, now_iso, today_iso, transaction
from backend.migrate import run_migrations
from backend.routes_capacity import effective_capacity, generate_weeks

DEMO_PASSWORD = "demo12345"
DEMO_USERS = [
    ("admin@demo.local", "Dana Admin", True),
    ("owner@demo.local", "Omar Owner", False),
    ("viewer@demo.local", "Vera Viewer", False),
]
DEMO_PROJECTS = [
    ("A320neo Avionics Upgrade", "Flight management and display unit refresh", "active", "high"),
    ("Ground Ops Dashboard", "Turnaround tracking for line maintenance", "planning", "medium"),
]

# Child tables first; the rest goes with the ON DELETE CASCADE from projects
PURGE_ORDER = [
    "module_access_audit",
    "audit_log",
    "projects",
]


def purge(cur):
    cur.execute("SELECT id FROM users WHERE email IN ({})".format(",".join("?" * len(DEMO_USERS))),
                [u[0] for u in DEMO_USERS])
    user_ids = [row["id"] for row in cur.fetchall()]
    if not user_ids:
        print("[SEED] Nothing to purge")
        return
    marks = ",".join("?" * len(user_ids))
    for table in PURGE_ORDER:
        column = "created_by" if table == "projects" else "user_id"
        cur.execute(f"DELETE FROM {table} WHERE {column} IN ({marks})", user_ids)
        print(f"[SEED] Purged {cur.rowcount} rows from {table}")
    cur.execute(f"DELETE FROM users WHERE id IN ({marks})", user_ids)
    print(f"[SEED] Purged {cur.rowcount} demo users")


def create_users(cur):
    ids = {}
    for email, full_name, is_admin in DEMO_USERS:
        cur.execute(
            "INSERT INTO users (email, password_hash, full_name, created_at) VALUES (?, ?, ?, ?)",
            (email, hash_password(DEMO_PASSWORD), full_name, now_iso()),
        )
        ids[email] = cur.lastrowid
        if is_admin:
            cur.execute("INSERT INTO user_roles (user_id, role) VALUES (?, 'admin')", (cur.lastrowid,))
        print(f"[SEED] User {email} id={ids[email]}{' (admin)' if is_admin else ''}")
    return ids


def create_project(cur, details, owner_id, viewer_id):
    name, description, status, priority = details
    ts = now_iso()
    start = date.today()
    cur.execute(
        """
        INSERT INTO projects (name, description, status, priority, start_date, end_date,
                              created_by, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (name, description, status, priority, start.isoformat(),
         (start + timedelta(days=180)).isoformat(), owner_id, ts, ts),
    )
    project_id = cur.lastrowid
    cur.executemany(
        "INSERT INTO project_members (project_id, user_id, role, joined_at) VALUES (?, ?, ?, ?)",
        [(project_id, owner_id, "owner", ts), (project_id, viewer_id, "member", ts)],
    )
    cur.executemany(
        """
        INSERT INTO module_permissions (project_id, user_id, module, access_level, granted_by,
                                        created_at, updated_at)
        VALUES (?, ?, ?, 'read', ?, ?, ?)
        """,
        [(project_id, viewer_id, module, owner_id, ts, ts)
         for module in ("overview", "roadmap", "tasks_milestones", "risk_register")],
    )
    print(f"[SEED] Project '{name}' id={project_id}")
    return project_id


def create_roadmap(cur, project_id, owner_id):
    ts = now_iso()
    today = date.today()
    plan = [
        ("Requirements baseline", -20, "completed", [("Collect pilot feedback", "completed"),
                                                       ("Freeze interface spec", "completed")]),
        ("Design review", 25, "in_progress", [("Display layout mockups", "in_progress"),
                                              ("FMS data model", "todo")]),
        ("Flight test", 90, "planning", [("Test rig booking", "blocked"),
                                         ("Certification evidence pack", "todo")]),
    ]
    task_count = 0
    for name, offset, status, tasks in plan:
        due = (today + timedelta(days=offset)).isoformat()
        cur.execute(
            """
            INSERT INTO milestones (project_id, name, due_date, status, created_by, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (project_id, name, due, status, owner_id, ts, ts),
        )
        milestone_id = cur.lastrowid
        for title, task_status in tasks:
            cur.execute(
                """
                INSERT INTO tasks (project_id, milestone_id, title, status, priority, due_date,
                                   owner_id, created_by, created_at, updated_at)
                VALUES (?, ?, ?, ?, 'medium', ?, ?, ?, ?, ?)
                """,
                (project_id, milestone_id, title, task_status, due, owner_id, owner_id, ts, ts),
            )
            cur.execute(
                "INSERT INTO task_status_history (task_id, old_status, new_status, changed_by, changed_at) "
                "VALUES (?, NULL, ?, ?, ?)",
                (cur.lastrowid, task_status, owner_id, ts),
            )
            task_count += 1
    print(f"[SEED] Roadmap: {len(plan)} milestones, {task_count} tasks")


def create_risks(cur, project_id, owner_id):
    ts = now_iso()
    risks = [
        ("R-001", "Supplier delay on display units", "Supply", 4, 4,
         ["Qualify second supplier", "Weekly vendor calls"]),
        ("R-002", "DO-178C evidence gaps", "Compliance", 3, 5, ["Early audit with DER"]),
        ("R-003", "Test rig availability", "Resources", 2, 3, []),
    ]
    for code, title, category, likelihood, impact, plan in risks:
        cur.execute(
            """
            INSERT INTO risk_register (project_id, risk_code, title, category, likelihood, impact,
                                       risk_score, mitigation_plan, status, identified_date,
                                       created_by, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, 'open', ?, ?, ?, ?)
            """,
            (project_id, code, title, category, likelihood, impact, likelihood * impact,
             json.dumps(plan), today_iso(), owner_id, ts, ts),
        )
    print(f"[SEED] Risks: {len(risks)}")


def create_people(cur, project_id, owner_id):
    ts = now_iso()
    cur.executemany(
        """
        INSERT INTO stakeholders (project_id, name, email, department, raci, influence_level,
                                  created_by, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        [
            (project_id, "Priya Nair", "priya@demo.local", "Engineering", "A", "high", owner_id, ts, ts),
            (project_id, "Tom Becker", "tom@demo.local", "Quality", "C", "medium", owner_id, ts, ts),
        ],
    )
    cur.execute(
        """
        INSERT INTO project_discussions (project_id, meeting_title, meeting_date, attendees,
                                         summary_notes, created_by, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (project_id, "Kickoff", today_iso(), json.dumps(["Priya Nair", "Tom Becker"]),
         "Agreed scope and review cadence", owner_id, ts, ts),
    )
    cur.execute(
        """
        INSERT INTO discussion_action_items (discussion_id, task_description, owner_id, target_date,
                                             status, created_by, created_at, updated_at)
        VALUES (?, ?, ?, ?, 'open', ?, ?, ?)
        """,
        (cur.lastrowid, "Circulate review calendar", owner_id,
         (date.today() + timedelta(days=7)).isoformat(), owner_id, ts, ts),
    )
    cur.executemany(
        """
        INSERT INTO task_backlog (project_id, title, priority, status, created_by, created_at, updated_at)
        VALUES (?, ?, ?, 'backlog', ?, ?, ?)
        """,
        [
            (project_id, "Night mode palette", "low", owner_id, ts, ts),
            (project_id, "Automate ARINC 429 regression", "high", owner_id, ts, ts),
        ],
    )
    print("[SEED] Stakeholders: 2, discussions: 1, backlog items: 2")


def create_capacity(cur, project_id, owner_id):
    ts = now_iso()
    cur.execute(
        "INSERT INTO teams (project_id, name, created_by, created_at, updated_at) VALUES (?, ?, ?, ?, ?)",
        (project_id, "Avionics", owner_id, ts, ts),
    )
    team_id = cur.lastrowid
    members = [("Asha Rao", "Lead", 100, 0), ("Ravi Kumar", "Engineer", 80, 2), ("Li Wei", "QA", 50, 1)]
    member_ids = []
    for name, role, percent, _ in members:
        cur.execute(
            """
            INSERT INTO team_members (team_id, member_name, role, default_availability_percent,
                                      created_by, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (team_id, name, role, percent, owner_id, ts, ts),
        )
        member_ids.append(cur.lastrowid)

    start = date.today()
    end = start + timedelta(days=13)
    weeks = generate_weeks(start, end)
    working_days = 10
    cur.execute(
        """
        INSERT INTO capacity_iterations (project_id, team_id, iteration_name, start_date, end_date,
                                         working_days, weeks_count, created_by, created_at, updated_at)
        VALUES (?, ?, 'Sprint 1', ?, ?, ?, ?, ?, ?, ?)
        """,
        (project_id, team_id, start.isoformat(), end.isoformat(), working_days, len(weeks), owner_id, ts, ts),
    )
    iteration_id = cur.lastrowid
    cur.executemany(
        "INSERT INTO iteration_weeks (iteration_id, week_index, week_start, week_end) VALUES (?, ?, ?, ?)",
        [(iteration_id, i, ws.isoformat(), we.isoformat()) for i, ws, we in weeks],
    )
    for member_id, (name, role, percent, leaves) in zip(member_ids, members):
        cur.execute(
            """
            INSERT INTO capacity_members (iteration_id, team_member_id, member_name, role, leaves,
                                          availability_percent, effective_capacity_days,
                                          created_by, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (iteration_id, member_id, name, role, leaves, percent,
             effective_capacity(working_days, leaves, percent), owner_id, ts, ts),
        )
    print(f"[SEED] Capacity: team id={team_id}, iteration id={iteration_id} ({len(weeks)} weeks)")
    return iteration_id


def create_retro(cur, project_id, iteration_id, user_ids):
    ts = now_iso()
    owner_id = user_ids[0]
    cur.execute(
        """
        INSERT INTO retrospectives (project_id, iteration_id, framework, status, created_by, created_at, updated_at)
        VALUES (?, ?, 'classic', 'active', ?, ?, ?)
        """,
        (project_id, iteration_id, owner_id, ts, ts),
    )
    retro_id = cur.lastrowid
    board = {
        "Went well": ["Pairing on FMS parser", "Fast design reviews"],
        "To improve": ["Flaky rig bookings"],
        "Action items": [],
    }
    first_card = None
    for order, (title, cards) in enumerate(board.items()):
        cur.execute(
            "INSERT INTO retrospective_columns (retrospective_id, title, column_order, created_at) "
            "VALUES (?, ?, ?, ?)",
            (retro_id, title, order, ts),
        )
        column_id = cur.lastrowid
        for card_order, text in enumerate(cards):
            cur.execute(
                "INSERT INTO retrospective_cards (column_id, text, votes, card_order, created_by, created_at, updated_at) "
                "VALUES (?, ?, 0, ?, ?, ?, ?)",
                (column_id, text, card_order, owner_id, ts, ts),
            )
            if title == "To improve" and first_card is None:
                first_card = cur.lastrowid

    # Vote tally mirrors the vote rows
    for user_id in user_ids:
        cur.execute("INSERT INTO retrospective_card_votes (card_id, user_id, created_at) VALUES (?, ?, ?)",
                    (first_card, user_id, ts))
    cur.execute("UPDATE retrospective_cards SET votes = ? WHERE id = ?", (len(user_ids), first_card))
    cur.execute(
        """
        INSERT INTO retrospective_action_items (retrospective_id, from_card_id, what_task, who_responsible,
                                                when_sprint, created_by, created_at, updated_at)
        VALUES (?, ?, ?, ?, 'Sprint 2', ?, ?, ?)
        """,
        (retro_id, first_card, "Book rigs two sprints ahead", "Asha Rao", owner_id, ts, ts),
    )
    print(f"[SEED] Retrospective id={retro_id}")


def create_budget(cur, project_id, owner_id):
    ts = now_iso()
    cur.execute(
        """
        INSERT INTO project_budgets (project_id, currency, total_budget_allocated, created_by, created_at, updated_at)
        VALUES (?, 'USD', 250000, ?, ?, ?)
        """,
        (project_id, owner_id, ts, ts),
    )
    budget_id = cur.lastrowid
    categories = [
        ("CAPEX", "Test rigs", 120000, [("Rig controller", 18500.0), ("Harness kits", 4200.0)]),
        ("OPEX", "Contractors", 90000, [("DER consultancy", 12000.0)]),
    ]
    for code, name, allocated, spend in categories:
        cur.execute(
            """
            INSERT INTO budget_categories (project_budget_id, budget_type_code, name, budget_allocated,
                                           amount_spent, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (budget_id, code, name, allocated, sum(a for _, a in spend), ts, ts),
        )
        category_id = cur.lastrowid
        cur.executemany(
            """
            INSERT INTO budget_spending (budget_category_id, date, description, amount, status, created_by, created_at)
            VALUES (?, ?, ?, ?, 'approved', ?, ?)
            """,
            [(category_id, today_iso(), desc, amount, owner_id, ts) for desc, amount in spend],
        )
    print(f"[SEED] Budget id={budget_id} with {len(categories)} categories")


def seed():
    conn = get_db()
    try:
        with transaction(conn) as cur:
            purge(cur)
            users = create_users(cur)
            owner_id = users["owner@demo.local"]
            viewer_id = users["viewer@demo.local"]
            project_id = create_project(cur, DEMO_PROJECTS[0], owner_id, viewer_id)
            create_roadmap(cur, project_id, owner_id)
            create_risks(cur, project_id, owner_id)
            create_people(cur, project_id, owner_id)
            iteration_id = create_capacity(cur, project_id, owner_id)
            create_retro(cur, project_id, iteration_id, [owner_id, viewer_id, users["admin@demo.local"]])
            create_budget(cur, project_id, owner_id)

            # Second project stays small: roadmap and risks only
            second_id = create_project(cur, DEMO_PROJECTS[1], owner_id, viewer_id)
            create_roadmap(cur, second_id, owner_id)
            create_risks(cur, second_id, owner_id)
    finally:
        conn.close()
    print(f"[SEED] Done. Log in with any demo user and password '{DEMO_PASSWORD}'")


def main(argv=None):
    parser = argparse.ArgumentParser(description="Seed demo data (dev only)")
    parser.add_argument("--purge-only", action="store_true", help="Remove demo users and their projects")
    args = parser.parse_args(argv)

    if not IS_DEV:
        print("[SEED] Refusing to seed outside ENV=dev")
        return 1

    print(f"[SEED] Database: {db_path()}")
    run_migrations()
    if args.purge_only:
        conn = get_db()
        try:
            with transaction(conn) as cur:
                purge(cur)
        finally:
            conn.close()
        return 0
    seed()
    return 0


if __name__ == "__main__":
    sys.exit(main())
