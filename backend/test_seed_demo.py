"""
Demo seed tests: the script builds a consistent workspace and re-runs cleanly.

Run: pytest backend/test_seed_demo.py -v
"""

from backend import seed_demo
from backend.db import get_db


def scalar(sql, params=()):
    conn = get_db()
    try:
        return conn.execute(sql, params).fetchone()[0]
    finally:
        conn.close()


def test_seed_is_repeatable():
    assert seed_demo.main([]) == 0
    assert seed_demo.main([]) == 0
    assert scalar("SELECT COUNT(*) FROM projects WHERE name = ?", ("A320neo Avionics Upgrade",)) == 1
    assert scalar("SELECT COUNT(*) FROM users WHERE email LIKE '%@demo.local'") == 3


def test_seeded_data_matches_derived_rules():
    seed_demo.main([])
    # Stored risk scores equal likelihood x impact
    assert scalar("SELECT COUNT(*) FROM risk_register WHERE risk_score != likelihood * impact") == 0
    # Card tallies equal their vote rows
    assert scalar(
        """
        SELECT COUNT(*) FROM retrospective_cards c
        WHERE c.votes != (SELECT COUNT(*) FROM retrospective_card_votes v WHERE v.card_id = c.id)
        """
    ) == 0
    assert scalar(
        """
        SELECT COUNT(*) FROM budget_categories bc
        WHERE bc.amount_spent != (SELECT COALESCE(SUM(amount), 0) FROM budget_spending s
                                  WHERE s.budget_category_id = bc.id)
        """
    ) == 0


def test_seeded_admin_and_login(client):
    seed_demo.main([])
    response = client.post("/auth/login", json={"email": "admin@demo.local", "password": seed_demo.DEMO_PASSWORD})
    assert response.status_code == 200, response.text
    token = response.json()["data"]["access_token"]
    me = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"}).json()["data"]
    assert me["is_admin"] is True


def test_purge_only():
    seed_demo.main([])
    assert seed_demo.main(["--purge-only"]) == 0
    assert scalar("SELECT COUNT(*) FROM users WHERE email LIKE '%@demo.local'") == 0
    assert scalar("SELECT COUNT(*) FROM projects WHERE name = ?", ("Ground Ops Dashboard",)) == 0


def test_viewer_grants_are_enforced(client):
    seed_demo.main([])
    project_id = scalar("SELECT id FROM projects WHERE name = ?", ("A320neo Avionics Upgrade",))
    login = client.post("/auth/login", json={"email": "viewer@demo.local", "password": seed_demo.DEMO_PASSWORD})
    headers = {"Authorization": f"Bearer {login.json()['data']['access_token']}"}

    tasks = client.get(f"/projects/{project_id}/tasks", headers=headers)
    assert tasks.status_code == 200
    assert len(tasks.json()["data"]) == 6
    assert client.get(f"/projects/{project_id}/budget", headers=headers).status_code == 403
