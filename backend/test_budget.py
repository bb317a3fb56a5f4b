"""
Budget management tests: one budget per project, typed categories and the
spending rollup.

Run: pytest backend/test_budget.py -v
"""

import pytest


@pytest.fixture
def budget(client, owner, project):
    response = client.post(
        f"/projects/{project['id']}/budget",
        json={"currency": "usd", "total_budget_allocated": 50000},
        headers=owner["headers"],
    )
    assert response.status_code == 200, response.text
    return response.json()["data"]


@pytest.fixture
def category(client, owner, project, budget):
    response = client.post(
        f"/projects/{project['id']}/categories",
        json={"budget_type_code": "capex", "name": "Test rigs", "budget_allocated": 20000},
        headers=owner["headers"],
    )
    assert response.status_code == 200, response.text
    return response.json()["data"]


def test_budget_types_seeded(client, owner):
    codes = [t["code"] for t in client.get("/budget-types", headers=owner["headers"]).json()["data"]]
    assert codes == ["CAPEX", "OPEX"]


def test_no_budget_yet(client, owner, project):
    response = client.get(f"/projects/{project['id']}/budget", headers=owner["headers"])
    assert response.status_code == 200
    assert response.json()["data"] == {"budget": None, "categories": []}


def test_budget_upsert_keeps_one_row(client, owner, project, budget):
    assert budget["currency"] == "USD"
    again = client.post(
        f"/projects/{project['id']}/budget",
        json={"currency": "USD", "total_budget_allocated": 75000},
        headers=owner["headers"],
    ).json()["data"]
    assert again["id"] == budget["id"]
    assert again["total_budget_allocated"] == 75000


def test_category_requires_budget(client, owner, project):
    response = client.post(
        f"/projects/{project['id']}/categories",
        json={"budget_type_code": "OPEX", "name": "Travel"},
        headers=owner["headers"],
    )
    assert response.status_code == 404


def test_category_rejects_unknown_type(client, owner, project, budget):
    response = client.post(
        f"/projects/{project['id']}/categories",
        json={"budget_type_code": "MISC", "name": "Other"},
        headers=owner["headers"],
    )
    assert response.status_code == 400
    assert response.json()["code"] == "VALIDATION_ERROR"


def test_spending_rolls_up(client, owner, project, category):
    assert category["budget_type_code"] == "CAPEX"
    first = client.post(
        f"/categories/{category['id']}/spending",
        json={"date": "2025-02-01", "amount": 1200.5, "vendor": "RigCo"},
        headers=owner["headers"],
    )
    assert first.status_code == 200, first.text
    assert first.json()["data"]["category"]["amount_spent"] == 1200.5

    second = client.post(
        f"/categories/{category['id']}/spending",
        json={"date": "2025-02-03", "amount": 799.5},
        headers=owner["headers"],
    ).json()["data"]
    assert second["category"]["amount_spent"] == 2000.0
    assert second["spending"]["status"] == "pending"

    summary = client.get(f"/projects/{project['id']}/budget", headers=owner["headers"]).json()["data"]
    assert summary["categories"][0]["spent_total"] == 2000.0
    assert summary["totals"] == {"allocated": 20000.0, "spent": 2000.0}
    assert [s["date"] for s in summary["categories"][0]["spending"]] == ["2025-02-03", "2025-02-01"]


def test_spending_amount_must_be_positive(client, owner, category):
    response = client.post(
        f"/categories/{category['id']}/spending",
        json={"date": "2025-02-01", "amount": 0},
        headers=owner["headers"],
    )
    assert response.status_code == 400
    assert response.json()["code"] == "VALIDATION_ERROR"


def test_spending_needs_budget_write(client, outsider, category, grant):
    grant(outsider, "budget_management", "read")
    response = client.post(
        f"/categories/{category['id']}/spending",
        json={"date": "2025-02-01", "amount": 10},
        headers=outsider["headers"],
    )
    assert response.status_code == 403
