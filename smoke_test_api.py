"""
Smoke Test for the Project Workspace API - Module Access & Core Flows

Tests:
1. Register two users (owner and outsider)
2. Owner creates a project
3. Outsider gets 403 on the risk register
4. Owner grants the outsider read on risk_register
5. Outsider can read risks but gets 403 on create
6. Risk score is computed server-side (likelihood x impact)
7. Vote toggle on a retrospective card (add, then remove)
8. Project overview analytics

Run: python smoke_test_api.py [base_url]

Requirements:
- Backend running on localhost:8000 (uvicorn backend.main:app)
"""

import sys
import uuid
from typing import Any, Dict, Optional

import requests

BASE_URL = sys.argv[1].rstrip("/") if len(sys.argv) > 1 else "http://localhost:8000"


class TestResult:
    def __init__(self):
        self.passed = 0
        self.failed = 0
        self.tests = []

    def add_pass(self, name: str, detail: str = ""):
        self.passed += 1
        self.tests.append(("✅ PASS", name, detail))
        print(f"✅ PASS: {name}")
        if detail:
            print(f"  └─ {detail}")

    def add_fail(self, name: str, detail: str = ""):
        self.failed += 1
        self.tests.append(("❌ FAIL", name, detail))
        print(f"❌ FAIL: {name}")
        if detail:
            print(f"  └─ {detail}")

    def check(self, name: str, condition: bool, detail: str = ""):
        if condition:
            self.add_pass(name, detail)
        else:
            self.add_fail(name, detail)
        return condition

    def summary(self):
        print("\n" + "="*60)
        print(f"SMOKE TEST SUMMARY: {self.passed} passed, {self.failed} failed")
        print("="*60)
        return self.failed == 0


def section(title: str):
    print()
    print(f"📋 {title}")
    print("-"*60)


def auth(user: Dict[str, Any]) -> Dict[str, str]:
    return {"Authorization": f"Bearer {user['token']}"}


def register(label: str) -> Optional[Dict[str, Any]]:
    """Register a throwaway user and return id/email/token"""
    email = f"smoke_{label}_{uuid.uuid4().hex[:8]}@test.com"
    resp = requests.post(f"{BASE_URL}/auth/register", json={
        "email": email,
        "password": "password123",
        "full_name": f"Smoke {label.title()}",
    })
    if resp.status_code != 200:
        return None
    data = resp.json()["data"]
    return {"id": data["user"]["id"], "email": email, "token": data["access_token"]}


def main():
    result = TestResult()

    print("="*60)
    print("SMOKE TEST: Project Workspace - Module Access & Core Flows")
    print(f"Target: {BASE_URL}")
    print("="*60)

    section("TEST 1: Setup - Register owner and outsider")
    owner = register("owner")
    outsider = register("outsider")
    if not owner or not outsider:
        result.add_fail("Setup", "Failed to register test users")
        result.summary()
        return 1
    result.add_pass("Setup", f"owner id={owner['id']}, outsider id={outsider['id']}")

    section("TEST 2: Create project")
    resp = requests.post(f"{BASE_URL}/projects", json={"name": "Smoke Test Project"}, headers=auth(owner))
    if resp.status_code != 200:
        result.add_fail("Project Creation", f"Unexpected status {resp.status_code}: {resp.text}")
        result.summary()
        return 1
    project_id = resp.json()["data"]["id"]
    result.add_pass("Project Creation", f"project id={project_id}")
    risks_url = f"{BASE_URL}/projects/{project_id}/risks"

    section("TEST 3: Outsider denied without a grant")
    resp = requests.get(risks_url, headers=auth(outsider))
    result.check("Access Denied", resp.status_code == 403,
                 f"status={resp.status_code}, code={resp.json().get('code')}")

    section("TEST 4: Grant read on risk_register")
    resp = requests.post(
        f"{BASE_URL}/projects/{project_id}/access",
        json={"userId": outsider["id"], "module": "risk_register", "accessLevel": "read"},
        headers=auth(owner),
    )
    result.check("Grant Read", resp.status_code == 200, f"status={resp.status_code}")

    section("TEST 5: Read allowed, write denied")
    resp = requests.get(risks_url, headers=auth(outsider))
    result.check("Read With Grant", resp.status_code == 200, f"status={resp.status_code}")
    resp = requests.post(risks_url, json={"risk_code": "R-X", "title": "Nope", "likelihood": 1, "impact": 1},
                         headers=auth(outsider))
    result.check("Write Without Grant", resp.status_code == 403, f"status={resp.status_code}")

    section("TEST 6: Server-side risk score")
    resp = requests.post(
        risks_url,
        json={"risk_code": "R-1", "title": "Supplier delay", "likelihood": 3, "impact": 4, "risk_score": 25},
        headers=auth(owner),
    )
    score = resp.json().get("data", {}).get("risk_score") if resp.status_code == 200 else None
    result.check("Risk Score", score == 12, f"risk_score={score} (expected 12)")

    section("TEST 7: Retrospective vote toggle")
    resp = requests.post(f"{BASE_URL}/projects/{project_id}/retrospectives", json={"framework": "classic"},
                         headers=auth(owner))
    if resp.status_code == 200:
        column_id = resp.json()["data"]["columns"][0]["id"]
        card = requests.post(f"{BASE_URL}/columns/{column_id}/cards", json={"text": "Smoke card"},
                             headers=auth(owner)).json()["data"]
        first = requests.post(f"{BASE_URL}/cards/{card['id']}/vote", headers=auth(owner)).json()
        second = requests.post(f"{BASE_URL}/cards/{card['id']}/vote", headers=auth(owner)).json()
        result.check(
            "Vote Toggle",
            first.get("data", {}).get("votes") == 1 and second.get("data", {}).get("votes") == 0,
            f"after add={first.get('data', {}).get('votes')}, after remove={second.get('data', {}).get('votes')}",
        )
    else:
        result.add_fail("Vote Toggle Setup", f"Retrospective create returned {resp.status_code}")

    section("TEST 8: Project overview analytics")
    requests.post(f"{BASE_URL}/projects/{project_id}/tasks", json={"title": "Smoke task", "status": "completed"},
                  headers=auth(owner))
    resp = requests.get(f"{BASE_URL}/projects/{project_id}/analytics/project-overview", headers=auth(owner))
    if resp.status_code == 200:
        data = resp.json()["data"]
        result.check(
            "Analytics",
            data["taskAnalytics"]["completedTasks"] == 1 and data["riskAnalysis"]["totalRisks"] == 1,
            f"health={data['projectHealth'].get('overall')}",
        )
    else:
        result.add_fail("Analytics", f"Unexpected status {resp.status_code}")

    section("TEST 9: Workspace summary")
    resp = requests.get(f"{BASE_URL}/projects/{project_id}/workspace", headers=auth(owner))
    rate = resp.json().get("data", {}).get("summary", {}).get("taskCompletionRate") if resp.status_code == 200 else None
    result.check("Workspace Summary", rate == 100, f"taskCompletionRate={rate} (expected 100)")

    success = result.summary()
    return 0 if success else 1


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\n\nTest interrupted by user")
        sys.exit(1)
    except requests.ConnectionError:
        print(f"\n\n❌ ERROR: Cannot reach {BASE_URL} - is the backend running?")
        sys.exit(1)
