import logging

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from config import get_settings
from database import Base
from main import app, get_db
from store import ItemStore, StorageError

HEADERS = {"X-User-ID": "alice"}


@pytest.fixture()
def client():
    engine = create_engine(
        "sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool
    )
    Base.metadata.create_all(engine)
    TestingSession = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

    def override_get_db():
        db = TestingSession()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_owner_is_required(client, monkeypatch):
    monkeypatch.setattr(get_settings(), "default_owner", None)

    response = client.get("/api/budget-templates")

    assert response.status_code == 401


def test_bearer_token_identifies_owner(client):
    headers = {"Authorization": "Bearer bob"}
    client.get("/api/budgets/Default/2024-03", headers=headers)

    assert len(client.get("/api/budget-templates", headers=headers).json()) == 1
    assert client.get("/api/budget-templates", headers=HEADERS).json() == []


def test_envelope_budgets_and_analysis(client):
    budgets = client.get("/api/budgets/Default/2024-03", headers=HEADERS)
    assert budgets.status_code == 200
    by_category = {b["category"]: b for b in budgets.json()}
    assert len(by_category) == 6
    assert by_category["Food"]["budget_amount"] == 500

    created = client.post(
        "/api/records",
        headers=HEADERS,
        json={"type": "Expense", "category": "Food", "amount": 120.5, "date": "2024-03-05"},
    )
    assert created.status_code == 201
    assert created.json()["type"] == "expense"

    analysis = client.get("/api/budget-analysis/Default/2024-03", headers=HEADERS)
    assert analysis.status_code == 200
    body = analysis.json()
    food = next(entry for entry in body["analysis"] if entry["category"] == "Food")
    assert food["actual"] == 120.5
    assert body["summary"]["totalActual"] == 120.5
    assert body["summary"]["totalBudgeted"] == 2350


def test_update_budgets(client):
    client.get("/api/budgets/Default/2024-03", headers=HEADERS)

    response = client.put(
        "/api/budgets/Default/2024-03",
        headers=HEADERS,
        json={"budgets": [{"category": "Food", "budget_amount": 650}]},
    )
    assert response.status_code == 200
    assert response.json() == {"message": "Budgets updated successfully"}

    by_category = {
        b["category"]: b
        for b in client.get("/api/budgets/Default/2024-03", headers=HEADERS).json()
    }
    assert by_category["Food"]["budget_amount"] == 650

    unknown = client.put(
        "/api/budgets/Default/2024-03",
        headers=HEADERS,
        json={"budgets": [{"category": "Travel", "budget_amount": 1}]},
    )
    assert unknown.status_code == 400


def test_error_statuses(client):
    assert client.get("/api/budgets/Default/2024-13", headers=HEADERS).status_code == 400
    client.get("/api/budgets/Default/2024-03", headers=HEADERS)
    missing = client.get("/api/budgets/Vacation/2024-03", headers=HEADERS)
    assert missing.status_code == 404
    assert "Default" in missing.json()["detail"]
    bad_amount = client.post(
        "/api/records",
        headers=HEADERS,
        json={"type": "expense", "category": "Food", "amount": -3},
    )
    assert bad_amount.status_code == 422


def test_storage_failure_is_reported_generically(client, monkeypatch):
    def failing_query(self, pk, *, sk_prefix=None):
        raise StorageError("Failed to query items")

    monkeypatch.setattr(ItemStore, "query", failing_query)

    response = client.get("/api/budgets/Default/2024-03", headers=HEADERS)

    assert response.status_code == 500
    assert response.json() == {"detail": "Storage failure"}


def test_template_endpoints(client):
    created = client.post(
        "/api/budget-templates",
        headers=HEADERS,
        json={
            "template_name": "Monthly",
            "categories": [
                {"category": "Food", "budget_amount": 400, "rollover_enabled": True},
                {"category": "Bills", "budget_amount": 700},
            ],
        },
    )
    assert created.status_code == 201
    assert created.json()["categories_created"] == 2

    copied = client.post(
        "/api/budget-templates/Monthly/copy",
        headers=HEADERS,
        json={"new_template_name": "Lean"},
    )
    assert copied.status_code == 201
    conflict = client.post(
        "/api/budget-templates/Monthly/copy",
        headers=HEADERS,
        json={"new_template_name": "Lean"},
    )
    assert conflict.status_code == 400

    names = [t["template_name"] for t in client.get("/api/budget-templates", headers=HEADERS).json()]
    assert names == ["Lean", "Monthly"]

    deleted = client.delete("/api/budget-templates/Lean", headers=HEADERS)
    assert deleted.json()["categories_deleted"] == 2
    assert client.delete("/api/budget-templates/Lean", headers=HEADERS).status_code == 404


def test_recurring_endpoints(client):
    created = client.post(
        "/api/recurring",
        headers=HEADERS,
        json={
            "name": "Rent",
            "amount": 950,
            "category": "Bills",
            "type": "expense",
            "frequency": "monthly",
            "start_date": "2024-01-31",
        },
    )
    assert created.status_code == 201
    rule_id = created.json()["transaction"]["id"]

    executed = client.post(f"/api/recurring/{rule_id}/execute", headers=HEADERS)
    assert executed.status_code == 200
    assert executed.json()["transaction"]["recurring_transaction_id"] == rule_id

    toggled = client.put(f"/api/recurring/{rule_id}/toggle", headers=HEADERS)
    assert toggled.json()["transaction"]["is_active"] is False
    assert client.post(f"/api/recurring/{rule_id}/execute", headers=HEADERS).status_code == 400

    updated = client.put(
        f"/api/recurring/{rule_id}", headers=HEADERS, json={"name": "Flat"}
    )
    assert updated.json()["transaction"]["name"] == "Flat"
    assert (
        client.put(f"/api/recurring/{rule_id}", headers=HEADERS, json={"bogus": 1}).status_code
        == 422
    )

    assert client.delete(f"/api/recurring/{rule_id}", headers=HEADERS).status_code == 200
    assert client.get(f"/api/recurring/{rule_id}", headers=HEADERS).status_code == 404


def test_execute_due_endpoint(client):
    client.post(
        "/api/recurring",
        headers=HEADERS,
        json={
            "name": "Gym",
            "amount": 30,
            "category": "Health",
            "type": "expense",
            "frequency": "weekly",
            "start_date": "2020-01-01",
        },
    )

    response = client.post("/api/recurring/execute-due", headers=HEADERS)

    assert response.status_code == 200
    assert response.json()["executed_count"] == 1
    assert response.json()["executed_transactions"] == ["Gym"]


def test_owner_with_key_separator_is_rejected(client):
    response = client.get(
        "/api/budget-templates", headers={"X-User-ID": "alice#TEMPLATE#x"}
    )

    assert response.status_code == 400


def test_recurring_patch_rejects_null_fields(client):
    created = client.post(
        "/api/recurring",
        headers=HEADERS,
        json={
            "name": "Rent",
            "amount": 950,
            "category": "Bills",
            "type": "expense",
            "frequency": "monthly",
            "start_date": "2024-01-01",
        },
    )
    rule_id = created.json()["transaction"]["id"]

    for field in ("amount", "name", "frequency", "start_date"):
        response = client.put(
            f"/api/recurring/{rule_id}", headers=HEADERS, json={field: None}
        )
        assert response.status_code == 422

    assert client.get(f"/api/recurring/{rule_id}", headers=HEADERS).json()["amount"] == 950


def test_alert_endpoints(client):
    created = client.post(
        "/api/alerts",
        headers=HEADERS,
        json={
            "name": "Food cap",
            "type": "CATEGORY_LIMIT",
            "condition": "GREATER_THAN",
            "threshold": 400,
            "category": "Food",
            "month": "2024-03",
        },
    )
    assert created.status_code == 201
    alert_id = created.json()["alert"]["id"]
    client.post(
        "/api/alerts",
        headers=HEADERS,
        json={
            "name": "April",
            "type": "MONTHLY_THRESHOLD",
            "condition": "GREATER_THAN",
            "threshold": 2000,
            "month": "2024-04",
        },
    )

    listed = client.get("/api/alerts", headers=HEADERS).json()
    assert listed["count"] == 2
    assert client.get("/api/alerts", headers={"X-User-ID": "bob"}).json()["count"] == 0

    updated = client.put(
        f"/api/alerts/{alert_id}", headers=HEADERS, json={"threshold": 450}
    )
    assert updated.status_code == 200
    assert updated.json()["alert"]["threshold"] == 450
    assert client.put(f"/api/alerts/{alert_id}", headers=HEADERS, json={}).status_code == 400
    assert (
        client.put(f"/api/alerts/{alert_id}", headers=HEADERS, json={"name": None}).status_code
        == 422
    )

    read = client.patch(f"/api/alerts/{alert_id}/read", headers=HEADERS)
    assert read.json()["alert"]["is_read"] is True

    dismissed = client.patch("/api/alerts/dismiss-all/2024-03", headers=HEADERS)
    assert dismissed.json() == {"message": "Dismissed 1 alerts for 2024-03", "count": 1}
    assert client.patch("/api/alerts/dismiss-all/2024-3", headers=HEADERS).status_code == 400
    assert client.get(f"/api/alerts/{alert_id}", headers=HEADERS).json()["is_dismissed"] is True

    deleted = client.delete(f"/api/alerts/{alert_id}", headers=HEADERS)
    assert deleted.json()["alert"]["id"] == alert_id
    assert client.get(f"/api/alerts/{alert_id}", headers=HEADERS).status_code == 404
    assert client.patch(f"/api/alerts/{alert_id}/dismiss", headers=HEADERS).status_code == 404


def test_execute_due_logs_through_module_logger(client, caplog):
    caplog.set_level(logging.INFO, logger="main")

    client.post("/api/recurring/execute-due", headers=HEADERS)

    records = [r for r in caplog.records if r.getMessage().startswith("execute_due:")]
    assert [r.name for r in records] == ["main"]
