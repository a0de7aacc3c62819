from __future__ import annotations

import base64
import json
import logging
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from budgetwise import crud
from budgetwise.config import Settings
from budgetwise.server import create_app


def test_healthcheck(client):
    for path in ("/health", "/api/health"):
        response = client.get(path)
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}


def test_register_login_and_duplicate(client, register):
    register("frank")

    login = client.post("/api/users/login", json={"username": "frank", "password": "correct-horse"})
    assert login.status_code == 200
    assert login.json()["token"]

    duplicate = client.post("/users/register", json={"username": "frank", "password": "correct-horse"})
    assert duplicate.status_code == 409
    assert duplicate.json() == {"message": "Username is already taken."}

    short = client.post("/users/register", json={"username": "gina", "password": "short"})
    assert short.status_code == 400

    wrong = client.post("/users/login", json={"username": "frank", "password": "nope-nope"})
    assert wrong.status_code == 401
    assert wrong.json() == {"message": "Invalid username or password."}


@pytest.mark.parametrize(
    "headers",
    [{}, {"Authorization": "Bearer not-a-token"}, {"Authorization": "Basic Zm9vOmJhcg=="}],
)
def test_protected_routes_require_token(client, headers):
    response = client.get("/transactions", headers=headers)
    assert response.status_code == 401
    assert set(response.json()) == {"message"}
    assert response.headers["www-authenticate"] == "Bearer"


def test_category_lifecycle(client, auth_headers):
    created = client.post("/categories", json={"name": "Rent", "budget_type": "Necessities"}, headers=auth_headers)
    assert created.status_code == 201
    category = created.json()
    assert category["name"] == "Rent"

    duplicate = client.post("/categories", json={"name": "rent", "budget_type": "Leisure"}, headers=auth_headers)
    assert duplicate.status_code == 409
    invalid = client.post("/categories", json={"name": "Fun", "budget_type": "Luxury"}, headers=auth_headers)
    assert invalid.status_code == 400
    assert invalid.json() == {"message": "Invalid budget type."}

    expense = client.post(
        "/expense",
        json={"amount": 12.5, "description": "Deposit", "user_category_id": category["id"]},
        headers=auth_headers,
    )
    assert expense.status_code == 201
    assert expense.json()["user_category_id"] == category["id"]
    assert expense.json()["category"]["name"] == "Rent"

    in_use = client.delete(f"/categories/{category['id']}", headers=auth_headers)
    assert in_use.status_code == 400
    assert in_use.json() == {"message": "Cannot delete a category that has expenses."}

    assert client.delete(f"/expense/{expense.json()['id']}", headers=auth_headers).status_code == 204
    assert client.delete(f"/api/categories/{category['id']}", headers=auth_headers).status_code == 204
    assert client.get("/categories", headers=auth_headers).json() == []
    assert client.delete(f"/categories/{category['id']}", headers=auth_headers).status_code == 404


def test_users_cannot_see_each_other(client, register):
    alice = register("alice")
    bob = register("bob")
    income = client.post("/income", json={"amount": 100, "source": "Gift"}, headers=alice).json()

    assert client.get("/transactions", headers=bob).json() == {"items": [], "nextCursor": None}
    assert client.delete(f"/income/{income['id']}", headers=bob).status_code == 404
    assert client.delete(f"/income/{income['id']}", headers=alice).status_code == 204


def test_expense_with_foreign_category_is_rejected(client, register):
    alice = register("alice")
    bob = register("bob")
    category = client.post("/categories", json={"name": "Rent", "budget_type": "Necessities"}, headers=alice).json()

    response = client.post("/expense", json={"amount": 5, "user_category_id": category["id"]}, headers=bob)

    assert response.status_code == 400
    assert response.json() == {"message": "Invalid category selection."}


def test_amount_validation_messages(client, auth_headers):
    negative = client.post("/income", json={"amount": -5}, headers=auth_headers)
    assert negative.json() == {"message": "Amount must be a positive number."}
    precise = client.post("/expense", json={"amount": "1.234"}, headers=auth_headers)
    assert precise.json() == {"message": "Amount must have at most two decimal places."}
    missing = client.post("/income", json={"source": "Salary"}, headers=auth_headers)
    assert missing.status_code == 400
    assert missing.json()["message"].startswith("amount")


def test_transactions_feed_over_http(client, auth_headers):
    income = client.post(
        "/income",
        json={"amount": 1000, "source": "Salary", "date": "2025-01-05T00:00:00Z"},
        headers=auth_headers,
    ).json()
    category = client.post("/categories", json={"name": "Rent", "budget_type": "Necessities"}, headers=auth_headers).json()
    expense = client.post(
        "/expense",
        json={"amount": 50, "user_category_id": category["id"], "date": "2025-01-05T00:00:00Z"},
        headers=auth_headers,
    ).json()

    body = client.get("/api/transactions", params={"limit": 20, "sort": "newest"}, headers=auth_headers).json()

    assert body["nextCursor"] is None
    assert body["items"] == [
        {"id": income["id"], "type": "Income", "amount": 1000.0, "date": "2025-01-05T00:00:00Z", "source": "Salary"},
        {
            "id": expense["id"],
            "type": "Expense",
            "amount": 50.0,
            "date": "2025-01-05T00:00:00Z",
            "description": "",
            "category_id": category["id"],
            "category_name": "Rent",
            "category_budget_type": "Necessities",
        },
    ]


def test_feed_pagination_over_http(client, auth_headers):
    for day in range(1, 26):
        response = client.post(
            "/expense",
            json={"amount": day, "date": f"2025-01-{day:02d}T12:00:00"},
            headers=auth_headers,
        )
        assert response.status_code == 201

    first = client.get("/transactions", params={"limit": 10, "sort": "oldest"}, headers=auth_headers).json()
    second = client.get(
        "/transactions",
        params={"limit": 10, "sort": "oldest", "cursor": first["nextCursor"]},
        headers=auth_headers,
    ).json()
    third = client.get(
        "/transactions",
        params={"limit": 10, "sort": "oldest", "cursor": second["nextCursor"]},
        headers=auth_headers,
    ).json()

    amounts = [item["amount"] for page in (first, second, third) for item in page["items"]]
    assert amounts == [float(day) for day in range(1, 26)]
    assert third["nextCursor"] is None

    mismatched = client.get(
        "/transactions",
        params={"sort": "newest", "cursor": first["nextCursor"]},
        headers=auth_headers,
    )
    assert mismatched.status_code == 400
    assert mismatched.json() == {"message": "invalid cursor"}


@pytest.mark.parametrize(
    ("params", "message"),
    [
        ({"type": "income", "category_id": "3"}, "incompatible filters"),
        ({"from": "2025-02-01", "to": "2025-01-01"}, "invalid range"),
        ({"cursor": "@@not-a-cursor@@"}, "invalid cursor"),
        ({"from": "yesterday"}, "invalid date"),
        ({"type": "transfer"}, "invalid type filter"),
        ({"category_id": "food"}, "invalid category filter"),
        ({"limit": "many"}, "invalid limit"),
    ],
)
def test_feed_rejects_bad_parameters(client, auth_headers, params, message):
    response = client.get("/transactions", params=params, headers=auth_headers)
    assert response.status_code == 400
    assert response.json() == {"message": message}


@pytest.mark.parametrize("limit", ["0", "-5", "1000"])
def test_feed_clamps_limit(client, auth_headers, limit):
    response = client.get("/transactions", params={"limit": limit}, headers=auth_headers)
    assert response.status_code == 200
    assert len(response.json()["items"]) <= 50


def test_dashboard_and_report(client, auth_headers):
    client.post("/income", json={"amount": 2000, "source": "Salary"}, headers=auth_headers)
    rent = client.post("/categories", json={"name": "Rent", "budget_type": "Necessities"}, headers=auth_headers).json()
    client.post("/expense", json={"amount": 800, "user_category_id": rent["id"]}, headers=auth_headers)
    client.post("/expense", json={"amount": 20, "description": "Coffee"}, headers=auth_headers)

    dashboard = client.get("/budget/dashboard", headers=auth_headers).json()

    assert dashboard["totalIncome"] == 2000.0
    assert dashboard["totalExpenses"] == 820.0
    assert dashboard["uncategorizedSpent"] == 20.0
    assert dashboard["budgets"]["Necessities"] == {"budget": 1000.0, "spent": 800.0, "remaining": 200.0}
    assert dashboard["budgets"]["Savings"] == {"budget": 400.0, "spent": 0.0, "remaining": 400.0}
    assert len(dashboard["transactions"]) == 3
    assert dashboard["nextCursor"] is None

    report = client.get("/api/reports/spending-by-category", headers=auth_headers).json()
    assert report == [{"name": "Rent", "total": 800.0}, {"name": "Uncategorized", "total": 20.0}]


def test_recurring_endpoints(client, auth_headers):
    category = client.post("/categories", json={"name": "Utilities", "budget_type": "Necessities"}, headers=auth_headers).json()
    created = client.post(
        "/recurring",
        json={"description": "Internet", "default_amount": 29.9, "user_category_id": category["id"]},
        headers=auth_headers,
    )
    assert created.status_code == 201
    assert created.json()["category_name"] == "Utilities"
    assert created.json()["default_amount"] == 29.9

    listed = client.get("/recurring", headers=auth_headers).json()
    assert [item["description"] for item in listed] == ["Internet"]

    missing = client.post("/recurring", json={"description": "Gym", "default_amount": 30}, headers=auth_headers)
    assert missing.json() == {"message": "A valid category is required."}

    assert client.delete(f"/recurring/{created.json()['id']}", headers=auth_headers).status_code == 204
    assert client.delete(f"/recurring/{created.json()['id']}", headers=auth_headers).status_code == 404


def test_template_export_and_idempotent_import(client, register):
    source = register("source")
    target = register("target")
    category = client.post("/categories", json={"name": "Rent", "budget_type": "Necessities"}, headers=source).json()
    client.post(
        "/recurring",
        json={"description": "Rent", "default_amount": 950, "user_category_id": category["id"]},
        headers=source,
    )

    exported = client.get("/templates/export", headers=source)
    assert exported.status_code == 200
    assert exported.headers["content-disposition"].startswith('attachment; filename="budgetwise-template-')
    document = exported.json()
    assert document["version"] == "1.0"

    first = client.post("/templates/import", content=exported.content, headers=target)
    assert first.status_code == 200
    assert first.json() == {"inserted": {"categories": 1, "recurring": 1}, "skipped": {"categories": 0, "recurring": 0}}

    replay = client.post("/api/templates/import", json=document, headers=target)
    assert replay.json()["inserted"] == {"categories": 0, "recurring": 0}
    assert [item["name"] for item in client.get("/categories", headers=target).json()] == ["Rent"]


def test_template_import_errors(client, auth_headers):
    too_large = client.post("/templates/import", content=b" " * (1_048_576 + 1), headers=auth_headers)
    assert too_large.status_code == 413
    assert too_large.json() == {"message": "Template exceeds 1MB limit."}

    garbage = client.post("/templates/import", content=b"{oops", headers=auth_headers)
    assert garbage.status_code == 400
    assert garbage.json() == {"message": "Invalid template payload."}

    version = client.post("/templates/import", json={"version": "0.9"}, headers=auth_headers)
    assert version.json() == {"message": "Unsupported template version."}


def test_unexpected_errors_become_generic_500(client, auth_headers, monkeypatch):
    from budgetwise import reporting

    def _explode(*args, **kwargs):
        raise RuntimeError("database on fire")

    monkeypatch.setattr(reporting, "monthly_dashboard", _explode)

    response = client.get("/budget/dashboard", headers=auth_headers)

    assert response.status_code == 500
    assert response.json() == {"message": "Internal server error."}


def test_app_persists_through_its_own_database(tmp_path: Path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    settings = Settings(database_url=f"sqlite:///{tmp_path / 'budget.db'}", secret_key="integration-secret-0123")

    with TestClient(create_app(settings)) as first_client:
        token = first_client.post("/users/register", json={"username": "hana", "password": "long-enough"}).json()
        headers = {"Authorization": f"Bearer {token['token']}"}
        assert first_client.post("/income", json={"amount": 42}, headers=headers).status_code == 201

    with TestClient(create_app(settings)) as second_client:
        items = second_client.get("/transactions", headers=headers).json()["items"]
        assert [item["amount"] for item in items] == [42.0]


def test_forged_cursor_with_oversized_row_id_is_rejected(client, auth_headers):
    payload = {"d": "newest", "t": "2025-01-05T00:00:00.000000", "r": 0, "i": 10**30}
    token = base64.urlsafe_b64encode(json.dumps(payload).encode("utf-8")).rstrip(b"=").decode("ascii")

    response = client.get("/transactions", params={"cursor": token}, headers=auth_headers)

    assert response.status_code == 400
    assert response.json() == {"message": "invalid cursor"}


@pytest.mark.parametrize("category_id", ["9223372036854775808", "9" * 25])
def test_oversized_category_filter_is_rejected(client, auth_headers, category_id):
    response = client.get("/transactions", params={"category_id": category_id}, headers=auth_headers)

    assert response.status_code == 400
    assert response.json() == {"message": "invalid category filter"}


@pytest.mark.parametrize("resource", ["income", "expense", "categories", "recurring"])
def test_oversized_path_ids_are_not_found(client, auth_headers, resource):
    response = client.delete(f"/{resource}/{'9' * 25}", headers=auth_headers)

    assert response.status_code == 404
    assert set(response.json()) == {"message"}


def test_oversized_category_reference_is_invalid(client, auth_headers):
    response = client.post("/expense", json={"amount": 5, "user_category_id": "9" * 25}, headers=auth_headers)

    assert response.status_code == 400
    assert response.json() == {"message": "Invalid category selection."}


def test_request_log_names_the_authenticated_user(client, register, db_session, caplog):
    headers = register("ivan")
    ivan = crud.get_user_by_username(db_session, "ivan")
    caplog.set_level(logging.INFO, logger="budgetwise")

    client.get("/transactions", headers=headers)
    client.get("/health")

    users_by_path = {record.path: record.user_id for record in caplog.records if hasattr(record, "path")}
    assert users_by_path["/transactions"] == ivan.id
    assert users_by_path["/health"] is None
