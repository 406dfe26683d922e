from datetime import date, timedelta

import pytest

from pocket_pilot.finance.schedule import advance_date, months_between, week_bounds


@pytest.mark.parametrize(
    "start, frequency, expected",
    [
        (date(2025, 1, 1), "weekly", date(2025, 1, 8)),
        (date(2025, 1, 1), "biweekly", date(2025, 1, 15)),
        (date(2025, 1, 31), "monthly", date(2025, 2, 28)),
        (date(2024, 2, 29), "yearly", date(2025, 2, 28)),
        ("2025-12-15", "monthly", date(2026, 1, 15)),
    ],
)
def test_advance_date(start, frequency, expected):
    assert advance_date(start, frequency) == expected


def test_advance_date_rejects_unknown_frequency():
    with pytest.raises(ValueError):
        advance_date(date(2025, 1, 1), "daily")


def test_months_between_and_week_bounds():
    assert months_between(date(2025, 1, 20), date(2025, 3, 2)) == 3
    assert week_bounds(date(2025, 6, 18)) == (date(2025, 6, 16), date(2025, 6, 22))


def create_recurring(client, **overrides):
    payload = {
        "account_id": client.account_id,
        "description": "Rent",
        "amount": 1500,
        "type": "expense",
        "frequency": "monthly",
        "next_occurrence_date": str(date.today()),
    }
    payload.update(overrides)
    response = client.post("/api/recurring-transactions", json=payload)
    assert response.status_code == 201, response.get_json()
    return response.get_json()


def test_recurring_crud(auth_client):
    item = create_recurring(auth_client)
    assert item["amount"] == -1500
    assert item["type"] == "expense"
    assert item["is_active"] is True
    assert item["account_name"] == "Chequing"

    response = auth_client.put(f"/api/recurring-transactions/{item['id']}", json={"type": "income"})
    assert response.get_json()["amount"] == 1500

    response = auth_client.put(f"/api/recurring-transactions/{item['id']}", json={"amount": 1600})
    assert response.get_json()["amount"] == 1600
    assert response.get_json()["type"] == "income"

    response = auth_client.put(f"/api/recurring-transactions/{item['id']}", json={"is_active": False})
    assert response.get_json()["is_active"] is False
    assert auth_client.get("/api/recurring-transactions?active=true").get_json() == []

    assert auth_client.delete(f"/api/recurring-transactions/{item['id']}").get_json() == {"success": True}
    assert auth_client.get(f"/api/recurring-transactions/{item['id']}").status_code == 404


def test_recurring_requires_owned_account(auth_client):
    response = auth_client.post(
        "/api/recurring-transactions",
        json={
            "account_id": 999,
            "description": "Gym",
            "amount": 40,
            "type": "expense",
            "frequency": "monthly",
            "next_occurrence_date": str(date.today()),
        },
    )

    assert response.status_code == 404


def test_generate_creates_due_transactions_once(auth_client):
    today = date.today()
    rent = create_recurring(auth_client, next_occurrence_date=str(today - timedelta(days=1)))
    create_recurring(auth_client, description="Future", next_occurrence_date=str(today + timedelta(days=3)))

    response = auth_client.post("/api/recurring-transactions/generate")
    body = response.get_json()

    assert body["success"] is True
    assert body["created"] == 1
    assert body["message"] == "Created 1 transaction(s)"
    created = body["transactions"][0]
    assert created["description"] == "Rent"
    assert created["amount"] == -1500
    assert created["date"] == str(today - timedelta(days=1))
    assert created["next_occurrence"] == str(advance_date(today - timedelta(days=1), "monthly"))

    item = auth_client.get(f"/api/recurring-transactions/{rent['id']}").get_json()
    assert item["last_created_date"] == str(today - timedelta(days=1))
    assert item["next_occurrence_date"] == created["next_occurrence"]

    transactions = auth_client.get("/api/transactions").get_json()
    assert [txn["recurring_transaction_id"] for txn in transactions] == [rent["id"]]

    again = auth_client.post("/api/recurring-transactions/generate").get_json()
    assert again == {"success": True, "message": "No recurring transactions due", "created": 0, "transactions": []}


def test_generate_skips_existing_occurrence(auth_client):
    today = date.today()
    weekly = create_recurring(
        auth_client, description="Allowance", frequency="weekly", next_occurrence_date=str(today - timedelta(days=14))
    )
    with auth_client.application.app_context():
        db = auth_client.application.get_db()
        db.execute(
            """
            INSERT INTO transactions (user_id, account_id, date, amount, description, recurring_transaction_id)
            VALUES (1, ?, ?, -1500, 'Allowance', ?)
            """,
            (auth_client.account_id, str(today - timedelta(days=14)), weekly["id"]),
        )
        db.commit()

    body = auth_client.post("/api/recurring-transactions/generate").get_json()
    assert body["created"] == 0

    # the schedule still advanced, so the next call creates the following week
    body = auth_client.post("/api/recurring-transactions/generate").get_json()
    assert body["created"] == 1
    assert body["transactions"][0]["date"] == str(today - timedelta(days=7))
