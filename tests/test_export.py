import csv
import io
from datetime import date

from conftest import add_transaction


def seed(client):
    savings = client.post("/api/accounts", json={"name": "Savings", "type": "Savings"}).get_json()
    add_transaction(client, 2500, "income", when=date(2025, 1, 1), description="Payroll", category="Income")
    add_transaction(client, 42.5, when=date(2025, 1, 5), description="Groceries, bulk", category="Food & Dining")
    add_transaction(client, 9.99, when=date(2025, 2, 1), description="Streaming")
    client.post(
        "/api/transactions/transfer",
        json={"from_account_id": client.account_id, "to_account_id": savings["id"], "amount": 100, "date": "2025-01-10"},
    )


def test_csv_export(auth_client):
    seed(auth_client)

    response = auth_client.get("/api/export?format=csv&endDate=2025-01-31")

    assert response.status_code == 200
    assert response.mimetype == "text/csv"
    assert response.headers["Content-Disposition"] == (
        f'attachment; filename="pocket-pilot-transactions-{date.today().isoformat()}.csv"'
    )
    rows = list(csv.reader(io.StringIO(response.get_data(as_text=True))))
    assert rows[0] == ["Date", "Description", "Amount", "Type", "Category", "Account", "Is Transfer"]
    body = rows[1:]
    assert len(body) == 4
    assert [row[0] for row in body] == ["2025-01-10", "2025-01-10", "2025-01-05", "2025-01-01"]
    assert body[2] == ["2025-01-05", "Groceries, bulk", "42.50", "expense", "Food & Dining", "Chequing", "No"]
    assert body[3] == ["2025-01-01", "Payroll", "2500.00", "income", "Income", "Chequing", "No"]
    assert {row[6] for row in body[:2]} == {"Yes"}


def test_json_export(auth_client):
    seed(auth_client)

    response = auth_client.get("/api/export?format=json&startDate=2025-02-01")
    body = response.get_json()

    assert response.status_code == 200
    assert response.headers["Content-Disposition"].endswith('.json"')
    assert body["currency"] == "CAD"
    assert body["total_transactions"] == 1
    assert body["exported_at"]
    assert body["transactions"] == [
        {
            "date": "2025-02-01",
            "description": "Streaming",
            "amount": 9.99,
            "type": "expense",
            "category": "Uncategorized",
            "account": "Chequing",
            "is_transfer": "No",
        }
    ]


def test_export_with_nothing_to_export(auth_client):
    response = auth_client.get("/api/export")

    assert response.status_code == 404
    assert response.get_json()["error"] == "Transactions to export not found"


def test_export_rejects_unknown_type_and_format(auth_client):
    add_transaction(auth_client, 10)

    response = auth_client.get("/api/export?type=budgets")
    assert response.status_code == 400
    assert response.get_json()["error"] == "Only transaction export is currently supported"

    response = auth_client.get("/api/export?format=xlsx")
    assert response.status_code == 400
    assert response.get_json()["error"] == "format must be csv or json"


def test_export_requires_login(client):
    assert client.get("/api/export").status_code == 401
