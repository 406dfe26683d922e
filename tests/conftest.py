from datetime import date
from pathlib import Path

import pytest

from pocket_pilot import create_app


@pytest.fixture()
def app(tmp_path: Path):
    db_path = tmp_path / "test.sqlite"
    app = create_app(
        {
            "TESTING": True,
            "SECRET_KEY": "test",
            "DATABASE": str(db_path),
            "OPENAI_API_KEY": None,
            "CURRENCY": "CAD",
            "DEFAULT_MONTHLY_INCOME": 5000.0,
        }
    )

    with app.app_context():
        app.init_db()

    yield app


@pytest.fixture()
def client(app):
    return app.test_client()


def register(client, username="user1", password="password"):
    return client.post("/api/auth/register", json={"username": username, "password": password})


def login(client, username="user1", password="password"):
    return client.post("/api/auth/login", json={"username": username, "password": password})


@pytest.fixture()
def auth_client(client):
    """A client logged in as ``user1`` with the default categories and one checking account."""
    assert register(client).status_code == 201
    assert client.post("/api/categories/seed").status_code == 200
    response = client.post("/api/accounts", json={"name": "Chequing", "type": "Checking"})
    assert response.status_code == 201
    client.account_id = response.get_json()["id"]
    return client


def category_id(client, name):
    categories = client.get("/api/categories").get_json()
    return next(category["id"] for category in categories if category["name"] == name)


def add_transaction(client, amount, txn_type="expense", when=None, description="Test", category=None, account_id=None):
    payload = {
        "account_id": account_id or client.account_id,
        "date": str(when or date.today()),
        "amount": amount,
        "type": txn_type,
        "description": description,
    }
    if category is not None:
        payload["category_id"] = category_id(client, category) if isinstance(category, str) else category
    response = client.post("/api/transactions", json=payload)
    assert response.status_code == 201, response.get_json()
    return response.get_json()
