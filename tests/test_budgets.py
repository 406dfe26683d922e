from datetime import date

import pytest

from conftest import add_transaction, category_id
from pocket_pilot.finance.budgets import budget_status, decorate_budget, plan_template_budgets, prorated_budget


def create_budget(client, category, amount, **extra):
    response = client.post("/api/budgets", json={"category_id": category_id(client, category), "amount": amount, **extra})
    assert response.status_code == 201, response.get_json()
    return response.get_json()


def test_budget_status_thresholds():
    assert budget_status(50) == "safe"
    assert budget_status(90) == "warning"
    assert budget_status(100) == "over"
    assert budget_status(75, alert_threshold=70) == "warning"


def test_decorate_budget_applies_rollover():
    budget = decorate_budget({"amount": 100.0, "rollover": True, "alert_threshold": 90}, spent=120.0, previous_spent=60.0)

    assert budget["rollover_amount"] == 40.0
    assert budget["effective_budget"] == 140.0
    assert budget["remaining"] == 20.0
    assert budget["percentage"] == 85.7
    assert budget["status"] == "safe"


@pytest.mark.parametrize(
    "period, start, end, expected",
    [
        ("MONTHLY", date(2025, 1, 1), date(2025, 3, 31), 300.0),
        ("YEARLY", date(2025, 1, 1), date(2025, 6, 30), 600.0),
        ("WEEKLY", date(2025, 1, 1), date(2025, 1, 14), 200.0),
        ("BIWEEKLY", date(2025, 1, 1), date(2025, 1, 28), 200.0),
    ],
)
def test_prorated_budget(period, start, end, expected):
    amount = 1200.0 if period == "YEARLY" else 100.0
    assert prorated_budget(amount, period, start, end) == pytest.approx(expected)


def test_plan_template_budgets_matches_names_and_mappings():
    items = [
        {"category_name": "Housing", "percentage": 30, "fixed_amount": None},
        {"category_name": "Groceries", "percentage": 10, "fixed_amount": None},
        {"category_name": "Gym", "percentage": None, "fixed_amount": 45.0, "notes": "membership"},
        {"category_name": "Yachts", "percentage": 5, "fixed_amount": None},
    ]
    categories = [{"id": 1, "name": "housing"}, {"id": 2, "name": "Food"}, {"id": 3, "name": "Fitness"}]

    planned, skipped = plan_template_budgets(items, categories, [3], {"Groceries": 2, "Gym": 3}, 4000)

    assert planned == [
        {"category_id": 1, "amount": 1200.0, "notes": None},
        {"category_id": 2, "amount": 400.0, "notes": None},
    ]
    assert skipped == [
        {"category_name": "Gym", "reason": "Budget already exists for this category"},
        {"category_name": "Yachts", "reason": "No matching expense category"},
    ]


def test_budget_lists_current_month_spending(auth_client):
    create_budget(auth_client, "Food & Dining", 200)
    add_transaction(auth_client, 185, category="Food & Dining")
    add_transaction(auth_client, 50, category="Shopping")

    budget = auth_client.get("/api/budgets").get_json()[0]

    assert budget["category_name"] == "Food & Dining"
    assert budget["spent"] == 185
    assert budget["remaining"] == 15
    assert budget["percentage"] == 92.5
    assert budget["status"] == "warning"


def test_transfers_do_not_count_as_spending(auth_client):
    create_budget(auth_client, "Food & Dining", 200)
    savings = auth_client.post("/api/accounts", json={"name": "Savings", "type": "Savings"}).get_json()
    auth_client.post(
        "/api/transactions/transfer",
        json={
            "from_account_id": auth_client.account_id,
            "to_account_id": savings["id"],
            "amount": 150,
            "date": str(date.today()),
        },
    )

    assert auth_client.get("/api/budgets").get_json()[0]["spent"] == 0


def test_budget_requires_expense_category_and_is_unique(auth_client):
    response = auth_client.post("/api/budgets", json={"category_id": category_id(auth_client, "Income"), "amount": 100})
    assert response.status_code == 400
    assert response.get_json()["error"] == "Budgets can only be created for expense categories"

    create_budget(auth_client, "Housing", 1500)
    response = auth_client.post("/api/budgets", json={"category_id": category_id(auth_client, "Housing"), "amount": 10})
    assert response.status_code == 409

    # a month-specific budget for the same category is a different budget
    create_budget(auth_client, "Housing", 1600, year=2025, month=3)


def test_budget_update_and_delete(auth_client):
    budget = create_budget(auth_client, "Housing", 1500)

    response = auth_client.put(f"/api/budgets/{budget['id']}", json={"amount": 1400, "rollover": True})
    body = response.get_json()
    assert body["amount"] == 1400
    assert body["rollover"] is True
    assert body["effective_budget"] == 2800

    assert auth_client.delete(f"/api/budgets/{budget['id']}").get_json() == {"success": True}
    assert auth_client.get(f"/api/budgets/{budget['id']}").status_code == 404


def test_budget_update_ignores_null_for_required_fields(auth_client):
    budget = create_budget(auth_client, "Housing", 1500, rollover=True, notes="Rent")

    response = auth_client.put(
        f"/api/budgets/{budget['id']}", json={"rollover": None, "amount": None, "period": None, "notes": None}
    )

    assert response.status_code == 200
    body = response.get_json()
    assert body["rollover"] is True
    assert body["amount"] == 1500
    assert body["period"] == "MONTHLY"
    assert body["notes"] is None


def test_copy_forward(auth_client):
    create_budget(auth_client, "Housing", 1500, year=2025, month=1, notes="rent")
    create_budget(auth_client, "Utilities", 200, year=2025, month=1)
    create_budget(auth_client, "Utilities", 220, year=2025, month=2)

    response = auth_client.post(
        "/api/budgets/copy-forward",
        json={"source_year": 2025, "source_month": 1, "target_year": 2025, "target_month": 2, "include_notes": False},
    )
    body = response.get_json()

    assert response.status_code == 200
    assert body["copied"] == ["Housing"]
    assert body["skipped"] == ["Utilities (already exists)"]
    assert body["message"] == "Copied 1 budget(s) from 1/2025 to 2/2025"

    copied = [b for b in auth_client.get("/api/budgets").get_json() if b["month"] == 2 and b["category_name"] == "Housing"]
    assert copied[0]["amount"] == 1500
    assert copied[0]["notes"] is None

    again = auth_client.post(
        "/api/budgets/copy-forward",
        json={"source_year": 2025, "source_month": 1, "target_year": 2025, "target_month": 2},
    )
    assert again.status_code == 400
    assert again.get_json()["error"] == "All budgets already exist in target month"
    assert again.get_json()["success"] is False


def test_copy_forward_rejects_same_month_and_empty_source(auth_client):
    same = auth_client.post(
        "/api/budgets/copy-forward",
        json={"source_year": 2025, "source_month": 1, "target_year": 2025, "target_month": 1},
    )
    assert same.status_code == 400

    empty = auth_client.post(
        "/api/budgets/copy-forward",
        json={"source_year": 2025, "source_month": 1, "target_year": 2025, "target_month": 2},
    )
    assert empty.status_code == 404


def test_budget_report(auth_client):
    create_budget(auth_client, "Food & Dining", 300)
    create_budget(auth_client, "Housing", 1000)
    add_transaction(auth_client, 60, when=date(2025, 1, 10), category="Food & Dining")
    add_transaction(auth_client, 1200, when=date(2025, 2, 1), category="Housing")

    response = auth_client.get("/api/budgets/report?start_date=2025-01-01&end_date=2025-02-28")
    body = response.get_json()

    assert response.status_code == 200
    items = {item["category_name"]: item for item in body["items"]}
    assert items["Food & Dining"]["budgeted"] == 600
    assert items["Food & Dining"]["actual"] == 60
    assert items["Housing"]["variance"] == 800
    assert [item["category_name"] for item in body["items"]] == ["Housing", "Food & Dining"]
    assert body["summary"]["total_budgeted"] == 2600
    assert body["summary"]["over_budget_count"] == 0

    filtered = auth_client.get(
        f"/api/budgets/report?start_date=2025-01-01&end_date=2025-02-28&category_ids={category_id(auth_client, 'Housing')}"
    ).get_json()
    assert [item["category_name"] for item in filtered["items"]] == ["Housing"]

    bad = auth_client.get("/api/budgets/report?start_date=2025-03-01&end_date=2025-02-28")
    assert bad.status_code == 400


def test_system_templates_are_listed_and_read_only(auth_client):
    templates = auth_client.get("/api/budget-templates").get_json()
    system = [t for t in templates if t["is_system"]]

    assert {t["name"] for t in system} == {"50/30/20 Rule", "Envelope System", "Zero-Based Budget"}
    assert all(t["items"] for t in system)

    template_id = system[0]["id"]
    assert auth_client.put(f"/api/budget-templates/{template_id}", json={"name": "Mine"}).status_code == 403
    assert auth_client.delete(f"/api/budget-templates/{template_id}").status_code == 403


def test_custom_template_crud(auth_client):
    response = auth_client.post(
        "/api/budget-templates",
        json={
            "name": "Lean",
            "items": [{"category_name": "Housing", "percentage": 40}, {"category_name": "Utilities", "fixed_amount": 150}],
        },
    )
    assert response.status_code == 201
    template = response.get_json()
    assert template["template_type"] == "CUSTOM"
    assert len(template["items"]) == 2

    response = auth_client.put(
        f"/api/budget-templates/{template['id']}",
        json={"description": "Bare bones", "items": [{"category_name": "Housing", "percentage": 50}]},
    )
    body = response.get_json()
    assert body["description"] == "Bare bones"
    assert [(i["category_name"], i["percentage"]) for i in body["items"]] == [("Housing", 50)]

    invalid = auth_client.post(
        "/api/budget-templates",
        json={"name": "Bad", "items": [{"category_name": "Housing", "percentage": 10, "fixed_amount": 10}]},
    )
    assert invalid.status_code == 400

    assert auth_client.delete(f"/api/budget-templates/{template['id']}").get_json() == {"success": True}
    assert auth_client.get(f"/api/budget-templates/{template['id']}").status_code == 404


def test_apply_template_creates_budgets_from_income(auth_client):
    template = auth_client.post(
        "/api/budget-templates",
        json={
            "name": "Simple",
            "items": [
                {"category_name": "Housing", "percentage": 30},
                {"category_name": "Groceries", "percentage": 10},
                {"category_name": "Utilities", "fixed_amount": 120},
            ],
        },
    ).get_json()

    response = auth_client.post(
        f"/api/budget-templates/{template['id']}/apply",
        json={"monthly_income": 4000, "category_mappings": {"Groceries": category_id(auth_client, "Food & Dining")}},
    )
    body = response.get_json()

    assert response.status_code == 200
    assert body["message"] == "Created 3 budget(s) from template 'Simple'"
    assert body["skipped"] == []
    amounts = sorted(b["amount"] for b in body["budgets"])
    assert amounts == [120, 400, 1200]
    assert all(b["year"] is None and b["month"] is None for b in body["budgets"])
    assert all(b["alert_threshold"] == 90 for b in body["budgets"])


def test_apply_template_uses_default_income(auth_client):
    template = auth_client.post(
        "/api/budget-templates", json={"name": "One", "items": [{"category_name": "Housing", "percentage": 20}]}
    ).get_json()

    body = auth_client.post(f"/api/budget-templates/{template['id']}/apply", json={}).get_json()

    assert body["budgets"][0]["amount"] == 1000


def test_apply_template_replace_existing(auth_client):
    create_budget(auth_client, "Housing", 999)
    create_budget(auth_client, "Shopping", 50)
    template = auth_client.post(
        "/api/budget-templates", json={"name": "Rent", "items": [{"category_name": "Housing", "percentage": 25}]}
    ).get_json()

    kept = auth_client.post(f"/api/budget-templates/{template['id']}/apply", json={"monthly_income": 4000})
    assert kept.status_code == 400
    assert kept.get_json()["skipped"] == [
        {"category_name": "Housing", "reason": "Budget already exists for this category"}
    ]
    assert len(auth_client.get("/api/budgets").get_json()) == 2

    replaced = auth_client.post(
        f"/api/budget-templates/{template['id']}/apply", json={"monthly_income": 4000, "replace_existing": True}
    )
    assert replaced.status_code == 200

    budgets = auth_client.get("/api/budgets").get_json()
    assert [(b["category_name"], b["amount"]) for b in budgets] == [("Housing", 1000)]


def test_failed_apply_keeps_existing_budgets(auth_client):
    create_budget(auth_client, "Housing", 999)
    template = auth_client.post(
        "/api/budget-templates", json={"name": "Odd", "items": [{"category_name": "Yachts", "percentage": 25}]}
    ).get_json()

    response = auth_client.post(
        f"/api/budget-templates/{template['id']}/apply", json={"replace_existing": True}
    )

    assert response.status_code == 400
    assert len(auth_client.get("/api/budgets").get_json()) == 1
