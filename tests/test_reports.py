from datetime import date, timedelta

import pytest

from conftest import add_transaction, category_id
from pocket_pilot.finance.reports import find_anomalies, half_averages, percentage_change


def test_percentage_change_edge_cases():
    assert percentage_change(0, 0) == 0.0
    assert percentage_change(0, 50) == 100.0
    assert percentage_change(200, 150) == -25.0
    assert percentage_change(-100, -50) == 50.0


def test_half_averages_favour_second_half_for_odd_lengths():
    assert half_averages([1, 2, 3]) == (1, 2.5)


def test_find_anomalies_flags_amounts_beyond_two_sigma():
    txns = [{"id": i, "date": "2025-01-01", "amount": -20.0, "description": "Lunch"} for i in range(10)]
    txns.append({"id": 99, "date": "2025-01-15", "amount": -200.0, "description": "Catering"})

    anomalies = find_anomalies(txns)

    assert [a["transaction_id"] for a in anomalies] == [99]
    assert anomalies[0]["amount"] == 200.0
    assert anomalies[0]["deviation_factor"] > 2


def test_find_anomalies_without_variance():
    txns = [{"id": i, "date": "2025-01-01", "amount": -20.0} for i in range(5)]

    assert find_anomalies(txns) == []
    assert find_anomalies([]) == []


def run(client, **payload):
    response = client.post("/api/reports", json=payload)
    assert response.status_code == 200, response.get_json()
    return response.get_json()


def test_report_validation(auth_client):
    assert auth_client.post("/api/reports", json={"report_type": "nope"}).status_code == 400
    assert auth_client.post("/api/reports", data="{", content_type="application/json").status_code == 400
    response = auth_client.post(
        "/api/reports", json={"report_type": "custom_date_range", "start_date": "2025-02-01", "end_date": "2025-01-01"}
    )
    assert response.status_code == 400
    assert auth_client.post("/api/reports", json={"report_type": "category_deep_dive", "category_id": 999}).status_code == 404


def test_custom_date_range_report(auth_client):
    savings = auth_client.post("/api/accounts", json={"name": "Savings", "type": "Savings"}).get_json()
    add_transaction(auth_client, 3000, "income", when=date(2025, 1, 1), category="Income")
    add_transaction(auth_client, 100, when=date(2025, 1, 2), category="Food & Dining")
    add_transaction(auth_client, 300, when=date(2025, 1, 2), category="Shopping")
    auth_client.post(
        "/api/transactions/transfer",
        json={"from_account_id": auth_client.account_id, "to_account_id": savings["id"], "amount": 1000, "date": "2025-01-03"},
    )

    body = run(auth_client, report_type="custom_date_range", start_date="2025-01-01", end_date="2025-01-10")

    assert body["report_type"] == "custom_date_range"
    assert body["summary"] == {
        "total_income": 3000,
        "total_expenses": 400,
        "net_flow": 2600,
        "transaction_count": 3,
        "avg_daily_spending": 40,
    }
    assert [(c["category_name"], c["percentage"]) for c in body["by_category"]] == [("Shopping", 75.0), ("Food & Dining", 25.0)]
    assert body["by_account"] == [
        {"account_id": auth_client.account_id, "account_name": "Chequing", "income": 3000, "expenses": 400, "net": 2600}
    ]
    assert body["daily_spending"] == [{"date": "2025-01-02", "amount": 400}]


def test_year_over_year_report(auth_client):
    add_transaction(auth_client, 100, when=date(2023, 3, 5), category="Food & Dining")
    add_transaction(auth_client, 150, when=date(2024, 3, 9), category="Food & Dining")
    add_transaction(auth_client, 50, when=date(2024, 11, 9), category="Shopping")
    add_transaction(auth_client, 1000, "income", when=date(2024, 1, 9), category="Income")

    monthly = run(auth_client, report_type="year_over_year", year1=2023, year2=2024)
    quarterly = run(auth_client, report_type="year_over_year", year1=2023, year2=2024, compare_by="quarter")

    march = monthly["periods"][2]
    assert march["period_label"] == "March"
    assert (march["year1_expenses"], march["year2_expenses"], march["expenses_change_percent"]) == (100, 150, 50.0)
    assert monthly["summary"]["expenses_change"] == 100
    assert monthly["summary"]["income_change_percent"] == 100.0
    assert [c["category_name"] for c in monthly["categories"]] == ["Food & Dining", "Shopping"]
    assert [p["period"] for p in quarterly["periods"]] == ["Q1", "Q2", "Q3", "Q4"]
    assert quarterly["periods"][3]["year2_expenses"] == 50


def test_merchant_report(auth_client):
    for day in (1, 8, 15):
        add_transaction(auth_client, 12, when=date(2025, 1, day), description="Tim Hortons")
    add_transaction(auth_client, 90, when=date(2025, 1, 20), description="Costco")

    body = run(auth_client, report_type="merchant", start_date="2025-01-01", end_date="2025-01-31", min_transactions=2)

    assert body["total_spending"] == 126
    assert len(body["merchants"]) == 1
    tims = body["merchants"][0]
    assert tims["merchant_name"] == "Tim Hortons"
    assert tims["avg_transaction"] == 12
    assert tims["first_transaction"] == "2025-01-01"
    assert tims["last_transaction"] == "2025-01-15"


def test_category_deep_dive_flags_anomalies(auth_client):
    today = date.today()
    for offset in range(10):
        add_transaction(auth_client, 15, when=today - timedelta(days=offset), description="Lunch", category="Food & Dining")
    big = add_transaction(auth_client, 200, when=today, description="Catering", category="Food & Dining")

    body = run(auth_client, report_type="category_deep_dive", category_id=category_id(auth_client, "Food & Dining"), months=3)

    assert body["category_name"] == "Food & Dining"
    assert body["summary"]["transaction_count"] == 11
    assert body["summary"]["max_transaction"] == 200
    assert [a["transaction_id"] for a in body["anomalies"]] == [big["id"]]
    assert body["by_merchant"][0]["merchant_name"] == "Catering"


def test_category_deep_dive_includes_transfers(auth_client):
    savings = auth_client.post("/api/accounts", json={"name": "Savings", "type": "Savings"}).get_json()
    auth_client.post(
        "/api/transactions/transfer",
        json={"from_account_id": auth_client.account_id, "to_account_id": savings["id"], "amount": 100, "date": date.today().isoformat()},
    )

    body = run(auth_client, report_type="category_deep_dive", category_id=category_id(auth_client, "Savings"), months=1)

    assert body["category_type"] == "transfer"
    assert body["summary"]["transaction_count"] == 2
    assert body["summary"]["total"] == 200


def test_monthly_summary_report(auth_client):
    add_transaction(auth_client, 4000, "income", when=date(2025, 3, 1), category="Income")
    add_transaction(auth_client, 1000, when=date(2025, 3, 3), category="Housing")
    add_transaction(auth_client, 500, when=date(2025, 2, 3), category="Housing")
    auth_client.post("/api/budgets", json={"category_id": category_id(auth_client, "Housing"), "amount": 1200})
    auth_client.post(
        "/api/budgets", json={"category_id": category_id(auth_client, "Shopping"), "amount": 50, "year": 2024, "month": 3}
    )

    body = run(auth_client, report_type="monthly_summary", year=2025, month=3)

    assert body["month_name"] == "March"
    assert body["days_elapsed"] == 31
    assert body["summary"]["savings_rate"] == 75.0
    assert body["comparison_to_previous"]["expenses_change_percent"] == 100.0
    assert body["top_categories"][0]["category_name"] == "Housing"
    assert body["budget_status"] == [
        {
            "category_id": category_id(auth_client, "Housing"),
            "category_name": "Housing",
            "budget_amount": 1200,
            "spent": 1000,
            "remaining": 200,
            "percentage_used": 83.33,
        }
    ]
    assert body["daily_spending"][0]["day_of_week"] == "Monday"


@pytest.mark.parametrize("year_field", ["year", "tax_year"])
def test_tax_summary_report(auth_client, year_field):
    add_transaction(auth_client, 5000, "income", when=date(2024, 2, 1), category="Income")
    add_transaction(auth_client, 200, when=date(2024, 5, 1), category="Healthcare", description="Dentist")
    add_transaction(auth_client, 75, when=date(2024, 8, 1), description="Red Cross donation")
    add_transaction(auth_client, 60, when=date(2024, 8, 2), category="Shopping")

    body = run(auth_client, report_type="tax_summary", **{year_field: 2024})

    assert body["tax_year"] == 2024
    assert body["income"]["total"] == 5000
    assert body["deductions"]["total"] == 200
    assert body["charitable_donations"]["total"] == 75
    assert [q["net"] for q in body["quarterly_breakdown"]] == [5000, -200, 0, 0]
    assert "not be considered tax advice" in body["disclaimer"]


def test_savings_rate_report(auth_client):
    today = date.today()
    add_transaction(auth_client, 1000, "income", when=today, category="Income")
    add_transaction(auth_client, 250, when=today, category="Shopping")

    body = run(auth_client, report_type="savings_rate", months=6)

    assert body["overall"]["savings_rate"] == 75.0
    assert body["monthly"][-1]["month"] == today.isoformat()[:7]
    assert body["trend"]["direction"] == "stable"
    assert body["goals_impact"]["total_goal_contributions"] == 0
