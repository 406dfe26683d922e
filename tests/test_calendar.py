from datetime import date, timedelta

import pytest

from conftest import add_transaction
from pocket_pilot.finance.calendar import (
    build_calendar,
    detect_payday_pattern,
    payment_schedule,
    round_to_hundred,
    suggest_payment,
)

TODAY = date(2025, 2, 10)


def test_round_to_hundred_sends_halves_down():
    assert round_to_hundred(2049) == 2000
    assert round_to_hundred(2050) == 2000
    assert round_to_hundred(2051) == 2100
    assert round_to_hundred(1949.99) == 1900
    assert round_to_hundred(1950.01) == 2000


def test_paychecks_on_the_first_predict_next_first():
    income = [
        {"amount": 2050.0, "date": "2025-02-01", "description": "Payroll"},
        {"amount": 2000.0, "date": "2025-01-01", "description": "Payroll"},
    ]

    paydays = detect_payday_pattern(income, TODAY)

    assert paydays == [{"date": "2025-03-01", "amount": 2025.0, "description": "Payroll"}]


def test_payday_detection_needs_a_repeating_amount():
    assert detect_payday_pattern([{"amount": 2000.0, "date": "2025-02-01"}], TODAY) == []

    scattered = [
        {"amount": 500.0, "date": "2025-02-03"},
        {"amount": 500.0, "date": "2025-01-12"},
        {"amount": 500.0, "date": "2024-12-25"},
    ]
    assert detect_payday_pattern(scattered, TODAY) == []

    distinct = [{"amount": 900.0, "date": "2025-02-01"}, {"amount": 3000.0, "date": "2025-01-01"}]
    assert detect_payday_pattern(distinct, TODAY) == []


def test_payday_rolls_forward_to_this_month():
    income = [
        {"amount": 1500.0, "date": "2025-01-15", "description": "Salary"},
        {"amount": 1500.0, "date": "2024-12-15", "description": "Salary"},
    ]

    paydays = detect_payday_pattern(income, TODAY)

    assert paydays[0]["date"] == "2025-02-15"


def test_month_end_payday_clamps_to_short_month():
    income = [
        {"amount": 3000.0, "date": "2025-01-31", "description": "Salary"},
        {"amount": 3000.0, "date": "2024-12-31", "description": "Salary"},
    ]

    paydays = detect_payday_pattern(income, TODAY)

    assert paydays[0]["date"] == "2025-02-28"


def test_build_calendar_collects_events():
    calendar = build_calendar(
        TODAY,
        TODAY + timedelta(days=30),
        TODAY,
        bills=[{"name": "Hydro", "amount": 120.0, "next_due_date": "2025-02-12"}],
        recurring=[{"description": "Gym", "amount": -40.0, "next_occurrence_date": "2025-02-20", "category_name": "Health"}],
        goals=[{"name": "Trip", "auto_contribute_amount": 100.0, "auto_contribute_day": 15}],
        income_transactions=[
            {"amount": 2000.0, "date": "2025-02-01", "description": "Payroll"},
            {"amount": 2000.0, "date": "2025-01-01", "description": "Payroll"},
        ],
    )

    types = [(event["date"], event["type"]) for event in calendar["events"]]
    assert types == [
        ("2025-02-12", "bill"),
        ("2025-02-15", "goal_contribution"),
        ("2025-02-20", "recurring_transaction"),
        ("2025-03-01", "payday"),
        ("2025-03-01", "budget_reset"),
    ]
    bill = calendar["events"][0]
    assert bill["priority"] == "high"
    assert bill["days_away"] == 2
    assert calendar["calendar"]["2025-03-01"][1]["title"] == "Budget Reset"
    assert calendar["summary"]["upcoming_bills"] == 1
    assert calendar["summary"]["total_upcoming_amount"] == 120.0
    assert calendar["summary"]["next_payday"]["date"] == "2025-03-01"


def test_build_calendar_bill_priorities():
    bills = [
        {"name": "Soon", "amount": 1.0, "next_due_date": "2025-02-13"},
        {"name": "Week", "amount": 1.0, "next_due_date": "2025-02-16"},
        {"name": "Later", "amount": 1.0, "next_due_date": "2025-02-28"},
        {"name": "Outside", "amount": 1.0, "next_due_date": "2025-04-01"},
    ]

    events = build_calendar(TODAY, date(2025, 2, 28), TODAY, bills=bills)["events"]

    assert [(e["title"], e["priority"]) for e in events] == [("Soon", "high"), ("Week", "medium"), ("Later", "low")]


def bill(days_until_due, amount=100.0, **extra):
    return {
        "id": 1,
        "name": "Bill",
        "amount": amount,
        "next_due_date": str(TODAY + timedelta(days=days_until_due)),
        **extra,
    }


@pytest.mark.parametrize(
    "days, balance, extra, pay_in, priority",
    [
        (0, 1000, {}, 0, "high"),
        (2, 1000, {}, 0, "high"),
        (10, 1000, {"auto_pay": True}, 10, "low"),
        (10, 100, {}, 7, "medium"),
        (20, 1000, {}, 10, "low"),
        (10, 1000, {}, 10, "medium"),
    ],
)
def test_suggest_payment_decision_tree(days, balance, extra, pay_in, priority):
    suggestion = suggest_payment(bill(days, **extra), balance, TODAY)

    assert suggestion["suggested_pay_date"] == str(TODAY + timedelta(days=pay_in))
    assert suggestion["priority"] == priority


def test_suggest_payment_low_balance_keeps_two_day_buffer():
    suggestion = suggest_payment(bill(4), 50, TODAY)

    assert suggestion["suggested_pay_date"] == str(TODAY + timedelta(days=2))
    assert suggestion["reason"].startswith("Low balance detected - wait 2 days")


def test_savings_tips():
    assert suggest_payment(bill(10, bill_type="subscriptions"), 1000, TODAY)["savings_tip"]
    assert suggest_payment(bill(10, bill_type="insurance"), 1000, TODAY)["savings_tip"]
    assert suggest_payment(bill(10, amount=80, bill_type="phone_internet"), 1000, TODAY)["savings_tip"] is None
    assert suggest_payment(bill(10, amount=120, bill_type="phone_internet"), 1000, TODAY)["savings_tip"]
    assert suggest_payment(bill(10, bill_type="utilities"), 1000, TODAY)["savings_tip"] is None


def test_payment_schedule_orders_by_priority():
    bills = [bill(20), bill(2), bill(10), bill(45)]
    bills[0]["id"], bills[1]["id"], bills[2]["id"], bills[3]["id"] = 1, 2, 3, 4

    schedule = payment_schedule(bills, 1000.0, 9000.0, TODAY)

    assert [s["bill_id"] for s in schedule["suggestions"]] == [2, 3, 1]
    assert schedule["summary"] == {
        "total_bills": 3,
        "total_amount": 300.0,
        "current_balance": 1000.0,
        "high_priority": 1,
        "avg_monthly_income": 3000.0,
    }


def test_calendar_endpoint(auth_client):
    today = date.today()
    auth_client.post(
        "/api/bills",
        json={"name": "Hydro", "amount": 90, "frequency": "monthly", "next_due_date": str(today + timedelta(days=5))},
    )

    response = auth_client.get("/api/ai-calendar")
    body = response.get_json()

    assert response.status_code == 200
    assert any(event["type"] == "bill" and event["title"] == "Hydro" for event in body["events"])
    assert any(event["type"] == "budget_reset" for event in body["events"])

    bad = auth_client.get(f"/api/ai-calendar?start={today}&end={today - timedelta(days=1)}")
    assert bad.status_code == 400


def test_payment_schedule_endpoint(auth_client):
    today = date.today()
    add_transaction(auth_client, 3000, "income", description="Payroll")
    add_transaction(auth_client, 500, "expense", description="Groceries")
    auth_client.post(
        "/api/bills",
        json={"name": "Phone", "amount": 60, "frequency": "monthly", "next_due_date": str(today + timedelta(days=1))},
    )

    body = auth_client.get("/api/ai-calendar?action=payment-schedule").get_json()

    assert body["summary"]["current_balance"] == 2500
    assert body["summary"]["avg_monthly_income"] == 1000
    assert body["suggestions"][0]["bill_name"] == "Phone"
    assert body["suggestions"][0]["priority"] == "high"
