"""
Financial calendar: upcoming bills, recurring transactions, goal
contributions, detected paydays and budget resets, plus a suggested bill
payment schedule.
"""

import math

from dateutil.relativedelta import relativedelta

from .schedule import iso, to_date


PRIORITY_ORDER = {"high": 0, "medium": 1, "low": 2}

SAVINGS_TIPS = {
    "subscriptions": "Consider reviewing if you're using this subscription. Many subscriptions go unused.",
    "phone_internet": "Phone/internet bills over $100/month may have room for negotiation.",
    "insurance": "Consider shopping around for insurance quotes annually to ensure you have the best rate.",
}


def round_to_hundred(amount):
    """Nearest hundred; exact halves go to the lower hundred (2050 -> 2000)."""
    return int(math.ceil(amount / 100 - 0.5) * 100)


def detect_payday_pattern(transactions, today):
    """
    Predict the next payday for each recurring income amount.

    *transactions* are income rows (``amount``, ``date``, ``description``)
    ordered newest first. Amounts are grouped to the nearest hundred; a group
    with at least two entries landing on at most two distinct days of the
    month is treated as a pay cycle.
    """
    if len(transactions) < 2:
        return []

    groups = {}
    for txn in transactions:
        groups.setdefault(round_to_hundred(txn["amount"]), []).append(txn)

    paydays = []
    for group in groups.values():
        if len(group) < 2:
            continue
        days = []
        for txn in group:
            day = to_date(txn["date"]).day
            if day not in days:
                days.append(day)
        if len(days) > 2:
            continue

        most_recent = to_date(group[0]["date"])
        next_payday = most_recent + relativedelta(day=days[0])
        if next_payday <= today:
            next_payday += relativedelta(months=1, day=days[0])
        paydays.append(
            {
                "date": iso(next_payday),
                "amount": round(sum(txn["amount"] for txn in group) / len(group), 2),
                "description": group[0].get("description") or "Payday",
            }
        )
    return paydays


def _event(event_date, event_type, title, priority, today, amount=None, category=None):
    days_away = (event_date - today).days
    event = {
        "date": iso(event_date),
        "type": event_type,
        "title": title,
        "priority": priority,
        "is_upcoming": days_away >= 0,
        "days_away": days_away,
    }
    if amount is not None:
        event["amount"] = amount
    if category:
        event["category"] = category
    return event


def _bill_priority(days_away):
    if days_away <= 3:
        return "high"
    if days_away <= 7:
        return "medium"
    return "low"


def build_calendar(start, end, today, bills=(), recurring=(), goals=(), income_transactions=()):
    events = []

    for bill in bills:
        due = to_date(bill["next_due_date"])
        if start <= due <= end:
            events.append(
                _event(due, "bill", bill["name"], _bill_priority((due - today).days), today, bill.get("amount") or 0)
            )

    for item in recurring:
        occurs = to_date(item["next_occurrence_date"])
        if start <= occurs <= end:
            events.append(
                _event(
                    occurs,
                    "recurring_transaction",
                    item["description"],
                    "low",
                    today,
                    item["amount"],
                    item.get("category_name"),
                )
            )

    for goal in goals:
        day = goal.get("auto_contribute_day")
        if not (goal.get("auto_contribute_amount") and day):
            continue
        current = start.replace(day=day)
        while current <= end:
            if current >= start:
                events.append(
                    _event(
                        current,
                        "goal_contribution",
                        f"{goal['name']} contribution",
                        "medium",
                        today,
                        goal["auto_contribute_amount"],
                    )
                )
            current += relativedelta(months=1)

    for payday in detect_payday_pattern(list(income_transactions), today):
        pay_date = to_date(payday["date"])
        if start <= pay_date <= end:
            events.append(_event(pay_date, "payday", payday["description"], "medium", today, payday["amount"]))

    reset = start.replace(day=1)
    if reset < start:
        reset += relativedelta(months=1)
    while reset <= end:
        events.append(_event(reset, "budget_reset", "Budget Reset", "low", today))
        reset += relativedelta(months=1)

    events.sort(key=lambda event: event["date"])

    calendar = {}
    for event in events:
        calendar.setdefault(event["date"], []).append(event)

    upcoming_bills = [event for event in events if event["type"] == "bill" and event["is_upcoming"]]
    summary = {
        "total_events": len(events),
        "upcoming_bills": len(upcoming_bills),
        "total_upcoming_amount": round(sum(event.get("amount") or 0 for event in upcoming_bills), 2),
        "next_payday": next((e for e in events if e["type"] == "payday" and e["is_upcoming"]), None),
        "high_priority": sum(1 for event in events if event["priority"] == "high"),
    }
    return {"calendar": calendar, "events": events, "summary": summary}


def suggest_payment(bill, total_balance, today):
    """Decide when to pay *bill* given the user's combined balance."""
    due = to_date(bill["next_due_date"])
    amount = bill.get("amount") or 0
    days_until_due = (due - today).days

    pay_date = due
    reason = "Pay on due date"
    priority = "medium"

    if days_until_due <= 0:
        pay_date = today
        reason = "Bill is overdue - pay immediately to avoid late fees"
        priority = "high"
    elif days_until_due <= 3:
        pay_date = today
        reason = "Due in 3 days or less - pay now to avoid missing deadline"
        priority = "high"
    elif bill.get("auto_pay"):
        reason = "Auto-pay enabled - will be paid automatically"
        priority = "low"
    elif total_balance < amount * 1.5:
        safe_days = min(days_until_due - 2, 7)
        if safe_days > 0:
            pay_date = today + relativedelta(days=safe_days)
            reason = (
                f"Low balance detected - wait {safe_days} days for potential income "
                "while maintaining safety buffer"
            )
    elif days_until_due > 14:
        pay_date = today + relativedelta(days=days_until_due // 2)
        reason = "Not urgent - can pay mid-way through the period"
        priority = "low"

    bill_type = bill.get("bill_type")
    savings_tip = None
    if bill_type == "subscriptions" or bill_type == "insurance":
        savings_tip = SAVINGS_TIPS[bill_type]
    elif bill_type == "phone_internet" and amount > 100:
        savings_tip = SAVINGS_TIPS[bill_type]

    return {
        "bill_id": bill["id"],
        "bill_name": bill["name"],
        "amount": amount,
        "due_date": iso(due),
        "suggested_pay_date": iso(pay_date),
        "reason": reason,
        "priority": priority,
        "savings_tip": savings_tip,
    }


def payment_schedule(bills, total_balance, income_total, today):
    window_end = today + relativedelta(days=30)
    due_soon = [bill for bill in bills if today <= to_date(bill["next_due_date"]) <= window_end]

    suggestions = [suggest_payment(bill, total_balance, today) for bill in due_soon]
    suggestions.sort(key=lambda item: (PRIORITY_ORDER[item["priority"]], item["suggested_pay_date"]))

    return {
        "suggestions": suggestions,
        "summary": {
            "total_bills": len(due_soon),
            "total_amount": round(sum(bill.get("amount") or 0 for bill in due_soon), 2),
            "current_balance": round(total_balance, 2),
            "high_priority": sum(1 for item in suggestions if item["priority"] == "high"),
            "avg_monthly_income": round(income_total / 3, 2),
        },
    }
