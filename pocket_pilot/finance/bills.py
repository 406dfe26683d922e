"""
Bill due-date status, streaks, cost normalisation and recurring-bill detection.
"""

import math
from collections import OrderedDict

from .schedule import advance_date, iso, to_date


MONTHLY_FACTORS = {"weekly": 4.33, "biweekly": 2.17, "monthly": 1.0, "yearly": 1 / 12}
ANNUAL_FACTORS = {"weekly": 52, "biweekly": 26, "monthly": 12, "yearly": 1}
FREQUENCY_ORDER = ("weekly", "biweekly", "monthly", "yearly")

BILL_TYPE_KEYWORDS = OrderedDict(
    [
        ("utilities", ["hydro", "electric", "gas", "water", "utility", "energy", "power"]),
        (
            "subscriptions",
            [
                "netflix",
                "spotify",
                "amazon prime",
                "disney",
                "hulu",
                "apple",
                "youtube",
                "adobe",
                "microsoft 365",
                "dropbox",
            ],
        ),
        ("insurance", ["insurance", "geico", "allstate", "progressive", "state farm", "coverage"]),
        ("rent_mortgage", ["rent", "mortgage", "lease", "housing", "property"]),
        ("loans", ["loan", "payment", "credit", "finance", "lending"]),
        (
            "phone_internet",
            ["rogers", "bell", "telus", "fido", "koodo", "virgin", "internet", "mobile", "phone", "cell", "wireless"],
        ),
        ("memberships", ["gym", "fitness", "membership", "club", "costco", "amazon prime"]),
    ]
)

MIN_AMOUNT_CONSISTENCY = 0.7
MIN_INTERVAL_CONSISTENCY = 0.5
MIN_CONFIDENCE = 50


def bill_status(next_due_date, today):
    """Return ``(status, days_until_due)`` for a bill due on *next_due_date*."""
    days_until_due = (to_date(next_due_date) - today).days
    if days_until_due < 0:
        status = "overdue"
    elif days_until_due == 0:
        status = "due-today"
    elif days_until_due <= 3:
        status = "due-soon"
    else:
        status = "upcoming"
    return status, days_until_due


def monthly_equivalent(amount, frequency):
    if amount is None:
        return 0.0
    return round(amount * MONTHLY_FACTORS[frequency], 2)


def annual_cost(amount, frequency):
    if amount is None:
        return 0.0
    return round(amount * ANNUAL_FACTORS[frequency], 2)


def on_time_rate(on_time_payments, total_payments):
    if not total_payments:
        return 0
    return round(on_time_payments / total_payments * 100)


def streak_message(current_streak, longest_streak):
    if not current_streak:
        return "No streak yet"
    noun = "payment" if current_streak == 1 else "payments"
    if current_streak >= longest_streak:
        return f"{current_streak} on-time {noun} (personal best!)"
    return f"{current_streak} on-time {noun} (best: {longest_streak})"


def record_payment(bill, payment_date):
    """
    Compute the bill fields and payment row produced by paying *bill* on
    *payment_date*.

    A payment counts as on time when it happens on or before the due date it
    settles. A late payment resets the current streak.
    """
    payment_date = to_date(payment_date)
    due_date = to_date(bill["next_due_date"])
    delta = (due_date - payment_date).days
    was_on_time = delta >= 0

    current_streak = bill.get("current_streak") or 0
    longest_streak = bill.get("longest_streak") or 0
    if was_on_time:
        current_streak += 1
        longest_streak = max(longest_streak, current_streak)
    else:
        current_streak = 0

    bill_updates = {
        "last_paid_date": iso(payment_date),
        "next_due_date": iso(advance_date(due_date, bill["frequency"])),
        "current_streak": current_streak,
        "longest_streak": longest_streak,
        "total_payments": (bill.get("total_payments") or 0) + 1,
        "on_time_payments": (bill.get("on_time_payments") or 0) + (1 if was_on_time else 0),
    }
    payment = {
        "payment_date": iso(payment_date),
        "due_date": iso(due_date),
        "was_on_time": was_on_time,
        "days_early": max(delta, 0),
        "days_late": max(-delta, 0),
    }
    return bill_updates, payment


def decorate_bill(bill, today):
    status, days_until_due = bill_status(bill["next_due_date"], today)
    bill["status"] = status
    bill["days_until_due"] = days_until_due
    bill["monthly_equivalent"] = monthly_equivalent(bill.get("amount"), bill["frequency"])
    bill["on_time_rate"] = on_time_rate(bill.get("on_time_payments"), bill.get("total_payments"))
    bill["streak_message"] = streak_message(bill.get("current_streak"), bill.get("longest_streak"))
    return bill


def summarize_annual_cost(bills):
    costs = []
    for bill in bills:
        amount = bill.get("amount")
        yearly = annual_cost(amount, bill["frequency"])
        costs.append(
            {
                "bill_id": bill["id"],
                "bill_name": bill["name"],
                "bill_type": bill.get("bill_type") or "other",
                "frequency": bill["frequency"],
                "amount": amount,
                "annual_cost": yearly,
                "monthly_average": round(yearly / 12, 2),
            }
        )

    def group(key, values):
        result = []
        for value in values:
            matching = [cost for cost in costs if cost[key] == value]
            if matching:
                result.append(
                    {
                        key.replace("bill_", ""): value,
                        "count": len(matching),
                        "annual_cost": round(sum(cost["annual_cost"] for cost in matching), 2),
                    }
                )
        return result

    total = round(sum(cost["annual_cost"] for cost in costs), 2)
    return {
        "total_annual_cost": total,
        "total_monthly_average": round(sum(cost["monthly_average"] for cost in costs), 2),
        "monthly_average": round(total / 12, 2),
        "by_type": group("bill_type", list(BILL_TYPE_KEYWORDS) + ["other"]),
        "by_frequency": group("frequency", FREQUENCY_ORDER),
        "bills": sorted(costs, key=lambda cost: cost["annual_cost"], reverse=True),
    }


def detect_bill_type(merchant, category_name=None):
    search_text = f"{merchant} {category_name or ''}".lower()
    for bill_type, keywords in BILL_TYPE_KEYWORDS.items():
        if any(keyword in search_text for keyword in keywords):
            return bill_type
    return "other"


def detect_frequency(avg_days):
    """Map an average gap in days to ``(frequency, confidence)``."""
    if 5 <= avg_days <= 9:
        return "weekly", 1 - abs(avg_days - 7) / 7
    if 12 <= avg_days <= 16:
        return "biweekly", 1 - abs(avg_days - 14) / 14
    if 26 <= avg_days <= 35:
        return "monthly", 1 - abs(avg_days - 30) / 30
    if 350 <= avg_days <= 380:
        return "yearly", 1 - abs(avg_days - 365) / 365
    return "monthly", 0.3


def _consistency(values):
    mean = sum(values) / len(values)
    if mean <= 0:
        return mean, 0.0
    variance = sum((value - mean) ** 2 for value in values) / len(values)
    return mean, 1 - math.sqrt(variance) / mean


def detect_recurring_bills(transactions, existing_bill_names=(), min_transactions=3):
    """
    Find expense descriptions that repeat with a stable amount and interval.

    *transactions* are dicts with ``description``, ``amount``, ``date``,
    ``category_id`` and ``category_name``, sorted by date ascending.
    """
    existing = {name.lower() for name in existing_bill_names}
    groups = OrderedDict()
    for txn in transactions:
        merchant = (txn.get("description") or "").strip().lower() or "unknown"
        groups.setdefault(merchant, []).append(txn)

    detected = []
    for merchant, txns in groups.items():
        if len(txns) < min_transactions or merchant in existing:
            continue

        avg_amount, amount_consistency = _consistency([abs(txn["amount"]) for txn in txns])
        if amount_consistency < MIN_AMOUNT_CONSISTENCY:
            continue

        dates = sorted(to_date(txn["date"]) for txn in txns)
        gaps = [(later - earlier).days for earlier, later in zip(dates, dates[1:])]
        if not gaps:
            continue
        avg_gap, interval_consistency = _consistency(gaps)
        if interval_consistency < MIN_INTERVAL_CONSISTENCY:
            continue

        frequency, frequency_confidence = detect_frequency(avg_gap)
        confidence = min(
            (amount_consistency * 0.3 + interval_consistency * 0.4 + frequency_confidence * 0.3) * 100,
            100,
        )
        if confidence < MIN_CONFIDENCE:
            continue

        last = txns[-1]
        detected.append(
            {
                "merchant_name": merchant[:1].upper() + merchant[1:],
                "suggested_amount": round(avg_amount, 2),
                "suggested_frequency": frequency,
                "confidence": round(confidence),
                "transaction_count": len(txns),
                "last_transaction_date": iso(to_date(last["date"])),
                "average_days_between": round(avg_gap),
                "suggested_bill_type": detect_bill_type(merchant, last.get("category_name")),
                "category_id": last.get("category_id"),
                "category_name": last.get("category_name"),
            }
        )

    detected.sort(key=lambda item: item["confidence"], reverse=True)
    return detected
