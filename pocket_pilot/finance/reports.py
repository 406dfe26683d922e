"""
Report aggregation for ``POST /api/reports``.

Each ``*_report`` function loads the user's rows for its window and reduces
them to the JSON document returned by the API. Transfers between the user's
own accounts are left out of income and spending totals.
"""

import calendar as calendar_module
import math
from collections import OrderedDict
from datetime import date

from dateutil.relativedelta import relativedelta

from ..db import rows_to_dicts
from .budgets import applies_to_month
from .schedule import days_in_month, iso, month_bounds, shift_month, to_date


MONTH_NAMES = list(calendar_module.month_name)
DEDUCTION_KEYWORDS = ("business", "office", "work", "professional", "medical", "education")
CHARITY_KEYWORDS = ("charity", "donation", "non-profit", "nonprofit", "church", "temple", "mosque")
TAX_DISCLAIMER = (
    "This summary is for informational purposes only and should not be considered tax advice. "
    "Please consult a qualified tax professional for actual tax filing. Amounts may not include "
    "all taxable income or deductible expenses."
)
ANOMALY_SIGMA = 2


def percentage_change(old, new):
    if old == 0 and new == 0:
        return 0.0
    if old == 0:
        return 100.0
    return round((new - old) / abs(old) * 100, 2)


def money(value):
    return round(value, 2)


def population_stdev(values):
    if not values:
        return 0.0
    mean = sum(values) / len(values)
    return math.sqrt(sum((value - mean) ** 2 for value in values) / len(values))


def find_anomalies(transactions):
    """Transactions whose absolute amount exceeds the mean by more than two standard deviations."""
    amounts = [abs(txn["amount"]) for txn in transactions]
    if not amounts:
        return []
    mean = sum(amounts) / len(amounts)
    sigma = population_stdev(amounts)
    threshold = mean + ANOMALY_SIGMA * sigma
    anomalies = [
        {
            "transaction_id": txn["id"],
            "date": txn["date"],
            "amount": money(abs(txn["amount"])),
            "description": txn.get("description") or "",
            "deviation_factor": round((abs(txn["amount"]) - mean) / sigma, 2) if sigma > 0 else 0.0,
        }
        for txn in transactions
        if abs(txn["amount"]) > threshold
    ]
    anomalies.sort(key=lambda item: item["deviation_factor"], reverse=True)
    return anomalies


def half_averages(values):
    """Averages of the first and second half of *values* (odd lengths favour the second half)."""
    middle = len(values) // 2
    first, second = values[:middle], values[middle:]
    return sum(first) / len(first), sum(second) / len(second)


def _fetch_transactions(db, user_id, start_date, end_date, where="", params=(), include_transfers=False):
    if not include_transfers:
        where = "AND t.is_transfer = 0 " + where
    rows = db.execute(
        f"""
        SELECT t.id, t.date, t.amount, t.description, t.category_id, t.account_id,
               c.name AS category_name, c.type AS category_type, c.is_tax_related,
               a.name AS account_name
        FROM transactions t
        LEFT JOIN categories c ON c.id = t.category_id
        LEFT JOIN accounts a ON a.id = t.account_id
        WHERE t.user_id = ? AND t.date >= ? AND t.date <= ? {where}
        ORDER BY t.date ASC, t.id ASC
        """,
        (user_id, iso(start_date), iso(end_date), *params),
    ).fetchall()
    return [{key: row[key] for key in row.keys()} for row in rows]


def _totals(transactions):
    income = sum(txn["amount"] for txn in transactions if txn["amount"] > 0)
    expenses = sum(-txn["amount"] for txn in transactions if txn["amount"] < 0)
    return income, expenses


def _expenses_by_category(transactions):
    groups = OrderedDict()
    for txn in transactions:
        if txn["amount"] >= 0:
            continue
        entry = groups.setdefault(
            txn["category_id"],
            {"category_id": txn["category_id"], "category_name": txn["category_name"] or "Uncategorized", "total": 0.0, "transaction_count": 0},
        )
        entry["total"] += -txn["amount"]
        entry["transaction_count"] += 1
    return groups


def _daily_spending(transactions):
    daily = OrderedDict()
    for txn in transactions:
        if txn["amount"] < 0:
            daily[txn["date"]] = daily.get(txn["date"], 0.0) - txn["amount"]
    return [{"date": day, "amount": money(amount)} for day, amount in sorted(daily.items())]


def custom_date_range_report(db, user_id, params, today):
    txns = _fetch_transactions(db, user_id, params.start_date, params.end_date)
    income, expenses = _totals(txns)
    days = (params.end_date - params.start_date).days + 1

    by_category = []
    for entry in _expenses_by_category(txns).values():
        entry["percentage"] = round(entry["total"] / expenses * 100, 2) if expenses else 0.0
        entry["total"] = money(entry["total"])
        by_category.append(entry)
    by_category.sort(key=lambda entry: entry["total"], reverse=True)

    accounts = OrderedDict()
    for txn in txns:
        entry = accounts.setdefault(
            txn["account_id"],
            {"account_id": txn["account_id"], "account_name": txn["account_name"] or "Unknown", "income": 0.0, "expenses": 0.0},
        )
        if txn["amount"] > 0:
            entry["income"] += txn["amount"]
        else:
            entry["expenses"] += -txn["amount"]
    by_account = [
        {**entry, "income": money(entry["income"]), "expenses": money(entry["expenses"]), "net": money(entry["income"] - entry["expenses"])}
        for entry in accounts.values()
    ]

    return {
        "report_type": "custom_date_range",
        "start_date": iso(params.start_date),
        "end_date": iso(params.end_date),
        "summary": {
            "total_income": money(income),
            "total_expenses": money(expenses),
            "net_flow": money(income - expenses),
            "transaction_count": len(txns),
            "avg_daily_spending": money(expenses / days) if days > 0 else 0.0,
        },
        "by_category": by_category,
        "by_account": by_account,
        "daily_spending": _daily_spending(txns),
    }


def year_over_year_report(db, user_id, params, today):
    first_year, last_year = sorted((params.year1, params.year2))
    txns = _fetch_transactions(db, user_id, date(first_year, 1, 1), date(last_year, 12, 31))

    if params.compare_by == "quarter":
        keys = ["Q1", "Q2", "Q3", "Q4"]

        def period_of(day):
            return f"Q{(to_date(day).month - 1) // 3 + 1}"

        def label(key):
            return key

    else:
        keys = [f"{month:02d}" for month in range(1, 13)]

        def period_of(day):
            return str(day)[5:7]

        def label(key):
            return MONTH_NAMES[int(key)]

    years = {params.year1: {}, params.year2: {}}
    totals = {params.year1: [0.0, 0.0], params.year2: [0.0, 0.0]}
    categories = OrderedDict()
    for txn in txns:
        year = int(str(txn["date"])[:4])
        if year not in years:
            continue
        bucket = years[year].setdefault(period_of(txn["date"]), [0.0, 0.0])
        if txn["amount"] > 0:
            bucket[0] += txn["amount"]
            totals[year][0] += txn["amount"]
            continue
        bucket[1] += -txn["amount"]
        totals[year][1] += -txn["amount"]
        entry = categories.setdefault(
            txn["category_id"],
            {"category_id": txn["category_id"], "category_name": txn["category_name"] or "Uncategorized", "year1": 0.0, "year2": 0.0},
        )
        entry["year1" if year == params.year1 else "year2"] += -txn["amount"]

    periods = []
    for key in keys:
        y1 = years[params.year1].get(key, [0.0, 0.0])
        y2 = years[params.year2].get(key, [0.0, 0.0])
        periods.append(
            {
                "period": key,
                "period_label": label(key),
                "year1_income": money(y1[0]),
                "year1_expenses": money(y1[1]),
                "year2_income": money(y2[0]),
                "year2_expenses": money(y2[1]),
                "expenses_change_percent": percentage_change(y1[1], y2[1]),
            }
        )

    category_rows = [
        {
            "category_id": entry["category_id"],
            "category_name": entry["category_name"],
            "year1_total": money(entry["year1"]),
            "year2_total": money(entry["year2"]),
            "change": money(entry["year2"] - entry["year1"]),
            "change_percent": percentage_change(entry["year1"], entry["year2"]),
        }
        for entry in categories.values()
    ]
    category_rows.sort(key=lambda row: abs(row["change"]), reverse=True)

    (income1, expenses1), (income2, expenses2) = totals[params.year1], totals[params.year2]
    return {
        "report_type": "year_over_year",
        "year1": params.year1,
        "year2": params.year2,
        "compare_by": params.compare_by,
        "summary": {
            "year1_income": money(income1),
            "year1_expenses": money(expenses1),
            "year2_income": money(income2),
            "year2_expenses": money(expenses2),
            "income_change": money(income2 - income1),
            "income_change_percent": percentage_change(income1, income2),
            "expenses_change": money(expenses2 - expenses1),
            "expenses_change_percent": percentage_change(expenses1, expenses2),
        },
        "periods": periods,
        "categories": category_rows,
    }


def merchant_report(db, user_id, params, today):
    txns = _fetch_transactions(db, user_id, params.start_date, params.end_date, "AND t.amount < 0")
    total_spending = sum(-txn["amount"] for txn in txns)

    merchants = OrderedDict()
    for txn in txns:
        name = (txn["description"] or "").strip() or "Unknown"
        entry = merchants.setdefault(
            name,
            {
                "merchant_name": name,
                "total": 0.0,
                "transaction_count": 0,
                "first_transaction": txn["date"],
                "last_transaction": txn["date"],
                "category_id": txn["category_id"],
                "category_name": txn["category_name"],
            },
        )
        entry["total"] += -txn["amount"]
        entry["transaction_count"] += 1
        entry["first_transaction"] = min(entry["first_transaction"], txn["date"])
        entry["last_transaction"] = max(entry["last_transaction"], txn["date"])

    rows = []
    for entry in merchants.values():
        if entry["transaction_count"] < params.min_transactions:
            continue
        entry["avg_transaction"] = money(entry["total"] / entry["transaction_count"])
        entry["percentage"] = round(entry["total"] / total_spending * 100, 2) if total_spending else 0.0
        entry["total"] = money(entry["total"])
        rows.append(entry)
    rows.sort(key=lambda entry: entry["total"], reverse=True)

    return {
        "report_type": "merchant",
        "start_date": iso(params.start_date),
        "end_date": iso(params.end_date),
        "total_spending": money(total_spending),
        "merchants": rows[: params.limit],
    }


def category_deep_dive_report(db, user_id, category, params, today):
    start_date = today.replace(day=1) - relativedelta(months=params.months - 1)
    txns = _fetch_transactions(
        db, user_id, start_date, today, "AND t.category_id = ?", (category["id"],), include_transfers=True
    )
    amounts = [abs(txn["amount"]) for txn in txns]
    total = sum(amounts)
    average = total / len(amounts) if amounts else 0.0

    monthly = OrderedDict()
    merchants = OrderedDict()
    for txn in txns:
        month = monthly.setdefault(str(txn["date"])[:7], [0.0, 0])
        month[0] += abs(txn["amount"])
        month[1] += 1
        merchant = merchants.setdefault((txn["description"] or "").strip() or "Unknown", [0.0, 0])
        merchant[0] += abs(txn["amount"])
        merchant[1] += 1

    monthly_trend = [
        {"month": key, "total": money(value[0]), "transaction_count": value[1], "avg_transaction": money(value[0] / value[1])}
        for key, value in sorted(monthly.items())
    ]
    by_merchant = sorted(
        (
            {
                "merchant_name": name,
                "total": money(value[0]),
                "transaction_count": value[1],
                "percentage": round(value[0] / total * 100, 2) if total else 0.0,
            }
            for name, value in merchants.items()
        ),
        key=lambda entry: entry["total"],
        reverse=True,
    )[:10]

    trend, trend_percentage = "stable", 0.0
    if len(monthly_trend) >= 2:
        first, second = half_averages([entry["total"] for entry in monthly_trend])
        trend_percentage = percentage_change(first, second)
        if trend_percentage > 10:
            trend = "increasing"
        elif trend_percentage < -10:
            trend = "decreasing"

    avg_monthly = sum(entry["total"] for entry in monthly_trend) / len(monthly_trend) if monthly_trend else 0.0
    ranked = sorted(monthly_trend, key=lambda entry: entry["total"], reverse=True)

    return {
        "report_type": "category_deep_dive",
        "category_id": category["id"],
        "category_name": category["name"],
        "category_type": category["type"],
        "period": {"start_date": iso(start_date), "end_date": iso(today)},
        "summary": {
            "total": money(total),
            "transaction_count": len(txns),
            "avg_transaction": money(average),
            "min_transaction": money(min(amounts)) if amounts else 0.0,
            "max_transaction": money(max(amounts)) if amounts else 0.0,
            "std_deviation": money(population_stdev(amounts)),
        },
        "monthly_trend": monthly_trend,
        "by_merchant": by_merchant,
        "anomalies": find_anomalies(txns),
        "insights": {
            "trend": trend,
            "trend_percentage": trend_percentage,
            "avg_monthly": money(avg_monthly),
            "projected_annual": money(avg_monthly * 12),
            "peak_month": ranked[0]["month"] if ranked else "",
            "low_month": ranked[-1]["month"] if ranked else "",
        },
    }


def _bill_counts(bills, start_date, end_date, today):
    paid = upcoming = overdue = 0
    paid_amount = 0.0
    for bill in bills:
        last_paid = to_date(bill["last_paid_date"]) if bill["last_paid_date"] else None
        if last_paid and start_date <= last_paid <= end_date:
            paid += 1
            paid_amount += bill["amount"] or 0
        elif to_date(bill["next_due_date"]) < today:
            overdue += 1
        else:
            upcoming += 1
    return {"paid": paid, "upcoming": upcoming, "overdue": overdue, "total_paid_amount": money(paid_amount)}


def monthly_summary_report(db, user_id, params, today):
    start_date, end_date = month_bounds(params.year, params.month)
    total_days = days_in_month(params.year, params.month)
    is_current = (today.year, today.month) == (params.year, params.month)
    days_elapsed = today.day if is_current else total_days

    txns = _fetch_transactions(db, user_id, start_date, end_date)
    income, expenses = _totals(txns)
    prev_start, prev_end = month_bounds(*shift_month(params.year, params.month, -1))
    prev_income, prev_expenses = _totals(_fetch_transactions(db, user_id, prev_start, prev_end))

    categories = _expenses_by_category(txns)
    top_categories = sorted(
        (
            {
                "category_id": entry["category_id"],
                "category_name": entry["category_name"],
                "total": money(entry["total"]),
                "percentage": round(entry["total"] / expenses * 100, 2) if expenses else 0.0,
            }
            for entry in categories.values()
        ),
        key=lambda entry: entry["total"],
        reverse=True,
    )[:5]

    budget_rows = db.execute(
        """
        SELECT b.id, b.amount, b.category_id, b.year, b.month, c.name AS category_name
        FROM budgets b JOIN categories c ON c.id = b.category_id
        WHERE b.user_id = ?
        ORDER BY c.name
        """,
        (user_id,),
    ).fetchall()
    budget_status = []
    for row in rows_to_dicts(budget_rows):
        if not applies_to_month(row, params.year, params.month):
            continue
        spent = categories[row["category_id"]]["total"] if row["category_id"] in categories else 0.0
        budget_status.append(
            {
                "category_id": row["category_id"],
                "category_name": row["category_name"],
                "budget_amount": row["amount"],
                "spent": money(spent),
                "remaining": money(row["amount"] - spent),
                "percentage_used": round(spent / row["amount"] * 100, 2) if row["amount"] else 0.0,
            }
        )

    daily = [
        {**entry, "day_of_week": to_date(entry["date"]).strftime("%A")} for entry in _daily_spending(txns)
    ]

    contributions = db.execute(
        """
        SELECT gc.goal_id, SUM(gc.amount) AS contributed, g.name, g.target_amount, g.current_amount
        FROM goal_contributions gc JOIN goals g ON g.id = gc.goal_id
        WHERE gc.user_id = ? AND gc.date >= ? AND gc.date <= ?
        GROUP BY gc.goal_id, g.name, g.target_amount, g.current_amount
        """,
        (user_id, iso(start_date), iso(end_date)),
    ).fetchall()
    goal_progress = [
        {
            "goal_id": row["goal_id"],
            "goal_name": row["name"],
            "contributed_this_month": money(row["contributed"]),
            "current_amount": row["current_amount"],
            "target_amount": row["target_amount"],
            "percentage": round(row["current_amount"] / row["target_amount"] * 100, 2) if row["target_amount"] else 0.0,
        }
        for row in contributions
    ]

    bills = db.execute(
        "SELECT amount, next_due_date, last_paid_date FROM bills WHERE user_id = ? AND is_active = 1",
        (user_id,),
    ).fetchall()

    return {
        "report_type": "monthly_summary",
        "year": params.year,
        "month": params.month,
        "month_name": MONTH_NAMES[params.month],
        "days_in_month": total_days,
        "days_elapsed": days_elapsed,
        "summary": {
            "total_income": money(income),
            "total_expenses": money(expenses),
            "net_flow": money(income - expenses),
            "savings_rate": round((income - expenses) / income * 100, 2) if income else 0.0,
            "transaction_count": len(txns),
            "avg_daily_spending": money(expenses / days_elapsed) if days_elapsed else 0.0,
        },
        "comparison_to_previous": {
            "income_change": money(income - prev_income),
            "income_change_percent": percentage_change(prev_income, income),
            "expenses_change": money(expenses - prev_expenses),
            "expenses_change_percent": percentage_change(prev_expenses, expenses),
            "net_change": money((income - expenses) - (prev_income - prev_expenses)),
        },
        "top_categories": top_categories,
        "budget_status": budget_status,
        "daily_spending": daily,
        "goal_progress": goal_progress,
        "bills_summary": _bill_counts(bills, start_date, end_date, today),
    }


def _is_deduction(txn):
    text = f"{txn['category_name'] or ''} {txn['description'] or ''}".lower()
    return bool(txn.get("is_tax_related")) or any(keyword in text for keyword in DEDUCTION_KEYWORDS)


def _is_charitable(txn):
    text = f"{txn['category_name'] or ''} {txn['description'] or ''}".lower()
    return any(keyword in text for keyword in CHARITY_KEYWORDS)


def tax_summary_report(db, user_id, params, today):
    txns = _fetch_transactions(db, user_id, date(params.year, 1, 1), date(params.year, 12, 31))

    income_by_category = OrderedDict()
    deductions = OrderedDict()
    charitable = []
    for txn in txns:
        name = txn["category_name"] or "Uncategorized"
        if txn["amount"] > 0:
            entry = income_by_category.setdefault(
                txn["category_id"], {"category_id": txn["category_id"], "category_name": name, "total": 0.0, "tax_type": "income"}
            )
            entry["total"] += txn["amount"]
            continue
        amount = -txn["amount"]
        if _is_charitable(txn):
            charitable.append(
                {"date": txn["date"], "description": txn["description"] or "", "amount": money(amount), "category_name": txn["category_name"]}
            )
        if _is_deduction(txn):
            entry = deductions.setdefault(
                txn["category_id"], {"category_id": txn["category_id"], "category_name": name, "total": 0.0, "tax_type": "deductible"}
            )
            entry["total"] += amount

    quarters = []
    for index in range(4):
        start = f"{params.year}-{index * 3 + 1:02d}-01"
        end = iso(month_bounds(params.year, index * 3 + 3)[1])
        in_quarter = [txn for txn in txns if start <= str(txn["date"]) <= end]
        quarter_income = sum(txn["amount"] for txn in in_quarter if txn["amount"] > 0)
        quarter_deductions = sum(-txn["amount"] for txn in in_quarter if txn["amount"] < 0 and _is_deduction(txn))
        quarters.append(
            {
                "quarter": f"Q{index + 1}",
                "income": money(quarter_income),
                "deductions": money(quarter_deductions),
                "net": money(quarter_income - quarter_deductions),
            }
        )

    def finish(groups):
        return [{**entry, "total": money(entry["total"])} for entry in groups.values()]

    total_deductions = sum(entry["total"] for entry in deductions.values())
    return {
        "report_type": "tax_summary",
        "tax_year": params.year,
        "income": {"total": money(sum(e["total"] for e in income_by_category.values())), "by_category": finish(income_by_category)},
        "deductions": {"total": money(total_deductions), "by_category": finish(deductions)},
        "charitable_donations": {"total": money(sum(item["amount"] for item in charitable)), "transactions": charitable},
        "quarterly_breakdown": quarters,
        "disclaimer": TAX_DISCLAIMER,
    }


def savings_rate_report(db, user_id, params, today):
    start_date = today.replace(day=1) - relativedelta(months=params.months - 1)
    txns = _fetch_transactions(db, user_id, start_date, today)

    months = OrderedDict()
    for txn in txns:
        bucket = months.setdefault(str(txn["date"])[:7], [0.0, 0.0])
        if txn["amount"] > 0:
            bucket[0] += txn["amount"]
        else:
            bucket[1] += -txn["amount"]

    monthly = []
    for key, (income, expenses) in sorted(months.items()):
        monthly.append(
            {
                "month": key,
                "income": money(income),
                "expenses": money(expenses),
                "savings": money(income - expenses),
                "savings_rate": round((income - expenses) / income * 100, 2) if income else 0.0,
            }
        )

    income, expenses = _totals(txns)
    direction, change_rate = "stable", 0.0
    if len(monthly) >= 2:
        first, second = half_averages([entry["savings_rate"] for entry in monthly])
        change_rate = round(second - first, 2)
        if change_rate > 3:
            direction = "improving"
        elif change_rate < -3:
            direction = "declining"

    ranked = sorted(monthly, key=lambda entry: entry["savings_rate"], reverse=True)
    best = ranked[0] if ranked else {"month": "", "savings_rate": 0.0}
    worst = ranked[-1] if ranked else {"month": "", "savings_rate": 0.0}

    contributed = db.execute(
        "SELECT COALESCE(SUM(amount), 0) FROM goal_contributions WHERE user_id = ? AND date >= ? AND date <= ?",
        (user_id, iso(start_date), iso(today)),
    ).fetchone()[0]

    return {
        "report_type": "savings_rate",
        "period": {"start_date": iso(start_date), "end_date": iso(today)},
        "overall": {
            "total_income": money(income),
            "total_expenses": money(expenses),
            "total_savings": money(income - expenses),
            "savings_rate": round((income - expenses) / income * 100, 2) if income else 0.0,
        },
        "monthly": monthly,
        "trend": {
            "direction": direction,
            "change_rate": change_rate,
            "avg_savings_rate": round(sum(e["savings_rate"] for e in monthly) / len(monthly), 2) if monthly else 0.0,
            "best_month": best["month"],
            "best_rate": best["savings_rate"],
            "worst_month": worst["month"],
            "worst_rate": worst["savings_rate"],
        },
        "goals_impact": {
            "total_goal_contributions": money(contributed),
            "goal_contribution_rate": round(contributed / income * 100, 2) if income else 0.0,
        },
    }
