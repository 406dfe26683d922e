"""
Weekly and monthly financial summaries with a 0-100 health score.

The health score is four 25-point components: budgets not exceeded, savings
rate, bills not overdue, and average goal progress.
"""

from collections import OrderedDict

from dateutil.relativedelta import relativedelta

from ..db import rows_to_dicts
from .budgets import applies_to_month
from .schedule import iso, month_bounds, to_date, week_bounds


NEAR_COMPLETION = 75
TREND_THRESHOLD = 5
SPENDING_ALERT_CHANGE = 20


def summary_period(summary_type, today):
    if summary_type == "weekly":
        return week_bounds(today)
    return month_bounds(today.year, today.month)


def previous_period(summary_type, start):
    if summary_type == "weekly":
        return week_bounds(start - relativedelta(days=7))
    previous = start - relativedelta(months=1)
    return month_bounds(previous.year, previous.month)


def budget_bucket(percentage):
    if percentage >= 100:
        return "exceeded"
    if percentage >= 80:
        return "warning"
    return "on_track"


def health_score(budget_count, budgets_exceeded, savings_rate, bill_count, bills_overdue, avg_goal_progress):
    score = round((budget_count - budgets_exceeded) / max(budget_count, 1) * 25)
    score += min(25, round(savings_rate * 1.25))
    score += round((bill_count - bills_overdue) / max(bill_count, 1) * 25)
    score += round(min(25, avg_goal_progress / 4))
    return max(0, min(100, score))


def comparison_trend(change):
    if change > TREND_THRESHOLD:
        return "up"
    if change < -TREND_THRESHOLD:
        return "down"
    return "stable"


def build_insights(summary_type, spending_change, exceeded_names, near_completion, overdue, savings_rate, total_income):
    unit = "week" if summary_type == "weekly" else "month"
    insights = []
    if spending_change > SPENDING_ALERT_CHANGE:
        insights.append(f"Spending increased by {abs(spending_change):.0f}% compared to last {unit}.")
    elif spending_change < -SPENDING_ALERT_CHANGE:
        insights.append(f"Great job! Spending decreased by {abs(spending_change):.0f}% compared to last {unit}.")
    if exceeded_names:
        plural = "s" if len(exceeded_names) > 1 else ""
        insights.append(
            f"{len(exceeded_names)} budget{plural} exceeded. "
            f"Consider reviewing your spending in {', '.join(exceeded_names)}."
        )
    if near_completion:
        top = near_completion[0]
        insights.append(f"{top['name']} is {top['percentage']}% complete - you're almost there!")
    if overdue:
        plural = "s" if overdue > 1 else ""
        insights.append(f"You have {overdue} overdue bill{plural}. Consider paying them soon to avoid late fees.")
    if savings_rate >= 20:
        insights.append(f"Excellent savings rate of {savings_rate:.0f}%! You're building wealth effectively.")
    elif savings_rate < 10 and total_income > 0:
        insights.append(f"Your savings rate is {savings_rate:.0f}%. Try to save at least 20% of your income.")
    return insights


def build_recommendations(budgets_exceeded, savings_rate, overdue, category_breakdown):
    recommendations = []
    if budgets_exceeded:
        recommendations.append("Review and adjust budgets for categories that consistently exceed limits.")
    if savings_rate < 20:
        recommendations.append("Try to increase your savings rate by identifying non-essential expenses.")
    if overdue:
        recommendations.append("Set up automatic payments to avoid missing bill due dates.")
    if category_breakdown and category_breakdown[0]["change"] > 50:
        recommendations.append(
            f"Consider reducing spending in {category_breakdown[0]['name']} which has increased significantly."
        )
    return recommendations


def _load_transactions(db, user_id, start, end):
    return rows_to_dicts(
        db.execute(
            """
            SELECT t.date, t.amount, t.description, t.category_id, c.name AS category_name
            FROM transactions t LEFT JOIN categories c ON c.id = t.category_id
            WHERE t.user_id = ? AND t.is_transfer = 0 AND t.date >= ? AND t.date <= ?
            ORDER BY t.date
            """,
            (user_id, iso(start), iso(end)),
        ).fetchall()
    )


def generate_summary(db, user_id, summary_type, today):
    """
    Build the summary document for the period containing *today*.

    Returns a dict with ``period_start``, ``period_end``, ``content``,
    ``highlights``, ``recommendations`` and ``health_score``.
    """
    start, end = summary_period(summary_type, today)
    prev_start, prev_end = previous_period(summary_type, start)

    transactions = _load_transactions(db, user_id, start, end)
    previous = _load_transactions(db, user_id, prev_start, prev_end)

    expenses = [txn for txn in transactions if txn["amount"] < 0]
    income = [txn for txn in transactions if txn["amount"] > 0]
    total_spending = sum(-txn["amount"] for txn in expenses)
    total_income = sum(txn["amount"] for txn in income)
    previous_spending = sum(-txn["amount"] for txn in previous if txn["amount"] < 0)

    by_category = OrderedDict()
    for txn in expenses:
        by_category.setdefault(txn["category_name"] or "Uncategorized", [0.0, 0.0])[0] += -txn["amount"]
    for txn in previous:
        if txn["amount"] < 0:
            by_category.setdefault(txn["category_name"] or "Uncategorized", [0.0, 0.0])[1] += -txn["amount"]
    category_breakdown = sorted(
        (
            {
                "name": name,
                "amount": round(current, 2),
                "change": round((current - prior) / prior * 100, 2) if prior > 0 else 0.0,
            }
            for name, (current, prior) in by_category.items()
        ),
        key=lambda entry: entry["amount"],
        reverse=True,
    )

    daily = OrderedDict()
    for txn in expenses:
        daily[txn["date"]] = daily.get(txn["date"], 0.0) - txn["amount"]
    peak_date, peak_amount = max(daily.items(), key=lambda item: item[1]) if daily else (iso(start), 0.0)

    budget_rows = rows_to_dicts(
        db.execute(
            """
            SELECT b.category_id, b.amount, b.year, b.month, c.name AS category_name
            FROM budgets b JOIN categories c ON c.id = b.category_id
            WHERE b.user_id = ?
            """,
            (user_id,),
        ).fetchall()
    )
    budget_details = []
    for budget in budget_rows:
        if not applies_to_month(budget, start.year, start.month):
            continue
        spent = sum(-txn["amount"] for txn in expenses if txn["category_id"] == budget["category_id"])
        budget_details.append(
            {
                "name": budget["category_name"],
                "spent": round(spent, 2),
                "budget": budget["amount"],
                "percentage": round(spent / budget["amount"] * 100) if budget["amount"] else 0,
            }
        )
    buckets = [budget_bucket(detail["percentage"]) for detail in budget_details]
    exceeded_names = [detail["name"] for detail in budget_details if budget_bucket(detail["percentage"]) == "exceeded"]

    goals = rows_to_dicts(
        db.execute(
            "SELECT name, target_amount, current_amount FROM goals WHERE user_id = ? AND is_completed = 0",
            (user_id,),
        ).fetchall()
    )
    progress = [goal["current_amount"] / goal["target_amount"] * 100 for goal in goals if goal["target_amount"]]
    avg_goal_progress = sum(progress) / len(progress) if progress else 100.0
    near_completion = sorted(
        (
            {"name": goal["name"], "percentage": round(goal["current_amount"] / goal["target_amount"] * 100)}
            for goal in goals
            if goal["target_amount"] and goal["current_amount"] / goal["target_amount"] * 100 >= NEAR_COMPLETION
        ),
        key=lambda entry: entry["percentage"],
        reverse=True,
    )
    contributions = db.execute(
        "SELECT COALESCE(SUM(amount), 0) FROM goal_contributions WHERE user_id = ? AND date >= ? AND date <= ?",
        (user_id, iso(start), iso(end)),
    ).fetchone()[0]

    bills = rows_to_dicts(
        db.execute(
            "SELECT name, amount, next_due_date, last_paid_date FROM bills WHERE user_id = ? AND is_active = 1 "
            "ORDER BY next_due_date",
            (user_id,),
        ).fetchall()
    )
    bills_paid = sum(1 for bill in bills if bill["last_paid_date"] and to_date(bill["last_paid_date"]) >= start)
    upcoming = [bill for bill in bills if today <= to_date(bill["next_due_date"]) <= end]
    overdue = sum(1 for bill in bills if to_date(bill["next_due_date"]) < today)

    spending_change = (total_spending - previous_spending) / previous_spending * 100 if previous_spending > 0 else 0.0
    savings_rate = (total_income - total_spending) / total_income * 100 if total_income > 0 else 0.0

    content = {
        "period": {"start": iso(start), "end": iso(end)},
        "spending": {
            "total": round(total_spending, 2),
            "by_category": category_breakdown,
            "daily_average": round(total_spending / (7 if summary_type == "weekly" else 30), 2),
            "peak_day": {"date": peak_date, "amount": round(peak_amount, 2)},
        },
        "income": {
            "total": round(total_income, 2),
            "sources": [
                {"name": txn["description"] or txn["category_name"] or "Income", "amount": txn["amount"]} for txn in income
            ],
        },
        "budgets": {
            "on_track": buckets.count("on_track"),
            "warning": buckets.count("warning"),
            "exceeded": buckets.count("exceeded"),
            "details": budget_details,
        },
        "goals": {
            "total_progress": round(avg_goal_progress, 2),
            "contributions": round(contributions, 2),
            "active_count": len(goals),
            "near_completion": near_completion,
        },
        "bills": {
            "paid": bills_paid,
            "upcoming": len(upcoming),
            "overdue": overdue,
            "next_due": [
                {"name": bill["name"], "amount": bill["amount"] or 0, "due_date": bill["next_due_date"]}
                for bill in upcoming[:5]
            ],
        },
        "comparison": {"vs_previous": round(spending_change, 2), "trend": comparison_trend(spending_change)},
    }

    if summary_type == "monthly":
        content.update(_monthly_extras(db, user_id, today, end, expenses, category_breakdown, by_category,
                                       total_income, total_spending, spending_change, savings_rate))

    insights = build_insights(
        summary_type, spending_change, exceeded_names, near_completion, overdue, savings_rate, total_income
    )
    content["insights"] = insights
    score = health_score(len(budget_details), len(exceeded_names), savings_rate, len(bills), overdue, avg_goal_progress)
    content["health_score"] = score

    return {
        "period_start": iso(start),
        "period_end": iso(end),
        "content": content,
        "highlights": insights[:5],
        "recommendations": build_recommendations(len(exceeded_names), savings_rate, overdue, category_breakdown),
        "health_score": score,
    }


def _monthly_extras(db, user_id, today, end, expenses, category_breakdown, by_category,
                    total_income, total_spending, spending_change, savings_rate):
    ytd = db.execute(
        """
        SELECT
            COALESCE(SUM(CASE WHEN amount < 0 THEN -amount ELSE 0 END), 0),
            COALESCE(SUM(CASE WHEN amount > 0 THEN amount ELSE 0 END), 0)
        FROM transactions
        WHERE user_id = ? AND is_transfer = 0 AND date >= ? AND date <= ?
        """,
        (user_id, f"{today.year}-01-01", iso(end)),
    ).fetchone()
    ytd_spending, ytd_income = ytd[0], ytd[1]

    merchants = OrderedDict()
    for txn in expenses:
        entry = merchants.setdefault(txn["description"] or "Unknown", {"amount": 0.0, "count": 0})
        entry["amount"] += -txn["amount"]
        entry["count"] += 1
    top_merchants = sorted(
        ({"name": name, "amount": round(v["amount"], 2), "count": v["count"]} for name, v in merchants.items()),
        key=lambda entry: entry["amount"],
        reverse=True,
    )[:10]

    if savings_rate > 20:
        savings_trend = "improving"
    elif savings_rate < 10:
        savings_trend = "declining"
    else:
        savings_trend = "stable"

    return {
        "savings": {"rate": round(savings_rate, 2), "amount": round(total_income - total_spending, 2), "trend": savings_trend},
        "top_merchants": top_merchants,
        "category_trends": [
            {
                "name": entry["name"],
                "this_month": entry["amount"],
                "last_month": round(by_category[entry["name"]][1], 2),
                "change": entry["change"],
            }
            for entry in category_breakdown
        ],
        "year_to_date": {
            "total_spending": round(ytd_spending, 2),
            "total_income": round(ytd_income, 2),
            "average_monthly_spending": round(ytd_spending / today.month, 2),
        },
        "predictions": {
            "next_month_spending": round(total_spending * (1 + spending_change / 100 * 0.5), 2),
            "end_of_year_savings": round((ytd_income - ytd_spending) + (total_income - total_spending) * (12 - today.month), 2),
        },
    }
