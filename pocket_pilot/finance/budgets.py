from .schedule import months_between, to_date


DEFAULT_ALERT_THRESHOLD = 90


def budget_status(percentage, alert_threshold=DEFAULT_ALERT_THRESHOLD):
    if percentage >= 100:
        return "over"
    if percentage >= alert_threshold:
        return "warning"
    return "safe"


def decorate_budget(budget, spent, previous_spent=0.0):
    """Attach spend, remaining, percentage and status to a budget row."""
    amount = budget["amount"]
    rollover_amount = 0.0
    if budget.get("rollover"):
        rollover_amount = round(max(amount - previous_spent, 0), 2)
    effective = amount + rollover_amount
    percentage = round(spent / effective * 100, 1) if effective > 0 else 0.0

    budget["spent"] = round(spent, 2)
    budget["remaining"] = round(effective - spent, 2)
    budget["percentage"] = percentage
    budget["status"] = budget_status(percentage, budget.get("alert_threshold", DEFAULT_ALERT_THRESHOLD))
    if budget.get("rollover"):
        budget["rollover_amount"] = rollover_amount
        budget["effective_budget"] = round(effective, 2)
    return budget


def applies_to_month(budget, year, month):
    """Budgets without a year/month are open-ended and apply to every month."""
    if budget.get("year") is not None and budget["year"] != year:
        return False
    if budget.get("month") is not None and budget["month"] != month:
        return False
    return True


def prorated_budget(amount, period, start_date, end_date):
    start_date, end_date = to_date(start_date), to_date(end_date)
    days = (end_date - start_date).days + 1
    if period == "MONTHLY":
        return amount * months_between(start_date, end_date)
    if period == "YEARLY":
        return amount / 12 * months_between(start_date, end_date)
    if period == "WEEKLY":
        return amount * days / 7
    if period == "BIWEEKLY":
        return amount * days / 14
    return amount


def budget_report(budgets, spending_by_category, start_date, end_date):
    """Budget vs actual over a date range, sorted by variance percentage."""
    items = []
    for budget in budgets:
        budgeted = round(prorated_budget(budget["amount"], budget["period"], start_date, end_date), 2)
        actual = round(spending_by_category.get(budget["category_id"], 0.0), 2)
        variance = round(budgeted - actual, 2)
        items.append(
            {
                "budget_id": budget["id"],
                "category_id": budget["category_id"],
                "category_name": budget.get("category_name"),
                "period": budget["period"],
                "budgeted": budgeted,
                "actual": actual,
                "variance": variance,
                "variance_percentage": round(actual / budgeted * 100, 1) if budgeted > 0 else 0.0,
                "status": budget_status(actual / budgeted * 100 if budgeted > 0 else 0.0),
            }
        )
    items.sort(key=lambda item: item["variance_percentage"], reverse=True)

    total_budgeted = round(sum(item["budgeted"] for item in items), 2)
    total_actual = round(sum(item["actual"] for item in items), 2)
    return {
        "start_date": str(start_date),
        "end_date": str(end_date),
        "items": items,
        "summary": {
            "total_budgeted": total_budgeted,
            "total_actual": total_actual,
            "total_variance": round(total_budgeted - total_actual, 2),
            "over_budget_count": sum(1 for item in items if item["actual"] > item["budgeted"]),
        },
    }


def plan_template_budgets(items, categories, budgeted_category_ids, category_mappings, income):
    """
    Resolve template items to the user's categories.

    Returns ``(planned, skipped)`` where each planned entry carries
    ``category_id``, ``amount`` and ``notes``.
    """
    by_id = {category["id"]: category for category in categories}
    by_name = {category["name"].lower(): category for category in categories}
    taken = set(budgeted_category_ids)

    planned = []
    skipped = []
    for item in items:
        name = item["category_name"]
        category = None
        mapped_id = category_mappings.get(name)
        if mapped_id is not None:
            category = by_id.get(mapped_id)
        if category is None:
            category = by_name.get(name.lower())
        if category is None:
            skipped.append({"category_name": name, "reason": "No matching expense category"})
            continue
        if category["id"] in taken:
            skipped.append({"category_name": name, "reason": "Budget already exists for this category"})
            continue

        if item.get("fixed_amount") is not None:
            amount = item["fixed_amount"]
        else:
            amount = round(item["percentage"] / 100 * income, 2)
        taken.add(category["id"])
        planned.append({"category_id": category["id"], "amount": amount, "notes": item.get("notes")})
    return planned, skipped
