from .schedule import to_date


PUBLIC_FIELDS = ("name", "target_amount", "current_amount", "target_date", "category")


def goal_details(goal, today):
    target = goal["target_amount"]
    current = goal.get("current_amount") or 0
    goal["percentage"] = round(min(current / target * 100, 100), 1) if target > 0 else 0.0
    goal["remaining"] = round(max(target - current, 0), 2)
    goal["monthly_required"] = None
    goal["is_overdue"] = False

    if goal.get("target_date") and not goal.get("is_completed"):
        target_date = to_date(goal["target_date"])
        if target_date < today:
            goal["is_overdue"] = True
        else:
            months = (target_date.year - today.year) * 12 + (target_date.month - today.month)
            if months > 0 and goal["remaining"] > 0:
                goal["monthly_required"] = round(goal["remaining"] / months, 2)
    return goal


def completion_fields(current_amount, target_amount, was_completed, completed_at, now):
    """``is_completed``/``completed_at`` after the balance changes; first completion stamps the time."""
    is_completed = current_amount >= target_amount
    if is_completed and not was_completed:
        completed_at = completed_at or now
    elif not is_completed:
        completed_at = None
    return {"is_completed": is_completed, "completed_at": completed_at}


def public_view(goal, today):
    details = goal_details(dict(goal), today)
    view = {field: details.get(field) for field in PUBLIC_FIELDS}
    view["percentage"] = details["percentage"]
    view["remaining"] = details["remaining"]
    view["is_completed"] = bool(details.get("is_completed"))
    return view


def milestone_target(target_percentage, goal_target):
    return round(target_percentage / 100 * goal_target, 2)


def milestone_details(milestone, goal):
    """Target amount and reached flag of a milestone against the goal's current balance."""
    milestone["target_amount"] = milestone_target(milestone["target_percentage"], goal["target_amount"])
    milestone["is_reached"] = (goal["current_amount"] or 0) >= milestone["target_amount"]
    milestone["celebration_shown"] = bool(milestone.get("celebration_shown"))
    return milestone


def newly_reached(milestones, current_amount, goal_target):
    """Ids of milestones without ``reached_at`` that *current_amount* now covers."""
    return [
        milestone["id"]
        for milestone in milestones
        if milestone["reached_at"] is None
        and current_amount >= milestone_target(milestone["target_percentage"], goal_target)
    ]
