"""
Functions the chat assistant may call, with their OpenAI tool schemas.

Each handler takes the open connection, the current user id and the
validated arguments, and returns a JSON-serialisable dict. Failures the
model should see are returned as ``{"success": False, "error": ...}``
rather than raised.
"""

import logging
from datetime import date
from typing import Literal, Optional

from pydantic import Field, ValidationError

from ..db import insert_row, row_to_dict, rows_to_dicts
from ..finance.bills import detect_bill_type
from ..finance.budgets import applies_to_month
from ..finance.categorize import resolve_category
from ..finance.forecast import month_end_forecast
from ..finance.schedule import month_bounds, shift_month, week_bounds
from ..schemas import ApiModel, BillType, Frequency, Money, Name, PastDate
from .goals import apply_balance, serialize_goal
from .transactions import signed_amount

logger = logging.getLogger(__name__)


class AddTransactionArgs(ApiModel):
    amount: Money
    type: Literal["expense", "income"]
    description: str = Field(min_length=1, max_length=255)
    category_name: Optional[str] = None
    date: Optional[PastDate] = None
    account_name: Optional[str] = None


class AddBillArgs(ApiModel):
    name: Name
    amount: Optional[Money] = None
    frequency: Frequency = "monthly"
    next_due_date: date
    bill_type: Optional[BillType] = None


class SpendingSummaryArgs(ApiModel):
    period: Literal["today", "this_week", "this_month", "last_month"] = "this_month"
    category_name: Optional[str] = None


class BudgetStatusArgs(ApiModel):
    category_name: Optional[str] = None


class GoalContributionArgs(ApiModel):
    goal_name: str = Field(min_length=1)
    amount: Money


class ForecastArgs(ApiModel):
    pass


def _user_categories(db, user_id):
    return rows_to_dicts(
        db.execute(
            "SELECT id, name, type FROM categories WHERE user_id = ? AND is_archived = 0 ORDER BY name",
            (user_id,),
        ).fetchall()
    )


def _user_accounts(db, user_id):
    return rows_to_dicts(db.execute("SELECT id, name FROM accounts WHERE user_id = ? ORDER BY id", (user_id,)).fetchall())


def _find_by_name(rows, name):
    if not name:
        return None
    return next((row for row in rows if row["name"].lower() == name.lower()), None)


def add_transaction(db, user_id, args, today):
    accounts = _user_accounts(db, user_id)
    account = _find_by_name(accounts, args.account_name) or (accounts[0] if accounts else None)
    if account is None:
        return {"success": False, "error": "No account found. Please create an account first."}

    category = resolve_category(_user_categories(db, user_id), args.category_name, args.description)
    transaction_date = args.date or today
    transaction_id = insert_row(
        db,
        "transactions",
        {
            "user_id": user_id,
            "account_id": account["id"],
            "category_id": category["id"] if category else None,
            "date": transaction_date.isoformat(),
            "amount": signed_amount(args.amount, args.type),
            "description": args.description,
            "is_transfer": 0,
        },
    )
    db.commit()
    return {
        "success": True,
        "transaction": {
            "id": transaction_id,
            "amount": args.amount,
            "type": args.type,
            "description": args.description,
            "category": category["name"] if category else "Uncategorized",
            "account": account["name"],
            "date": transaction_date.isoformat(),
        },
    }


def add_bill(db, user_id, args, today):
    bill_type = args.bill_type or detect_bill_type(args.name)
    bill_id = insert_row(
        db,
        "bills",
        {
            "user_id": user_id,
            "name": args.name,
            "amount": args.amount,
            "frequency": args.frequency,
            "next_due_date": args.next_due_date.isoformat(),
            "bill_type": bill_type,
        },
    )
    db.commit()
    return {
        "success": True,
        "bill": {
            "id": bill_id,
            "name": args.name,
            "amount": args.amount,
            "frequency": args.frequency,
            "next_due_date": args.next_due_date.isoformat(),
            "bill_type": bill_type,
        },
    }


def _period_range(period, today):
    if period == "today":
        return today, today
    if period == "this_week":
        return week_bounds(today)[0], today
    if period == "last_month":
        return month_bounds(*shift_month(today.year, today.month, -1))
    return today.replace(day=1), today


def get_spending_summary(db, user_id, args, today):
    start, end = _period_range(args.period, today)
    sql = """
        SELECT t.amount, c.name AS category_name
        FROM transactions t LEFT JOIN categories c ON c.id = t.category_id
        WHERE t.user_id = ? AND t.amount < 0 AND t.is_transfer = 0 AND t.date >= ? AND t.date <= ?
    """
    params = [user_id, start.isoformat(), end.isoformat()]
    category = _find_by_name(_user_categories(db, user_id), args.category_name)
    if category is not None:
        sql += " AND t.category_id = ?"
        params.append(category["id"])

    rows = db.execute(sql, params).fetchall()
    by_category = {}
    for row in rows:
        name = row["category_name"] or "Uncategorized"
        by_category[name] = round(by_category.get(name, 0.0) - row["amount"], 2)
    return {
        "success": True,
        "period": args.period,
        "start_date": start.isoformat(),
        "end_date": end.isoformat(),
        "total": round(sum(-row["amount"] for row in rows), 2),
        "count": len(rows),
        "by_category": by_category,
    }


def get_budget_status(db, user_id, args, today):
    budgets = rows_to_dicts(
        db.execute(
            """
            SELECT b.*, c.name AS category_name
            FROM budgets b JOIN categories c ON c.id = b.category_id
            WHERE b.user_id = ?
            ORDER BY c.name
            """,
            (user_id,),
        ).fetchall()
    )
    budgets = [budget for budget in budgets if applies_to_month(budget, today.year, today.month)]
    if args.category_name:
        budgets = [budget for budget in budgets if budget["category_name"].lower() == args.category_name.lower()]
    if not budgets:
        return {"success": True, "budgets": [], "message": "No budgets set up yet."}

    start, end = month_bounds(today.year, today.month)
    spent_rows = db.execute(
        """
        SELECT category_id, SUM(-amount) AS spent FROM transactions
        WHERE user_id = ? AND amount < 0 AND is_transfer = 0 AND date >= ? AND date <= ?
        GROUP BY category_id
        """,
        (user_id, start.isoformat(), end.isoformat()),
    ).fetchall()
    spent_by_category = {row["category_id"]: row["spent"] for row in spent_rows}

    results = []
    for budget in budgets:
        spent = round(spent_by_category.get(budget["category_id"], 0.0), 2)
        percentage = round(spent / budget["amount"] * 100)
        if percentage >= 100:
            status = "over"
        elif percentage >= 90:
            status = "warning"
        else:
            status = "ok"
        results.append(
            {
                "category": budget["category_name"],
                "budget": budget["amount"],
                "spent": spent,
                "remaining": round(budget["amount"] - spent, 2),
                "percentage": percentage,
                "status": status,
            }
        )
    return {"success": True, "budgets": results}


def add_goal_contribution(db, user_id, args, today):
    row = db.execute(
        """
        SELECT * FROM goals
        WHERE user_id = ? AND is_completed = 0 AND LOWER(name) LIKE ?
        ORDER BY created_at DESC, id DESC
        LIMIT 1
        """,
        (user_id, f"%{args.goal_name.lower()}%"),
    ).fetchone()
    if row is None:
        return {"success": False, "error": f'No active goal found matching "{args.goal_name}"'}

    goal = row_to_dict(row)
    insert_row(
        db,
        "goal_contributions",
        {"user_id": user_id, "goal_id": goal["id"], "amount": args.amount, "date": today.isoformat()},
    )
    apply_balance(db, user_id, goal, (goal["current_amount"] or 0) + args.amount, today)
    db.commit()

    updated = serialize_goal(
        db.execute("SELECT * FROM goals WHERE id = ? AND user_id = ?", (goal["id"], user_id)).fetchone()
    )
    return {
        "success": True,
        "goal": updated["name"],
        "contributed": args.amount,
        "new_total": updated["current_amount"],
        "target": updated["target_amount"],
        "percentage": updated["percentage"],
        "is_completed": updated["is_completed"],
    }


def get_forecast(db, user_id, args, today):
    row = db.execute(
        """
        SELECT COALESCE(SUM(-amount), 0) AS spent FROM transactions
        WHERE user_id = ? AND amount < 0 AND is_transfer = 0 AND date >= ? AND date <= ?
        """,
        (user_id, today.replace(day=1).isoformat(), today.isoformat()),
    ).fetchone()
    return {"success": True, **month_end_forecast(row["spent"], today)}


TOOL_HANDLERS = {
    "add_transaction": (AddTransactionArgs, add_transaction),
    "add_bill": (AddBillArgs, add_bill),
    "get_spending_summary": (SpendingSummaryArgs, get_spending_summary),
    "get_budget_status": (BudgetStatusArgs, get_budget_status),
    "add_goal_contribution": (GoalContributionArgs, add_goal_contribution),
    "get_forecast": (ForecastArgs, get_forecast),
}

TOOL_DESCRIPTIONS = {
    "add_transaction": "Add a new transaction (expense or income)",
    "add_bill": "Add a recurring bill to track",
    "get_spending_summary": "Get spending summary for a time period",
    "get_budget_status": "Get current budget status for categories",
    "add_goal_contribution": "Add a contribution to a savings goal",
    "get_forecast": "Project this month's total spending from the month-to-date daily average",
}


def tool_definitions():
    """Tool list in the OpenAI ``tools`` format, built from the argument models."""
    return [
        {
            "type": "function",
            "function": {
                "name": name,
                "description": TOOL_DESCRIPTIONS[name],
                "parameters": model.model_json_schema(),
            },
        }
        for name, (model, _) in TOOL_HANDLERS.items()
    ]


def run_tool(db, user_id, name, arguments, today):
    if name not in TOOL_HANDLERS:
        return {"success": False, "error": f"Unknown tool: {name}"}
    model, handler = TOOL_HANDLERS[name]
    try:
        args = model.model_validate(arguments)
    except ValidationError as e:
        return {"success": False, "error": f"Invalid arguments: {e.errors(include_url=False)}"}
    try:
        return handler(db, user_id, args, today)
    except Exception as e:
        db.rollback()
        logger.error("Tool %s failed: %s", name, e)
        return {"success": False, "error": str(e)}
