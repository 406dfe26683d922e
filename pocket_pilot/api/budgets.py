import logging

from flask import Blueprint, jsonify, request

from ..db import insert_row, row_to_dict, rows_to_dicts, update_row
from ..errors import BadRequestError, ConflictError, NotFoundError
from ..finance.budgets import applies_to_month, budget_report, decorate_budget
from ..finance.schedule import month_bounds, shift_month
from ..schemas import BudgetCopyForwardIn, BudgetIn, BudgetReportQuery, BudgetUpdate
from .common import current_user_id, fetch_owned, get_db, login_required, parse_body, today

budgets_bp = Blueprint("budgets", __name__, url_prefix="/budgets")
logger = logging.getLogger(__name__)

BUDGET_SELECT = """
    SELECT b.*, c.name AS category_name, c.type AS category_type
    FROM budgets b JOIN categories c ON c.id = b.category_id
"""


def spending_by_category(db, user_id, start_date, end_date):
    rows = db.execute(
        """
        SELECT category_id, SUM(-amount) AS spent
        FROM transactions
        WHERE user_id = ? AND amount < 0 AND is_transfer = 0 AND date >= ? AND date <= ?
        GROUP BY category_id
        """,
        (user_id, str(start_date), str(end_date)),
    ).fetchall()
    return {row["category_id"]: row["spent"] for row in rows}


def decorate_all(db, budgets):
    current = today()
    this_month = spending_by_category(db, current_user_id(), *month_bounds(current.year, current.month))
    last_month = spending_by_category(
        db, current_user_id(), *month_bounds(*shift_month(current.year, current.month, -1))
    )
    return [
        decorate_budget(budget, this_month.get(budget["category_id"], 0.0), last_month.get(budget["category_id"], 0.0))
        for budget in budgets
    ]


def load_budget(db, budget_id):
    row = db.execute(BUDGET_SELECT + " WHERE b.id = ? AND b.user_id = ?", (budget_id, current_user_id())).fetchone()
    if row is None:
        raise NotFoundError("Budget")
    return decorate_all(db, [row_to_dict(row, bool_fields=("rollover",))])[0]


def ensure_no_duplicate(db, category_id, year, month, exclude_id=None):
    row = db.execute(
        """
        SELECT id FROM budgets
        WHERE user_id = ? AND category_id = ? AND COALESCE(year, 0) = ? AND COALESCE(month, 0) = ?
        """,
        (current_user_id(), category_id, year or 0, month or 0),
    ).fetchone()
    if row is not None and row["id"] != exclude_id:
        raise ConflictError("A budget already exists for this category")


@budgets_bp.get("")
@login_required
def list_budgets():
    db = get_db()
    rows = db.execute(BUDGET_SELECT + " WHERE b.user_id = ? ORDER BY c.name, b.id", (current_user_id(),)).fetchall()
    return jsonify(decorate_all(db, rows_to_dicts(rows, bool_fields=("rollover",))))


@budgets_bp.post("")
@login_required
def create_budget():
    body = parse_body(BudgetIn)
    db = get_db()
    category = fetch_owned(db, "categories", body.category_id, "Category", "id, type")
    if category["type"] != "expense":
        raise BadRequestError("Budgets can only be created for expense categories")
    ensure_no_duplicate(db, body.category_id, body.year, body.month)

    budget_id = insert_row(
        db,
        "budgets",
        {
            "user_id": current_user_id(),
            "category_id": body.category_id,
            "amount": body.amount,
            "period": body.period,
            "rollover": int(body.rollover),
            "notes": body.notes,
            "alert_threshold": body.alert_threshold,
            "year": body.year,
            "month": body.month,
        },
    )
    db.commit()
    return jsonify(load_budget(db, budget_id)), 201


@budgets_bp.get("/report")
@login_required
def report():
    query = BudgetReportQuery.model_validate(request.args.to_dict())
    if query.end_date < query.start_date:
        raise BadRequestError("end_date must be on or after start_date")

    db = get_db()
    rows = rows_to_dicts(
        db.execute(BUDGET_SELECT + " WHERE b.user_id = ? ORDER BY c.name", (current_user_id(),)).fetchall()
    )
    if query.category_ids:
        rows = [row for row in rows if row["category_id"] in query.category_ids]
    if query.period:
        rows = [row for row in rows if row["period"] == query.period]

    spending = spending_by_category(db, current_user_id(), query.start_date, query.end_date)
    return jsonify(budget_report(rows, spending, query.start_date, query.end_date))


@budgets_bp.post("/copy-forward")
@login_required
def copy_forward():
    body = parse_body(BudgetCopyForwardIn)
    if (body.source_year, body.source_month) == (body.target_year, body.target_month):
        raise BadRequestError("Cannot copy to the same month")

    db = get_db()
    budgets = rows_to_dicts(
        db.execute(BUDGET_SELECT + " WHERE b.user_id = ? ORDER BY c.name", (current_user_id(),)).fetchall()
    )
    applicable = [b for b in budgets if applies_to_month(b, body.source_year, body.source_month)]
    if not applicable:
        raise NotFoundError("Budgets for the source period")

    taken = {b["category_id"] for b in budgets if applies_to_month(b, body.target_year, body.target_month)}
    copied, skipped = [], []
    for budget in applicable:
        if budget["category_id"] in taken:
            skipped.append(f"{budget['category_name']} (already exists)")
            continue
        insert_row(
            db,
            "budgets",
            {
                "user_id": current_user_id(),
                "category_id": budget["category_id"],
                "amount": budget["amount"] if body.include_amounts else 0,
                "period": budget["period"],
                "rollover": budget["rollover"],
                "alert_threshold": budget["alert_threshold"],
                "notes": budget["notes"] if body.include_notes else None,
                "year": body.target_year,
                "month": body.target_month,
            },
        )
        taken.add(budget["category_id"])
        copied.append(budget["category_name"])

    if not copied:
        raise BadRequestError("All budgets already exist in target month", success=False, skipped=skipped)

    db.commit()
    return jsonify(
        {
            "success": True,
            "message": (
                f"Copied {len(copied)} budget(s) from {body.source_month}/{body.source_year} "
                f"to {body.target_month}/{body.target_year}"
            ),
            "copied": copied,
            "skipped": skipped,
            "count": len(copied),
        }
    )


@budgets_bp.get("/<int:budget_id>")
@login_required
def get_budget(budget_id):
    return jsonify(load_budget(get_db(), budget_id))


@budgets_bp.put("/<int:budget_id>")
@login_required
def update_budget(budget_id):
    body = parse_body(BudgetUpdate)
    db = get_db()
    budget = fetch_owned(db, "budgets", budget_id, "Budget")
    changes = body.changes()
    if "year" in changes or "month" in changes:
        ensure_no_duplicate(
            db,
            budget["category_id"],
            changes.get("year", budget["year"]),
            changes.get("month", budget["month"]),
            exclude_id=budget_id,
        )
    if "rollover" in changes:
        changes["rollover"] = int(changes["rollover"])
    update_row(db, "budgets", budget_id, current_user_id(), changes)
    db.commit()
    return jsonify(load_budget(db, budget_id))


@budgets_bp.delete("/<int:budget_id>")
@login_required
def delete_budget(budget_id):
    db = get_db()
    fetch_owned(db, "budgets", budget_id, "Budget", "id")
    db.execute("DELETE FROM budgets WHERE id = ? AND user_id = ?", (budget_id, current_user_id()))
    db.commit()
    return jsonify({"success": True})
