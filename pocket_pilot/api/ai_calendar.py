from datetime import timedelta

from flask import Blueprint, jsonify, request

from ..db import rows_to_dicts
from ..errors import BadRequestError
from ..finance.calendar import build_calendar, payment_schedule
from .common import current_user_id, get_db, login_required, query_date, today

ai_calendar_bp = Blueprint("ai_calendar", __name__, url_prefix="/ai-calendar")

PAYDAY_LOOKBACK_DAYS = 90
PAYDAY_SAMPLE_SIZE = 50


def active_bills(db, start, end):
    rows = db.execute(
        """
        SELECT * FROM bills
        WHERE user_id = ? AND is_active = 1 AND next_due_date >= ? AND next_due_date <= ?
        ORDER BY next_due_date
        """,
        (current_user_id(), start.isoformat(), end.isoformat()),
    ).fetchall()
    return rows_to_dicts(rows, bool_fields=("auto_pay", "is_active"))


def upcoming_payment_schedule(db):
    current = today()
    bills = active_bills(db, current, current + timedelta(days=30))
    totals = db.execute(
        """
        SELECT COALESCE(SUM(t.amount), 0) AS balance,
               COALESCE(SUM(CASE WHEN t.amount > 0 AND t.is_transfer = 0 THEN t.amount ELSE 0 END), 0) AS income
        FROM transactions t JOIN accounts a ON a.id = t.account_id
        WHERE t.user_id = ?
        """,
        (current_user_id(),),
    ).fetchone()
    return payment_schedule(bills, totals["balance"], totals["income"], current)


@ai_calendar_bp.get("")
@login_required
def calendar():
    db = get_db()
    if request.args.get("action") == "payment-schedule":
        return jsonify(upcoming_payment_schedule(db))

    current = today()
    start = query_date("start", current)
    end = query_date("end", current + timedelta(days=30))
    if end < start:
        raise BadRequestError("end must be on or after start")

    user_id = current_user_id()
    recurring = db.execute(
        """
        SELECT r.*, c.name AS category_name
        FROM recurring_transactions r LEFT JOIN categories c ON c.id = r.category_id
        WHERE r.user_id = ? AND r.is_active = 1 AND r.next_occurrence_date >= ? AND r.next_occurrence_date <= ?
        """,
        (user_id, start.isoformat(), end.isoformat()),
    ).fetchall()
    goals = db.execute(
        """
        SELECT id, name, auto_contribute_amount, auto_contribute_day FROM goals
        WHERE user_id = ? AND is_completed = 0 AND auto_contribute_amount IS NOT NULL
        """,
        (user_id,),
    ).fetchall()
    income = db.execute(
        """
        SELECT amount, date, description FROM transactions
        WHERE user_id = ? AND amount > 0 AND is_transfer = 0 AND date >= ?
        ORDER BY date DESC, id DESC
        LIMIT ?
        """,
        (user_id, (current - timedelta(days=PAYDAY_LOOKBACK_DAYS)).isoformat(), PAYDAY_SAMPLE_SIZE),
    ).fetchall()

    return jsonify(
        build_calendar(
            start,
            end,
            current,
            bills=active_bills(db, start, end),
            recurring=rows_to_dicts(recurring),
            goals=rows_to_dicts(goals),
            income_transactions=rows_to_dicts(income),
        )
    )
