import logging
from datetime import timedelta

from flask import Blueprint, jsonify

from ..db import insert_row, row_to_dict, rows_to_dicts, update_row
from ..errors import NotFoundError
from ..finance.bills import decorate_bill, detect_recurring_bills, record_payment, summarize_annual_cost
from ..finance.schedule import iso, shift_month
from ..schemas import BillIn, BillPaymentIn, BillUpdate
from .common import current_user_id, fetch_owned, get_db, login_required, parse_body, query_flag, query_int, today

bills_bp = Blueprint("bills", __name__, url_prefix="/bills")
logger = logging.getLogger(__name__)

BILL_BOOLS = ("auto_pay", "is_active")

BILL_SELECT = """
    SELECT b.*, c.name AS category_name
    FROM bills b LEFT JOIN categories c ON c.id = b.category_id
"""


def serialize_bills(rows):
    current = today()
    return [decorate_bill(bill, current) for bill in rows_to_dicts(rows, bool_fields=BILL_BOOLS)]


def load_bill(db, bill_id):
    row = db.execute(BILL_SELECT + " WHERE b.id = ? AND b.user_id = ?", (bill_id, current_user_id())).fetchone()
    if row is None:
        raise NotFoundError("Bill")
    return serialize_bills([row])[0]


def ensure_category(db, category_id):
    if category_id is not None:
        fetch_owned(db, "categories", category_id, "Category", "id")


@bills_bp.get("")
@login_required
def list_bills():
    clauses = ["b.user_id = ?"]
    params = [current_user_id()]
    if query_flag("active"):
        clauses.append("b.is_active = 1")
    if query_flag("upcoming"):
        days = query_int("days", 30, minimum=0, maximum=365)
        clauses.append("b.next_due_date <= ?")
        params.append(iso(today() + timedelta(days=days)))

    rows = get_db().execute(
        BILL_SELECT + f" WHERE {' AND '.join(clauses)} ORDER BY b.next_due_date, b.id",
        params,
    ).fetchall()
    return jsonify(serialize_bills(rows))


@bills_bp.post("")
@login_required
def create_bill():
    body = parse_body(BillIn)
    db = get_db()
    ensure_category(db, body.category_id)
    bill_id = insert_row(
        db,
        "bills",
        {
            "user_id": current_user_id(),
            "name": body.name,
            "amount": body.amount,
            "frequency": body.frequency,
            "next_due_date": body.next_due_date.isoformat(),
            "category_id": body.category_id,
            "auto_pay": int(body.auto_pay),
            "bill_type": body.bill_type,
            "notes": body.notes,
            "is_active": int(body.is_active),
        },
    )
    db.commit()
    return jsonify(load_bill(db, bill_id)), 201


@bills_bp.get("/annual-cost")
@login_required
def annual_cost():
    sql = "SELECT * FROM bills WHERE user_id = ?"
    if query_flag("active_only", default=True):
        sql += " AND is_active = 1"
    rows = get_db().execute(sql, (current_user_id(),)).fetchall()
    return jsonify(summarize_annual_cost(rows_to_dicts(rows)))


@bills_bp.get("/detect")
@login_required
def detect_bills():
    months = query_int("months", 6, minimum=1, maximum=24)
    min_transactions = query_int("min_transactions", 3, minimum=2)
    current = today()
    start_year, start_month = shift_month(current.year, current.month, -months)
    start = current.replace(year=start_year, month=start_month, day=1)

    db = get_db()
    rows = db.execute(
        """
        SELECT t.description, t.amount, t.date, t.category_id, c.name AS category_name
        FROM transactions t LEFT JOIN categories c ON c.id = t.category_id
        WHERE t.user_id = ? AND t.amount < 0 AND t.is_transfer = 0 AND t.date >= ?
        ORDER BY t.date, t.id
        """,
        (current_user_id(), start.isoformat()),
    ).fetchall()
    existing = [
        row["name"] for row in db.execute("SELECT name FROM bills WHERE user_id = ?", (current_user_id(),)).fetchall()
    ]

    detected = detect_recurring_bills(rows_to_dicts(rows), existing, min_transactions)
    return jsonify(
        {
            "detected_bills": detected,
            "analyzed_transactions": len(rows),
            "period_months": months,
        }
    )


@bills_bp.get("/<int:bill_id>")
@login_required
def get_bill(bill_id):
    return jsonify(load_bill(get_db(), bill_id))


@bills_bp.put("/<int:bill_id>")
@login_required
def update_bill(bill_id):
    body = parse_body(BillUpdate)
    db = get_db()
    fetch_owned(db, "bills", bill_id, "Bill", "id")
    changes = body.changes()
    if changes.get("category_id") is not None:
        ensure_category(db, changes["category_id"])
    for field in BILL_BOOLS:
        if field in changes:
            changes[field] = int(changes[field])
    update_row(db, "bills", bill_id, current_user_id(), changes)
    db.commit()
    return jsonify(load_bill(db, bill_id))


@bills_bp.delete("/<int:bill_id>")
@login_required
def delete_bill(bill_id):
    db = get_db()
    fetch_owned(db, "bills", bill_id, "Bill", "id")
    db.execute("DELETE FROM bills WHERE id = ? AND user_id = ?", (bill_id, current_user_id()))
    db.commit()
    return "", 204


@bills_bp.post("/<int:bill_id>")
@bills_bp.post("/<int:bill_id>/pay")
@login_required
def pay_bill(bill_id):
    body = parse_body(BillPaymentIn)
    db = get_db()
    bill = row_to_dict(fetch_owned(db, "bills", bill_id, "Bill"))
    if body.account_id is not None:
        fetch_owned(db, "accounts", body.account_id, "Account", "id")

    payment_date = body.payment_date or today()
    amount = body.amount if body.amount is not None else bill["amount"]
    bill_updates, payment = record_payment(bill, payment_date)

    update_row(db, "bills", bill_id, current_user_id(), bill_updates)
    payment_id = insert_row(
        db,
        "bill_payments",
        {
            "user_id": current_user_id(),
            "bill_id": bill_id,
            "payment_date": payment["payment_date"],
            "due_date": payment["due_date"],
            "amount": amount,
            "was_on_time": int(payment["was_on_time"]),
            "days_early": payment["days_early"],
            "days_late": payment["days_late"],
        },
    )
    db.commit()
    logger.info("Bill %s paid on %s (on time: %s)", bill_id, payment["payment_date"], payment["was_on_time"])

    transaction = None
    if body.create_transaction and body.account_id is not None and amount:
        try:
            transaction_id = insert_row(
                db,
                "transactions",
                {
                    "user_id": current_user_id(),
                    "account_id": body.account_id,
                    "category_id": bill["category_id"],
                    "date": payment["payment_date"],
                    "amount": -abs(amount),
                    "description": f"{bill['name']} payment",
                    "is_transfer": 0,
                },
            )
            update_row(db, "bill_payments", payment_id, current_user_id(), {"transaction_id": transaction_id})
            db.commit()
            transaction = row_to_dict(
                fetch_owned(db, "transactions", transaction_id, "Transaction"), bool_fields=("is_transfer",)
            )
        except Exception as e:
            db.rollback()
            logger.error("Error creating transaction for bill %s: %s", bill_id, e)

    payment_row = row_to_dict(fetch_owned(db, "bill_payments", payment_id, "Payment"), bool_fields=("was_on_time",))
    return jsonify(
        {
            "bill": load_bill(db, bill_id),
            "payment": payment_row,
            "transaction": transaction,
            "message": "Bill marked as paid" + (" and transaction created" if transaction else ""),
        }
    )


@bills_bp.get("/<int:bill_id>/payments")
@login_required
def list_payments(bill_id):
    db = get_db()
    fetch_owned(db, "bills", bill_id, "Bill", "id")
    rows = db.execute(
        """
        SELECT * FROM bill_payments
        WHERE bill_id = ? AND user_id = ?
        ORDER BY payment_date DESC, id DESC
        """,
        (bill_id, current_user_id()),
    ).fetchall()
    return jsonify(rows_to_dicts(rows, bool_fields=("was_on_time",)))
