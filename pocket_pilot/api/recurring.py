import logging

from flask import Blueprint, jsonify

from ..db import insert_row, row_to_dict, rows_to_dicts, update_row
from ..errors import NotFoundError
from ..finance.schedule import advance_date, iso
from ..schemas import RecurringIn, RecurringUpdate
from .common import current_user_id, fetch_owned, get_db, login_required, parse_body, query_flag, today
from .transactions import ensure_account, ensure_category, signed_amount

recurring_bp = Blueprint("recurring", __name__, url_prefix="/recurring-transactions")
logger = logging.getLogger(__name__)

RECURRING_SELECT = """
    SELECT r.*, a.name AS account_name, c.name AS category_name
    FROM recurring_transactions r
    LEFT JOIN accounts a ON a.id = r.account_id
    LEFT JOIN categories c ON c.id = r.category_id
"""


def serialize_recurring(rows):
    items = rows_to_dicts(rows, bool_fields=("is_active",))
    for item in items:
        item["type"] = "expense" if item["amount"] < 0 else "income"
    return items


def load_recurring(db, recurring_id):
    row = db.execute(
        RECURRING_SELECT + " WHERE r.id = ? AND r.user_id = ?",
        (recurring_id, current_user_id()),
    ).fetchone()
    if row is None:
        raise NotFoundError("Recurring transaction")
    return serialize_recurring([row])[0]


@recurring_bp.get("")
@login_required
def list_recurring():
    sql = RECURRING_SELECT + " WHERE r.user_id = ?"
    if query_flag("active"):
        sql += " AND r.is_active = 1"
    rows = get_db().execute(sql + " ORDER BY r.next_occurrence_date, r.id", (current_user_id(),)).fetchall()
    return jsonify(serialize_recurring(rows))


@recurring_bp.post("")
@login_required
def create_recurring():
    body = parse_body(RecurringIn)
    db = get_db()
    ensure_account(db, body.account_id)
    ensure_category(db, body.category_id)
    recurring_id = insert_row(
        db,
        "recurring_transactions",
        {
            "user_id": current_user_id(),
            "account_id": body.account_id,
            "category_id": body.category_id,
            "description": body.description,
            "amount": signed_amount(body.amount, body.type),
            "frequency": body.frequency,
            "next_occurrence_date": body.next_occurrence_date.isoformat(),
            "notes": body.notes,
        },
    )
    db.commit()
    return jsonify(load_recurring(db, recurring_id)), 201


@recurring_bp.post("/generate")
@login_required
def generate_due():
    """Create one transaction for every active template that has come due."""
    db = get_db()
    user_id = current_user_id()
    due = rows_to_dicts(
        db.execute(
            """
            SELECT * FROM recurring_transactions
            WHERE user_id = ? AND is_active = 1 AND next_occurrence_date <= ?
            ORDER BY next_occurrence_date, id
            """,
            (user_id, today().isoformat()),
        ).fetchall()
    )
    if not due:
        return jsonify({"success": True, "message": "No recurring transactions due", "created": 0, "transactions": []})

    created = []
    errors = []
    for recurring in due:
        occurrence = recurring["next_occurrence_date"]
        next_date = iso(advance_date(occurrence, recurring["frequency"]))
        schedule = {"next_occurrence_date": next_date, "last_created_date": occurrence}
        try:
            existing = db.execute(
                "SELECT id FROM transactions WHERE recurring_transaction_id = ? AND date = ?",
                (recurring["id"], occurrence),
            ).fetchone()
            if existing is not None:
                update_row(db, "recurring_transactions", recurring["id"], user_id, schedule)
                db.commit()
                continue

            transaction_id = insert_row(
                db,
                "transactions",
                {
                    "user_id": user_id,
                    "account_id": recurring["account_id"],
                    "category_id": recurring["category_id"],
                    "date": occurrence,
                    "amount": recurring["amount"],
                    "description": recurring["description"],
                    "is_transfer": 0,
                    "recurring_transaction_id": recurring["id"],
                },
            )
            update_row(db, "recurring_transactions", recurring["id"], user_id, schedule)
            db.commit()
        except Exception as e:
            db.rollback()
            logger.error("Error generating recurring transaction %s: %s", recurring["id"], e)
            errors.append({"recurring_id": recurring["id"], "description": recurring["description"], "error": str(e)})
            continue

        created.append(
            {
                "id": transaction_id,
                "description": recurring["description"],
                "amount": recurring["amount"],
                "date": occurrence,
                "next_occurrence": next_date,
            }
        )

    result = {
        "success": True,
        "message": f"Created {len(created)} transaction(s)",
        "created": len(created),
        "transactions": created,
    }
    if errors:
        result["errors"] = errors
    return jsonify(result)


@recurring_bp.get("/<int:recurring_id>")
@login_required
def get_recurring(recurring_id):
    return jsonify(load_recurring(get_db(), recurring_id))


@recurring_bp.put("/<int:recurring_id>")
@login_required
def update_recurring(recurring_id):
    body = parse_body(RecurringUpdate)
    db = get_db()
    recurring = row_to_dict(fetch_owned(db, "recurring_transactions", recurring_id, "Recurring transaction"))
    changes = body.changes()

    if changes.get("account_id") is not None:
        ensure_account(db, changes["account_id"])
    if changes.get("category_id") is not None:
        ensure_category(db, changes["category_id"])

    amount = changes.pop("amount", None)
    transaction_type = changes.pop("type", None)
    if amount is not None or transaction_type is not None:
        if transaction_type is None:
            transaction_type = "expense" if recurring["amount"] < 0 else "income"
        if amount is None:
            amount = abs(recurring["amount"])
        changes["amount"] = signed_amount(amount, transaction_type)
    if "is_active" in changes:
        changes["is_active"] = int(changes["is_active"])

    update_row(db, "recurring_transactions", recurring_id, current_user_id(), changes)
    db.commit()
    return jsonify(load_recurring(db, recurring_id))


@recurring_bp.delete("/<int:recurring_id>")
@login_required
def delete_recurring(recurring_id):
    db = get_db()
    fetch_owned(db, "recurring_transactions", recurring_id, "Recurring transaction", "id")
    db.execute("DELETE FROM recurring_transactions WHERE id = ? AND user_id = ?", (recurring_id, current_user_id()))
    db.commit()
    return jsonify({"success": True})
