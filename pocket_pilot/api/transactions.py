import logging

from flask import Blueprint, jsonify, request

from ..db import insert_row, rows_to_dicts, update_row
from ..errors import BadRequestError, NotFoundError
from ..schemas import TransactionIn, TransactionTagIn, TransactionUpdate, TransferIn
from .common import (
    current_user_id,
    fetch_owned,
    get_db,
    login_required,
    parse_body,
    query_date,
    query_int,
)

transactions_bp = Blueprint("transactions", __name__, url_prefix="/transactions")
logger = logging.getLogger(__name__)

TRANSACTION_SELECT = """
    SELECT t.id, t.account_id, t.category_id, t.date, t.amount, t.description, t.is_transfer,
           t.recurring_transaction_id, t.linked_transaction_id, t.created_at,
           a.name AS account_name, c.name AS category_name, c.type AS category_type
    FROM transactions t
    LEFT JOIN accounts a ON a.id = t.account_id
    LEFT JOIN categories c ON c.id = t.category_id
"""


def signed_amount(amount, transaction_type):
    """Expenses are stored negative, income and transfers positive."""
    return -abs(amount) if transaction_type == "expense" else abs(amount)


def tags_for(db, transaction_ids):
    if not transaction_ids:
        return {}
    placeholders = ", ".join(["?"] * len(transaction_ids))
    rows = db.execute(
        f"""
        SELECT tt.transaction_id, tg.id, tg.name, tg.color
        FROM transaction_tags tt JOIN tags tg ON tg.id = tt.tag_id
        WHERE tt.transaction_id IN ({placeholders})
        ORDER BY tg.name
        """,
        list(transaction_ids),
    ).fetchall()
    result = {}
    for row in rows:
        result.setdefault(row["transaction_id"], []).append({"id": row["id"], "name": row["name"], "color": row["color"]})
    return result


def serialize_transactions(db, rows):
    transactions = rows_to_dicts(rows, bool_fields=("is_transfer",))
    tags = tags_for(db, [txn["id"] for txn in transactions])
    for txn in transactions:
        txn["tags"] = tags.get(txn["id"], [])
    return transactions


def load_transaction(db, transaction_id):
    row = db.execute(
        TRANSACTION_SELECT + " WHERE t.id = ? AND t.user_id = ?",
        (transaction_id, current_user_id()),
    ).fetchone()
    if row is None:
        raise NotFoundError("Transaction")
    return serialize_transactions(db, [row])[0]


def ensure_account(db, account_id):
    return fetch_owned(db, "accounts", account_id, "Account", "id, name")


def ensure_category(db, category_id):
    if category_id is not None:
        fetch_owned(db, "categories", category_id, "Category", "id")


def link_tags(db, transaction_id, tag_ids):
    """Attach tags after the transaction is committed; failures are logged, not raised."""
    for tag_id in tag_ids:
        try:
            tag = db.execute("SELECT id FROM tags WHERE id = ? AND user_id = ?", (tag_id, current_user_id())).fetchone()
            if tag is None:
                logger.error("Skipping unknown tag %s for transaction %s", tag_id, transaction_id)
                continue
            db.execute(
                "INSERT INTO transaction_tags (transaction_id, tag_id) VALUES (?, ?)",
                (transaction_id, tag_id),
            )
            db.commit()
        except Exception as e:
            db.rollback()
            logger.error("Error linking tag %s to transaction %s: %s", tag_id, transaction_id, e)


@transactions_bp.get("")
@login_required
def list_transactions():
    clauses = ["t.user_id = ?"]
    params = [current_user_id()]

    account_id = query_int("accountId", None)
    if account_id is not None:
        clauses.append("t.account_id = ?")
        params.append(account_id)
    category_id = query_int("categoryId", None)
    if category_id is not None:
        clauses.append("t.category_id = ?")
        params.append(category_id)
    start_date = query_date("startDate")
    if start_date:
        clauses.append("t.date >= ?")
        params.append(start_date.isoformat())
    end_date = query_date("endDate")
    if end_date:
        clauses.append("t.date <= ?")
        params.append(end_date.isoformat())
    search = (request.args.get("search") or "").strip()
    if search:
        clauses.append("LOWER(t.description) LIKE ?")
        params.append(f"%{search.lower()}%")

    limit = query_int("limit", 50, minimum=1, maximum=500)
    offset = query_int("offset", 0, minimum=0)

    db = get_db()
    rows = db.execute(
        TRANSACTION_SELECT + f" WHERE {' AND '.join(clauses)} ORDER BY t.date DESC, t.id DESC LIMIT ? OFFSET ?",
        [*params, limit, offset],
    ).fetchall()
    return jsonify(serialize_transactions(db, rows))


@transactions_bp.post("")
@login_required
def create_transaction():
    body = parse_body(TransactionIn)
    db = get_db()
    ensure_account(db, body.account_id)
    ensure_category(db, body.category_id)

    transaction_id = insert_row(
        db,
        "transactions",
        {
            "user_id": current_user_id(),
            "account_id": body.account_id,
            "category_id": body.category_id,
            "date": body.date.isoformat(),
            "amount": signed_amount(body.amount, body.type),
            "description": body.description,
            "is_transfer": 1 if body.type == "transfer" else 0,
        },
    )
    db.commit()
    link_tags(db, transaction_id, body.tag_ids)
    return jsonify(load_transaction(db, transaction_id)), 201


@transactions_bp.post("/transfer")
@login_required
def create_transfer():
    body = parse_body(TransferIn)
    db = get_db()
    source = ensure_account(db, body.from_account_id)
    target = ensure_account(db, body.to_account_id)

    category = db.execute(
        "SELECT id FROM categories WHERE user_id = ? AND type = 'transfer' AND is_archived = 0 ORDER BY id LIMIT 1",
        (current_user_id(),),
    ).fetchone()
    description = body.description or f"Transfer: {source['name']} → {target['name']}"
    shared = {
        "user_id": current_user_id(),
        "category_id": category["id"] if category else None,
        "date": body.date.isoformat(),
        "description": description,
        "is_transfer": 1,
    }

    outgoing_id = insert_row(db, "transactions", {**shared, "account_id": source["id"], "amount": -body.amount})
    incoming_id = insert_row(
        db,
        "transactions",
        {**shared, "account_id": target["id"], "amount": body.amount, "linked_transaction_id": outgoing_id},
    )
    update_row(db, "transactions", outgoing_id, current_user_id(), {"linked_transaction_id": incoming_id})
    db.commit()
    logger.info("Transfer %s -> %s created", outgoing_id, incoming_id)

    return (
        jsonify(
            {
                "success": True,
                "message": f"Transferred {body.amount:.2f} from {source['name']} to {target['name']}",
                "from_transaction": load_transaction(db, outgoing_id),
                "to_transaction": load_transaction(db, incoming_id),
            }
        ),
        201,
    )


@transactions_bp.get("/<int:transaction_id>")
@login_required
def get_transaction(transaction_id):
    return jsonify(load_transaction(get_db(), transaction_id))


@transactions_bp.put("/<int:transaction_id>")
@login_required
def update_transaction(transaction_id):
    body = parse_body(TransactionUpdate)
    db = get_db()
    fetch_owned(db, "transactions", transaction_id, "Transaction", "id")

    changes = body.changes()
    if "account_id" in changes:
        ensure_account(db, changes["account_id"])
    if changes.get("category_id") is not None:
        ensure_category(db, changes["category_id"])

    amount = changes.pop("amount", None)
    transaction_type = changes.pop("type", None)
    if amount is not None and transaction_type is not None:
        changes["amount"] = signed_amount(amount, transaction_type)
        changes["is_transfer"] = 1 if transaction_type == "transfer" else 0

    update_row(db, "transactions", transaction_id, current_user_id(), changes)
    db.commit()
    return jsonify(load_transaction(db, transaction_id))


@transactions_bp.delete("/<int:transaction_id>")
@login_required
def delete_transaction(transaction_id):
    db = get_db()
    fetch_owned(db, "transactions", transaction_id, "Transaction", "id")
    db.execute("DELETE FROM transactions WHERE id = ? AND user_id = ?", (transaction_id, current_user_id()))
    db.commit()
    return jsonify({"success": True})


@transactions_bp.get("/<int:transaction_id>/tags")
@login_required
def list_transaction_tags(transaction_id):
    db = get_db()
    fetch_owned(db, "transactions", transaction_id, "Transaction", "id")
    return jsonify(tags_for(db, [transaction_id]).get(transaction_id, []))


@transactions_bp.post("/<int:transaction_id>/tags")
@login_required
def add_transaction_tag(transaction_id):
    body = parse_body(TransactionTagIn)
    db = get_db()
    fetch_owned(db, "transactions", transaction_id, "Transaction", "id")
    fetch_owned(db, "tags", body.tag_id, "Tag", "id")
    existing = db.execute(
        "SELECT 1 FROM transaction_tags WHERE transaction_id = ? AND tag_id = ?",
        (transaction_id, body.tag_id),
    ).fetchone()
    if existing is None:
        db.execute(
            "INSERT INTO transaction_tags (transaction_id, tag_id) VALUES (?, ?)",
            (transaction_id, body.tag_id),
        )
        db.commit()
    return jsonify(tags_for(db, [transaction_id]).get(transaction_id, [])), 201


@transactions_bp.delete("/<int:transaction_id>/tags")
@login_required
def remove_transaction_tag(transaction_id):
    tag_id = query_int("tag_id", None)
    if tag_id is None:
        raise BadRequestError("tag_id is required")
    db = get_db()
    fetch_owned(db, "transactions", transaction_id, "Transaction", "id")
    db.execute(
        "DELETE FROM transaction_tags WHERE transaction_id = ? AND tag_id = ?",
        (transaction_id, tag_id),
    )
    db.commit()
    return jsonify({"success": True})
