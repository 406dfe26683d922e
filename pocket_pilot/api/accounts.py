import logging

from flask import Blueprint, jsonify

from ..db import insert_row, row_to_dict, rows_to_dicts, update_row
from ..schemas import AccountIn, AccountUpdate
from .common import current_user_id, fetch_owned, get_db, login_required, parse_body

accounts_bp = Blueprint("accounts", __name__, url_prefix="/accounts")
logger = logging.getLogger(__name__)

ACCOUNT_WITH_BALANCE = """
    SELECT a.id, a.name, a.type, a.created_at, COALESCE(SUM(t.amount), 0) AS balance
    FROM accounts a
    LEFT JOIN transactions t ON t.account_id = a.id
    WHERE a.user_id = ? {where}
    GROUP BY a.id, a.name, a.type, a.created_at
    ORDER BY a.created_at, a.id
"""


def load_account(db, account_id):
    row = db.execute(ACCOUNT_WITH_BALANCE.format(where="AND a.id = ?"), (current_user_id(), account_id)).fetchone()
    account = row_to_dict(row)
    if account is not None:
        account["balance"] = round(account["balance"], 2)
    return account


@accounts_bp.get("")
@login_required
def list_accounts():
    rows = get_db().execute(ACCOUNT_WITH_BALANCE.format(where=""), (current_user_id(),)).fetchall()
    accounts = rows_to_dicts(rows)
    for account in accounts:
        account["balance"] = round(account["balance"], 2)
    return jsonify(accounts)


@accounts_bp.post("")
@login_required
def create_account():
    body = parse_body(AccountIn)
    db = get_db()
    account_id = insert_row(db, "accounts", {"user_id": current_user_id(), "name": body.name, "type": body.type})
    db.commit()
    return jsonify(load_account(db, account_id)), 201


@accounts_bp.get("/<int:account_id>")
@login_required
def get_account(account_id):
    db = get_db()
    fetch_owned(db, "accounts", account_id, "Account", "id")
    return jsonify(load_account(db, account_id))


@accounts_bp.put("/<int:account_id>")
@login_required
def update_account(account_id):
    body = parse_body(AccountUpdate)
    db = get_db()
    fetch_owned(db, "accounts", account_id, "Account", "id")
    update_row(db, "accounts", account_id, current_user_id(), body.changes())
    db.commit()
    return jsonify(load_account(db, account_id))


@accounts_bp.delete("/<int:account_id>")
@login_required
def delete_account(account_id):
    db = get_db()
    fetch_owned(db, "accounts", account_id, "Account", "id")
    db.execute("DELETE FROM accounts WHERE id = ? AND user_id = ?", (account_id, current_user_id()))
    db.commit()
    logger.info("Deleted account %s", account_id)
    return jsonify({"success": True})
