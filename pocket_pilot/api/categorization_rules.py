import logging

from flask import Blueprint, jsonify

from ..db import insert_row, row_to_dict, rows_to_dicts, update_row
from ..errors import NotFoundError
from ..finance.categorize import first_matching_rule
from ..schemas import CategorizationApplyIn, CategorizationRuleIn, CategorizationRuleUpdate, ReorderRulesIn
from .common import current_user_id, fetch_owned, get_db, login_required, parse_body, utc_timestamp

categorization_rules_bp = Blueprint("categorization_rules", __name__, url_prefix="/categorization-rules")
logger = logging.getLogger(__name__)

RULE_BOOLS = ("case_sensitive", "is_active")
RULE_SELECT = """
    SELECT r.*, c.name AS category_name
    FROM categorization_rules r
    LEFT JOIN categories c ON c.id = r.target_category_id
"""


def active_rules(db, user_id):
    rows = db.execute(
        RULE_SELECT + " WHERE r.user_id = ? AND r.is_active = 1 ORDER BY r.rule_order ASC",
        (user_id,),
    ).fetchall()
    return rows_to_dicts(rows, bool_fields=RULE_BOOLS)


def load_rule(db, rule_id):
    row = db.execute(RULE_SELECT + " WHERE r.id = ? AND r.user_id = ?", (rule_id, current_user_id())).fetchone()
    if row is None:
        raise NotFoundError("Rule")
    return row_to_dict(row, bool_fields=RULE_BOOLS)


@categorization_rules_bp.get("")
@login_required
def list_rules():
    rows = get_db().execute(
        RULE_SELECT + " WHERE r.user_id = ? ORDER BY r.rule_order ASC",
        (current_user_id(),),
    ).fetchall()
    return jsonify(rows_to_dicts(rows, bool_fields=RULE_BOOLS))


@categorization_rules_bp.post("")
@login_required
def create_rule():
    body = parse_body(CategorizationRuleIn)
    db = get_db()
    fetch_owned(db, "categories", body.target_category_id, "Category", "id")

    row = db.execute(
        "SELECT MAX(rule_order) AS max_order FROM categorization_rules WHERE user_id = ?",
        (current_user_id(),),
    ).fetchone()
    next_order = (row["max_order"] if row["max_order"] is not None else -1) + 1

    rule_id = insert_row(
        db,
        "categorization_rules",
        {
            "user_id": current_user_id(),
            "name": body.name,
            "rule_order": next_order,
            "rule_type": body.rule_type,
            "pattern": body.pattern,
            "case_sensitive": int(body.case_sensitive),
            "target_category_id": body.target_category_id,
            "is_active": int(body.is_active),
        },
    )
    db.commit()
    return jsonify(load_rule(db, rule_id)), 201


@categorization_rules_bp.get("/<int:rule_id>")
@login_required
def get_rule(rule_id):
    return jsonify(load_rule(get_db(), rule_id))


@categorization_rules_bp.put("/<int:rule_id>")
@login_required
def update_rule(rule_id):
    body = parse_body(CategorizationRuleUpdate)
    db = get_db()
    fetch_owned(db, "categorization_rules", rule_id, "Rule", "id")

    changes = body.changes()
    if "target_category_id" in changes:
        fetch_owned(db, "categories", changes["target_category_id"], "Category", "id")
    for field in RULE_BOOLS:
        if field in changes:
            changes[field] = int(changes[field])
    if changes:
        changes["updated_at"] = utc_timestamp()
    update_row(db, "categorization_rules", rule_id, current_user_id(), changes)
    db.commit()
    return jsonify(load_rule(db, rule_id))


@categorization_rules_bp.delete("/<int:rule_id>")
@login_required
def delete_rule(rule_id):
    db = get_db()
    fetch_owned(db, "categorization_rules", rule_id, "Rule", "id")
    db.execute("DELETE FROM categorization_rules WHERE id = ? AND user_id = ?", (rule_id, current_user_id()))
    db.commit()
    return jsonify({"success": True})


@categorization_rules_bp.post("/reorder")
@login_required
def reorder_rules():
    body = parse_body(ReorderRulesIn)
    db = get_db()
    rule_ids = list(dict.fromkeys(body.rule_ids))
    placeholders = ", ".join(["?"] * len(rule_ids))
    found = {
        row["id"]
        for row in db.execute(
            f"SELECT id FROM categorization_rules WHERE user_id = ? AND id IN ({placeholders})",
            [current_user_id(), *rule_ids],
        ).fetchall()
    }
    missing = [rule_id for rule_id in rule_ids if rule_id not in found]
    if missing:
        raise NotFoundError("Some rules", invalid_ids=missing)

    # Park every rule on a negative slot first so (user_id, rule_order) stays unique.
    for position, rule_id in enumerate(rule_ids):
        update_row(db, "categorization_rules", rule_id, current_user_id(), {"rule_order": -(position + 1)})
    for position, rule_id in enumerate(rule_ids):
        update_row(db, "categorization_rules", rule_id, current_user_id(), {"rule_order": position})
    db.commit()
    return jsonify({"success": True, "message": "Rules reordered successfully"})


@categorization_rules_bp.post("/apply")
@login_required
def apply_rules():
    body = parse_body(CategorizationApplyIn)
    db = get_db()
    rules = active_rules(db, current_user_id())
    if not rules:
        return jsonify({"total_checked": 0, "total_matched": 0, "matches": [], "message": "No active rules found"})

    query = "SELECT id, description FROM transactions WHERE user_id = ? AND description IS NOT NULL"
    if body.uncategorized_only:
        query += " AND category_id IS NULL"
    transactions = db.execute(query + " ORDER BY date DESC, id DESC", (current_user_id(),)).fetchall()
    if not transactions:
        return jsonify({"total_checked": 0, "total_matched": 0, "matches": [], "message": "No transactions to process"})

    matches = []
    for txn in transactions:
        rule = first_matching_rule(rules, txn["description"])
        if rule is None:
            continue
        matches.append(
            {
                "transaction_id": txn["id"],
                "description": txn["description"],
                "rule_name": rule["name"],
                "category_name": rule["category_name"] or "Unknown",
            }
        )
        if not body.dry_run:
            update_row(db, "transactions", txn["id"], current_user_id(), {"category_id": rule["target_category_id"]})
    if not body.dry_run:
        db.commit()
        logger.info("Categorization rules applied to %s transaction(s) for user_id=%s", len(matches), current_user_id())

    if body.dry_run:
        message = f"Found {len(matches)} matches out of {len(transactions)} transactions (dry run)"
    else:
        message = f"Applied categories to {len(matches)} transaction(s)"
    return jsonify(
        {
            "total_checked": len(transactions),
            "total_matched": len(matches),
            "matches": matches if body.dry_run else matches[:10],
            "applied": not body.dry_run,
            "message": message,
        }
    )
