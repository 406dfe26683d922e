import json
import logging

from flask import Blueprint, jsonify, request

from ..db import insert_row, row_to_dict, rows_to_dicts, update_row
from ..errors import BadRequestError
from ..finance.learning import TEACH_HINT, describe_rule, parse_instruction, rule_matches
from ..schemas import ApplyRulesIn, LearningRuleIn, LearningRuleUpdate, TeachIn
from .common import current_user_id, fetch_owned, get_db, login_required, parse_body, query_flag, query_int, utc_timestamp

ai_learning_bp = Blueprint("ai_learning", __name__, url_prefix="/ai-learning")
logger = logging.getLogger(__name__)

RULE_JSON = ("action",)
RULE_BOOLS = ("is_active",)


def load_rule(db, rule_id):
    return row_to_dict(fetch_owned(db, "ai_learning_rules", rule_id, "Learning rule"), RULE_JSON, RULE_BOOLS)


def create_rule(db, rule_type, pattern, action, priority, is_active=True):
    rule_id = insert_row(
        db,
        "ai_learning_rules",
        {
            "user_id": current_user_id(),
            "rule_type": rule_type,
            "pattern": pattern,
            "action": json.dumps(action),
            "priority": priority,
            "is_active": int(is_active),
        },
    )
    db.commit()
    return load_rule(db, rule_id)


def teach():
    body = parse_body(TeachIn)
    parsed = parse_instruction(body.instruction)
    if parsed is None:
        raise BadRequestError("Could not understand instruction", hint=TEACH_HINT)
    rule = create_rule(get_db(), parsed["rule_type"], parsed["pattern"], parsed["action"], parsed["priority"])
    return jsonify({"rule": rule, "message": f"Got it! I'll {describe_rule(parsed)}"})


def apply_rules():
    """Actions of every active rule matching a transaction, highest priority first."""
    body = parse_body(ApplyRulesIn)
    db = get_db()
    rules = rows_to_dicts(
        db.execute(
            "SELECT * FROM ai_learning_rules WHERE user_id = ? AND is_active = 1 ORDER BY priority DESC, id",
            (current_user_id(),),
        ).fetchall(),
        RULE_JSON,
        RULE_BOOLS,
    )
    matched = [rule for rule in rules if rule_matches(rule, body.description, body.amount)]

    matched_at = utc_timestamp()
    for rule in matched:
        db.execute(
            "UPDATE ai_learning_rules SET match_count = match_count + 1, last_matched_at = ? WHERE id = ?",
            (matched_at, rule["id"]),
        )
    db.commit()

    return jsonify(
        {
            "matches": [
                {
                    "rule_id": rule["id"],
                    "rule_type": rule["rule_type"],
                    "pattern": rule["pattern"],
                    "action": rule["action"],
                    "priority": rule["priority"],
                    "description": describe_rule(rule),
                }
                for rule in matched
            ]
        }
    )


@ai_learning_bp.get("")
@login_required
def list_rules():
    sql = "SELECT * FROM ai_learning_rules WHERE user_id = ?"
    params = [current_user_id()]
    rule_type = request.args.get("type")
    if rule_type:
        sql += " AND rule_type = ?"
        params.append(rule_type)
    if query_flag("active"):
        sql += " AND is_active = 1"
    rows = get_db().execute(sql + " ORDER BY priority DESC, id", params).fetchall()
    return jsonify({"rules": rows_to_dicts(rows, RULE_JSON, RULE_BOOLS)})


@ai_learning_bp.post("")
@login_required
def post_rule():
    action = request.args.get("action")
    if action == "teach":
        return teach()
    if action == "apply":
        return apply_rules()

    body = parse_body(LearningRuleIn)
    rule = create_rule(get_db(), body.rule_type, body.pattern, body.action, body.priority, body.is_active)
    return jsonify({"rule": rule})


@ai_learning_bp.put("")
@login_required
def update_rule():
    body = parse_body(LearningRuleUpdate)
    db = get_db()
    fetch_owned(db, "ai_learning_rules", body.id, "Learning rule", "id")

    changes = {key: value for key, value in body.changes().items() if key != "id"}
    if "action" in changes:
        changes["action"] = json.dumps(changes["action"])
    if "is_active" in changes:
        changes["is_active"] = int(changes["is_active"])
    update_row(db, "ai_learning_rules", body.id, current_user_id(), changes)
    db.commit()
    return jsonify({"rule": load_rule(db, body.id)})


@ai_learning_bp.delete("")
@login_required
def delete_rule():
    rule_id = query_int("id", None)
    if rule_id is None:
        raise BadRequestError("id is required")
    db = get_db()
    db.execute("DELETE FROM ai_learning_rules WHERE id = ? AND user_id = ?", (rule_id, current_user_id()))
    db.commit()
    return jsonify({"success": True})
