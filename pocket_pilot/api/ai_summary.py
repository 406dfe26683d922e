import json
import logging

from flask import Blueprint, jsonify, request

from ..db import insert_row, row_to_dict, rows_to_dicts, update_row
from ..errors import BadRequestError
from ..finance.summary import generate_summary, summary_period
from .common import current_user_id, fetch_owned, get_db, login_required, query_int, today

ai_summary_bp = Blueprint("ai_summary", __name__, url_prefix="/ai-summary")
logger = logging.getLogger(__name__)

SUMMARY_TYPES = ("weekly", "monthly")
SUMMARY_JSON = ("content", "highlights", "recommendations")
SUMMARY_BOOLS = ("is_read",)


def load_summary(db, summary_id):
    return row_to_dict(fetch_owned(db, "ai_summaries", summary_id, "Summary"), SUMMARY_JSON, SUMMARY_BOOLS)


@ai_summary_bp.get("")
@login_required
def list_summaries():
    sql = "SELECT * FROM ai_summaries WHERE user_id = ?"
    params = [current_user_id()]
    summary_type = request.args.get("type")
    if summary_type:
        sql += " AND summary_type = ?"
        params.append(summary_type)
    params.append(query_int("limit", 10, minimum=1, maximum=50))
    rows = get_db().execute(sql + " ORDER BY period_start DESC, id DESC LIMIT ?", params).fetchall()
    return jsonify({"summaries": rows_to_dicts(rows, SUMMARY_JSON, SUMMARY_BOOLS)})


@ai_summary_bp.post("")
@login_required
def create_summary():
    """Generate the summary for the current week or month, once per period."""
    summary_type = request.args.get("type")
    if summary_type not in SUMMARY_TYPES:
        raise BadRequestError("Invalid summary type. Use 'weekly' or 'monthly'")

    db = get_db()
    user_id = current_user_id()
    current = today()
    period_start, _ = summary_period(summary_type, current)
    existing = db.execute(
        "SELECT id FROM ai_summaries WHERE user_id = ? AND summary_type = ? AND period_start = ?",
        (user_id, summary_type, period_start.isoformat()),
    ).fetchone()
    if existing is not None:
        return jsonify({"summary": load_summary(db, existing["id"]), "cached": True})

    summary = generate_summary(db, user_id, summary_type, current)
    summary_id = insert_row(
        db,
        "ai_summaries",
        {
            "user_id": user_id,
            "summary_type": summary_type,
            "period_start": summary["period_start"],
            "period_end": summary["period_end"],
            "content": json.dumps(summary["content"]),
            "highlights": json.dumps(summary["highlights"]),
            "recommendations": json.dumps(summary["recommendations"]),
            "health_score": summary["health_score"],
        },
    )
    db.commit()
    logger.info("Generated %s summary %s for user %s", summary_type, summary_id, user_id)
    return jsonify({"summary": load_summary(db, summary_id), "cached": False})


@ai_summary_bp.patch("/<int:summary_id>")
@login_required
def mark_read(summary_id):
    db = get_db()
    fetch_owned(db, "ai_summaries", summary_id, "Summary", "id")
    update_row(db, "ai_summaries", summary_id, current_user_id(), {"is_read": 1})
    db.commit()
    return jsonify({"summary": load_summary(db, summary_id)})
