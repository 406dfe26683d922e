import json
import logging

from flask import Blueprint, jsonify, request

from ..db import insert_row, row_to_dict, rows_to_dicts, update_row
from ..errors import BadRequestError
from ..schemas import MemoryIn
from .common import current_user_id, get_db, login_required, parse_body, query_int, utc_timestamp

ai_memory_bp = Blueprint("ai_memory", __name__, url_prefix="/ai-memory")
logger = logging.getLogger(__name__)


def serialize_memories(rows):
    return rows_to_dicts(rows, json_fields=("value",))


@ai_memory_bp.get("")
@login_required
def list_memories():
    sql = "SELECT * FROM ai_memory WHERE user_id = ? AND (expires_at IS NULL OR expires_at > ?)"
    params = [current_user_id(), utc_timestamp()]
    memory_type = request.args.get("type")
    if memory_type:
        sql += " AND memory_type = ?"
        params.append(memory_type)
    key = request.args.get("key")
    if key:
        sql += " AND key = ?"
        params.append(key)
    rows = get_db().execute(sql + " ORDER BY importance DESC, updated_at DESC", params).fetchall()
    return jsonify({"memories": serialize_memories(rows)})


@ai_memory_bp.post("")
@login_required
def save_memory():
    """Insert or replace the memory stored under (type, key)."""
    body = parse_body(MemoryIn)
    db = get_db()
    values = {
        "value": json.dumps(body.value),
        "importance": body.importance,
        "expires_at": utc_timestamp(body.expires_at) if body.expires_at else None,
        "updated_at": utc_timestamp(),
    }
    existing = db.execute(
        "SELECT id FROM ai_memory WHERE user_id = ? AND memory_type = ? AND key = ?",
        (current_user_id(), body.memory_type, body.key),
    ).fetchone()
    if existing is not None:
        memory_id = existing["id"]
        update_row(db, "ai_memory", memory_id, current_user_id(), values)
    else:
        memory_id = insert_row(
            db,
            "ai_memory",
            {"user_id": current_user_id(), "memory_type": body.memory_type, "key": body.key, **values},
        )
    db.commit()

    row = db.execute("SELECT * FROM ai_memory WHERE id = ?", (memory_id,)).fetchone()
    return jsonify({"memory": row_to_dict(row, json_fields=("value",))})


@ai_memory_bp.delete("")
@login_required
def delete_memory():
    memory_id = query_int("id", None)
    memory_type = request.args.get("type")
    key = request.args.get("key")
    if memory_id is None and not (memory_type and key):
        raise BadRequestError("Either id or type+key is required")

    db = get_db()
    if memory_id is not None:
        db.execute("DELETE FROM ai_memory WHERE id = ? AND user_id = ?", (memory_id, current_user_id()))
    else:
        db.execute(
            "DELETE FROM ai_memory WHERE user_id = ? AND memory_type = ? AND key = ?",
            (current_user_id(), memory_type, key),
        )
    db.commit()
    return jsonify({"success": True})
