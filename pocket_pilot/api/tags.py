from flask import Blueprint, jsonify

from ..db import insert_row, row_to_dict, rows_to_dicts, update_row
from ..errors import ConflictError
from ..schemas import TagIn, TagUpdate
from .common import current_user_id, fetch_owned, get_db, login_required, parse_body

tags_bp = Blueprint("tags", __name__, url_prefix="/tags")


def ensure_unique_tag(db, name, exclude_id=None):
    row = db.execute(
        "SELECT id FROM tags WHERE user_id = ? AND LOWER(name) = ?",
        (current_user_id(), name.lower()),
    ).fetchone()
    if row is not None and row["id"] != exclude_id:
        raise ConflictError(f"Tag '{name}' already exists")


@tags_bp.get("")
@login_required
def list_tags():
    rows = get_db().execute(
        """
        SELECT tg.id, tg.name, tg.color, tg.created_at, COUNT(tt.transaction_id) AS transaction_count
        FROM tags tg
        LEFT JOIN transaction_tags tt ON tt.tag_id = tg.id
        WHERE tg.user_id = ?
        GROUP BY tg.id, tg.name, tg.color, tg.created_at
        ORDER BY tg.name
        """,
        (current_user_id(),),
    ).fetchall()
    return jsonify(rows_to_dicts(rows))


@tags_bp.post("")
@login_required
def create_tag():
    body = parse_body(TagIn)
    db = get_db()
    ensure_unique_tag(db, body.name)
    tag_id = insert_row(db, "tags", {"user_id": current_user_id(), "name": body.name, "color": body.color})
    db.commit()
    return jsonify(row_to_dict(fetch_owned(db, "tags", tag_id, "Tag"))), 201


@tags_bp.put("/<int:tag_id>")
@login_required
def update_tag(tag_id):
    body = parse_body(TagUpdate)
    db = get_db()
    fetch_owned(db, "tags", tag_id, "Tag", "id")
    changes = body.changes()
    if changes.get("name"):
        ensure_unique_tag(db, changes["name"], exclude_id=tag_id)
    update_row(db, "tags", tag_id, current_user_id(), changes)
    db.commit()
    return jsonify(row_to_dict(fetch_owned(db, "tags", tag_id, "Tag")))


@tags_bp.delete("/<int:tag_id>")
@login_required
def delete_tag(tag_id):
    db = get_db()
    fetch_owned(db, "tags", tag_id, "Tag", "id")
    db.execute("DELETE FROM tags WHERE id = ? AND user_id = ?", (tag_id, current_user_id()))
    db.commit()
    return jsonify({"success": True})
