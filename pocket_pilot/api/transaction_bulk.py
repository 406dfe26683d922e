import logging

from flask import Blueprint, jsonify

from ..errors import NotFoundError
from ..schemas import BulkCategoryIn, BulkDeleteIn, BulkTagsIn
from .common import current_user_id, fetch_owned, get_db, login_required, parse_body

transaction_bulk_bp = Blueprint("transaction_bulk", __name__, url_prefix="/transactions/bulk")
logger = logging.getLogger(__name__)


def placeholders(values):
    return ", ".join(["?"] * len(values))


def owned_rows(db, table, ids, resource, columns="id"):
    """Rows of *table* for *ids*; 404 listing the ids the user does not own."""
    ids = list(dict.fromkeys(ids))
    rows = db.execute(
        f"SELECT {columns} FROM {table} WHERE user_id = ? AND id IN ({placeholders(ids)})",
        [current_user_id(), *ids],
    ).fetchall()
    found = {row["id"] for row in rows}
    missing = [value for value in ids if value not in found]
    if missing:
        raise NotFoundError(f"Some {resource}", invalid_ids=missing)
    return ids, rows


@transaction_bulk_bp.post("/delete")
@login_required
def bulk_delete():
    body = parse_body(BulkDeleteIn)
    db = get_db()
    ids, rows = owned_rows(db, "transactions", body.transaction_ids, "transactions", "id, linked_transaction_id")

    # the other half of a transfer goes with it
    linked = [
        row["linked_transaction_id"]
        for row in rows
        if row["linked_transaction_id"] and row["linked_transaction_id"] not in ids
    ]
    to_delete = ids + list(dict.fromkeys(linked))
    result = db.execute(
        f"DELETE FROM transactions WHERE user_id = ? AND id IN ({placeholders(to_delete)})",
        [current_user_id(), *to_delete],
    )
    db.commit()
    logger.info("Bulk delete for user_id=%s ids=%s deleted=%s", current_user_id(), to_delete, result.rowcount)
    return jsonify(
        {
            "success": True,
            "affected_count": len(to_delete),
            "message": f"Successfully deleted {len(to_delete)} transaction(s)",
        }
    )


@transaction_bulk_bp.post("/update-category")
@login_required
def bulk_update_category():
    body = parse_body(BulkCategoryIn)
    db = get_db()
    ids, _ = owned_rows(db, "transactions", body.transaction_ids, "transactions")
    if body.category_id is not None:
        fetch_owned(db, "categories", body.category_id, "Category", "id")

    db.execute(
        f"UPDATE transactions SET category_id = ? WHERE user_id = ? AND id IN ({placeholders(ids)})",
        [body.category_id, current_user_id(), *ids],
    )
    db.commit()
    return jsonify(
        {
            "success": True,
            "affected_count": len(ids),
            "message": f"Successfully updated {len(ids)} transaction(s)",
        }
    )


@transaction_bulk_bp.post("/add-tags")
@login_required
def bulk_add_tags():
    body = parse_body(BulkTagsIn)
    db = get_db()
    ids, _ = owned_rows(db, "transactions", body.transaction_ids, "transactions")
    try:
        tag_ids, _ = owned_rows(db, "tags", body.tag_ids, "tags")
    except NotFoundError as e:
        e.extra = {"invalid_tag_ids": e.extra["invalid_ids"]}
        raise

    if body.replace_existing:
        db.execute(f"DELETE FROM transaction_tags WHERE transaction_id IN ({placeholders(ids)})", ids)
    existing = {
        (row["transaction_id"], row["tag_id"])
        for row in db.execute(
            f"SELECT transaction_id, tag_id FROM transaction_tags WHERE transaction_id IN ({placeholders(ids)})",
            ids,
        ).fetchall()
    }
    for transaction_id in ids:
        for tag_id in tag_ids:
            if (transaction_id, tag_id) in existing:
                continue
            db.execute(
                "INSERT INTO transaction_tags (transaction_id, tag_id) VALUES (?, ?)",
                (transaction_id, tag_id),
            )
    db.commit()
    return jsonify(
        {
            "success": True,
            "affected_count": len(ids),
            "tags_added": len(tag_ids),
            "message": f"Successfully added {len(tag_ids)} tag(s) to {len(ids)} transaction(s)",
        }
    )
