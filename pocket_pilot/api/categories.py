import logging

from flask import Blueprint, jsonify

from ..db import insert_row, row_to_dict, rows_to_dicts, update_row
from ..errors import BadRequestError, ConflictError
from ..schemas import CategoryIn, CategoryUpdate
from .common import current_user_id, fetch_owned, get_db, login_required, parse_body, query_flag

categories_bp = Blueprint("categories", __name__, url_prefix="/categories")
logger = logging.getLogger(__name__)

CATEGORY_BOOLS = ("is_tax_related", "is_archived")

DEFAULT_CATEGORIES = [
    ("Housing", "expense", None),
    ("Transportation", "expense", None),
    ("Food & Dining", "expense", None),
    ("Utilities", "expense", None),
    ("Healthcare", "expense", "Medical"),
    ("Entertainment", "expense", None),
    ("Shopping", "expense", None),
    ("Personal Care", "expense", None),
    ("Education", "expense", "Education"),
    ("Savings", "transfer", None),
    ("Other", "expense", None),
    ("Income", "income", None),
]

TAX_TAGS = ("Charity", "Medical", "Business", "Education", "Home Office", "Other")


def serialize_category(row):
    return row_to_dict(row, bool_fields=CATEGORY_BOOLS)


def ensure_unique_name(db, name, exclude_id=None):
    row = db.execute(
        "SELECT id FROM categories WHERE user_id = ? AND name = ? AND is_archived = 0",
        (current_user_id(), name),
    ).fetchone()
    if row is not None and row["id"] != exclude_id:
        raise ConflictError(f"Category '{name}' already exists")


def seed_default_categories(db, user_id):
    """Create the default categories for a user with none; returns how many were added."""
    count = db.execute("SELECT COUNT(*) FROM categories WHERE user_id = ?", (user_id,)).fetchone()[0]
    if count:
        return 0
    for name, category_type, tax_tag in DEFAULT_CATEGORIES:
        insert_row(
            db,
            "categories",
            {
                "user_id": user_id,
                "name": name,
                "type": category_type,
                "is_tax_related": 1 if tax_tag else 0,
                "tax_tag": tax_tag,
            },
        )
    return len(DEFAULT_CATEGORIES)


@categories_bp.get("")
@login_required
def list_categories():
    sql = "SELECT * FROM categories WHERE user_id = ?"
    if not query_flag("include_archived"):
        sql += " AND is_archived = 0"
    sql += " ORDER BY type, name"
    rows = get_db().execute(sql, (current_user_id(),)).fetchall()
    return jsonify(rows_to_dicts(rows, bool_fields=CATEGORY_BOOLS))


@categories_bp.get("/tax-tags")
@login_required
def list_tax_tags():
    return jsonify({"tax_tags": list(TAX_TAGS)})


@categories_bp.post("")
@login_required
def create_category():
    body = parse_body(CategoryIn)
    db = get_db()
    ensure_unique_name(db, body.name)
    category_id = insert_row(
        db,
        "categories",
        {
            "user_id": current_user_id(),
            "name": body.name,
            "type": body.type,
            "is_tax_related": int(body.is_tax_related),
            "tax_tag": body.tax_tag,
        },
    )
    db.commit()
    return jsonify(serialize_category(fetch_owned(db, "categories", category_id, "Category"))), 201


@categories_bp.post("/seed")
@login_required
def seed_categories():
    db = get_db()
    created = seed_default_categories(db, current_user_id())
    if not created:
        count = db.execute("SELECT COUNT(*) FROM categories WHERE user_id = ?", (current_user_id(),)).fetchone()[0]
        return jsonify({"seeded": False, "message": "Categories already exist", "count": count})
    db.commit()
    logger.info("Seeded %s default categories for user %s", created, current_user_id())
    return jsonify({"seeded": True, "message": "Default categories created", "count": created})


@categories_bp.get("/<int:category_id>")
@login_required
def get_category(category_id):
    return jsonify(serialize_category(fetch_owned(get_db(), "categories", category_id, "Category")))


@categories_bp.put("/<int:category_id>")
@login_required
def update_category(category_id):
    body = parse_body(CategoryUpdate)
    db = get_db()
    fetch_owned(db, "categories", category_id, "Category", "id")
    changes = body.changes()
    if "name" in changes:
        ensure_unique_name(db, changes["name"], exclude_id=category_id)
    if "is_tax_related" in changes:
        changes["is_tax_related"] = int(changes["is_tax_related"])
    update_row(db, "categories", category_id, current_user_id(), changes)
    db.commit()
    return jsonify(serialize_category(fetch_owned(db, "categories", category_id, "Category")))


@categories_bp.delete("/<int:category_id>")
@login_required
def archive_category(category_id):
    db = get_db()
    category = fetch_owned(db, "categories", category_id, "Category")
    if category["is_archived"]:
        raise BadRequestError("Category is already archived")
    update_row(db, "categories", category_id, current_user_id(), {"is_archived": 1})
    db.commit()
    return jsonify({"success": True, "archived": True})
