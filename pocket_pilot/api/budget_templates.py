import logging

from flask import Blueprint, current_app, jsonify

from ..db import insert_row, row_to_dict, rows_to_dicts, update_row
from ..errors import BadRequestError, ForbiddenError, NotFoundError
from ..finance.budgets import DEFAULT_ALERT_THRESHOLD, plan_template_budgets
from ..schemas import TemplateApplyIn, TemplateIn, TemplateUpdate
from .common import current_user_id, get_db, login_required, parse_body

budget_templates_bp = Blueprint("budget_templates", __name__, url_prefix="/budget-templates")
logger = logging.getLogger(__name__)


def load_items(db, template_ids):
    if not template_ids:
        return {}
    placeholders = ", ".join(["?"] * len(template_ids))
    rows = db.execute(
        f"SELECT * FROM budget_template_items WHERE template_id IN ({placeholders}) ORDER BY id",
        list(template_ids),
    ).fetchall()
    items = {}
    for item in rows_to_dicts(rows):
        items.setdefault(item["template_id"], []).append(item)
    return items


def with_items(db, templates):
    items = load_items(db, [template["id"] for template in templates])
    for template in templates:
        template["items"] = items.get(template["id"], [])
    return templates


def visible_template(db, template_id):
    """System templates and the user's own; anything else is reported missing."""
    row = db.execute(
        "SELECT * FROM budget_templates WHERE id = ? AND (is_system = 1 OR user_id = ?)",
        (template_id, current_user_id()),
    ).fetchone()
    if row is None:
        raise NotFoundError("Template")
    return row_to_dict(row, bool_fields=("is_system",))


def editable_template(db, template_id):
    template = visible_template(db, template_id)
    if template["is_system"]:
        raise ForbiddenError("System templates cannot be modified")
    return template


def insert_items(db, template_id, items):
    for item in items:
        insert_row(
            db,
            "budget_template_items",
            {
                "template_id": template_id,
                "category_name": item.category_name,
                "percentage": item.percentage,
                "fixed_amount": item.fixed_amount,
                "notes": item.notes,
            },
        )


@budget_templates_bp.get("")
@login_required
def list_templates():
    db = get_db()
    rows = db.execute(
        "SELECT * FROM budget_templates WHERE is_system = 1 OR user_id = ? ORDER BY is_system DESC, name",
        (current_user_id(),),
    ).fetchall()
    return jsonify(with_items(db, rows_to_dicts(rows, bool_fields=("is_system",))))


@budget_templates_bp.post("")
@login_required
def create_template():
    body = parse_body(TemplateIn)
    db = get_db()
    template_id = insert_row(
        db,
        "budget_templates",
        {
            "user_id": current_user_id(),
            "name": body.name,
            "description": body.description,
            "is_system": 0,
            "template_type": "CUSTOM",
        },
    )
    insert_items(db, template_id, body.items)
    db.commit()
    return jsonify(with_items(db, [visible_template(db, template_id)])[0]), 201


@budget_templates_bp.get("/<int:template_id>")
@login_required
def get_template(template_id):
    db = get_db()
    return jsonify(with_items(db, [visible_template(db, template_id)])[0])


@budget_templates_bp.put("/<int:template_id>")
@login_required
def update_template(template_id):
    body = parse_body(TemplateUpdate)
    db = get_db()
    editable_template(db, template_id)

    changes = body.changes()
    changes.pop("items", None)
    update_row(db, "budget_templates", template_id, current_user_id(), changes)
    if body.items is not None:
        db.execute("DELETE FROM budget_template_items WHERE template_id = ?", (template_id,))
        insert_items(db, template_id, body.items)
    db.commit()
    return jsonify(with_items(db, [visible_template(db, template_id)])[0])


@budget_templates_bp.delete("/<int:template_id>")
@login_required
def delete_template(template_id):
    db = get_db()
    editable_template(db, template_id)
    db.execute("DELETE FROM budget_templates WHERE id = ? AND user_id = ?", (template_id, current_user_id()))
    db.commit()
    return jsonify({"success": True})


@budget_templates_bp.post("/<int:template_id>/apply")
@login_required
def apply_template(template_id):
    body = parse_body(TemplateApplyIn)
    db = get_db()
    template = visible_template(db, template_id)
    items = load_items(db, [template_id]).get(template_id, [])
    if not items:
        raise BadRequestError("Template has no budget items")

    user_id = current_user_id()
    if body.replace_existing:
        deleted = db.execute("DELETE FROM budgets WHERE user_id = ?", (user_id,)).rowcount
        logger.info("Removed %s existing budgets before applying template %s", deleted, template_id)

    categories = rows_to_dicts(
        db.execute(
            "SELECT id, name FROM categories WHERE user_id = ? AND type = 'expense' AND is_archived = 0",
            (user_id,),
        ).fetchall()
    )
    budgeted = [row["category_id"] for row in db.execute("SELECT category_id FROM budgets WHERE user_id = ?", (user_id,)).fetchall()]
    income = body.monthly_income or current_app.config["DEFAULT_MONTHLY_INCOME"]
    planned, skipped = plan_template_budgets(items, categories, budgeted, body.category_mappings, income)

    if not planned:
        db.rollback()
        raise BadRequestError("No budgets could be created from this template", skipped=skipped)

    created_ids = [
        insert_row(
            db,
            "budgets",
            {
                "user_id": user_id,
                "category_id": plan["category_id"],
                "amount": plan["amount"],
                "period": body.period,
                "rollover": 0,
                "notes": plan["notes"],
                "alert_threshold": DEFAULT_ALERT_THRESHOLD,
            },
        )
        for plan in planned
    ]
    db.commit()

    placeholders = ", ".join(["?"] * len(created_ids))
    budgets = rows_to_dicts(
        db.execute(f"SELECT * FROM budgets WHERE id IN ({placeholders}) ORDER BY id", created_ids).fetchall(),
        bool_fields=("rollover",),
    )
    return jsonify(
        {
            "success": True,
            "message": f"Created {len(created_ids)} budget(s) from template '{template['name']}'",
            "created": len(created_ids),
            "skipped": skipped,
            "budgets": budgets,
        }
    )
