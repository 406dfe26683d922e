import logging
import uuid

from flask import Blueprint, jsonify

from ..db import insert_row, row_to_dict, rows_to_dicts, update_row
from ..errors import BadRequestError, NotFoundError
from ..finance.goals import (
    completion_fields,
    goal_details,
    milestone_details,
    milestone_target,
    newly_reached,
    public_view,
)
from ..schemas import ContributionIn, GoalIn, GoalUpdate, MilestoneIn, MilestoneUpdate
from .common import current_user_id, fetch_owned, get_db, login_required, parse_body, query_int, today

goals_bp = Blueprint("goals", __name__, url_prefix="/goals")
logger = logging.getLogger(__name__)

GOAL_BOOLS = ("is_completed", "is_shared")


def serialize_goal(row):
    return goal_details(row_to_dict(row, bool_fields=GOAL_BOOLS), today())


def load_goal(db, goal_id):
    return serialize_goal(fetch_owned(db, "goals", goal_id, "Goal"))


def apply_balance(db, user_id, goal, new_amount, on=None):
    """Store a new ``current_amount`` and re-derive completion."""
    fields = completion_fields(
        new_amount,
        goal["target_amount"],
        bool(goal["is_completed"]),
        goal["completed_at"],
        (on or today()).isoformat(),
    )
    fields["is_completed"] = int(fields["is_completed"])
    fields["current_amount"] = round(new_amount, 2)
    update_row(db, "goals", goal["id"], user_id, fields)

    milestones = db.execute(
        "SELECT id, target_percentage, reached_at FROM goal_milestones WHERE goal_id = ? AND user_id = ?",
        (goal["id"], user_id),
    ).fetchall()
    for milestone_id in newly_reached(milestones, new_amount, goal["target_amount"]):
        update_row(db, "goal_milestones", milestone_id, user_id, {"reached_at": (on or today()).isoformat()})


@goals_bp.get("")
@login_required
def list_goals():
    rows = get_db().execute(
        "SELECT * FROM goals WHERE user_id = ? ORDER BY is_completed, created_at DESC, id DESC",
        (current_user_id(),),
    ).fetchall()
    return jsonify([serialize_goal(row) for row in rows])


@goals_bp.post("")
@login_required
def create_goal():
    body = parse_body(GoalIn)
    db = get_db()
    completion = completion_fields(body.current_amount, body.target_amount, False, None, today().isoformat())
    goal_id = insert_row(
        db,
        "goals",
        {
            "user_id": current_user_id(),
            "name": body.name,
            "target_amount": body.target_amount,
            "current_amount": body.current_amount,
            "target_date": body.target_date.isoformat() if body.target_date else None,
            "category": body.category,
            "auto_contribute_amount": body.auto_contribute_amount,
            "auto_contribute_day": body.auto_contribute_day,
            "is_completed": int(completion["is_completed"]),
            "completed_at": completion["completed_at"],
        },
    )
    db.commit()
    return jsonify(load_goal(db, goal_id)), 201


@goals_bp.get("/share/<token>")
def shared_goal(token):
    row = get_db().execute("SELECT * FROM goals WHERE share_token = ? AND is_shared = 1", (token,)).fetchone()
    if row is None:
        raise NotFoundError("Shared goal")
    return jsonify(public_view(row_to_dict(row, bool_fields=GOAL_BOOLS), today()))


@goals_bp.get("/contributions")
@login_required
def list_contributions():
    sql = """
        SELECT gc.*, g.name AS goal_name
        FROM goal_contributions gc JOIN goals g ON g.id = gc.goal_id
        WHERE gc.user_id = ?
    """
    params = [current_user_id()]
    goal_id = query_int("goal_id", None)
    if goal_id is not None:
        sql += " AND gc.goal_id = ?"
        params.append(goal_id)
    rows = get_db().execute(sql + " ORDER BY gc.date DESC, gc.id DESC", params).fetchall()
    return jsonify(rows_to_dicts(rows))


@goals_bp.post("/contributions")
@login_required
def create_contribution():
    body = parse_body(ContributionIn)
    db = get_db()
    goal = row_to_dict(fetch_owned(db, "goals", body.goal_id, "Goal"))
    contribution_id = insert_row(
        db,
        "goal_contributions",
        {
            "user_id": current_user_id(),
            "goal_id": body.goal_id,
            "amount": body.amount,
            "date": body.date.isoformat(),
            "note": body.note,
        },
    )
    db.commit()

    updated_goal = None
    try:
        apply_balance(db, current_user_id(), goal, (goal["current_amount"] or 0) + body.amount)
        db.commit()
        updated_goal = load_goal(db, body.goal_id)
    except Exception as e:
        db.rollback()
        logger.error("Error updating goal %s after contribution: %s", body.goal_id, e)

    contribution = row_to_dict(fetch_owned(db, "goal_contributions", contribution_id, "Contribution"))
    contribution["goal_name"] = goal["name"]
    return jsonify({"contribution": contribution, "goal": updated_goal}), 201


@goals_bp.delete("/contributions/<int:contribution_id>")
@login_required
def delete_contribution(contribution_id):
    db = get_db()
    contribution = fetch_owned(db, "goal_contributions", contribution_id, "Contribution")
    goal = row_to_dict(fetch_owned(db, "goals", contribution["goal_id"], "Goal"))

    db.execute("DELETE FROM goal_contributions WHERE id = ? AND user_id = ?", (contribution_id, current_user_id()))
    apply_balance(db, current_user_id(), goal, max((goal["current_amount"] or 0) - contribution["amount"], 0))
    db.commit()
    return jsonify({"success": True, "goal": load_goal(db, goal["id"])})


@goals_bp.get("/<int:goal_id>")
@login_required
def get_goal(goal_id):
    return jsonify(load_goal(get_db(), goal_id))


@goals_bp.put("/<int:goal_id>")
@login_required
def update_goal(goal_id):
    body = parse_body(GoalUpdate)
    db = get_db()
    goal = row_to_dict(fetch_owned(db, "goals", goal_id, "Goal"))
    changes = body.changes()

    if "is_shared" in changes:
        changes["is_shared"] = int(changes["is_shared"])
        if changes["is_shared"] and not goal["share_token"]:
            changes["share_token"] = uuid.uuid4().hex

    if "target_amount" in changes:
        completion = completion_fields(
            goal["current_amount"],
            changes["target_amount"],
            bool(goal["is_completed"]),
            goal["completed_at"],
            today().isoformat(),
        )
        changes["is_completed"] = int(completion["is_completed"])
        changes["completed_at"] = completion["completed_at"]

    update_row(db, "goals", goal_id, current_user_id(), changes)
    db.commit()
    return jsonify(load_goal(db, goal_id))


@goals_bp.delete("/<int:goal_id>")
@login_required
def delete_goal(goal_id):
    db = get_db()
    fetch_owned(db, "goals", goal_id, "Goal", "id")
    db.execute("DELETE FROM goals WHERE id = ? AND user_id = ?", (goal_id, current_user_id()))
    db.commit()
    return jsonify({"success": True})


def load_milestones(db, goal):
    rows = db.execute(
        "SELECT * FROM goal_milestones WHERE goal_id = ? AND user_id = ? ORDER BY target_percentage, id",
        (goal["id"], current_user_id()),
    ).fetchall()
    return [milestone_details(row_to_dict(row), goal) for row in rows]


def load_milestone(db, goal, milestone_id):
    row = db.execute(
        "SELECT * FROM goal_milestones WHERE id = ? AND goal_id = ? AND user_id = ?",
        (milestone_id, goal["id"], current_user_id()),
    ).fetchone()
    if row is None:
        raise NotFoundError("Milestone")
    return milestone_details(row_to_dict(row), goal)


@goals_bp.get("/<int:goal_id>/milestones")
@login_required
def list_milestones(goal_id):
    db = get_db()
    goal = fetch_owned(db, "goals", goal_id, "Goal")
    return jsonify(load_milestones(db, goal))


@goals_bp.post("/<int:goal_id>/milestones")
@login_required
def create_milestone(goal_id):
    body = parse_body(MilestoneIn)
    db = get_db()
    goal = fetch_owned(db, "goals", goal_id, "Goal")
    reached = (goal["current_amount"] or 0) >= milestone_target(body.target_percentage, goal["target_amount"])

    milestone_id = insert_row(
        db,
        "goal_milestones",
        {
            "user_id": current_user_id(),
            "goal_id": goal_id,
            "name": body.name,
            "target_percentage": body.target_percentage,
            "reached_at": today().isoformat() if reached else None,
        },
    )
    db.commit()
    return jsonify(load_milestone(db, goal, milestone_id)), 201


@goals_bp.put("/<int:goal_id>/milestones")
@login_required
def update_milestone(goal_id):
    body = parse_body(MilestoneUpdate)
    db = get_db()
    goal = fetch_owned(db, "goals", goal_id, "Goal")
    load_milestone(db, goal, body.milestone_id)

    changes = body.changes()
    changes.pop("milestone_id")
    if "celebration_shown" in changes:
        changes["celebration_shown"] = int(changes["celebration_shown"])
    update_row(db, "goal_milestones", body.milestone_id, current_user_id(), changes)
    db.commit()
    return jsonify(load_milestone(db, goal, body.milestone_id))


@goals_bp.delete("/<int:goal_id>/milestones")
@login_required
def delete_milestone(goal_id):
    milestone_id = query_int("milestone_id", None)
    if milestone_id is None:
        raise BadRequestError("milestone_id is required")
    db = get_db()
    goal = fetch_owned(db, "goals", goal_id, "Goal")
    load_milestone(db, goal, milestone_id)
    db.execute(
        "DELETE FROM goal_milestones WHERE id = ? AND goal_id = ? AND user_id = ?",
        (milestone_id, goal_id, current_user_id()),
    )
    db.commit()
    return jsonify({"success": True})
