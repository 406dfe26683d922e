import logging

from flask import Blueprint, g, jsonify, session
from werkzeug.security import check_password_hash, generate_password_hash

from ..db import insert_row
from ..errors import ConflictError, UnauthorizedError
from ..schemas import LoginIn, RegisterIn
from .common import get_db, login_required, parse_body

auth_bp = Blueprint("auth", __name__, url_prefix="/auth")
logger = logging.getLogger(__name__)


def serialize_user(row):
    return {"id": row["id"], "username": row["username"], "created_at": row["created_at"]}


@auth_bp.post("/register")
def register():
    body = parse_body(RegisterIn)
    db = get_db()
    existing = db.execute("SELECT 1 FROM users WHERE username = ?", (body.username,)).fetchone()
    if existing is not None:
        raise ConflictError("User already exists.")

    user_id = insert_row(
        db,
        "users",
        {"username": body.username, "password_hash": generate_password_hash(body.password)},
    )
    db.commit()
    logger.info("Registered user %s", user_id)

    session.clear()
    session["user_id"] = user_id
    user = db.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
    return jsonify({"user": serialize_user(user)}), 201


@auth_bp.post("/login")
def login():
    body = parse_body(LoginIn)
    user = get_db().execute("SELECT * FROM users WHERE username = ?", (body.username,)).fetchone()
    if user is None or not check_password_hash(user["password_hash"], body.password):
        raise UnauthorizedError("Incorrect username or password.")

    session.clear()
    session["user_id"] = user["id"]
    return jsonify({"user": serialize_user(user)})


@auth_bp.post("/logout")
def logout():
    session.clear()
    return jsonify({"success": True})


@auth_bp.get("/me")
@login_required
def me():
    return jsonify({"user": serialize_user(g.user)})
