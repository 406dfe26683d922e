from datetime import date, datetime, timezone
from functools import wraps

from flask import current_app, g, request

from ..errors import BadRequestError, NotFoundError, UnauthorizedError


def get_db():
    return current_app.get_db()


def today():
    return date.today()


def utc_timestamp(value=None):
    """UTC time in the same text form SQLite uses for CURRENT_TIMESTAMP."""
    value = value or datetime.now(timezone.utc)
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%d %H:%M:%S")


def current_user_id():
    return g.user["id"]


def login_required(view):
    @wraps(view)
    def wrapped_view(**kwargs):
        if g.user is None:
            raise UnauthorizedError()
        return view(**kwargs)

    return wrapped_view


def parse_body(model):
    data = request.get_json(silent=True)
    if data is None:
        raise BadRequestError("Invalid JSON")
    return model.model_validate(data)


def query_flag(name, default=False):
    value = request.args.get(name)
    if value is None:
        return default
    return value.lower() in ("1", "true", "yes")


def query_int(name, default, minimum=None, maximum=None):
    raw = request.args.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise BadRequestError(f"{name} must be an integer")
    if minimum is not None:
        value = max(value, minimum)
    if maximum is not None:
        value = min(value, maximum)
    return value


def query_date(name, default=None):
    raw = request.args.get(name)
    if not raw:
        return default
    try:
        return date.fromisoformat(raw)
    except ValueError:
        raise BadRequestError(f"{name} must be a date in YYYY-MM-DD format")


def fetch_owned(db, table, row_id, resource, columns="*"):
    """Row *row_id* of *table* owned by the current user, else 404."""
    row = db.execute(
        f"SELECT {columns} FROM {table} WHERE id = ? AND user_id = ?",
        (row_id, current_user_id()),
    ).fetchone()
    if row is None:
        raise NotFoundError(resource)
    return row
