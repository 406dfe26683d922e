import logging
import os
import sqlite3

from flask import Flask, g, jsonify, session

from .api import register_blueprints
from .config import get_settings
from .db import connect_db, parse_database_config
from .db_migrations import apply_migrations, get_db_health
from .errors import register_error_handlers

logger = logging.getLogger(__name__)


class DatabaseInitError(RuntimeError):
    """Raised when the database cannot be opened or migrated."""


def create_app(test_config=None):
    settings = get_settings()
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_mapping(
        DATABASE=settings.database or os.path.join(app.instance_path, "pocket_pilot.sqlite"),
        **settings.to_flask_config(),
    )

    if test_config is not None:
        app.config.update(test_config)

    os.makedirs(app.instance_path, exist_ok=True)
    app.config.setdefault("DB_INIT_ERROR", None)
    logging.basicConfig(
        level=app.config["LOG_LEVEL"],
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    register_error_handlers(app)
    register_blueprints(app)

    @app.teardown_appcontext
    def close_db(_=None):
        db = g.pop("db", None)
        if db is not None:
            db.close()

    def get_db():
        if "db" not in g:
            try:
                g.db = connect_db(parse_database_config(app.config["DATABASE"]))
            except (sqlite3.Error, OSError, RuntimeError) as exc:
                message = f"Unable to open database at {app.config['DATABASE']}: {exc}"
                logger.error(message)
                app.config["DB_INIT_ERROR"] = message
                raise DatabaseInitError(message) from exc
        return g.db

    def init_db():
        try:
            apply_migrations(app.config["DATABASE"])
            app.config["DB_INIT_ERROR"] = None
        except (sqlite3.Error, OSError, RuntimeError) as exc:
            message = f"Failed to initialize database at {app.config['DATABASE']}: {exc}"
            logger.error(message)
            app.config["DB_INIT_ERROR"] = message
            raise DatabaseInitError(message) from exc

    @app.cli.command("init-db")
    def init_db_command():
        init_db()
        print("Initialized the database.")

    @app.get("/health/db")
    def db_health():
        try:
            return jsonify(get_db_health(app.config["DATABASE"]))
        except (sqlite3.Error, RuntimeError) as exc:
            return jsonify({
                "ok": False,
                "schema_version": 0,
                "missing_tables": [],
                "missing_columns": {},
                "missing_indexes": [],
                "error": str(exc),
            }), 500

    @app.before_request
    def load_logged_in_user():
        if app.config.get("DB_INIT_ERROR"):
            return jsonify({"error": "Database unavailable", "code": "DB_INIT_ERROR",
                            "details": app.config["DB_INIT_ERROR"]}), 500

        user_id = session.get("user_id")
        if user_id is None:
            g.user = None
        else:
            g.user = get_db().execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()

    with app.app_context():
        try:
            init_db()
        except DatabaseInitError:
            pass

    app.get_db = get_db
    app.init_db = init_db
    return app
