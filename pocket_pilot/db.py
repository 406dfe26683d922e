"""
Connection layer shared by the app, the migrations and the scripts.

SQL is written once with ``?`` placeholders; on Postgres the placeholders are
translated on the way out and rows come back as :class:`CompatRow` so callers
can index by column name on either backend.
"""

import json
import os
import sqlite3
from pathlib import Path
from urllib.parse import urlparse

try:
    import psycopg
    from psycopg.rows import tuple_row
except ImportError:  # pragma: no cover - dependency optional for sqlite-only environments
    psycopg = None
    tuple_row = None


UNIQUE_VIOLATION_SQLSTATE = "23505"
POSTGRES_SCHEMES = ("postgresql://", "postgres://")


class CompatRow:
    """Tuple row with name lookup, mirroring the parts of ``sqlite3.Row`` we use."""

    def __init__(self, columns, values):
        self._values = tuple(values)
        self._index = {name: position for position, name in enumerate(columns)}

    def __getitem__(self, key):
        if isinstance(key, str):
            return self._values[self._index[key]]
        return self._values[key]

    def __iter__(self):
        return iter(self._values)

    def __len__(self):
        return len(self._values)

    def keys(self):
        return list(self._index)


class CompatCursor:
    def __init__(self, cursor):
        self._cursor = cursor

    @property
    def rowcount(self):
        return getattr(self._cursor, "rowcount", -1)

    @property
    def lastrowid(self):
        return getattr(self._cursor, "lastrowid", None)

    def fetchone(self):
        return self._wrap(self._cursor.fetchone())

    def fetchall(self):
        return [self._wrap(row) for row in self._cursor.fetchall()]

    def _wrap(self, row):
        if row is None or isinstance(row, sqlite3.Row):
            return row
        description = self._cursor.description or []
        return CompatRow([getattr(col, "name", None) or col[0] for col in description], row)


class CompatConnection:
    def __init__(self, conn, backend):
        self._conn = conn
        self.backend = backend

    def execute(self, sql, params=None):
        if self.backend == "postgres":
            sql, params = postgres_sql(sql, params)
        return CompatCursor(self._conn.execute(sql, params or ()))

    def close(self):
        self._conn.close()

    def commit(self):
        self._conn.commit()

    def rollback(self):
        self._conn.rollback()

    def __enter__(self):
        self._conn.__enter__()
        return self

    def __exit__(self, exc_type, exc, tb):
        return self._conn.__exit__(exc_type, exc, tb)


def is_postgres_url(value):
    return bool(value) and value.startswith(POSTGRES_SCHEMES)


def postgres_sql(sql, params):
    """Translate one SQLite-flavoured statement and its params for psycopg."""
    if "?" in sql:
        sql = sql.replace("?", "%s")
    if params is None:
        params = ()
    elif not isinstance(params, (tuple, list, dict)):
        params = (params,)
    return sql, params


def parse_database_config(database_path=None, database_url=None):
    """
    Work out which backend to use.

    A Postgres ``database_url`` (or ``DATABASE_URL`` in the environment)
    wins; otherwise *database_path* names the SQLite file.
    """
    url = (database_url or os.environ.get("DATABASE_URL", "")).strip()
    if is_postgres_url(url):
        return {
            "backend": "postgres",
            "database_url": url,
            "database_name": urlparse(url).path.lstrip("/") or "postgres",
            "database_path": database_path,
        }

    return {
        "backend": "sqlite",
        "database_url": None,
        "database_name": Path(database_path).name if database_path else "sqlite",
        "database_path": database_path,
    }


def connect_db(config):
    if config["backend"] == "postgres":
        if psycopg is None:
            raise RuntimeError("psycopg is required when DATABASE_URL points to Postgres")
        return CompatConnection(psycopg.connect(config["database_url"], row_factory=tuple_row), "postgres")

    db_path = config["database_path"]
    if db_path:
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    conn.execute("PRAGMA busy_timeout = 5000")
    return CompatConnection(conn, "sqlite")


def is_unique_violation(exc):
    """True when *exc* is a unique-constraint failure on either backend."""
    if isinstance(exc, sqlite3.IntegrityError):
        return "UNIQUE" in str(exc).upper()
    return getattr(exc, "sqlstate", None) == UNIQUE_VIOLATION_SQLSTATE


def integrity_errors():
    if psycopg is None:
        return (sqlite3.IntegrityError,)
    return (sqlite3.IntegrityError, psycopg.IntegrityError)


def insert_row(db, table, values):
    """Insert *values* into *table* and return the new row id."""
    columns = list(values)
    sql = f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({', '.join('?' for _ in columns)})"
    params = [values[col] for col in columns]
    if getattr(db, "backend", "sqlite") == "postgres":
        return db.execute(sql + " RETURNING id", params).fetchone()[0]
    return db.execute(sql, params).lastrowid


def update_row(db, table, row_id, user_id, values):
    if not values:
        return 0
    assignments = ", ".join(f"{col} = ?" for col in values)
    cur = db.execute(
        f"UPDATE {table} SET {assignments} WHERE id = ? AND user_id = ?",
        [*values.values(), row_id, user_id],
    )
    return cur.rowcount


def row_to_dict(row, json_fields=(), bool_fields=()):
    if row is None:
        return None
    data = {key: row[key] for key in row.keys()}
    for field in json_fields:
        if field in data and isinstance(data[field], str):
            data[field] = json.loads(data[field])
    for field in bool_fields:
        if field in data and data[field] is not None:
            data[field] = bool(data[field])
    return data


def rows_to_dicts(rows, json_fields=(), bool_fields=()):
    return [row_to_dict(row, json_fields, bool_fields) for row in rows]
