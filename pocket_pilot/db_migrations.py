import argparse
import json
import logging
from datetime import datetime

from .db import connect_db, insert_row, parse_database_config

logger = logging.getLogger(__name__)


REQUIRED_TABLES = {
    "users": {
        "columns": {"id", "username", "password_hash", "created_at"},
        "indexes": set(),
    },
    "accounts": {
        "columns": {"id", "user_id", "name", "type", "created_at"},
        "indexes": {"idx_accounts_user_id"},
    },
    "categories": {
        "columns": {"id", "user_id", "name", "type", "is_tax_related", "tax_tag", "is_archived", "created_at"},
        "indexes": {"uq_categories_user_name"},
    },
    "transactions": {
        "columns": {
            "id",
            "user_id",
            "account_id",
            "category_id",
            "date",
            "amount",
            "description",
            "is_transfer",
            "recurring_transaction_id",
            "linked_transaction_id",
            "created_at",
        },
        "indexes": {
            "idx_transactions_user_date",
            "idx_transactions_account_id",
            "idx_transactions_category_id",
            "idx_transactions_recurring",
        },
    },
    "tags": {
        "columns": {"id", "user_id", "name", "color", "created_at"},
        "indexes": {"uq_tags_user_name"},
    },
    "transaction_tags": {
        "columns": {"transaction_id", "tag_id", "created_at"},
        "indexes": set(),
    },
    "budgets": {
        "columns": {
            "id",
            "user_id",
            "category_id",
            "amount",
            "period",
            "rollover",
            "notes",
            "alert_threshold",
            "year",
            "month",
            "created_at",
        },
        "indexes": {"uq_budgets_user_category_period"},
    },
    "budget_templates": {
        "columns": {"id", "user_id", "name", "description", "is_system", "template_type", "created_at"},
        "indexes": set(),
    },
    "budget_template_items": {
        "columns": {"id", "template_id", "category_name", "percentage", "fixed_amount", "notes"},
        "indexes": {"idx_budget_template_items_template"},
    },
    "bills": {
        "columns": {
            "id",
            "user_id",
            "name",
            "amount",
            "frequency",
            "next_due_date",
            "category_id",
            "auto_pay",
            "last_paid_date",
            "notes",
            "is_active",
            "bill_type",
            "current_streak",
            "longest_streak",
            "total_payments",
            "on_time_payments",
            "created_at",
        },
        "indexes": {"idx_bills_user_due"},
    },
    "bill_payments": {
        "columns": {
            "id",
            "user_id",
            "bill_id",
            "payment_date",
            "due_date",
            "amount",
            "was_on_time",
            "days_early",
            "days_late",
            "transaction_id",
            "created_at",
        },
        "indexes": {"idx_bill_payments_bill"},
    },
    "goals": {
        "columns": {
            "id",
            "user_id",
            "name",
            "target_amount",
            "current_amount",
            "target_date",
            "is_completed",
            "completed_at",
            "category",
            "auto_contribute_amount",
            "auto_contribute_day",
            "share_token",
            "is_shared",
            "created_at",
        },
        "indexes": {"uq_goals_share_token"},
    },
    "goal_contributions": {
        "columns": {"id", "user_id", "goal_id", "amount", "date", "note", "created_at"},
        "indexes": {"idx_goal_contributions_goal"},
    },
    "recurring_transactions": {
        "columns": {
            "id",
            "user_id",
            "account_id",
            "category_id",
            "description",
            "amount",
            "frequency",
            "next_occurrence_date",
            "last_created_date",
            "is_active",
            "notes",
            "created_at",
        },
        "indexes": {"idx_recurring_transactions_next"},
    },
    "ai_memory": {
        "columns": {
            "id",
            "user_id",
            "memory_type",
            "key",
            "value",
            "importance",
            "expires_at",
            "created_at",
            "updated_at",
        },
        "indexes": {"uq_ai_memory_user_type_key"},
    },
    "ai_learning_rules": {
        "columns": {
            "id",
            "user_id",
            "rule_type",
            "pattern",
            "action",
            "priority",
            "is_active",
            "match_count",
            "last_matched_at",
            "created_at",
        },
        "indexes": {"idx_ai_learning_rules_user_active"},
    },
    "ai_summaries": {
        "columns": {
            "id",
            "user_id",
            "summary_type",
            "period_start",
            "period_end",
            "content",
            "highlights",
            "recommendations",
            "health_score",
            "is_read",
            "created_at",
        },
        "indexes": {"uq_ai_summaries_user_type_period"},
    },
    "categorization_rules": {
        "columns": {
            "id",
            "user_id",
            "name",
            "rule_order",
            "rule_type",
            "pattern",
            "case_sensitive",
            "target_category_id",
            "is_active",
            "created_at",
            "updated_at",
        },
        "indexes": {"uq_categorization_rules_user_order"},
    },
    "goal_milestones": {
        "columns": {"id", "user_id", "goal_id", "name", "target_percentage", "reached_at", "celebration_shown", "created_at"},
        "indexes": {"idx_goal_milestones_goal"},
    },
}

SYSTEM_BUDGET_TEMPLATES = [
    (
        "50/30/20 Rule",
        "50% needs, 30% wants, 20% savings and debt repayment.",
        "FIFTY_THIRTY_TWENTY",
        [
            ("Housing", 25),
            ("Utilities", 5),
            ("Groceries", 10),
            ("Transportation", 10),
            ("Entertainment", 10),
            ("Dining Out", 10),
            ("Shopping", 10),
            ("Savings", 15),
            ("Debt Repayment", 5),
        ],
    ),
    (
        "Envelope System",
        "Allocate every dollar of income into spending envelopes.",
        "ENVELOPE",
        [
            ("Rent/Mortgage", 30),
            ("Utilities", 8),
            ("Groceries", 12),
            ("Transportation", 10),
            ("Personal", 5),
            ("Entertainment", 5),
            ("Clothing", 5),
            ("Medical", 5),
            ("Savings", 10),
            ("Miscellaneous", 10),
        ],
    ),
    (
        "Zero-Based Budget",
        "Income minus expenses equals zero: every dollar has a job.",
        "ZERO_BASED",
        [
            ("Housing", 28),
            ("Utilities", 6),
            ("Groceries", 10),
            ("Transportation", 12),
            ("Insurance", 8),
            ("Debt Payments", 10),
            ("Savings", 10),
            ("Entertainment", 5),
            ("Personal Care", 3),
            ("Gifts/Donations", 3),
            ("Miscellaneous", 5),
        ],
    ),
]


def backend_name(conn):
    return getattr(conn, "backend", "sqlite")


def table_exists(conn, name):
    if backend_name(conn) == "postgres":
        row = conn.execute(
            "SELECT 1 FROM information_schema.tables WHERE table_schema = current_schema() AND table_name = ?",
            (name,),
        ).fetchone()
        return row is not None

    row = conn.execute("SELECT 1 FROM sqlite_master WHERE type='table' AND name = ?", (name,)).fetchone()
    return row is not None


def column_exists(conn, table, column):
    if not table_exists(conn, table):
        return False
    return column in get_table_columns(conn, table)


def index_exists(conn, index_name):
    if backend_name(conn) == "postgres":
        row = conn.execute(
            "SELECT 1 FROM pg_indexes WHERE schemaname = current_schema() AND indexname = ?",
            (index_name,),
        ).fetchone()
        return row is not None

    row = conn.execute("SELECT 1 FROM sqlite_master WHERE type='index' AND name = ?", (index_name,)).fetchone()
    return row is not None


def add_column_if_missing(conn, table, col_def_sql):
    column = col_def_sql.split()[0]
    if backend_name(conn) == "postgres":
        conn.execute(f"ALTER TABLE {table} ADD COLUMN IF NOT EXISTS {col_def_sql}")
    elif not column_exists(conn, table, column):
        conn.execute(f"ALTER TABLE {table} ADD COLUMN {col_def_sql}")


def create_index_if_missing(conn, index_name, create_sql):
    if not index_exists(conn, index_name):
        conn.execute(create_sql)


def ensure_table(conn, create_sql):
    if backend_name(conn) == "postgres":
        create_sql = create_sql.replace("INTEGER PRIMARY KEY AUTOINCREMENT", "BIGSERIAL PRIMARY KEY")
        create_sql = create_sql.replace(" REAL", " DOUBLE PRECISION")
    conn.execute(create_sql)


def get_table_columns(conn, table):
    if backend_name(conn) == "postgres":
        rows = conn.execute(
            "SELECT column_name FROM information_schema.columns WHERE table_schema = current_schema() AND table_name = ? ORDER BY ordinal_position",
            (table,),
        ).fetchall()
        return {row[0] for row in rows}

    rows = conn.execute(f"PRAGMA table_info({table})").fetchall()
    return {row[1] for row in rows}


def migration_001(conn):
    ensure_table(
        conn,
        """
        CREATE TABLE IF NOT EXISTS users (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            username TEXT UNIQUE NOT NULL,
            password_hash TEXT NOT NULL,
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """,
    )
    ensure_table(
        conn,
        """
        CREATE TABLE IF NOT EXISTS accounts (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER NOT NULL,
            name TEXT NOT NULL,
            type TEXT NOT NULL CHECK(type IN ('Checking','Savings','Credit','Cash','Investment','Other')),
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY (user_id) REFERENCES users (id) ON DELETE CASCADE
        )
        """,
    )
    ensure_table(
        conn,
        """
        CREATE TABLE IF NOT EXISTS categories (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER NOT NULL,
            name TEXT NOT NULL,
            type TEXT NOT NULL DEFAULT 'expense' CHECK(type IN ('expense','income','transfer')),
            is_tax_related INTEGER NOT NULL DEFAULT 0,
            tax_tag TEXT,
            is_archived INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY (user_id) REFERENCES users (id) ON DELETE CASCADE
        )
        """,
    )
    ensure_table(
        conn,
        """
        CREATE TABLE IF NOT EXISTS transactions (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER NOT NULL,
            account_id INTEGER NOT NULL,
            category_id INTEGER,
            date TEXT NOT NULL,
            amount REAL NOT NULL,
            description TEXT,
            is_transfer INTEGER NOT NULL DEFAULT 0,
            linked_transaction_id INTEGER,
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY (user_id) REFERENCES users (id) ON DELETE CASCADE,
            FOREIGN KEY (account_id) REFERENCES accounts (id) ON DELETE CASCADE,
            FOREIGN KEY (category_id) REFERENCES categories (id) ON DELETE SET NULL
        )
        """,
    )
    ensure_table(
        conn,
        """
        CREATE TABLE IF NOT EXISTS tags (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER NOT NULL,
            name TEXT NOT NULL,
            color TEXT NOT NULL DEFAULT '#6b7280',
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY (user_id) REFERENCES users (id) ON DELETE CASCADE
        )
        """,
    )
    ensure_table(
        conn,
        """
        CREATE TABLE IF NOT EXISTS transaction_tags (
            transaction_id INTEGER NOT NULL,
            tag_id INTEGER NOT NULL,
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            PRIMARY KEY (transaction_id, tag_id),
            FOREIGN KEY (transaction_id) REFERENCES transactions (id) ON DELETE CASCADE,
            FOREIGN KEY (tag_id) REFERENCES tags (id) ON DELETE CASCADE
        )
        """,
    )


def migration_002(conn):
    ensure_table(
        conn,
        """
        CREATE TABLE IF NOT EXISTS budgets (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER NOT NULL,
            category_id INTEGER NOT NULL,
            amount REAL NOT NULL CHECK(amount >= 0),
            period TEXT NOT NULL DEFAULT 'MONTHLY' CHECK(period IN ('MONTHLY','WEEKLY','BIWEEKLY','YEARLY')),
            rollover INTEGER NOT NULL DEFAULT 0,
            notes TEXT,
            alert_threshold INTEGER NOT NULL DEFAULT 90 CHECK(alert_threshold BETWEEN 0 AND 100),
            year INTEGER,
            month INTEGER CHECK(month IS NULL OR month BETWEEN 1 AND 12),
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY (user_id) REFERENCES users (id) ON DELETE CASCADE,
            FOREIGN KEY (category_id) REFERENCES categories (id) ON DELETE CASCADE
        )
        """,
    )
    ensure_table(
        conn,
        """
        CREATE TABLE IF NOT EXISTS budget_templates (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER,
            name TEXT NOT NULL,
            description TEXT,
            is_system INTEGER NOT NULL DEFAULT 0,
            template_type TEXT NOT NULL DEFAULT 'CUSTOM'
                CHECK(template_type IN ('FIFTY_THIRTY_TWENTY','ENVELOPE','ZERO_BASED','CUSTOM')),
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY (user_id) REFERENCES users (id) ON DELETE CASCADE
        )
        """,
    )
    ensure_table(
        conn,
        """
        CREATE TABLE IF NOT EXISTS budget_template_items (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            template_id INTEGER NOT NULL,
            category_name TEXT NOT NULL,
            percentage REAL,
            fixed_amount REAL,
            notes TEXT,
            CHECK ((percentage IS NULL) != (fixed_amount IS NULL)),
            FOREIGN KEY (template_id) REFERENCES budget_templates (id) ON DELETE CASCADE
        )
        """,
    )

    existing = conn.execute("SELECT COUNT(*) FROM budget_templates WHERE is_system = 1").fetchone()[0]
    if existing:
        return
    for name, description, template_type, items in SYSTEM_BUDGET_TEMPLATES:
        template_id = insert_row(
            conn,
            "budget_templates",
            {"user_id": None, "name": name, "description": description, "is_system": 1, "template_type": template_type},
        )
        for category_name, percentage in items:
            conn.execute(
                "INSERT INTO budget_template_items (template_id, category_name, percentage) VALUES (?, ?, ?)",
                (template_id, category_name, percentage),
            )


def migration_003(conn):
    ensure_table(
        conn,
        """
        CREATE TABLE IF NOT EXISTS bills (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER NOT NULL,
            name TEXT NOT NULL,
            amount REAL,
            frequency TEXT NOT NULL CHECK(frequency IN ('weekly','biweekly','monthly','yearly')),
            next_due_date TEXT NOT NULL,
            category_id INTEGER,
            auto_pay INTEGER NOT NULL DEFAULT 0,
            last_paid_date TEXT,
            notes TEXT,
            is_active INTEGER NOT NULL DEFAULT 1,
            bill_type TEXT NOT NULL DEFAULT 'other',
            current_streak INTEGER NOT NULL DEFAULT 0,
            longest_streak INTEGER NOT NULL DEFAULT 0,
            total_payments INTEGER NOT NULL DEFAULT 0,
            on_time_payments INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY (user_id) REFERENCES users (id) ON DELETE CASCADE,
            FOREIGN KEY (category_id) REFERENCES categories (id) ON DELETE SET NULL
        )
        """,
    )
    ensure_table(
        conn,
        """
        CREATE TABLE IF NOT EXISTS bill_payments (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER NOT NULL,
            bill_id INTEGER NOT NULL,
            payment_date TEXT NOT NULL,
            due_date TEXT NOT NULL,
            amount REAL,
            was_on_time INTEGER NOT NULL DEFAULT 1,
            days_early INTEGER NOT NULL DEFAULT 0,
            days_late INTEGER NOT NULL DEFAULT 0,
            transaction_id INTEGER,
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY (user_id) REFERENCES users (id) ON DELETE CASCADE,
            FOREIGN KEY (bill_id) REFERENCES bills (id) ON DELETE CASCADE,
            FOREIGN KEY (transaction_id) REFERENCES transactions (id) ON DELETE SET NULL
        )
        """,
    )


def migration_004(conn):
    ensure_table(
        conn,
        """
        CREATE TABLE IF NOT EXISTS goals (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER NOT NULL,
            name TEXT NOT NULL,
            target_amount REAL NOT NULL CHECK(target_amount > 0),
            current_amount REAL NOT NULL DEFAULT 0,
            target_date TEXT,
            is_completed INTEGER NOT NULL DEFAULT 0,
            completed_at TEXT,
            category TEXT NOT NULL DEFAULT 'other',
            auto_contribute_amount REAL,
            auto_contribute_day INTEGER CHECK(auto_contribute_day IS NULL OR auto_contribute_day BETWEEN 1 AND 28),
            share_token TEXT,
            is_shared INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY (user_id) REFERENCES users (id) ON DELETE CASCADE
        )
        """,
    )
    ensure_table(
        conn,
        """
        CREATE TABLE IF NOT EXISTS goal_contributions (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER NOT NULL,
            goal_id INTEGER NOT NULL,
            amount REAL NOT NULL CHECK(amount > 0),
            date TEXT NOT NULL,
            note TEXT,
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY (user_id) REFERENCES users (id) ON DELETE CASCADE,
            FOREIGN KEY (goal_id) REFERENCES goals (id) ON DELETE CASCADE
        )
        """,
    )


def migration_005(conn):
    ensure_table(
        conn,
        """
        CREATE TABLE IF NOT EXISTS recurring_transactions (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER NOT NULL,
            account_id INTEGER NOT NULL,
            category_id INTEGER,
            description TEXT NOT NULL,
            amount REAL NOT NULL,
            frequency TEXT NOT NULL CHECK(frequency IN ('weekly','biweekly','monthly','yearly')),
            next_occurrence_date TEXT NOT NULL,
            last_created_date TEXT,
            is_active INTEGER NOT NULL DEFAULT 1,
            notes TEXT,
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY (user_id) REFERENCES users (id) ON DELETE CASCADE,
            FOREIGN KEY (account_id) REFERENCES accounts (id) ON DELETE CASCADE,
            FOREIGN KEY (category_id) REFERENCES categories (id) ON DELETE SET NULL
        )
        """,
    )
    add_column_if_missing(conn, "transactions", "recurring_transaction_id INTEGER")


def migration_006(conn):
    ensure_table(
        conn,
        """
        CREATE TABLE IF NOT EXISTS ai_memory (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER NOT NULL,
            memory_type TEXT NOT NULL CHECK(memory_type IN ('preference','context','learning','custom')),
            key TEXT NOT NULL,
            value TEXT NOT NULL,
            importance INTEGER NOT NULL DEFAULT 5 CHECK(importance BETWEEN 1 AND 10),
            expires_at TEXT,
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY (user_id) REFERENCES users (id) ON DELETE CASCADE
        )
        """,
    )
    ensure_table(
        conn,
        """
        CREATE TABLE IF NOT EXISTS ai_learning_rules (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER NOT NULL,
            rule_type TEXT NOT NULL CHECK(rule_type IN ('categorization','merchant','amount_threshold','custom')),
            pattern TEXT NOT NULL,
            action TEXT NOT NULL,
            priority INTEGER NOT NULL DEFAULT 5 CHECK(priority BETWEEN 1 AND 10),
            is_active INTEGER NOT NULL DEFAULT 1,
            match_count INTEGER NOT NULL DEFAULT 0,
            last_matched_at TEXT,
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY (user_id) REFERENCES users (id) ON DELETE CASCADE
        )
        """,
    )
    ensure_table(
        conn,
        """
        CREATE TABLE IF NOT EXISTS ai_summaries (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER NOT NULL,
            summary_type TEXT NOT NULL CHECK(summary_type IN ('weekly','monthly')),
            period_start TEXT NOT NULL,
            period_end TEXT NOT NULL,
            content TEXT NOT NULL,
            highlights TEXT NOT NULL DEFAULT '[]',
            recommendations TEXT NOT NULL DEFAULT '[]',
            health_score INTEGER CHECK(health_score IS NULL OR health_score BETWEEN 0 AND 100),
            is_read INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY (user_id) REFERENCES users (id) ON DELETE CASCADE
        )
        """,
    )


def migration_007(conn):
    indexes = [
        ("idx_accounts_user_id", "CREATE INDEX idx_accounts_user_id ON accounts(user_id)"),
        (
            "uq_categories_user_name",
            "CREATE UNIQUE INDEX uq_categories_user_name ON categories(user_id, name) WHERE is_archived = 0",
        ),
        ("idx_transactions_user_date", "CREATE INDEX idx_transactions_user_date ON transactions(user_id, date)"),
        ("idx_transactions_account_id", "CREATE INDEX idx_transactions_account_id ON transactions(account_id)"),
        ("idx_transactions_category_id", "CREATE INDEX idx_transactions_category_id ON transactions(category_id)"),
        (
            "idx_transactions_recurring",
            "CREATE INDEX idx_transactions_recurring ON transactions(recurring_transaction_id, date)",
        ),
        ("uq_tags_user_name", "CREATE UNIQUE INDEX uq_tags_user_name ON tags(user_id, LOWER(name))"),
        (
            "uq_budgets_user_category_period",
            "CREATE UNIQUE INDEX uq_budgets_user_category_period "
            "ON budgets(user_id, category_id, COALESCE(year, 0), COALESCE(month, 0))",
        ),
        (
            "idx_budget_template_items_template",
            "CREATE INDEX idx_budget_template_items_template ON budget_template_items(template_id)",
        ),
        ("idx_bills_user_due", "CREATE INDEX idx_bills_user_due ON bills(user_id, next_due_date)"),
        ("idx_bill_payments_bill", "CREATE INDEX idx_bill_payments_bill ON bill_payments(bill_id, payment_date)"),
        ("uq_goals_share_token", "CREATE UNIQUE INDEX uq_goals_share_token ON goals(share_token)"),
        (
            "idx_goal_contributions_goal",
            "CREATE INDEX idx_goal_contributions_goal ON goal_contributions(goal_id, date)",
        ),
        (
            "idx_recurring_transactions_next",
            "CREATE INDEX idx_recurring_transactions_next ON recurring_transactions(user_id, next_occurrence_date)",
        ),
        (
            "uq_ai_memory_user_type_key",
            "CREATE UNIQUE INDEX uq_ai_memory_user_type_key ON ai_memory(user_id, memory_type, key)",
        ),
        (
            "idx_ai_learning_rules_user_active",
            "CREATE INDEX idx_ai_learning_rules_user_active ON ai_learning_rules(user_id, is_active)",
        ),
        (
            "uq_ai_summaries_user_type_period",
            "CREATE UNIQUE INDEX uq_ai_summaries_user_type_period ON ai_summaries(user_id, summary_type, period_start)",
        ),
    ]
    for index_name, create_sql in indexes:
        create_index_if_missing(conn, index_name, create_sql)


def migration_008(conn):
    ensure_table(
        conn,
        """
        CREATE TABLE IF NOT EXISTS categorization_rules (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER NOT NULL,
            name TEXT NOT NULL,
            rule_order INTEGER NOT NULL,
            rule_type TEXT NOT NULL CHECK(rule_type IN ('contains','starts_with','ends_with','exact','regex')),
            pattern TEXT NOT NULL,
            case_sensitive INTEGER NOT NULL DEFAULT 0,
            target_category_id INTEGER NOT NULL,
            is_active INTEGER NOT NULL DEFAULT 1,
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY (user_id) REFERENCES users (id) ON DELETE CASCADE,
            FOREIGN KEY (target_category_id) REFERENCES categories (id) ON DELETE CASCADE
        )
        """,
    )
    ensure_table(
        conn,
        """
        CREATE TABLE IF NOT EXISTS goal_milestones (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER NOT NULL,
            goal_id INTEGER NOT NULL,
            name TEXT NOT NULL,
            target_percentage INTEGER NOT NULL CHECK(target_percentage BETWEEN 1 AND 100),
            reached_at TEXT,
            celebration_shown INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY (user_id) REFERENCES users (id) ON DELETE CASCADE,
            FOREIGN KEY (goal_id) REFERENCES goals (id) ON DELETE CASCADE
        )
        """,
    )
    create_index_if_missing(
        conn,
        "uq_categorization_rules_user_order",
        "CREATE UNIQUE INDEX uq_categorization_rules_user_order ON categorization_rules(user_id, rule_order)",
    )
    create_index_if_missing(
        conn,
        "idx_goal_milestones_goal",
        "CREATE INDEX idx_goal_milestones_goal ON goal_milestones(goal_id, target_percentage)",
    )


MIGRATIONS = [
    (1, migration_001),
    (2, migration_002),
    (3, migration_003),
    (4, migration_004),
    (5, migration_005),
    (6, migration_006),
    (7, migration_007),
    (8, migration_008),
]


def _ensure_schema_version_table(conn):
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS schema_version (
            version INTEGER PRIMARY KEY,
            applied_at TEXT NOT NULL
        )
        """
    )


def current_schema_version(conn):
    _ensure_schema_version_table(conn)
    row = conn.execute("SELECT MAX(version) AS version FROM schema_version").fetchone()
    return int(row[0] or 0)


def validate_required_schema(conn):
    health = inspect_db_health(conn)
    if health["missing_tables"] or any(health["missing_columns"].values()):
        raise RuntimeError(
            "Schema invariants failed after migrations. "
            f"Missing tables={health['missing_tables']}, missing columns={health['missing_columns']}"
        )


def _run_migrations(conn):
    _ensure_schema_version_table(conn)

    applied_versions = {
        row[0] for row in conn.execute("SELECT version FROM schema_version").fetchall()
    }

    for version, migration_fn in MIGRATIONS:
        if version in applied_versions:
            continue
        try:
            migration_fn(conn)
            conn.execute(
                "INSERT INTO schema_version(version, applied_at) VALUES (?, ?)",
                (version, datetime.utcnow().isoformat(timespec="seconds") + "Z"),
            )
            conn.commit()
            logger.info("Applied migration %03d", version)
        except Exception:
            conn.rollback()
            logger.exception("Migration %03d failed", version)
            raise

    validate_required_schema(conn)


def apply_migrations(db_or_config_or_path):
    if hasattr(db_or_config_or_path, "execute"):
        _run_migrations(db_or_config_or_path)
        return

    config = db_or_config_or_path if isinstance(db_or_config_or_path, dict) else parse_database_config(db_or_config_or_path)
    conn = connect_db(config)
    try:
        _run_migrations(conn)
    finally:
        conn.close()


def inspect_db_health(conn):
    _ensure_schema_version_table(conn)
    missing_tables = []
    missing_columns = {}
    missing_indexes = []

    for table_name, table_spec in REQUIRED_TABLES.items():
        if not table_exists(conn, table_name):
            missing_tables.append(table_name)
            missing_columns[table_name] = sorted(table_spec["columns"])
            missing_indexes.extend(sorted(table_spec["indexes"]))
            continue

        table_cols = get_table_columns(conn, table_name)
        absent_cols = sorted(col for col in table_spec["columns"] if col not in table_cols)
        missing_columns[table_name] = absent_cols

        for idx in sorted(table_spec["indexes"]):
            if not index_exists(conn, idx):
                missing_indexes.append(idx)

    return {
        "ok": not missing_tables and not any(missing_columns.values()) and not missing_indexes,
        "schema_version": current_schema_version(conn),
        "missing_tables": missing_tables,
        "missing_columns": missing_columns,
        "missing_indexes": sorted(set(missing_indexes)),
    }


def get_db_health(db_config_or_path):
    config = db_config_or_path if isinstance(db_config_or_path, dict) else parse_database_config(db_config_or_path)
    conn = connect_db(config)
    try:
        return inspect_db_health(conn)
    finally:
        conn.close()


def main():
    parser = argparse.ArgumentParser(description="Check Pocket Pilot DB schema health")
    parser.add_argument("db_path", help="Path to SQLite DB file (ignored when DATABASE_URL points to Postgres)")
    parser.add_argument("--migrate", action="store_true", help="Apply migrations before checking")
    args = parser.parse_args()

    config = parse_database_config(args.db_path)
    if args.migrate:
        apply_migrations(config)
    print(json.dumps(get_db_health(config), indent=2, sort_keys=True))


if __name__ == "__main__":
    main()
