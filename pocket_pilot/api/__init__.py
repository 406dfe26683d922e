"""JSON API blueprints, all mounted under ``/api``."""

from flask import Blueprint

from .accounts import accounts_bp
from .ai_calendar import ai_calendar_bp
from .ai_learning import ai_learning_bp
from .ai_memory import ai_memory_bp
from .ai_summary import ai_summary_bp
from .auth import auth_bp
from .bills import bills_bp
from .budget_templates import budget_templates_bp
from .budgets import budgets_bp
from .categories import categories_bp
from .categorization_rules import categorization_rules_bp
from .chat import chat_bp
from .export import export_bp
from .goals import goals_bp
from .recurring import recurring_bp
from .reports import reports_bp
from .tags import tags_bp
from .transaction_bulk import transaction_bulk_bp
from .transaction_import import transaction_import_bp
from .transactions import transactions_bp

api_bp = Blueprint("api", __name__, url_prefix="/api")

for blueprint in (
    auth_bp,
    accounts_bp,
    categories_bp,
    transactions_bp,
    transaction_bulk_bp,
    transaction_import_bp,
    tags_bp,
    categorization_rules_bp,
    budgets_bp,
    budget_templates_bp,
    bills_bp,
    goals_bp,
    recurring_bp,
    reports_bp,
    ai_calendar_bp,
    ai_memory_bp,
    ai_learning_bp,
    ai_summary_bp,
    chat_bp,
    export_bp,
):
    api_bp.register_blueprint(blueprint)


def register_blueprints(app):
    app.register_blueprint(api_bp)
