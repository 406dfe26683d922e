import logging

from flask import Blueprint, jsonify, request

from ..errors import BadRequestError
from ..finance import reports
from ..schemas import ReportRequest
from .common import current_user_id, fetch_owned, get_db, login_required, today

reports_bp = Blueprint("reports", __name__, url_prefix="/reports")
logger = logging.getLogger(__name__)

REPORT_BUILDERS = {
    "custom_date_range": reports.custom_date_range_report,
    "year_over_year": reports.year_over_year_report,
    "merchant": reports.merchant_report,
    "monthly_summary": reports.monthly_summary_report,
    "tax_summary": reports.tax_summary_report,
    "savings_rate": reports.savings_rate_report,
}


@reports_bp.post("")
@login_required
def run_report():
    data = request.get_json(silent=True)
    if data is None:
        raise BadRequestError("Invalid JSON")
    params = ReportRequest.validate_python(data)

    db = get_db()
    user_id = current_user_id()
    if params.report_type == "category_deep_dive":
        category = fetch_owned(db, "categories", params.category_id, "Category", "id, name, type")
        result = reports.category_deep_dive_report(db, user_id, category, params, today())
    else:
        result = REPORT_BUILDERS[params.report_type](db, user_id, params, today())

    logger.info("Generated %s report for user %s", params.report_type, user_id)
    return jsonify(result)
