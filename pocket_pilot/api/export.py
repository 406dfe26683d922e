import csv
import io
import json
from datetime import datetime, timezone

from flask import Blueprint, Response, current_app, request

from ..errors import BadRequestError, NotFoundError
from .common import current_user_id, get_db, login_required, query_date, today

export_bp = Blueprint("export", __name__, url_prefix="/export")

EXPORT_FORMATS = ("csv", "json")
CSV_HEADERS = ["Date", "Description", "Amount", "Type", "Category", "Account", "Is Transfer"]


def export_rows(db):
    query = """
        SELECT t.date, t.amount, t.description, t.is_transfer,
               COALESCE(c.name, 'Uncategorized') AS category,
               COALESCE(a.name, 'Unknown') AS account
        FROM transactions t
        LEFT JOIN categories c ON c.id = t.category_id
        LEFT JOIN accounts a ON a.id = t.account_id
        WHERE t.user_id = ?
    """
    params = [current_user_id()]
    start_date = query_date("startDate")
    if start_date:
        query += " AND t.date >= ?"
        params.append(start_date.isoformat())
    end_date = query_date("endDate")
    if end_date:
        query += " AND t.date <= ?"
        params.append(end_date.isoformat())
    rows = db.execute(query + " ORDER BY t.date DESC, t.id DESC", params).fetchall()
    return [
        {
            "date": row["date"],
            "description": row["description"] or "",
            "amount": round(abs(row["amount"]), 2),
            "type": "expense" if row["amount"] < 0 else "income",
            "category": row["category"],
            "account": row["account"],
            "is_transfer": "Yes" if row["is_transfer"] else "No",
        }
        for row in rows
    ]


@export_bp.get("")
@login_required
def export():
    export_format = request.args.get("format", "csv")
    export_type = request.args.get("type", "transactions")
    if export_type != "transactions":
        raise BadRequestError("Only transaction export is currently supported")
    if export_format not in EXPORT_FORMATS:
        raise BadRequestError("format must be csv or json")

    transactions = export_rows(get_db())
    if not transactions:
        raise NotFoundError("Transactions to export")

    filename = f"pocket-pilot-transactions-{today().isoformat()}.{export_format}"
    headers = {"Content-Disposition": f'attachment; filename="{filename}"'}

    if export_format == "json":
        payload = {
            "exported_at": datetime.now(timezone.utc).isoformat(),
            "currency": current_app.config["CURRENCY"],
            "total_transactions": len(transactions),
            "transactions": transactions,
        }
        return Response(json.dumps(payload, indent=2), mimetype="application/json", headers=headers)

    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(CSV_HEADERS)
    for txn in transactions:
        writer.writerow(
            [
                txn["date"],
                txn["description"],
                f"{txn['amount']:.2f}",
                txn["type"],
                txn["category"],
                txn["account"],
                txn["is_transfer"],
            ]
        )
    return Response(output.getvalue(), mimetype="text/csv", headers=headers)
