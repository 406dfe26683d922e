import logging

from flask import Blueprint, jsonify, request

from ..db import insert_row
from ..errors import BadRequestError
from ..finance.categorize import first_matching_rule
from ..finance.csv_import import (
    PREVIEW_LIMIT,
    decode_csv_bytes,
    detect_header_and_mapping,
    duplicate_key,
    parse_rows,
    read_csv_rows,
)
from ..schemas import CsvMappingIn, ImportIn
from .categorization_rules import active_rules
from .common import current_user_id, fetch_owned, get_db, login_required, parse_body

transaction_import_bp = Blueprint("transaction_import", __name__, url_prefix="/transactions")
logger = logging.getLogger(__name__)


def upload_request(upload):
    """Mapping, data rows and preview flag for a multipart CSV upload."""
    text = decode_csv_bytes(upload.read())
    if text is None:
        raise BadRequestError("Could not decode the CSV file")
    rows = read_csv_rows(text)
    if not rows:
        raise BadRequestError("The CSV file is empty")

    has_header, detected, header_row_index = detect_header_and_mapping(rows)
    if not detected["date_column"]:
        raise BadRequestError("Could not detect the date and amount columns; send an explicit mapping instead")

    mapping = CsvMappingIn.model_validate(
        {
            **{key: value or None for key, value in detected.items()},
            "account_id": request.form.get("account_id"),
            "split_amounts": not detected["amount_column"],
            "date_format": request.form.get("date_format") or "YYYY-MM-DD",
            "has_header": has_header,
        }
    )
    data_rows = rows[header_row_index + 1:] if has_header else rows
    preview_only = (request.form.get("preview_only") or "").lower() in ("1", "true", "yes")
    return mapping, data_rows, preview_only


@transaction_import_bp.post("/import")
@login_required
def import_transactions():
    upload = request.files.get("file")
    if upload is not None:
        mapping, rows, preview_only = upload_request(upload)
    else:
        body = parse_body(ImportIn)
        mapping, rows, preview_only = body.mapping, body.rows, body.preview_only

    db = get_db()
    fetch_owned(db, "accounts", mapping.account_id, "Account", "id")
    existing_keys = {
        duplicate_key(row["date"], row["amount"], row["description"])
        for row in db.execute(
            "SELECT date, amount, description FROM transactions WHERE user_id = ? AND account_id = ?",
            (current_user_id(), mapping.account_id),
        ).fetchall()
    }

    parsed = parse_rows(rows, mapping.model_dump(), existing_keys)
    failed = [txn for txn in parsed if txn["error"]]
    duplicates = sum(1 for txn in parsed if txn["is_duplicate"])

    if preview_only:
        return jsonify(
            {
                "success": True,
                "preview": True,
                "transactions": parsed[:PREVIEW_LIMIT],
                "total": len(parsed),
                "valid": len(parsed) - len(failed),
                "duplicates": duplicates,
                "errors": len(failed),
            }
        )

    categories = {
        row["name"].lower(): row["id"]
        for row in db.execute(
            "SELECT id, name FROM categories WHERE user_id = ? AND is_archived = 0",
            (current_user_id(),),
        ).fetchall()
    }
    rules = active_rules(db, current_user_id())

    imported = 0
    for txn in parsed:
        if txn["error"] or txn["is_duplicate"]:
            continue
        category_id = categories.get((txn["category_name"] or "").lower())
        if category_id is None:
            rule = first_matching_rule(rules, txn["description"])
            category_id = rule["target_category_id"] if rule else None
        insert_row(
            db,
            "transactions",
            {
                "user_id": current_user_id(),
                "account_id": mapping.account_id,
                "category_id": category_id,
                "date": txn["date"],
                "amount": txn["amount"],
                "description": txn["description"],
                "is_transfer": 0,
            },
        )
        imported += 1
    db.commit()
    logger.info("Imported %s of %s CSV rows into account %s", imported, len(parsed), mapping.account_id)

    return jsonify(
        {
            "success": True,
            "imported": imported,
            "skipped": len(parsed) - imported,
            "duplicates": duplicates,
            "errors": [f"Row {txn['row_number']}: {txn['error']}" for txn in failed],
        }
    )
