"""
Parsing for ``POST /api/transactions/import``.

Rows come either from a JSON body (a list of objects keyed by column name)
or from an uploaded CSV file, in which case columns are addressed by their
index and the mapping is detected from the header row.
"""

import csv
import io
from datetime import datetime


DATE_FORMATS = {
    "YYYY-MM-DD": "%Y-%m-%d",
    "MM/DD/YYYY": "%m/%d/%Y",
    "DD/MM/YYYY": "%d/%m/%Y",
    "YYYY/MM/DD": "%Y/%m/%d",
}
FALLBACK_DATE_FORMATS = (
    "%Y-%m-%d",
    "%m/%d/%Y",
    "%m/%d/%y",
    "%d/%m/%Y",
    "%d/%m/%y",
    "%d %b %Y",
    "%d %B %Y",
)
PREVIEW_LIMIT = 10


def normalize_header_name(value):
    return " ".join((value or "").strip().lower().split())


def parse_money(value):
    text = (value or "").strip()
    if not text:
        return None
    cleaned = text.replace(",", "").replace("$", "").replace(" ", "")
    if cleaned.startswith("(") and cleaned.endswith(")"):
        cleaned = f"-{cleaned[1:-1]}"
    try:
        return float(cleaned)
    except ValueError:
        return None


def parse_transaction_date(value, date_format="YYYY-MM-DD"):
    """ISO date string for *value*, trying the chosen format before the common ones."""
    cleaned = (value or "").strip().replace(".", "")
    if not cleaned:
        return None
    for fmt in (DATE_FORMATS[date_format], *FALLBACK_DATE_FORMATS):
        try:
            return datetime.strptime(cleaned, fmt).date().isoformat()
        except ValueError:
            continue
    return None


def decode_csv_bytes(file_bytes):
    for encoding in ["utf-8-sig", "utf-8", "cp1252", "latin-1"]:
        try:
            return file_bytes.decode(encoding)
        except UnicodeDecodeError:
            continue
    return None


def read_csv_rows(text):
    return [row for row in csv.reader(io.StringIO(text)) if any(cell.strip() for cell in row)]


def detect_header_and_mapping(rows):
    """
    Find the header row of a bank export and map fields to column indexes.

    Returns ``(has_header, mapping, header_row_index)``; ``mapping`` uses the
    same keys as the JSON import mapping, with string column indexes.
    """
    mapping = {
        "date_column": "",
        "amount_column": "",
        "description_column": "",
        "category_column": "",
        "debit_column": "",
        "credit_column": "",
    }
    if not rows:
        return False, mapping, 0

    header_row_index = 0
    for idx in range(min(len(rows), 50)):
        cells = {normalize_header_name(cell) for cell in rows[idx] if cell.strip()}
        has_date = bool(cells & {"date", "transaction date", "date processed"})
        has_amount = bool(cells & {"amount", "debit", "credit"})
        if has_date and has_amount:
            header_row_index = idx
            break

    lookup = {}
    for i, value in enumerate(rows[header_row_index]):
        lookup.setdefault(normalize_header_name(value), str(i))

    mapping["date_column"] = lookup.get("date") or lookup.get("transaction date") or lookup.get("date processed", "")
    mapping["amount_column"] = lookup.get("amount", "")
    mapping["debit_column"] = lookup.get("debit", "")
    mapping["credit_column"] = lookup.get("credit", "")
    mapping["description_column"] = (
        lookup.get("description") or lookup.get("merchant") or lookup.get("payee", "")
    )
    mapping["category_column"] = lookup.get("category", "")

    if mapping["date_column"] and (mapping["amount_column"] or mapping["debit_column"] or mapping["credit_column"]):
        return True, mapping, header_row_index

    # Headerless exports: date, description, debit, credit
    first_row = rows[0]
    if len(first_row) >= 3 and parse_transaction_date(first_row[0]) is not None and first_row[1].strip():
        mapping.update(
            {
                "date_column": "0",
                "description_column": "1",
                "debit_column": "2",
                "credit_column": "3" if len(first_row) > 3 else "",
            }
        )
        return False, mapping, 0
    return False, mapping, 0


def cell(row, column):
    if not column:
        return ""
    if isinstance(row, dict):
        value = row.get(column)
    else:
        try:
            idx = int(column)
        except ValueError:
            return ""
        value = row[idx] if idx < len(row) else None
    return "" if value is None else str(value).strip()


def row_amount(row, mapping):
    """Signed amount for a row; ``0.0`` marks a split row with nothing in either column."""
    if mapping["split_amounts"]:
        debit = parse_money(cell(row, mapping["debit_column"]))
        credit = parse_money(cell(row, mapping["credit_column"]))
        if debit and debit > 0:
            return -debit
        if credit and credit > 0:
            return credit
        if not debit and not credit:
            return 0.0
        return None
    return parse_money(cell(row, mapping["amount_column"]))


def duplicate_key(txn_date, amount, description):
    return (str(txn_date), round(float(amount), 2), (description or "").lower())


def parse_rows(rows, mapping, existing_keys):
    """
    Parse import rows into transaction candidates.

    Each candidate carries ``row_number`` (1-based, counting the header when
    there is one), ``error`` for rows that cannot be imported and
    ``is_duplicate`` when the same date, amount and description already
    exist on the account.
    """
    parsed = []
    offset = 2 if mapping["has_header"] else 1
    for index, row in enumerate(rows):
        row_number = index + offset
        raw_date = cell(row, mapping["date_column"])
        txn_date = parse_transaction_date(raw_date, mapping["date_format"])
        if txn_date is None:
            parsed.append(_failed(row_number, f'Invalid date: "{raw_date}"'))
            continue

        amount = row_amount(row, mapping)
        if amount == 0.0 and mapping["split_amounts"]:
            continue
        if not amount:
            parsed.append(_failed(row_number, f"Invalid amount in row {row_number}"))
            continue

        description = cell(row, mapping["description_column"]) or None
        category_name = cell(row, mapping["category_column"]) or None
        parsed.append(
            {
                "date": txn_date,
                "amount": round(amount, 2),
                "description": description,
                "category_name": category_name,
                "is_duplicate": duplicate_key(txn_date, amount, description) in existing_keys,
                "row_number": row_number,
                "error": None,
            }
        )
    return parsed


def _failed(row_number, message):
    return {
        "date": "",
        "amount": 0,
        "description": None,
        "category_name": None,
        "is_duplicate": False,
        "row_number": row_number,
        "error": message,
    }
