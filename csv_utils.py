import csv
import re
from datetime import datetime
from decimal import Decimal, InvalidOperation
from io import StringIO
from typing import Sequence

from ledger import LedgerEntry
from models import TransactionType
from schemas import CSVRow


CSV_HEADER = ["Date", "Type", "Amount", "Category", "Content", "Memo", "Recurring"]


def sanitize_csv_value(value: str) -> str:
    """
    Sanitize CSV values to prevent formula injection by prefixing dangerous patterns with tab.
    """
    if not value or value.strip() == "":
        return ""

    value = value.strip()

    formula_triggers = ("=", "+", "-", "@", "\t", "\r")

    if value.startswith(formula_triggers):
        return "\t" + value

    dangerous_patterns = [
        r"^cmd\s*",
        r"^powershell\s*",
        r"^bash\s*",
        r"^sh\s*",
        r"^\.",
        r"^http[s]?://",
    ]

    for pattern in dangerous_patterns:
        if re.match(pattern, value, re.IGNORECASE):
            return "\t" + value

    return value


def parse_date(value: str):
    value = value.strip()
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError:
        return datetime.strptime(value, "%Y.%m.%d").date()


def parse_amount(value: str) -> int:
    """Parse a whole amount in the smallest currency unit, e.g. ``"12,500"``."""
    clean = (
        value.strip()
        .replace("₩", "")
        .replace("원", "")
        .replace(",", "")
        .replace(" ", "")
    )
    try:
        amount = Decimal(clean)
    except InvalidOperation as exc:
        raise ValueError("Invalid amount") from exc
    if amount != amount.to_integral_value():
        raise ValueError("Amount must be a whole number")
    if amount <= 0:
        raise ValueError("Amount must be positive")
    return int(amount)


def parse_csv(content: str) -> tuple[list[CSVRow], list[str]]:
    reader = csv.DictReader(StringIO(content))
    rows: list[CSVRow] = []
    errors: list[str] = []
    for idx, raw in enumerate(reader, start=1):
        try:
            date_value = parse_date((raw.get("Date") or "").strip())
            type_raw = (raw.get("Type") or "").strip().lower()
            type_value = TransactionType(type_raw)
            amount_value = parse_amount(raw.get("Amount") or "0")
            category = (raw.get("Category") or "").strip()
            content_value = (raw.get("Content") or "").strip()
            memo_raw = raw.get("Memo") or ""
            memo = memo_raw.strip() if memo_raw.strip() else None
            rows.append(
                CSVRow(
                    date=date_value,
                    type=type_value,
                    amount=amount_value,
                    category=category,
                    content=content_value,
                    memo=memo,
                )
            )
        except Exception as exc:
            errors.append(f"Row {idx}: {exc}")
    return rows, errors


def export_entries(entries: Sequence[LedgerEntry]) -> str:
    output = StringIO()
    writer = csv.writer(output)
    writer.writerow(CSV_HEADER)
    for entry in entries:
        writer.writerow(
            [
                entry.date.isoformat(),
                entry.type.value,
                str(entry.amount),
                sanitize_csv_value(entry.category),
                sanitize_csv_value(entry.content),
                sanitize_csv_value(entry.memo or ""),
                "1" if entry.is_recurring else "0",
            ]
        )
    return output.getvalue()
