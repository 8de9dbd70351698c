import csv
from datetime import date, datetime
from io import StringIO

import pytest

from csv_utils import export_entries, parse_amount, parse_csv, sanitize_csv_value
from ledger import LedgerEntry
from models import TransactionType


def test_parse_amount_accepts_grouped_whole_amounts():
    assert parse_amount("12,500") == 12500
    assert parse_amount(" ₩3,000,000 ") == 3_000_000
    assert parse_amount("9900원") == 9900


@pytest.mark.parametrize("raw", ["", "abc", "12.5", "0", "-100"])
def test_parse_amount_rejects(raw):
    with pytest.raises(ValueError):
        parse_amount(raw)


def test_parse_csv_collects_row_errors():
    rows, errors = parse_csv(
        "Date,Type,Amount,Category,Content,Memo\n"
        "2024-01-05,expense,4500,food,Coffee,\n"
        "yesterday,expense,4500,food,Coffee,\n"
    )

    assert len(rows) == 1
    assert rows[0].date == date(2024, 1, 5)
    assert errors and errors[0].startswith("Row 2:")


def test_sanitize_blocks_formulas():
    assert sanitize_csv_value("=SUM(A1)") == "\t=SUM(A1)"
    assert sanitize_csv_value("Lunch") == "Lunch"


def test_export_flags_recurring_entries():
    entry = LedgerEntry(
        id="recurring-r1-2024-02-29",
        user_id="user-1",
        type=TransactionType.expense,
        date=date(2024, 2, 29),
        content="Rent",
        amount=500000,
        category="housing",
        memo=None,
        receipt_url=None,
        created_at=datetime(2024, 1, 1),
        updated_at=datetime(2024, 1, 1),
        is_recurring=True,
        recurring_id="r1",
    )

    rows = list(csv.reader(StringIO(export_entries([entry]))))

    assert rows[0] == ["Date", "Type", "Amount", "Category", "Content", "Memo", "Recurring"]
    assert rows[1] == ["2024-02-29", "expense", "500000", "housing", "Rent", "", "1"]
