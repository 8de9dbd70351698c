from dataclasses import dataclass, replace
from datetime import date, datetime
from enum import Enum
from typing import Iterable, Optional, Sequence

from models import RecurringRule, Transaction, TransactionType
from periods import DateRange


class SortOption(str, Enum):
    date_desc = "date_desc"
    date_asc = "date_asc"
    amount_desc = "amount_desc"
    amount_asc = "amount_asc"


@dataclass(frozen=True)
class LedgerEntry:
    id: str
    user_id: str
    type: TransactionType
    date: date
    content: str
    amount: int
    category: str
    memo: Optional[str]
    receipt_url: Optional[str]
    created_at: Optional[datetime]
    updated_at: Optional[datetime]
    is_recurring: bool = False
    recurring_id: Optional[str] = None

    @classmethod
    def from_transaction(cls, txn: Transaction) -> "LedgerEntry":
        return cls(
            id=txn.id,
            user_id=txn.user_id,
            type=txn.type,
            date=txn.date,
            content=txn.content,
            amount=txn.amount,
            category=txn.category,
            memo=txn.memo,
            receipt_url=txn.receipt_url,
            created_at=txn.created_at,
            updated_at=txn.updated_at,
        )

    @classmethod
    def from_rule(cls, rule: RecurringRule, on_date: date) -> "LedgerEntry":
        return cls(
            id=f"recurring-{rule.id}-{on_date.isoformat()}",
            user_id=rule.user_id,
            type=rule.type,
            date=on_date,
            content=rule.content,
            amount=rule.amount,
            category=rule.category,
            memo=rule.memo,
            receipt_url=None,
            created_at=rule.created_at,
            updated_at=rule.updated_at,
            is_recurring=True,
            recurring_id=rule.id,
        )

    def as_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "type": self.type.value,
            "date": self.date.isoformat(),
            "content": self.content,
            "amount": self.amount,
            "category": self.category,
            "memo": self.memo,
            "receipt_url": self.receipt_url,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "is_recurring": self.is_recurring,
            "recurring_id": self.recurring_id,
        }


@dataclass(frozen=True)
class Summary:
    income: int
    expense: int
    balance: int

    def as_dict(self) -> dict[str, int]:
        return {"income": self.income, "expense": self.expense, "balance": self.balance}


@dataclass(frozen=True)
class LedgerView:
    range: DateRange
    entries: list[LedgerEntry]
    summary: Summary


def _created_key(entry: LedgerEntry) -> datetime:
    return entry.created_at or datetime.min


def sort_entries(
    entries: Iterable[LedgerEntry], sort_by: SortOption
) -> list[LedgerEntry]:
    # sorted() is stable, including with reverse=True
    if sort_by == SortOption.date_desc:
        return sorted(entries, key=lambda e: (e.date, _created_key(e)), reverse=True)
    if sort_by == SortOption.date_asc:
        return sorted(entries, key=lambda e: (e.date, _created_key(e)))
    if sort_by == SortOption.amount_desc:
        return sorted(entries, key=lambda e: e.amount, reverse=True)
    if sort_by == SortOption.amount_asc:
        return sorted(entries, key=lambda e: e.amount)
    return list(entries)


def aggregate_and_sort(
    persisted: Sequence[LedgerEntry],
    materialized: Sequence[LedgerEntry],
    sort_by: SortOption = SortOption.date_desc,
) -> list[LedgerEntry]:
    """Merge stored and recurring-derived entries into one ordered ledger.

    Stored entries come first in the concatenation, so under equal sort keys
    they stay ahead of recurring-derived ones.
    """
    combined = [replace(entry, is_recurring=False) for entry in persisted]
    combined.extend(materialized)
    return sort_entries(combined, sort_by)


def summarize(entries: Iterable[LedgerEntry]) -> Summary:
    income = 0
    expense = 0
    for entry in entries:
        if entry.type == TransactionType.income:
            income += entry.amount
        elif entry.type == TransactionType.expense:
            expense += entry.amount
    return Summary(income=income, expense=expense, balance=income - expense)


@dataclass(frozen=True)
class DayGroup:
    date: date
    entries: list[LedgerEntry]
    summary: Summary


def group_by_day(entries: Sequence[LedgerEntry]) -> list[DayGroup]:
    """Bucket an ordered ledger by calendar day with per-day totals.

    Days appear in the order their first entry does, so a sorted ledger
    yields sorted days; entries keep their order within a day.
    """
    by_day: dict[date, list[LedgerEntry]] = {}
    for entry in entries:
        by_day.setdefault(entry.date, []).append(entry)
    return [
        DayGroup(date=day, entries=day_entries, summary=summarize(day_entries))
        for day, day_entries in by_day.items()
    ]
