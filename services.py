from __future__ import annotations

import logging
from datetime import date
from typing import Optional

from rapidfuzz.distance import Levenshtein
from sqlalchemy import select
from sqlalchemy.orm import Session

from csv_utils import export_entries, parse_csv
from ledger import (
    LedgerEntry,
    LedgerView,
    SortOption,
    Summary,
    aggregate_and_sort,
    summarize,
)
from ledger_cache import LedgerCache, get_ledger_cache
from models import (
    CATEGORIES_BY_TYPE,
    FALLBACK_CATEGORY,
    RecurringRule,
    Transaction,
    TransactionType,
)
from periods import DateFilter, resolve_range
from recurrence import local_today, materialize_recurring
from schemas import RecurringRuleIn, TransactionIn


logger = logging.getLogger(__name__)


class NotFoundError(ValueError):
    pass


class _OwnedService:
    def __init__(
        self, session: Session, user_id: str, cache: Optional[LedgerCache] = None
    ) -> None:
        if not user_id:
            raise ValueError("An authenticated owner is required")
        self.session = session
        self.user_id = user_id
        self.cache = cache if cache is not None else get_ledger_cache()

    def _changed(self) -> None:
        self.cache.invalidate_owner(self.user_id)


class TransactionService(_OwnedService):
    def query(
        self, start: Optional[date] = None, end: Optional[date] = None
    ) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .where(Transaction.user_id == self.user_id)
            .order_by(Transaction.date.desc(), Transaction.created_at.desc())
        )
        if start is not None and end is not None:
            stmt = stmt.where(Transaction.date.between(start, end))
        return list(self.session.scalars(stmt).all())

    def get(self, transaction_id: str) -> Transaction:
        txn = self.session.get(Transaction, transaction_id)
        if not txn or txn.user_id != self.user_id:
            raise NotFoundError("Transaction not found")
        return txn

    def create(self, data: TransactionIn) -> Transaction:
        txn = Transaction(user_id=self.user_id, **data.model_dump())
        self.session.add(txn)
        self.session.commit()
        self.session.refresh(txn)
        self._changed()
        return txn

    def update(self, transaction_id: str, data: TransactionIn) -> Transaction:
        txn = self.get(transaction_id)
        for field, value in data.model_dump().items():
            setattr(txn, field, value)
        self.session.commit()
        self.session.refresh(txn)
        self._changed()
        return txn

    def delete(self, transaction_id: str) -> None:
        txn = self.get(transaction_id)
        self.session.delete(txn)
        self.session.commit()
        self._changed()


class RecurringRuleService(_OwnedService):
    def get(self, rule_id: str) -> RecurringRule:
        rule = self.session.get(RecurringRule, rule_id)
        if not rule or rule.user_id != self.user_id:
            raise NotFoundError("Rule not found")
        return rule

    def list(self) -> list[RecurringRule]:
        stmt = (
            select(RecurringRule)
            .where(RecurringRule.user_id == self.user_id)
            .order_by(RecurringRule.day_of_month, RecurringRule.created_at)
        )
        return list(self.session.scalars(stmt).all())

    def totals(self) -> Summary:
        """Monthly income and expense committed by the active rules."""
        active = [rule for rule in self.list() if rule.is_active]
        income = sum(r.amount for r in active if r.type == TransactionType.income)
        expense = sum(r.amount for r in active if r.type == TransactionType.expense)
        return Summary(income=income, expense=expense, balance=income - expense)

    def create(self, data: RecurringRuleIn) -> RecurringRule:
        rule = RecurringRule(user_id=self.user_id, is_active=True, **data.model_dump())
        self.session.add(rule)
        self.session.commit()
        self.session.refresh(rule)
        self._changed()
        return rule

    def update(self, rule_id: str, data: RecurringRuleIn) -> RecurringRule:
        rule = self.get(rule_id)
        for field, value in data.model_dump().items():
            setattr(rule, field, value)
        self.session.commit()
        self.session.refresh(rule)
        self._changed()
        return rule

    def toggle_active(self, rule_id: str, is_active: bool) -> RecurringRule:
        rule = self.get(rule_id)
        rule.is_active = is_active
        self.session.commit()
        self.session.refresh(rule)
        self._changed()
        return rule

    def delete(self, rule_id: str) -> None:
        rule = self.get(rule_id)
        self.session.delete(rule)
        self.session.commit()
        self._changed()


class LedgerService(_OwnedService):
    def ledger(
        self,
        date_filter: DateFilter,
        sort_by: SortOption = SortOption.date_desc,
        today: Optional[date] = None,
    ) -> LedgerView:
        today = today or local_today()
        date_range = resolve_range(date_filter)
        key = LedgerCache.key(
            self.user_id,
            date_filter,
            sort_by,
            today=None if date_range.bounded else today,
        )
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        generation = self.cache.generation(self.user_id)
        txn_service = TransactionService(self.session, self.user_id, self.cache)
        persisted = [
            LedgerEntry.from_transaction(txn)
            for txn in txn_service.query(date_range.start, date_range.end)
        ]
        rules = RecurringRuleService(self.session, self.user_id, self.cache).list()
        materialized = materialize_recurring(
            rules, date_range.start, date_range.end, today
        )
        entries = aggregate_and_sort(persisted, materialized, sort_by)
        view = LedgerView(range=date_range, entries=entries, summary=summarize(entries))
        self.cache.put(key, view, generation=generation)
        logger.debug(
            f"ledger_built: owner={self.user_id} filter={date_filter.kind.value} "
            f"persisted={len(persisted)} recurring={len(materialized)}"
        )
        return view


class CSVService(_OwnedService):
    def resolve_category(self, txn_type: TransactionType, raw: str) -> str:
        """Map a free-form category name onto the fixed list for ``txn_type``.

        Exact (case-insensitive) names win; otherwise a single name within one
        edit is accepted. Anything else lands in the catch-all category.
        """
        choices = CATEGORIES_BY_TYPE[txn_type]
        wanted = (raw or "").strip().lower()
        if not wanted:
            return FALLBACK_CATEGORY
        for name in choices:
            if name == wanted:
                return name

        best_distance: Optional[int] = None
        best: list[str] = []
        for name in choices:
            dist = int(Levenshtein.distance(wanted, name))
            if best_distance is None or dist < best_distance:
                best_distance = dist
                best = [name]
            elif dist == best_distance:
                best.append(name)
        if best_distance is not None and best_distance <= 1 and len(best) == 1:
            return best[0]
        return FALLBACK_CATEGORY

    def preview(self, content: str) -> tuple[list[dict[str, object]], list[str]]:
        rows, errors = parse_csv(content)
        preview_rows: list[dict[str, object]] = []
        for row in rows:
            preview_rows.append(
                {
                    "date": row.date,
                    "type": row.type.value,
                    "amount": row.amount,
                    "category": self.resolve_category(row.type, row.category),
                    "raw_category": row.category,
                    "content": row.content,
                    "memo": row.memo,
                }
            )
        return preview_rows, errors

    def commit(self, content: str) -> int:
        preview_rows, errors = self.preview(content)
        if errors:
            raise ValueError("; ".join(errors))
        for row in preview_rows:
            self.session.add(
                Transaction(
                    user_id=self.user_id,
                    type=TransactionType(row["type"]),
                    date=row["date"],
                    content=row["content"],
                    amount=row["amount"],
                    category=row["category"],
                    memo=row["memo"],
                )
            )
        self.session.commit()
        self._changed()
        logger.info(f"csv_import: owner={self.user_id} rows={len(preview_rows)}")
        return len(preview_rows)

    def export(self, view: LedgerView) -> str:
        return export_entries(view.entries)
