from datetime import date

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from database import Base
from ledger import SortOption
from ledger_cache import LedgerCache
from models import TransactionType
from periods import all_filter, month_filter
from schemas import RecurringRuleIn, TransactionIn
from services import (
    CSVService,
    LedgerService,
    NotFoundError,
    RecurringRuleService,
    TransactionService,
)


def _session() -> Session:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    return Session(engine)


def _lunch(on: date, amount: int = 12000) -> TransactionIn:
    return TransactionIn(
        type=TransactionType.expense,
        date=on,
        content="Lunch",
        amount=amount,
        category="food",
    )


def _salary_rule(day_of_month: int = 25) -> RecurringRuleIn:
    return RecurringRuleIn(
        type=TransactionType.income,
        content="Salary",
        amount=3_000_000,
        category="salary",
        day_of_month=day_of_month,
    )


def test_ledger_merges_stored_and_recurring_entries():
    cache = LedgerCache(ttl_secs=300)
    with _session() as session:
        TransactionService(session, "user-1", cache).create(_lunch(date(2024, 2, 10)))
        rule = RecurringRuleService(session, "user-1", cache).create(_salary_rule(31))

        view = LedgerService(session, "user-1", cache).ledger(
            month_filter(2024, 2), SortOption.date_desc, today=date(2024, 6, 1)
        )

        assert [e.date for e in view.entries] == [date(2024, 2, 29), date(2024, 2, 10)]
        assert view.entries[0].id == f"recurring-{rule.id}-2024-02-29"
        assert view.entries[0].is_recurring is True
        assert view.entries[1].is_recurring is False
        assert view.summary.income == 3_000_000
        assert view.summary.expense == 12000
        assert view.summary.balance == 2_988_000


def test_unbounded_ledger_fetches_all_history_but_one_recurring_month():
    cache = LedgerCache(ttl_secs=300)
    with _session() as session:
        txn_service = TransactionService(session, "user-1", cache)
        txn_service.create(_lunch(date(2020, 3, 1)))
        txn_service.create(_lunch(date(2024, 5, 2)))
        RecurringRuleService(session, "user-1", cache).create(_salary_rule(31))

        view = LedgerService(session, "user-1", cache).ledger(
            all_filter(), today=date(2024, 6, 15)
        )

        assert not view.range.bounded
        recurring = [e for e in view.entries if e.is_recurring]
        assert [e.date for e in recurring] == [date(2024, 6, 30)]
        assert len(view.entries) == 3


def test_mutations_invalidate_cached_ledger():
    cache = LedgerCache(ttl_secs=300)
    with _session() as session:
        ledger = LedgerService(session, "user-1", cache)
        first = ledger.ledger(month_filter(2024, 2), today=date(2024, 2, 1))
        assert first.entries == []
        assert len(cache) == 1

        txn = TransactionService(session, "user-1", cache).create(
            _lunch(date(2024, 2, 3))
        )
        assert len(cache) == 0

        second = ledger.ledger(month_filter(2024, 2), today=date(2024, 2, 1))
        assert [e.id for e in second.entries] == [txn.id]
        assert ledger.ledger(month_filter(2024, 2)) is second


def test_toggled_rule_disappears_from_next_ledger():
    cache = LedgerCache(ttl_secs=300)
    with _session() as session:
        rules = RecurringRuleService(session, "user-1", cache)
        rule = rules.create(_salary_rule(1))
        ledger = LedgerService(session, "user-1", cache)
        assert len(ledger.ledger(month_filter(2024, 3), today=date(2024, 3, 1)).entries) == 1

        toggled = rules.toggle_active(rule.id, False)

        assert toggled.is_active is False
        assert ledger.ledger(month_filter(2024, 3), today=date(2024, 3, 1)).entries == []


def test_rules_are_listed_by_day_of_month():
    with _session() as session:
        rules = RecurringRuleService(session, "user-1", LedgerCache(ttl_secs=300))
        rules.create(_salary_rule(25))
        rules.create(_salary_rule(3))
        rules.create(_salary_rule(14))

        assert [r.day_of_month for r in rules.list()] == [3, 14, 25]


def test_update_and_delete_transaction():
    cache = LedgerCache(ttl_secs=300)
    with _session() as session:
        service = TransactionService(session, "user-1", cache)
        txn = service.create(_lunch(date(2024, 2, 3)))

        updated = service.update(txn.id, _lunch(date(2024, 2, 4), amount=15000))
        assert updated.amount == 15000
        assert updated.date == date(2024, 2, 4)

        service.delete(txn.id)
        with pytest.raises(NotFoundError):
            service.get(txn.id)


def test_records_are_scoped_to_their_owner():
    cache = LedgerCache(ttl_secs=300)
    with _session() as session:
        txn = TransactionService(session, "user-1", cache).create(
            _lunch(date(2024, 2, 3))
        )
        rule = RecurringRuleService(session, "user-1", cache).create(_salary_rule())

        with pytest.raises(NotFoundError):
            TransactionService(session, "user-2", cache).get(txn.id)
        with pytest.raises(NotFoundError):
            RecurringRuleService(session, "user-2", cache).delete(rule.id)
        assert TransactionService(session, "user-2", cache).query() == []


def test_services_require_an_owner():
    with _session() as session:
        with pytest.raises(ValueError):
            TransactionService(session, "", LedgerCache(ttl_secs=300))


def test_category_must_match_transaction_type():
    with pytest.raises(ValueError):
        TransactionIn(
            type=TransactionType.income,
            date=date(2024, 1, 1),
            content="Bonus",
            amount=1000,
            category="food",
        )


@pytest.mark.parametrize(
    "txn_type, raw, expected",
    [
        (TransactionType.expense, "Food", "food"),
        (TransactionType.expense, "fod", "food"),
        (TransactionType.expense, "groceries", "other"),
        (TransactionType.expense, "", "other"),
        (TransactionType.income, "dividnd", "dividend"),
        (TransactionType.income, "food", "other"),
    ],
)
def test_csv_category_resolution(txn_type, raw, expected):
    with _session() as session:
        service = CSVService(session, "user-1", LedgerCache(ttl_secs=300))
        assert service.resolve_category(txn_type, raw) == expected


def test_csv_import_creates_transactions():
    content = (
        "Date,Type,Amount,Category,Content,Memo\n"
        '2024-02-01,expense,"12,500",Food,Lunch,team lunch\n'
        "2024.02.25,income,3000000,salary,Payroll,\n"
    )
    cache = LedgerCache(ttl_secs=300)
    with _session() as session:
        count = CSVService(session, "user-1", cache).commit(content)

        assert count == 2
        view = LedgerService(session, "user-1", cache).ledger(
            month_filter(2024, 2), SortOption.date_asc, today=date(2024, 2, 1)
        )
        assert [(e.amount, e.category) for e in view.entries] == [
            (12500, "food"),
            (3_000_000, "salary"),
        ]
        assert view.entries[0].memo == "team lunch"
        assert view.entries[1].memo is None


def test_csv_import_rejects_bad_rows():
    content = (
        "Date,Type,Amount,Category,Content,Memo\n"
        "2024-02-01,transfer,100,Food,Lunch,\n"
    )
    with _session() as session:
        service = CSVService(session, "user-1", LedgerCache(ttl_secs=300))
        with pytest.raises(ValueError):
            service.commit(content)
        assert TransactionService(session, "user-1", service.cache).query() == []


def test_write_committed_during_build_is_not_hidden_by_cache(monkeypatch):
    cache = LedgerCache(ttl_secs=300)
    with _session() as session:
        txn_service = TransactionService(session, "user-1", cache)
        original_put = cache.put
        written = []

        def put_after_concurrent_write(key, view, now=None, generation=None):
            if not written:
                written.append(txn_service.create(_lunch(date(2024, 2, 3))))
            return original_put(key, view, now=now, generation=generation)

        monkeypatch.setattr(cache, "put", put_after_concurrent_write)
        ledger = LedgerService(session, "user-1", cache)

        first = ledger.ledger(month_filter(2024, 2), today=date(2024, 2, 1))
        assert first.entries == []
        assert len(cache) == 0

        second = ledger.ledger(month_filter(2024, 2), today=date(2024, 2, 1))
        assert [e.id for e in second.entries] == [written[0].id]


def test_unbounded_ledger_follows_today_across_months():
    cache = LedgerCache(ttl_secs=300)
    with _session() as session:
        RecurringRuleService(session, "user-1", cache).create(_salary_rule(31))
        ledger = LedgerService(session, "user-1", cache)

        june = ledger.ledger(all_filter(), today=date(2024, 6, 15))
        july = ledger.ledger(all_filter(), today=date(2024, 7, 15))

        assert [e.date for e in june.entries] == [date(2024, 6, 30)]
        assert [e.date for e in july.entries] == [date(2024, 7, 31)]
        assert ledger.ledger(all_filter(), today=date(2024, 7, 2)) is july


def test_recurring_totals_count_active_rules_only():
    cache = LedgerCache(ttl_secs=300)
    with _session() as session:
        rules = RecurringRuleService(session, "user-1", cache)
        rules.create(_salary_rule(25))
        rent = rules.create(
            RecurringRuleIn(
                type=TransactionType.expense,
                content="Rent",
                amount=500000,
                category="housing",
                day_of_month=1,
            )
        )
        gym = rules.create(
            RecurringRuleIn(
                type=TransactionType.expense,
                content="Gym",
                amount=60000,
                category="leisure",
                day_of_month=5,
            )
        )
        rules.toggle_active(gym.id, False)

        totals = rules.totals()

        assert totals.income == 3_000_000
        assert totals.expense == rent.amount
        assert totals.balance == 2_500_000
        assert RecurringRuleService(session, "user-2", cache).totals().as_dict() == {
            "income": 0,
            "expense": 0,
            "balance": 0,
        }
