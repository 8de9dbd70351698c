import uuid
from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from database import Base


class TransactionType(str, Enum):
    income = "income"
    expense = "expense"


class ExpenseCategory(str, Enum):
    food = "food"
    transport = "transport"
    shopping = "shopping"
    leisure = "leisure"
    medical = "medical"
    education = "education"
    housing = "housing"
    telecom = "telecom"
    insurance = "insurance"
    subscription = "subscription"
    other = "other"


class IncomeCategory(str, Enum):
    salary = "salary"
    allowance = "allowance"
    side_income = "side_income"
    interest = "interest"
    dividend = "dividend"
    other = "other"


CATEGORIES_BY_TYPE: dict[TransactionType, list[str]] = {
    TransactionType.expense: [member.value for member in ExpenseCategory],
    TransactionType.income: [member.value for member in IncomeCategory],
}

FALLBACK_CATEGORY = "other"


def categories_for(txn_type: TransactionType) -> list[str]:
    return list(CATEGORIES_BY_TYPE[txn_type])


def _new_id() -> str:
    return str(uuid.uuid4())


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    date: Mapped[date] = mapped_column(Date, nullable=False)
    content: Mapped[str] = mapped_column(String(200), nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    category: Mapped[str] = mapped_column(String(40), nullable=False)
    memo: Mapped[Optional[str]] = mapped_column(Text)
    receipt_url: Mapped[Optional[str]] = mapped_column(String(500))

    __table_args__ = (
        Index("ix_transactions_user_date", "user_id", "date"),
        CheckConstraint("amount > 0", name="ck_transactions_amount_positive"),
    )


class RecurringRule(Base, TimestampMixin):
    __tablename__ = "recurring_rules"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    content: Mapped[str] = mapped_column(String(200), nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    category: Mapped[str] = mapped_column(String(40), nullable=False)
    day_of_month: Mapped[int] = mapped_column(Integer, nullable=False)
    memo: Mapped[Optional[str]] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    __table_args__ = (
        Index("ix_recurring_rules_user_day", "user_id", "day_of_month"),
        CheckConstraint("amount > 0", name="ck_rule_amount_positive"),
        CheckConstraint(
            "day_of_month BETWEEN 1 AND 31", name="ck_rule_day_of_month_range"
        ),
    )
