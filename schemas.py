from datetime import date
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from models import CATEGORIES_BY_TYPE, TransactionType


def _check_category(txn_type: TransactionType, category: str) -> None:
    if category not in CATEGORIES_BY_TYPE[txn_type]:
        raise ValueError(f"Unknown {txn_type.value} category '{category}'")


class TransactionIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: TransactionType
    date: date
    content: str = Field(..., min_length=1, max_length=200)
    amount: int = Field(..., gt=0)
    category: str
    memo: Optional[str] = Field(default=None, max_length=2000)
    receipt_url: Optional[str] = Field(default=None, max_length=500)

    @model_validator(mode="after")
    def category_matches_type(self) -> "TransactionIn":
        _check_category(self.type, self.category)
        return self


class RecurringRuleIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: TransactionType
    content: str = Field(..., min_length=1, max_length=200)
    amount: int = Field(..., gt=0)
    category: str
    day_of_month: int = Field(..., ge=1, le=31)
    memo: Optional[str] = Field(default=None, max_length=2000)

    @model_validator(mode="after")
    def category_matches_type(self) -> "RecurringRuleIn":
        _check_category(self.type, self.category)
        return self


class RecurringToggleIn(BaseModel):
    is_active: bool


class CSVRow(BaseModel):
    date: date
    type: TransactionType
    amount: int = Field(..., gt=0)
    category: str
    content: str = Field(..., min_length=1, max_length=200)
    memo: Optional[str]
