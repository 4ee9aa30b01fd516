from __future__ import annotations

"""
Pydantic schemas (data models) used by the API and the calculation core.
- These define the structure, types, and validation rules for the data we accept/return.
- Field names are snake_case in Python and camelCase on the wire (the front-end contract).

Core ideas:
- Keep schemas separate from database models (ORM) to avoid coupling business logic to storage.
- Money is Decimal end to end and leaves the API as a string with two decimals.
"""

import datetime as dt
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class TxType(str, Enum):
    INCOME = "income"
    EXPENSE = "expense"
    TRANSFER = "transfer"


class CategoryType(str, Enum):
    INCOME = "income"
    EXPENSE = "expense"


class TaxSystemType(str, Enum):
    SIMPLIFIED_4 = "simplified_4"
    SELF_EMPLOYED = "self_employed"
    GENERAL = "general"


_Q2 = Decimal("0.01")


def quantize_money(value: Decimal) -> Decimal:
    """Round to tiyn (0.01), half-up, the way amounts are stored and displayed."""
    return Decimal(value).quantize(_Q2, rounding=ROUND_HALF_UP)


class ApiModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


def _lower(v):
    return v.strip().lower() if isinstance(v, str) else v


# -----------------------------------------------------------------------------
# Transactions
# -----------------------------------------------------------------------------
class ParsedTransaction(ApiModel):
    """
    A candidate transaction produced by the statement classifier.

    Never persisted until the user confirms the import.
    """

    date: dt.date
    amount: Decimal = Field(..., gt=0, description="Unsigned magnitude; direction is in `type`")
    type: TxType
    description: str = ""
    counterparty: Optional[str] = None

    @field_validator("type", mode="before")
    @classmethod
    def _normalize_type(cls, v):
        return _lower(v)

    @field_validator("amount")
    @classmethod
    def _quantize(cls, v: Decimal) -> Decimal:
        return quantize_money(v)


class ImportItem(ParsedTransaction):
    is_deductible: bool = False
    category_id: Optional[int] = None


class ImportRequest(ApiModel):
    transactions: List[ImportItem] = Field(default_factory=list)
    upload_id: Optional[int] = None


class TransactionCreate(ApiModel):
    amount: Decimal = Field(..., gt=0)
    type: TxType
    category_id: Optional[int] = None
    description: str = ""
    date: dt.date
    counterparty: Optional[str] = None
    is_deductible: bool = False

    @field_validator("type", mode="before")
    @classmethod
    def _normalize_type(cls, v):
        return _lower(v)

    @field_validator("amount")
    @classmethod
    def _quantize(cls, v: Decimal) -> Decimal:
        return quantize_money(v)


class TransactionRead(ApiModel):
    id: int
    amount: Decimal
    type: TxType
    category_id: Optional[int] = None
    description: str
    date: dt.date
    counterparty: Optional[str] = None
    is_deductible: bool
    user_id: int


class ParseResponse(ApiModel):
    """
    API response model for /api/upload/parse (preview only, no transaction writes).
    """

    success: bool
    transactions: List[ParsedTransaction]
    errors: List[str]
    warnings: List[str]
    parser: str
    upload_id: Optional[int] = None


class ImportResponse(ApiModel):
    inserted: int
    skipped_duplicates: int
    transactions: List[TransactionRead]


# -----------------------------------------------------------------------------
# Categories
# -----------------------------------------------------------------------------
class CategoryCreate(ApiModel):
    name: str = Field(..., min_length=1, max_length=128)
    icon: str = "circle"
    color: str = "#64748b"
    type: CategoryType

    @field_validator("type", mode="before")
    @classmethod
    def _normalize_type(cls, v):
        return _lower(v)


class CategoryRead(ApiModel):
    id: int
    name: str
    icon: str
    color: str
    type: CategoryType
    user_id: int


# -----------------------------------------------------------------------------
# Taxes
# -----------------------------------------------------------------------------
class TaxSettingsUpdate(ApiModel):
    tax_system: TaxSystemType
    year: int = Field(..., ge=2000, le=2100)


class TaxSettingsRead(ApiModel):
    id: int
    tax_system: TaxSystemType
    year: int
    user_id: int


class TaxDeadlineRead(ApiModel):
    id: int
    quarter: int
    year: int
    due_date: dt.date
    is_paid: bool
    amount: Optional[Decimal] = None
    user_id: int


class DeadlinePatch(ApiModel):
    is_paid: bool


class QuarterlyPayment(ApiModel):
    quarter: int = Field(..., ge=1, le=4)
    amount: Decimal
    due_date: dt.date
    is_paid: bool = False


class TaxCalculation(ApiModel):
    """
    Derived, never persisted. Recomputed on demand from the transaction set.

    The quarterly schedule is an estimate for planning, not a legally
    authoritative payment schedule (`is_estimate` is always true).
    """

    tax_system: TaxSystemType
    year: int
    income: Decimal
    expenses: Decimal
    tax_base: Decimal
    tax_rate: Decimal = Field(..., description="Nominal or blended rate, in percent")
    tax_amount: Decimal
    quarterly_payments: List[QuarterlyPayment]
    warnings: List[str] = Field(default_factory=list)
    is_estimate: bool = True


# -----------------------------------------------------------------------------
# Dashboard / analytics
# -----------------------------------------------------------------------------
class DashboardStats(ApiModel):
    total_income: Decimal
    total_expenses: Decimal
    net_profit: Decimal
    estimated_tax: Decimal
    transaction_count: int


class MonthlyData(ApiModel):
    month: str
    income: Decimal
    expenses: Decimal


class CategoryBreakdown(ApiModel):
    category_id: Optional[int] = None
    category_name: str
    category_color: str
    amount: Decimal
    percentage: Decimal


# -----------------------------------------------------------------------------
# Users
# -----------------------------------------------------------------------------
class UserCredentials(ApiModel):
    username: str = Field(..., min_length=3, max_length=64)
    password: str = Field(..., min_length=6, max_length=256)


class UserRead(ApiModel):
    id: int
    username: str


class AuthResponse(ApiModel):
    user: UserRead
    token: str


class DailyData(ApiModel):
    date: dt.date
    label: str
    income: Decimal
    expenses: Decimal
