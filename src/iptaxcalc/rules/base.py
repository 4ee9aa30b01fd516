from __future__ import annotations
from typing import Protocol
from decimal import Decimal
from dataclasses import dataclass, field
from iptaxcalc.schemas import TaxSystemType
from iptaxcalc.tax_tables import RegimeTable

HUNDRED = Decimal("100")
ZERO = Decimal("0")


@dataclass
class YearTotals:
    income: Decimal = ZERO
    # deductible expenses only
    expenses: Decimal = ZERO
    income_by_month: dict[int, Decimal] = field(default_factory=dict)


@dataclass
class RunContext:
    table: RegimeTable
    tax_year: int


class TaxRule(Protocol):
    regime: TaxSystemType

    def taxable_base(self, totals: YearTotals, ctx: RunContext) -> Decimal: ...
    def tax_amount(self, base: Decimal, ctx: RunContext) -> Decimal: ...
    def display_rate(self, base: Decimal, amount: Decimal, ctx: RunContext) -> Decimal: ...
    def limit_warnings(self, totals: YearTotals, ctx: RunContext) -> list[str]: ...


def fmt_kzt(amount: Decimal) -> str:
    """1234567.5 -> '1 234 567.50 KZT' for human-readable notices."""
    return f"{amount:,.2f}".replace(",", " ") + " KZT"
