from __future__ import annotations
from decimal import Decimal
from iptaxcalc.schemas import TaxSystemType
from .base import HUNDRED, ZERO, TaxRule, RunContext, YearTotals, fmt_kzt


class SimplifiedRule(TaxRule):
    """Simplified declaration: flat rate on gross income, expenses ignored."""

    regime = TaxSystemType.SIMPLIFIED_4

    def taxable_base(self, totals: YearTotals, ctx: RunContext) -> Decimal:
        return max(ZERO, totals.income)

    def tax_amount(self, base: Decimal, ctx: RunContext) -> Decimal:
        return base * ctx.table.decimal("rate")

    def display_rate(self, base: Decimal, amount: Decimal, ctx: RunContext) -> Decimal:
        return ctx.table.decimal("rate") * HUNDRED

    def limit_warnings(self, totals: YearTotals, ctx: RunContext) -> list[str]:
        limit = ctx.table.mrp_amount("annual_income_limit_mrp")
        if totals.income > limit:
            return [
                f"Annual income {fmt_kzt(totals.income)} exceeds the simplified regime "
                f"limit of {fmt_kzt(limit)} for {ctx.tax_year}"
            ]
        return []
