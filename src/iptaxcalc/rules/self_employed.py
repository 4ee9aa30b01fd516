from __future__ import annotations
from decimal import Decimal
from iptaxcalc.schemas import TaxSystemType
from .base import HUNDRED, ZERO, TaxRule, RunContext, YearTotals, fmt_kzt


class SelfEmployedRule(TaxRule):
    regime = TaxSystemType.SELF_EMPLOYED

    def _rate(self, ctx: RunContext) -> Decimal:
        # 0% income tax + social payments, both levied on gross income
        return ctx.table.decimal("income_tax_rate") + ctx.table.decimal("social_rate")

    def taxable_base(self, totals: YearTotals, ctx: RunContext) -> Decimal:
        return max(ZERO, totals.income)

    def tax_amount(self, base: Decimal, ctx: RunContext) -> Decimal:
        return base * self._rate(ctx)

    def display_rate(self, base: Decimal, amount: Decimal, ctx: RunContext) -> Decimal:
        return self._rate(ctx) * HUNDRED

    def limit_warnings(self, totals: YearTotals, ctx: RunContext) -> list[str]:
        limit = ctx.table.mrp_amount("monthly_income_limit_mrp")
        out = []
        for month in sorted(totals.income_by_month):
            income = totals.income_by_month[month]
            if income > limit:
                out.append(
                    f"Income for {ctx.tax_year}-{month:02d} ({fmt_kzt(income)}) exceeds the "
                    f"self-employed monthly limit of {fmt_kzt(limit)}"
                )
        return out
