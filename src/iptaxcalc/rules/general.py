from __future__ import annotations
from decimal import Decimal, ROUND_HALF_UP
from iptaxcalc.schemas import TaxSystemType
from .base import HUNDRED, ZERO, TaxRule, RunContext, YearTotals


class GeneralRule(TaxRule):
    """Generally established regime: progressive scale on income minus deductible expenses."""

    regime = TaxSystemType.GENERAL

    def taxable_base(self, totals: YearTotals, ctx: RunContext) -> Decimal:
        # expenses above income never produce a negative base
        return max(ZERO, totals.income - totals.expenses)

    def tax_amount(self, base: Decimal, ctx: RunContext) -> Decimal:
        threshold = ctx.table.mrp_amount("threshold_mrp")
        lower = ctx.table.decimal("lower_rate")
        upper = ctx.table.decimal("upper_rate")
        if base <= threshold:
            return base * lower
        return threshold * lower + (base - threshold) * upper

    def display_rate(self, base: Decimal, amount: Decimal, ctx: RunContext) -> Decimal:
        if base <= 0:
            return ctx.table.decimal("lower_rate") * HUNDRED
        return (amount / base * HUNDRED).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)

    def limit_warnings(self, totals: YearTotals, ctx: RunContext) -> list[str]:
        return []
