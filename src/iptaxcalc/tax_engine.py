# tax_engine.py
"""
Annual tax calculation for an individual entrepreneur.

Given the transactions of a year and the selected regime, computes the
taxable base, the tax and an evenly split quarterly schedule.

Design:
- Pure logic (no DB calls). Give it rows exposing `type`, `amount`, `date`
  and `is_deductible` (ORM rows, pydantic models or plain dicts); get back a
  `TaxCalculation`.
- Regime specifics live in `rules/` behind the `TaxRule` protocol; rates,
  thresholds and due dates come from the tax tables, keyed by (year, regime).
- `transfer` rows never reach the totals, neither as income nor as expense.
"""

from __future__ import annotations

import datetime
import logging
from decimal import Decimal, ROUND_DOWN
from typing import Any, Dict, Iterable, List, Optional

from .rules.base import RunContext, TaxRule, YearTotals, ZERO
from .rules.general import GeneralRule
from .rules.self_employed import SelfEmployedRule
from .rules.simplified import SimplifiedRule
from .schemas import QuarterlyPayment, TaxCalculation, TaxSystemType, TxType, quantize_money
from .tax_tables import coerce_regime, regime_table

logger = logging.getLogger(__name__)

QUARTERS = (1, 2, 3, 4)

RULES: Dict[TaxSystemType, TaxRule] = {
    rule.regime: rule for rule in (SimplifiedRule(), SelfEmployedRule(), GeneralRule())
}


def rule_for(regime: Any) -> TaxRule:
    return RULES[coerce_regime(regime)]


def _field(tx: Any, name: str, default: Any = None) -> Any:
    if isinstance(tx, dict):
        return tx.get(name, default)
    return getattr(tx, name, default)


def _as_date(value: Any) -> datetime.date:
    if isinstance(value, datetime.datetime):
        return value.date()
    if isinstance(value, datetime.date):
        return value
    return datetime.date.fromisoformat(str(value)[:10])


def summarize(transactions: Iterable[Any], year: int) -> YearTotals:
    """
    Income / deductible-expense totals of `year`.

    Transfers and rows of other years are skipped.
    """
    totals = YearTotals(income=ZERO, expenses=ZERO, income_by_month={})
    for tx in transactions:
        tx_type = str(getattr(_field(tx, "type"), "value", _field(tx, "type")))
        if tx_type == TxType.TRANSFER.value:
            continue
        day = _as_date(_field(tx, "date"))
        if day.year != year:
            continue
        amount = Decimal(str(_field(tx, "amount", "0")))
        if tx_type == TxType.INCOME.value:
            totals.income += amount
            totals.income_by_month[day.month] = totals.income_by_month.get(day.month, ZERO) + amount
        elif tx_type == TxType.EXPENSE.value and _field(tx, "is_deductible", False):
            totals.expenses += amount
    return totals


def quarterly_shares(tax_amount: Decimal) -> List[Decimal]:
    """
    Four equal shares of the annual tax.

    Q1-Q3 are rounded down to the tiyn and Q4 takes the remainder, so the
    shares always add up to `tax_amount` exactly.
    """
    share = (tax_amount / len(QUARTERS)).quantize(Decimal("0.01"), rounding=ROUND_DOWN)
    last = tax_amount - share * (len(QUARTERS) - 1)
    return [share] * (len(QUARTERS) - 1) + [last]


def _paid_quarters(deadlines: Optional[Iterable[Any]], year: int) -> set[int]:
    paid = set()
    for d in deadlines or []:
        if int(_field(d, "year")) == year and _field(d, "is_paid", False):
            paid.add(int(_field(d, "quarter")))
    return paid


def calculate(
    transactions: Iterable[Any],
    regime: Any,
    year: int,
    deadlines: Optional[Iterable[Any]] = None,
    tables: Optional[Dict[int, Any]] = None,
) -> TaxCalculation:
    """
    Compute the annual tax of `year` under `regime`.

    Raises InvalidRegimeError for a regime that is not one of TaxSystemType;
    an empty transaction set is valid and yields zeros.
    """
    rule = rule_for(regime)
    table = regime_table(year, rule.regime, tables)
    ctx = RunContext(table=table, tax_year=year)

    totals = summarize(transactions, year)
    base = quantize_money(rule.taxable_base(totals, ctx))
    tax = quantize_money(rule.tax_amount(base, ctx))
    rate = rule.display_rate(base, tax, ctx)

    paid = _paid_quarters(deadlines, year)
    payments = [
        QuarterlyPayment(
            quarter=q,
            amount=share,
            due_date=table.due_date(year, q),
            is_paid=q in paid,
        )
        for q, share in zip(QUARTERS, quarterly_shares(tax))
    ]

    warnings = rule.limit_warnings(totals, ctx)
    for w in warnings:
        logger.info("limit notice (%s, %s): %s", rule.regime.value, year, w)

    return TaxCalculation(
        tax_system=rule.regime,
        year=year,
        income=quantize_money(totals.income),
        expenses=quantize_money(totals.expenses),
        tax_base=base,
        tax_rate=rate,
        tax_amount=tax,
        quarterly_payments=payments,
        warnings=warnings,
    )
