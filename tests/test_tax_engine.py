from datetime import date
from decimal import Decimal

import pytest

from iptaxcalc.errors import InvalidRegimeError
from iptaxcalc.schemas import TaxSystemType
from iptaxcalc.tax_engine import calculate, quarterly_shares, summarize

# 2026: МРП 4 325
THRESHOLD_2026 = Decimal("994750000")  # 230 000 МРП
SIMPLIFIED_LIMIT_2026 = Decimal("2595000000")  # 600 000 МРП
SELF_EMPLOYED_MONTHLY_2026 = Decimal("1297500")  # 300 МРП


def tx(kind, amount, day=date(2026, 3, 1), deductible=False):
    return {"type": kind, "amount": Decimal(str(amount)), "date": day, "is_deductible": deductible}


def test_general_regime_reference_example():
    txs = [tx("income", 1000000), tx("expense", 300000, deductible=True)]
    calc = calculate(txs, "general", 2026)

    assert calc.tax_system == TaxSystemType.GENERAL
    assert calc.income == Decimal("1000000.00")
    assert calc.expenses == Decimal("300000.00")
    assert calc.tax_base == Decimal("700000.00")
    assert calc.tax_amount == Decimal("70000.00")
    assert calc.tax_rate == Decimal("10.00")
    assert [p.amount for p in calc.quarterly_payments] == [Decimal("17500.00")] * 4
    assert [p.due_date for p in calc.quarterly_payments] == [
        date(2026, 5, 25), date(2026, 8, 25), date(2026, 11, 25), date(2027, 2, 25),
    ]
    assert calc.is_estimate is True


@pytest.mark.parametrize("regime", ["simplified_4", "self_employed"])
@pytest.mark.parametrize("expenses", [0, 250000, 5000000])
def test_flat_regimes_ignore_expenses(regime, expenses):
    txs = [tx("income", "1234567.89"), tx("expense", expenses, deductible=True)]
    calc = calculate(txs, regime, 2026)
    assert calc.tax_base == Decimal("1234567.89")
    assert calc.tax_amount == Decimal("49382.72")  # 4%, half-up
    assert calc.tax_rate == Decimal("4.00")


def test_general_base_never_negative():
    txs = [tx("income", 100000), tx("expense", 400000, deductible=True)]
    calc = calculate(txs, "general", 2026)
    assert calc.tax_base == Decimal("0.00")
    assert calc.tax_amount == Decimal("0.00")
    # lower bracket shown when there is nothing to tax
    assert calc.tax_rate == Decimal("10.00")


def test_general_progressive_above_threshold():
    base = Decimal("1000000000")
    calc = calculate([tx("income", base)], "general", 2026)
    expected = THRESHOLD_2026 * Decimal("0.10") + (base - THRESHOLD_2026) * Decimal("0.15")
    assert calc.tax_amount == expected.quantize(Decimal("0.01"))
    assert calc.tax_amount == Decimal("100262500.00")
    assert calc.tax_rate == Decimal("10.03")


def test_general_at_threshold_is_lower_rate_only():
    calc = calculate([tx("income", THRESHOLD_2026)], "general", 2026)
    assert calc.tax_amount == THRESHOLD_2026 * Decimal("0.10")


def test_non_deductible_expenses_do_not_reduce_general_base():
    txs = [tx("income", 500000), tx("expense", 200000, deductible=False)]
    calc = calculate(txs, "general", 2026)
    assert calc.expenses == Decimal("0.00")
    assert calc.tax_base == Decimal("500000.00")


def test_transfers_and_other_years_are_ignored():
    txs = [
        tx("income", 100000),
        tx("transfer", 50000),
        tx("income", 999999, day=date(2025, 12, 31)),
        tx("expense", 70000, day=date(2027, 1, 1), deductible=True),
    ]
    totals = summarize(txs, 2026)
    assert totals.income == Decimal("100000")
    assert totals.expenses == Decimal("0")


def test_empty_set_yields_zeros():
    calc = calculate([], "simplified_4", 2026)
    assert calc.income == calc.expenses == calc.tax_base == calc.tax_amount == Decimal("0")
    assert [p.amount for p in calc.quarterly_payments] == [Decimal("0")] * 4
    assert calc.warnings == []


def test_unknown_regime_is_rejected():
    with pytest.raises(InvalidRegimeError):
        calculate([tx("income", 1000)], "patent", 2026)


@pytest.mark.parametrize("amount", ["0.01", "0.03", "100.01", "70000.00", "49382.72", "1234567.89"])
def test_quarterly_shares_sum_to_tax(amount):
    tax = Decimal(amount)
    shares = quarterly_shares(tax)
    assert len(shares) == 4
    assert sum(shares) == tax
    assert all(s >= 0 for s in shares)
    # Q1..Q3 equal, Q4 carries the remainder
    assert shares[0] == shares[1] == shares[2] <= shares[3]


def test_quarterly_remainder_goes_to_q4():
    assert quarterly_shares(Decimal("100.01")) == [Decimal("25.00")] * 3 + [Decimal("25.01")]


def test_paid_flag_comes_from_deadlines():
    deadlines = [
        {"year": 2026, "quarter": 2, "is_paid": True},
        {"year": 2026, "quarter": 3, "is_paid": False},
        {"year": 2025, "quarter": 1, "is_paid": True},
    ]
    calc = calculate([tx("income", 400000)], "simplified_4", 2026, deadlines=deadlines)
    assert [p.is_paid for p in calc.quarterly_payments] == [False, True, False, False]


def test_simplified_limit_warns_but_does_not_change_tax():
    income = SIMPLIFIED_LIMIT_2026 + 1
    calc = calculate([tx("income", income)], "simplified_4", 2026)
    assert calc.tax_amount == (income * Decimal("0.04")).quantize(Decimal("0.01"))
    assert len(calc.warnings) == 1
    assert "simplified" in calc.warnings[0]


def test_self_employed_monthly_limit_warns_per_month():
    txs = [
        tx("income", SELF_EMPLOYED_MONTHLY_2026 + 1, day=date(2026, 3, 10)),
        tx("income", 1000, day=date(2026, 4, 10)),
        tx("income", SELF_EMPLOYED_MONTHLY_2026, day=date(2026, 5, 10)),  # at the limit: fine
    ]
    calc = calculate(txs, "self_employed", 2026)
    assert len(calc.warnings) == 1
    assert "2026-03" in calc.warnings[0]


def test_year_without_table_uses_latest_earlier_table():
    calc = calculate([tx("income", 1000, day=date(2030, 6, 1))], "simplified_4", 2030)
    assert calc.tax_amount == Decimal("40.00")
    assert calc.quarterly_payments[0].due_date == date(2030, 5, 25)
    assert calc.quarterly_payments[3].due_date == date(2031, 2, 25)


def test_objects_with_attributes_are_accepted():
    class Row:
        def __init__(self, type, amount, date, is_deductible=False):
            self.type, self.amount, self.date, self.is_deductible = type, amount, date, is_deductible

    calc = calculate([Row("income", Decimal("250000"), date(2026, 2, 1))], TaxSystemType.SIMPLIFIED_4, 2026)
    assert calc.tax_amount == Decimal("10000.00")
