from datetime import date
from decimal import Decimal

import pytest

from iptaxcalc.errors import InvalidRegimeError, TaxTableError
from iptaxcalc.rules.base import RunContext, YearTotals
from iptaxcalc.tax_engine import RULES, calculate, rule_for
from iptaxcalc.tax_tables import load_tax_tables, regime_table
from iptaxcalc.schemas import TaxSystemType


def test_shipped_tables_cover_2025_and_2026():
    years = load_tax_tables(force_reload=True)
    assert {2025, 2026} <= set(years)
    assert regime_table(2025, "simplified_4").mrp == Decimal("3932")
    assert regime_table(2026, "simplified_4").mrp == Decimal("4325")


def test_limits_are_converted_from_mrp():
    assert regime_table(2026, "general").mrp_amount("threshold_mrp") == Decimal("994750000")
    assert regime_table(2025, "general").mrp_amount("threshold_mrp") == Decimal("904360000")
    assert regime_table(2026, "self_employed").mrp_amount("monthly_income_limit_mrp") == Decimal("1297500")


def test_year_before_first_table_uses_earliest():
    assert regime_table(2019, "simplified_4").year == 2025


def test_unknown_regime():
    with pytest.raises(InvalidRegimeError):
        regime_table(2026, "retail_tax")


def test_missing_file(tmp_path):
    with pytest.raises(TaxTableError):
        load_tax_tables(tmp_path / "nope.yaml")


def test_tables_without_years(tmp_path):
    path = tmp_path / "empty.yaml"
    path.write_text("years: {}\n", encoding="utf-8")
    with pytest.raises(TaxTableError):
        load_tax_tables(path)


def test_custom_tables_drive_the_engine(tmp_path):
    path = tmp_path / "tables.yaml"
    path.write_text(
        """
years:
  2026:
    mrp: 1000
    regimes:
      simplified_4:
        rate: "0.03"
        annual_income_limit_mrp: 10
        due_dates:
          - {quarter: 1, month: 4, day: 15}
          - {quarter: 2, month: 7, day: 15}
          - {quarter: 3, month: 10, day: 15}
          - {quarter: 4, month: 1, day: 15, year_offset: 1}
""",
        encoding="utf-8",
    )
    tables = load_tax_tables(path)
    txs = [{"type": "income", "amount": Decimal("20000"), "date": date(2026, 1, 5)}]
    calc = calculate(txs, "simplified_4", 2026, tables=tables)

    assert calc.tax_amount == Decimal("600.00")
    assert calc.tax_rate == Decimal("3.00")
    assert calc.quarterly_payments[3].due_date == date(2027, 1, 15)
    # 20 000 > 10 МРП * 1 000
    assert len(calc.warnings) == 1


def test_regime_missing_from_year(tmp_path):
    path = tmp_path / "partial.yaml"
    path.write_text("years:\n  2026:\n    mrp: 4325\n    regimes: {}\n", encoding="utf-8")
    with pytest.raises(TaxTableError):
        regime_table(2026, "general", load_tax_tables(path))


def test_every_regime_has_a_rule():
    assert set(RULES) == set(TaxSystemType)
    for regime in TaxSystemType:
        assert rule_for(regime.value).regime == regime


def test_general_rule_directly():
    rule = rule_for("general")
    ctx = RunContext(table=regime_table(2026, "general"), tax_year=2026)
    totals = YearTotals(income=Decimal("900"), expenses=Decimal("1000"))
    assert rule.taxable_base(totals, ctx) == 0
    assert rule.limit_warnings(totals, ctx) == []
