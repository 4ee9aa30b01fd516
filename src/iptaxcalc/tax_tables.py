"""YAML loader for the per-year tax tables (rates, limits, due-date calendars)."""
from __future__ import annotations

import datetime
import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, List

import yaml

from .config import TAX_TABLES_PATH
from .errors import InvalidRegimeError, TaxTableError
from .schemas import TaxSystemType

logger = logging.getLogger(__name__)

# Cache for loaded tables, keyed by resolved path
_tables_cache: Dict[str, Dict[int, Any]] = {}


@dataclass(frozen=True)
class DueDate:
    quarter: int
    month: int
    day: int
    year_offset: int = 0


@dataclass(frozen=True)
class RegimeTable:
    """Parameters of one regime for one tax year."""

    year: int
    regime: TaxSystemType
    mrp: Decimal
    params: Dict[str, Any] = field(default_factory=dict)
    due_dates: List[DueDate] = field(default_factory=list)

    def decimal(self, key: str) -> Decimal:
        try:
            return Decimal(str(self.params[key]))
        except KeyError:
            raise TaxTableError(f"{self.year}/{self.regime.value}: missing parameter {key!r}") from None
        except InvalidOperation:
            raise TaxTableError(f"{self.year}/{self.regime.value}: {key!r} is not a number") from None

    def mrp_amount(self, key: str) -> Decimal:
        """A limit given in МРП converted to tenge."""
        return self.decimal(key) * self.mrp

    def due_date(self, year: int, quarter: int) -> datetime.date:
        for d in self.due_dates:
            if d.quarter == quarter:
                return datetime.date(year + d.year_offset, d.month, d.day)
        raise TaxTableError(f"{self.year}/{self.regime.value}: no due date for quarter {quarter}")


def load_tax_tables(path: Path | None = None, force_reload: bool = False) -> Dict[int, Any]:
    """
    Load the tax tables YAML.

    Args:
        path: Alternative YAML file (defaults to the configured one)
        force_reload: Force reload from disk even if cached

    Returns:
        Mapping year -> raw year section
    """
    path = Path(path or TAX_TABLES_PATH)
    key = str(path.resolve())
    if key in _tables_cache and not force_reload:
        return _tables_cache[key]

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError:
        raise TaxTableError(f"Tax tables not found: {path}") from None
    except yaml.YAMLError as e:
        raise TaxTableError(f"Error parsing tax tables {path}: {e}") from e

    years = {int(y): section for y, section in (data.get("years") or {}).items()}
    if not years:
        raise TaxTableError(f"Tax tables {path} define no years")

    _tables_cache[key] = years
    logger.info("Loaded tax tables for years %s from %s", sorted(years), path)
    return years


def _resolve_year(years: Dict[int, Any], year: int) -> int:
    """Latest configured year not after `year`; earliest one if `year` precedes them all."""
    candidates = [y for y in years if y <= year]
    if candidates:
        return max(candidates)
    return min(years)


def coerce_regime(regime: Any) -> TaxSystemType:
    if isinstance(regime, TaxSystemType):
        return regime
    try:
        return TaxSystemType(str(regime))
    except ValueError:
        raise InvalidRegimeError(regime) from None


def regime_table(year: int, regime: Any, tables: Dict[int, Any] | None = None) -> RegimeTable:
    regime = coerce_regime(regime)
    years = tables if tables is not None else load_tax_tables()

    table_year = _resolve_year(years, year)
    if table_year != year:
        logger.debug("No tax table for %s, using %s", year, table_year)
    section = years[table_year]

    raw = (section.get("regimes") or {}).get(regime.value)
    if raw is None:
        raise TaxTableError(f"{table_year}: regime {regime.value!r} is not configured")

    params = {k: v for k, v in raw.items() if k != "due_dates"}
    due = [
        DueDate(
            quarter=int(d["quarter"]),
            month=int(d["month"]),
            day=int(d["day"]),
            year_offset=int(d.get("year_offset", 0)),
        )
        for d in raw.get("due_dates") or []
    ]
    return RegimeTable(
        year=table_year,
        regime=regime,
        mrp=Decimal(str(section["mrp"])),
        params=params,
        due_dates=due,
    )
