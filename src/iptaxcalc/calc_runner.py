from __future__ import annotations

import datetime
import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from .config import DEFAULT_TAX_SYSTEM
from .deadlines import list_deadlines
from .models import TaxSettings, TransactionRow
from .schemas import TaxCalculation, TxType
from .tax_engine import calculate
from .tax_tables import coerce_regime

logger = logging.getLogger(__name__)


def get_or_create_settings(session: Session, user_id: int, year: int) -> TaxSettings:
    """Tax settings of `year`; a year nobody configured yet gets the default regime. Flushes, never commits."""
    settings = session.scalars(
        select(TaxSettings).where(TaxSettings.user_id == user_id, TaxSettings.year == year)
    ).first()
    if settings is None:
        settings = TaxSettings(user_id=user_id, year=year, tax_system=coerce_regime(DEFAULT_TAX_SYSTEM).value)
        session.add(settings)
        session.flush()
        logger.info("Default tax settings %s for user %s, year %s", settings.tax_system, user_id, year)
    return settings


def year_transactions(session: Session, user_id: int, year: int) -> list[TransactionRow]:
    """Persisted income/expense rows of `year`; transfers are filtered out here already."""
    stmt = (
        select(TransactionRow)
        .where(
            TransactionRow.user_id == user_id,
            TransactionRow.date >= datetime.date(year, 1, 1),
            TransactionRow.date <= datetime.date(year, 12, 31),
            TransactionRow.type != TxType.TRANSFER.value,
        )
        .order_by(TransactionRow.date.asc(), TransactionRow.id.asc())
    )
    return list(session.scalars(stmt))


def run_calculation(session: Session, user_id: int, year: int) -> TaxCalculation:
    settings = get_or_create_settings(session, user_id, year)
    txs = year_transactions(session, user_id, year)
    deadlines = list_deadlines(session, user_id, year)

    result = calculate(txs, settings.tax_system, year, deadlines=deadlines)

    # keep unpaid deadlines showing the current estimate
    shares = {p.quarter: p.amount for p in result.quarterly_payments}
    for d in deadlines:
        if not d.is_paid:
            d.amount = shares.get(d.quarter)
    session.flush()

    logger.info(
        "Calculated %s/%s for user %s: base=%s tax=%s (%d transactions)",
        result.tax_system.value, year, user_id, result.tax_base, result.tax_amount, len(txs),
    )
    return result
