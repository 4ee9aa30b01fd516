# deadlines.py
"""
Quarterly payment deadlines of a user and year.

Due dates come from the regime calendar in the tax tables, so switching the
regime of a year moves the dates of the quarters that are still unpaid.
A paid quarter keeps the date it was paid against.
"""

from __future__ import annotations

import logging
from typing import List

from sqlalchemy import select
from sqlalchemy.orm import Session

from .models import TaxDeadline
from .tax_engine import QUARTERS
from .tax_tables import regime_table

logger = logging.getLogger(__name__)


def list_deadlines(session: Session, user_id: int, year: int) -> List[TaxDeadline]:
    stmt = (
        select(TaxDeadline)
        .where(TaxDeadline.user_id == user_id, TaxDeadline.year == year)
        .order_by(TaxDeadline.quarter.asc())
    )
    return list(session.scalars(stmt))


def ensure_year_deadlines(session: Session, user_id: int, year: int, regime) -> List[TaxDeadline]:
    """Create missing quarters of `year` and refresh due dates of unpaid ones. Flushes, never commits."""
    table = regime_table(year, regime)
    existing = {d.quarter: d for d in list_deadlines(session, user_id, year)}

    created = 0
    for quarter in QUARTERS:
        due = table.due_date(year, quarter)
        row = existing.get(quarter)
        if row is None:
            session.add(TaxDeadline(user_id=user_id, year=year, quarter=quarter, due_date=due, is_paid=False))
            created += 1
        elif not row.is_paid and row.due_date != due:
            row.due_date = due

    session.flush()
    if created:
        logger.info("Created %d deadline(s) for user %s, year %s", created, user_id, year)
    return list_deadlines(session, user_id, year)
