# statement_rows.py
"""
Shared row model and field parsers for the statement parsers.

Every parser (CSV, bank PDF templates, generic fallback) produces
`StatementRow`s with a *signed* amount; the classifier turns them into
unsigned `ParsedTransaction`s afterwards.
"""

from __future__ import annotations

import datetime
import re
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import List, Optional

from .schemas import TxType

DATE_FORMATS = ("%Y-%m-%d", "%d.%m.%Y", "%d.%m.%y", "%d/%m/%Y", "%Y/%m/%d", "%d-%m-%Y")

# 1 234 567,89 / 1234567.89 / -12 500,00 (thousands groups of exactly three digits)
AMOUNT_TOKEN = r"[+\-−]?\s?(?:\d{1,3}(?:[ \u00a0\u202f]\d{3})+|\d+)(?:[.,]\d{1,2})?"

CURRENCY_MARKERS = (
    ("KZT", ("₸", "kzt", "тг", "тенге")),
    ("USD", ("$", "usd")),
    ("EUR", ("€", "eur")),
    ("RUB", ("₽", "rub", "руб")),
)
BASE_CURRENCY = "KZT"

_AMOUNT_CLEAN_RE = re.compile(r"[\s\u00a0\u202f₸$€₽']|kzt|usd|eur|rub|тг|руб", re.IGNORECASE)
_NUMBER_RE = re.compile(r"^[+-]?\d+(\.\d+)?$")


@dataclass
class StatementRow:
    line_no: int
    date: datetime.date
    amount: Decimal  # signed: negative = money out
    description: str = ""
    counterparty: Optional[str] = None
    currency: Optional[str] = None
    currency_column: bool = False
    type: TxType = TxType.INCOME
    transfer_rule: Optional[str] = None

    def __post_init__(self) -> None:
        self.type = TxType.EXPENSE if self.amount < 0 else TxType.INCOME

    @property
    def magnitude(self) -> Decimal:
        return abs(self.amount)

    @property
    def text(self) -> str:
        return f"{self.description} {self.counterparty or ''}".strip()


@dataclass
class ParsedRows:
    rows: List[StatementRow] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def error(self, line_no: int, message: str) -> None:
        self.errors.append(f"Row {line_no}: {message}")

    def warn(self, line_no: int, message: str) -> None:
        self.warnings.append(f"Row {line_no}: {message}")


def parse_date(value: str) -> datetime.date:
    """
    Parse the date formats Kazakhstani banks export.

    Accepts a trailing time part ('15.03.2026 10:42', '2026-03-15T10:42:00').
    Raises ValueError when nothing matches.
    """
    if value is None:
        raise ValueError("missing date")
    s = str(value).strip()
    if not s:
        raise ValueError("missing date")
    s = s.split("T", 1)[0] if re.match(r"^\d{4}-\d{2}-\d{2}T", s) else s.split(" ", 1)[0]
    for fmt in DATE_FORMATS:
        try:
            return datetime.datetime.strptime(s, fmt).date()
        except ValueError:
            continue
    raise ValueError(f"invalid date {value!r}")


def parse_amount(value: str) -> Decimal:
    """
    Parse a signed money amount.

    Handles space/nbsp thousands separators, ',' or '.' decimal separators,
    currency symbols, the unicode minus and accounting parentheses.
    Raises ValueError when the text is not a number.
    """
    if value is None:
        raise ValueError("missing amount")
    s = str(value).strip()
    if not s:
        raise ValueError("missing amount")

    negative = False
    if s.startswith("(") and s.endswith(")"):
        negative, s = True, s[1:-1]
    s = s.replace("−", "-").replace("–", "-")
    s = _AMOUNT_CLEAN_RE.sub("", s)
    if s.endswith("-"):
        negative, s = True, s[:-1]
    if s.startswith("-"):
        negative, s = not negative, s[1:]
    elif s.startswith("+"):
        s = s[1:]

    if "," in s and "." in s:
        # the rightmost separator is the decimal one
        if s.rfind(",") > s.rfind("."):
            s = s.replace(".", "").replace(",", ".")
        else:
            s = s.replace(",", "")
    elif "," in s:
        if re.search(r",\d{1,2}$", s) and s.count(",") == 1:
            s = s.replace(",", ".")
        else:
            s = s.replace(",", "")
    elif s.count(".") > 1:
        s = s.replace(".", "")

    if not _NUMBER_RE.match(s):
        raise ValueError(f"invalid amount {value!r}")
    try:
        d = Decimal(s)
    except InvalidOperation:
        raise ValueError(f"invalid amount {value!r}") from None
    return -d if negative else d


def detect_currency(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    s = str(value).strip().lower()
    for code, markers in CURRENCY_MARKERS:
        if any(m in s for m in markers):
            return code
    s = s.upper()
    return s if re.fullmatch(r"[A-Z]{3}", s) else None
