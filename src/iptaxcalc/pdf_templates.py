# pdf_templates.py
"""
Bank statement layouts for text extracted from PDF statements.

Each bank is a named `StatementTemplate`: a detection predicate over the
statement header plus a line regex that turns one transaction line into a
`StatementRow`. `parse_generic` is the best-effort fallback used when no
template recognises the document.

Adding a bank = adding a template to `TEMPLATES`; the classifier does not change.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, List, Optional, Sequence, Tuple

from .statement_rows import AMOUNT_TOKEN, ParsedRows, StatementRow, detect_currency, parse_amount, parse_date

# Bank names appear in the letterhead; search only there so a transfer
# *to* another bank mentioned in a description does not flip the template.
HEADER_LINES = 20

CURRENCY = r"(?:₸|KZT|USD|EUR|RUB|T)"
DATE_SHORT = r"\d{2}\.\d{2}\.\d{2}(?:\d{2})?"
DATE_LONG = r"\d{2}\.\d{2}\.\d{4}"

# (date, signed amount, description, counterparty, currency)
Fields = Tuple[str, Decimal, str, Optional[str], Optional[str]]


@dataclass(frozen=True)
class StatementTemplate:
    name: str
    markers: Tuple[str, ...]
    line_re: re.Pattern
    # a line starting like this is a transaction line; if line_re then fails it is reported
    row_start_re: re.Pattern
    extract: Callable[[re.Match], Fields]

    def marker_position(self, text: str) -> Optional[int]:
        """Offset of the first bank marker in the statement header, None if absent."""
        head = "\n".join(text.splitlines()[:HEADER_LINES]).lower()
        found = [pos for pos in (head.find(m) for m in self.markers) if pos >= 0]
        return min(found) if found else None

    def detect(self, text: str) -> bool:
        return self.marker_position(text) is not None

    def parse(self, text: str) -> ParsedRows:
        out = ParsedRows()
        for line_no, raw in enumerate(text.splitlines(), start=1):
            line = " ".join(raw.split())
            if not line or not self.row_start_re.match(line):
                continue
            m = self.line_re.match(line)
            if not m:
                out.error(line_no, f"unrecognised transaction line {line!r}")
                continue
            try:
                day_raw, amount, description, counterparty, currency = self.extract(m)
                day = parse_date(day_raw)
            except ValueError as e:
                out.error(line_no, str(e))
                continue
            if amount == 0:
                out.error(line_no, "zero amount")
                continue
            out.rows.append(
                StatementRow(
                    line_no=line_no,
                    date=day,
                    amount=amount,
                    description=description.strip(),
                    counterparty=(counterparty or "").strip() or None,
                    currency=detect_currency(currency),
                )
            )
        return out


def _signed(sign: str, amount: str) -> Decimal:
    value = abs(parse_amount(amount))
    return -value if sign in ("-", "−") else value


# ---------------------------------------------------------------------------
# Kaspi Gold / Kaspi Business
#   01.03.26 - 50 000,00 ₸ Перевод На Kaspi Депозит
# ---------------------------------------------------------------------------
def _kaspi(m: re.Match) -> Fields:
    operation, details = m["op"], m["details"]
    return (
        m["date"],
        _signed(m["sign"], m["amount"]),
        f"{operation} {details}".strip(),
        details or None,
        m["cur"],
    )


KASPI = StatementTemplate(
    name="kaspi",
    markers=("kaspi bank", "kaspi gold", "kaspi business", "kaspi.kz"),
    line_re=re.compile(
        rf"^(?P<date>{DATE_SHORT})\s+(?P<sign>[+\-−])\s?(?P<amount>{AMOUNT_TOKEN})\s*(?P<cur>{CURRENCY})?"
        rf"\s+(?P<op>\S+)\s*(?P<details>.*)$"
    ),
    row_start_re=re.compile(rf"^{DATE_SHORT}\s+[+\-−]"),
    extract=_kaspi,
)


# ---------------------------------------------------------------------------
# Halyk Bank
#   15.03.2026 16.03.2026 Оплата услуг ТОО Ромашка -12 500,00 KZT
# ---------------------------------------------------------------------------
def _halyk(m: re.Match) -> Fields:
    return (m["date"], parse_amount(m["amount"]), m["desc"], None, m["cur"])


HALYK = StatementTemplate(
    name="halyk",
    markers=("halyk", "народный банк", "halyk bank"),
    line_re=re.compile(
        rf"^(?P<date>{DATE_LONG})\s+(?:{DATE_LONG}\s+)?(?P<desc>.+?)\s+(?P<amount>{AMOUNT_TOKEN})"
        rf"\s*(?P<cur>{CURRENCY})?$"
    ),
    row_start_re=re.compile(rf"^{DATE_LONG}\s"),
    extract=_halyk,
)


# ---------------------------------------------------------------------------
# ForteBank: separate debit / credit columns
#   15.03.2026 Оплата по счету 12 500,00 0,00
# ---------------------------------------------------------------------------
def _forte(m: re.Match) -> Fields:
    debit = abs(parse_amount(m["debit"]))
    credit = abs(parse_amount(m["credit"]))
    return (m["date"], credit - debit, m["desc"], None, None)


FORTE = StatementTemplate(
    name="forte",
    markers=("fortebank", "forte bank", "форте"),
    line_re=re.compile(
        rf"^(?P<date>{DATE_LONG})\s+(?P<desc>.+?)\s+(?P<debit>{AMOUNT_TOKEN})\s+(?P<credit>{AMOUNT_TOKEN})$"
    ),
    row_start_re=re.compile(rf"^{DATE_LONG}\s"),
    extract=_forte,
)


# ---------------------------------------------------------------------------
# Jusan Bank
#   15.03.2026 10:42 -12 500.00 KZT Оплата Magnum
# ---------------------------------------------------------------------------
def _jusan(m: re.Match) -> Fields:
    return (m["date"], parse_amount(m["amount"]), m["desc"], None, m["cur"])


JUSAN = StatementTemplate(
    name="jusan",
    markers=("jusan", "жусан"),
    line_re=re.compile(
        rf"^(?P<date>{DATE_LONG})(?:\s+\d{{2}}:\d{{2}}(?::\d{{2}})?)?\s+(?P<amount>{AMOUNT_TOKEN})"
        rf"\s*(?P<cur>{CURRENCY})?\s+(?P<desc>.+)$"
    ),
    row_start_re=re.compile(rf"^{DATE_LONG}\s"),
    extract=_jusan,
)


TEMPLATES: List[StatementTemplate] = [KASPI, HALYK, FORTE, JUSAN]


def select_template(text: str, templates: Sequence[StatementTemplate] = TEMPLATES) -> Optional[StatementTemplate]:
    """The template whose bank is named first; the letterhead precedes any mention in rows."""
    best: Optional[Tuple[int, StatementTemplate]] = None
    for template in templates:
        pos = template.marker_position(text)
        if pos is not None and (best is None or pos < best[0]):
            best = (pos, template)
    return best[1] if best else None


# ---------------------------------------------------------------------------
# Generic fallback: any line that starts with a date and carries an amount
# ---------------------------------------------------------------------------
_GENERIC_DATE_RE = re.compile(r"^(?P<date>\d{4}-\d{2}-\d{2}|\d{2}[./]\d{2}[./]\d{2}(?:\d{2})?)\b[\s;,|]*(?P<rest>.*)$")
_GENERIC_AMOUNT_RE = re.compile(rf"(?<![\w.,]){AMOUNT_TOKEN}(?![\w.,])")
_CURRENCY_AFTER_RE = re.compile(rf"^\s*(?P<cur>{CURRENCY})(?!\w)", re.IGNORECASE)


def parse_generic(text: str) -> ParsedRows:
    """
    Best effort for unknown layouts.

    The last amount-looking token on a dated line is the amount; an amount
    without an explicit sign is taken as income and flagged with a warning.
    """
    out = ParsedRows()
    for line_no, raw in enumerate(text.splitlines(), start=1):
        line = " ".join(raw.split())
        m = _GENERIC_DATE_RE.match(line)
        if not m:
            continue
        try:
            day = parse_date(m["date"])
        except ValueError as e:
            out.error(line_no, str(e))
            continue

        rest = m["rest"]
        amounts = list(_GENERIC_AMOUNT_RE.finditer(rest))
        if not amounts:
            out.error(line_no, "no amount found")
            continue
        token = amounts[-1]
        try:
            amount = parse_amount(token.group(0))
        except ValueError as e:
            out.error(line_no, str(e))
            continue
        if amount == 0:
            out.error(line_no, "zero amount")
            continue
        if token.group(0).strip()[0] not in "+-−":
            out.warn(line_no, "amount has no sign, treated as income")

        tail = rest[token.end():]
        currency = None
        cur = _CURRENCY_AFTER_RE.match(tail)
        if cur:
            currency = detect_currency(cur["cur"])
            tail = tail[cur.end():]
        description = (rest[: token.start()] + " " + tail).strip(" ;,|")
        out.rows.append(
            StatementRow(
                line_no=line_no,
                date=day,
                amount=amount,
                description=" ".join(description.split()),
                currency=currency,
            )
        )
    return out
