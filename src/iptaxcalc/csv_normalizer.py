# csv_normalizer.py
"""
CSV statement parsing and normalization to `StatementRow`s.

Responsibilities:
- Find the delimiter (';', tab or ',') of an already decoded statement.
- Normalize header names (case-insensitive, English or Russian aliases),
  skipping preamble lines banks put above the header.
- Validate required columns are present (a date and an amount, or debit/credit).
- Accept header-less exports laid out as: date, signed amount, description[, counterparty].
- Parse each row, returning rows plus per-row errors so the API can preview.

Design choices:
- This module is "pure" (no DB calls). It converts text -> typed rows.
- A bad row never aborts the file: it is reported and skipped.
"""

from __future__ import annotations

import csv
import io
import re
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from .schemas import TxType
from .statement_rows import ParsedRows, StatementRow, detect_currency, parse_amount, parse_date

HEADER_ALIASES: Dict[str, set[str]] = {
    "date": {"date", "дата", "дата операции", "дата транзакции", "operation date", "transaction date",
             "posting date", "value date"},
    "amount": {"amount", "sum", "сумма", "сумма операции", "сумма в валюте счета", "amount kzt"},
    "debit": {"debit", "дебет", "расход", "списание", "withdrawal", "outflow"},
    "credit": {"credit", "кредит", "приход", "поступление", "зачисление", "inflow"},
    "direction": {"type", "тип", "тип операции", "direction", "вид операции"},
    "description": {"description", "описание", "назначение", "назначение платежа", "детали", "details",
                    "операция", "purpose", "memo", "comment", "комментарий"},
    "counterparty": {"counterparty", "контрагент", "получатель/отправитель", "отправитель", "получатель",
                     "payee", "payer", "beneficiary", "корреспондент"},
    "currency": {"currency", "валюта", "ccy"},
}

# values of a direction column that mean money going out / coming in / moving between own accounts
OUTGOING = {"expense", "debit", "out", "-", "расход", "списание", "дебет", "outflow"}
INCOMING = {"income", "credit", "in", "+", "приход", "поступление", "зачисление", "кредит", "inflow"}
TRANSFER = {"transfer", "перевод между счетами", "между своими счетами"}
# recorded as the reason when the type column itself says transfer
TRANSFER_COLUMN_RULE = "type_column"

POSITIONAL_COLUMNS = ("date", "amount", "description", "counterparty")

# ';' first: Kazakhstani exports use a decimal comma, which makes ',' ambiguous
DELIMITERS = (";", "\t", ",")

# how many leading rows may be preamble before the header
HEADER_SCAN_ROWS = 15

# a header-less data row starts with a bare date (optionally with a time)
_DATE_CELL_RE = re.compile(r"^\d{1,4}[./-]\d{1,2}[./-]\d{2,4}(?:[ T]\d{1,2}:\d{2}(?::\d{2})?)?$")


def _normalize_header(h: str) -> str:
    """Lowercase and strip whitespace/BOM so headers are matched flexibly."""
    return (h or "").replace("\ufeff", "").strip().strip('"').lower()


def _map_headers(headers: List[str]) -> Dict[str, int]:
    """Canonical field -> column index (first matching column wins)."""
    mapping: Dict[str, int] = {}
    for idx, raw in enumerate(headers):
        norm = _normalize_header(raw)
        for canonical, aliases in HEADER_ALIASES.items():
            if norm in aliases and canonical not in mapping:
                mapping[canonical] = idx
    return mapping


def _usable_header(columns: Dict[str, int]) -> bool:
    return "date" in columns and ("amount" in columns or "debit" in columns or "credit" in columns)


def _read(text: str, delimiter: str) -> List[List[str]]:
    return list(csv.reader(io.StringIO(text, newline=""), delimiter=delimiter))


def _is_blank(row: List[str]) -> bool:
    return not any(c.strip() for c in row)


@dataclass
class CsvLayout:
    delimiter: str
    columns: Dict[str, int]
    # index into the raw csv rows; -1 for header-less files
    header_index: int

    @property
    def has_header(self) -> bool:
        return self.header_index >= 0


def detect_layout(text: str) -> Optional[CsvLayout]:
    """
    Decide whether `text` is a delimited statement and how its columns map.

    Returns None when neither a usable header nor a positional data row is found.
    """
    for delimiter in DELIMITERS:
        rows = _read(text, delimiter)
        scanned = 0
        for idx, row in enumerate(rows):
            if _is_blank(row):
                continue
            scanned += 1
            if scanned > HEADER_SCAN_ROWS:
                break
            if len(row) < 2:
                continue
            columns = _map_headers(row)
            if _usable_header(columns):
                return CsvLayout(delimiter=delimiter, columns=columns, header_index=idx)

    # header-less: some leading row must already look like data
    for delimiter in DELIMITERS:
        rows = [r for r in _read(text, delimiter) if not _is_blank(r)]
        if any(_looks_like_data(r) for r in rows[:HEADER_SCAN_ROWS]):
            positional = {name: i for i, name in enumerate(POSITIONAL_COLUMNS)}
            return CsvLayout(delimiter=delimiter, columns=positional, header_index=-1)

    return None


def _looks_like_data(row: List[str]) -> bool:
    if len(row) < 2 or not _DATE_CELL_RE.match(row[0].strip()):
        return False
    try:
        parse_date(row[0])
        parse_amount(row[1])
    except ValueError:
        return False
    return True


def _cell(row: List[str], columns: Dict[str, int], name: str) -> str:
    idx = columns.get(name)
    if idx is None or idx >= len(row):
        return ""
    return (row[idx] or "").strip()


def _signed_amount(row: List[str], columns: Dict[str, int]) -> Tuple[Decimal, str]:
    """Returns (signed amount, raw text the amount came from)."""
    if "amount" in columns:
        raw = _cell(row, columns, "amount")
        amount = parse_amount(raw)
        direction = _cell(row, columns, "direction").lower()
        if direction in OUTGOING:
            amount = -abs(amount)
        elif direction in INCOMING:
            amount = abs(amount)
        return amount, raw

    debit_raw = _cell(row, columns, "debit")
    credit_raw = _cell(row, columns, "credit")
    if not debit_raw and not credit_raw:
        raise ValueError("missing amount")
    debit = abs(parse_amount(debit_raw)) if debit_raw else Decimal("0")
    credit = abs(parse_amount(credit_raw)) if credit_raw else Decimal("0")
    return credit - debit, debit_raw or credit_raw


def parse_rows(text: str, layout: CsvLayout) -> ParsedRows:
    """
    Parse delimited text into signed rows.

    Row numbers in messages are 1-based positions in the file.
    """
    out = ParsedRows()
    rows = _read(text, layout.delimiter)
    columns = layout.columns

    for idx, row in enumerate(rows):
        if idx <= layout.header_index or _is_blank(row):
            continue
        line_no = idx + 1

        date_raw = _cell(row, columns, "date")
        if not date_raw:
            out.error(line_no, "missing date")
            continue
        try:
            day = parse_date(date_raw)
        except ValueError as e:
            out.error(line_no, str(e))
            continue

        try:
            amount, amount_raw = _signed_amount(row, columns)
        except ValueError as e:
            out.error(line_no, str(e))
            continue
        if amount == 0:
            out.error(line_no, "zero amount")
            continue

        currency = detect_currency(_cell(row, columns, "currency")) or detect_currency(amount_raw)

        stmt_row = StatementRow(
            line_no=line_no,
            date=day,
            amount=amount,
            description=_cell(row, columns, "description"),
            counterparty=_cell(row, columns, "counterparty") or None,
            currency=currency,
            currency_column="currency" in columns,
        )
        # the type column may already mark own-account movements
        if _cell(row, columns, "direction").lower() in TRANSFER:
            stmt_row.type = TxType.TRANSFER
            stmt_row.transfer_rule = TRANSFER_COLUMN_RULE
        out.rows.append(stmt_row)

    return out
