# statement_parser.py
"""
Statement Classifier: raw statement bytes -> candidate transactions.

Pipeline:
1. Decide the input kind (PDF by mime type or magic bytes, otherwise text).
2. Pick a parser from the registry: CSV layout for delimited text, a bank
   template for PDF text, the generic line parser as a last resort.
3. Reclassify own-account movements as `transfer` (see transfer_rules).
4. Emit unsigned `ParsedTransaction`s plus row-level errors and warnings.

Nothing here touches the database; the result is a preview the user confirms
before anything is imported. Identical bytes always give identical output.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from .csv_normalizer import detect_layout, parse_rows
from .errors import StatementFormatError
from .pdf_templates import parse_generic, select_template
from .schemas import ParsedTransaction, quantize_money
from .statement_rows import BASE_CURRENCY, ParsedRows
from .transfer_rules import TransferRuleSet, load_transfer_rules
from .utils_files import extract_pdf_text

logger = logging.getLogger(__name__)

PDF_MIME = "application/pdf"
TEXT_MIME_TYPES = {
    "text/csv",
    "text/plain",
    "text/comma-separated-values",
    "application/csv",
    "application/vnd.ms-excel",
    "application/octet-stream",
}

GENERIC_PARSER = "generic"
CSV_PARSER = "csv"


@dataclass
class ParseResult:
    transactions: List[ParsedTransaction] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    parser: str = GENERIC_PARSER

    @property
    def success(self) -> bool:
        return bool(self.transactions)


def _is_pdf(file_bytes: bytes, mime: str) -> bool:
    return mime == PDF_MIME or file_bytes.lstrip()[:5] == b"%PDF-"


def decode_text(file_bytes: bytes) -> Tuple[str, List[str]]:
    """UTF-8 (BOM tolerated) first, Windows-1251 as the fallback older bank exports use."""
    if b"\x00" in file_bytes:
        raise StatementFormatError("Binary file is not a supported statement")
    try:
        return file_bytes.decode("utf-8-sig"), []
    except UnicodeDecodeError:
        pass
    try:
        text = file_bytes.decode("cp1251")
    except UnicodeDecodeError:
        raise StatementFormatError("File is neither UTF-8 nor Windows-1251 text") from None
    return text, ["File is not UTF-8, decoded as Windows-1251"]


def parse(
    file_bytes: bytes,
    mime_type: Optional[str] = None,
    filename: Optional[str] = None,
    rules: Optional[TransferRuleSet] = None,
) -> ParseResult:
    """
    Classify a raw bank statement.

    Raises StatementFormatError when the file as a whole cannot be read
    (empty, unsupported type, undecodable, PDF without text, no recognisable
    transactions at all). Problems with single rows never raise; they are
    returned in `errors` / `warnings`.
    """
    if not file_bytes or not file_bytes.strip():
        raise StatementFormatError("Empty file")
    mime = (mime_type or "").split(";", 1)[0].strip().lower()

    if _is_pdf(file_bytes, mime):
        text = extract_pdf_text(file_bytes)
        result = _parse_pdf_text(text)
    else:
        if mime and mime not in TEXT_MIME_TYPES:
            raise StatementFormatError(f"Unsupported file type {mime!r}")
        text, notes = decode_text(file_bytes)
        result = _parse_delimited_text(text)
        result.warnings[:0] = notes

    logger.info("Parsed %s with %r parser", filename or "statement", result.parser)
    return _finish(result, rules)


def parse_text(text: str, rules: Optional[TransferRuleSet] = None) -> ParseResult:
    """Same as `parse` for text that is already decoded (CSV or extracted PDF text)."""
    if not text.strip():
        raise StatementFormatError("Empty file")
    return _finish(_parse_delimited_text(text), rules)


# ---------------------------------------------------------------------------
# internal: parser selection
# ---------------------------------------------------------------------------
@dataclass
class _Parsed:
    rows: ParsedRows
    parser: str
    warnings: List[str] = field(default_factory=list)


def _parse_pdf_text(text: str) -> _Parsed:
    template = select_template(text)
    if template is not None:
        return _Parsed(rows=template.parse(text), parser=template.name)
    return _fallback(text)


def _parse_delimited_text(text: str) -> _Parsed:
    layout = detect_layout(text)
    if layout is not None:
        return _Parsed(rows=parse_rows(text, layout), parser=CSV_PARSER)
    # text exports of the bank PDF layouts
    return _parse_pdf_text(text)


def _fallback(text: str) -> _Parsed:
    rows = parse_generic(text)
    if not rows.rows and not rows.errors:
        raise StatementFormatError("No transactions found: unrecognised statement layout")
    parsed = _Parsed(rows=rows, parser=GENERIC_PARSER)
    if rows.rows:
        parsed.warnings.append("Unrecognised statement layout, rows were read on a best-effort basis; please review")
    return parsed


# ---------------------------------------------------------------------------
# internal: classification + output
# ---------------------------------------------------------------------------
def _currency_warnings(parsed: ParsedRows) -> List[str]:
    rows = parsed.rows
    warnings: List[str] = []
    if not rows:
        return warnings

    has_currency_info = any(r.currency_column or r.currency for r in rows)
    if not has_currency_info:
        warnings.append(f"Currency not specified, all amounts assumed to be {BASE_CURRENCY}")
        return warnings

    for r in rows:
        if not r.currency:
            warnings.append(f"Row {r.line_no}: currency missing, assumed {BASE_CURRENCY}")
        elif r.currency != BASE_CURRENCY:
            warnings.append(f"Row {r.line_no}: amount in {r.currency} kept as-is, not converted to {BASE_CURRENCY}")
    return warnings


def _finish(parsed: _Parsed, rules: Optional[TransferRuleSet]) -> ParseResult:
    rows = parsed.rows
    rule_set = rules if rules is not None else load_transfer_rules()
    marked = rule_set.classify(rows.rows, warn=rows.warn)
    if marked:
        logger.debug("%d row(s) reclassified as transfer", marked)

    result = ParseResult(parser=parsed.parser)
    result.errors.extend(rows.errors)
    result.warnings.extend(parsed.warnings)
    result.warnings.extend(rows.warnings)
    result.warnings.extend(_currency_warnings(rows))

    for r in rows.rows:
        amount = quantize_money(r.magnitude)
        if amount == 0:
            result.errors.append(f"Row {r.line_no}: zero amount")
            continue
        result.transactions.append(
            ParsedTransaction(
                date=r.date,
                amount=amount,
                type=r.type,
                description=r.description,
                counterparty=r.counterparty,
            )
        )
    return result
