"""
parse.py - Line parser for pasted or imported ledger text.

Turns the raw text of one side into Transaction records. The text is
free-form: tab-separated (spreadsheet paste), comma-separated (CSV) or
whitespace-separated, with the amount, date and reference fields in any
order. Field roles are detected per line:

    amount    first field that reads as a finite number (and has no '/')
    date      first other field containing '/' or '-'
    reference first remaining field, else 'N/A'

Lines that never yield a positive amount are dropped and logged; parsing
never raises on bad data.
"""

from __future__ import annotations

import re
from typing import Optional

from logging_config import get_logger
from models import NO_REFERENCE, Side, Transaction
from normalize import normalize_date, parse_amount

logger = get_logger(__name__)

HEADER_TOKENS: tuple[str, ...] = ("المبلغ", "Amount")
WHITESPACE = re.compile(r"\s+")


def split_fields(line: str) -> list[str]:
    """Split one line on tab, else comma, else whitespace runs."""
    if "\t" in line:
        parts = line.split("\t")
    elif "," in line:
        parts = line.split(",")
    else:
        parts = WHITESPACE.split(line)
    return [part.strip() for part in parts if part.strip()]


def _find_amount(fields: list[str]) -> tuple[int, Optional[float]]:
    for index, field in enumerate(fields):
        value = parse_amount(field)
        if value is not None:
            return index, value
    return -1, None


def _find_date(fields: list[str], amount_index: int) -> int:
    for index, field in enumerate(fields):
        if index != amount_index and ("/" in field or "-" in field):
            return index
    return -1


def _find_ref(fields: list[str], amount_index: int, date_index: int) -> str:
    for index, field in enumerate(fields):
        if index != amount_index and index != date_index:
            return field
    if len(fields) >= 3 and amount_index == 0 and date_index == 1:
        return fields[2]
    return NO_REFERENCE


def is_header_line(line: str) -> bool:
    return any(token in line for token in HEADER_TOKENS)


def parse_line(line: str, side: Side, index: int) -> Optional[Transaction]:
    """Parse one raw line. Returns None for blank, header or amount-less lines."""
    clean = line.strip()
    if not clean:
        return None
    if is_header_line(clean):
        logger.debug("parse_line | skipped=header | side=%s | line_no=%s", side.prefix, index)
        return None

    fields = split_fields(clean)
    amount_index, amount = _find_amount(fields)
    if amount is None or amount <= 0:
        logger.warning(
            "parse_line | dropped=no_positive_amount | side=%s | line_no=%s | amount=%r | raw=%r",
            side.prefix,
            index,
            amount,
            line,
        )
        return None

    date_index = _find_date(fields, amount_index)
    date = normalize_date(fields[date_index]) if date_index != -1 else ""
    ref = _find_ref(fields, amount_index, date_index).strip()

    if not date or ref == NO_REFERENCE:
        logger.debug(
            "parse_line | partial | side=%s | line_no=%s | date=%r | ref=%r",
            side.prefix,
            index,
            date,
            ref,
        )

    return Transaction(
        id=f"{side.prefix}-{index}",
        raw_line=line,
        amount=amount,
        date=date,
        ref=ref,
    )


def parse_transactions(raw: Optional[str], side: Side | str) -> list[Transaction]:
    """Parse the raw text of one side.

    Ids use the line's position in the raw text (blank, header and dropped
    lines still consume an index), so an id points back at its source line.
    """
    side = Side.from_value(side)
    if not raw:
        return []

    lines = raw.split("\n")
    transactions: list[Transaction] = []
    headers = 0
    for index, line in enumerate(lines):
        if line.strip() and is_header_line(line.strip()):
            headers += 1
        txn = parse_line(line, side, index)
        if txn is not None:
            transactions.append(txn)

    content_lines = sum(1 for line in lines if line.strip())
    logger.info(
        "parse_complete | side=%s | lines=%s | kept=%s | headers=%s | dropped=%s",
        side.value,
        len(lines),
        len(transactions),
        headers,
        content_lines - headers - len(transactions),
    )
    return transactions
