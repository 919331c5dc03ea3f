"""
normalize.py - Token normalization module.

Three core normalizers:
    normalize_date(token)    -> 'YYYY/MM/DD' (or the cleaned token)
    parse_amount(token)      -> float or None
    is_usable_ref(ref)       -> bool

One comparison helper:
    amounts_equal(a, b)

Design principles:
    - SAME normalization on BOTH sides
    - Pure transformations, no I/O
    - Invalid input degrades to neutral values, never raises
"""

from __future__ import annotations

import math
import re
from typing import Any, Optional

from logging_config import get_logger
from models import AMOUNT_TOLERANCE, NO_REFERENCE

logger = get_logger(__name__)

DATE_SEPARATORS = re.compile(r"[/-]")
LEADING_INT = re.compile(r"^\s*([+-]?\d+)", re.ASCII)
# ASCII digits only; Arabic-Indic and other Unicode digits never read as numbers.
AMOUNT_TOKEN = re.compile(r"[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?", re.ASCII)
QUOTES = re.compile(r"['\"]")

MIN_REF_LENGTH = 2


def _leading_int(text: str) -> Optional[int]:
    """Read the integer a date part starts with ('05' -> 5, '12abc' -> 12)."""
    found = LEADING_INT.match(text)
    if found is None:
        return None
    return int(found.group(1))


def _gt(text: str, limit: int) -> bool:
    value = _leading_int(text)
    return value is not None and value > limit


def _lt(text: str, limit: int) -> bool:
    value = _leading_int(text)
    return value is not None and value < limit


def _le(text: str, limit: int) -> bool:
    value = _leading_int(text)
    return value is not None and value <= limit


def normalize_date(token: Any) -> str:
    """Normalize a date token to 'YYYY/MM/DD'.

    Heuristic, in this exact order:
        1. split on '/' or '-'; anything but three parts is returned as-is
        2. assume day/month/year
        3. first part above 1000 -> it was year/month/day
        4. otherwise a year below 100 gets a '20' prefix
        5. month above 12 with day at most 12 -> swap them
        6. zero-pad day and month

    Dates are later compared and sorted as plain strings, so the output
    format must stay fixed.
    """
    if token is None:
        return ""

    clean = QUOTES.sub("", str(token)).strip()
    if not clean:
        return ""

    parts = DATE_SEPARATORS.split(clean)
    if len(parts) != 3:
        logger.debug("normalize_date | unsplittable | raw=%r | kept=%r", token, clean)
        return clean

    day, month, year = parts
    if _gt(parts[0], 1000):
        year, month, day = parts
    elif _lt(year, 100):
        year = "20" + year

    if _gt(month, 12) and _le(day, 12):
        day, month = month, day

    day = day.rjust(2, "0")
    month = month.rjust(2, "0")
    normalized = f"{year}/{month}/{day}"
    logger.debug("normalize_date | raw=%r | normalized=%r", token, normalized)
    return normalized


def parse_amount(token: Any) -> Optional[float]:
    """Read an amount field.

    Thousands-separator commas are ignored. Tokens containing '/' are never
    amounts (they are dates like 1/2/2024). Returns None for anything that is
    not a finite number as a whole.
    """
    if token is None:
        return None

    text = str(token)
    if "/" in text:
        return None

    cleaned = text.replace(",", "").strip()
    if AMOUNT_TOKEN.fullmatch(cleaned) is None:
        return None

    try:
        value = float(cleaned)
    except (OverflowError, ValueError):
        return None

    if not math.isfinite(value):
        return None
    return value


def is_usable_ref(ref: Optional[str]) -> bool:
    """Whether a reference is specific enough to match on."""
    if not ref:
        return False
    return len(ref) >= MIN_REF_LENGTH and ref != NO_REFERENCE


def amounts_equal(first: float, second: float) -> bool:
    return abs(first - second) < AMOUNT_TOLERANCE
