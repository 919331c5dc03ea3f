"""
importer.py - Spreadsheet/CSV import into parser-ready text.

A table export from a bank portal or POS rarely has a fixed layout, so the
importer asks only for three columns (amount, date, reference), guesses them
from the header row, and renders every data row as

    amount <TAB> date <TAB> reference

which parse.py reads like a pasted spreadsheet.
"""

from __future__ import annotations

import math
import numbers
import os
import re
from datetime import date as date_cls
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Optional

import pandas as pd
from pydantic import BaseModel

from logging_config import get_logger

logger = get_logger(__name__)

MAX_IMPORT_BYTES = 5 * 1024 * 1024
SUPPORTED_EXTENSIONS = {".csv", ".txt", ".xlsx"}

# Excel serial day numbers: day 25569 is 1970-01-01. Numbers above 20000
# (roughly 1954) are taken to be serial dates.
EXCEL_EPOCH_OFFSET = 25569
EXCEL_SERIAL_THRESHOLD = 20000

AMOUNT_KEYWORDS = ("amount", "مبلغ", "balance", "رصيد")
DATE_KEYWORDS = ("date", "تاريخ", "time", "وقت")
REFERENCE_KEYWORDS = ("ref", "مرجع", "id", "رقم")

NON_AMOUNT_CHARS = re.compile(r"[^0-9.\-]")


class ColumnMapping(BaseModel):
    """Header names chosen for each of the three parser fields."""

    amount: str = ""
    date: str = ""
    reference: str = ""

    @property
    def is_complete(self) -> bool:
        return bool(self.amount and self.date and self.reference)


def load_table(path: str | Path) -> pd.DataFrame:
    """Load a CSV/TXT/XLSX file with a header row and at least one data row."""
    if path is None:
        raise ValueError("path cannot be None")

    text = str(path).strip()
    if not text:
        raise ValueError("path cannot be empty")
    path = Path(text)
    if not path.exists():
        raise FileNotFoundError(f"Import file not found: {path}")

    extension = path.suffix.lower()
    if extension not in SUPPORTED_EXTENSIONS:
        raise ValueError(
            f"Unsupported file type '{extension}'. "
            f"Supported: {sorted(SUPPORTED_EXTENSIONS)}"
        )

    size = os.path.getsize(path)
    if size > MAX_IMPORT_BYTES:
        raise ValueError(
            f"Import file is too large ({size} bytes). "
            f"Maximum is {MAX_IMPORT_BYTES // (1024 * 1024)} MB"
        )

    if extension == ".xlsx":
        try:
            df = pd.read_excel(path, sheet_name=0, engine="openpyxl")
        except Exception as exc:
            raise ValueError(f"Failed to read workbook '{path}': {exc}") from exc
    else:
        try:
            df = pd.read_csv(
                path,
                sep=None,
                engine="python",
                dtype=str,
                keep_default_na=False,
                encoding="utf-8-sig",
            )
        except UnicodeDecodeError:
            logger.warning(
                "import_encoding_warning | path=%s | reason='utf-8 decode failed' | fallback=latin-1",
                path,
            )
            df = pd.read_csv(
                path,
                sep=None,
                engine="python",
                dtype=str,
                keep_default_na=False,
                encoding="latin-1",
            )
        except Exception as exc:
            raise ValueError(f"Failed to read CSV '{path}': {exc}") from exc

    df.columns = [str(column).strip() for column in df.columns]
    df = df.dropna(how="all")
    if df.empty:
        raise ValueError(f"Import file has no data rows: {path}")

    logger.info(
        "import_loaded | path=%s | rows=%s | columns=%s",
        path,
        len(df),
        list(df.columns),
    )
    return df


def detect_column_mapping(headers: list[Any]) -> ColumnMapping:
    """Guess the amount/date/reference columns from header keywords.

    Headers are scanned left to right and a later match overwrites an
    earlier one.
    """
    mapping = ColumnMapping()
    for header in headers:
        name = str(header)
        lower = name.lower()
        if any(keyword in lower for keyword in AMOUNT_KEYWORDS):
            mapping.amount = name
        if any(keyword in lower for keyword in DATE_KEYWORDS):
            mapping.date = name
        if any(keyword in lower for keyword in REFERENCE_KEYWORDS):
            mapping.reference = name

    logger.debug(
        "column_mapping_detected | amount=%r | date=%r | reference=%r",
        mapping.amount,
        mapping.date,
        mapping.reference,
    )
    return mapping


def excel_serial_to_iso(serial: float) -> str:
    days = math.floor(serial - EXCEL_EPOCH_OFFSET)
    return (datetime(1970, 1, 1) + timedelta(days=days)).strftime("%Y-%m-%d")


def _is_missing(value: Any) -> bool:
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def _is_number(value: Any) -> bool:
    return isinstance(value, numbers.Real) and not isinstance(value, bool)


def _number_text(value: Any) -> str:
    number = float(value)
    if number.is_integer():
        return str(int(number))
    return str(number)


def _amount_cell(value: Any) -> str:
    if value is None or _is_missing(value):
        return "0"
    if _is_number(value):
        return _number_text(value)

    cleaned = NON_AMOUNT_CHARS.sub("", str(value))
    try:
        float(cleaned)
    except ValueError:
        return "0"
    return cleaned


def _date_cell(value: Any) -> str:
    if value is None or _is_missing(value):
        return ""
    if isinstance(value, date_cls):
        return value.strftime("%Y-%m-%d")
    if _is_number(value):
        if value > EXCEL_SERIAL_THRESHOLD:
            try:
                return excel_serial_to_iso(float(value))
            except (OverflowError, ValueError):
                return ""
        return _number_text(value)
    if isinstance(value, str):
        return value.strip()
    return ""


def _reference_cell(value: Any) -> str:
    if value is None or _is_missing(value):
        return ""
    if _is_number(value):
        return _number_text(value)
    return str(value).strip()


def table_to_raw_text(df: pd.DataFrame, mapping: Optional[ColumnMapping] = None) -> str:
    """Render table rows as tab-separated 'amount, date, reference' lines."""
    mapping = mapping or detect_column_mapping(list(df.columns))
    columns = list(df.columns)
    missing = [
        label
        for label, column in (
            ("amount", mapping.amount),
            ("date", mapping.date),
            ("reference", mapping.reference),
        )
        if not column or column not in columns
    ]
    if missing:
        raise ValueError(
            f"Column mapping incomplete: {missing}\n"
            f"Mapping: {mapping.model_dump()}\n"
            f"Found: {columns}"
        )

    lines: list[str] = []
    for _, row in df.iterrows():
        line = "\t".join(
            (
                _amount_cell(row[mapping.amount]),
                _date_cell(row[mapping.date]),
                _reference_cell(row[mapping.reference]),
            )
        )
        if len(line.strip()) > 2:
            lines.append(line)

    logger.info("import_rendered | rows=%s | lines=%s", len(df), len(lines))
    return "\n".join(lines)


def import_file(path: str | Path, mapping: Optional[ColumnMapping] = None) -> str:
    """Load a table file and render it as raw ledger text."""
    df = load_table(path)
    return table_to_raw_text(df, mapping)
