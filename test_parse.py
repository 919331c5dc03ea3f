"""
test_parse.py - Line parser tests.

Covers:
- delimiter priority (tab, comma, whitespace)
- amount / date / reference field detection in any order
- header and blank line skipping
- id numbering by raw line position
- dropping lines without a positive amount

Usage: python test_parse.py
       python -m pytest test_parse.py
"""

from __future__ import annotations

import logging
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

import pytest

from models import Side
from parse import parse_transactions, split_fields


def test_split_prefers_tab_then_comma_then_whitespace() -> None:
    assert split_fields("100\t2024/01/01\tINV, 1") == ["100", "2024/01/01", "INV, 1"]
    assert split_fields("100, 2024/01/01 ,INV1") == ["100", "2024/01/01", "INV1"]
    assert split_fields("100   2024/01/01  INV1") == ["100", "2024/01/01", "INV1"]


def test_tab_line_fields() -> None:
    txns = parse_transactions("100\t2024/01/01\tINV1", "C")
    assert len(txns) == 1
    txn = txns[0]
    assert txn.id == "C-0"
    assert txn.amount == 100.0
    assert txn.date == "2024/01/01"
    assert txn.ref == "INV1"
    assert txn.raw_line == "100\t2024/01/01\tINV1"
    assert txn.matched is False
    assert txn.match_id is None
    assert txn.match_reason is None


def test_fields_in_any_order() -> None:
    txns = parse_transactions("INV9\t15/03/2024\t1,250.75", Side.RESTAURANT)
    assert len(txns) == 1
    assert txns[0].id == "R-0"
    assert txns[0].amount == 1250.75
    assert txns[0].date == "2024/03/15"
    assert txns[0].ref == "INV9"


def test_whitespace_separated_line() -> None:
    txns = parse_transactions("250 2024-02-10 POS77", "C")
    assert txns[0].amount == 250.0
    assert txns[0].date == "2024/02/10"
    assert txns[0].ref == "POS77"


def test_missing_date_and_reference_defaults() -> None:
    txns = parse_transactions("75", "C")
    assert len(txns) == 1
    assert txns[0].date == ""
    assert txns[0].ref == "N/A"


def test_headers_and_blank_lines_skipped_but_keep_line_index() -> None:
    raw = "Amount\tDate\tRef\n\n100\t2024/01/01\tA1\nالمبلغ\tالتاريخ\n200\t2024/01/02\tA2"
    txns = parse_transactions(raw, "C")
    assert [txn.id for txn in txns] == ["C-2", "C-4"]
    assert [txn.amount for txn in txns] == [100.0, 200.0]


def test_non_positive_and_missing_amounts_dropped(caplog) -> None:
    raw = "0\t2024/01/01\tZERO\n-50\t2024/01/01\tNEG\nno amount here\n10\t2024/01/01\tOK"
    with caplog.at_level(logging.WARNING, logger="parse"):
        txns = parse_transactions(raw, "R")
    assert [txn.id for txn in txns] == ["R-3"]
    assert sum("dropped=no_positive_amount" in record.getMessage() for record in caplog.records) == 3


def test_slash_token_is_never_the_amount() -> None:
    txns = parse_transactions("1/2/2024\t300\tREF", "C")
    assert txns[0].amount == 300.0
    assert txns[0].date == "2024/02/01"


def test_reference_with_dash_after_date() -> None:
    txns = parse_transactions("100\t2024/01/01\tINV-7", "C")
    assert txns[0].date == "2024/01/01"
    assert txns[0].ref == "INV-7"


def test_windows_line_endings() -> None:
    txns = parse_transactions("100\t2024/01/01\tINV1\r\n90\t2024/01/02\tINV2\r\n", "C")
    assert [txn.ref for txn in txns] == ["INV1", "INV2"]


def test_empty_input() -> None:
    assert parse_transactions("", "C") == []
    assert parse_transactions(None, "R") == []


def test_reparse_is_stable() -> None:
    raw = "100\t2024/01/01\tINV1\n50\t2024/01/02\tINV2"
    assert parse_transactions(raw, "C") == parse_transactions(raw, "C")


def test_arabic_indic_digits_are_not_amounts() -> None:
    txns = parse_transactions("١٢٣\t100\t2024/01/01", "C")
    assert len(txns) == 1
    assert txns[0].amount == 100.0
    assert txns[0].ref == "١٢٣"
    assert txns[0].date == "2024/01/01"

    assert parse_transactions("١٢٣\t٢٠٢٤/٠١/٠١", "C") == []


def test_parse_summary_counts_headers_apart_from_dropped(caplog) -> None:
    raw = "Amount\tDate\tRef\n100\t2024/01/01\tA1\nno amount\n\nالمبلغ\n5\t2024/01/02\tA2"
    with caplog.at_level(logging.INFO, logger="parse"):
        parse_transactions(raw, "C")
    summary = [record.getMessage() for record in caplog.records if record.getMessage().startswith("parse_complete")]
    assert len(summary) == 1
    assert "kept=2 | headers=2 | dropped=1" in summary[0]


if __name__ == "__main__":
    raise SystemExit(pytest.main([__file__, "-v"]))
