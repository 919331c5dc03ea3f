"""
report.py - Variance table views and the export workbook.

The variance table lists what needs attention: linked variances first,
then unmatched company transactions, then unmatched restaurant ones. The
workbook carries three sheets built from an AggregateResult:

    Daily Summary    per-date totals plus a grand total row
    Variances        the variance table
    Combined Ledger  every transaction with its match annotation
"""

from __future__ import annotations

import functools
from datetime import date as date_cls
from pathlib import Path
from typing import IO, Any, Optional, Union

import pandas as pd

from logging_config import get_logger
from models import AggregateResult, Side, TableItem, TableItemKind

logger = get_logger(__name__)

FILTER_MODES = {"all", "unmatched_only", "matched_variance"}
SORT_FIELDS = {"date", "amount", "ref", "match_id"}
SORT_ORDERS = {"asc", "desc"}

SUMMARY_SHEET = "Daily Summary"
VARIANCE_SHEET = "Variances"
LEDGER_SHEET = "Combined Ledger"

SUMMARY_COLUMNS = ["Date", "Company Total", "Restaurant Total", "Variance"]
VARIANCE_COLUMNS = ["Type", "Side", "Date", "Reference", "Amount", "Link"]
LEDGER_COLUMNS = ["Match ID", "Match Reason", "Source", "Date", "Reference", "Amount", "Status"]


def format_amount(value: float) -> str:
    """Shortest text form of an amount (100.0 -> '100', 90.5 -> '90.5')."""
    if float(value).is_integer():
        return str(int(value))
    return repr(float(value))


def build_table_items(result: AggregateResult) -> list[TableItem]:
    items = [
        TableItem(kind=TableItemKind.LINKED_VARIANCE, linked=linked)
        for linked in result.linked_variances
    ]
    items.extend(
        TableItem(kind=TableItemKind.SINGLE, side=Side.COMPANY, transaction=txn)
        for txn in result.unmatched_company
    )
    items.extend(
        TableItem(kind=TableItemKind.SINGLE, side=Side.RESTAURANT, transaction=txn)
        for txn in result.unmatched_restaurant
    )
    return items


def _item_matches_text(item: TableItem, needle: str) -> bool:
    if item.linked is not None:
        company, restaurant = item.linked.company, item.linked.restaurant
        return (
            needle in company.ref.lower()
            or needle in restaurant.ref.lower()
            or needle in format_amount(company.amount)
            or needle in format_amount(restaurant.amount)
            or needle in company.date
        )
    txn = item.primary
    return needle in txn.ref.lower() or needle in format_amount(txn.amount) or needle in txn.date


def filter_table_items(
    items: list[TableItem],
    mode: str = "all",
    text: str = "",
) -> list[TableItem]:
    """Filter by row kind and by free text over refs, amounts and dates."""
    if mode not in FILTER_MODES:
        raise ValueError(f"Unknown filter mode: {mode!r}. Expected one of {sorted(FILTER_MODES)}")

    filtered = list(items)
    if mode == "unmatched_only":
        filtered = [item for item in filtered if not item.is_linked]
    elif mode == "matched_variance":
        filtered = [item for item in filtered if item.is_linked]

    if text:
        needle = text.lower()
        filtered = [item for item in filtered if _item_matches_text(item, needle)]
    return filtered


def _sort_value(item: TableItem, field: str) -> Any:
    value = getattr(item.primary, field)
    if value is None:
        value = ""
    if field == "amount":
        return float(value)
    return str(value).lower()


def sort_table_items(
    items: list[TableItem],
    field: str = "date",
    order: str = "asc",
) -> list[TableItem]:
    """Sort the variance table. Linked variances always come first.

    When sorting by date, linked variances are ordered by variance
    (ascending, whatever the order) before falling back to the date.
    """
    if field not in SORT_FIELDS:
        raise ValueError(f"Unknown sort field: {field!r}. Expected one of {sorted(SORT_FIELDS)}")
    if order not in SORT_ORDERS:
        raise ValueError(f"Unknown sort order: {order!r}. Expected 'asc' or 'desc'")
    direction = 1 if order == "asc" else -1

    def compare(first: TableItem, second: TableItem) -> int:
        if first.is_linked and not second.is_linked:
            return -1
        if second.is_linked and not first.is_linked:
            return 1
        if first.linked is not None and second.linked is not None and field == "date":
            if first.linked.variance != second.linked.variance:
                return -1 if first.linked.variance < second.linked.variance else 1

        left, right = _sort_value(first, field), _sort_value(second, field)
        if left < right:
            return -direction
        if left > right:
            return direction
        return 0

    return sorted(items, key=functools.cmp_to_key(compare))


def summary_rows(result: AggregateResult) -> list[dict[str, Any]]:
    rows: list[dict[str, Any]] = [
        {
            "Date": row.date,
            "Company Total": row.company_total,
            "Restaurant Total": row.restaurant_total,
            "Variance": row.variance,
        }
        for row in result.summary
    ]
    rows.append(
        {
            "Date": "Grand Total",
            "Company Total": result.grand_total_company,
            "Restaurant Total": result.grand_total_restaurant,
            "Variance": result.total_variance,
        }
    )
    return rows


def variance_rows(items: list[TableItem]) -> list[dict[str, Any]]:
    rows: list[dict[str, Any]] = []
    for item in items:
        if item.linked is not None:
            company, restaurant = item.linked.company, item.linked.restaurant
            rows.append(
                {
                    "Type": "Linked with variance",
                    "Side": "Both",
                    "Date": company.date,
                    "Reference": f"{company.ref} <-> {restaurant.ref}",
                    "Amount": f"{format_amount(company.amount)} vs {format_amount(restaurant.amount)}",
                    "Link": f"Variance: {format_amount(item.linked.variance)}",
                }
            )
            continue
        txn = item.primary
        rows.append(
            {
                "Type": "Unmatched",
                "Side": item.side.value if item.side is not None else "",
                "Date": txn.date,
                "Reference": txn.ref,
                "Amount": txn.amount,
                "Link": "-",
            }
        )
    return rows


def ledger_rows(result: AggregateResult) -> list[dict[str, Any]]:
    return [
        {
            "Match ID": entry.match_id or "-",
            "Match Reason": entry.match_reason or "-",
            "Source": entry.source.value,
            "Date": entry.date,
            "Reference": entry.ref,
            "Amount": entry.amount,
            "Status": "Matched" if entry.matched else "Unmatched",
        }
        for entry in result.combined_ledger
    ]


def export_filename(name: str, today: Optional[date_cls] = None) -> str:
    stamp = (today or date_cls.today()).isoformat()
    cleaned = "_".join(str(name or "").split()) or "Unnamed"
    return f"Recon_{cleaned}_{stamp}.xlsx"


def export_workbook(
    result: AggregateResult,
    target: Union[str, Path, IO[bytes]],
) -> Union[str, Path, IO[bytes]]:
    """Write the three-sheet workbook to a path or binary buffer."""
    sheets = [
        (SUMMARY_SHEET, summary_rows(result), SUMMARY_COLUMNS),
        (VARIANCE_SHEET, variance_rows(build_table_items(result)), VARIANCE_COLUMNS),
        (LEDGER_SHEET, ledger_rows(result), LEDGER_COLUMNS),
    ]
    with pd.ExcelWriter(target, engine="openpyxl") as writer:
        for sheet_name, rows, columns in sheets:
            pd.DataFrame(rows, columns=columns).to_excel(writer, sheet_name=sheet_name, index=False)

    logger.info(
        "export_complete | target=%s | summary_rows=%s | variance_rows=%s | ledger_rows=%s",
        target if isinstance(target, (str, Path)) else type(target).__name__,
        len(sheets[0][1]),
        len(sheets[1][1]),
        len(sheets[2][1]),
    )
    return target
