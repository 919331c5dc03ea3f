"""
aggregate.py - Totals, variances and ledger views over a MatchOutcome.

Everything here is derived: the same MatchOutcome always aggregates to the
same AggregateResult.
"""

from __future__ import annotations

import functools
import math
from collections.abc import Sequence

from logging_config import get_logger
from models import (
    AggregateResult,
    DailySummaryRow,
    LedgerEntry,
    MatchOutcome,
    Side,
    Transaction,
)

logger = get_logger(__name__)


def daily_summary(
    company: Sequence[Transaction],
    restaurant: Sequence[Transaction],
) -> list[DailySummaryRow]:
    """Per-date totals for every non-empty date seen on either side."""
    dates = {txn.date for txn in company} | {txn.date for txn in restaurant}
    rows: list[DailySummaryRow] = []
    for date in dates:
        if not date:
            continue
        company_total = sum(txn.amount for txn in company if txn.date == date)
        restaurant_total = sum(txn.amount for txn in restaurant if txn.date == date)
        rows.append(
            DailySummaryRow(
                date=date,
                company_total=company_total,
                restaurant_total=restaurant_total,
                variance=company_total - restaurant_total,
            )
        )
    rows.sort(key=lambda row: row.date)
    return rows


def match_percentage(total: int, unmatched: int) -> int:
    """Share of matched transactions, rounded half up; 0 with no transactions."""
    if total <= 0:
        return 0
    return int(math.floor((total - unmatched) / total * 100 + 0.5))


def _compare_ledger(first: LedgerEntry, second: LedgerEntry) -> int:
    if first.match_id and second.match_id:
        left, right = first.match_id, second.match_id
    else:
        left, right = first.date, second.date
    return (left > right) - (left < right)


def combined_ledger(
    company: Sequence[Transaction],
    restaurant: Sequence[Transaction],
) -> list[LedgerEntry]:
    """Both sides in one list, grouped by match id where both have one, else by date."""
    entries = [LedgerEntry(source=Side.COMPANY, **dict(txn)) for txn in company]
    entries.extend(LedgerEntry(source=Side.RESTAURANT, **dict(txn)) for txn in restaurant)
    return sorted(entries, key=functools.cmp_to_key(_compare_ledger))


def aggregate(outcome: MatchOutcome) -> AggregateResult:
    """Build the full result consumed by reports, the CLI and the API."""
    company = outcome.company
    restaurant = outcome.restaurant

    unmatched_company = [txn for txn in company if not txn.matched]
    unmatched_restaurant = [txn for txn in restaurant if not txn.matched]
    unmatched_count = len(unmatched_company) + len(unmatched_restaurant)

    grand_total_company = sum(txn.amount for txn in company)
    grand_total_restaurant = sum(txn.amount for txn in restaurant)

    result = AggregateResult(
        summary=daily_summary(company, restaurant),
        unmatched_company=unmatched_company,
        unmatched_restaurant=unmatched_restaurant,
        linked_variances=list(outcome.linked_variances),
        grand_total_company=grand_total_company,
        grand_total_restaurant=grand_total_restaurant,
        total_variance=grand_total_company - grand_total_restaurant,
        combined_ledger=combined_ledger(company, restaurant),
        total_unmatched_count=unmatched_count,
        match_percentage=match_percentage(len(company) + len(restaurant), unmatched_count),
    )
    logger.info(
        "aggregate_complete | days=%s | total_company=%.2f | total_restaurant=%.2f | "
        "variance=%.2f | unmatched=%s | match_pct=%s | status=%s",
        len(result.summary),
        result.grand_total_company,
        result.grand_total_restaurant,
        result.total_variance,
        result.total_unmatched_count,
        result.match_percentage,
        result.status.value,
    )
    return result
