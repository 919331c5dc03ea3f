"""
match.py - Multi-pass transaction matching engine.

Pairs company transactions with restaurant transactions in four passes,
strongest evidence first:

    1. manual links        (user asserted)          MAN-n
    2. perfect match       (reference + amount)     PRF-n
    3. reference match     (reference, amount off)  REF-n   [match_by_ref]
    4. amount match        (amount [+ date])        AMT-n

A transaction is claimed at most once per run; later passes only see what
earlier passes left over. Within a pass the company side is walked in order
and the FIRST free restaurant candidate wins.

The engine never mutates its inputs. Assignments are recorded in a MatchBook
keyed by (side, id) and folded over the inputs at the end, producing
annotated copies.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Callable, Optional

from logging_config import get_logger
from models import (
    AMOUNT_DATE_REASON,
    AMOUNT_TOLERANCE,
    MATCH_REASONS,
    LinkedVariance,
    MatchKind,
    MatchOutcome,
    MatchSettings,
    MatchTag,
    Side,
    Transaction,
)
from normalize import amounts_equal, is_usable_ref

logger = get_logger(__name__)


class MatchBook:
    """Side table of one run's assignments.

    The sequence counter lives here, so every run starts again at 1 and the
    counter is shared by all passes of that run.
    """

    def __init__(self) -> None:
        self.tags: dict[tuple[Side, str], MatchTag] = {}
        self.sequence = 0
        self.variance_pairs: list[tuple[str, str]] = []

    def is_free(self, side: Side, txn: Transaction) -> bool:
        return (side, txn.id) not in self.tags

    def claim(
        self,
        company_txn: Transaction,
        restaurant_txn: Transaction,
        kind: MatchKind,
        reason: Optional[str] = None,
    ) -> MatchTag:
        self.sequence += 1
        tag = MatchTag(
            kind=kind,
            sequence=self.sequence,
            reason=reason or MATCH_REASONS[kind],
        )
        self.tags[(Side.COMPANY, company_txn.id)] = tag
        self.tags[(Side.RESTAURANT, restaurant_txn.id)] = tag
        logger.debug(
            "match_claimed | match_id=%s | company=%s | restaurant=%s | amounts=%.2f/%.2f",
            tag.match_id,
            company_txn.id,
            restaurant_txn.id,
            company_txn.amount,
            restaurant_txn.amount,
        )
        return tag

    def annotate(self, side: Side, transactions: Sequence[Transaction]) -> list[Transaction]:
        annotated: list[Transaction] = []
        for txn in transactions:
            tag = self.tags.get((side, txn.id))
            annotated.append(txn.model_copy(update={"match": tag}))
        return annotated


def _index_by_id(transactions: Sequence[Transaction]) -> dict[str, Transaction]:
    """Id lookup that keeps the first transaction for a repeated id."""
    index: dict[str, Transaction] = {}
    for txn in transactions:
        index.setdefault(txn.id, txn)
    return index


def _first_free(
    candidates: Sequence[Transaction],
    book: MatchBook,
    predicate: Callable[[Transaction], bool],
) -> Optional[Transaction]:
    for candidate in candidates:
        if book.is_free(Side.RESTAURANT, candidate) and predicate(candidate):
            return candidate
    return None


def match_manual_links(
    company: Sequence[Transaction],
    restaurant: Sequence[Transaction],
    manual_links: Mapping[str, str],
    book: MatchBook,
) -> int:
    """Pass 1: apply every resolvable manual link to two free transactions."""
    company_by_id = _index_by_id(company)
    restaurant_by_id = _index_by_id(restaurant)
    count = 0
    for company_id, restaurant_id in manual_links.items():
        company_txn = company_by_id.get(company_id)
        restaurant_txn = restaurant_by_id.get(restaurant_id)
        if company_txn is None or restaurant_txn is None:
            logger.debug(
                "manual_link_skipped | reason=dangling | company=%s | restaurant=%s",
                company_id,
                restaurant_id,
            )
            continue
        if not book.is_free(Side.COMPANY, company_txn) or not book.is_free(
            Side.RESTAURANT, restaurant_txn
        ):
            logger.debug(
                "manual_link_skipped | reason=already_matched | company=%s | restaurant=%s",
                company_id,
                restaurant_id,
            )
            continue
        book.claim(company_txn, restaurant_txn, MatchKind.MANUAL)
        count += 1
    return count


def match_perfect(
    company: Sequence[Transaction],
    restaurant: Sequence[Transaction],
    book: MatchBook,
) -> int:
    """Pass 2: same reference and same amount."""
    count = 0
    for company_txn in company:
        if not book.is_free(Side.COMPANY, company_txn) or not is_usable_ref(company_txn.ref):
            continue
        candidate = _first_free(
            restaurant,
            book,
            lambda r: r.ref == company_txn.ref and amounts_equal(r.amount, company_txn.amount),
        )
        if candidate is not None:
            book.claim(company_txn, candidate, MatchKind.PERFECT)
            count += 1
    return count


def match_reference(
    company: Sequence[Transaction],
    restaurant: Sequence[Transaction],
    book: MatchBook,
) -> int:
    """Pass 3: same reference, amount ignored. Every pair is a variance."""
    count = 0
    for company_txn in company:
        if not book.is_free(Side.COMPANY, company_txn) or not is_usable_ref(company_txn.ref):
            continue
        candidate = _first_free(restaurant, book, lambda r: r.ref == company_txn.ref)
        if candidate is not None:
            book.claim(company_txn, candidate, MatchKind.REFERENCE)
            book.variance_pairs.append((company_txn.id, candidate.id))
            count += 1
    return count


def match_amount(
    company: Sequence[Transaction],
    restaurant: Sequence[Transaction],
    book: MatchBook,
    strict_date: bool,
) -> int:
    """Pass 4: same amount, and the same date when strict_date is set."""
    reason = AMOUNT_DATE_REASON if strict_date else MATCH_REASONS[MatchKind.AMOUNT]
    count = 0
    for company_txn in company:
        if not book.is_free(Side.COMPANY, company_txn):
            continue
        candidate = _first_free(
            restaurant,
            book,
            lambda r: amounts_equal(r.amount, company_txn.amount)
            and (not strict_date or r.date == company_txn.date),
        )
        if candidate is not None:
            book.claim(company_txn, candidate, MatchKind.AMOUNT, reason)
            count += 1
    return count


def collect_manual_variances(
    company: Sequence[Transaction],
    restaurant: Sequence[Transaction],
    manual_links: Mapping[str, str],
    book: MatchBook,
) -> int:
    """Record manual links whose amounts still differ.

    A manual link can fix a reference mismatch and still leave a monetary
    difference; those are reported even though the pair is matched.
    """
    company_by_id = _index_by_id(company)
    restaurant_by_id = _index_by_id(restaurant)
    count = 0
    for company_id, restaurant_id in manual_links.items():
        company_txn = company_by_id.get(company_id)
        restaurant_txn = restaurant_by_id.get(restaurant_id)
        if company_txn is None or restaurant_txn is None:
            continue
        if abs(company_txn.amount - restaurant_txn.amount) > AMOUNT_TOLERANCE:
            book.variance_pairs.append((company_id, restaurant_id))
            count += 1
    return count


def _log_pass(number: int, name: str, matched: int, book: MatchBook) -> None:
    logger.info(
        "match_pass | pass=%s/4 | name=%s | matched=%s | claimed_pairs=%s",
        number,
        name,
        matched,
        book.sequence,
    )


def run_matching(
    company: Sequence[Transaction],
    restaurant: Sequence[Transaction],
    manual_links: Optional[Mapping[str, str]] = None,
    settings: Optional[MatchSettings] = None,
) -> MatchOutcome:
    """Run all four passes and return annotated copies of both sides."""
    if manual_links is None:
        manual_links = {}
    if not isinstance(manual_links, Mapping):
        raise TypeError(
            f"manual_links must be a mapping of company id to restaurant id, "
            f"got {type(manual_links).__name__}"
        )
    settings = settings or MatchSettings()

    book = MatchBook()
    manual = match_manual_links(company, restaurant, manual_links, book)
    _log_pass(1, "manual", manual, book)
    perfect = match_perfect(company, restaurant, book)
    _log_pass(2, "perfect", perfect, book)
    if settings.match_by_ref:
        reference = match_reference(company, restaurant, book)
        _log_pass(3, "reference", reference, book)
    else:
        reference = 0
        logger.info("match_pass | pass=3/4 | name=reference | skipped=match_by_ref_disabled")
    amount = match_amount(company, restaurant, book, settings.strict_date)
    _log_pass(4, "amount", amount, book)
    manual_variances = collect_manual_variances(company, restaurant, manual_links, book)

    annotated_company = book.annotate(Side.COMPANY, company)
    annotated_restaurant = book.annotate(Side.RESTAURANT, restaurant)
    company_by_id = _index_by_id(annotated_company)
    restaurant_by_id = _index_by_id(annotated_restaurant)
    linked_variances = [
        LinkedVariance(
            company=company_by_id[company_id],
            restaurant=restaurant_by_id[restaurant_id],
            variance=company_by_id[company_id].amount - restaurant_by_id[restaurant_id].amount,
        )
        for company_id, restaurant_id in book.variance_pairs
    ]

    logger.info(
        "matching_complete | company=%s | restaurant=%s | manual=%s | perfect=%s | "
        "reference=%s | amount=%s | variances=%s | manual_variances=%s | "
        "match_by_ref=%s | strict_date=%s",
        len(company),
        len(restaurant),
        manual,
        perfect,
        reference,
        amount,
        len(linked_variances),
        manual_variances,
        settings.match_by_ref,
        settings.strict_date,
    )
    return MatchOutcome(
        company=annotated_company,
        restaurant=annotated_restaurant,
        linked_variances=linked_variances,
    )
