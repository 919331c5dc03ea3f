"""
test_match.py - Matching Engine Tests

Checks for:
- each of the four passes and their reasons
- pass precedence and manual link priority
- first-candidate tie-break
- run-wide sequence numbering and idempotence
- linked variances (reference pass and manual links)
- inputs are never mutated

Usage: python test_match.py
       python -m pytest test_match.py
"""

from __future__ import annotations

import logging
import os
import sys

# Ensure local imports resolve from project root.
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

import pytest

from links import ManualLinkMap
from match import run_matching
from models import MatchKind, MatchSettings, Transaction


def _txn(txn_id: str, amount: float, date: str = "2024/01/01", ref: str = "N/A") -> Transaction:
    return Transaction(id=txn_id, raw_line="", amount=amount, date=date, ref=ref)


def _ids(transactions: list[Transaction]) -> dict[str, str | None]:
    return {txn.id: txn.match_id for txn in transactions}


def test_perfect_match() -> None:
    outcome = run_matching([_txn("C-0", 100, ref="INV1")], [_txn("R-0", 100, ref="INV1")])
    company, restaurant = outcome.company[0], outcome.restaurant[0]
    assert company.match_id == "PRF-1"
    assert restaurant.match_id == "PRF-1"
    assert company.match.kind is MatchKind.PERFECT
    assert company.match_reason == "Exact match (reference + amount)"
    assert outcome.linked_variances == []


def test_reference_match_records_variance() -> None:
    outcome = run_matching([_txn("C-0", 100, ref="INV1")], [_txn("R-0", 90, ref="INV1")])
    assert outcome.company[0].match_id == "REF-1"
    assert outcome.company[0].match_reason == "Reference match (amount variance)"
    assert len(outcome.linked_variances) == 1
    linked = outcome.linked_variances[0]
    assert linked.variance == pytest.approx(10.0)
    assert linked.company.match_id == "REF-1"
    assert linked.restaurant.id == "R-0"


def test_reference_pass_disabled() -> None:
    outcome = run_matching(
        [_txn("C-0", 100, ref="INV1")],
        [_txn("R-0", 90, ref="INV1")],
        settings=MatchSettings(match_by_ref=False),
    )
    assert not outcome.company[0].matched
    assert not outcome.restaurant[0].matched
    assert outcome.linked_variances == []


def test_amount_match_reason_depends_on_strict_date() -> None:
    loose = run_matching([_txn("C-0", 50, ref="X")], [_txn("R-0", 50, ref="Y")])
    assert loose.company[0].match_id == "AMT-1"
    assert loose.company[0].match_reason == "Amount match"

    strict = run_matching(
        [_txn("C-0", 50, ref="X")],
        [_txn("R-0", 50, ref="Y")],
        settings=MatchSettings(strict_date=True),
    )
    assert strict.company[0].match_reason == "Amount+date match"


def test_strict_date_blocks_different_days() -> None:
    outcome = run_matching(
        [_txn("C-0", 50, date="2024/01/01", ref="X")],
        [_txn("R-0", 50, date="2024/01/02", ref="Y")],
        settings=MatchSettings(strict_date=True),
    )
    assert not outcome.company[0].matched
    assert not outcome.restaurant[0].matched


def test_pass_precedence_exact_beats_amount() -> None:
    company = [_txn("C-0", 100, ref="AA"), _txn("C-1", 100, ref="BB")]
    restaurant = [_txn("R-0", 100, ref="BB"), _txn("R-1", 100, ref="AA")]
    outcome = run_matching(company, restaurant)
    assert _ids(outcome.company) == {"C-0": "PRF-1", "C-1": "PRF-2"}
    assert _ids(outcome.restaurant) == {"R-0": "PRF-2", "R-1": "PRF-1"}


def test_manual_link_priority() -> None:
    company = [_txn("C-0", 100, ref="INV1")]
    restaurant = [_txn("R-0", 100, ref="INV1"), _txn("R-1", 100, ref="OTHER")]
    outcome = run_matching(company, restaurant, {"C-0": "R-1"})
    assert outcome.company[0].match_id == "MAN-1"
    assert outcome.company[0].match_reason == "Manual link"
    assert outcome.restaurant[1].match_id == "MAN-1"
    assert not outcome.restaurant[0].matched


def test_manual_link_with_variance_is_reported() -> None:
    outcome = run_matching([_txn("C-0", 200, ref="A1")], [_txn("R-0", 205, ref="B1")], {"C-0": "R-0"})
    assert outcome.company[0].match_id == "MAN-1"
    assert len(outcome.linked_variances) == 1
    assert outcome.linked_variances[0].variance == pytest.approx(-5.0)


def test_manual_link_within_tolerance_not_reported() -> None:
    outcome = run_matching([_txn("C-0", 200)], [_txn("R-0", 200.005)], {"C-0": "R-0"})
    assert outcome.linked_variances == []


def test_dangling_manual_links_ignored() -> None:
    outcome = run_matching(
        [_txn("C-0", 10, ref="Q1")],
        [_txn("R-0", 10, ref="Q1")],
        {"C-9": "R-0", "C-0": "R-7"},
    )
    assert outcome.company[0].match_id == "PRF-1"
    assert outcome.linked_variances == []


def test_already_consumed_manual_link_skipped() -> None:
    # Plain dict input can point two company ids at one restaurant id.
    outcome = run_matching(
        [_txn("C-0", 10), _txn("C-1", 10)],
        [_txn("R-0", 10)],
        {"C-0": "R-0", "C-1": "R-0"},
    )
    assert outcome.company[0].match_id == "MAN-1"
    assert not outcome.company[1].matched


def test_first_candidate_wins() -> None:
    company = [_txn("C-0", 30, date="2024/01/05")]
    restaurant = [
        _txn("R-0", 30, date="2024/01/01"),
        _txn("R-1", 30, date="2024/01/05"),
    ]
    outcome = run_matching(company, restaurant)
    assert outcome.restaurant[0].match_id == "AMT-1"
    assert not outcome.restaurant[1].matched


def test_sequence_shared_across_passes() -> None:
    company = [
        _txn("C-0", 10, ref="M1"),
        _txn("C-1", 20, ref="P1"),
        _txn("C-2", 30, ref="R1"),
        _txn("C-3", 40),
    ]
    restaurant = [
        _txn("R-0", 10, ref="M9"),
        _txn("R-1", 20, ref="P1"),
        _txn("R-2", 35, ref="R1"),
        _txn("R-3", 40),
    ]
    outcome = run_matching(company, restaurant, {"C-0": "R-0"})
    assert _ids(outcome.company) == {
        "C-0": "MAN-1",
        "C-1": "PRF-2",
        "C-2": "REF-3",
        "C-3": "AMT-4",
    }


def test_short_or_missing_refs_skip_reference_passes() -> None:
    outcome = run_matching([_txn("C-0", 10, ref="X")], [_txn("R-0", 99, ref="X")])
    assert not outcome.company[0].matched


def test_linked_variance_order_reference_then_manual() -> None:
    company = [_txn("C-0", 100, ref="M1"), _txn("C-1", 100, ref="INV1")]
    restaurant = [_txn("R-0", 110, ref="M2"), _txn("R-1", 80, ref="INV1")]
    outcome = run_matching(company, restaurant, {"C-0": "R-0"})
    assert [lv.company.id for lv in outcome.linked_variances] == ["C-1", "C-0"]


def test_idempotent_and_no_mutation() -> None:
    company = [_txn("C-0", 100, ref="INV1"), _txn("C-1", 40)]
    restaurant = [_txn("R-0", 90, ref="INV1"), _txn("R-1", 40)]
    links = ManualLinkMap({"C-1": "R-1"})
    before = [txn.model_copy() for txn in company + restaurant]

    first = run_matching(company, restaurant, links)
    second = run_matching(company, restaurant, links)

    assert first == second
    assert company + restaurant == before
    assert all(not txn.matched for txn in company + restaurant)
    assert links.to_dict() == {"C-1": "R-1"}


def test_no_double_matching_and_conservation() -> None:
    company = [_txn(f"C-{i}", 10 + (i % 3), ref=f"REF{i % 4}") for i in range(12)]
    restaurant = [_txn(f"R-{i}", 10 + (i % 2), ref=f"REF{i % 5}") for i in range(9)]
    outcome = run_matching(company, restaurant, {"C-3": "R-8", "C-5": "R-1"})

    company_ids = [txn.match_id for txn in outcome.company if txn.matched]
    restaurant_ids = [txn.match_id for txn in outcome.restaurant if txn.matched]
    assert len(company_ids) == len(set(company_ids))
    assert len(restaurant_ids) == len(set(restaurant_ids))
    assert sorted(company_ids) == sorted(restaurant_ids)

    unmatched_company = [txn for txn in outcome.company if not txn.matched]
    assert len(unmatched_company) + len(company_ids) == len(company)


def test_rejects_non_mapping_links() -> None:
    with pytest.raises(TypeError):
        run_matching([], [], [("C-0", "R-0")])  # type: ignore[arg-type]


def test_each_pass_logs_its_match_count(caplog) -> None:
    company = [_txn("C-0", 10, ref="M1"), _txn("C-1", 20, ref="P1"), _txn("C-2", 40)]
    restaurant = [_txn("R-0", 11, ref="M9"), _txn("R-1", 20, ref="P1"), _txn("R-2", 40)]
    with caplog.at_level(logging.INFO, logger="match"):
        run_matching(company, restaurant, {"C-0": "R-0"}, MatchSettings(match_by_ref=False))

    lines = [record.getMessage() for record in caplog.records if record.getMessage().startswith("match_pass")]
    assert len(lines) == 4
    assert "pass=1/4 | name=manual | matched=1" in lines[0]
    assert "pass=2/4 | name=perfect | matched=1" in lines[1]
    assert "skipped=match_by_ref_disabled" in lines[2]
    assert "pass=4/4 | name=amount | matched=1" in lines[3]


if __name__ == "__main__":
    raise SystemExit(pytest.main([__file__, "-v"]))
