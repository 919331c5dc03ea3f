"""
models.py - Data Models for the Reconciliation Engine

This file defines ALL data structures used across the reconciliation engine.
Every module in the pipeline communicates exclusively through these models:

    parse.py     ->  list[Transaction]
    match.py     ->  MatchOutcome
    aggregate.py ->  AggregateResult
    report.py    ->  list[TableItem] / export rows (uses AggregateResult)

Design principles:
1. Each layer's output is the next layer's input
2. Models are values - every run builds new ones, nothing is mutated in place
3. Match annotations live in ONE optional field (Transaction.match) and the
   display fields (matched / match_id / match_reason) are derived from it,
   so they can never disagree
4. Central fields carry descriptions - they document the heuristics that
   produced them

Schema relationships:
    MatchKind       --used by--> MatchTag.kind
    MatchTag        --used by--> Transaction.match
    Transaction     --used by--> LinkedVariance, MatchOutcome, LedgerEntry
    LinkedVariance  --used by--> MatchOutcome, AggregateResult
    DailySummaryRow --used by--> AggregateResult.summary
    LedgerEntry     --used by--> AggregateResult.combined_ledger
    TableItem       --built from--> AggregateResult (report.py)
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field

# Two amounts closer than this are the same amount.
AMOUNT_TOLERANCE = 0.01

# A net variance below this counts as zero for the reconciliation status.
STATUS_VARIANCE_TOLERANCE = 0.1

NO_REFERENCE = "N/A"


class Side(str, Enum):
    """The two independent transaction sources being reconciled."""

    COMPANY = "Company"
    RESTAURANT = "Restaurant"

    @property
    def prefix(self) -> str:
        """Id prefix for transactions parsed from this side."""
        return "C" if self is Side.COMPANY else "R"

    @classmethod
    def from_value(cls, value: "Side | str") -> "Side":
        """Accept a Side, its display value, its prefix, or a lowercase name."""
        if isinstance(value, Side):
            return value
        text = str(value or "").strip().lower()
        if text in {"c", "company"}:
            return cls.COMPANY
        if text in {"r", "restaurant", "bank"}:
            return cls.RESTAURANT
        raise ValueError(f"Unknown side: {value!r}")


class MatchKind(str, Enum):
    """Which matching pass claimed a pair. The value is the match id prefix."""

    # Pass 1: user asserted the correspondence. Always wins.
    MANUAL = "MAN"

    # Pass 2: reference and amount both agree.
    PERFECT = "PRF"

    # Pass 3: reference agrees, amount differs. Always produces a
    # LinkedVariance so the difference is surfaced.
    REFERENCE = "REF"

    # Pass 4: amount agrees (optionally the date as well), reference ignored.
    AMOUNT = "AMT"


MATCH_REASONS: dict[MatchKind, str] = {
    MatchKind.MANUAL: "Manual link",
    MatchKind.PERFECT: "Exact match (reference + amount)",
    MatchKind.REFERENCE: "Reference match (amount variance)",
    MatchKind.AMOUNT: "Amount match",
}
AMOUNT_DATE_REASON = "Amount+date match"


class MatchTag(BaseModel):
    """Annotation attached to both transactions of a matched pair."""

    model_config = ConfigDict(frozen=True)

    kind: MatchKind
    sequence: int = Field(
        ...,
        ge=1,
        description=(
            "Run-wide match counter. Starts at 1 on every run and is shared "
            "by all four passes, so sequences are unique within one run "
            "regardless of which pass produced them."
        ),
    )
    reason: str

    @property
    def match_id(self) -> str:
        return f"{self.kind.value}-{self.sequence}"


class MatchSettings(BaseModel):
    """User-tunable switches for the automatic passes."""

    match_by_ref: bool = Field(
        default=True,
        description=(
            "Enable pass 3: pair transactions sharing a reference even when "
            "the amounts differ, and report the difference as a variance."
        ),
    )
    strict_date: bool = Field(
        default=False,
        description=(
            "Restrict pass 4 (amount-only matching) to pairs posted on the "
            "same normalized date."
        ),
    )


class Transaction(BaseModel):
    """One parsed ledger line from either side.

    Transactions are produced by parse.py with no match annotation and are
    only ever annotated by match.py, which returns annotated copies.
    """

    id: str = Field(
        ...,
        description=(
            "'{prefix}-{line index}' where prefix is C (company) or R "
            "(restaurant) and the index is the 0-based line position in the "
            "raw text. Unique within a side; the two sides never collide."
        ),
    )
    raw_line: str = Field(
        default="",
        description="Original unparsed line, kept for audit and debugging.",
    )
    amount: float = Field(
        ...,
        gt=0,
        description="Positive amount. Lines without one never become transactions.",
    )
    date: str = Field(
        default="",
        description="Normalized 'YYYY/MM/DD' date, or '' when the line had no date token.",
    )
    ref: str = Field(
        default=NO_REFERENCE,
        description="Trimmed reference/description token, or 'N/A' when none was found.",
    )
    match: Optional[MatchTag] = Field(
        default=None,
        description="Set by the matching engine when this transaction is part of a pair.",
    )

    @computed_field  # type: ignore[prop-decorator]
    @property
    def matched(self) -> bool:
        return self.match is not None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def match_id(self) -> Optional[str]:
        return self.match.match_id if self.match is not None else None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def match_reason(self) -> Optional[str]:
        return self.match.reason if self.match is not None else None

    model_config = ConfigDict(
        json_schema_extra={
            "examples": [
                {
                    "id": "C-0",
                    "raw_line": "100\t2024/01/01\tINV1",
                    "amount": 100.0,
                    "date": "2024/01/01",
                    "ref": "INV1",
                }
            ]
        }
    )


class LinkedVariance(BaseModel):
    """A matched pair whose amounts disagree (pass 3 or a manual link)."""

    company: Transaction
    restaurant: Transaction
    variance: float = Field(
        ...,
        description="company.amount - restaurant.amount (signed).",
    )


class MatchOutcome(BaseModel):
    """Annotated copies of both sides plus the variance records."""

    company: list[Transaction] = Field(default_factory=list)
    restaurant: list[Transaction] = Field(default_factory=list)
    linked_variances: list[LinkedVariance] = Field(default_factory=list)


class DailySummaryRow(BaseModel):
    """Per-date totals for both sides."""

    date: str
    company_total: float
    restaurant_total: float
    variance: float


class LedgerEntry(Transaction):
    """A transaction in the combined ledger, tagged with its source side."""

    source: Side


class TableItemKind(str, Enum):
    """Row kinds of the variance table."""

    SINGLE = "single"
    LINKED_VARIANCE = "linked_variance"


class TableItem(BaseModel):
    """One row of the variance table: an unmatched transaction or a linked variance."""

    kind: TableItemKind
    side: Optional[Side] = None
    transaction: Optional[Transaction] = None
    linked: Optional[LinkedVariance] = None

    @property
    def is_linked(self) -> bool:
        return self.kind is TableItemKind.LINKED_VARIANCE

    @property
    def primary(self) -> Transaction:
        """The transaction that represents this row for sorting (company side for pairs)."""
        if self.linked is not None:
            return self.linked.company
        if self.transaction is None:
            raise ValueError("TableItem has neither a transaction nor a linked pair")
        return self.transaction


class ReconStatus(str, Enum):
    """Overall state of one reconciliation."""

    MATCHED = "matched"
    DIFF = "diff"
    DRAFT = "draft"


class AggregateResult(BaseModel):
    """Everything the presentation layer, the CLI and the export consume."""

    summary: list[DailySummaryRow] = Field(default_factory=list)
    unmatched_company: list[Transaction] = Field(default_factory=list)
    unmatched_restaurant: list[Transaction] = Field(default_factory=list)
    linked_variances: list[LinkedVariance] = Field(default_factory=list)
    grand_total_company: float = 0.0
    grand_total_restaurant: float = 0.0
    total_variance: float = 0.0
    combined_ledger: list[LedgerEntry] = Field(default_factory=list)
    total_unmatched_count: int = 0
    match_percentage: int = Field(default=0, ge=0, le=100)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def status(self) -> ReconStatus:
        """'matched' only when the totals agree AND nothing is left unmatched.

        A zero net variance alone can hide offsetting unmatched entries.
        """
        if (
            abs(self.total_variance) < STATUS_VARIANCE_TOLERANCE
            and self.total_unmatched_count == 0
        ):
            return ReconStatus.MATCHED
        return ReconStatus.DIFF
