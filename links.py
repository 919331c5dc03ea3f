"""
links.py - Manual link store.

Manual links are user-asserted pairs (company id -> restaurant id) that the
matching engine applies before any automatic pass. The map is owned by the
caller and is bijective: a company transaction links to at most one
restaurant transaction and vice versa. Linking a restaurant id that is
already taken moves it to the new company id.

Links reference transaction ids, which are reassigned whenever the raw text
is re-parsed. Entries that no longer resolve are kept and simply ignored.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping, Sequence
from typing import Any, Optional

from logging_config import get_logger
from models import Side, Transaction

logger = get_logger(__name__)


def _clean_id(value: Any, label: str) -> str:
    text = str(value or "").strip()
    if not text:
        raise ValueError(f"{label} cannot be empty")
    return text


class ManualLinkMap(Mapping[str, str]):
    """Bijective company-id -> restaurant-id map with insertion order."""

    def __init__(self, links: Optional[Mapping[str, str]] = None) -> None:
        self._forward: dict[str, str] = {}
        self._reverse: dict[str, str] = {}
        for company_id, restaurant_id in (links or {}).items():
            self.link(company_id, restaurant_id)

    def __getitem__(self, company_id: str) -> str:
        return self._forward[company_id]

    def __iter__(self) -> Iterator[str]:
        return iter(self._forward)

    def __len__(self) -> int:
        return len(self._forward)

    def __repr__(self) -> str:
        return f"ManualLinkMap({self._forward!r})"

    def link(self, company_id: str, restaurant_id: str) -> None:
        """Insert or overwrite the link for company_id."""
        company_id = _clean_id(company_id, "company_id")
        restaurant_id = _clean_id(restaurant_id, "restaurant_id")

        previous_company = self._reverse.get(restaurant_id)
        if previous_company is not None and previous_company != company_id:
            del self._forward[previous_company]
            logger.info(
                "manual_link_moved | restaurant=%s | from_company=%s | to_company=%s",
                restaurant_id,
                previous_company,
                company_id,
            )

        previous_restaurant = self._forward.get(company_id)
        if previous_restaurant is not None:
            self._reverse.pop(previous_restaurant, None)

        self._forward[company_id] = restaurant_id
        self._reverse[restaurant_id] = company_id
        logger.debug("manual_link_set | company=%s | restaurant=%s", company_id, restaurant_id)

    def link_from(self, side: Side | str, source_id: str, target_id: str) -> None:
        """Link starting from either side's transaction."""
        if Side.from_value(side) is Side.COMPANY:
            self.link(source_id, target_id)
        else:
            self.link(target_id, source_id)

    def unlink(self, company_id: str) -> bool:
        """Remove the link for company_id. Returns False if there was none."""
        restaurant_id = self._forward.pop(str(company_id or "").strip(), None)
        if restaurant_id is None:
            return False
        self._reverse.pop(restaurant_id, None)
        logger.debug("manual_link_removed | company=%s | restaurant=%s", company_id, restaurant_id)
        return True

    def restaurant_for(self, company_id: str) -> Optional[str]:
        return self._forward.get(company_id)

    def company_for(self, restaurant_id: str) -> Optional[str]:
        return self._reverse.get(restaurant_id)

    def copy(self) -> "ManualLinkMap":
        return ManualLinkMap(self._forward)

    def to_dict(self) -> dict[str, str]:
        return dict(self._forward)

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "ManualLinkMap":
        """Build from persisted JSON, skipping blank entries.

        When two company ids claim the same restaurant id the later entry
        wins.
        """
        links = cls()
        if not isinstance(data, Mapping):
            return links
        for company_id, restaurant_id in data.items():
            company_text = str(company_id or "").strip()
            restaurant_text = str(restaurant_id or "").strip()
            if not company_text or not restaurant_text:
                continue
            if restaurant_text in links._reverse:
                logger.warning(
                    "manual_link_duplicate | restaurant=%s | dropped_company=%s | kept_company=%s",
                    restaurant_text,
                    links._reverse[restaurant_text],
                    company_text,
                )
            links.link(company_text, restaurant_text)
        return links

    def resolve_pairs(
        self,
        company: Sequence[Transaction],
        restaurant: Sequence[Transaction],
    ) -> list[tuple[Transaction, Transaction]]:
        """Links whose two ids both exist in the given transactions."""
        company_by_id = {txn.id: txn for txn in reversed(company)}
        restaurant_by_id = {txn.id: txn for txn in reversed(restaurant)}
        pairs: list[tuple[Transaction, Transaction]] = []
        for company_id, restaurant_id in self._forward.items():
            company_txn = company_by_id.get(company_id)
            restaurant_txn = restaurant_by_id.get(restaurant_id)
            if company_txn is not None and restaurant_txn is not None:
                pairs.append((company_txn, restaurant_txn))
        return pairs
