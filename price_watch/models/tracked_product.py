# price_watch/models/tracked_product.py

"""Tracked product model: a user's recurring purchase under price watch."""

from dataclasses import dataclass
from enum import Enum


class MatchStatus(str, Enum):
    """Reconciliation stage of a tracked product against the HEB catalog."""

    PENDING = "pending"
    MATCHED = "matched"
    NOT_FOUND = "not_found"
    AMBIGUOUS = "ambiguous"


# Statuses eligible for the automatic re-scrape selection
RESCRAPE_STATUSES: tuple[MatchStatus, ...] = (
    MatchStatus.PENDING,
    MatchStatus.MATCHED,
)


@dataclass
class TrackedProduct:
    """A product a user wants price-monitored."""

    id: str
    user_id: str
    normalized_name: str
    display_name: str
    avg_purchase_price: float = 0.0
    heb_product_id: str | None = None
    match_status: MatchStatus = MatchStatus.PENDING
    is_active: bool = True
    last_scraped_at: str | None = None
    heb_product_name: str | None = None
    heb_ean: str | None = None

    @property
    def product_key(self) -> str:
        """Human-readable key used to group this product's log entries."""
        return f"{self.display_name} [{self.id[:8]}]"

    @property
    def is_matched(self) -> bool:
        """True when the product already resolved to an HEB id."""
        return bool(self.heb_product_id) and (
            self.match_status == MatchStatus.MATCHED
        )
