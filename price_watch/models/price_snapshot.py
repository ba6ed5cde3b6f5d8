# price_watch/models/price_snapshot.py

"""Dated HEB price observation for a tracked product."""

from dataclasses import dataclass
from datetime import date


@dataclass
class PriceSnapshot:
    """One observed HEB price for a tracked product on a scrape date."""

    tracked_product_id: str
    user_id: str
    heb_price: float
    heb_list_price: float
    is_promotion: bool
    scrape_date: date
    promotion_text: str | None = None
    id: int | None = None
