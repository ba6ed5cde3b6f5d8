# price_watch/models/price_alert.py

"""Price alert model raised when HEB undercuts a user's average."""

from dataclasses import dataclass
from enum import Enum


class AlertType(str, Enum):
    """Why an alert was raised."""

    PRICE_DROP = "price_drop"
    PROMOTION = "promotion"


@dataclass
class PriceAlert:
    """Notification that an HEB price beats the user's average."""

    user_id: str
    tracked_product_id: str
    snapshot_id: int
    alert_type: AlertType
    heb_price: float
    user_avg_price: float
    savings_percent: int
    savings_amount: float
    id: int | None = None
