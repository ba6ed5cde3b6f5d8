# price_watch/scrapers/price_extractor.py

"""Derives the authoritative HEB price from a catalog product."""

from dataclasses import dataclass, field

from price_watch.audit.run_logger import RunLogger
from price_watch.config.settings import Settings
from price_watch.models.heb_product import HebProduct


@dataclass
class PriceData:
    """Price information taken from one in-stock seller offer."""

    price: float
    list_price: float
    ean: str
    is_promotion: bool
    seller_details: dict[str, object] = field(
        default_factory=lambda: dict[str, object]()
    )

    @property
    def promotion_text(self) -> str | None:
        """Display text for promotional offers."""
        if not self.is_promotion:
            return None
        return f"Precio regular: ${self.list_price:.2f}"


def extract_price(
    product: HebProduct,
    run_log: RunLogger,
    product_key: str | None = None,
    seller_id: str | None = None,
) -> PriceData | None:
    """Return the first in-stock offer from the authoritative seller.

    SKUs and sellers are scanned in response order and the first match
    wins; this is not a lowest-price search. Returns None when no
    seller with ``sellerId == seller_id`` has stock.
    """
    wanted = seller_id or Settings.AUTHORITATIVE_SELLER_ID

    run_log.debug(
        "price-extract",
        "Scanning SKUs and sellers",
        {
            "productId": product.product_id,
            "productName": product.product_name,
            "total_skus": len(product.items),
            "all_sellers": [
                {
                    "sku": item.item_id,
                    "ean": item.ean,
                    "sellerId": s.seller_id,
                    "price": s.offer.price,
                    "listPrice": s.offer.list_price,
                    "stock": s.offer.available_quantity,
                }
                for item in product.items
                for s in item.sellers
            ],
        },
        product_key,
    )

    for item in product.items:
        for seller in item.sellers:
            if seller.seller_id != wanted:
                continue
            if seller.offer.available_quantity <= 0:
                continue
            price = seller.offer.price
            list_price = seller.offer.list_price
            data = PriceData(
                price=price,
                list_price=list_price,
                ean=item.ean,
                is_promotion=list_price > price,
                seller_details={
                    "sellerId": seller.seller_id,
                    "skuId": item.item_id,
                    "ean": item.ean,
                    "availableQty": seller.offer.available_quantity,
                },
            )
            promo = (
                f" (promo, regular ${list_price})"
                if data.is_promotion
                else ""
            )
            run_log.info(
                "price-extract",
                f"Found HEB seller price: ${price}{promo}",
                {
                    "price": price,
                    "listPrice": list_price,
                    "ean": item.ean,
                    "isPromotion": data.is_promotion,
                    "sellerDetails": data.seller_details,
                },
                product_key,
            )
            return data

    run_log.warn(
        "price-extract",
        f"No valid HEB seller (sellerId={wanted}) with stock found",
        {
            "productId": product.product_id,
            "productName": product.product_name,
        },
        product_key,
    )
    return None
