# price_watch/models/heb_product.py

"""Typed view of HEB catalog search records.

The catalog API returns a loosely-typed nested shape::

    product -> items[] (SKUs) -> sellers[] -> commertialOffer

:func:`parse_product` validates that shape once, up front, and returns
either a :class:`HebProduct` or an :class:`Unparseable` naming the first
offending path. A malformed seller entry only drops that seller; its
reason is kept on :attr:`HebProduct.dropped_sellers` so the caller can
log it. Everything downstream works on the typed form only.
"""

from dataclasses import dataclass, field
from typing import Any, cast


@dataclass
class HebOffer:
    """Commercial offer of one seller for one SKU."""

    price: float
    list_price: float
    available_quantity: float


@dataclass
class HebSeller:
    """A marketplace seller listing a SKU."""

    seller_id: str
    offer: HebOffer


@dataclass
class HebSkuItem:
    """One SKU of a catalog product."""

    item_id: str
    ean: str
    sellers: list[HebSeller] = field(
        default_factory=lambda: list[HebSeller]()
    )


@dataclass
class HebProduct:
    """A catalog product as returned by the HEB search endpoint."""

    product_id: str
    product_name: str
    brand: str = ""
    items: list[HebSkuItem] = field(
        default_factory=lambda: list[HebSkuItem]()
    )
    dropped_sellers: list[str] = field(
        default_factory=lambda: list[str]()
    )

    def preview(self) -> dict[str, object]:
        """Short dict used in search-result log entries."""
        return {
            "productId": self.product_id,
            "productName": self.product_name,
            "brand": self.brand,
            "skus": len(self.items),
        }


@dataclass
class Unparseable:
    """A raw record that does not match the expected catalog shape."""

    reason: str
    raw: Any = None


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _parse_seller(
    raw: Any, path: str,
) -> HebSeller | Unparseable:
    if not isinstance(raw, dict):
        return Unparseable(f"{path} is not an object", raw)
    seller = cast(dict[str, Any], raw)
    seller_id = seller.get("sellerId")
    if seller_id is None:
        return Unparseable(f"{path}.sellerId is missing", raw)
    offer_raw = seller.get("commertialOffer")
    if not isinstance(offer_raw, dict):
        return Unparseable(
            f"{path}.commertialOffer is not an object", raw,
        )
    offer = cast(dict[str, Any], offer_raw)
    for key in ("Price", "ListPrice", "AvailableQuantity"):
        if not _is_number(offer.get(key)):
            return Unparseable(
                f"{path}.commertialOffer.{key} is not numeric", raw,
            )
    return HebSeller(
        seller_id=str(seller_id),
        offer=HebOffer(
            price=float(offer["Price"]),
            list_price=float(offer["ListPrice"]),
            available_quantity=float(offer["AvailableQuantity"]),
        ),
    )


def _parse_item(
    raw: Any, path: str, dropped: list[str],
) -> HebSkuItem | Unparseable:
    if not isinstance(raw, dict):
        return Unparseable(f"{path} is not an object", raw)
    item = cast(dict[str, Any], raw)
    sellers_raw = item.get("sellers", [])
    if not isinstance(sellers_raw, list):
        return Unparseable(f"{path}.sellers is not a list", raw)

    sellers: list[HebSeller] = []
    for idx, seller_raw in enumerate(cast(list[Any], sellers_raw)):
        seller = _parse_seller(seller_raw, f"{path}.sellers[{idx}]")
        if isinstance(seller, Unparseable):
            dropped.append(seller.reason)
            continue
        sellers.append(seller)

    return HebSkuItem(
        item_id=str(item.get("itemId", "")),
        ean=str(item.get("ean") or ""),
        sellers=sellers,
    )


def parse_product(raw: Any) -> HebProduct | Unparseable:
    """Validate a raw search record and convert it to a HebProduct."""
    if not isinstance(raw, dict):
        return Unparseable("product is not an object", raw)
    record = cast(dict[str, Any], raw)

    product_id = record.get("productId")
    if product_id is None:
        return Unparseable("productId is missing", raw)
    product_name = record.get("productName")
    if not isinstance(product_name, str):
        return Unparseable("productName is not a string", raw)

    items_raw = record.get("items", [])
    if not isinstance(items_raw, list):
        return Unparseable("items is not a list", raw)

    items: list[HebSkuItem] = []
    dropped: list[str] = []
    for idx, item_raw in enumerate(cast(list[Any], items_raw)):
        item = _parse_item(item_raw, f"items[{idx}]", dropped)
        if isinstance(item, Unparseable):
            return item
        items.append(item)

    return HebProduct(
        product_id=str(product_id),
        product_name=product_name,
        brand=str(record.get("brand") or ""),
        items=items,
        dropped_sellers=dropped,
    )
