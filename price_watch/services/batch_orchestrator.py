# price_watch/services/batch_orchestrator.py

"""Drives the search -> extract -> persist -> alert pipeline per product."""

import logging
import time
import traceback
from collections.abc import Callable
from dataclasses import asdict, dataclass
from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal

from price_watch.audit.run_logger import RunLogger
from price_watch.config.settings import Settings
from price_watch.models.heb_product import HebProduct
from price_watch.models.price_alert import AlertType, PriceAlert
from price_watch.models.price_snapshot import PriceSnapshot
from price_watch.models.tracked_product import (
    RESCRAPE_STATUSES,
    TrackedProduct,
)
from price_watch.scrapers.heb_client import HebSearchClient
from price_watch.scrapers.price_extractor import PriceData, extract_price
from price_watch.storage.tracked_products_db import (
    GatewayError,
    PersistenceGateway,
)

logger = logging.getLogger("price_watch.orchestrator")


class BatchFetchError(RuntimeError):
    """The list of due products could not be read."""


@dataclass
class RunSummary:
    """Counters for a completed batch."""

    run_id: str
    total_products_in_batch: int = 0
    processed: int = 0
    matched: int = 0
    not_found: int = 0
    alerts_created: int = 0
    errors: int = 0
    status: str = "completed"

    def to_dict(self) -> dict[str, object]:
        """Summary fields in response order."""
        data = asdict(self)
        return {
            "status": data["status"],
            "run_id": data["run_id"],
            "processed": data["processed"],
            "matched": data["matched"],
            "not_found": data["not_found"],
            "alerts_created": data["alerts_created"],
            "errors": data["errors"],
            "total_products_in_batch": data["total_products_in_batch"],
        }

    @property
    def message(self) -> str:
        return (
            f"Processed {self.processed} products "
            f"({self.matched} matched, {self.not_found} not found, "
            f"{self.alerts_created} alerts, {self.errors} errors)"
        )


def round_half_up(value: float, places: int = 0) -> Decimal:
    """Round *value* to *places* decimals, halves away from zero."""
    step = Decimal(1).scaleb(-places)
    return Decimal(str(value)).quantize(step, rounding=ROUND_HALF_UP)


def compute_savings(
    avg_purchase_price: float, heb_price: float,
) -> tuple[float, float]:
    """Return ``(savings_fraction, savings_amount)``.

    The fraction is 0 when there is no positive purchase average.
    """
    amount = avg_purchase_price - heb_price
    if avg_purchase_price <= 0:
        return 0.0, amount
    return amount / avg_purchase_price, amount


def build_alert(
    product: TrackedProduct,
    snapshot_id: int,
    price_data: PriceData,
    savings_fraction: float,
    savings_amount: float,
) -> PriceAlert:
    """Alert row for a product whose HEB price beats its average."""
    return PriceAlert(
        user_id=product.user_id,
        tracked_product_id=product.id,
        snapshot_id=snapshot_id,
        alert_type=(
            AlertType.PROMOTION
            if price_data.is_promotion
            else AlertType.PRICE_DROP
        ),
        heb_price=price_data.price,
        user_avg_price=product.avg_purchase_price,
        savings_percent=int(round_half_up(savings_fraction * 100)),
        savings_amount=float(round_half_up(savings_amount, 2)),
    )


class BatchOrchestrator:
    """Sequential, rate-limited price refresh over one batch of products."""

    def __init__(
        self,
        gateway: PersistenceGateway,
        client: HebSearchClient,
        run_log: RunLogger,
        sleep: Callable[[float], None] | None = None,
        today: date | None = None,
    ) -> None:
        self.settings = Settings()
        self.gateway = gateway
        self.client = client
        self.run_log = run_log
        self._sleep = sleep or time.sleep
        self._today = today

    def _scrape_date(self) -> date:
        return self._today or datetime.now(timezone.utc).date()

    # ── Batch selection ──────────────────────────────────

    def fetch_batch(self) -> list[TrackedProduct]:
        """Read the products due for refresh.

        Raises:
            BatchFetchError: the gateway could not be read.
        """
        log = self.run_log
        batch_size = self.settings.BATCH_SIZE
        log.info(
            "fetch-products",
            "Querying tracked_products...",
            {
                "filters": {
                    "is_active": True,
                    "match_status": [s.value for s in RESCRAPE_STATUSES],
                },
                "order": "last_scraped_at ASC NULLS FIRST",
                "limit": batch_size,
            },
        )
        t0 = time.monotonic()
        try:
            products = self.gateway.fetch_due_products(batch_size)
        except GatewayError as exc:
            log.error(
                "fetch-products",
                "Database query failed",
                {"error": str(exc)},
            )
            raise BatchFetchError(str(exc)) from exc

        log.info(
            "fetch-products",
            f"Fetched {len(products)} products in "
            f"{time.monotonic() - t0:.2f}s",
            {
                "count": len(products),
                "products": [
                    {
                        "id": p.id,
                        "name": p.display_name,
                        "normalized": p.normalized_name,
                        "avg_price": p.avg_purchase_price,
                        "match_status": p.match_status.value,
                        "has_heb_id": bool(p.heb_product_id),
                    }
                    for p in products
                ],
            },
        )
        return products

    # ── Per-product steps ────────────────────────────────

    def search(
        self, product: TrackedProduct, label: str,
    ) -> tuple[HebProduct | None, int]:
        """Run the search strategy; return the candidate and attempt count."""
        key = product.product_key
        log = self.run_log

        if product.is_matched:
            log.info(
                "search-strategy",
                f"{label} Already matched "
                f"(heb_id={product.heb_product_id}), "
                "re-fetching by display name",
                product_key=key,
            )
            result = self.client.search(
                product.display_name, log, key,
                "Attempt 1 (re-fetch matched)",
            )
            return result.product, 1

        log.info(
            "search-strategy",
            f'{label} Status "{product.match_status.value}", '
            "searching by normalized name first",
            product_key=key,
        )
        result = self.client.search(
            product.normalized_name, log, key,
            "Attempt 1 (normalized)",
        )
        if result.product is not None:
            return result.product, 1

        log.info(
            "search-strategy",
            f"{label} Normalized name returned no results, "
            "trying display name as fallback",
            product_key=key,
        )
        result = self.client.search(
            product.display_name, log, key,
            "Attempt 2 (display name fallback)",
        )
        return result.product, 2

    def _mark_not_found(
        self, product: TrackedProduct, label: str,
    ) -> None:
        key = product.product_key
        try:
            self.gateway.mark_not_found(
                product.id, datetime.now(timezone.utc),
            )
        except GatewayError as exc:
            self.run_log.error(
                "db-update",
                f"{label} Failed to update match_status to not_found",
                {"error": str(exc)},
                key,
            )
        else:
            self.run_log.info(
                "db-update",
                f"{label} Updated match_status -> not_found",
                product_key=key,
            )

    def _mark_matched(
        self,
        product: TrackedProduct,
        heb_product: HebProduct,
        price_data: PriceData,
        label: str,
    ) -> None:
        key = product.product_key
        self.run_log.info(
            "db-update",
            f"{label} Updating tracked_products with HEB match info",
            {
                "heb_product_id": heb_product.product_id,
                "heb_product_name": heb_product.product_name,
                "heb_ean": price_data.ean,
                "new_match_status": "matched",
            },
            key,
        )
        try:
            self.gateway.mark_matched(
                product.id,
                heb_product.product_id,
                heb_product.product_name,
                price_data.ean,
                datetime.now(timezone.utc),
            )
        except GatewayError as exc:
            self.run_log.error(
                "db-update",
                f"{label} Failed to update tracked_products",
                {"error": str(exc)},
                key,
            )
        else:
            self.run_log.info(
                "db-update",
                f"{label} tracked_products updated successfully",
                product_key=key,
            )

    def _write_snapshot(
        self,
        product: TrackedProduct,
        price_data: PriceData,
        label: str,
    ) -> int | None:
        key = product.product_key
        self.run_log.info(
            "snapshot",
            f"{label} Upserting price_snapshot",
            {
                "tracked_product_id": product.id,
                "heb_price": price_data.price,
                "heb_list_price": price_data.list_price,
                "is_promotion": price_data.is_promotion,
            },
            key,
        )
        snapshot = PriceSnapshot(
            tracked_product_id=product.id,
            user_id=product.user_id,
            heb_price=price_data.price,
            heb_list_price=price_data.list_price,
            is_promotion=price_data.is_promotion,
            promotion_text=price_data.promotion_text,
            scrape_date=self._scrape_date(),
        )
        try:
            snapshot_id = self.gateway.upsert_snapshot(snapshot)
        except GatewayError as exc:
            self.run_log.error(
                "snapshot",
                f"{label} Snapshot upsert FAILED",
                {"error": str(exc)},
                key,
            )
            return None
        self.run_log.info(
            "snapshot",
            f"{label} Snapshot upserted successfully",
            {"snapshot_id": snapshot_id},
            key,
        )
        return snapshot_id

    def _evaluate_alert(
        self,
        product: TrackedProduct,
        snapshot_id: int,
        price_data: PriceData,
        label: str,
        summary: RunSummary,
    ) -> None:
        key = product.product_key
        log = self.run_log
        threshold = self.settings.SAVINGS_THRESHOLD
        fraction, amount = compute_savings(
            product.avg_purchase_price, price_data.price,
        )
        triggered = fraction >= threshold

        log.info(
            "alert-check",
            f"{label} Comparing prices",
            {
                "user_avg_price": product.avg_purchase_price,
                "heb_price": price_data.price,
                "difference": float(round_half_up(amount, 2)),
                "savings_percent": f"{round_half_up(fraction * 100)}%",
                "threshold": f"{round_half_up(threshold * 100)}%",
                "alert_triggered": triggered,
            },
            key,
        )
        if not triggered:
            log.info(
                "alert-check",
                f"{label} No alert needed (savings "
                f"{round_half_up(fraction * 100)}% < threshold "
                f"{round_half_up(threshold * 100)}%)",
                product_key=key,
            )
            return

        alert = build_alert(
            product, snapshot_id, price_data, fraction, amount,
        )
        log.info(
            "alert-create",
            f'{label} ALERT TRIGGERED! Creating '
            f'"{alert.alert_type.value}" alert',
            {
                "alert_type": alert.alert_type.value,
                "heb_price": alert.heb_price,
                "user_avg_price": alert.user_avg_price,
                "savings_percent": alert.savings_percent,
                "savings_amount": alert.savings_amount,
            },
            key,
        )
        try:
            self.gateway.insert_alert(alert)
        except GatewayError as exc:
            log.error(
                "alert-create",
                f"{label} Failed to insert alert",
                {"error": str(exc)},
                key,
            )
            summary.errors += 1
            return
        log.info(
            "alert-create",
            f"{label} Alert inserted successfully",
            product_key=key,
        )
        summary.alerts_created += 1

    def process_product(
        self,
        product: TrackedProduct,
        label: str,
        summary: RunSummary,
    ) -> str:
        """Run the full pipeline for one product and update *summary*.

        Returns the outcome (``matched``, ``not_found``, ``no_price``
        or ``snapshot_error``).
        """
        key = product.product_key
        log = self.run_log

        heb_product, attempts = self.search(product, label)
        log.info(
            "search-result",
            f"{label} Search complete after {attempts} attempt(s)",
            {
                "found": heb_product is not None,
                "heb_product_id": (
                    heb_product.product_id if heb_product else None
                ),
                "heb_product_name": (
                    heb_product.product_name if heb_product else None
                ),
            },
            key,
        )

        if heb_product is None:
            log.warn(
                "no-match",
                f'{label} No HEB product found for "{product.display_name}"',
                {"action": "Marking as not_found"},
                key,
            )
            self._mark_not_found(product, label)
            summary.not_found += 1
            return "not_found"

        log.info(
            "price",
            f'{label} Extracting price from HEB product '
            f'"{heb_product.product_name}"',
            product_key=key,
        )
        price_data = extract_price(heb_product, log, key)
        if price_data is None:
            log.warn(
                "price",
                f"{label} No valid price data extracted, "
                "marking as not_found",
                product_key=key,
            )
            self._mark_not_found(product, label)
            summary.not_found += 1
            return "no_price"

        self._mark_matched(product, heb_product, price_data, label)

        snapshot_id = self._write_snapshot(product, price_data, label)
        if snapshot_id is None:
            summary.errors += 1
            return "snapshot_error"

        self._evaluate_alert(
            product, snapshot_id, price_data, label, summary,
        )
        summary.matched += 1
        return "matched"

    # ── Batch loop ───────────────────────────────────────

    def process_batch(
        self, products: list[TrackedProduct],
    ) -> RunSummary:
        """Process *products* one at a time with a delay between them."""
        log = self.run_log
        total = len(products)
        summary = RunSummary(
            run_id=log.run_id, total_products_in_batch=total,
        )
        delay = self.settings.REQUEST_DELAY

        for i, product in enumerate(products):
            key = product.product_key
            label = f"[{i + 1}/{total}]"
            log.info(
                "process",
                f'{label} Starting product: "{product.display_name}"',
                {
                    "id": product.id,
                    "normalized_name": product.normalized_name,
                    "display_name": product.display_name,
                    "avg_purchase_price": product.avg_purchase_price,
                    "current_match_status": product.match_status.value,
                    "heb_product_id": product.heb_product_id,
                },
                key,
            )
            t0 = time.monotonic()
            try:
                outcome = self.process_product(product, label, summary)
                log.info(
                    "process",
                    f"{label} Product done in "
                    f"{time.monotonic() - t0:.2f}s -> {outcome.upper()}",
                    product_key=key,
                )
            except Exception as exc:
                log.error(
                    "process",
                    f'{label} UNCAUGHT ERROR processing '
                    f'"{product.display_name}"',
                    {
                        "error": str(exc),
                        "stack": traceback.format_exc(),
                    },
                    key,
                )
                logger.error(
                    "Unhandled error for %s", key, exc_info=True,
                )
                summary.errors += 1
            summary.processed += 1

            if i < total - 1:
                log.debug(
                    "rate-limit",
                    f"Sleeping {delay:.1f}s before next product...",
                    product_key=key,
                )
                self._sleep(delay)

        log.info("summary", "=== RUN COMPLETE ===", summary.to_dict())
        log.info(
            "summary",
            f"Matched: {summary.matched} | "
            f"Not found: {summary.not_found} | "
            f"Alerts: {summary.alerts_created} | "
            f"Errors: {summary.errors}",
        )
        return summary
