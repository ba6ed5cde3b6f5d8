# price_watch/storage/tracked_products_db.py

"""SQLite-backed system of record for tracked products, snapshots and alerts."""

import logging
import sqlite3
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

from price_watch.models.price_alert import AlertType, PriceAlert
from price_watch.models.price_snapshot import PriceSnapshot
from price_watch.models.tracked_product import (
    RESCRAPE_STATUSES,
    MatchStatus,
    TrackedProduct,
)

logger = logging.getLogger("price_watch.db")

_SCHEMA = """\
CREATE TABLE IF NOT EXISTS tracked_products (
    id                 TEXT    PRIMARY KEY,
    user_id            TEXT    NOT NULL,
    normalized_name    TEXT    NOT NULL,
    display_name       TEXT    NOT NULL,
    avg_purchase_price REAL    NOT NULL DEFAULT 0
                       CHECK (avg_purchase_price >= 0),
    heb_product_id     TEXT,
    heb_product_name   TEXT,
    heb_ean            TEXT,
    match_status       TEXT    NOT NULL DEFAULT 'pending'
                       CHECK (match_status IN
                           ('pending', 'matched', 'not_found', 'ambiguous')),
    is_active          INTEGER NOT NULL DEFAULT 1,
    last_scraped_at    TEXT,
    created_at         TEXT    NOT NULL
);

CREATE TABLE IF NOT EXISTS price_snapshots (
    id                 INTEGER PRIMARY KEY AUTOINCREMENT,
    tracked_product_id TEXT    NOT NULL
                       REFERENCES tracked_products(id) ON DELETE CASCADE,
    user_id            TEXT    NOT NULL,
    heb_price          REAL    NOT NULL,
    heb_list_price     REAL    NOT NULL,
    is_promotion       INTEGER NOT NULL DEFAULT 0,
    promotion_text     TEXT,
    scrape_date        TEXT    NOT NULL,
    UNIQUE (tracked_product_id, scrape_date)
);

CREATE TABLE IF NOT EXISTS price_alerts (
    id                 INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id            TEXT    NOT NULL,
    tracked_product_id TEXT    NOT NULL
                       REFERENCES tracked_products(id) ON DELETE CASCADE,
    snapshot_id        INTEGER NOT NULL
                       REFERENCES price_snapshots(id) ON DELETE CASCADE,
    alert_type         TEXT    NOT NULL
                       CHECK (alert_type IN ('price_drop', 'promotion')),
    heb_price          REAL    NOT NULL,
    user_avg_price     REAL    NOT NULL,
    savings_percent    INTEGER NOT NULL,
    savings_amount     REAL    NOT NULL,
    is_read            INTEGER NOT NULL DEFAULT 0,
    created_at         TEXT    NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_tracked_due
    ON tracked_products(is_active, match_status, last_scraped_at);
"""

_PRODUCT_COLUMNS = (
    "id, user_id, normalized_name, display_name, avg_purchase_price, "
    "heb_product_id, match_status, is_active, last_scraped_at, "
    "heb_product_name, heb_ean"
)


class GatewayError(RuntimeError):
    """A read or write against the system of record failed."""


class PersistenceGateway(Protocol):
    """Operations the scrape job needs from the system of record."""

    def fetch_due_products(self, limit: int) -> list[TrackedProduct]:
        ...

    def mark_not_found(
        self, product_id: str, scraped_at: datetime,
    ) -> None:
        ...

    def mark_matched(
        self,
        product_id: str,
        heb_product_id: str,
        heb_product_name: str,
        heb_ean: str,
        scraped_at: datetime,
    ) -> None:
        ...

    def upsert_snapshot(self, snapshot: PriceSnapshot) -> int:
        ...

    def insert_alert(self, alert: PriceAlert) -> int:
        ...

    def close(self) -> None:
        ...


def _row_to_product(row: sqlite3.Row) -> TrackedProduct:
    return TrackedProduct(
        id=row["id"],
        user_id=row["user_id"],
        normalized_name=row["normalized_name"],
        display_name=row["display_name"],
        avg_purchase_price=row["avg_purchase_price"],
        heb_product_id=row["heb_product_id"],
        match_status=MatchStatus(row["match_status"]),
        is_active=bool(row["is_active"]),
        last_scraped_at=row["last_scraped_at"],
        heb_product_name=row["heb_product_name"],
        heb_ean=row["heb_ean"],
    )


class SqliteGateway:
    """SQLite implementation of :class:`PersistenceGateway`."""

    def __init__(self, db_path: Path | str) -> None:
        path = str(db_path)
        try:
            if path != ":memory:":
                Path(path).parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA foreign_keys=ON")
            self._conn.executescript(_SCHEMA)
        except (sqlite3.Error, OSError) as exc:
            raise GatewayError(
                f"Cannot open database {path}: {exc}"
            ) from exc
        logger.debug("SqliteGateway opened at %s", path)

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()

    # ── Batch selection ──────────────────────────────────

    def fetch_due_products(self, limit: int) -> list[TrackedProduct]:
        """Active products awaiting a refresh, least recently scraped first."""
        placeholders = ", ".join("?" for _ in RESCRAPE_STATUSES)
        try:
            rows = self._conn.execute(
                f"SELECT {_PRODUCT_COLUMNS} FROM tracked_products "
                f"WHERE is_active = 1 "
                f"AND match_status IN ({placeholders}) "
                "ORDER BY last_scraped_at IS NOT NULL, "
                "         last_scraped_at ASC, created_at ASC "
                "LIMIT ?",
                (*(s.value for s in RESCRAPE_STATUSES), limit),
            ).fetchall()
        except sqlite3.Error as exc:
            raise GatewayError(str(exc)) from exc
        return [_row_to_product(r) for r in rows]

    # ── Status updates ───────────────────────────────────

    def _update(self, sql: str, params: tuple[object, ...]) -> None:
        try:
            cur = self._conn.execute(sql, params)
            self._conn.commit()
        except sqlite3.Error as exc:
            self._conn.rollback()
            raise GatewayError(str(exc)) from exc
        if cur.rowcount == 0:
            raise GatewayError(
                f"No tracked product with id {params[-1]}"
            )

    def mark_not_found(
        self, product_id: str, scraped_at: datetime,
    ) -> None:
        """Set match_status to not_found and stamp last_scraped_at."""
        self._update(
            "UPDATE tracked_products "
            "SET match_status = ?, last_scraped_at = ? WHERE id = ?",
            (
                MatchStatus.NOT_FOUND.value,
                scraped_at.isoformat(),
                product_id,
            ),
        )

    def mark_matched(
        self,
        product_id: str,
        heb_product_id: str,
        heb_product_name: str,
        heb_ean: str,
        scraped_at: datetime,
    ) -> None:
        """Record the resolved HEB product and mark the row matched."""
        self._update(
            "UPDATE tracked_products "
            "SET heb_product_id = ?, heb_product_name = ?, heb_ean = ?, "
            "    match_status = ?, last_scraped_at = ? "
            "WHERE id = ?",
            (
                heb_product_id,
                heb_product_name,
                heb_ean,
                MatchStatus.MATCHED.value,
                scraped_at.isoformat(),
                product_id,
            ),
        )

    # ── Snapshots & alerts ───────────────────────────────

    def upsert_snapshot(self, snapshot: PriceSnapshot) -> int:
        """Insert or overwrite the snapshot for (product, scrape_date).

        Returns the id of the stored row.
        """
        try:
            self._conn.execute(
                "INSERT INTO price_snapshots "
                "(tracked_product_id, user_id, heb_price, heb_list_price, "
                " is_promotion, promotion_text, scrape_date) "
                "VALUES (?, ?, ?, ?, ?, ?, ?) "
                "ON CONFLICT(tracked_product_id, scrape_date) DO UPDATE SET "
                "  user_id = excluded.user_id, "
                "  heb_price = excluded.heb_price, "
                "  heb_list_price = excluded.heb_list_price, "
                "  is_promotion = excluded.is_promotion, "
                "  promotion_text = excluded.promotion_text",
                (
                    snapshot.tracked_product_id,
                    snapshot.user_id,
                    snapshot.heb_price,
                    snapshot.heb_list_price,
                    int(snapshot.is_promotion),
                    snapshot.promotion_text,
                    snapshot.scrape_date.isoformat(),
                ),
            )
            row = self._conn.execute(
                "SELECT id FROM price_snapshots "
                "WHERE tracked_product_id = ? AND scrape_date = ?",
                (
                    snapshot.tracked_product_id,
                    snapshot.scrape_date.isoformat(),
                ),
            ).fetchone()
            self._conn.commit()
        except sqlite3.Error as exc:
            self._conn.rollback()
            raise GatewayError(str(exc)) from exc
        snapshot_id: int = row["id"]
        return snapshot_id

    def insert_alert(self, alert: PriceAlert) -> int:
        """Insert a price alert and return its id."""
        try:
            cur = self._conn.execute(
                "INSERT INTO price_alerts "
                "(user_id, tracked_product_id, snapshot_id, alert_type, "
                " heb_price, user_avg_price, savings_percent, "
                " savings_amount, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    alert.user_id,
                    alert.tracked_product_id,
                    alert.snapshot_id,
                    AlertType(alert.alert_type).value,
                    alert.heb_price,
                    alert.user_avg_price,
                    alert.savings_percent,
                    alert.savings_amount,
                    datetime.now(timezone.utc).isoformat(),
                ),
            )
            self._conn.commit()
        except sqlite3.Error as exc:
            self._conn.rollback()
            raise GatewayError(str(exc)) from exc
        alert_id = cur.lastrowid
        if alert_id is None:
            raise GatewayError("Alert insert returned no row id")
        return alert_id

    # ── Local registration & inspection ──────────────────

    def add_tracked_product(
        self,
        user_id: str,
        display_name: str,
        avg_purchase_price: float,
        normalized_name: str | None = None,
        product_id: str | None = None,
    ) -> TrackedProduct:
        """Register a product for monitoring and return it."""
        if avg_purchase_price < 0:
            raise ValueError("avg_purchase_price must be >= 0")
        product = TrackedProduct(
            id=product_id or str(uuid.uuid4()),
            user_id=user_id,
            normalized_name=(
                normalized_name or display_name.strip().lower()
            ),
            display_name=display_name,
            avg_purchase_price=avg_purchase_price,
        )
        try:
            self._conn.execute(
                "INSERT INTO tracked_products "
                "(id, user_id, normalized_name, display_name, "
                " avg_purchase_price, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (
                    product.id,
                    product.user_id,
                    product.normalized_name,
                    product.display_name,
                    product.avg_purchase_price,
                    datetime.now(timezone.utc).isoformat(),
                ),
            )
            self._conn.commit()
        except sqlite3.Error as exc:
            self._conn.rollback()
            raise GatewayError(str(exc)) from exc
        logger.info(
            "Tracking '%s' for user %s (avg %.2f)",
            display_name,
            user_id,
            avg_purchase_price,
        )
        return product

    def get_tracked_product(
        self, product_id: str,
    ) -> TrackedProduct | None:
        """Return a tracked product by id, or None."""
        row = self._conn.execute(
            f"SELECT {_PRODUCT_COLUMNS} FROM tracked_products "
            "WHERE id = ?",
            (product_id,),
        ).fetchone()
        return _row_to_product(row) if row else None

    def get_snapshots(
        self, tracked_product_id: str,
    ) -> list[PriceSnapshot]:
        """Return every snapshot of a product, oldest first."""
        rows = self._conn.execute(
            "SELECT id, tracked_product_id, user_id, heb_price, "
            "       heb_list_price, is_promotion, promotion_text, "
            "       scrape_date "
            "FROM price_snapshots WHERE tracked_product_id = ? "
            "ORDER BY scrape_date ASC",
            (tracked_product_id,),
        ).fetchall()
        return [
            PriceSnapshot(
                id=r["id"],
                tracked_product_id=r["tracked_product_id"],
                user_id=r["user_id"],
                heb_price=r["heb_price"],
                heb_list_price=r["heb_list_price"],
                is_promotion=bool(r["is_promotion"]),
                promotion_text=r["promotion_text"],
                scrape_date=datetime.fromisoformat(
                    r["scrape_date"]
                ).date(),
            )
            for r in rows
        ]

    def get_alerts(
        self, user_id: str | None = None,
    ) -> list[PriceAlert]:
        """Return alerts, optionally restricted to one user."""
        sql = (
            "SELECT id, user_id, tracked_product_id, snapshot_id, "
            "       alert_type, heb_price, user_avg_price, "
            "       savings_percent, savings_amount "
            "FROM price_alerts"
        )
        params: tuple[object, ...] = ()
        if user_id is not None:
            sql += " WHERE user_id = ?"
            params = (user_id,)
        rows = self._conn.execute(sql + " ORDER BY id", params).fetchall()
        return [
            PriceAlert(
                id=r["id"],
                user_id=r["user_id"],
                tracked_product_id=r["tracked_product_id"],
                snapshot_id=r["snapshot_id"],
                alert_type=AlertType(r["alert_type"]),
                heb_price=r["heb_price"],
                user_avg_price=r["user_avg_price"],
                savings_percent=r["savings_percent"],
                savings_amount=r["savings_amount"],
            )
            for r in rows
        ]
