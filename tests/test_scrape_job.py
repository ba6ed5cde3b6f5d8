# tests/test_scrape_job.py

"""Tests for the end-to-end scrape job handler."""

import json
import os
import unittest
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock, patch

from price_watch.config.logging_config import current_run_id
from price_watch.models.heb_product import HebProduct, parse_product
from price_watch.scrapers.heb_client import HebSearchClient, HebSearchResult
from price_watch.services import scrape_job
from price_watch.services.scrape_job import run_scrape_job
from price_watch.storage.artifact_store import ArtifactStoreError
from price_watch.storage.tracked_products_db import (
    GatewayError,
    SqliteGateway,
)


def _client(answers: dict[str, Any]) -> MagicMock:
    client = MagicMock(spec=HebSearchClient)

    def search(query: str, *args: Any, **kwargs: Any) -> HebSearchResult:
        raw = answers.get(query)
        product = parse_product(raw) if raw else None
        assert product is None or isinstance(product, HebProduct)
        return HebSearchResult(
            url="https://heb.test", status=200, product=product,
            all_products=[product] if product else [],
        )

    client.search.side_effect = search
    return client


def _raw(price: float) -> dict[str, Any]:
    return {
        "productId": "321",
        "productName": "Huevo Blanco 18 pzas",
        "items": [{
            "itemId": "1",
            "ean": "750",
            "sellers": [{
                "sellerId": "1",
                "commertialOffer": {
                    "Price": price, "ListPrice": price,
                    "AvailableQuantity": 5,
                },
            }],
        }],
    }


class ScrapeJobTestCase(unittest.TestCase):
    """Uses the storage locations set up by conftest."""

    def setUp(self) -> None:
        self.db_path = Path(os.environ["PRICE_WATCH_DB_PATH"])
        self.log_dir = Path(os.environ["PRICE_WATCH_LOG_DIR"])
        self.sleep = MagicMock()

    def _seed(self, *items: tuple[str, float]) -> None:
        db = SqliteGateway(self.db_path)
        for name, avg in items:
            db.add_tracked_product("u1", name, avg)
        db.close()

    def _run_folder(self, body: dict[str, Any]) -> Path:
        return self.log_dir / "scrape-logs" / body["log_folder"]


class TestConfiguration(ScrapeJobTestCase):
    """Missing configuration fails before any work."""

    def test_missing_db_path(self) -> None:
        with patch.dict(os.environ):
            del os.environ["PRICE_WATCH_DB_PATH"]
            response = run_scrape_job(client=_client({}))
        self.assertEqual(response.status_code, 500)
        self.assertEqual(
            response.body, {"error": "Missing env var: PRICE_WATCH_DB_PATH"}
        )

    def test_missing_log_dir(self) -> None:
        with patch.dict(os.environ, {"PRICE_WATCH_LOG_DIR": ""}):
            response = run_scrape_job(client=_client({}))
        self.assertEqual(response.status_code, 500)
        self.assertIn("PRICE_WATCH_LOG_DIR", response.body["error"])

    def test_unopenable_gateway(self) -> None:
        def broken() -> SqliteGateway:
            raise GatewayError("unable to open database file")

        response = run_scrape_job(gateway_factory=broken, client=_client({}))
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.body["error"], "Server misconfigured")

    def test_db_path_under_regular_file(self) -> None:
        """An uncreatable database directory still yields a JSON 500."""
        blocker = self.db_path.parent / "afile"
        blocker.write_text("x", encoding="utf-8")
        bad_path = str(blocker / "sub" / "db.sqlite")
        with patch.dict(os.environ, {"PRICE_WATCH_DB_PATH": bad_path}):
            response = run_scrape_job(client=_client({}))
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.body["error"], "Server misconfigured")
        self.assertIn("Cannot open database", response.body["details"])


class TestRuns(ScrapeJobTestCase):
    """Normal, empty and failed runs."""

    def test_no_products(self) -> None:
        response = run_scrape_job(client=_client({}), sleep=self.sleep)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.body["message"], "No products to scrape")
        self.assertEqual(response.body["processed"], 0)
        self.assertIn("run_id", response.body)
        runs = list((self.log_dir / "scrape-logs" / "runs").rglob("01_summary.json"))
        self.assertEqual(len(runs), 1)
        summary = json.loads(runs[0].read_text("utf-8"))
        self.assertEqual(summary["status"], "ok")

    def test_completed_run(self) -> None:
        self._seed(("Huevo", 60.0), ("Inexistente", 10.0))
        response = run_scrape_job(
            client=_client({"huevo": _raw(45.0)}), sleep=self.sleep,
        )
        body = response.body
        self.assertEqual(response.status_code, 200)
        self.assertEqual(body["status"], "completed")
        self.assertEqual(body["processed"], 2)
        self.assertEqual(body["matched"], 1)
        self.assertEqual(body["not_found"], 1)
        self.assertEqual(body["alerts_created"], 1)
        self.assertEqual(body["errors"], 0)
        self.assertEqual(body["total_products_in_batch"], 2)
        self.assertTrue(body["log_folder"].startswith("runs/"))
        self.assertEqual(
            body["message"],
            "Processed 2 products (1 matched, 1 not found, 1 alerts, 0 errors)",
        )
        self.assertEqual(self.sleep.call_count, 1)

        folder = self._run_folder(body)
        names = sorted(p.name for p in folder.iterdir())
        self.assertEqual(names[:2], ["00_full-run-log.json", "01_summary.json"])
        self.assertEqual(
            len([n for n in names if "_product_" in n]), 2
        )

    def test_batch_fetch_failure(self) -> None:
        gateway = MagicMock()
        gateway.fetch_due_products.side_effect = GatewayError("relation missing")
        response = run_scrape_job(
            gateway_factory=lambda: gateway, client=_client({}),
        )
        self.assertEqual(response.status_code, 500)
        self.assertEqual(
            response.body,
            {
                "error": "Failed to fetch tracked products",
                "details": "relation missing",
            },
        )
        gateway.close.assert_called_once()
        summaries = list(self.log_dir.rglob("01_summary.json"))
        self.assertEqual(len(summaries), 1)
        self.assertEqual(
            json.loads(summaries[0].read_text("utf-8"))["status"], "error"
        )

    def test_flush_failure_keeps_response(self) -> None:
        self._seed(("Huevo", 60.0))
        store = MagicMock()
        store.upload.side_effect = ArtifactStoreError("bucket gone")
        with self.assertLogs("price_watch.job", level="ERROR") as captured:
            response = run_scrape_job(
                store_factory=lambda: store,
                client=_client({"huevo": _raw(58.0)}),
                sleep=self.sleep,
            )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.body["matched"], 1)
        self.assertIn("FLUSH ERROR", captured.output[0])

    def test_overlapping_run_rejected(self) -> None:
        self.assertTrue(scrape_job._RUN_LOCK.acquire(blocking=False))
        try:
            response = run_scrape_job(client=_client({}))
        finally:
            scrape_job._RUN_LOCK.release()
        self.assertEqual(response.status_code, 409)
        self.assertIn("already in progress", response.body["error"])

    def test_lock_released_after_run(self) -> None:
        run_scrape_job(client=_client({}), sleep=self.sleep)
        self.assertFalse(scrape_job._RUN_LOCK.locked())

    def test_run_id_bound_while_running(self) -> None:
        """Stdlib records emitted during a run carry its run id."""
        seen: list[str] = []

        def gateway() -> SqliteGateway:
            seen.append(current_run_id())
            return SqliteGateway(self.db_path)

        response = run_scrape_job(
            gateway_factory=gateway, client=_client({}), sleep=self.sleep,
        )
        self.assertEqual(seen, [response.body["run_id"]])
        self.assertEqual(current_run_id(), "-")


if __name__ == "__main__":
    unittest.main()
