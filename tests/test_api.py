# tests/test_api.py

"""Tests for the HTTP trigger."""

import unittest
from unittest.mock import MagicMock, patch

from fastapi.testclient import TestClient

from price_watch.api.app import app
from price_watch.services.scrape_job import JobResponse

RUN_JOB = "price_watch.api.app.run_scrape_job"


class TestScrapeEndpoint(unittest.TestCase):
    """/scrape-heb-prices routing and response mapping."""

    def setUp(self) -> None:
        self.client = TestClient(app)

    @patch(RUN_JOB)
    def test_options_is_noop(self, mock_job: MagicMock) -> None:
        """A bare OPTIONS request returns ok without running the job."""
        resp = self.client.options("/scrape-heb-prices")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.text, "ok")
        mock_job.assert_not_called()

    @patch(RUN_JOB)
    def test_cors_preflight(self, mock_job: MagicMock) -> None:
        """Browser preflights are answered by the CORS middleware."""
        resp = self.client.options(
            "/scrape-heb-prices",
            headers={
                "Origin": "https://app.example",
                "Access-Control-Request-Method": "POST",
                "Access-Control-Request-Headers": "authorization",
            },
        )
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.headers["access-control-allow-origin"], "*")
        mock_job.assert_not_called()

    @patch(RUN_JOB)
    def test_post_runs_job(self, mock_job: MagicMock) -> None:
        """POST returns the job body and status."""
        mock_job.return_value = JobResponse(
            200, {"status": "completed", "processed": 3, "run_id": "r"},
        )
        resp = self.client.post("/scrape-heb-prices")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["processed"], 3)
        mock_job.assert_called_once_with()

    @patch(RUN_JOB)
    def test_get_runs_job(self, mock_job: MagicMock) -> None:
        """GET is accepted for manual triggering."""
        mock_job.return_value = JobResponse(
            200, {"message": "No products to scrape", "processed": 0},
        )
        resp = self.client.get("/scrape-heb-prices")
        self.assertEqual(resp.json()["processed"], 0)

    @patch(RUN_JOB)
    def test_error_status_propagates(self, mock_job: MagicMock) -> None:
        """A 500 from the job is returned as-is."""
        mock_job.return_value = JobResponse(
            500, {"error": "Missing env var: PRICE_WATCH_DB_PATH"},
        )
        resp = self.client.post("/scrape-heb-prices")
        self.assertEqual(resp.status_code, 500)
        self.assertIn("PRICE_WATCH_DB_PATH", resp.json()["error"])

    def test_other_methods_rejected(self) -> None:
        """DELETE is not a trigger."""
        resp = self.client.delete("/scrape-heb-prices")
        self.assertEqual(resp.status_code, 405)

    def test_healthz(self) -> None:
        resp = self.client.get("/healthz")
        self.assertEqual(resp.json(), {"status": "ok"})


class TestEndToEnd(unittest.TestCase):
    """The endpoint wired to the real job with an empty database."""

    def test_empty_database(self) -> None:
        with patch(
            "price_watch.services.scrape_job.HebSearchClient"
        ):
            resp = TestClient(app).post("/scrape-heb-prices")
        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertEqual(body["processed"], 0)
        self.assertEqual(body["message"], "No products to scrape")


if __name__ == "__main__":
    unittest.main()
