# price_watch/scrapers/heb_client.py

"""Client for the HEB Mexico public catalog search API."""

import json
import time
import urllib.parse
from dataclasses import dataclass, field
from typing import Any, cast

from curl_cffi import requests as curl_requests

from price_watch.audit.run_logger import RunLogger
from price_watch.config.settings import Settings
from price_watch.models.heb_product import (
    HebProduct,
    Unparseable,
    parse_product,
)


@dataclass
class HebSearchResult:
    """Outcome of one catalog search.

    ``product`` is None whenever nothing usable came back, whether the
    request failed or the catalog simply had no match. ``status`` is 0
    for network failures.
    """

    url: str
    status: int = 0
    product: HebProduct | None = None
    all_products: list[HebProduct] = field(
        default_factory=lambda: list[HebProduct]()
    )


class HebSearchClient:
    """Searches the HEB catalog (VTEX ``catalog_system`` endpoint).

    Every failure mode (network error, non-2xx status, malformed JSON)
    is logged and reported as an empty result; nothing is raised to the
    caller.
    """

    def __init__(self, base_url: str | None = None) -> None:
        self.settings = Settings()
        self.base_url = base_url or self.settings.HEB_SEARCH_URL
        self.session = curl_requests.Session(
            impersonate=self.settings.IMPERSONATE_BROWSER
        )

    def build_url(self, query: str) -> str:
        """Search URL for *query*, capped to the top few results."""
        encoded = urllib.parse.quote(query, safe="")
        return (
            f"{self.base_url}?ft={encoded}"
            f"&_from=0&_to={self.settings.SEARCH_WINDOW_TO}"
        )

    def _parse_payload(
        self,
        payload: Any,
        run_log: RunLogger,
        product_key: str | None,
        attempt_label: str,
    ) -> tuple[HebProduct | None, list[HebProduct]]:
        """Parse every record; return the primary and all parseable ones.

        The primary is always record #0. When that record is unparseable
        there is no primary, even if later records parse.
        """
        primary: HebProduct | None = None
        products: list[HebProduct] = []
        for idx, raw in enumerate(cast(list[Any], payload)):
            parsed = parse_product(raw)
            if isinstance(parsed, Unparseable):
                run_log.warn(
                    "heb-search",
                    f"{attempt_label}: Skipping unparseable result #{idx}",
                    {"reason": parsed.reason},
                    product_key,
                )
                continue
            if parsed.dropped_sellers:
                run_log.warn(
                    "heb-search",
                    f"{attempt_label}: Dropped "
                    f"{len(parsed.dropped_sellers)} malformed seller "
                    f"offer(s) from result #{idx}",
                    {
                        "productId": parsed.product_id,
                        "reasons": parsed.dropped_sellers,
                    },
                    product_key,
                )
            if idx == 0:
                primary = parsed
            products.append(parsed)
        return primary, products

    def search(
        self,
        query: str,
        run_log: RunLogger,
        product_key: str | None = None,
        attempt_label: str = "Attempt 1",
    ) -> HebSearchResult:
        """Search HEB for *query* and return the top candidate."""
        url = self.build_url(query)
        result = HebSearchResult(url=url)

        run_log.debug(
            "heb-search",
            f"{attempt_label}: Fetching URL",
            {"url": url, "query": query},
            product_key,
        )

        t0 = time.monotonic()
        try:
            resp = self.session.get(
                url,
                headers=self.settings.DEFAULT_HEADERS,
                timeout=self.settings.REQUEST_TIMEOUT,
            )
        except Exception as exc:
            run_log.error(
                "heb-search",
                f"{attempt_label}: Network error fetching HEB",
                {"query": query, "error": str(exc)},
                product_key,
            )
            return result

        fetch_time = f"{time.monotonic() - t0:.2f}s"
        result.status = resp.status_code
        run_log.debug(
            "heb-search",
            f"{attempt_label}: Response received",
            {
                "status": resp.status_code,
                "statusText": resp.reason,
                "fetchTime": fetch_time,
                "headers": dict(resp.headers),
            },
            product_key,
        )

        if not 200 <= resp.status_code < 300:
            run_log.warn(
                "heb-search",
                f"{attempt_label}: Non-OK response from HEB",
                {
                    "status": resp.status_code,
                    "statusText": resp.reason,
                    "query": query,
                },
                product_key,
            )
            return result

        try:
            payload: Any = json.loads(resp.text)
        except ValueError as exc:
            run_log.error(
                "heb-search",
                f"{attempt_label}: Failed to parse JSON response",
                {"error": str(exc)},
                product_key,
            )
            return result

        if not isinstance(payload, list):
            run_log.error(
                "heb-search",
                f"{attempt_label}: Unexpected response shape",
                {"expected": "list", "got": type(payload).__name__},
                product_key,
            )
            return result

        primary, result.all_products = self._parse_payload(
            payload, run_log, product_key, attempt_label,
        )
        run_log.info(
            "heb-search",
            f"{attempt_label}: Got {len(result.all_products)} result(s)",
            {
                "query": query,
                "result_count": len(result.all_products),
                "fetchTime": fetch_time,
                "results_preview": [
                    p.preview() for p in result.all_products[:3]
                ],
            },
            product_key,
        )
        if primary is None and result.all_products:
            run_log.warn(
                "heb-search",
                f"{attempt_label}: First result is unparseable, "
                "no primary candidate",
                {"query": query},
                product_key,
            )
        result.product = primary
        return result
