# price_watch/services/scrape_job.py

"""One scrape run from configuration check to flushed audit log.

:func:`run_scrape_job` never raises; it always returns a
:class:`JobResponse` holding an HTTP status code and a JSON-able body,
so the HTTP trigger and the CLI can share it unchanged.
"""

import logging
import re
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from price_watch.audit.run_logger import RunLogger
from price_watch.config.logging_config import bound_run_id
from price_watch.config.settings import ConfigurationError, Settings
from price_watch.scrapers.heb_client import HebSearchClient
from price_watch.services.batch_orchestrator import (
    BatchFetchError,
    BatchOrchestrator,
)
from price_watch.storage.artifact_store import (
    ArtifactStore,
    LocalArtifactStore,
)
from price_watch.storage.tracked_products_db import (
    GatewayError,
    PersistenceGateway,
    SqliteGateway,
)

logger = logging.getLogger("price_watch.job")

GatewayFactory = Callable[[], PersistenceGateway]
StoreFactory = Callable[[], ArtifactStore]

# Guards against overlapping runs within one process
_RUN_LOCK = threading.Lock()


@dataclass
class JobResponse:
    """Status code and JSON body of a scrape run."""

    status_code: int
    body: dict[str, Any] = field(
        default_factory=lambda: dict[str, Any]()
    )


def _redact(value: str) -> str:
    """Hide most of a configured location before logging it."""
    return re.sub(r"^(.{8}).*$", r"\1...", value)


def default_gateway() -> PersistenceGateway:
    """SQLite gateway at ``$PRICE_WATCH_DB_PATH``."""
    return SqliteGateway(Settings.require_env("PRICE_WATCH_DB_PATH"))


def default_store() -> ArtifactStore:
    """Local artifact store rooted at ``$PRICE_WATCH_LOG_DIR``."""
    return LocalArtifactStore(
        Path(Settings.require_env("PRICE_WATCH_LOG_DIR"))
    )


def _flush_quietly(
    run_log: RunLogger,
    store: ArtifactStore,
    summary: dict[str, Any],
) -> None:
    """Flush the run log; failures go to the stdlib logger only."""
    run_log.info("flush", "Flushing logs to storage...")
    try:
        run_log.flush(store, summary)
        run_log.info("flush", "Logs flushed successfully")
    except Exception:
        logger.error(
            "[FLUSH ERROR] Failed to upload logs for run %s",
            run_log.run_id,
            exc_info=True,
        )


def _execute(
    run_log: RunLogger,
    gateway_factory: GatewayFactory,
    store_factory: StoreFactory,
    client: HebSearchClient | None,
    sleep: Callable[[float], None] | None,
) -> JobResponse:
    settings = Settings()
    run_log.info(
        "init",
        "=== SCRAPE-HEB-PRICES RUN STARTED ===",
        {
            "run_id": run_log.run_id,
            "run_folder": run_log.run_folder,
            "config": {
                "BATCH_SIZE": settings.BATCH_SIZE,
                "REQUEST_DELAY": settings.REQUEST_DELAY,
                "SAVINGS_THRESHOLD": settings.SAVINGS_THRESHOLD,
                "HEB_SEARCH_URL": settings.HEB_SEARCH_URL,
                "LOG_BUCKET": settings.LOG_BUCKET,
            },
        },
    )

    run_log.info("init", "Checking environment variables...")
    try:
        configured = {
            name: _redact(settings.require_env(name))
            for name in settings.REQUIRED_ENV
        }
    except ConfigurationError as exc:
        run_log.error(
            "init", "Missing environment variables", {"error": str(exc)},
        )
        return JobResponse(500, {"error": str(exc)})
    run_log.info("init", "Environment variables OK", configured)

    try:
        store = store_factory()
        gateway = gateway_factory()
    except (ConfigurationError, GatewayError) as exc:
        run_log.error(
            "init", "Failed to open storage", {"error": str(exc)},
        )
        return JobResponse(
            500, {"error": "Server misconfigured", "details": str(exc)},
        )

    try:
        return _run_batch(run_log, gateway, store, client, sleep)
    finally:
        gateway.close()


def _run_batch(
    run_log: RunLogger,
    gateway: PersistenceGateway,
    store: ArtifactStore,
    client: HebSearchClient | None,
    sleep: Callable[[float], None] | None,
) -> JobResponse:
    orchestrator = BatchOrchestrator(
        gateway,
        client or HebSearchClient(),
        run_log,
        sleep=sleep,
    )

    try:
        products = orchestrator.fetch_batch()
    except BatchFetchError as exc:
        _flush_quietly(
            run_log, store, {"status": "error", "error": str(exc)},
        )
        return JobResponse(
            500,
            {
                "error": "Failed to fetch tracked products",
                "details": str(exc),
            },
        )

    if not products:
        run_log.info(
            "fetch-products", "No products to scrape. Run complete.",
        )
        _flush_quietly(
            run_log,
            store,
            {
                "status": "ok",
                "message": "No products to scrape",
                "processed": 0,
            },
        )
        return JobResponse(
            200,
            {
                "message": "No products to scrape",
                "processed": 0,
                "run_id": run_log.run_id,
            },
        )

    summary = orchestrator.process_batch(products)
    summary_dict = summary.to_dict()
    _flush_quietly(run_log, store, summary_dict)

    return JobResponse(
        200,
        {
            **summary_dict,
            "log_folder": run_log.run_folder,
            "message": summary.message,
        },
    )


def run_scrape_job(
    gateway_factory: GatewayFactory | None = None,
    store_factory: StoreFactory | None = None,
    client: HebSearchClient | None = None,
    sleep: Callable[[float], None] | None = None,
) -> JobResponse:
    """Run one scrape batch and return the response to send back."""
    if not _RUN_LOCK.acquire(blocking=False):
        logger.warning("Scrape run requested while another is running")
        return JobResponse(409, {"error": "Scrape run already in progress"})
    try:
        run_log = RunLogger()
        with bound_run_id(run_log.run_id):
            return _execute(
                run_log,
                gateway_factory or default_gateway,
                store_factory or default_store,
                client,
                sleep,
            )
    finally:
        _RUN_LOCK.release()
