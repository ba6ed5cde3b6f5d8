# price_watch/api/app.py

"""HTTP trigger for the scheduled scrape job."""

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, Response

from price_watch.config.settings import Settings
from price_watch.services.scrape_job import run_scrape_job

logger = logging.getLogger("price_watch.api")

app = FastAPI(
    title="price_watch",
    description="Scheduled HEB price refresh and alert generation",
    version="0.1.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=Settings.CORS_ALLOW_HEADERS,
)


@app.get("/healthz")
def health_check() -> dict[str, str]:
    return {"status": "ok"}


@app.api_route(
    "/scrape-heb-prices", methods=["GET", "POST", "OPTIONS"],
)
def scrape_heb_prices(request: Request) -> Response:
    """Run one batch. OPTIONS is a no-op preflight reply."""
    if request.method == "OPTIONS":
        return PlainTextResponse("ok")

    logger.info("Scrape triggered via %s", request.method)
    result = run_scrape_job()
    return JSONResponse(
        status_code=result.status_code, content=result.body,
    )
