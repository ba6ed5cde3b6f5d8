# price_watch/config/settings.py

"""Central configuration for the price_watch scrape job."""

import os
from pathlib import Path

from curl_cffi.requests import BrowserTypeLiteral
from dotenv import load_dotenv

load_dotenv()


class ConfigurationError(RuntimeError):
    """A required environment variable is missing or empty."""


class Settings:
    """Central configuration for the price_watch scrape job."""

    # --- Batch ---
    BATCH_SIZE: int = 15                # Products per run
    REQUEST_DELAY: float = 2.0          # Seconds between products
    SAVINGS_THRESHOLD: float = 0.15     # Min fractional discount to alert

    # --- HEB catalog API ---
    HEB_SEARCH_URL: str = os.getenv(
        "HEB_SEARCH_URL",
        "https://www.heb.com.mx/api/catalog_system/pub/products/search",
    )
    SEARCH_WINDOW_TO: int = 2           # _from=0&_to=2 -> top 3
    AUTHORITATIVE_SELLER_ID: str = "1"
    REQUEST_TIMEOUT: int = 15           # Seconds before a request times out

    # --- Browser Impersonation ---
    IMPERSONATE_BROWSER: BrowserTypeLiteral = "chrome131"
    DEFAULT_HEADERS: dict[str, str] = {
        "Accept": "application/json",
        "User-Agent": "Daticket/1.0 (price-monitor)",
    }

    # --- Storage ---
    LOG_BUCKET: str = "scrape-logs"
    REQUIRED_ENV: tuple[str, ...] = (
        "PRICE_WATCH_DB_PATH",
        "PRICE_WATCH_LOG_DIR",
    )

    # --- HTTP trigger ---
    CORS_ALLOW_HEADERS: list[str] = [
        "authorization",
        "x-client-info",
        "apikey",
        "content-type",
    ]
    API_HOST: str = os.getenv("PRICE_WATCH_HOST", "127.0.0.1")
    API_PORT: int = int(os.getenv("PRICE_WATCH_PORT", "8000"))

    # --- Logging ---
    CONSOLE_LOG_LEVEL: str = os.getenv("PRICE_WATCH_LOG_LEVEL", "WARNING")

    # --- Paths ---
    BASE_DIR: Path = Path(__file__).resolve().parent.parent.parent
    LOGS_DIR: Path = BASE_DIR / "logs"

    @staticmethod
    def require_env(name: str) -> str:
        """Return the value of *name* or raise ConfigurationError."""
        value = os.getenv(name)
        if not value:
            raise ConfigurationError(f"Missing env var: {name}")
        return value
