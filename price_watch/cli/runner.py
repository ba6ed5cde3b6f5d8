# price_watch/cli/runner.py

"""Headless CLI runner around the shared scrape job."""

import json
import logging
import os

from rich.console import Console
from rich.table import Table

from price_watch.config.settings import ConfigurationError, Settings
from price_watch.services.scrape_job import JobResponse, run_scrape_job
from price_watch.storage.tracked_products_db import (
    GatewayError,
    SqliteGateway,
)

logger = logging.getLogger("price_watch.cli")

# Stderr console for status messages so stdout stays clean for JSON
_err = Console(stderr=True)

_COUNTERS: list[tuple[str, str]] = [
    ("processed", "Processed"),
    ("matched", "Matched"),
    ("not_found", "Not found"),
    ("alerts_created", "Alerts created"),
    ("errors", "Errors"),
    ("total_products_in_batch", "Batch size"),
]


def _print_table(response: JobResponse) -> None:
    """Render a Rich table of the run summary to stdout."""
    body = response.body
    table = Table(
        title=f"Run {body.get('run_id', '?')}",
        show_lines=True,
        title_style="bold cyan",
    )
    table.add_column("Metric", style="magenta")
    table.add_column("Value", justify="right", style="green")

    table.add_row("HTTP status", str(response.status_code))
    for key, label in _COUNTERS:
        if key in body:
            table.add_row(label, str(body[key]))
    if "log_folder" in body:
        table.add_row("Log folder", str(body["log_folder"]))

    Console().print(table)
    if "message" in body:
        _err.print(f"[dim]{body['message']}[/dim]")
    if "error" in body:
        _err.print(f"[red]{body['error']}[/red]")


def run_once(output_format: str = "json") -> int:
    """Run one scrape batch and print the result.

    Returns 0 when the run answered with HTTP 200, 1 otherwise.
    """
    _err.print("[bold]Running HEB price refresh...[/bold]")
    response = run_scrape_job()
    logger.info(
        "CLI run finished with status %d", response.status_code,
    )

    if output_format == "table":
        _print_table(response)
    else:
        print(json.dumps(response.body, ensure_ascii=False, indent=2))

    return 0 if response.status_code == 200 else 1


def track_product(
    display_name: str,
    user_id: str,
    avg_purchase_price: float,
    normalized_name: str | None = None,
) -> int:
    """Register a product for monitoring in the local database."""
    try:
        gateway = SqliteGateway(
            Settings.require_env("PRICE_WATCH_DB_PATH")
        )
    except (ConfigurationError, GatewayError) as exc:
        _err.print(f"[red]{exc}[/red]")
        return 1

    try:
        product = gateway.add_tracked_product(
            user_id=user_id,
            display_name=display_name,
            avg_purchase_price=avg_purchase_price,
            normalized_name=normalized_name,
        )
    except (ValueError, GatewayError) as exc:
        _err.print(f"[red]Could not track product: {exc}[/red]")
        return 1
    finally:
        gateway.close()

    _err.print(
        f"[green]Tracking[/green] {product.product_key} "
        f"[dim](db: {os.getenv('PRICE_WATCH_DB_PATH')})[/dim]"
    )
    print(product.id)
    return 0
