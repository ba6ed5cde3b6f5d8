# main.py

"""Entry point for price_watch (one-shot batch, HTTP trigger or tracking)."""

import argparse
import logging
import sys

from price_watch.config.logging_config import setup_logging
from price_watch.config.settings import ConfigurationError, Settings

logger = logging.getLogger("price_watch.main")


def _build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        prog="price_watch",
        description="HEB price refresh and savings alerts.",
        epilog=(
            "Requires PRICE_WATCH_DB_PATH and PRICE_WATCH_LOG_DIR "
            "(environment or .env)."
        ),
    )
    parser.add_argument(
        "-f",
        "--format",
        choices=["json", "table"],
        default="json",
        dest="output_format",
        help="Output format for a one-shot run (default: json).",
    )
    parser.add_argument(
        "--serve",
        action="store_true",
        default=False,
        help="Start the HTTP trigger instead of running once.",
    )
    parser.add_argument(
        "--host",
        default=Settings.API_HOST,
        help=f"Bind address for --serve (default: {Settings.API_HOST}).",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=Settings.API_PORT,
        help=f"Port for --serve (default: {Settings.API_PORT}).",
    )
    parser.add_argument(
        "--track",
        default=None,
        metavar="NAME",
        help="Register a product (display name) for price monitoring.",
    )
    parser.add_argument(
        "--user",
        default=None,
        help="Owning user id for --track.",
    )
    parser.add_argument(
        "--avg",
        type=float,
        default=0.0,
        help="Average historical purchase price for --track.",
    )
    parser.add_argument(
        "--normalized",
        default=None,
        help="Normalized matching name for --track (default: lowercased).",
    )
    return parser


def _run_server(host: str, port: int) -> None:
    """Serve the HTTP trigger with uvicorn."""
    import uvicorn

    from price_watch.api.app import app

    try:
        uvicorn.run(app, host=host, port=port)
    except Exception:
        logger.critical("Fatal error in HTTP server", exc_info=True)
        raise
    finally:
        logger.info("price_watch server shutting down")


def _run_once(output_format: str) -> None:
    """Run one batch and exit."""
    from price_watch.cli.runner import run_once

    sys.exit(run_once(output_format))


def _run_track(args: argparse.Namespace) -> None:
    """Register a tracked product and exit."""
    from price_watch.cli.runner import track_product

    if not args.user:
        logger.error("--track requires --user")
        sys.exit(2)
    sys.exit(
        track_product(
            display_name=args.track,
            user_id=args.user,
            avg_purchase_price=args.avg,
            normalized_name=args.normalized,
        )
    )


def main() -> None:
    """Route to server, tracking helper or a one-shot run."""
    try:
        log_file = setup_logging()
    except ConfigurationError as exc:
        print(exc, file=sys.stderr)
        sys.exit(2)
    logger.info("price_watch starting, log file: %s", log_file)

    parser = _build_parser()
    args = parser.parse_args()

    if args.serve:
        _run_server(args.host, args.port)
    elif args.track is not None:
        _run_track(args)
    else:
        _run_once(args.output_format)


if __name__ == "__main__":
    main()
