# price_watch/config/logging_config.py

"""Per-run timestamped logging configuration for price_watch.

Each process launch creates a dedicated log file inside ``logs/``,
named with the launch timestamp (e.g. ``logs/run_20260214_153045.log``).
All ``price_watch.*`` loggers route through this file handler, including
the mirror of the structured run log kept by
:class:`~price_watch.audit.run_logger.RunLogger`.

Every record is tagged with the id of the scrape run in progress
(``-`` outside a run). The console threshold comes from ``PRICE_WATCH_LOG_LEVEL``.
"""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime
from pathlib import Path

from price_watch.config.settings import ConfigurationError, Settings

_DETAILED_FORMAT = (
    "%(asctime)s | %(levelname)-8s | run=%(run_id)s | %(name)s | "
    "%(module)s:%(funcName)s:%(lineno)d | %(message)s"
)

_CONSOLE_FORMAT = "%(asctime)s | %(levelname)-8s | run=%(run_id)s | %(message)s"

_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_NO_RUN = "-"

_current_run_id: ContextVar[str] = ContextVar(
    "price_watch_run_id", default=_NO_RUN,
)


class RunIdFilter(logging.Filter):
    """Stamp each record with the id of the scrape run in progress."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.run_id = _current_run_id.get()
        return True


@contextmanager
def bound_run_id(run_id: str) -> Iterator[None]:
    """Tag records emitted inside the block with *run_id*."""
    token = _current_run_id.set(run_id)
    try:
        yield
    finally:
        _current_run_id.reset(token)


def current_run_id() -> str:
    return _current_run_id.get()


def resolve_level(name: str) -> int:
    """Numeric level for a name such as ``"info"``.

    Raises:
        ConfigurationError: *name* is not a standard logging level.
    """
    level = logging.getLevelName(name.strip().upper())
    if not isinstance(level, int):
        raise ConfigurationError(f"Unknown log level: {name}")
    return level


def setup_logging(
    logs_dir: Path | None = None,
    console_level: str | None = None,
) -> Path:
    """Initialise the root ``price_watch`` logger for the current run.

    Returns:
        The :class:`~pathlib.Path` to the log file created for this run.

    Raises:
        ConfigurationError: the console level name is not recognised.
    """
    console_threshold = resolve_level(
        console_level or Settings.CONSOLE_LOG_LEVEL
    )
    logs_dir = logs_dir or Settings.LOGS_DIR
    logs_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = logs_dir / f"run_{timestamp}.log"

    root_logger = logging.getLogger("price_watch")
    root_logger.setLevel(logging.DEBUG)

    # Repeated calls (tests, uvicorn reload) keep the first handlers
    if root_logger.handlers:
        return log_file

    run_ids = RunIdFilter()

    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_handler.addFilter(run_ids)
    file_handler.setFormatter(
        logging.Formatter(_DETAILED_FORMAT, datefmt=_DATE_FORMAT)
    )

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(console_threshold)
    console_handler.addFilter(run_ids)
    console_handler.setFormatter(
        logging.Formatter(_CONSOLE_FORMAT, datefmt=_DATE_FORMAT)
    )

    root_logger.addHandler(file_handler)
    root_logger.addHandler(console_handler)

    root_logger.info("Logging initialised, log file: %s", log_file)

    return log_file
