# price_watch/audit/run_logger.py

"""Structured, per-run audit trail for the scrape job.

A :class:`RunLogger` is created for every invocation and handed to each
component that needs it. Entries accumulate in memory, globally and per
product key, and are written once by :meth:`RunLogger.flush` as three
kinds of JSON artifact under ``runs/<date>/<run_id>/``:

* ``00_full-run-log.json``: every entry plus the run summary;
* ``01_summary.json``: the summary plus ERROR and WARN entries only;
* ``NN_product_<key>.json``: one file per product that logged anything.

Every entry is also mirrored to the ``price_watch.run`` stdlib logger,
which doubles as the fallback channel when flushing fails.
"""

import logging
import re
import time
import uuid
from datetime import datetime, timezone
from typing import Any

from price_watch.storage.artifact_store import ArtifactStore

_LEVELS: dict[str, int] = {
    "INFO": logging.INFO,
    "WARN": logging.WARNING,
    "ERROR": logging.ERROR,
    "DEBUG": logging.DEBUG,
}

_UNSAFE_CHARS_RE = re.compile(r"[^a-zA-Z0-9_-]")
_UNDERSCORE_RUN_RE = re.compile(r"_+")
_MAX_SAFE_NAME = 60


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(
        timespec="milliseconds",
    ).replace("+00:00", "Z")


def safe_product_name(product_key: str) -> str:
    """Sanitise a product key for use in an artifact file name."""
    cleaned = _UNSAFE_CHARS_RE.sub("_", product_key)
    cleaned = _UNDERSCORE_RUN_RE.sub("_", cleaned)
    return cleaned[:_MAX_SAFE_NAME]


class RunLogger:
    """In-memory structured log for a single scrape run."""

    def __init__(self, now: datetime | None = None) -> None:
        started = now or datetime.now(timezone.utc)
        date_str = started.strftime("%Y-%m-%dT%H-%M-%S")
        short_id = uuid.uuid4().hex[:8]
        self.run_id: str = f"{date_str}_{short_id}"
        self.run_folder: str = (
            f"runs/{started.strftime('%Y-%m-%d')}/{self.run_id}"
        )
        self.entries: list[dict[str, Any]] = []
        self.product_logs: dict[str, list[dict[str, Any]]] = {}
        self._start = time.monotonic()
        self._mirror = logging.getLogger("price_watch.run")

    def elapsed(self) -> str:
        """Seconds since the run started, formatted like ``1.23s``."""
        return f"{time.monotonic() - self._start:.2f}s"

    # ── Recording ────────────────────────────────────────

    def log(
        self,
        level: str,
        step: str,
        message: str,
        data: dict[str, Any] | None = None,
        product_key: str | None = None,
    ) -> dict[str, Any]:
        """Append an entry and mirror it to stdlib logging."""
        entry: dict[str, Any] = {
            "timestamp": _now_iso(),
            "elapsed": self.elapsed(),
            "level": level,
            "step": step,
            "message": message,
        }
        if data:
            entry["data"] = data
        self.entries.append(entry)

        if product_key:
            self.product_logs.setdefault(product_key, []).append(entry)

        self._mirror.log(
            _LEVELS.get(level, logging.INFO),
            "[%s][%s] %s%s",
            level,
            step,
            message,
            f" {data}" if data else "",
        )
        return entry

    def info(
        self,
        step: str,
        message: str,
        data: dict[str, Any] | None = None,
        product_key: str | None = None,
    ) -> None:
        self.log("INFO", step, message, data, product_key)

    def warn(
        self,
        step: str,
        message: str,
        data: dict[str, Any] | None = None,
        product_key: str | None = None,
    ) -> None:
        self.log("WARN", step, message, data, product_key)

    def error(
        self,
        step: str,
        message: str,
        data: dict[str, Any] | None = None,
        product_key: str | None = None,
    ) -> None:
        self.log("ERROR", step, message, data, product_key)

    def debug(
        self,
        step: str,
        message: str,
        data: dict[str, Any] | None = None,
        product_key: str | None = None,
    ) -> None:
        self.log("DEBUG", step, message, data, product_key)

    def entries_at(self, level: str) -> list[dict[str, Any]]:
        """Return ``{step, message, data}`` for entries at *level*."""
        return [
            {
                "step": e["step"],
                "message": e["message"],
                "data": e.get("data"),
            }
            for e in self.entries
            if e["level"] == level
        ]

    # ── Flushing ─────────────────────────────────────────

    def flush(
        self, store: ArtifactStore, summary: dict[str, Any],
    ) -> int:
        """Write all run artifacts to *store*.

        Returns the number of files written. Store errors propagate;
        callers decide whether a failed flush matters.
        """
        total_elapsed = self.elapsed()

        full_log = {
            "run_id": self.run_id,
            "run_folder": self.run_folder,
            "started_at": (
                self.entries[0]["timestamp"] if self.entries else None
            ),
            "finished_at": _now_iso(),
            "total_elapsed": total_elapsed,
            "total_entries": len(self.entries),
            "summary": summary,
            "entries": self.entries,
        }
        store.upload(f"{self.run_folder}/00_full-run-log.json", full_log)

        summary_file = {
            "run_id": self.run_id,
            **summary,
            "total_elapsed": total_elapsed,
            "log_entries_count": len(self.entries),
            "products_logged": len(self.product_logs),
            "errors": self.entries_at("ERROR"),
            "warnings": self.entries_at("WARN"),
        }
        store.upload(f"{self.run_folder}/01_summary.json", summary_file)

        file_index = 2
        for product_key, logs in self.product_logs.items():
            file_name = (
                f"{file_index:02d}_product_"
                f"{safe_product_name(product_key)}.json"
            )
            store.upload(
                f"{self.run_folder}/{file_name}",
                {
                    "product_key": product_key,
                    "entries_count": len(logs),
                    "entries": logs,
                },
            )
            file_index += 1

        self.info(
            "flush",
            f"Logs uploaded to storage: {self.run_folder}/ "
            f"({file_index} files)",
        )
        return file_index
