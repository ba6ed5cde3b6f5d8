# tests/test_logging_config.py

"""Tests for the per-run logging configuration."""

import logging
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from price_watch.config.logging_config import (
    bound_run_id,
    current_run_id,
    resolve_level,
    setup_logging,
)
from price_watch.config.settings import ConfigurationError, Settings


class TestLoggingConfig(unittest.TestCase):
    """Verify logging setup behaviour."""

    def setUp(self) -> None:
        """Clean up the price_watch logger before each test."""
        root_logger = logging.getLogger("price_watch")
        self._saved = list(root_logger.handlers)
        root_logger.handlers.clear()
        self.logs_dir = Path(tempfile.mkdtemp()) / "logs"

    def tearDown(self) -> None:
        root_logger = logging.getLogger("price_watch")
        for handler in root_logger.handlers:
            handler.close()
        root_logger.handlers[:] = self._saved

    def test_setup_creates_log_file(self) -> None:
        """setup_logging returns a path that exists on disk."""
        log_path = setup_logging(self.logs_dir)
        self.assertTrue(log_path.exists())

    def test_log_file_naming_convention(self) -> None:
        """Log file name matches run_YYYYMMDD_HHMMSS.log format."""
        log_path = setup_logging(self.logs_dir)
        self.assertRegex(log_path.name, r"^run_\d{8}_\d{6}\.log$")

    def test_file_and_console_levels(self) -> None:
        """File handler logs DEBUG, console only WARNING by default."""
        with patch.object(Settings, "CONSOLE_LOG_LEVEL", "WARNING"):
            setup_logging(self.logs_dir)
        handlers = logging.getLogger("price_watch").handlers
        file_handlers = [
            h for h in handlers if isinstance(h, logging.FileHandler)
        ]
        stream_handlers = [
            h
            for h in handlers
            if isinstance(h, logging.StreamHandler)
            and not isinstance(h, logging.FileHandler)
        ]
        self.assertEqual(file_handlers[0].level, logging.DEBUG)
        self.assertEqual(stream_handlers[0].level, logging.WARNING)

    def test_repeated_calls_no_duplicate_handlers(self) -> None:
        """Calling setup_logging twice does not duplicate handlers."""
        setup_logging(self.logs_dir)
        root_logger = logging.getLogger("price_watch")
        count_before = len(root_logger.handlers)
        setup_logging(self.logs_dir)
        self.assertEqual(count_before, len(root_logger.handlers))

    def test_run_mirror_reaches_file(self) -> None:
        """Child loggers such as price_watch.run land in the run file."""
        log_path = setup_logging(self.logs_dir)
        logging.getLogger("price_watch.run").info("mirrored entry")
        for handler in logging.getLogger("price_watch").handlers:
            handler.flush()
        self.assertIn("mirrored entry", log_path.read_text("utf-8"))

    def test_console_level_override(self) -> None:
        setup_logging(self.logs_dir, console_level="info")
        stream_levels = [
            h.level
            for h in logging.getLogger("price_watch").handlers
            if not isinstance(h, logging.FileHandler)
        ]
        self.assertEqual(stream_levels, [logging.INFO])

    def test_unknown_console_level_raises(self) -> None:
        with self.assertRaises(ConfigurationError):
            setup_logging(self.logs_dir, console_level="chatty")
        self.assertEqual(logging.getLogger("price_watch").handlers, [])

    def test_resolve_level(self) -> None:
        self.assertEqual(resolve_level(" debug "), logging.DEBUG)
        self.assertEqual(resolve_level("ERROR"), logging.ERROR)

    def test_records_tagged_with_run_id(self) -> None:
        """Records inside a bound block carry the run id, others '-'."""
        log_path = setup_logging(self.logs_dir)
        log = logging.getLogger("price_watch.job")
        with bound_run_id("2026-05-01T08-00-00_abcd1234"):
            log.info("inside the run")
        log.info("after the run")
        for handler in logging.getLogger("price_watch").handlers:
            handler.flush()
        lines = log_path.read_text("utf-8").splitlines()
        inside = next(line for line in lines if "inside the run" in line)
        after = next(line for line in lines if "after the run" in line)
        self.assertIn("run=2026-05-01T08-00-00_abcd1234 |", inside)
        self.assertIn("run=- |", after)

    def test_bound_run_id_restores_previous(self) -> None:
        self.assertEqual(current_run_id(), "-")
        with bound_run_id("outer"):
            with bound_run_id("inner"):
                self.assertEqual(current_run_id(), "inner")
            self.assertEqual(current_run_id(), "outer")
        self.assertEqual(current_run_id(), "-")


if __name__ == "__main__":
    unittest.main()
