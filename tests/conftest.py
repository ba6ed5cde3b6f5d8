# tests/conftest.py

"""Shared pytest fixtures for the price_watch test suite."""

from collections.abc import Generator
from unittest.mock import patch

import pytest

from price_watch.config.settings import Settings


@pytest.fixture(autouse=True)
def mock_sleep() -> Generator[None, None, None]:
    """Patch time.sleep globally so inter-product delays run instantly."""
    with patch("time.sleep"):
        yield


@pytest.fixture(autouse=True)
def isolated_env(
    monkeypatch: pytest.MonkeyPatch, tmp_path_factory: pytest.TempPathFactory,
) -> None:
    """Throwaway storage locations and a fixed console log level.

    A developer ``.env`` may set ``PRICE_WATCH_LOG_LEVEL``; tests always
    see the WARNING default.
    """
    root = tmp_path_factory.mktemp("price_watch")
    monkeypatch.setenv("PRICE_WATCH_DB_PATH", str(root / "price_watch.db"))
    monkeypatch.setenv("PRICE_WATCH_LOG_DIR", str(root / "artifacts"))
    monkeypatch.setattr(Settings, "CONSOLE_LOG_LEVEL", "WARNING")
