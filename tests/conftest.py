"""Shared pytest fixtures for duck-api tests."""

import logging
from collections.abc import Iterator
from pathlib import Path

import pytest


@pytest.fixture
def fixtures_dir() -> Path:
    """Return path to fixtures directory."""
    return Path(__file__).parent / "fixtures"


@pytest.fixture
def app_test_dir(fixtures_dir: Path) -> Path:
    """Return path to the sample application (routes, entities, gateways)."""
    return fixtures_dir / "app_test"


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep DUCK_API_* variables of the outer environment out of the tests."""
    for key in (
        "DUCK_API_ENV",
        "DUCK_API_HOST",
        "DUCK_API_PORT",
        "DUCK_API_LOG_LEVEL",
        "DUCK_API_JWT_SECRET",
    ):
        monkeypatch.delenv(key, raising=False)


@pytest.fixture(autouse=True)
def _reset_logging() -> Iterator[None]:
    """Undo setup_logging so caplog keeps seeing duck_api records."""
    yield
    logger = logging.getLogger("duck_api")
    for handler in logger.handlers:
        handler.close()
    logger.handlers.clear()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)
