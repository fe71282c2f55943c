"""Test setup shared by the relay, peer and shared suites."""

import logging
from pathlib import Path

import pytest
import structlog
from dotenv import load_dotenv

from shared.logging import configure_structlog

load_dotenv(Path(__file__).resolve().parent.parent / ".env.tests")

# caplog only sees structlog events once they are handed to stdlib logging.
configure_structlog()


@pytest.fixture(autouse=True)
def _isolate_connection_context():
    """Connection ids bound by the relay endpoint must not bleed into the next test."""
    structlog.contextvars.clear_contextvars()
    yield
    structlog.contextvars.clear_contextvars()


@pytest.fixture(autouse=True)
def _quiet_ice_loggers():
    levels = {name: logging.getLogger(name).level for name in ("aioice", "aiortc")}
    for name in levels:
        logging.getLogger(name).setLevel(logging.WARNING)
    yield
    for name, level in levels.items():
        logging.getLogger(name).setLevel(level)
