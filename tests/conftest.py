"""Shared test setup: quiet, redacting structlog and fresh settings per test."""

import logging

import pytest
import structlog
from stackweave.config.settings import get_settings
from stackweave.secrets import redact_secrets


def pytest_configure(config):
    logging.basicConfig(level=logging.WARNING, force=True)
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            redact_secrets,
            structlog.processors.add_log_level,
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(colors=False),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


@pytest.fixture(autouse=True)
def _fresh_settings():
    """STACKWEAVE_* environment changes made by a test must not leak into the next."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
