"""Test logging setup."""

import pytest
import structlog

from pipelens.config import Settings
from pipelens.logging_config import setup_logging


@pytest.fixture(autouse=True)
def reset_structlog():
    yield
    structlog.reset_defaults()


@pytest.mark.unit
def test_production_uses_json_renderer():
    setup_logging(Settings(_env_file=None, environment="production"))

    processors = structlog.get_config()["processors"]
    assert isinstance(processors[-1], structlog.processors.JSONRenderer)


@pytest.mark.unit
def test_development_uses_console_renderer():
    setup_logging(Settings(_env_file=None, environment="development", log_level="DEBUG"))

    processors = structlog.get_config()["processors"]
    assert isinstance(processors[-1], structlog.dev.ConsoleRenderer)
