"""
pytest configuration for relay tests.

Adds src directory to Python path for imports and sets up test environment.
"""

import logging
import os
import sys
from pathlib import Path

import pytest

# Add src directory to Python path
src_dir = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_dir))


@pytest.fixture(autouse=True)
def clean_kafka_env(monkeypatch):
    """Keep KAFKA_* settings from the host shell out of unit tests."""
    if os.getenv("KAFKA_INTEGRATION") == "1":
        return
    for var in list(os.environ):
        if var.startswith("KAFKA_"):
            monkeypatch.delenv(var, raising=False)


@pytest.fixture(autouse=True)
def reset_logging():
    """Clear log context and drop handlers installed by setup_logging()."""
    from core.logging.context import clear_log_context

    root_logger = logging.getLogger()
    original_handlers = list(root_logger.handlers)
    original_level = root_logger.level

    clear_log_context()
    yield
    clear_log_context()

    for handler in list(root_logger.handlers):
        if handler not in original_handlers:
            root_logger.removeHandler(handler)
            handler.close()
    root_logger.setLevel(original_level)
