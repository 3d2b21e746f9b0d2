"""Pytest configuration and shared fixtures."""

import logging
from collections.abc import Iterator

import pytest

# The gate_remote testing plugin is registered via a ``pytest11`` entry
# point (pyproject.toml) for external consumers.  In our own test
# suite we disable it (``-p no:gate_remote``) and load it explicitly
# here instead, so that the gate_remote import chain is loaded after
# coverage tracing starts.
pytest_plugins = ["gate_remote.testing._plugin"]


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers", "unit: Unit tests (fast, no external dependencies)"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests (real timing, local sockets)"
    )


@pytest.fixture
def restore_root_logger() -> Iterator[None]:
    """Save and restore root logger handlers and level.

    Ensures tests that call ``configure_logging()`` (directly or via
    the app) don't leak handlers across subsequent tests.
    """
    root = logging.getLogger()
    original_handlers = root.handlers[:]
    original_level = root.level
    yield
    for h in root.handlers:
        if h not in original_handlers:
            h.close()
    root.handlers = original_handlers
    root.setLevel(original_level)
