"""
Pytest configuration and shared fixtures.
"""

import logging
import os
import pytest


@pytest.fixture(autouse=True, scope="function")
def reset_auth_module():
    """
    Reset auth module state before each test.

    This ensures tests run with API_AUTH_ENABLED=false by default,
    unless the test explicitly sets it otherwise.
    """
    # Store original values
    original_auth_enabled = os.environ.get("API_AUTH_ENABLED")
    original_api_key = os.environ.get("API_KEY")

    # Set defaults for tests (auth disabled)
    os.environ["API_AUTH_ENABLED"] = "false"

    yield

    # Restore original values
    if original_auth_enabled is not None:
        os.environ["API_AUTH_ENABLED"] = original_auth_enabled
    elif "API_AUTH_ENABLED" in os.environ:
        del os.environ["API_AUTH_ENABLED"]

    if original_api_key is not None:
        os.environ["API_KEY"] = original_api_key
    elif "API_KEY" in os.environ:
        del os.environ["API_KEY"]

    # Reload auth module to reset state
    import importlib
    import src.api.dependencies.auth as auth_module
    importlib.reload(auth_module)


@pytest.fixture(autouse=True, scope="function")
def reset_engine_state():
    """Drop the API's engine service singleton after each test."""
    yield

    from src.api._engine_state import shutdown_engine_service
    shutdown_engine_service()


@pytest.fixture(autouse=True, scope="function")
def restore_logging():
    """
    Undo setup_logging after each test.

    setup_logging turns off propagation, which would hide engine records
    from caplog in later tests.
    """
    names = ("hypertable_policy_jobs", "src.engine")
    saved = {
        name: (logging.getLogger(name).level, logging.getLogger(name).propagate)
        for name in names
    }

    yield

    for name, (level, propagate) in saved.items():
        target = logging.getLogger(name)
        for handler in list(target.handlers):
            target.removeHandler(handler)
            handler.close()
        target.setLevel(level)
        target.propagate = propagate
