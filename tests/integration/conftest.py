"""Configuration for integration tests."""

import pytest


def pytest_configure(config):
    """Add integration markers."""
    config.addinivalue_line(
        "markers", "integration: mark test as an end-to-end run against a live server"
    )
    config.addinivalue_line(
        "markers", "ci_safe: integration test that runs in-process and is safe for CI"
    )


def pytest_collection_modifyitems(config, items):
    """Skip integration tests unless explicitly requested.

    Tests marked with 'ci_safe' are always run (even inside the integration
    directory) because they drive the app in-process and are safe for CI.
    """
    if not config.getoption("--integration", default=False):
        # Skip integration tests by default, but honor ci_safe override
        skip_integration = pytest.mark.skip(reason="Need --integration option to run")
        for item in items:
            if "integration" in item.keywords and "ci_safe" not in item.keywords:
                item.add_marker(skip_integration)
