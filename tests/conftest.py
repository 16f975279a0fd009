"""Shared pytest configuration."""

import pytest


def pytest_addoption(parser):
    """Add integration option to pytest."""
    parser.addoption(
        "--integration",
        action="store_true",
        default=False,
        help="run integration tests",
    )


@pytest.fixture
def anyio_backend():
    """Async tests run on asyncio only."""
    return "asyncio"
