"""
Pytest configuration for concurrency and property tests.

Adds --stress flag for running race and random-sequence tests with many
more threads and iterations.
"""

import pytest


def pytest_addoption(parser):
    """Add custom command line options"""
    parser.addoption(
        "--stress",
        action="store_true",
        default=False,
        help="Run concurrency and property tests with heavy load"
    )


def pytest_configure(config):
    """Configure pytest based on command line options"""
    config.addinivalue_line(
        "markers", "stress: marks tests whose load scales with --stress"
    )
    if config.getoption("--stress"):
        print("\n🔥  STRESS MODE ENABLED - Racing callers and long random sequences\n")


@pytest.fixture(scope="session")
def stress_mode(request):
    """Fixture that provides stress mode status"""
    return request.config.getoption("--stress")
