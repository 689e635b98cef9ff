"""Configuration for end-to-end login flow tests."""

import pytest


def pytest_configure(config):
    """Register the integration marker."""
    config.addinivalue_line(
        "markers", "integration: end-to-end test that may reach real identity providers"
    )


def pytest_collection_modifyitems(config, items):
    """Skip integration tests unless ``--integration`` is given.

    Tests also marked ``ci_safe`` stub every provider endpoint and always run.
    """
    if config.getoption("--integration", default=False):
        return
    skip_integration = pytest.mark.skip(reason="Need --integration option to run")
    for item in items:
        if "integration" in item.keywords and "ci_safe" not in item.keywords:
            item.add_marker(skip_integration)
