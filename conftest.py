"""Pytest configuration for softcascade."""


def pytest_configure(config):
    """Register the markers used by the test suite."""
    config.addinivalue_line(
        "markers", "cascade: tests that traverse cascade relationships"
    )
