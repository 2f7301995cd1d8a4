"""
Root conftest.py - markers shared across all tests.
"""


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "slow: Tests that take more than a few seconds")
    config.addinivalue_line("markers", "optimization: Tests that run the catch optimizer")
