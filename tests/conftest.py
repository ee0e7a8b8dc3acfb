"""
Pytest configuration and fixtures.

This file provides pytest-specific configuration and fixtures.
For standard test utilities, see tests/__init__.py
"""

import pytest

from tests import make_session_factory
from tests.mocks.sourcing_mocks import FakePublisher, RecordingRealtimeBus


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers", "integration: marks end-to-end flows driven through the queue publisher"
    )


@pytest.fixture
def session_factory():
    """Session factory over a fresh database."""
    factory = make_session_factory()
    yield factory
    factory.kw["bind"].dispose()


@pytest.fixture
def publisher():
    return FakePublisher()


@pytest.fixture
def realtime():
    return RecordingRealtimeBus()
