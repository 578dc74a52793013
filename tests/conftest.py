"""Shared fixtures for the test suite."""

import pytest

from app.services.cache_service import reset_feed_cache
from app.services.fetch_coordinator import reset_fetch_coordinator

from samples import FakeClock


@pytest.fixture(autouse=True)
def reset_singletons():
    reset_feed_cache()
    reset_fetch_coordinator()
    yield
    reset_feed_cache()
    reset_fetch_coordinator()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
