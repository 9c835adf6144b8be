"""
Shared fixtures: a fresh in-memory store and notifier per test, and a fixed
reference time in the past so cooldown bookkeeping never lands in the future.
"""
from datetime import UTC, datetime, timedelta

import pytest

from locintel.core.models import HistoryPoint
from locintel.core.store import InMemoryNotifier, InMemoryStore


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def notifier():
    return InMemoryNotifier()


@pytest.fixture
def t0():
    return datetime(2024, 3, 1, 8, 0, tzinfo=UTC)


@pytest.fixture
def hp(t0):
    """Factory for history points `minutes` after t0."""

    def _make(lat, lon, minutes=0, user_id="u1", address=None):
        return HistoryPoint(
            user_id=user_id,
            lat=lat,
            lon=lon,
            recorded_at=t0 + timedelta(minutes=minutes),
            address=address,
        )

    return _make
