"""
Shared fixtures: window builders, fake clocks and clean metrics.
"""

import sys
import os
from datetime import date, timedelta
from decimal import Decimal

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from stayengine.models.availability import AvailabilityWindow, DateAvailabilityRecord
from stayengine.utils.metrics import reset_metrics
from stayengine.utils.rate_limiter import limiter


class FakeClock:
    """Manually advanced time source for TTL tests"""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture(autouse=True)
def clean_metrics():
    reset_metrics()
    yield
    reset_metrics()


@pytest.fixture(autouse=True)
def no_api_rate_limit():
    limiter.enabled = False
    yield
    limiter.enabled = True


@pytest.fixture
def make_window():
    """
    Build an AvailabilityWindow of `nights` days starting at `start`.

    blocked: dates marked unavailable
    min_stays / max_stays: per-date overrides
    """
    def _make(
        start=date(2024, 6, 1),
        nights=5,
        price="100",
        blocked=(),
        min_stay=1,
        max_stay=30,
        min_stays=None,
        max_stays=None,
        apartment="design-apartman",
    ):
        min_stays = min_stays or {}
        max_stays = max_stays or {}
        days = {}
        for i in range(nights):
            day = start + timedelta(days=i)
            days[day] = DateAvailabilityRecord(
                date=day,
                available=day not in blocked,
                price=Decimal(price) if price is not None else None,
                min_stay=min_stays.get(day, min_stay),
                max_stay=max_stays.get(day, max_stay),
            )
        return AvailabilityWindow(
            apartment=apartment,
            start=start,
            end=start + timedelta(days=nights),
            days=days,
        )

    return _make
