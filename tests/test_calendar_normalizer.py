"""
Tests for the Calendar Normalizer

Raw Beds24 calendar and booking items -> one AvailabilityWindow.
"""

import pytest
from datetime import date, timedelta
from decimal import Decimal

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from stayengine.models.availability import RawCalendar
from stayengine.services.calendar_normalizer import normalize_calendar, booked_dates

START = date(2024, 6, 1)
END = date(2024, 6, 6)


def d(day: int) -> date:
    return date(2024, 6, day)


def normalize(days=None, bookings=None, start=START, end=END):
    raw = RawCalendar(days=days or [], bookings=bookings or [])
    return normalize_calendar(raw, start, end, default_min_stay=2, default_max_stay=21, apartment="lite-apartman")


class TestDateCoverage:
    """Every requested date gets exactly one record"""

    def test_absent_dates_are_available(self):
        window = normalize()
        assert sorted(window.days) == [d(1), d(2), d(3), d(4), d(5)]
        assert window.available_dates == [d(1), d(2), d(3), d(4), d(5)]
        assert window.booked_dates == []

    def test_end_date_excluded(self):
        window = normalize()
        assert window.get(END) is None

    def test_records_outside_range_ignored(self):
        window = normalize(days=[{"date": "2024-05-31", "numAvail": 0}, {"date": "2024-06-06", "numAvail": 0}])
        assert window.booked_dates == []

    def test_apartment_defaults(self):
        record = normalize().get(d(1))
        assert record.min_stay == 2
        assert record.max_stay == 21
        assert normalize().apartment == "lite-apartman"


class TestBlockedSignals:
    """Blocked status, zero inventory and bookings are OR-ed"""

    def test_zero_inventory_blocks_even_if_status_available(self):
        window = normalize(days=[{"date": "2024-06-02", "status": "available", "numAvail": 0, "price1": 90}])
        assert window.get(d(2)).available is False

    @pytest.mark.parametrize("status", ["blocked", "Unavailable", "CLOSED"])
    def test_blocked_statuses(self, status):
        window = normalize(days=[{"date": "2024-06-03", "status": status, "numAvail": 1}])
        assert window.get(d(3)).available is False

    def test_positive_inventory_is_available(self):
        window = normalize(days=[{"date": "2024-06-03", "numAvail": 2, "price1": 90}])
        assert window.get(d(3)).available is True

    def test_confirmed_booking_blocks_nights_not_checkout(self):
        bookings = [{"id": 1, "arrival": "2024-06-02", "departure": "2024-06-04", "status": "confirmed"}]
        window = normalize(bookings=bookings)
        assert window.booked_dates == [d(2), d(3)]
        assert window.get(d(4)).available is True

    def test_numeric_booking_statuses(self):
        bookings = [
            {"arrival": "2024-06-01", "departure": "2024-06-02", "status": 1},
            {"arrival": "2024-06-05", "departure": "2024-06-07", "status": "2"},
        ]
        window = normalize(bookings=bookings)
        assert window.booked_dates == [d(1), d(5)]

    def test_cancelled_booking_ignored(self):
        bookings = [{"arrival": "2024-06-02", "departure": "2024-06-04", "status": "cancelled"}]
        assert normalize(bookings=bookings).booked_dates == []

    def test_booking_spanning_window_clipped(self):
        bookings = [{"arrival": "2024-05-20", "departure": "2024-07-01", "status": "new"}]
        assert len(normalize(bookings=bookings).booked_dates) == 5

    def test_booked_dates_helper(self):
        nights = booked_dates(
            [{"arrival": "2024-06-03", "departure": "2024-06-05", "status": "new"}], START, END
        )
        assert nights == {d(3), d(4)}


class TestRangeRecords:
    """Upstream compresses runs of equal days into from/to ranges"""

    def test_from_to_inclusive_expansion(self):
        days = [{"from": "2024-06-02", "to": "2024-06-04", "price1": "120.50", "minStay": 3}]
        window = normalize(days=days)
        for day in (d(2), d(3), d(4)):
            assert window.get(day).price == Decimal("120.50")
            assert window.get(day).min_stay == 3
        assert window.get(d(5)).price is None
        assert window.get(d(5)).min_stay == 2

    def test_nested_room_calendar(self):
        days = [{
            "roomId": 357932,
            "propertyId": 168900,
            "calendar": [
                {"from": "2024-06-01", "to": "2024-06-02", "numAvail": 1, "price1": 80},
                {"from": "2024-06-03", "to": "2024-06-03", "numAvail": 0, "price1": 80},
            ],
        }]
        window = normalize(days=days)
        assert window.prices[d(1)] == Decimal("80")
        assert window.booked_dates == [d(3)]


class TestPrices:
    """First positive price field wins; gaps are recorded"""

    def test_price_field_fallbacks(self):
        days = [
            {"date": "2024-06-01", "price": 95},
            {"date": "2024-06-02", "rate": "96"},
            {"date": "2024-06-03", "amount": 97.5},
            {"date": "2024-06-04", "price1": 0, "price": 98},
        ]
        prices = normalize(days=days).prices
        assert prices[d(1)] == Decimal("95")
        assert prices[d(2)] == Decimal("96")
        assert prices[d(3)] == Decimal("97.5")
        assert prices[d(4)] == Decimal("98")

    def test_price_gaps_only_for_available_dates(self):
        days = [
            {"date": "2024-06-01", "price1": 100},
            {"date": "2024-06-02", "numAvail": 0},
        ]
        window = normalize(days=days)
        assert d(2) not in window.price_gaps
        assert window.price_gaps == [d(3), d(4), d(5)]

    def test_max_stay_override(self):
        window = normalize(days=[{"date": "2024-06-01", "maxStay": 7}])
        assert window.get(d(1)).max_stay == 7
        assert window.get(d(2)).max_stay == 21

    def test_zero_min_stay_keeps_default(self):
        window = normalize(days=[{"date": "2024-06-01", "minStay": 0}])
        assert window.get(d(1)).min_stay == 2


class TestMalformedInput:
    """Garbage items are skipped, never fatal"""

    def test_non_dict_items_skipped(self):
        window = normalize(days=["nonsense", 42, None], bookings=["x"])
        assert len(window.available_dates) == 5

    def test_unparseable_dates_skipped(self):
        days = [
            {"date": "not-a-date", "numAvail": 0},
            {"from": "2024-06-04", "to": "2024-06-02", "numAvail": 0},
        ]
        bookings = [{"arrival": "garbage", "departure": "2024-06-03", "status": "new"}]
        assert normalize(days=days, bookings=bookings).booked_dates == []

    def test_timestamp_dates_accepted(self):
        window = normalize(days=[{"date": "2024-06-02T00:00:00Z", "numAvail": 0}])
        assert window.booked_dates == [d(2)]

    def test_bad_price_ignored(self):
        window = normalize(days=[{"date": "2024-06-01", "price1": "n/a", "price": True}])
        assert window.get(d(1)).price is None


class TestSerialization:
    """Windows survive the cache round trip"""

    def test_to_from_dict(self):
        window = normalize(
            days=[{"date": "2024-06-01", "price1": "99.90"}],
            bookings=[{"arrival": "2024-06-03", "departure": "2024-06-04", "status": "new"}],
        )
        restored = type(window).from_dict(window.to_dict())
        assert restored == window


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
