"""
Calendar Normalizer

Turns raw Beds24 calendar and booking items into one AvailabilityWindow.

Rules:
- Every date in [start, end) gets exactly one record
- A date with no upstream record is available
- Blocked signals are OR-ed: blocked status, numAvail == 0, inside a
  confirmed booking [arrival, departure)
- Departure day is never blocked by its booking
- Price is the first positive value of price1/price/rate/amount, else None

This is the only place that knows the upstream field names.
"""

import logging
from datetime import date, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Optional, Set

from ..models.availability import (
    AvailabilityWindow,
    DateAvailabilityRecord,
    RawCalendar,
    date_range,
)

logger = logging.getLogger(__name__)

BLOCKED_STATUSES = {"blocked", "unavailable", "closed"}

# Beds24 booking status: 1 = confirmed, 2 = new
ACTIVE_BOOKING_STATUSES = {"1", "2", "confirmed", "new"}

PRICE_FIELDS = ("price1", "price", "rate", "amount")


def _parse_date(value: Any) -> Optional[date]:
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not value:
        return None
    try:
        # Tolerate full timestamps, only the date part matters
        return date.fromisoformat(value[:10])
    except ValueError:
        return None


def _parse_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _parse_price(item: Dict[str, Any]) -> Optional[Decimal]:
    for field in PRICE_FIELDS:
        raw = item.get(field)
        if raw is None or isinstance(raw, bool):
            continue
        try:
            price = Decimal(str(raw))
        except InvalidOperation:
            continue
        if price.is_finite() and price > 0:
            return price
    return None


def _item_dates(item: Dict[str, Any]) -> List[date]:
    """Dates covered by one calendar item (single date or inclusive from/to)"""
    single = _parse_date(item.get("date"))
    if single is not None:
        return [single]

    start = _parse_date(item.get("from"))
    end = _parse_date(item.get("to")) or start
    if start is None or end < start:
        return []
    return date_range(start, end + timedelta(days=1))


def _calendar_entries(items: Iterable[Any]) -> Iterable[Dict[str, Any]]:
    """Flatten per-room wrappers ({"roomId": .., "calendar": [...]}) into entries"""
    for item in items:
        if not isinstance(item, dict):
            logger.warning(f"Skipping non-object calendar item: {type(item).__name__}")
            continue
        nested = item.get("calendar")
        if isinstance(nested, list):
            for entry in nested:
                if isinstance(entry, dict):
                    yield entry
                else:
                    logger.warning("Skipping non-object calendar entry")
        else:
            yield item


def _is_blocked(entry: Dict[str, Any]) -> bool:
    status = entry.get("status")
    if isinstance(status, str) and status.strip().lower() in BLOCKED_STATUSES:
        return True
    num_avail = _parse_int(entry.get("numAvail"))
    return num_avail is not None and num_avail <= 0


def booked_dates(bookings: Iterable[Any], start: date, end: date) -> Set[date]:
    """Nights inside [start, end) occupied by confirmed/new bookings"""
    nights: Set[date] = set()
    for booking in bookings:
        if not isinstance(booking, dict):
            logger.warning("Skipping non-object booking item")
            continue

        status = str(booking.get("status", "")).strip().lower()
        if status not in ACTIVE_BOOKING_STATUSES:
            continue

        arrival = _parse_date(booking.get("arrival"))
        departure = _parse_date(booking.get("departure"))
        if arrival is None or departure is None or departure <= arrival:
            logger.warning(f"Skipping booking {booking.get('id')} with unparseable dates")
            continue

        for night in date_range(max(arrival, start), min(departure, end)):
            nights.add(night)
    return nights


def normalize_calendar(
    raw: RawCalendar,
    start: date,
    end: date,
    default_min_stay: int,
    default_max_stay: int,
    apartment: str = "",
) -> AvailabilityWindow:
    """
    Build the per-date availability window for [start, end).

    Args:
        raw: Items exactly as returned by the upstream client
        start: First date (inclusive)
        end: Last date (exclusive)
        default_min_stay: Apartment default when upstream has no minStay
        default_max_stay: Apartment default when upstream has no maxStay
        apartment: Slug recorded on the window
    """
    blocked: Set[date] = set()
    prices: Dict[date, Decimal] = {}
    min_stays: Dict[date, int] = {}
    max_stays: Dict[date, int] = {}

    for entry in _calendar_entries(raw.days):
        covered = _item_dates(entry)
        if not covered:
            logger.warning(f"Skipping calendar entry with unparseable dates: {entry!r:.120}")
            continue

        entry_blocked = _is_blocked(entry)
        price = _parse_price(entry)
        min_stay = _parse_int(entry.get("minStay"))
        max_stay = _parse_int(entry.get("maxStay"))

        for day in covered:
            if day < start or day >= end:
                continue
            if entry_blocked:
                blocked.add(day)
            if price is not None:
                prices[day] = price
            if min_stay and min_stay > 0:
                min_stays[day] = min_stay
            if max_stay and max_stay > 0:
                max_stays[day] = max_stay

    blocked |= booked_dates(raw.bookings, start, end)

    days = {}
    for day in date_range(start, end):
        days[day] = DateAvailabilityRecord(
            date=day,
            available=day not in blocked,
            price=prices.get(day),
            min_stay=min_stays.get(day, default_min_stay),
            max_stay=max_stays.get(day, default_max_stay),
        )

    window = AvailabilityWindow(apartment=apartment, start=start, end=end, days=days)

    gaps = window.price_gaps
    if gaps:
        logger.warning(
            f"{apartment or 'apartment'}: {len(gaps)} available date(s) without price "
            f"between {start} and {end}"
        )
    return window
